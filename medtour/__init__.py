"""Content generation job queue for the medical-tourism blog."""

__version__ = "1.0.0"
