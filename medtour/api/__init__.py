"""Admin API application."""
