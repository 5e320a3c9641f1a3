"""
Generators for content jobs: Claude for text, Replicate for images.
"""

from .base import GenerationError, PermanentGenerationError, GenerationResult, GenerationUsage, Generator
from .content import ContentGenerator, TranslationGenerator, SeoGenerator, score_content, extract_json_object
from .images import ImageGenerator
from .router import GeneratorRouter

__all__ = [
    "GenerationError",
    "PermanentGenerationError",
    "GenerationResult",
    "GenerationUsage",
    "Generator",
    "ContentGenerator",
    "TranslationGenerator",
    "SeoGenerator",
    "score_content",
    "extract_json_object",
    "ImageGenerator",
    "GeneratorRouter",
]
