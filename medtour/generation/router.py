"""Selects the generator for a job's type."""

from typing import Optional

from medtour.database.content import ContentStore
from medtour.generation.base import GenerationResult, Generator, PermanentGenerationError
from medtour.generation.content import ContentGenerator, SeoGenerator, TranslationGenerator
from medtour.generation.images import ImageGenerator
from medtour.queue.models import Job, JobType


class GeneratorRouter:
    """
    Usage:
        router = GeneratorRouter(content_store)
        result = await router.generate(job)

    Any generator can be replaced, e.g. with a mock in tests.
    """

    def __init__(
        self,
        content_store: ContentStore,
        content: Optional[Generator] = None,
        image: Optional[Generator] = None,
        translation: Optional[Generator] = None,
        seo: Optional[Generator] = None,
    ):
        self.content = content or ContentGenerator()
        self.image = image or ImageGenerator()
        self.translation = translation or TranslationGenerator(content_store)
        self.seo = seo or SeoGenerator(content_store)

    def for_job(self, job: Job) -> Generator:
        match job.type:
            case JobType.CONTENT_GENERATION:
                return self.content
            case JobType.IMAGE_GENERATION:
                return self.image
            case JobType.TRANSLATION:
                return self.translation
            case JobType.SEO_OPTIMIZATION:
                return self.seo
            case _:
                raise PermanentGenerationError(f"No generator for job type: {job.type}")

    async def generate(self, job: Job) -> GenerationResult:
        return await self.for_job(job).generate(job)
