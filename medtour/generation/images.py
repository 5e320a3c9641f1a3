"""
Cover image generation via Replicate.
"""

import time
from typing import Any, Optional

import httpx
import replicate

from medtour.config import config
from medtour.generation.base import (
    GenerationError,
    GenerationResult,
    GenerationUsage,
    PermanentGenerationError,
)
from medtour.queue.models import ImageGenerationPayload, Job
from medtour.utils.logging import generation_logger as logger

# Appended to every prompt: rendered text comes out as gibberish letters
NO_TEXT_SUFFIX = "high quality, detailed, no text, no letters, no words"


def build_image_prompt(payload: ImageGenerationPayload) -> str:
    return f"{payload.prompt}, {payload.style}, {NO_TEXT_SUFFIX}"


class ImageGenerator:
    """
    Generates a cover image with Replicate and downloads the bytes.

    The image is returned in memory; uploading it to storage is the
    content store's job.
    """

    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None, http_timeout: float = 60.0):
        self.model = model or config.IMAGE_MODEL
        self.http_timeout = http_timeout
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not config.REPLICATE_API_TOKEN:
                raise PermanentGenerationError("REPLICATE_API_TOKEN is not configured")
            self._client = replicate.Client(api_token=config.REPLICATE_API_TOKEN)
        return self._client

    async def generate(self, job: Job) -> GenerationResult:
        payload: ImageGenerationPayload = job.typed_payload()
        start = time.monotonic()

        prompt = build_image_prompt(payload)
        input_params = {
            "prompt": prompt,
            "aspect_ratio": payload.aspect_ratio,
            "output_format": "png",
            "safety_filter_level": "block_only_high",
        }

        output = await self.client.async_run(self.model, input=input_params)

        # Imagen returns a single FileOutput; other models return a list
        if isinstance(output, list):
            output = output[0] if output else None
        if not output:
            raise GenerationError("No image URL returned from Replicate")
        source_url = str(output)

        async with httpx.AsyncClient(timeout=self.http_timeout) as http_client:
            response = await http_client.get(source_url)
            response.raise_for_status()

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Image generated",
            job_id=job.id,
            blog_post_id=payload.blog_post_id,
            model=self.model,
            size_bytes=len(response.content),
            elapsed_ms=elapsed_ms,
        )

        return GenerationResult(
            data={
                "image_bytes": response.content,
                "content_type": response.headers.get("content-type", "image/png"),
                "source_url": source_url,
                "prompt": prompt,
            },
            usage=GenerationUsage(model=self.model),
            elapsed_ms=elapsed_ms,
            metadata={"blog_post_id": payload.blog_post_id},
        )
