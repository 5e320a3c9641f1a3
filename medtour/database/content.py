"""
Content Store

Persists generated articles, translations, cover images and SEO metadata to
Supabase, and keeps the keyword request rows in step with their jobs.

Tables:
    blog_posts         one row per locale-specific article
    content_keywords   keyword requests; status / blog_post_id / quality_score
    image_generations  audit trail of generated cover images
"""

import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from medtour.config import config
from medtour.queue.models import (
    ContentGenerationPayload,
    ImageGenerationPayload,
    Job,
    JobType,
)
from medtour.utils.logging import get_logger

from .client import get_supabase_admin_client

logger = get_logger("content_store")

SLUG_MAX_LENGTH = 60


class ContentStoreError(Exception):
    """Raised when a content write does not return the expected row."""
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_slug(title: str, fallback: str = "post") -> str:
    """
    URL slug from a title. Non-Latin letters are kept.

    "Rhinoplasty in Korea: 2025 Cost Guide!" -> "rhinoplasty-in-korea-2025-cost-guide"
    """
    slug = title.lower()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug[:SLUG_MAX_LENGTH].strip("-")
    return slug or fallback


class ContentStore:
    """
    Service class for generated content.
    """

    def __init__(self, client: Optional[Client] = None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or config.IMAGE_BUCKET

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_admin_client()
        return self._client

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Get blog post by ID."""
        result = (
            self.client.table("blog_posts")
            .select("*")
            .eq("id", post_id)
            .execute()
        )
        return result.data[0] if result.data else None

    # =========================================================================
    # Articles
    # =========================================================================

    async def save_generated_post(
        self,
        payload: ContentGenerationPayload,
        article: Dict[str, Any],
        quality: Dict[str, Any],
        metadata: Dict[str, Any],
        job_id: str,
    ) -> Dict[str, Any]:
        """
        Insert the generated article and mark its keyword request as generated.

        Args:
            payload: The content job's payload
            article: Parsed article (title, excerpt, content, meta_*, tags, faq)
            quality: Quality score breakdown; `overall` is stored on the keyword
            metadata: Generation metadata (model, usage, timings)
            job_id: Queue job that produced the article

        Returns:
            Created blog_posts row
        """
        now = _now_iso()
        published = payload.auto_publish

        post_data = {
            "slug": generate_slug(article["title"], fallback=f"post-{job_id.rsplit('_', 1)[-1]}"),
            "locale": payload.locale,
            "title": article["title"],
            "excerpt": article.get("excerpt", ""),
            "content": article["content"],
            "seo_meta": {
                "meta_title": article.get("meta_title") or article["title"],
                "meta_description": article.get("meta_description", ""),
                "faq": article.get("faq", []),
            },
            "status": "published" if published else "draft",
            "published_at": now if published else None,
            "category": payload.category,
            "tags": article.get("tags", []),
            "generation_metadata": {
                **metadata,
                "quality_score": quality.get("overall"),
                "job_id": job_id,
                "keyword_id": payload.keyword_id,
                "generated_at": now,
            },
            "generation_error": None,
            "created_at": now,
            "updated_at": now,
        }

        result = self.client.table("blog_posts").insert(post_data).execute()
        if not result.data:
            raise ContentStoreError(f"Failed to save blog post for keyword {payload.keyword_id}")
        post = result.data[0]

        self.client.table("content_keywords").update({
            "status": "published" if published else "generated",
            "blog_post_id": post["id"],
            "quality_score": quality.get("overall"),
            "generated_at": now,
            "generation_error": None,
            "updated_at": now,
        }).eq("id", payload.keyword_id).execute()

        logger.info(
            "Saved generated post",
            blog_post_id=post["id"],
            keyword_id=payload.keyword_id,
            locale=payload.locale,
            status=post_data["status"],
        )
        return post

    async def save_translations(
        self,
        source_post: Dict[str, Any],
        articles: Dict[str, Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Insert one draft post per translated locale, linked to the source post.

        Returns:
            Created blog_posts rows
        """
        if not articles:
            return []

        now = _now_iso()
        rows = []
        for locale, article in articles.items():
            rows.append({
                "slug": f"{generate_slug(article['title'], fallback=source_post.get('slug', 'post'))}-{locale.lower()}",
                "locale": locale,
                "title": article["title"],
                "excerpt": article.get("excerpt", ""),
                "content": article["content"],
                "seo_meta": {
                    "meta_title": article.get("meta_title") or article["title"],
                    "meta_description": article.get("meta_description", ""),
                    "faq": article.get("faq", []),
                },
                "status": "draft",
                "category": source_post.get("category"),
                "tags": article.get("tags") or source_post.get("tags") or [],
                "cover_image_url": source_post.get("cover_image_url"),
                "cover_image_alt": source_post.get("cover_image_alt"),
                "generation_metadata": {
                    **(metadata or {}),
                    "source_post_id": source_post["id"],
                    "source_locale": source_post.get("locale"),
                    "generated_at": now,
                },
                "created_at": now,
                "updated_at": now,
            })

        result = self.client.table("blog_posts").insert(rows).execute()
        if not result.data:
            raise ContentStoreError(f"Failed to save translations of post {source_post['id']}")

        logger.info(
            "Saved translations",
            source_post_id=source_post["id"],
            locales=list(articles),
        )
        return result.data

    async def update_seo_meta(
        self,
        post_id: str,
        meta: Dict[str, Any],
        existing: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Merge new meta title/description into the post's seo_meta."""
        seo_meta = {**(existing or {}), **meta}
        result = (
            self.client.table("blog_posts")
            .update({"seo_meta": seo_meta, "generation_error": None, "updated_at": _now_iso()})
            .eq("id", post_id)
            .execute()
        )
        if not result.data:
            raise ContentStoreError(f"Post not found for SEO update: {post_id}")
        return result.data[0]

    # =========================================================================
    # Images
    # =========================================================================

    async def save_cover_image(
        self,
        payload: ImageGenerationPayload,
        image_bytes: bytes,
        content_type: str = "image/png",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Upload a cover image, attach it to its post and record the generation.

        Returns:
            Public URL of the stored image
        """
        metadata = metadata or {}
        path = f"blog/{payload.blog_post_id}/{int(time.time() * 1000)}.png"

        storage = self.client.storage.from_(self.bucket)
        storage.upload(path, image_bytes, {"content-type": content_type, "upsert": "true"})
        public_url = storage.get_public_url(path)

        now = _now_iso()
        result = (
            self.client.table("blog_posts")
            .update({
                "cover_image_url": public_url,
                "cover_image_alt": payload.alt_text or payload.prompt[:120],
                "generation_error": None,
                "updated_at": now,
            })
            .eq("id", payload.blog_post_id)
            .execute()
        )
        if not result.data:
            raise ContentStoreError(f"Post not found for cover image: {payload.blog_post_id}")

        self.client.table("image_generations").insert({
            "blog_post_id": payload.blog_post_id,
            "prompt": metadata.get("prompt", payload.prompt),
            "model": metadata.get("model", config.IMAGE_MODEL),
            "status": "completed",
            "image_url": public_url,
            "generation_time_ms": metadata.get("elapsed_ms"),
            "created_at": now,
        }).execute()

        logger.info("Saved cover image", blog_post_id=payload.blog_post_id, path=path)
        return public_url

    # =========================================================================
    # Failures
    # =========================================================================

    async def record_failure(self, job: Job, error: str):
        """
        Store a job's error on its request row. Article content is never touched.
        """
        now = _now_iso()
        match job.type:
            case JobType.CONTENT_GENERATION:
                keyword_id = job.payload.get("keyword_id")
                if not keyword_id:
                    return
                self.client.table("content_keywords").update({
                    "generation_error": error,
                    "updated_at": now,
                }).eq("id", keyword_id).execute()
            case _:
                post_id = job.payload.get("blog_post_id")
                if not post_id:
                    return
                self.client.table("blog_posts").update({
                    "generation_error": error,
                    "updated_at": now,
                }).eq("id", post_id).execute()
