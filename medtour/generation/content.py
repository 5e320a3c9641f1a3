"""
Claude-backed text generators: articles, translations and SEO metadata.

Each generator makes one LLM call per output document and returns parsed,
validated JSON. Output that cannot be parsed raises a retryable
GenerationError so the job's retry policy gets another attempt.
"""

import json
import re
import time
from typing import Any, Dict, List, Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field, ValidationError

from medtour.config import config
from medtour.database.content import ContentStore
from medtour.generation.base import (
    GenerationError,
    GenerationResult,
    GenerationUsage,
    PermanentGenerationError,
    usage_from_response,
)
from medtour.queue.models import (
    ContentGenerationPayload,
    Job,
    SeoOptimizationPayload,
    TranslationPayload,
)
from medtour.utils.logging import generation_logger as logger

PROMPT_VERSION = "2.0-eeat-aeo"

LOCALE_NAMES = {
    "en": "English",
    "ko": "Korean",
    "zh-TW": "Traditional Chinese (Taiwan)",
    "zh-CN": "Simplified Chinese",
    "ja": "Japanese",
    "th": "Thai",
    "mn": "Mongolian",
    "ru": "Russian",
}


# =============================================================================
# Output models
# =============================================================================

class FaqItem(BaseModel):
    question: str
    answer: str


class ArticleDraft(BaseModel):
    title: str = Field(min_length=1)
    excerpt: str = ""
    content: str = Field(min_length=1)
    meta_title: str = ""
    meta_description: str = ""
    tags: List[str] = Field(default_factory=list)
    faq: List[FaqItem] = Field(default_factory=list)


class SeoMeta(BaseModel):
    meta_title: str = Field(min_length=1)
    meta_description: str = Field(min_length=1)


class QualityScore(BaseModel):
    overall: int
    seo: int
    aeo: int
    eeat: int
    readability: int
    completeness: int
    details: Dict[str, bool]


# =============================================================================
# Parsing
# =============================================================================

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pull the first JSON object out of an LLM reply.

    Handles markdown fences, prose around the object, trailing commas and
    raw newlines inside string values.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    candidate = text.strip()

    fenced = _FENCED_JSON.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object found in model output")
        candidate = candidate[start:end + 1]

    candidate = _TRAILING_COMMA.sub(r"\1", candidate)

    # strict=False accepts literal newlines and tabs inside strings
    data = json.loads(candidate, strict=False)
    if not isinstance(data, dict):
        raise ValueError("Model output is not a JSON object")
    return data


def _parse_model(text: str, model: type[BaseModel]) -> BaseModel:
    try:
        return model.model_validate(extract_json_object(text))
    except (ValueError, ValidationError) as e:
        logger.warning(
            "Failed to parse model output",
            expected=model.__name__,
            length=len(text),
            head=text[:200],
        )
        raise GenerationError(f"Failed to parse generated content: {e}") from e


# =============================================================================
# Quality scoring
# =============================================================================

def score_content(article: ArticleDraft, keyword: str) -> QualityScore:
    """
    Heuristic SEO / AEO / E-E-A-T quality score for a generated article.

    Each category is 0-100; `overall` weights AEO and E-E-A-T highest.
    """
    content = article.content or ""
    lower_content = content.lower()
    lower_keyword = keyword.lower()
    first_keyword_word = lower_keyword.split(" ")[0] if lower_keyword else ""

    word_count = len(content.split())
    keyword_count = lower_content.count(lower_keyword) if lower_keyword else 0
    keyword_density = (keyword_count / word_count) * 100 if word_count else 0.0
    meta_description = article.meta_description or ""

    details = {
        # SEO
        "has_title": bool(article.title),
        "title_length": 30 <= len(article.title) <= 60,
        "title_has_keyword": bool(first_keyword_word) and first_keyword_word in article.title.lower(),
        "has_meta_description": bool(meta_description),
        "meta_description_length": 145 <= len(meta_description) <= 160,
        "meta_description_has_cta": bool(re.search(r"consult|contact|book|get|learn|discover", meta_description, re.I)),
        "keyword_density": 0.5 <= keyword_density <= 2.5,
        "has_internal_links": bool(re.search(r"\[INTERNAL_LINK:", content, re.I)),
        # AEO
        "has_quick_answer": bool(re.search(r"^#{1,3}.*\n\n.{40,100}\n", content, re.M)),
        "has_faq_section": len(article.faq) >= 5 or bool(re.search(r"#{2,3}.*faq|frequently asked", content, re.I)),
        "has_comparison_table": bool(re.search(r"\|.*\|.*\|", content, re.M)),
        "has_numbered_list": bool(re.search(r"^\d+\.\s", content, re.M)),
        "has_definition": bool(first_keyword_word) and bool(
            re.search(rf"{re.escape(first_keyword_word)}\s+(is|are|refers to)", lower_content)
        ),
        # E-E-A-T
        "has_expert_credentials": bool(
            re.search(r"board.certified|years of training|accredited|certified|licensed", lower_content)
        ),
        "has_statistics": bool(re.search(r"\d+%|\d+,\d+|\$[\d,]+", content)),
        "has_disclaimer": bool(re.search(r"consult.*professional|individual results|medical advice", lower_content)),
        "has_price_ranges": bool(re.search(r"\$[\d,]+-\$[\d,]+|\d+-\d+\s*(usd|krw|won)", lower_content)),
        # Structure
        "has_headings": len(re.findall(r"^##\s", content, re.M)) >= 4,
        "content_length": word_count >= 1500,
        "has_cta": bool(re.search(r"whatsapp|line|wechat|contact|consult|book|inquiry", lower_content)),
    }

    def points(weights: Dict[str, int]) -> int:
        return sum(weight for check, weight in weights.items() if details[check])

    seo = points({
        "has_title": 10, "title_length": 10, "title_has_keyword": 15, "has_meta_description": 10,
        "meta_description_length": 10, "meta_description_has_cta": 10, "keyword_density": 20,
        "has_internal_links": 15,
    })
    aeo = points({
        "has_quick_answer": 25, "has_faq_section": 25, "has_comparison_table": 20,
        "has_numbered_list": 15, "has_definition": 15,
    })
    eeat = points({
        "has_expert_credentials": 30, "has_statistics": 25, "has_disclaimer": 25, "has_price_ranges": 20,
    })
    readability = points({
        "has_headings": 40, "has_numbered_list": 20, "has_comparison_table": 20, "has_faq_section": 20,
    })
    completeness = points({
        "has_title": 15, "has_meta_description": 15, "content_length": 25, "has_cta": 20, "has_faq_section": 25,
    })

    overall = round(seo * 0.2 + aeo * 0.25 + eeat * 0.25 + readability * 0.15 + completeness * 0.15)

    return QualityScore(
        overall=overall,
        seo=seo,
        aeo=aeo,
        eeat=eeat,
        readability=readability,
        completeness=completeness,
        details=details,
    )


# =============================================================================
# Prompts
# =============================================================================

ARTICLE_SYSTEM_PROMPT = """You are an expert medical tourism content writer covering treatment in Korea.
Write people-first, accurate content that shows real experience and expertise, cites concrete
figures where they are known, and reminds readers to consult a qualified professional.

Respond with a single JSON object and nothing else:
{
  "title": "...",
  "excerpt": "...",
  "content": "... markdown with ## headings ...",
  "meta_title": "...",
  "meta_description": "...",
  "tags": ["..."],
  "faq": [{"question": "...", "answer": "..."}]
}"""

TRANSLATION_SYSTEM_PROMPT = """You translate medical tourism articles. Keep the markdown structure,
headings, tables and facts exactly; adapt tone and units for the target audience.
Respond with a single JSON object with the same keys as the input article."""

SEO_SYSTEM_PROMPT = """You optimize search metadata for medical tourism articles.
Respond with a single JSON object: {"meta_title": "...", "meta_description": "..."}.
meta_title is 30-60 characters and leads with the keyword; meta_description is 145-160
characters and ends with a call to action."""


def build_article_prompt(payload: ContentGenerationPayload) -> str:
    lines = [
        f"Keyword: {payload.keyword}",
        f"Language: {LOCALE_NAMES[payload.locale]} ({payload.locale})",
        f"Category: {payload.category}",
        f"Target length: about {payload.target_word_count} words",
    ]
    if payload.keyword_ko:
        lines.append(f"Korean keyword (for reference): {payload.keyword_ko}")
    lines.append("Include an FAQ of at least 5 questions and a comparison table where it helps the reader.")
    return "\n".join(lines)


def build_translation_prompt(source: Dict[str, Any], target_locale: str) -> str:
    article = {
        "title": source.get("title", ""),
        "excerpt": source.get("excerpt", ""),
        "content": source.get("content", ""),
        "meta_title": (source.get("seo_meta") or {}).get("meta_title", ""),
        "meta_description": (source.get("seo_meta") or {}).get("meta_description", ""),
        "tags": source.get("tags") or [],
    }
    return (
        f"Translate this article from {LOCALE_NAMES.get(source.get('locale', 'en'), 'English')} "
        f"into {LOCALE_NAMES[target_locale]}.\n\n{json.dumps(article, ensure_ascii=False)}"
    )


def build_seo_prompt(post: Dict[str, Any], payload: SeoOptimizationPayload) -> str:
    return (
        f"Keyword: {payload.keyword}\n"
        f"Language: {LOCALE_NAMES[payload.locale]}\n"
        f"Title: {post.get('title', '')}\n"
        f"Excerpt: {post.get('excerpt', '')}\n\n"
        f"Article opening:\n{(post.get('content') or '')[:2000]}"
    )


# =============================================================================
# Generators
# =============================================================================

class _ClaudeGenerator:
    """Shared ChatAnthropic setup. Pass `llm` to substitute the chat model."""

    def __init__(self, llm: Optional[Any] = None, temperature: float = 0.6, model_name: Optional[str] = None):
        self.model_name = model_name or config.MODEL_NAME
        self.temperature = temperature
        self._llm = llm

    @property
    def llm(self) -> Any:
        if self._llm is None:
            if not config.ANTHROPIC_API_KEY:
                raise PermanentGenerationError("ANTHROPIC_API_KEY is not configured")
            self._llm = ChatAnthropic(
                model=self.model_name,
                temperature=self.temperature,
                max_tokens=config.CONTENT_MAX_TOKENS,
                anthropic_api_key=config.ANTHROPIC_API_KEY,
                timeout=float(config.LLM_TIMEOUT_SECONDS),
            )
        return self._llm

    async def _complete(self, system_prompt: str, prompt: str):
        response = await self.llm.ainvoke([
            SystemMessage(content=system_prompt),
            HumanMessage(content=prompt),
        ])
        return response, usage_from_response(response, self.model_name)


def _text(response: Any) -> str:
    content = response.content
    if isinstance(content, list):
        # Content blocks: keep text parts only
        return "".join(block.get("text", "") if isinstance(block, dict) else str(block) for block in content)
    return str(content)


class ContentGenerator(_ClaudeGenerator):
    """Writes a full localized article for a keyword and scores it."""

    def __init__(self, llm: Optional[Any] = None):
        super().__init__(llm=llm, temperature=config.CONTENT_TEMPERATURE)

    async def generate(self, job: Job) -> GenerationResult:
        payload: ContentGenerationPayload = job.typed_payload()
        start = time.monotonic()

        response, usage = await self._complete(ARTICLE_SYSTEM_PROMPT, build_article_prompt(payload))
        article: ArticleDraft = _parse_model(_text(response), ArticleDraft)
        quality = score_content(article, payload.keyword)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Article generated",
            job_id=job.id,
            keyword=payload.keyword,
            locale=payload.locale,
            quality_score=quality.overall,
            elapsed_ms=elapsed_ms,
        )

        return GenerationResult(
            data={"article": article.model_dump(), "quality": quality.model_dump()},
            usage=usage,
            elapsed_ms=elapsed_ms,
            metadata={"prompt_version": PROMPT_VERSION, "keyword": payload.keyword, "locale": payload.locale},
        )


class TranslationGenerator(_ClaudeGenerator):
    """Translates an existing post into each target locale."""

    def __init__(self, content_store: ContentStore, llm: Optional[Any] = None):
        super().__init__(llm=llm, temperature=config.TRANSLATION_TEMPERATURE)
        self.content_store = content_store

    async def generate(self, job: Job) -> GenerationResult:
        payload: TranslationPayload = job.typed_payload()
        start = time.monotonic()

        source = await self.content_store.get_post(payload.blog_post_id)
        if source is None:
            raise PermanentGenerationError(f"Source post not found: {payload.blog_post_id}")

        articles: Dict[str, Dict[str, Any]] = {}
        usage = GenerationUsage(model=self.model_name)
        for locale in payload.target_locales:
            response, call_usage = await self._complete(
                TRANSLATION_SYSTEM_PROMPT, build_translation_prompt(source, locale)
            )
            articles[locale] = _parse_model(_text(response), ArticleDraft).model_dump()
            usage = usage + call_usage

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Post translated",
            job_id=job.id,
            blog_post_id=payload.blog_post_id,
            locales=list(articles),
            elapsed_ms=elapsed_ms,
        )

        return GenerationResult(
            data={"source_post": source, "articles": articles},
            usage=usage,
            elapsed_ms=elapsed_ms,
            metadata={"source_locale": payload.source_locale},
        )


class SeoGenerator(_ClaudeGenerator):
    """Rewrites the meta title and description of an existing post."""

    def __init__(self, content_store: ContentStore, llm: Optional[Any] = None):
        super().__init__(llm=llm, temperature=config.TRANSLATION_TEMPERATURE)
        self.content_store = content_store

    async def generate(self, job: Job) -> GenerationResult:
        payload: SeoOptimizationPayload = job.typed_payload()
        start = time.monotonic()

        post = await self.content_store.get_post(payload.blog_post_id)
        if post is None:
            raise PermanentGenerationError(f"Post not found: {payload.blog_post_id}")

        response, usage = await self._complete(SEO_SYSTEM_PROMPT, build_seo_prompt(post, payload))
        meta: SeoMeta = _parse_model(_text(response), SeoMeta)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        return GenerationResult(
            data={"meta": meta.model_dump(), "existing_seo_meta": post.get("seo_meta") or {}},
            usage=usage,
            elapsed_ms=elapsed_ms,
            metadata={"keyword": payload.keyword, "locale": payload.locale},
        )
