"""SEO metadata for published answers."""

import re
from dataclasses import dataclass
from typing import Optional

from askmoe.features.questions.canonical import GENERIC, slugify

DESCRIPTION_EXCERPT_CHARS = 160

_MARKDOWN_CHARS_RE = re.compile(r"[#*`]")


@dataclass(frozen=True)
class SeoMeta:
    seo_title: str
    seo_description: str
    published_url: str


def published_path(question: str, platform: str, version: Optional[str]) -> str:
    """Public path for an answer: platform/version/question-slug."""
    return "/".join([slugify(platform) or GENERIC, slugify(version) or GENERIC, slugify(question)])


def build_seo_meta(question: str, answer_text: str, platform: str, version: Optional[str]) -> SeoMeta:
    excerpt = _MARKDOWN_CHARS_RE.sub("", answer_text)[:DESCRIPTION_EXCERPT_CHARS].strip()
    shown_version = "" if not version or version == GENERIC else version
    title = " ".join(f"How to {question} in {platform} {shown_version}".split())
    return SeoMeta(
        seo_title=f"{title} | Moe",
        seo_description=f"Learn how to {question}. {excerpt}... Expert guide from Moe.",
        published_url=published_path(question, platform, version),
    )
