"""
askmoe/models/answer.py

Canonical answer records shared by every user who asks the same question.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: int = 0
    completion: int = 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion


class AnswerRecord(BaseModel):
    """
    One canonical answer.

    popularity counts every ask that resolved to this record (creation
    included). score is always ups - downs; the store recomputes it in the
    same statement that moves either counter.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    canonical_key: str
    original_question: str
    platform: str
    version: str
    answer_text: str
    model_used: str
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    sources: List[str] = Field(default_factory=list)
    popularity: int = 1
    ups: int = 0
    downs: int = 0
    score: int = 0
    published: bool = False
    published_url: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "canonicalKey": self.canonical_key,
            "question": self.original_question,
            "platform": self.platform,
            "version": self.version,
            "answer": self.answer_text,
            "modelUsed": self.model_used,
            "tokensUsed": {"prompt": self.token_usage.prompt, "completion": self.token_usage.completion},
            "sources": list(self.sources),
            "popularity": self.popularity,
            "ups": self.ups,
            "downs": self.downs,
            "score": self.score,
            "published": self.published,
            "publishedUrl": self.published_url,
            "seoTitle": self.seo_title,
            "seoDescription": self.seo_description,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
