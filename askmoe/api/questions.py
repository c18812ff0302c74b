"""
Questions API

POST /api/ask                    ask a question (metered)
GET  /api/ask/catalog            published answers, most popular first
GET  /api/ask/{answer_id}        one answer
POST /api/ask/{answer_id}/vote   anonymous up/down vote
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from askmoe.core.auth import admit_caller, get_admitted_user_id, get_current_user_id
from askmoe.core.ratelimit import AdmissionController, get_admission_controller
from askmoe.features.ai.provider import ReasoningProvider, get_reasoning_provider
from askmoe.features.answers import service as answer_cache
from askmoe.features.catalog import service as catalog_service
from askmoe.features.questions.service import MAX_QUESTION_CHARS, ask_question, check_question

router = APIRouter(prefix="/api/ask", tags=["questions"])


class AskRequest(BaseModel):
    message: str = Field(max_length=MAX_QUESTION_CHARS)
    platform: Optional[str] = Field(None, max_length=100)
    version: Optional[str] = Field(None, max_length=100)


class VoteRequest(BaseModel):
    vote: str  # "up" | "down"


@router.post("")
def ask(
    request: Request,
    body: AskRequest,
    user_id: str = Depends(get_current_user_id),
    admission: AdmissionController = Depends(get_admission_controller),
    provider: ReasoningProvider = Depends(get_reasoning_provider),
):
    # Unanswerable asks are refused before they count against the admission tier
    check_question(body.message, body.platform, body.version)
    admit_caller(request, user_id, admission)

    result = ask_question(
        user_id,
        body.message,
        body.platform,
        body.version,
        provider=provider,
    )
    return result.to_dict()


# Declared before /{answer_id} so "catalog" is not read as an id
@router.get("/catalog")
def get_catalog(
    platform: Optional[str] = Query(None),
    page: int = Query(1),
    limit: int = Query(10),
):
    return catalog_service.catalog(platform, page, limit)


@router.get("/{answer_id}")
def get_answer(answer_id: str):
    return answer_cache.get_answer(answer_id).to_dict()


@router.post("/{answer_id}/vote")
def vote(answer_id: str, body: VoteRequest, user_id: str = Depends(get_admitted_user_id)):
    return catalog_service.vote(answer_id, body.vote).to_dict()
