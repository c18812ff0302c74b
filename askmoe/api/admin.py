"""
Admin API (X-Admin-Key).

PUT  /v1/admin/users/{user_id}/plan       plan change from the payment pipeline
PUT  /v1/admin/answers/{answer_id}        revise answer text
POST /v1/admin/answers/{answer_id}/publish
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from askmoe.core.admin_auth import AdminActor, require_admin
from askmoe.features.answers.service import publish_answer, revise_answer
from askmoe.features.users.service import set_plan

logger = logging.getLogger("askmoe")

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class PlanChangeRequest(BaseModel):
    plan: str


class AnswerRevision(BaseModel):
    answer: str


@router.put("/users/{user_id}/plan")
def change_plan(user_id: str, body: PlanChangeRequest, actor: AdminActor = Depends(require_admin)):
    updated = set_plan(user_id, body.plan)
    logger.info("[admin] plan.set", extra={"actor": actor.actor_id, "user_id": user_id, "plan": updated.plan.value})
    return updated.to_dict()


@router.put("/answers/{answer_id}")
def update_answer(answer_id: str, body: AnswerRevision, actor: AdminActor = Depends(require_admin)):
    revised = revise_answer(answer_id, body.answer)
    logger.info("[admin] answer.revised", extra={"actor": actor.actor_id, "answer_id": answer_id})
    return revised.to_dict()


@router.post("/answers/{answer_id}/publish")
def publish(answer_id: str, actor: AdminActor = Depends(require_admin)):
    published = publish_answer(answer_id)
    logger.info("[admin] answer.published", extra={"actor": actor.actor_id, "answer_id": answer_id})
    return published.to_dict()
