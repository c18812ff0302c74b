from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from askmoe.models.plan import PlanTier


class UserEntitlement(BaseModel):
    """Snapshot of one user's entitlement record as stored."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan: PlanTier = PlanTier.TRIAL
    daily_used: int = 0
    daily_window_start: Optional[datetime] = None
    monthly_used: int = 0
    monthly_resets_at: Optional[datetime] = None
    trial_questions_used: int = 0
    trial_expires_at: Optional[datetime] = None
    assistant_message_count: int = 0
    sees_ads: bool = True
    last_seen: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "plan": self.plan.value,
            "dailyUsed": self.daily_used,
            "dailyWindowStart": self.daily_window_start.isoformat() if self.daily_window_start else None,
            "monthlyUsed": self.monthly_used,
            "monthlyResetsAt": self.monthly_resets_at.isoformat() if self.monthly_resets_at else None,
            "trialQuestionsUsed": self.trial_questions_used,
            "trialExpiresAt": self.trial_expires_at.isoformat() if self.trial_expires_at else None,
            "assistantMessageCount": self.assistant_message_count,
            "seesAds": self.sees_ads,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
        }
