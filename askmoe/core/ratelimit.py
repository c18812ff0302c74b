"""
Admission control: fixed-window request ceilings per entitlement tier.

- In-memory and per process; counts are lost on restart and are not shared
  across instances. Quota that must be exact lives in the entitlement store.
- Keyed by client network identity + tier. A request is counted against
  exactly one tier's window.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from starlette.requests import Request

from askmoe.core.config import settings, Settings
from askmoe.core.errors import RateLimitError
from askmoe.core.metrics import ratelimit_block_total
from askmoe.models.plan import PlanTier

logger = logging.getLogger("askmoe")


class AdmissionTier(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FREE = "free"
    PAID = "paid"


@dataclass(frozen=True)
class TierPolicy:
    max_requests: int
    window_seconds: int


@dataclass
class AdmissionConfig:
    enabled: bool = True
    trust_forwarded_for: bool = False
    policies: Dict[AdmissionTier, TierPolicy] = field(default_factory=lambda: {
        AdmissionTier.UNAUTHENTICATED: TierPolicy(max_requests=10, window_seconds=3600),
        AdmissionTier.FREE: TierPolicy(max_requests=50, window_seconds=900),
        AdmissionTier.PAID: TierPolicy(max_requests=500, window_seconds=900),
    })


_BLOCK_MESSAGES = {
    AdmissionTier.UNAUTHENTICATED: "Too many authentication attempts from this IP, please try again later.",
    AdmissionTier.FREE: "Too many requests from this IP, please try again later.",
    AdmissionTier.PAID: "Too many requests from this IP, please try again later.",
}


class FixedWindowLimiter:
    """Counts hits per key inside windows anchored at each key's first hit."""

    def __init__(self, policy: TierPolicy, time_fn: Callable[[], float]):
        self.policy = policy
        self.time_fn = time_fn
        self.windows: Dict[str, Tuple[float, int]] = {}
        self._last_prune = time_fn()
        self._lock = threading.Lock()

    def hit(self, key: str) -> Optional[int]:
        """Count a request. Returns None when allowed, else seconds until the window resets."""
        now = self.time_fn()
        with self._lock:
            self._prune(now)
            window_start, count = self.windows.get(key, (now, 0))
            if now - window_start >= self.policy.window_seconds:
                window_start, count = now, 0
            if count >= self.policy.max_requests:
                self.windows[key] = (window_start, count)
                return max(1, math.ceil(window_start + self.policy.window_seconds - now))
            self.windows[key] = (window_start, count + 1)
            return None

    def _prune(self, now: float) -> None:
        # Drop expired windows at most once per window length; caller holds the lock
        if now - self._last_prune < self.policy.window_seconds:
            return
        self._last_prune = now
        expired = [key for key, (start, _) in self.windows.items() if now - start >= self.policy.window_seconds]
        for key in expired:
            del self.windows[key]

    def reset(self) -> None:
        with self._lock:
            self.windows.clear()


def tier_for_plan(plan: Optional[PlanTier]) -> AdmissionTier:
    """Only free users get the free window; trial accounts share the paid one."""
    if plan is None:
        return AdmissionTier.UNAUTHENTICATED
    if plan == PlanTier.FREE:
        return AdmissionTier.FREE
    return AdmissionTier.PAID


class AdmissionController:
    def __init__(self, config: Optional[AdmissionConfig] = None, time_fn: Callable[[], float] = time.monotonic):
        self.config = config or AdmissionConfig()
        self.limiters: Dict[AdmissionTier, FixedWindowLimiter] = {
            tier: FixedWindowLimiter(policy, time_fn) for tier, policy in self.config.policies.items()
        }

    def check(self, client_key: str, tier: AdmissionTier, *, request_id: Optional[str] = None) -> None:
        """
        Count one request for a client in a tier.

        Raises:
            RateLimitError: the tier's ceiling is reached (carries retry_after)
        """
        if not self.config.enabled:
            return
        limiter = self.limiters.get(tier)
        if limiter is None:
            return

        retry_after = limiter.hit(f"{tier.value}:{client_key}")
        if retry_after is None:
            return

        ratelimit_block_total.inc(labels={"tier": tier.value})
        logger.warning(
            "[admission] BLOCK",
            extra={"request_id": request_id, "tier": tier.value, "client": client_key, "retry_after": retry_after},
        )
        raise RateLimitError(
            _BLOCK_MESSAGES[tier],
            retry_after=retry_after,
            limit=limiter.policy.max_requests,
            request_id=request_id,
        )

    def client_key(self, request: Request) -> str:
        return client_key_for(request, trust_forwarded_for=self.config.trust_forwarded_for)

    def check_plan(self, client_key: str, plan: Optional[PlanTier], *, request_id: Optional[str] = None) -> None:
        self.check(client_key, tier_for_plan(plan), request_id=request_id)

    def reset(self) -> None:
        for limiter in self.limiters.values():
            limiter.reset()


def build_admission_config(cfg: Optional[Settings] = None) -> AdmissionConfig:
    cfg = cfg or settings

    def _policy(max_requests: int, window_seconds: int) -> TierPolicy:
        return TierPolicy(max_requests=max(1, int(max_requests)), window_seconds=max(1, int(window_seconds)))

    return AdmissionConfig(
        enabled=bool(cfg.RATE_LIMIT_ENABLED),
        trust_forwarded_for=bool(cfg.TRUST_FORWARDED_FOR),
        policies={
            AdmissionTier.UNAUTHENTICATED: _policy(cfg.RATE_LIMIT_UNAUTH_MAX, cfg.RATE_LIMIT_UNAUTH_WINDOW_SECONDS),
            AdmissionTier.FREE: _policy(cfg.RATE_LIMIT_FREE_MAX, cfg.RATE_LIMIT_FREE_WINDOW_SECONDS),
            AdmissionTier.PAID: _policy(cfg.RATE_LIMIT_PAID_MAX, cfg.RATE_LIMIT_PAID_WINDOW_SECONDS),
        },
    )


def client_key_for(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Socket peer address, or the first X-Forwarded-For hop when the proxy is trusted."""
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return request.client.host if request.client else "unknown"


def get_admission_controller(request: Request) -> AdmissionController:
    """Controller stored on app state at startup; created lazily if missing."""
    controller = getattr(request.app.state, "admission_controller", None)
    if controller is None:
        controller = AdmissionController(build_admission_config())
        request.app.state.admission_controller = controller
    return controller
