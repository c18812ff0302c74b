import pytest
from starlette.requests import Request

from askmoe.core.config import Settings
from askmoe.core.errors import RateLimitError
from askmoe.core.metrics import ratelimit_block_total
from askmoe.core.ratelimit import (
    AdmissionConfig,
    AdmissionController,
    AdmissionTier,
    TierPolicy,
    build_admission_config,
    client_key_for,
    tier_for_plan,
)
from askmoe.models.plan import PlanTier


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def _controller(clock, unauth=(2, 60), free=(3, 60), paid=(5, 60), enabled=True):
    config = AdmissionConfig(
        enabled=enabled,
        policies={
            AdmissionTier.UNAUTHENTICATED: TierPolicy(*unauth),
            AdmissionTier.FREE: TierPolicy(*free),
            AdmissionTier.PAID: TierPolicy(*paid),
        },
    )
    return AdmissionController(config, time_fn=clock)


def test_tier_mapping():
    assert tier_for_plan(None) == AdmissionTier.UNAUTHENTICATED
    assert tier_for_plan(PlanTier.FREE) == AdmissionTier.FREE
    assert tier_for_plan(PlanTier.TRIAL) == AdmissionTier.PAID
    assert tier_for_plan(PlanTier.ENTERPRISE) == AdmissionTier.PAID


def test_blocks_after_ceiling_with_retry_after():
    clock = FakeClock()
    controller = _controller(clock)
    for _ in range(3):
        controller.check("10.0.0.1", AdmissionTier.FREE)

    clock.now += 20
    with pytest.raises(RateLimitError) as exc_info:
        controller.check("10.0.0.1", AdmissionTier.FREE)

    err = exc_info.value
    assert err.status_code == 429
    assert err.retry_after == 40
    assert err.headers()["Retry-After"] == "40"
    assert err.headers()["X-RateLimit-Limit"] == "3"
    assert ratelimit_block_total.value(labels={"tier": "free"}) == 1


def test_window_resets_after_expiry():
    clock = FakeClock()
    controller = _controller(clock)
    for _ in range(3):
        controller.check("10.0.0.1", AdmissionTier.FREE)

    clock.now += 60
    controller.check("10.0.0.1", AdmissionTier.FREE)


def test_tiers_are_counted_separately():
    clock = FakeClock()
    controller = _controller(clock)
    for _ in range(2):
        controller.check("10.0.0.1", AdmissionTier.UNAUTHENTICATED)

    with pytest.raises(RateLimitError):
        controller.check("10.0.0.1", AdmissionTier.UNAUTHENTICATED)

    # Same address, other tiers still open
    controller.check("10.0.0.1", AdmissionTier.FREE)
    controller.check("10.0.0.1", AdmissionTier.PAID)


def test_clients_are_counted_separately():
    clock = FakeClock()
    controller = _controller(clock, free=(1, 60))
    controller.check("10.0.0.1", AdmissionTier.FREE)
    controller.check("10.0.0.2", AdmissionTier.FREE)
    with pytest.raises(RateLimitError):
        controller.check("10.0.0.1", AdmissionTier.FREE)


def test_unauthenticated_message():
    controller = _controller(FakeClock(), unauth=(1, 3600))
    controller.check("ip", AdmissionTier.UNAUTHENTICATED)
    with pytest.raises(RateLimitError) as exc_info:
        controller.check("ip", AdmissionTier.UNAUTHENTICATED)
    assert "authentication attempts" in exc_info.value.message
    assert exc_info.value.retry_after == 3600


def test_disabled_controller_never_blocks():
    controller = _controller(FakeClock(), free=(1, 60), enabled=False)
    for _ in range(5):
        controller.check("ip", AdmissionTier.FREE)


def test_check_plan_uses_plan_tier():
    controller = _controller(FakeClock(), free=(1, 60))
    controller.check_plan("ip", PlanTier.FREE)
    controller.check_plan("ip", PlanTier.TRIAL)
    with pytest.raises(RateLimitError):
        controller.check_plan("ip", PlanTier.FREE)


def test_reset_clears_windows():
    controller = _controller(FakeClock(), free=(1, 60))
    controller.check("ip", AdmissionTier.FREE)
    controller.reset()
    controller.check("ip", AdmissionTier.FREE)


def test_build_config_from_settings():
    cfg = Settings(RATE_LIMIT_ENABLED=False, RATE_LIMIT_FREE_MAX=7, RATE_LIMIT_FREE_WINDOW_SECONDS=30)
    config = build_admission_config(cfg)
    assert config.enabled is False
    assert config.policies[AdmissionTier.FREE] == TierPolicy(max_requests=7, window_seconds=30)
    assert config.policies[AdmissionTier.UNAUTHENTICATED] == TierPolicy(max_requests=10, window_seconds=3600)
    assert config.trust_forwarded_for is False
    assert build_admission_config(Settings(TRUST_FORWARDED_FOR=True)).trust_forwarded_for is True


def test_expired_windows_are_pruned():
    clock = FakeClock()
    controller = _controller(clock, free=(1, 60))
    limiter = controller.limiters[AdmissionTier.FREE]
    for i in range(50):
        controller.check(f"10.0.0.{i}", AdmissionTier.FREE)
    assert len(limiter.windows) == 50

    clock.now += 61
    controller.check("10.0.1.1", AdmissionTier.FREE)

    assert list(limiter.windows) == ["free:10.0.1.1"]


def _request(forwarded=None, peer="192.0.2.10"):
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers, "client": (peer, 51000)})


def test_client_key_uses_socket_peer_by_default():
    assert client_key_for(_request("203.0.113.7")) == "192.0.2.10"
    assert _controller(FakeClock()).client_key(_request("203.0.113.7")) == "192.0.2.10"


def test_client_key_uses_first_forwarded_hop_when_trusted():
    request = _request("203.0.113.7, 10.0.0.1")
    assert client_key_for(request, trust_forwarded_for=True) == "203.0.113.7"
    assert client_key_for(_request(), trust_forwarded_for=True) == "192.0.2.10"
