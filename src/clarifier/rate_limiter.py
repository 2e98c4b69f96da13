from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from clarifier.errors import StoreError
from clarifier.memory.models import UsageProfile
from clarifier.memory.usage_store import UsageStore

DEFAULT_TIER_LIMITS = {"free": 10, "pro": 999999}
DEFAULT_TIER = "free"
RETRY_AFTER_SECONDS = 86400

_TIER_ALIASES = {"premium": "pro"}


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    tier: str


@dataclass(frozen=True)
class UsageUpdate:
    profile: UsageProfile | None
    error: str | None


def normalize_tier(tier: str | None) -> str:
    value = (tier or "").strip().lower()
    return _TIER_ALIASES.get(value, value) or DEFAULT_TIER


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Tier": result.tier,
        "Retry-After": str(RETRY_AFTER_SECONDS),
    }


class RateLimiter:
    """Per-user session quota keyed by tier.

    Quotas are injected so tests and deployments can pick their own table.
    """

    def __init__(
        self,
        usage_store: UsageStore,
        tier_limits: dict[str, int] | None = None,
        default_tier: str = DEFAULT_TIER,
    ):
        self._usage = usage_store
        self._limits = {normalize_tier(k): int(v) for k, v in (tier_limits or DEFAULT_TIER_LIMITS).items()}
        self._default_tier = normalize_tier(default_tier)
        if self._default_tier not in self._limits:
            raise ValueError(f"Default tier {default_tier!r} has no configured limit")

    def get_tier_limit(self, tier: str | None) -> int:
        """Quota for ``tier``; unknown tiers get the default tier's quota."""
        return self._limits.get(normalize_tier(tier), self._limits[self._default_tier])

    def check_rate_limit(self, user_id: str) -> RateLimitResult:
        if not _valid_user_id(user_id):
            logger.warning("Rate limit check rejected: missing user id")
            return self._deny()

        try:
            profile = self._usage.get_profile(user_id)
            if profile is None:
                logger.info(f"Creating usage profile for user={user_id}")
                profile = self._usage.create_profile(user_id, self._default_tier)
        except StoreError as ex:
            logger.error(f"Rate limit check failed for user={user_id}, denying: {ex}")
            return self._deny()

        tier = normalize_tier(profile.tier)
        limit = self.get_tier_limit(tier)
        result = RateLimitResult(
            allowed=profile.usage_count < limit,
            remaining=max(0, limit - profile.usage_count),
            limit=limit,
            tier=tier,
        )
        logger.debug(
            f"Rate limit check: user={user_id}, tier={tier}, usage={profile.usage_count}/{limit}, "
            f"allowed={result.allowed}"
        )
        return result

    def increment_usage(self, user_id: str) -> UsageUpdate:
        if not _valid_user_id(user_id):
            return UsageUpdate(profile=None, error="Invalid user id")
        try:
            profile = self._usage.increment(user_id, self._default_tier)
        except StoreError as ex:
            logger.error(f"Usage increment failed for user={user_id}: {ex}")
            return UsageUpdate(profile=None, error=str(ex))
        logger.info(f"Usage incremented: user={user_id}, usage_count={profile.usage_count}")
        return UsageUpdate(profile=profile, error=None)

    def _deny(self) -> RateLimitResult:
        return RateLimitResult(allowed=False, remaining=0, limit=0, tier=self._default_tier)


def _valid_user_id(user_id: str) -> bool:
    return isinstance(user_id, str) and bool(user_id.strip())
