import threading

from clarifier.errors import StoreError
from clarifier.memory import MemoryStore, UsageStore
from clarifier.rate_limiter import RateLimiter, RateLimitResult, normalize_tier, rate_limit_headers
from tests.memory.base import MemoryStoreTestCase


def _set_usage(store: MemoryStore, user_id: str, count: int, tier: str = "free") -> None:
    with store.transaction():
        store.execute(
            """
            INSERT INTO usage_profiles (user_id, usage_count, tier, created_at, updated_at)
            VALUES (?, ?, ?, 'now', 'now')
            ON CONFLICT(user_id) DO UPDATE SET usage_count = excluded.usage_count, tier = excluded.tier
            """,
            (user_id, count, tier),
        )


class _BrokenUsageStore:
    def __init__(self):
        self.calls = 0

    def get_profile(self, user_id):
        self.calls += 1
        raise StoreError("database is locked")

    def create_profile(self, user_id, tier="free"):
        self.calls += 1
        raise StoreError("database is locked")

    def increment(self, user_id, tier="free"):
        self.calls += 1
        raise StoreError("database is locked")


class RateLimiterTests(MemoryStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._limiter = RateLimiter(self._usage, {"free": 10, "pro": 999999})

    def test_free_user_at_quota_is_denied(self) -> None:
        _set_usage(self._store, "u1", 10)
        result = self._limiter.check_rate_limit("u1")
        self.assertEqual(RateLimitResult(allowed=False, remaining=0, limit=10, tier="free"), result)

    def test_free_user_under_quota_is_allowed(self) -> None:
        _set_usage(self._store, "u1", 5)
        result = self._limiter.check_rate_limit("u1")
        self.assertTrue(result.allowed)
        self.assertEqual(5, result.remaining)

    def test_pro_user_has_effectively_unlimited_quota(self) -> None:
        _set_usage(self._store, "u1", 500, "pro")
        result = self._limiter.check_rate_limit("u1")
        self.assertTrue(result.allowed)
        self.assertEqual(999499, result.remaining)
        self.assertEqual("pro", result.tier)

    def test_legacy_premium_tier_counts_as_pro(self) -> None:
        _set_usage(self._store, "u1", 20, "premium")
        result = self._limiter.check_rate_limit("u1")
        self.assertTrue(result.allowed)
        self.assertEqual("pro", result.tier)

    def test_unknown_tier_gets_free_quota(self) -> None:
        _set_usage(self._store, "u1", 3, "enterprise-trial")
        self.assertEqual(10, self._limiter.check_rate_limit("u1").limit)
        self.assertEqual(10, self._limiter.get_tier_limit("mystery"))
        self.assertEqual(10, self._limiter.get_tier_limit(None))

    def test_over_quota_never_reports_negative_remaining(self) -> None:
        _set_usage(self._store, "u1", 14)
        self.assertEqual(0, self._limiter.check_rate_limit("u1").remaining)

    def test_first_check_creates_profile(self) -> None:
        result = self._limiter.check_rate_limit("new-user")
        self.assertEqual(RateLimitResult(allowed=True, remaining=10, limit=10, tier="free"), result)
        self.assertEqual(0, self._usage.get_profile("new-user").usage_count)

    def test_empty_user_id_is_denied_without_store_access(self) -> None:
        broken = _BrokenUsageStore()
        limiter = RateLimiter(broken)
        self.assertFalse(limiter.check_rate_limit("  ").allowed)
        self.assertEqual("Invalid user id", limiter.increment_usage("").error)
        self.assertEqual(0, broken.calls)

    def test_store_failure_denies_conservatively(self) -> None:
        limiter = RateLimiter(_BrokenUsageStore())
        result = limiter.check_rate_limit("u1")
        self.assertEqual(RateLimitResult(allowed=False, remaining=0, limit=0, tier="free"), result)

    def test_increment_failure_is_reported_not_raised(self) -> None:
        update = RateLimiter(_BrokenUsageStore()).increment_usage("u1")
        self.assertIsNone(update.profile)
        self.assertIn("database is locked", update.error)

    def test_increment_creates_missing_profile_at_one(self) -> None:
        update = self._limiter.increment_usage("u1")
        self.assertIsNone(update.error)
        self.assertEqual(1, update.profile.usage_count)

    def test_concurrent_increments_are_not_lost(self) -> None:
        workers = 25
        barrier = threading.Barrier(workers)
        errors: list[str] = []

        def _bump() -> None:
            barrier.wait()
            update = self._limiter.increment_usage("busy-user")
            if update.error:
                errors.append(update.error)

        threads = [threading.Thread(target=_bump) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual([], errors)
        self.assertEqual(workers, self._usage.get_profile("busy-user").usage_count)

    def test_concurrent_increments_across_connections(self) -> None:
        second_store = MemoryStore(str(self._tmp_dir / "clarifier.db"))
        self.addCleanup(second_store.close)
        limiters = [self._limiter, RateLimiter(UsageStore(second_store))]
        rounds = 10

        def _bump(limiter: RateLimiter) -> None:
            for _ in range(rounds):
                limiter.increment_usage("shared-user")

        threads = [threading.Thread(target=_bump, args=(limiter,)) for limiter in limiters]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(rounds * len(limiters), self._usage.get_profile("shared-user").usage_count)


class RateLimitHelpersTests(MemoryStoreTestCase):
    def test_headers_carry_quota_and_retry_after(self) -> None:
        headers = rate_limit_headers(RateLimitResult(allowed=False, remaining=0, limit=10, tier="free"))
        self.assertEqual(
            {
                "X-RateLimit-Limit": "10",
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Tier": "free",
                "Retry-After": "86400",
            },
            headers,
        )

    def test_normalize_tier(self) -> None:
        self.assertEqual("pro", normalize_tier("Premium"))
        self.assertEqual("free", normalize_tier(""))
        self.assertEqual("pro", normalize_tier(" PRO "))

    def test_default_tier_must_have_limit(self) -> None:
        with self.assertRaises(ValueError):
            RateLimiter(self._usage, {"pro": 5}, default_tier="free")
