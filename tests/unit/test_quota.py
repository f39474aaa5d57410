from jobpilot.core.quota import QuotaLimiter


def test_memory_window_counts_only_allowed_calls():
    limiter = QuotaLimiter(use_redis=False)

    assert limiter.allow("quota:hunter:domain_search", 2, 60) is True
    assert limiter.allow("quota:hunter:domain_search", 2, 60) is True
    assert limiter.allow("quota:hunter:domain_search", 2, 60) is False
    assert limiter.allow("quota:hunter:domain_search", 3, 60) is True
    assert limiter.allow("quota:hunter:domain_search", 3, 60) is False


def test_non_positive_limit_disables_metering():
    limiter = QuotaLimiter(use_redis=False)
    assert all(limiter.allow("k", 0, 60) for _ in range(5))


def test_unreachable_redis_falls_back_to_memory():
    limiter = QuotaLimiter("redis://127.0.0.1:1/0")
    assert limiter.allow("k", 1, 60) is True
    assert limiter.allow("k", 1, 60) is False
