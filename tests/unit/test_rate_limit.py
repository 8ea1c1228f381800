import pytest

from app.core.rate_limit import InMemoryRateLimiter, RateLimitRule


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_rate_limiter_blocks_after_limit() -> None:
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(limit=2, window_seconds=60)

    assert await limiter.allow("guest_g1", rule)
    assert await limiter.allow("guest_g1", rule)
    assert not await limiter.allow("guest_g1", rule)


@pytest.mark.asyncio
async def test_rate_limiter_resets_after_window() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    rule = RateLimitRule(limit=1, window_seconds=10)

    assert await limiter.allow("user_42", rule)
    clock.now += 4
    assert await limiter.check("user_42", rule) == pytest.approx(6.0)

    clock.now += 6
    assert await limiter.allow("user_42", rule)


@pytest.mark.asyncio
async def test_window_slides_with_oldest_hit() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    rule = RateLimitRule(limit=2, window_seconds=10)

    assert await limiter.allow("guest_g1", rule)
    clock.now += 5
    assert await limiter.allow("guest_g1", rule)
    clock.now += 3
    assert await limiter.check("guest_g1", rule) == pytest.approx(2.0)

    clock.now += 2
    assert await limiter.allow("guest_g1", rule)
    assert not await limiter.allow("guest_g1", rule)


@pytest.mark.asyncio
async def test_rate_limiter_keys_are_independent() -> None:
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(limit=1, window_seconds=60)

    assert await limiter.allow("guest_g1", rule)
    assert await limiter.allow("guest_g2", rule)
    assert not await limiter.allow("guest_g1", rule)


@pytest.mark.asyncio
async def test_forget_drops_history_for_key() -> None:
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(limit=1, window_seconds=60)

    assert await limiter.allow("conn_abc", rule)
    assert not await limiter.allow("conn_abc", rule)

    await limiter.forget("conn_abc")
    assert limiter.tracked_keys() == 0
    assert await limiter.allow("conn_abc", rule)


@pytest.mark.asyncio
async def test_idle_keys_are_pruned_after_a_window() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    rule = RateLimitRule(limit=5, window_seconds=10)

    for guest_id in ("g1", "g2", "g3"):
        assert await limiter.allow(f"guest_{guest_id}", rule)
    assert limiter.tracked_keys() == 3

    clock.now += 11
    assert await limiter.allow("guest_g4", rule)

    assert limiter.tracked_keys() == 1
