"""Tests for the in-memory rate limiter and login lockout."""

import asyncio

import pytest

from waitlist.services.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    rate_limit_cleanup_loop,
)


def make_limiter(clock, **overrides) -> RateLimiter:
    config = RateLimitConfig(**overrides)
    return RateLimiter(config, clock=clock)


class TestWindows:
    @pytest.fixture
    def clock(self, fake_clock):
        return fake_clock

    def test_api_limit_blocks_after_ceiling(self, clock):
        limiter = make_limiter(clock, api_max_requests=3, api_window_seconds=60)

        results = [limiter.check_api_rate_limit("10.0.0.1") for _ in range(4)]

        assert results == [True, True, True, False]

    def test_window_resets_after_elapsed(self, clock):
        limiter = make_limiter(clock, api_max_requests=1, api_window_seconds=60)
        assert limiter.check_api_rate_limit("10.0.0.1") is True
        assert limiter.check_api_rate_limit("10.0.0.1") is False

        clock.advance(60)

        assert limiter.check_api_rate_limit("10.0.0.1") is True

    def test_ips_are_independent(self, clock):
        limiter = make_limiter(clock, api_max_requests=1)

        assert limiter.check_api_rate_limit("10.0.0.1") is True
        assert limiter.check_api_rate_limit("10.0.0.2") is True
        assert limiter.check_api_rate_limit("10.0.0.1") is False

    def test_signup_window_is_separate_from_api(self, clock):
        limiter = make_limiter(clock, api_max_requests=1, signup_max_requests=2)

        assert limiter.check_api_rate_limit("10.0.0.1") is True
        assert limiter.check_api_rate_limit("10.0.0.1") is False
        assert limiter.check_signup_rate_limit("10.0.0.1") is True
        assert limiter.check_signup_rate_limit("10.0.0.1") is True
        assert limiter.check_signup_rate_limit("10.0.0.1") is False


class TestLoginLockout:
    @pytest.fixture
    def clock(self, fake_clock):
        return fake_clock

    @pytest.fixture
    def limiter(self, clock):
        return make_limiter(
            clock,
            login_max_attempts=3,
            login_window_seconds=900,
            login_lock_base_seconds=30,
            login_lock_max_seconds=120,
        )

    def test_locks_after_max_attempts(self, limiter):
        assert limiter.note_failed_login("1.2.3.4") == 0
        assert limiter.note_failed_login("1.2.3.4") == 0
        assert limiter.check_login_allowed("1.2.3.4").ok is True

        assert limiter.note_failed_login("1.2.3.4") == 30

        check = limiter.check_login_allowed("1.2.3.4")
        assert check.ok is False
        assert check.retry_after_seconds == 30

    def test_retry_after_counts_down_and_rounds_up(self, limiter, clock):
        for _ in range(3):
            limiter.note_failed_login("1.2.3.4")

        clock.advance(29.5)

        check = limiter.check_login_allowed("1.2.3.4")
        assert check.ok is False
        assert check.retry_after_seconds == 1

    def test_lock_expires(self, limiter, clock):
        for _ in range(3):
            limiter.note_failed_login("1.2.3.4")

        clock.advance(30)

        assert limiter.check_login_allowed("1.2.3.4").ok is True

    def test_lock_durations_escalate_to_cap(self, limiter, clock):
        """Each lock cycle doubles the lock until the cap, then stays there."""
        durations = []
        for _ in range(5):
            lock = 0
            for _ in range(3):
                lock = limiter.note_failed_login("1.2.3.4")
            durations.append(lock)
            clock.advance(lock)

        assert durations == [30, 60, 120, 120, 120]
        assert all(a <= b for a, b in zip(durations, durations[1:]))

    def test_level_kept_until_quiet_window_after_lock(self, limiter, clock):
        for _ in range(3):
            limiter.note_failed_login("1.2.3.4")
        clock.advance(900)

        for _ in range(2):
            assert limiter.note_failed_login("1.2.3.4") == 0
        assert limiter.note_failed_login("1.2.3.4") == 60

    def test_failures_while_locked_do_not_count(self, limiter):
        for _ in range(3):
            limiter.note_failed_login("1.2.3.4")

        remaining = limiter.note_failed_login("1.2.3.4")

        assert remaining == 30
        assert limiter.lock_duration(2) == 60

    def test_escalation_resets_after_quiet_window(self, limiter, clock):
        for _ in range(3):
            limiter.note_failed_login("1.2.3.4")
        clock.advance(30 + 900)

        assert limiter.note_failed_login("1.2.3.4") == 0
        assert limiter.note_failed_login("1.2.3.4") == 0
        assert limiter.note_failed_login("1.2.3.4") == 30

    def test_reset_login_attempts_clears_counter(self, limiter):
        limiter.note_failed_login("1.2.3.4")
        limiter.note_failed_login("1.2.3.4")

        limiter.reset_login_attempts("1.2.3.4")

        assert limiter.note_failed_login("1.2.3.4") == 0
        assert limiter.note_failed_login("1.2.3.4") == 0
        assert limiter.check_login_allowed("1.2.3.4").ok is True

    def test_lock_duration_does_not_overflow(self, limiter):
        assert limiter.lock_duration(0) == 0
        assert limiter.lock_duration(10_000) == 120


class TestDefaultLockout:
    """Lockout with the shipped settings, where the cap equals the window."""

    IP = "198.51.100.7"

    def _lock_cycle(self, limiter, attempts) -> int:
        lock = 0
        for _ in range(attempts):
            lock = limiter.note_failed_login(self.IP)
        return lock

    def test_defaults_put_cap_at_window_length(self, rate_limiter):
        config = rate_limiter.config
        assert config.login_lock_max_seconds >= config.login_window_seconds

    def test_durations_stay_at_cap(self, rate_limiter, fake_clock):
        attempts = rate_limiter.config.login_max_attempts
        cap = rate_limiter.config.login_lock_max_seconds

        durations = []
        for _ in range(9):
            lock = self._lock_cycle(rate_limiter, attempts)
            durations.append(lock)
            fake_clock.advance(lock)

        assert durations == [30, 60, 120, 240, 480, 900, 900, 900, 900]
        assert durations[-3:] == [cap] * 3

    def test_sweep_keeps_entry_when_capped_lock_just_expired(self, rate_limiter, fake_clock):
        attempts = rate_limiter.config.login_max_attempts
        for _ in range(6):
            fake_clock.advance(self._lock_cycle(rate_limiter, attempts))

        assert rate_limiter.check_login_allowed(self.IP).ok is True
        assert rate_limiter.sweep() == 0
        assert rate_limiter.get_stats()["login"] == 1
        assert self._lock_cycle(rate_limiter, attempts) == 900

    def test_sweep_drops_entry_after_quiet_window(self, rate_limiter, fake_clock):
        attempts = rate_limiter.config.login_max_attempts
        fake_clock.advance(self._lock_cycle(rate_limiter, attempts))
        fake_clock.advance(rate_limiter.config.login_window_seconds)

        assert rate_limiter.sweep() == 1
        assert self._lock_cycle(rate_limiter, attempts) == 30


class TestHousekeeping:
    @pytest.fixture
    def clock(self, fake_clock):
        return fake_clock

    def test_sweep_removes_expired_windows(self, clock):
        limiter = make_limiter(clock, api_window_seconds=60, login_window_seconds=900)
        limiter.check_api_rate_limit("10.0.0.1")
        limiter.note_failed_login("10.0.0.2")

        clock.advance(61)
        assert limiter.sweep() == 1
        assert limiter.get_stats()["api"] == 0
        assert limiter.get_stats()["login"] == 1

        clock.advance(900)
        assert limiter.sweep() == 1
        assert limiter.get_stats()["login"] == 0

    def test_sweep_keeps_active_locks(self, clock):
        limiter = make_limiter(
            clock,
            login_max_attempts=1,
            login_window_seconds=10,
            login_lock_base_seconds=100,
            login_lock_max_seconds=100,
        )
        limiter.note_failed_login("10.0.0.1")

        clock.advance(50)

        assert limiter.sweep() == 0
        assert limiter.check_login_allowed("10.0.0.1").ok is False

    def test_entries_are_bounded(self, clock):
        limiter = make_limiter(clock, max_entries=100)

        for i in range(250):
            limiter.check_api_rate_limit(f"10.0.{i // 256}.{i % 256}")

        assert limiter.get_stats()["api"] == 100

    def test_reset_clears_everything(self, clock):
        limiter = make_limiter(clock, api_max_requests=1)
        limiter.check_api_rate_limit("10.0.0.1")
        limiter.note_failed_login("10.0.0.1")

        limiter.reset()

        assert limiter.get_stats() == {"api": 0, "signup": 0, "login": 0, "locked": 0}
        assert limiter.check_api_rate_limit("10.0.0.1") is True

    @pytest.mark.asyncio
    async def test_cleanup_loop_sweeps_and_stops_on_cancel(self, clock):
        limiter = make_limiter(clock, api_window_seconds=1)
        limiter.check_api_rate_limit("10.0.0.1")
        clock.advance(5)

        task = asyncio.create_task(rate_limit_cleanup_loop(limiter, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert limiter.get_stats()["api"] == 0
        assert task.done()
