"""In-memory fixed-window rate limiting with escalating login lockout.

Designed for single-instance deployments: state lives in process memory and
is not shared between workers. One ``RateLimiter`` is constructed per
application and injected into handlers through ``app.state``.
"""

import asyncio
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from waitlist.core.config import Settings
from waitlist.core.logging import get_logger

logger = get_logger("rate_limiter")


@dataclass
class RateLimitConfig:
    """Limits for every window family."""

    api_max_requests: int = 60
    api_window_seconds: float = 60.0
    signup_max_requests: int = 5
    signup_window_seconds: float = 600.0
    login_max_attempts: int = 5
    login_window_seconds: float = 900.0
    login_lock_base_seconds: float = 30.0
    login_lock_max_seconds: float = 900.0
    max_entries: int = 10000

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitConfig":
        return cls(
            api_max_requests=settings.api_rate_limit_requests,
            api_window_seconds=settings.api_rate_limit_window_seconds,
            signup_max_requests=settings.signup_rate_limit_requests,
            signup_window_seconds=settings.signup_rate_limit_window_seconds,
            login_max_attempts=settings.login_max_attempts,
            login_window_seconds=settings.login_window_seconds,
            login_lock_base_seconds=settings.login_lock_base_seconds,
            login_lock_max_seconds=settings.login_lock_max_seconds,
            max_entries=settings.rate_limit_max_entries,
        )


@dataclass
class RateLimitWindow:
    """Fixed window counter for a single client IP."""

    window_start: float
    count: int = 0
    locked_until: float = 0.0
    lock_level: int = 0


@dataclass(frozen=True)
class LoginCheck:
    ok: bool
    retry_after_seconds: int = 0


class RateLimiter:
    """Per-IP fixed windows for API traffic, signups and login attempts.

    A window resets on the first hit after ``now - window_start`` reaches
    the window length. Login failures escalate: every time the failure count
    in a window reaches the threshold the lock level goes up by one and the
    IP is locked for ``base * 2**(level - 1)`` seconds, capped at the
    maximum.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._api: OrderedDict[str, RateLimitWindow] = OrderedDict()
        self._signup: OrderedDict[str, RateLimitWindow] = OrderedDict()
        self._login: OrderedDict[str, RateLimitWindow] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(RateLimitConfig.from_settings(settings))

    # --- general windows ---

    def _hit(
        self,
        table: OrderedDict[str, RateLimitWindow],
        key: str,
        max_requests: int,
        window_seconds: float,
    ) -> bool:
        now = self._clock()
        with self._lock:
            window = table.get(key)
            if window is None or now - window.window_start >= window_seconds:
                window = RateLimitWindow(window_start=now)
                table[key] = window
                table.move_to_end(key)
                self._enforce_bound(table, window_seconds, now)
            window.count += 1
            return window.count <= max_requests

    def check_api_rate_limit(self, ip: str) -> bool:
        """Count one API request; False once the window's ceiling is exceeded."""
        allowed = self._hit(
            self._api, ip, self.config.api_max_requests, self.config.api_window_seconds
        )
        if not allowed:
            logger.warning(f"API rate limit exceeded for {ip}")
        return allowed

    def check_signup_rate_limit(self, ip: str) -> bool:
        allowed = self._hit(
            self._signup,
            ip,
            self.config.signup_max_requests,
            self.config.signup_window_seconds,
        )
        if not allowed:
            logger.warning(f"Signup rate limit exceeded for {ip}")
        return allowed

    # --- login lockout ---

    def lock_duration(self, level: int) -> float:
        """Lock length for a given lock level (1-based), capped."""
        if level <= 0:
            return 0.0
        # Clamp the exponent so huge levels cannot overflow before the cap applies
        exponent = min(level - 1, 63)
        return min(
            self.config.login_lock_base_seconds * (2**exponent),
            self.config.login_lock_max_seconds,
        )

    def check_login_allowed(self, ip: str) -> LoginCheck:
        now = self._clock()
        with self._lock:
            window = self._login.get(ip)
            if window is not None and window.locked_until > now:
                remaining = max(1, math.ceil(window.locked_until - now))
                return LoginCheck(ok=False, retry_after_seconds=remaining)
        return LoginCheck(ok=True)

    def note_failed_login(self, ip: str) -> int:
        """Record a failed login. Returns the lock length in seconds, or 0."""
        now = self._clock()
        cfg = self.config
        with self._lock:
            window = self._login.get(ip)
            if window is None:
                window = RateLimitWindow(window_start=now)
                self._login[ip] = window
                self._enforce_bound(self._login, cfg.login_window_seconds, now)
            elif window.locked_until > now:
                # Already locked; attempts during a lock do not count
                return max(1, math.ceil(window.locked_until - now))
            elif now - window.window_start >= cfg.login_window_seconds:
                # Lock (if any) has expired and a new window starts
                window.window_start = now
                window.count = 0
                window.lock_level = 0
                window.locked_until = 0.0
            self._login.move_to_end(ip)

            window.count += 1
            if window.count < cfg.login_max_attempts:
                return 0

            window.lock_level += 1
            duration = self.lock_duration(window.lock_level)
            window.locked_until = now + duration
            # Quiet window is measured from the end of the lock
            window.window_start = window.locked_until
            window.count = 0
            logger.warning(
                f"Login locked for {ip}: level {window.lock_level}, {int(duration)}s"
            )
            return max(1, math.ceil(duration))

    def reset_login_attempts(self, ip: str) -> None:
        with self._lock:
            self._login.pop(ip, None)

    # --- housekeeping ---

    def _is_expired(self, window: RateLimitWindow, window_seconds: float, now: float) -> bool:
        return now - window.window_start >= window_seconds and window.locked_until <= now

    def _enforce_bound(
        self,
        table: OrderedDict[str, RateLimitWindow],
        window_seconds: float,
        now: float,
    ) -> None:
        """Keep a table within max_entries (caller holds the lock).

        Expired windows go first; if that is not enough the least recently
        touched entries are evicted.
        """
        if len(table) <= self.config.max_entries:
            return
        for key in [k for k, w in table.items() if self._is_expired(w, window_seconds, now)]:
            del table[key]
        while len(table) > self.config.max_entries:
            table.popitem(last=False)

    def sweep(self) -> int:
        """Remove expired windows from every table. Returns count removed."""
        now = self._clock()
        cfg = self.config
        removed = 0
        with self._lock:
            for table, window_seconds in (
                (self._api, cfg.api_window_seconds),
                (self._signup, cfg.signup_window_seconds),
                (self._login, cfg.login_window_seconds),
            ):
                expired = [k for k, w in table.items() if self._is_expired(w, window_seconds, now)]
                for key in expired:
                    del table[key]
                removed += len(expired)
        return removed

    def reset(self) -> None:
        with self._lock:
            self._api.clear()
            self._signup.clear()
            self._login.clear()

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "api": len(self._api),
                "signup": len(self._signup),
                "login": len(self._login),
                "locked": sum(1 for w in self._login.values() if w.locked_until > self._clock()),
            }


async def rate_limit_cleanup_loop(rate_limiter: RateLimiter, interval_seconds: float) -> None:
    """Periodic sweep of expired rate limit windows to bound memory."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            removed = rate_limiter.sweep()
            if removed > 0:
                logger.debug(f"Rate limiter cleanup: removed {removed} expired windows")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Rate limiter cleanup error: {e}")
