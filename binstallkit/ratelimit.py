"""Client-side request throttling and per-host back-off after server rate limits."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any, TypeVar
from urllib.parse import urlsplit

log = logging.getLogger(__name__)

T = TypeVar("T")

_PER_GROWTH_LIMIT = 0.7
_PER_GROWTH_FACTOR = 1.2
_BASE_SERVER_DELAY = 0.2
_STEP_SERVER_DELAY = 0.1
_MAX_SERVER_DELAY_STEPS = 20

_NOTHING = object()


def dedup_consecutive(items: Iterable[T]) -> Iterator[T]:
    """Yield items, dropping runs of equal consecutive values."""
    previous: Any = _NOTHING
    for item in items:
        if previous is _NOTHING or item != previous:
            yield item
            previous = item


def _host_of(url: object) -> str | None:
    return urlsplit(str(url)).hostname


class RateLimiter:
    """Allows at most `num_request` requests per `per` seconds.

    `remaining` is None while the limiter is exhausted.
    """

    def __init__(
        self, num_request: int, per: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        if num_request < 1:
            raise ValueError("num_request must be at least 1")
        if per <= 0:
            raise ValueError("per must be positive")
        self._clock = clock
        self.num_request = num_request
        self.per = float(per)
        self.until = clock() + self.per
        self.remaining: int | None = num_request

    @property
    def limited(self) -> bool:
        return self.remaining is None

    def inc_rate_limit(self) -> None:
        """Tighten the limit: halve the request budget and stretch short periods."""
        halved = self.num_request // 2
        if halved > 0:
            self.num_request = halved
            if self.remaining is not None:
                self.remaining = min(halved, self.remaining)

        per = self.per
        if per < _PER_GROWTH_LIMIT:
            self.per = per * _PER_GROWTH_FACTOR
            self.until += self.per - per

    def ready(self) -> float | None:
        """Return None if a request may be sent now, else the time to wait until."""
        if self.remaining is not None:
            return None
        now = self._clock()
        if now <= self.until:
            return self.until
        self.until = now + self.per
        self.remaining = self.num_request
        return None

    def acquire(self) -> None:
        """Consume one request permit; `ready()` must have returned None first."""
        if self.remaining is None:
            raise RuntimeError("service not ready; ready() must be checked first")

        now = self._clock()
        if now >= self.until:
            self.until = now + self.per
            self.remaining = self.num_request

        if self.remaining - 1 > 0:
            self.remaining -= 1
        else:
            self.remaining = None


class DelayRequest:
    """Sends requests through `send`, honouring both client and server rate limits.

    A request is any object with a `url` attribute.
    """

    def __init__(
        self,
        num_request: int,
        per: float,
        send: Callable[[Any], T],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._limiter = RateLimiter(num_request, per, clock)
        self._send = send
        self._clock = clock
        self._sleep = sleep
        self._limiter_lock = threading.Lock()
        self._hosts_lock = threading.Lock()
        self._hosts_to_delay: dict[str, float] = {}

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def delayed_hosts(self) -> dict[str, float]:
        with self._hosts_lock:
            return dict(self._hosts_to_delay)

    def add_urls_to_delay(self, urls: Iterable[object], delay: float) -> None:
        """Hold back further requests to the hosts of `urls` for `delay` seconds."""
        deadline = self._clock() + delay
        hosts = dedup_consecutive(h for h in map(_host_of, urls) if h is not None)
        with self._hosts_lock:
            for host in hosts:
                old = self._hosts_to_delay.get(host)
                self._hosts_to_delay[host] = deadline if old is None else max(old, deadline)

    def get_delay_until(self, host: str) -> float | None:
        """Return the deadline for `host`, dropping it once it has passed."""
        with self._hosts_lock:
            until = self._hosts_to_delay.get(host)
            if until is None:
                return None
            if self._clock() <= until:
                return until
            del self._hosts_to_delay[host]
            return None

    def call(self, request: Any) -> Any:
        """Wait as the limits require, then send `request`."""
        counter = 0
        host = _host_of(request.url)
        while True:
            with self._limiter_lock:
                wait_until = self._limiter.ready()
                if wait_until is None:
                    server_until = self.get_delay_until(host) if host is not None else None
                    if server_until is None:
                        self._limiter.acquire()
                        break
                    # Tighten the client side too so the server limit is hit less often.
                    self._limiter.inc_rate_limit()
                    extra = _BASE_SERVER_DELAY + _STEP_SERVER_DELAY * min(
                        _MAX_SERVER_DELAY_STEPS, counter
                    )
                    counter += 1
                    log.debug("server-side rate limit exceeded; sleeping.")
                    wait_until = server_until + extra
            self._sleep(max(0.0, wait_until - self._clock()))
        return self._send(request)