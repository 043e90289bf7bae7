# ratelimit_finder/prober.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_DURATION = 15.0
DEFAULT_REQUEST_TIMEOUT = 10.0
TICK_INTERVAL = 1.0

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
METHODS = ("GET", "POST")


@dataclass(frozen=True)
class TrialConfig:
    url: str
    workers: int
    method: str = "GET"
    body: Optional[str] = None
    duration: float = DEFAULT_DURATION
    interval: float = TICK_INTERVAL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def __post_init__(self):
        if self.method not in METHODS:
            raise ValueError(f"unsupported method: {self.method}")
        if self.workers <= 0:
            raise ValueError("workers must be positive")
        if self.duration <= 0 or self.interval <= 0 or self.request_timeout <= 0:
            raise ValueError("duration/interval/request_timeout must be positive")


@dataclass
class TrialResult:
    success: int = 0
    throttled: int = 0
    other_errors: int = 0
    elapsed: float = field(default=0.0, compare=False)

    @property
    def total(self) -> int:
        return self.success + self.throttled + self.other_errors

    @property
    def achieved_rate(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return self.total / self.elapsed

    def record(self, status: Optional[int]) -> None:
        """Count one outcome. ``None`` stands for a request that never got a status."""
        if status == 200:
            self.success += 1
        elif status == 429:
            self.throttled += 1
        else:
            self.other_errors += 1

    def merge(self, other: "TrialResult") -> None:
        self.success += other.success
        self.throttled += other.throttled
        self.other_errors += other.other_errors


def send_request(session: requests.Session, config: TrialConfig, worker: int = 0) -> Optional[int]:
    """Fire one request and return its status, or None on build/transport failure."""
    try:
        kwargs = {"timeout": config.request_timeout, "stream": True}
        if config.method == "POST":
            # surrogateescape gives back the raw argv bytes
            kwargs["data"] = (config.body or "").encode("utf-8", "surrogateescape")
            kwargs["headers"] = {"Content-Type": FORM_CONTENT_TYPE}
        with session.request(config.method, config.url, **kwargs) as r:
            return r.status_code
    except (requests.RequestException, ValueError) as e:
        # urllib3's LocationParseError is a ValueError, not a RequestException
        logger.debug("worker %d: request to %s failed: %s", worker, config.url, e)
        return None


def _worker(i: int, config: TrialConfig, deadline: float, out: List[TrialResult]) -> None:
    counts = TrialResult()
    next_tick = time.monotonic() + config.interval
    logger.debug("worker %d started", i)
    try:
        with requests.Session() as session:
            while True:
                wait = min(next_tick, deadline) - time.monotonic()
                if wait > 0:
                    time.sleep(wait)
                if time.monotonic() >= deadline:
                    break
                counts.record(send_request(session, config, i))
                next_tick += config.interval
                now = time.monotonic()
                # missed ticks collapse into one immediate tick
                if next_tick < now:
                    next_tick = now
    except Exception:
        logger.exception("worker %d stopped early", i)
    finally:
        out[i] = counts
        logger.debug("worker %d done: %d requests", i, counts.total)


def run_trial(config: TrialConfig) -> TrialResult:
    """
    Run one fixed-duration burst at ``config.workers`` requests per second.

    Every worker ticks once per ``config.interval`` until the shared deadline.
    Counts are kept per worker and merged after all of them have been joined,
    so the returned totals are exact and frozen.
    """
    start = time.monotonic()
    deadline = start + config.duration
    partials: List[TrialResult] = [TrialResult() for _ in range(config.workers)]

    th = [threading.Thread(target=_worker, args=(i, config, deadline, partials), daemon=True)
          for i in range(config.workers)]
    for t in th:
        t.start()
    for t in th:
        t.join()

    result = TrialResult()
    for p in partials:
        result.merge(p)
    result.elapsed = time.monotonic() - start
    logger.debug("trial at %d workers finished in %.2fs", config.workers, result.elapsed)
    return result
