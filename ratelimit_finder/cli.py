# ratelimit_finder/cli.py
from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from typing import Callable, List, Optional

from .controller import (DEFAULT_COOLDOWN, DEFAULT_START_RATE, DEFAULT_STEP,
                         EscalationController, Phase)
from .prober import (DEFAULT_DURATION, DEFAULT_REQUEST_TIMEOUT, METHODS, TICK_INTERVAL,
                     TrialConfig, TrialResult, run_trial)

logger = logging.getLogger(__name__)

USAGE = "Usage: ratelimit-finder -url <target-url> [-method GET|POST] [-data 'key=value']"

EXIT_FOUND = 0
EXIT_NO_URL = 1
EXIT_CEILING = 3
EXIT_INTERRUPTED = 130


def env(name: str, default=None):
    return os.environ.get(f"RATELIMIT_{name}", default)


def positive_int(v: str) -> int:
    n = int(v)
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {v}")
    return n


def positive_float(v: str) -> float:
    x = float(v)
    if x <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {v}")
    return x


def non_negative_float(v: str) -> float:
    x = float(v)
    if x < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {v}")
    return x


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="ratelimit-finder", allow_abbrev=False,
                                description="Find the request rate at which an endpoint starts answering 429")
    p.add_argument("-url", "--url", default=env("URL", ""), help="target URL to test for rate limiting")
    p.add_argument("-method", "--method", type=str.upper, choices=METHODS, default=env("METHOD", "GET").upper(),
                   help="HTTP method to use: GET or POST")
    p.add_argument("-data", "--data", default=env("DATA", ""), help="POST data to send (used only if method is POST)")
    p.add_argument("--start-rate", type=positive_int, default=env("START_RATE", DEFAULT_START_RATE))
    p.add_argument("--step", type=positive_int, default=env("STEP", DEFAULT_STEP))
    p.add_argument("--duration", type=positive_float, default=env("DURATION", DEFAULT_DURATION),
                   help="seconds per trial")
    p.add_argument("--cooldown", type=non_negative_float, default=env("COOLDOWN", DEFAULT_COOLDOWN),
                   help="seconds to wait between trials")
    p.add_argument("--timeout", type=positive_float, default=env("TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
                   help="per-request timeout in seconds")
    p.add_argument("--max-rate", type=positive_int, default=env("MAX_RATE"),
                   help="stop escalating past this rate (default: no ceiling)")
    p.add_argument("-v", "--verbose", action="store_true")
    a = p.parse_args(argv)
    if a.method not in METHODS:
        p.error(f"unsupported method: {a.method}")
    if a.max_rate is not None and a.max_rate < a.start_rate:
        p.error("--max-rate must not be below --start-rate")
    return a


def main(argv: Optional[List[str]] = None,
         prober: Callable[[TrialConfig], TrialResult] = run_trial,
         sleep: Callable[[float], None] = time.sleep) -> int:
    a = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if a.verbose else logging.WARNING,
                        format="%(asctime)s - %(levelname)s - %(message)s")

    if not a.url:
        print("Error: URL parameter is required")
        print(USAGE)
        return EXIT_NO_URL

    template = TrialConfig(url=a.url, workers=a.start_rate, method=a.method,
                           body=a.data if a.method == "POST" else None,
                           duration=a.duration, interval=TICK_INTERVAL, request_timeout=a.timeout)
    if a.max_rate is None:
        logger.warning("no --max-rate given; escalation continues until the target throttles")

    ctl = EscalationController(template, prober=prober, start_rate=a.start_rate, step=a.step,
                               cooldown=a.cooldown, max_rate=a.max_rate, sleep=sleep)
    print(f"Starting rate limit detection for {a.url} using {a.method}")
    try:
        outcome = ctl.run()
    except KeyboardInterrupt:
        print("Interrupted by user.")
        return EXIT_INTERRUPTED
    if outcome.state.phase is Phase.EXHAUSTED:
        return EXIT_CEILING
    return EXIT_FOUND


if __name__ == "__main__":
    sys.exit(main())
