# tests/target_app.py
from __future__ import annotations

import threading
import time
from typing import Dict, List

from flask import Flask, request, jsonify


class TokenBucket:
    """Refills ``rate`` tokens per second up to ``burst``; take() returns the wait, 0.0 when allowed."""

    def __init__(self, rate: float, burst: int):
        self.rate, self.burst = rate, burst
        self.tokens = float(burst)
        self.last = time.monotonic()

    def take(self) -> float:
        now = time.monotonic()
        self.tokens = min(self.burst, self.tokens + (now - self.last) * self.rate)
        self.last = now
        if self.tokens < 1.0:
            return (1.0 - self.tokens) / self.rate
        self.tokens -= 1.0
        return 0.0


def create_app(bucket_rate: float = 2.0, bucket_burst: int = 2) -> Flask:
    """
    Target endpoints for prober tests:
      /ok, /status/<code>, /slow/<seconds>, /limited (per-IP token bucket).
    Every hit is appended to ``app.config["SEEN"]``.
    """
    app = Flask(__name__)
    seen: List[Dict] = []
    lock = threading.Lock()
    buckets: Dict[str, TokenBucket] = {}
    app.config["SEEN"] = seen

    @app.before_request
    def record():
        with lock:
            seen.append({
                "method": request.method,
                "path": request.path,
                "content_type": request.headers.get("Content-Type"),
                "body": request.get_data(),
            })

    @app.route("/ok", methods=["GET", "POST"])
    def ok():
        return jsonify({"status": "ok"})

    @app.route("/status/<int:code>", methods=["GET", "POST"])
    def status(code: int):
        return jsonify({"status": code}), code

    @app.route("/slow/<float:seconds>", methods=["GET", "POST"])
    def slow(seconds: float):
        time.sleep(seconds)
        return jsonify({"status": "ok"})

    @app.route("/limited", methods=["GET", "POST"])
    def limited():
        ip = request.remote_addr or "?"
        with lock:
            b = buckets.get(ip)
            if b is None:
                b = buckets[ip] = TokenBucket(bucket_rate, bucket_burst)
            wait = b.take()
        if wait > 0:
            return jsonify({"status": "error", "message": "rate limited"}), 429, {"Retry-After": str(int(wait))}
        return jsonify({"status": "ok"})

    return app
