#!/usr/bin/env python3
"""
Smoke test for capgate deployments.

Deploy guardrail: solves a real challenge against a live server and walks the
whole protocol once. Stdlib only so it runs anywhere Python does.

Flow (default):
1. Health check (storage reachable)
2. Create challenge
3. Solve and redeem
4. Replayed redemption is rejected
5. Validate with keepToken, then consume
6. Consumed token no longer validates

Usage:
    ./scripts/smoke-test.py https://cap.example.com
    ./scripts/smoke-test.py https://cap.example.com --health-only
"""

import argparse
import hashlib
import json
import random
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
MAX_BACKOFF_SECONDS = 4.0
MAX_ERROR_BODY_CHARS = 2_000
MAX_SOLVE_ATTEMPTS = 50_000_000


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


def _is_retryable_status(status_code: int) -> bool:
    return status_code in {408, 502, 503, 504}


class ApiError(RuntimeError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


@dataclass
class HttpClient:
    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES

    def request(
        self, method: str, url: str, body: bytes | None = None
    ) -> tuple[int, bytes]:
        headers = {"Content-Type": "application/json"} if body is not None else {}
        max_attempts = max(1, self.retries + 1)
        for attempt in range(1, max_attempts + 1):
            try:
                request = Request(url, data=body, headers=headers, method=method)
                try:
                    with urlopen(request, timeout=self.timeout_seconds) as response:
                        return response.getcode(), response.read()
                except HTTPError as e:
                    if attempt < max_attempts and _is_retryable_status(e.code):
                        self._sleep_backoff(attempt)
                        continue
                    return e.code, e.read() if e.fp else b""
            except (URLError, TimeoutError) as e:
                if attempt < max_attempts:
                    self._sleep_backoff(attempt)
                    continue
                raise RuntimeError(f"Network error after {attempt} attempts: {e}") from e
        raise RuntimeError("Retries exhausted")

    def api_json(
        self, method: str, path: str, data: dict[str, Any] | None = None
    ) -> tuple[int, dict[str, Any]]:
        body = json.dumps(data).encode() if data is not None else None
        status, raw = self.request(method, f"{self.base_url}{path}", body)
        try:
            return status, json.loads(raw.decode())
        except json.JSONDecodeError as e:
            preview = raw.decode("utf-8", errors="replace")[:MAX_ERROR_BODY_CHARS]
            raise ApiError(status, preview) from e

    def expect(
        self, method: str, path: str, data: dict[str, Any] | None = None, status: int = 200
    ) -> dict[str, Any]:
        actual, payload = self.api_json(method, path, data)
        if actual != status:
            raise ApiError(actual, json.dumps(payload)[:MAX_ERROR_BODY_CHARS])
        return payload

    def _sleep_backoff(self, attempt: int) -> None:
        base = DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt - 1))
        jitter = random.random() * DEFAULT_RETRY_BACKOFF_SECONDS
        time.sleep(min(MAX_BACKOFF_SECONDS, base + jitter))


def solve(salt: str, target: str) -> int:
    """Smallest nonce with sha256(salt + nonce) starting with target."""
    start_time = time.time()
    for nonce in range(MAX_SOLVE_ATTEMPTS):
        if hashlib.sha256(f"{salt}{nonce}".encode()).hexdigest().startswith(target):
            elapsed = max(time.time() - start_time, 1e-6)
            log(f"Solved target={target}: nonce={nonce} ({nonce / elapsed:.0f} H/s)")
            return nonce
    raise RuntimeError(f"No nonce found for target {target}")


@dataclass
class SmokeContext:
    client: HttpClient
    max_health_attempts: int

    challenge: dict[str, Any] | None = None
    solutions: list[list] | None = None
    token: str | None = None

    def require(self, name: str):
        value = getattr(self, name)
        if value is None:
            raise RuntimeError(f"Missing {name} (step ordering bug)")
        return value


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[SmokeContext], None]


def run_steps(ctx: SmokeContext, steps: list[Step]) -> bool:
    overall_start = time.time()
    for step in steps:
        log(f"STEP: {step.name}")
        start = time.time()
        try:
            step.run(ctx)
        except Exception as e:
            log(f"FAILED: {step.name} ({time.time() - start:.2f}s) - {e}")
            return False
        log(f"OK: {step.name} ({time.time() - start:.2f}s)")
    log(f"Total: {time.time() - overall_start:.2f}s")
    return True


def step_health(ctx: SmokeContext) -> None:
    for attempt in range(1, ctx.max_health_attempts + 1):
        try:
            status, data = ctx.client.api_json("GET", "/health")
        except (ApiError, RuntimeError):
            status, data = 0, {}
        if status == 200 and data.get("status") == "healthy":
            if not data.get("storage"):
                raise RuntimeError("Server is up but storage is not available")
            log(f"Health check passed (attempt {attempt})")
            return
        time.sleep(2.0)
    raise RuntimeError("Health check failed")


def step_create(ctx: SmokeContext) -> None:
    ctx.challenge = ctx.client.expect("POST", "/api/v1/challenge", status=201)
    pairs = ctx.challenge["challenge"]
    log(f"Got {len(pairs)} challenges, expires={ctx.challenge['expires']}")


def step_redeem(ctx: SmokeContext) -> None:
    challenge = ctx.require("challenge")
    ctx.solutions = [[salt, target, solve(salt, target)] for salt, target in challenge["challenge"]]
    redeemed = ctx.client.expect(
        "POST",
        "/api/v1/redeem",
        {"token": challenge["token"], "solutions": ctx.solutions},
    )
    if not redeemed.get("success"):
        raise RuntimeError(f"Redeem did not succeed: {redeemed}")
    ctx.token = redeemed["token"]


def step_replay(ctx: SmokeContext) -> None:
    challenge = ctx.require("challenge")
    ctx.client.expect(
        "POST",
        "/api/v1/redeem",
        {"token": challenge["token"], "solutions": ctx.require("solutions")},
        status=400,
    )


def step_validate(ctx: SmokeContext) -> None:
    token = ctx.require("token")
    kept = ctx.client.expect("POST", "/api/v1/validate", {"token": token, "keepToken": True})
    if not kept.get("success"):
        raise RuntimeError(f"keepToken validation failed: {kept}")
    consumed = ctx.client.expect("POST", "/api/v1/validate", {"token": token, "keepToken": False})
    if not consumed.get("success"):
        raise RuntimeError(f"Consuming validation failed: {consumed}")


def step_consumed(ctx: SmokeContext) -> None:
    again = ctx.client.expect("POST", "/api/v1/validate", {"token": ctx.require("token")})
    if again.get("success"):
        raise RuntimeError("Consumed token validated a second time")


def main() -> int:
    parser = argparse.ArgumentParser(description="capgate smoke test")
    parser.add_argument("base_url", help="Base URL (e.g., https://cap.example.com)")
    parser.add_argument("--health-only", action="store_true", help="Only run health check")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"HTTP timeout seconds (default: {DEFAULT_TIMEOUT_SECONDS:g})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        help=f"Retries for transient failures (default: {DEFAULT_RETRIES})",
    )
    parser.add_argument(
        "--max-health-attempts",
        type=int,
        default=30,
        help="Max health check attempts (default: 30)",
    )
    args = parser.parse_args()

    client = HttpClient(
        base_url=args.base_url.rstrip("/"), timeout_seconds=args.timeout, retries=args.retries
    )
    ctx = SmokeContext(client=client, max_health_attempts=args.max_health_attempts)

    steps = [Step("health", step_health)]
    if args.health_only:
        log("Health-only mode: skipping protocol flow")
    else:
        steps.extend(
            [
                Step("create challenge", step_create),
                Step("solve and redeem", step_redeem),
                Step("replay rejected", step_replay),
                Step("validate", step_validate),
                Step("consumed token rejected", step_consumed),
            ]
        )

    return 0 if run_steps(ctx, steps) else 1


if __name__ == "__main__":
    sys.exit(main())
