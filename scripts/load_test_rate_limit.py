#!/usr/bin/env python3
"""Load test script: shows rate limiting on the public verify endpoint.

RUN:  python scripts/load_test_rate_limit.py [CERTIFICATE_ID]

Sends TOTAL_REQUESTS to GET /v1/certificates/{id}/verify in rapid
succession from one client IP and prints how many were answered
(200 or 404) vs. throttled (429).  The endpoint needs no token, so any
id works; an unknown id just answers 404 until the bucket runs dry.

Prerequisites:
  - The API must be running: uvicorn cert_service.main:app --port 8000

For real load testing, use tools like locust, k6, or wrk.
"""

from __future__ import annotations

import sys
import time

import httpx

BASE_URL = "http://localhost:8000"
TOTAL_REQUESTS = 100


def main() -> None:
    certificate_id = sys.argv[1] if len(sys.argv) > 1 else "CERT-0-LOADTEST"
    path = f"/v1/certificates/{certificate_id}/verify"

    print("Rate Limit Load Test")
    print("=" * 50)
    print(f"Target: {BASE_URL}{path}")
    print(f"Total requests: {TOTAL_REQUESTS}")
    print()

    results: dict[int, int] = {}
    with httpx.Client(base_url=BASE_URL, timeout=10) as client:
        start = time.monotonic()
        for i in range(TOTAL_REQUESTS):
            resp = client.get(path)
            results[resp.status_code] = results.get(resp.status_code, 0) + 1
            if (i + 1) % 20 == 0:
                print(f"  Sent {i + 1}/{TOTAL_REQUESTS} requests...")
        elapsed = time.monotonic() - start

    answered = results.get(200, 0) + results.get(404, 0)
    throttled = results.get(429, 0)
    other = sum(v for k, v in results.items() if k not in (200, 404, 429))

    print()
    print(f"Results after {TOTAL_REQUESTS} requests ({elapsed:.2f}s):")
    print("-" * 40)
    print(f"  Answered (200/404): {answered:>4}")
    print(f"  Throttled (429):    {throttled:>4}")
    if other:
        print(f"  Other:              {other:>4}")
    print()
    print("Token bucket capacity: 60, refill 1 token/second")

    if throttled == 0:
        print("WARNING: No requests were throttled.")
        sys.exit(1)


if __name__ == "__main__":
    main()
