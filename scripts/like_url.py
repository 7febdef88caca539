#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

import httpx


def call_likes_api(client: httpx.Client, base_url: str, method: str, url: str) -> tuple[str, str]:
    try:
        response = client.post(
            f"{base_url.rstrip('/')}/api",
            params={"method": method},
            json={"url": url},
        )
    except httpx.HTTPError as exc:
        return ("error", f"request_failed: {exc}")

    try:
        data = response.json()
    except ValueError:
        return ("error", f"status={response.status_code} detail={response.text}")

    if response.status_code == 200 and data.get("success"):
        return ("ok", f"{data['url']} likes={data['likes']}")
    return ("error", f"status={response.status_code} detail={json.dumps(data)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Read or like URLs against a like counter deployment")
    parser.add_argument("urls", nargs="+", help="URLs to read or like")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Like counter base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--method",
        choices=["read", "update"],
        default="read",
        help="read the current count or add a like (default: read)",
    )
    args = parser.parse_args()

    failures = 0
    with httpx.Client(timeout=10) as client:
        for url in args.urls:
            outcome, info = call_likes_api(client, args.base_url, args.method, url)
            print(f"- {url}: {outcome} ({info})")
            failures += outcome != "ok"

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
