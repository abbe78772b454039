#!/usr/bin/env python3
"""Probe a running ragchat deployment: health endpoints, then one chat turn."""
from __future__ import annotations

import json
import os
import sys

from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen


def _chat(base_url: str, token: str) -> dict:
    body = json.dumps({"messages": [{"role": "user", "content": "What can you help me with?"}]}).encode("utf-8")
    request = Request(
        f"{base_url}/chat",
        data=body,
        headers={"Content-Type": "application/json", "Authorization": f"Bearer {token}"},
        method="POST",
    )
    with urlopen(request, timeout=60) as r:
        return json.loads(r.read().decode("utf-8"))


def main() -> int:
    base_url = os.getenv("RAGCHAT_API_URL", "http://localhost:8000").rstrip("/")
    token = os.getenv("RAGCHAT_SMOKE_TOKEN")
    try:
        for path in ("/livez", "/healthz"):
            with urlopen(f"{base_url}{path}", timeout=5) as r:
                print(f"{path}:", r.read().decode("utf-8"))
        if token:
            payload = _chat(base_url, token)
            print("/chat:", json.dumps({"citations": payload.get("citations", [])}))
    except HTTPError as exc:
        print(f"Smoke failed: {exc.code} {exc.read().decode('utf-8', 'replace')}", file=sys.stderr)
        return 1
    except URLError as exc:
        print(f"Smoke failed: {exc.reason}", file=sys.stderr)
        return 1
    print("Smoke passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
