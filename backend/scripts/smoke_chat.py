#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
from pathlib import Path

import httpx


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(f"Missing required env var: {name}")
    return value


def _admin_headers(admin_token: str) -> dict[str, str]:
    return {"X-Admin": admin_token}


def _check_health(client: httpx.Client, base_url: str) -> None:
    response = client.get(f"{base_url}/api/health")
    response.raise_for_status()
    if response.json().get("ok") is not True:
        raise RuntimeError(f"Unexpected health payload: {response.text}")


def _user_chat(client: httpx.Client, base_url: str, message: str) -> dict:
    response = client.post(
        f"{base_url}/api/chat/user/send",
        json={"messages": [{"role": "user", "content": message}], "user_id": "smoke"},
    )
    response.raise_for_status()
    payload = response.json()
    if "reply" not in payload:
        raise RuntimeError("Chat did not return a reply")
    return payload


def _fetch_tts(client: httpx.Client, base_url: str, text: str, out_path: Path) -> dict:
    response = client.get(f"{base_url}/api/tts", params={"text": text})
    if response.status_code == 400 and response.json().get("error") == "browser_tts_enabled":
        return {"status": "skipped", "reason": "browser_tts_enabled"}
    response.raise_for_status()
    out_path.write_bytes(response.content)
    return {
        "status": "ok",
        "content_type": response.headers.get("content-type"),
        "bytes": len(response.content),
        "path": str(out_path),
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test a running MicronForce GPT server")
    parser.add_argument("--base-url", default=os.getenv("SMOKE_API_BASE_URL", "http://127.0.0.1:8080"))
    parser.add_argument("--admin-token", default=os.getenv("ADMIN_BYPASS_TOKEN"))
    parser.add_argument("--message", default="Say hello in one short sentence.")
    parser.add_argument("--tts-out", default="", help="Write synthesized audio here. Skips TTS if omitted.")
    args = parser.parse_args()

    base_url = args.base_url.rstrip("/")
    admin_token = args.admin_token or _require_env("ADMIN_BYPASS_TOKEN")

    with httpx.Client(timeout=60.0) as client:
        _check_health(client, base_url)

        settings = client.get(f"{base_url}/api/super/settings", headers=_admin_headers(admin_token))
        settings.raise_for_status()

        chat = _user_chat(client, base_url, args.message)

        logs = client.get(
            f"{base_url}/api/super/logs",
            headers=_admin_headers(admin_token),
            params={"limit": 1},
        )
        logs.raise_for_status()
        latest = (logs.json() or [{}])[0]

        result = {
            "status": "ok",
            "settings": settings.json(),
            "reply": chat.get("reply"),
            "usage": chat.get("usage"),
            "latest_log_actor": latest.get("actor"),
            "latest_log_scope": latest.get("scope"),
        }

        if args.tts_out:
            result["tts"] = _fetch_tts(client, base_url, args.message, Path(args.tts_out))

    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
