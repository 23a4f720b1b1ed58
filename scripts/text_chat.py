#!/usr/bin/env python3
"""Interactive owner chat against a running server (POST /agent/chat)."""

from __future__ import annotations

import argparse
import json
import sys

import httpx


def _print_status(action: dict | None, ai: dict | None) -> None:
    if action:
        compact = json.dumps(action, ensure_ascii=False)
        print(f"(action: {compact})")
    if ai:
        reason = f" reason={ai.get('reason')}" if ai.get("reason") else ""
        print(f"(ai: {ai.get('indicator')} usedAi={ai.get('usedAi')}{reason})")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Text chat with the business agent via /agent/chat")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL (default: http://localhost:8000)")
    parser.add_argument("--business-id", required=True, help="Business id to act for")
    parser.add_argument("--session-id", default="cli", help="Conversation session id (default: cli)")
    parser.add_argument("--api-key", default="", help="X-API-Key header value, if the server requires one")
    parser.add_argument("--timeout", type=float, default=45.0, help="HTTP timeout seconds (default: 45)")
    args = parser.parse_args(argv)

    base_url = args.base_url.rstrip("/")
    headers = {"X-API-Key": args.api_key} if args.api_key else {}

    print("Chat started. Type /exit to quit, 'help' for the command list.")

    with httpx.Client(timeout=args.timeout, headers=headers) as client:
        while True:
            try:
                user_text = input("you> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break

            if not user_text:
                continue
            if user_text.lower() in {"/exit", "/quit", "exit", "quit"}:
                break

            req = {"businessId": args.business_id, "message": user_text, "sessionId": args.session_id}

            try:
                resp = client.post(f"{base_url}/agent/chat", json=req)
                resp.raise_for_status()
                data = resp.json()
            except httpx.HTTPStatusError as e:
                print(f"error> HTTP {e.response.status_code}: {e.response.text}")
                continue
            except httpx.HTTPError as e:
                print(f"error> {e}")
                continue

            reply = (data.get("message") or "").strip()
            print(f"agent> {reply}" if reply else "agent> (empty response)")
            _print_status(data.get("action"), data.get("ai"))

    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
