"""Command-line trigger used by the external cron.

Example::

    chapterforge-trigger --url https://scheduler.internal --secret "$CHAPTERFORGE_CRON_SECRET"
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Optional, Sequence

import httpx

DEFAULT_URL = "http://localhost:9300"
ENDPOINT = "/cron/write-chapters"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trigger one chapter scheduler tick")
    parser.add_argument(
        "--url",
        default=os.getenv("CHAPTERFORGE_SCHEDULER_URL", DEFAULT_URL),
        help=f"Scheduler base URL (default: $CHAPTERFORGE_SCHEDULER_URL or {DEFAULT_URL})",
    )
    parser.add_argument(
        "--secret",
        default=os.getenv("CHAPTERFORGE_CRON_SECRET"),
        help="Bearer secret (default: $CHAPTERFORGE_CRON_SECRET)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=330.0,
        help="HTTP timeout in seconds; keep it above the invocation budget (default: 330)",
    )
    return parser


def trigger(
    url: str,
    secret: Optional[str],
    *,
    timeout: float = 330.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> dict:
    """POST to the trigger endpoint and return the decoded tick summary.

    Raises:
        httpx.HTTPError: On transport failure or a non-2xx response.
    """

    headers = {"Authorization": f"Bearer {secret}"} if secret else {}
    with httpx.Client(base_url=url, timeout=timeout, transport=transport) as client:
        response = client.post(ENDPOINT, headers=headers)
    response.raise_for_status()
    return response.json()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        summary = trigger(args.url, args.secret, timeout=args.timeout)
    except httpx.HTTPStatusError as exc:
        print(f"Trigger failed with HTTP {exc.response.status_code}: {exc.response.text}", file=sys.stderr)
        return 1
    except httpx.HTTPError as exc:
        print(f"Trigger failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
