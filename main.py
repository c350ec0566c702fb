#!/usr/bin/env python3
"""
Command-line driver: fetch the transcript of one watch page and print it.

Both sides of the bridge run on one event loop here; the request still goes
through the message channel exactly as it would between isolated contexts.
"""

import argparse
import asyncio
import dataclasses
import os
import sys
from typing import List, Optional

import httpx
from dotenv import load_dotenv

from logging_setup import configure_logging, get_logger
from page_context import (
    API_KEY_NAME,
    ConfigProvider,
    EnvConfigProvider,
    PageConfigProvider,
    is_watch_page,
    load_cookies,
    resolve_video_id,
)
from transcript_bridge import BridgeResult, InMemoryChannel, TranscriptBridge, TranscriptResponder
from transcript_config import TranscriptConfig, get_transcript_config
from transcript_extractor import TranscriptExtractor

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcript-fetch",
        description="Print the timestamped transcript of a YouTube video",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  transcript-fetch "https://www.youtube.com/watch?v=8S0FDjFBj8o"
  transcript-fetch 8S0FDjFBj8o --cookies-file cookies.txt --format json3
        """
    )
    parser.add_argument("location", help="Watch page URL or bare video id")
    parser.add_argument("--api-key", help=f"Player API key (default: ${API_KEY_NAME} or read from the watch page)")
    parser.add_argument("--cookies-file", metavar="COOKIES_TXT",
                        default=os.getenv("TRANSCRIPT_COOKIES_FILE"),
                        help="Netscape cookies.txt with the session cookies")
    parser.add_argument("--format", dest="payload_format", choices=["json3"],
                        help="Request the segment-event payload format explicitly")
    parser.add_argument("--timeout", type=float, help="Bridge round-trip bound in seconds")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--plain-logs", action="store_true", help="Human-readable logs instead of JSON")
    return parser


def normalize_location(location: str) -> Optional[str]:
    """Return a watch page URL for the given location, or None if it is not one."""
    video_id = resolve_video_id(location)
    if not video_id:
        return None
    if is_watch_page(location):
        return location
    if video_id == location.strip():
        return f"https://www.youtube.com/watch?v={video_id}"
    return None


async def load_page_config(client: httpx.AsyncClient, location: str) -> PageConfigProvider:
    """Read ``ytcfg`` from the watch page itself."""
    try:
        response = await client.get(location)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Could not load watch page for configuration: {type(e).__name__}")
        return PageConfigProvider({})
    return PageConfigProvider.from_html(response.text)


async def fetch_transcript(location: str, config: TranscriptConfig, api_key: Optional[str] = None,
                           cookies: Optional[httpx.Cookies] = None) -> BridgeResult:
    """Wire channel, responder, extractor and bridge, and issue one request."""
    async with httpx.AsyncClient(
        cookies=cookies,
        headers={"User-Agent": config.user_agent, "Accept-Language": "en-US,en;q=0.9"},
        follow_redirects=True,
    ) as client:
        provider: ConfigProvider
        if api_key:
            provider = PageConfigProvider({API_KEY_NAME: api_key})
        elif os.getenv(API_KEY_NAME):
            provider = EnvConfigProvider()
        else:
            provider = await load_page_config(client, location)

        extractor = TranscriptExtractor(provider, lambda: location, client=client, config=config)
        channel = InMemoryChannel()

        async with TranscriptResponder(channel, extractor), \
                TranscriptBridge(channel, timeout=config.bridge_timeout) as bridge:
            return await bridge.request()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()
    configure_logging(
        log_level=args.log_level or os.getenv("LOG_LEVEL", "INFO"),
        use_json=not args.plain_logs and os.getenv("USE_JSON_LOGGING", "true").lower() == "true",
    )

    config = get_transcript_config()
    overrides = {}
    if args.payload_format:
        overrides["payload_format"] = args.payload_format
    if args.timeout:
        overrides["bridge_timeout"] = args.timeout
    if overrides:
        config = dataclasses.replace(config, **overrides)

    location = normalize_location(args.location)
    if location is None:
        print(f"Not a watch page: {args.location}", file=sys.stderr)
        return 2

    try:
        cookies = load_cookies(os.getenv("TRANSCRIPT_COOKIES"), args.cookies_file)
    except OSError as e:
        print(f"Could not read cookies: {e}", file=sys.stderr)
        return 2

    try:
        result = asyncio.run(fetch_transcript(location, config, api_key=args.api_key, cookies=cookies))
    except KeyboardInterrupt:
        return 130

    if result.ok:
        print(result.transcript)
        return 0

    reason = "timed out waiting for a response" if result.timed_out else result.error
    print(f"No transcript: {reason}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
