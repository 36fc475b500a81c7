#!/usr/bin/env python3
"""
Spotlight Downloader - Spotlight API Client

Fetches Windows Spotlight image metadata from either API version, normalizes
it into ImageRecord objects, removes duplicates and retries failed attempts
with a fixed delay.

Pipeline per attempt:
    request builder -> fetch -> response parser -> deduplication

Usage:
    python spotlight_api.py --api v3 --locale en-US --attempts 3

Author: Spotlight Downloader
Version: 1.0.0
"""

import argparse
import asyncio
import ctypes
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

import aiohttp

from config_loader import ApiConfig, ConfigLoader, get_config
from dedup_manager import deduplicate_records
from locale_resolver import resolve_locale
from spotlight_errors import SpotlightError, TransportError, is_retryable
from spotlight_parser import ImageRecord, SkipCallback, parse_response
from spotlight_request import DEFAULT_API_VERSION, ApiVersion, SpotlightRequest, build_request

logger = logging.getLogger("spotlight_downloader")

FetchFunc = Callable[[str], Awaitable[bytes]]
SleepFunc = Callable[[float], Awaitable[None]]

RETRY_DELAY_SEC = 10.0


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(log_dir: Optional[Path] = Path("./logs")) -> logging.Logger:
    """Configure logging with timestamps and proper formatting."""
    log = logging.getLogger("spotlight_downloader")
    log.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    log.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        file_handler = logging.FileHandler(log_dir / f"spotlight_{timestamp}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        log.addHandler(file_handler)

    return log


# =============================================================================
# TRANSPORT
# =============================================================================

async def fetch_bytes(
    url: str,
    session: Optional[aiohttp.ClientSession] = None,
    timeout_sec: float = 30,
) -> bytes:
    """
    GET a URL and return the raw body.

    When no session is given a short-lived one is opened, so the connection is
    released before the caller decides whether to retry.

    Raises:
        TransportError: On connection failure, timeout or a non-2xx status.
    """
    if session is None:
        timeout = aiohttp.ClientTimeout(total=timeout_sec)
        async with aiohttp.ClientSession(timeout=timeout) as own_session:
            return await fetch_bytes(url, own_session, timeout_sec)

    try:
        async with session.get(url) as response:
            if not 200 <= response.status < 300:
                raise TransportError(
                    f"SpotlightAPI: HTTP {response.status} {response.reason or ''}".rstrip(),
                    status=response.status,
                    url=url,
                )
            return await response.read()
    except asyncio.TimeoutError as e:
        raise TransportError(f"SpotlightAPI: Request timed out after {timeout_sec}s", url=url) from e
    except aiohttp.ClientError as e:
        raise TransportError(f"SpotlightAPI: {type(e).__name__}: {e}", url=url) from e


# =============================================================================
# DISPLAY ORIENTATION
# =============================================================================

def primary_display_is_portrait() -> bool:
    """True when the primary display is taller than it is wide."""
    if sys.platform != "win32":
        logger.debug("Display orientation detection unavailable on this platform, assuming landscape")
        return False

    try:
        user32 = ctypes.windll.user32
        width = user32.GetSystemMetrics(0)   # SM_CXSCREEN
        height = user32.GetSystemMetrics(1)  # SM_CYSCREEN
    except (AttributeError, OSError) as e:
        logger.debug(f"Display orientation detection failed ({e}), assuming landscape")
        return False

    return height > width


# =============================================================================
# API CLIENT
# =============================================================================

def build_request_for(
    api_version: ApiVersion,
    locale: str,
    region: str,
    portrait: bool,
    api_config: Optional[ApiConfig] = None,
) -> SpotlightRequest:
    """Build a request using host and identifier overrides from configuration."""
    api_config = api_config or ApiConfig()
    if api_version is ApiVersion.V4:
        return build_request(
            api_version, locale, region, portrait,
            host=api_config.v4_host,
            placement=api_config.v4_placement,
            batch_count=api_config.batch_count,
        )
    return build_request(
        api_version, locale, region, portrait,
        host=api_config.v3_host,
        pid=api_config.v3_pid,
    )


async def get_image_urls_single_attempt(
    request: SpotlightRequest,
    portrait: bool,
    fetch: FetchFunc,
    on_skip: Optional[SkipCallback] = None,
) -> list[ImageRecord]:
    """Fetch, parse and deduplicate one batch of images."""
    logger.debug(f"SpotlightAPI: GET {request.url}")
    body = await fetch(request.url)
    records = parse_response(body, request.api_version, portrait, on_skip=on_skip)
    return deduplicate_records(records)


async def get_image_urls(
    portrait: Optional[bool] = None,
    locale: Optional[str] = None,
    attempts: int = 1,
    api_version: ApiVersion = DEFAULT_API_VERSION,
    *,
    fetch: Optional[FetchFunc] = None,
    sleep: SleepFunc = asyncio.sleep,
    delay_sec: float = RETRY_DELAY_SEC,
    display_is_portrait: Callable[[], bool] = primary_display_is_portrait,
    system_region: Optional[str] = None,
    api_config: Optional[ApiConfig] = None,
    on_skip: Optional[SkipCallback] = None,
) -> list[ImageRecord]:
    """
    Request new images from the Spotlight API.

    Args:
        portrait: None = detect from the primary display, True = portrait, False = landscape.
        locale: None = system locale, or an xx-XX value such as en-US.
        attempts: Number of API call attempts before the last error is raised.
        api_version: Version of the Spotlight API.
        fetch: Coroutine returning the response body for a URL. Defaults to fetch_bytes.
        sleep: Coroutine used to wait between attempts.
        delay_sec: Fixed delay between attempts.
        display_is_portrait: Orientation detector used when portrait is None.
        system_region: Region to use when the locale does not carry one.
        api_config: Host and identifier overrides.
        on_skip: Callback receiving an ItemSkipWarning for each dropped item.

    Returns:
        Deduplicated images from the first successful attempt.

    Raises:
        ConfigurationError: If the locale or region cannot be determined (not retried).
        TransportError: If the last attempt failed to fetch the response.
        DataFormatError: If the last attempt returned malformed JSON.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")

    api_version = ApiVersion.parse(api_version)
    if fetch is None:
        fetch = fetch_bytes

    # Resolved once: a local misconfiguration is not something a retry can fix
    locale_tag, region = resolve_locale(locale, system_region=system_region)
    if portrait is None:
        portrait = display_is_portrait()

    request = build_request_for(api_version, locale_tag, region, portrait, api_config)

    remaining = attempts
    while True:
        remaining -= 1
        try:
            return await get_image_urls_single_attempt(request, portrait, fetch, on_skip)
        except Exception as e:
            if remaining <= 0 or not is_retryable(e):
                raise
            logger.warning(
                f"SpotlightAPI: {type(e).__name__}: {e} - Waiting {delay_sec:g} seconds before retrying..."
            )
            await sleep(delay_sec)

        # v3 embeds a timestamp, so each retry gets a fresh request
        if api_version is ApiVersion.V3:
            request = build_request_for(api_version, locale_tag, region, portrait, api_config)


async def get_image_urls_from_config(
    config: Optional[ConfigLoader] = None,
    **overrides,
) -> list[ImageRecord]:
    """Call get_image_urls with values from config.yaml, allowing keyword overrides."""
    config = config or get_config()
    api_config = config.get_api_config()
    retry_config = config.get_retry_config()
    timeout_config = config.get_timeout_config()

    async def fetch(url: str) -> bytes:
        return await fetch_bytes(url, timeout_sec=timeout_config.api_call_sec)

    kwargs = {
        "portrait": api_config.portrait,
        "locale": api_config.locale,
        "attempts": retry_config.max_attempts,
        "api_version": api_config.version,
        "fetch": fetch,
        "delay_sec": retry_config.delay_sec,
        "system_region": api_config.region,
        "api_config": api_config,
    }
    kwargs.update({k: v for k, v in overrides.items() if v is not None})
    return await get_image_urls(**kwargs)


# =============================================================================
# STANDALONE RUN
# =============================================================================

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch Windows Spotlight image metadata")
    parser.add_argument("--api", choices=[v.value for v in ApiVersion], default=None,
                        help="API version (default from config, v4 if unset)")
    parser.add_argument("--locale", default=None, help="Locale such as en-US (default: system)")
    orientation = parser.add_mutually_exclusive_group()
    orientation.add_argument("--portrait", dest="portrait", action="store_true", default=None)
    orientation.add_argument("--landscape", dest="portrait", action="store_false")
    parser.add_argument("--attempts", type=int, default=None, help="Number of API call attempts")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    config = ConfigLoader(args.config) if args.config else get_config()
    try:
        images = await get_image_urls_from_config(
            config,
            portrait=args.portrait,
            locale=args.locale,
            attempts=args.attempts,
            api_version=ApiVersion.parse(args.api) if args.api else None,
        )
    except (SpotlightError, ValueError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    logger.info(f"SpotlightAPI: {len(images)} image(s) received")
    print(json.dumps([image.to_dict() for image in images], indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(_run(parse_args())))
