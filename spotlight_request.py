#!/usr/bin/env python3
"""
Spotlight Downloader - Request Builder

Builds the request target for each Spotlight API version. The two versions
use different hosts, endpoints and query parameters:

    v3 (Windows 10 lockscreen)
        Host: arc.msn.com, endpoint /v3/Delivery/Placement
        Max resolution 1080p, returns sha256 + fileSize for integrity checks.

    v4 (Windows 11 lockscreen / wallpaper)
        Host: fd.api.iris.microsoft.com, endpoint /v4/api/selection
        Max resolution 4K, no integrity data.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from urllib.parse import urlencode


class ApiVersion(Enum):
    """Spotlight API versions."""
    V3 = "v3"
    V4 = "v4"

    @classmethod
    def parse(cls, value: "str | ApiVersion") -> "ApiVersion":
        """Parse 'v3', '3', 'v4' or '4' (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        if not text.startswith("v"):
            text = f"v{text}"
        for version in cls:
            if version.value == text:
                return version
        raise ValueError(f"Unknown Spotlight API version: {value!r}")


DEFAULT_API_VERSION = ApiVersion.V4

# v4 constants
V4_HOST = "fd.api.iris.microsoft.com"
V4_PATH = "/v4/api/selection"
V4_PLACEMENT = "88000820"
V4_BATCH_COUNT = 4

# v3 constants
V3_HOST = "arc.msn.com"
V3_PATH = "/v3/Delivery/Placement"
V3_PID = "338387"
V3_USER_AGENT = "WindowsShellClient/0"

V3_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass(frozen=True)
class SpotlightRequest:
    """A fully-formed request target. Query parameters keep insertion order."""
    api_version: ApiVersion
    host: str
    path: str
    params: dict[str, str] = field(default_factory=dict)
    scheme: str = "https"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}{self.path}?{urlencode(self.params)}"


def format_utc_timestamp(now: Optional[datetime] = None) -> str:
    """Format a time as yyyy-MM-ddTHH:mm:ssZ in UTC."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(V3_TIME_FORMAT)


def build_request(
    api_version: ApiVersion,
    locale: str,
    region: str,
    portrait: bool = False,
    now: Optional[datetime] = None,
    host: Optional[str] = None,
    placement: str = V4_PLACEMENT,
    batch_count: int = V4_BATCH_COUNT,
    pid: str = V3_PID,
) -> SpotlightRequest:
    """
    Build the request target for the given API version.

    Orientation does not change the request: both image variants come back in
    every response and the parser picks one. It is accepted so callers can pass
    the full request context in one place.

    Args:
        api_version: Spotlight API version.
        locale: Locale tag such as en-US.
        region: Two-letter region code.
        portrait: Requested orientation.
        now: Timestamp for the v3 'time' parameter (defaults to current UTC time).
        host: Override the default host for the version.
    """
    region = region.upper()

    if api_version is ApiVersion.V4:
        return SpotlightRequest(
            api_version=api_version,
            host=host or V4_HOST,
            path=V4_PATH,
            params={
                "placement": str(placement),
                "bcnt": str(batch_count),
                "country": region,
                "locale": locale,
                "fmt": "json",
            },
        )

    return SpotlightRequest(
        api_version=api_version,
        host=host or V3_HOST,
        path=V3_PATH,
        params={
            "pid": str(pid),
            "fmt": "json",
            "ua": V3_USER_AGENT,
            "cdm": "1",
            "pl": locale,
            "lc": locale,
            "ctry": region,
            "time": format_utc_timestamp(now),
        },
    )
