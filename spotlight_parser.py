#!/usr/bin/env python3
"""
Spotlight Downloader - Response Parser

Turns a raw Spotlight API response into ImageRecord objects.

Response layout (both versions):

    {"batchrsp": {"items": [{"item": "<nested JSON string>"}, ...]}}

Each nested document holds an "ad" object whose fields depend on the API
version. Structural problems with the envelope or a nested document abort the
whole parse with DataFormatError. Problems with a single ad only drop that ad.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from spotlight_errors import DataFormatError, ItemSkipWarning
from spotlight_request import ApiVersion

logger = logging.getLogger("spotlight_downloader")

SECURE_SCHEME = "https://"

SkipCallback = Callable[[ItemSkipWarning], None]


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass(frozen=True)
class ImageRecord:
    """Normalized Spotlight image, independent of the API version it came from."""
    source_uri: str
    checksum: Optional[str] = None    # sha256, v3 only
    size_bytes: Optional[int] = None  # v3 only
    file_name: Optional[str] = None
    title: Optional[str] = None
    copyright: Optional[str] = None

    def __post_init__(self):
        if (self.checksum is None) != (self.size_bytes is None):
            raise ValueError("checksum and size_bytes must be set together")
        if self.size_bytes is not None and self.size_bytes <= 0:
            raise ValueError(f"size_bytes must be positive, got {self.size_bytes}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.source_uri,
            "sha256": self.checksum,
            "file_size": self.size_bytes,
            "file_name": self.file_name,
            "title": self.title,
            "copyright": self.copyright,
        }


# =============================================================================
# FIELD HELPERS
# =============================================================================

def derive_file_name(uri: str) -> Optional[str]:
    """Last path segment of a URI without its query string, or None if empty."""
    name = uri.split("/")[-1].split("?")[0]
    return name or None


def is_secure_uri(uri: Any) -> bool:
    return isinstance(uri, str) and uri.lower().startswith(SECURE_SCHEME)


def _get_str(obj: Any, key: str) -> Optional[str]:
    if isinstance(obj, dict):
        value = obj.get(key)
        if isinstance(value, str):
            return value
    return None


def _get_obj(obj: Any, key: str) -> Optional[dict[str, Any]]:
    if isinstance(obj, dict):
        value = obj.get(key)
        if isinstance(value, dict):
            return value
    return None


def parse_file_size(value: Any) -> Optional[int]:
    """Parse a fileSize field. Returns None for anything not a positive integer."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        size = value
    elif isinstance(value, str):
        text = value.strip()
        # Plain ASCII digits only: int() would also take "1_000" or non-Latin digits
        if not (text.isascii() and text.lstrip("+-").isdigit() and len(text) - len(text.lstrip("+-")) <= 1):
            return None
        size = int(text)
    else:
        return None
    return size if size > 0 else None


class _SkipItem(Exception):
    """Raised by the per-version extractors to drop the current ad."""


# =============================================================================
# PER-VERSION EXTRACTION
# =============================================================================

def extract_v4_record(ad: dict[str, Any], portrait: bool) -> ImageRecord:
    """
    Build a record from a v4 ad.

    Title is the first line of 'iconHoverText', falling back to 'title'.
    The image URI is '<portraitImage|landscapeImage>.asset'.
    """
    title = None
    hover_text = _get_str(ad, "iconHoverText")
    if hover_text:
        title = re.split(r"[\r\n]", hover_text)[0]
    if not title:
        title = _get_str(ad, "title")

    url_field = "portraitImage" if portrait else "landscapeImage"
    uri = _get_str(_get_obj(ad, url_field), "asset")
    if not uri or not is_secure_uri(uri):
        raise _SkipItem(f"Ignoring item image with missing or invalid uri in '{url_field}'.")

    return ImageRecord(
        source_uri=uri,
        file_name=derive_file_name(uri),
        title=title,
        copyright=_get_str(ad, "copyright"),
    )


def extract_v3_record(ad: dict[str, Any], portrait: bool) -> ImageRecord:
    """
    Build a record from a v3 ad.

    Title and copyright come from the 'tx' field of 'title_text' and
    'copyright_text'. The image object must carry 'u', 'sha256' and 'fileSize'.
    """
    title = _get_str(_get_obj(ad, "title_text"), "tx")
    copyright_text = _get_str(_get_obj(ad, "copyright_text"), "tx")

    url_field = "image_fullscreen_001_portrait" if portrait else "image_fullscreen_001_landscape"
    image = _get_obj(ad, url_field)
    uri = _get_str(image, "u")
    sha256 = _get_str(image, "sha256")
    file_size = parse_file_size(image.get("fileSize")) if image else None

    if not uri or not sha256 or file_size is None:
        raise _SkipItem(
            f"Ignoring item image uri with missing 'u', 'sha256' and/or 'fileSize' field(s) in '{url_field}'."
        )
    if not is_secure_uri(uri):
        raise _SkipItem(f"Ignoring item image with invalid uri in '{url_field}'.")

    return ImageRecord(
        source_uri=uri,
        checksum=sha256,
        size_bytes=file_size,
        file_name=derive_file_name(uri),
        title=title,
        copyright=copyright_text,
    )


EXTRACTORS: dict[ApiVersion, Callable[[dict[str, Any], bool], ImageRecord]] = {
    ApiVersion.V3: extract_v3_record,
    ApiVersion.V4: extract_v4_record,
}


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def _load_json(data: Any, what: str) -> Any:
    try:
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("utf-8")
        return json.loads(data)
    except (UnicodeDecodeError, ValueError) as e:
        raise DataFormatError(f"SpotlightAPI: Invalid JSON in {what}: {e}") from e


def parse_response(
    body: bytes,
    api_version: ApiVersion,
    portrait: bool,
    on_skip: Optional[SkipCallback] = None,
    log: Optional[logging.Logger] = None,
) -> list[ImageRecord]:
    """
    Parse a Spotlight API response body.

    Args:
        body: Raw response body (UTF-8 JSON).
        api_version: Version that produced the response.
        portrait: Select portrait images instead of landscape ones.
        on_skip: Optional callback receiving an ItemSkipWarning for each dropped item.
        log: Logger for skip warnings (defaults to the module logger).

    Returns:
        Records in source order. Not deduplicated.

    Raises:
        DataFormatError: If the envelope, the items array or a nested document is invalid.
    """
    log = log or logger
    extract = EXTRACTORS[api_version]

    def skip(index: int, reason: str) -> None:
        log.warning(f"SpotlightAPI: {reason}")
        if on_skip:
            on_skip(ItemSkipWarning(index=index, reason=reason, api_version=api_version.value))

    root = _load_json(body, "API response")

    batchrsp = root.get("batchrsp") if isinstance(root, dict) else None
    if not isinstance(batchrsp, dict):
        raise DataFormatError("SpotlightAPI: API did not return a 'batchrsp' JSON object.")

    items = batchrsp.get("items")
    if not isinstance(items, list):
        raise DataFormatError("SpotlightAPI: 'batchrsp/items' field in JSON API response is not an array.")

    records = []
    for index, wrapper in enumerate(items):
        nested = _get_str(wrapper, "item")
        if nested is None:
            skip(index, "Ignoring non-object item while parsing 'batchrsp/items' field in JSON API response.")
            continue

        item = _load_json(nested, f"'batchrsp/items[{index}]/item'")

        # Entries without an ad are not images
        ad = _get_obj(item, "ad")
        if ad is None:
            continue

        try:
            records.append(extract(ad, portrait))
        except _SkipItem as e:
            skip(index, str(e))

    log.debug(f"SpotlightAPI: Parsed {len(records)} image(s) from {len(items)} item(s)")
    return records
