#!/usr/bin/env python3
"""
Spotlight Downloader - Locale Resolver

Derives the language-region tag (e.g. en-US) and the uppercase two-letter
region code sent to the Spotlight API.

An explicit locale wins for the language tag. The region comes from the tag
itself when it carries a "-REGION" part, otherwise from the system region,
never from the bare language code.
"""

import locale as _locale
import logging
import os
import re
from typing import Optional

from spotlight_errors import ConfigurationError

logger = logging.getLogger("spotlight_downloader")

# Environment variables consulted after locale.getlocale(), in POSIX order
LOCALE_ENV_VARS = ("LC_ALL", "LC_MESSAGES", "LANG")

_UNUSABLE_LOCALES = {"", "c", "posix"}
_REGION_PATTERN = re.compile(r"^[A-Za-z]{2}$")


def normalize_locale_tag(raw: Optional[str]) -> Optional[str]:
    """
    Convert a system locale name to a language-REGION tag.

    Examples:
        en_US.UTF-8 -> en-US
        fr_CA@euro  -> fr-CA
        de          -> de
        C / POSIX   -> None
    """
    if not raw:
        return None
    tag = raw.split(".", 1)[0].split("@", 1)[0].strip()
    if tag.lower() in _UNUSABLE_LOCALES:
        return None
    parts = re.split(r"[-_]", tag)
    if len(parts) == 1:
        return parts[0].lower()
    return f"{parts[0].lower()}-{parts[1].upper()}"


def read_system_locale() -> Optional[str]:
    """Read the active system locale as a language-REGION tag, or None."""
    try:
        current = _locale.getlocale()[0]
    except ValueError:
        current = None

    tag = normalize_locale_tag(current)
    if tag:
        return tag

    for var in LOCALE_ENV_VARS:
        tag = normalize_locale_tag(os.environ.get(var))
        if tag:
            logger.debug(f"System locale taken from ${var}: {tag}")
            return tag
    return None


def region_from_tag(tag: Optional[str]) -> Optional[str]:
    """Return the uppercased segment after '-' or None if the tag has no region."""
    if not tag or len(tag) <= 2 or "-" not in tag:
        return None
    region = tag.split("-")[1].upper()
    return region if _REGION_PATTERN.match(region) else None


def resolve_locale(
    locale: Optional[str] = None,
    system_locale: Optional[str] = None,
    system_region: Optional[str] = None,
) -> tuple[str, str]:
    """
    Resolve the locale tag and region code for an API request.

    Args:
        locale: Caller override in language-REGION form. None = use the system locale.
        system_locale: System locale tag. None = read it from the environment.
        system_region: System region code. None = derive it from the system locale.

    Returns:
        (locale_tag, region_code) with the region uppercased.

    Raises:
        ConfigurationError: If no locale or region can be determined.
    """
    if system_locale is None:
        system_locale = read_system_locale()

    if system_region:
        region = system_region.strip().upper()
    else:
        region = region_from_tag(system_locale)

    tag = locale.strip() if locale else system_locale
    if not tag:
        raise ConfigurationError("SpotlightAPI: Unable to determine the system locale.")

    override_region = region_from_tag(tag) if locale else None
    if override_region:
        region = override_region

    if not region or not _REGION_PATTERN.match(region):
        raise ConfigurationError(
            f"SpotlightAPI: Unable to determine the system region (locale: {system_locale!r})."
        )

    logger.debug(f"Resolved locale={tag}, region={region}")
    return tag, region
