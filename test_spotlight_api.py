#!/usr/bin/env python3
"""
Tests for the Spotlight API client: retry orchestration, transport and config wiring.
"""

import asyncio
import json
import logging
from urllib.parse import parse_qs, urlsplit

import pytest
from aiohttp import web
from aiohttp import test_utils

import spotlight_api
from config_loader import ConfigLoader
from spotlight_api import fetch_bytes, get_image_urls, get_image_urls_from_config
from spotlight_errors import (
    ConfigurationError,
    DataFormatError,
    ErrorCategory,
    TransportError,
    is_retryable,
)
from spotlight_request import ApiVersion


def v4_body(*names) -> bytes:
    items = [
        {"item": json.dumps({"ad": {
            "landscapeImage": {"asset": f"https://cdn.example.com/{name}_L.jpg"},
            "portraitImage": {"asset": f"https://cdn.example.com/{name}_P.jpg"},
            "title": name,
        }})}
        for name in names
    ]
    return json.dumps({"batchrsp": {"items": items}}).encode()


class FlakyFetch:
    """Fetch stub raising the queued errors in order, then returning a body."""

    def __init__(self, errors, body: bytes):
        self.errors = list(errors)
        self.body = body
        self.urls = []

    async def __call__(self, url: str) -> bytes:
        self.urls.append(url)
        if self.errors:
            raise self.errors.pop(0)
        return self.body


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def run(coro):
    return asyncio.run(coro)


# =============================================================================
# RETRY ORCHESTRATION
# =============================================================================

def test_retry_succeeds_on_third_attempt(caplog):
    fetch = FlakyFetch([TransportError("down 1"), TransportError("down 2")], v4_body("a", "b"))
    sleep = RecordingSleep()

    with caplog.at_level(logging.WARNING, logger="spotlight_downloader"):
        images = run(get_image_urls(
            portrait=False, locale="en-US", attempts=3, fetch=fetch, sleep=sleep,
        ))

    assert [i.title for i in images] == ["a", "b"]
    assert len(fetch.urls) == 3
    assert sleep.delays == [10.0, 10.0]
    warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 2
    assert "TransportError: down 1" in warnings[0]
    assert "Waiting 10 seconds before retrying" in warnings[0]


def test_retry_budget_exhausted_propagates_last_error():
    second = TransportError("down 2")
    fetch = FlakyFetch([TransportError("down 1"), second], v4_body("a"))
    sleep = RecordingSleep()

    with pytest.raises(TransportError) as exc_info:
        run(get_image_urls(portrait=False, locale="en-US", attempts=2, fetch=fetch, sleep=sleep))

    assert exc_info.value is second
    assert len(fetch.urls) == 2
    assert sleep.delays == [10.0]


def test_single_attempt_fails_fast():
    fetch = FlakyFetch([DataFormatError("bad json")], v4_body("a"))
    sleep = RecordingSleep()

    with pytest.raises(DataFormatError, match="bad json"):
        run(get_image_urls(portrait=False, locale="en-US", attempts=1, fetch=fetch, sleep=sleep))

    assert len(fetch.urls) == 1
    assert sleep.delays == []


def test_malformed_response_is_retried():
    calls = []

    async def fetch(url):
        calls.append(url)
        return b"not json" if len(calls) == 1 else v4_body("ok")

    images = run(get_image_urls(
        portrait=False, locale="en-US", attempts=2, fetch=fetch, sleep=RecordingSleep(),
    ))
    assert [i.title for i in images] == ["ok"]
    assert len(calls) == 2


def test_unexpected_exception_type_is_preserved():
    fetch = FlakyFetch([KeyError("boom")], b"")
    with pytest.raises(KeyError):
        run(get_image_urls(portrait=False, locale="en-US", attempts=1, fetch=fetch))


def test_custom_delay():
    fetch = FlakyFetch([TransportError("down")], v4_body("a"))
    sleep = RecordingSleep()
    run(get_image_urls(
        portrait=False, locale="en-US", attempts=2, fetch=fetch, sleep=sleep, delay_sec=0.5,
    ))
    assert sleep.delays == [0.5]


def test_invalid_attempts():
    with pytest.raises(ValueError):
        run(get_image_urls(portrait=False, locale="en-US", attempts=0, fetch=FlakyFetch([], b"")))


def test_configuration_error_is_not_retried(monkeypatch):
    monkeypatch.setattr("locale_resolver.read_system_locale", lambda: None)
    fetch = FlakyFetch([], v4_body("a"))
    sleep = RecordingSleep()

    with pytest.raises(ConfigurationError):
        run(get_image_urls(portrait=False, locale=None, attempts=5, fetch=fetch, sleep=sleep))

    assert fetch.urls == []
    assert sleep.delays == []


# =============================================================================
# PIPELINE WIRING
# =============================================================================

def test_results_are_deduplicated():
    fetch = FlakyFetch([], v4_body("a", "b", "a"))
    images = run(get_image_urls(portrait=False, locale="en-US", fetch=fetch))
    assert [i.title for i in images] == ["a", "b"]


def test_orientation_detected_when_not_given():
    fetch = FlakyFetch([], v4_body("a"))
    images = run(get_image_urls(locale="en-US", fetch=fetch, display_is_portrait=lambda: True))
    assert images[0].source_uri == "https://cdn.example.com/a_P.jpg"


def test_explicit_orientation_skips_detection():
    def must_not_detect():
        raise AssertionError("display orientation should not be detected")

    fetch = FlakyFetch([], v4_body("a"))
    images = run(get_image_urls(portrait=False, locale="en-US", fetch=fetch, display_is_portrait=must_not_detect))
    assert images[0].source_uri == "https://cdn.example.com/a_L.jpg"


def test_v3_request_is_sent_to_legacy_endpoint():
    fetch = FlakyFetch([], json.dumps({"batchrsp": {"items": []}}).encode())
    images = run(get_image_urls(portrait=False, locale="fr-CA", api_version=ApiVersion.V3, fetch=fetch))

    assert images == []
    parts = urlsplit(fetch.urls[0])
    assert parts.netloc == "arc.msn.com"
    params = parse_qs(parts.query)
    assert params["ctry"] == ["CA"]
    assert params["lc"] == ["fr-CA"]


def test_api_version_accepts_string():
    fetch = FlakyFetch([], v4_body("a"))
    run(get_image_urls(portrait=False, locale="en-US", api_version="v4", fetch=fetch))
    assert urlsplit(fetch.urls[0]).netloc == "fd.api.iris.microsoft.com"


def test_skip_callback_receives_warnings():
    body = json.dumps({"batchrsp": {"items": [{"item": 1}]}}).encode()
    skipped = []
    run(get_image_urls(portrait=False, locale="en-US", fetch=FlakyFetch([], body), on_skip=skipped.append))
    assert len(skipped) == 1
    assert skipped[0].index == 0


def test_from_config(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "api:\n"
        "  version: v4\n"
        "  locale: de-AT\n"
        "  portrait: true\n"
        "  v4_host: spotlight.example.com\n"
        "retry:\n"
        "  max_attempts: 2\n"
        "  delay_sec: 1\n"
    )
    config = ConfigLoader(config_file)
    seen = []

    async def fake_fetch_bytes(url, session=None, timeout_sec=30):
        seen.append(url)
        if len(seen) == 1:
            raise TransportError("first try fails")
        return v4_body("x")

    sleep = RecordingSleep()
    monkeypatch.setattr(spotlight_api, "fetch_bytes", fake_fetch_bytes)

    images = run(get_image_urls_from_config(config, sleep=sleep))

    assert images[0].source_uri == "https://cdn.example.com/x_P.jpg"
    assert len(seen) == 2
    assert sleep.delays == [1.0]
    assert urlsplit(seen[0]).netloc == "spotlight.example.com"
    assert parse_qs(urlsplit(seen[0]).query)["country"] == ["AT"]


# =============================================================================
# TRANSPORT
# =============================================================================

async def _ok_handler(request):
    return web.Response()


async def _serve(handler, path="/data"):
    app = web.Application()
    app.router.add_get(path, handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


def test_fetch_bytes_returns_body():
    async def handler(request):
        return web.Response(body=b'{"ok": true}')

    async def scenario():
        server = await _serve(handler)
        try:
            return await fetch_bytes(str(server.make_url("/data")))
        finally:
            await server.close()

    assert run(scenario()) == b'{"ok": true}'


def test_fetch_bytes_raises_on_http_error():
    async def handler(request):
        return web.Response(status=503)

    async def scenario():
        server = await _serve(handler)
        try:
            await fetch_bytes(str(server.make_url("/data")))
        finally:
            await server.close()

    with pytest.raises(TransportError) as exc_info:
        run(scenario())
    assert exc_info.value.status == 503


def test_fetch_bytes_raises_on_connection_error():
    async def scenario():
        server = await _serve(_ok_handler)
        url = str(server.make_url("/data"))
        await server.close()
        await fetch_bytes(url, timeout_sec=5)

    with pytest.raises(TransportError):
        run(scenario())


# =============================================================================
# DISPLAY ORIENTATION
# =============================================================================

def test_display_orientation_defaults_to_landscape_off_windows(monkeypatch):
    monkeypatch.setattr(spotlight_api.sys, "platform", "linux")
    assert spotlight_api.primary_display_is_portrait() is False


# =============================================================================
# ERROR CATEGORIES
# =============================================================================

def test_fatal_error_inside_attempt_is_not_retried():
    fetch = FlakyFetch([ConfigurationError("no region"), TransportError("unused")], v4_body("a"))
    sleep = RecordingSleep()

    with pytest.raises(ConfigurationError, match="no region"):
        run(get_image_urls(portrait=False, locale="en-US", attempts=3, fetch=fetch, sleep=sleep))

    assert len(fetch.urls) == 1
    assert sleep.delays == []


def test_retryable_categories():
    assert is_retryable(TransportError("x"))
    assert is_retryable(DataFormatError("x"))
    assert is_retryable(KeyError("x"))
    assert not is_retryable(ConfigurationError("x"))
    assert ConfigurationError.category is ErrorCategory.FATAL


# =============================================================================
# STANDALONE RUN
# =============================================================================

def test_run_reports_invalid_attempts(tmp_path, caplog):
    args = spotlight_api.parse_args([
        "--attempts", "0", "--locale", "en-US", "--landscape",
        "--config", str(tmp_path / "missing.yaml"),
    ])

    with caplog.at_level(logging.ERROR, logger="spotlight_downloader"):
        exit_code = run(spotlight_api._run(args))

    assert exit_code == 1
    assert any("attempts must be at least 1" in r.getMessage() for r in caplog.records)


def test_run_reports_exhausted_attempts(tmp_path, monkeypatch, caplog):
    async def failing_fetch_bytes(url, session=None, timeout_sec=30):
        raise TransportError("offline")

    monkeypatch.setattr(spotlight_api, "fetch_bytes", failing_fetch_bytes)
    args = spotlight_api.parse_args([
        "--locale", "en-US", "--landscape", "--config", str(tmp_path / "missing.yaml"),
    ])

    with caplog.at_level(logging.ERROR, logger="spotlight_downloader"):
        exit_code = run(spotlight_api._run(args))

    assert exit_code == 1
    assert any("TransportError: offline" in r.getMessage() for r in caplog.records)
