"""Tests for the SponsorBlock client."""

import json

import httpx
import pytest

from podcutter.core.sponsorblock import CATEGORIES, SponsorBlockClient


def _client(handler) -> SponsorBlockClient:
    transport = httpx.MockTransport(handler)
    return SponsorBlockClient("https://sponsor.example/", client=httpx.AsyncClient(transport=transport))


@pytest.mark.asyncio
async def test_parses_segments() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[
            {"segment": [10.0, 20.5], "category": "sponsor", "UUID": "u1"},
            {"segment": [0, 4], "category": "intro", "UUID": "u2"},
        ])

    segments = await _client(handler).get_segments("dQw4w9WgXcQ")

    assert [(s.category, s.start, s.end) for s in segments] == [("sponsor", 10.0, 20.5), ("intro", 0.0, 4.0)]
    request = seen[0]
    assert request.url.path == "/api/skipSegments"
    assert request.url.params["videoID"] == "dQw4w9WgXcQ"
    assert json.loads(request.url.params["categories"]) == CATEGORIES


@pytest.mark.asyncio
async def test_404_means_no_segments_yet() -> None:
    segments = await _client(lambda request: httpx.Response(404)).get_segments("abc")

    assert segments == []


@pytest.mark.asyncio
async def test_unexpected_status_is_soft_failure(caplog) -> None:
    segments = await _client(lambda request: httpx.Response(503)).get_segments("abc")

    assert segments == []
    assert "unexpected status 503" in caplog.text


@pytest.mark.asyncio
async def test_malformed_json_is_soft_failure() -> None:
    segments = await _client(lambda request: httpx.Response(200, text="not json")).get_segments("abc")

    assert segments == []


@pytest.mark.asyncio
async def test_unexpected_shape_is_soft_failure() -> None:
    segments = await _client(lambda request: httpx.Response(200, json={"error": "nope"})).get_segments("abc")

    assert segments == []


@pytest.mark.asyncio
async def test_transport_error_is_soft_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    segments = await _client(handler).get_segments("abc")

    assert segments == []
