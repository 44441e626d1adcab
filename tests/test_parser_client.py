"""
tests/test_parser_client.py — Screenshot Parser Client
=======================================================
The HTTP transport is swapped for ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import httpx

from raidkeeper.services.parser_client import ScreenshotParser

PARSER_URL = "https://parser.test/who"


def run_async(coro):
    return asyncio.run(coro)


def _parse(handler, api_key=""):
    parser = ScreenshotParser(PARSER_URL, api_key=api_key)
    with patch(
        "raidkeeper.services.parser_client.httpx.AsyncHTTPTransport",
        return_value=httpx.MockTransport(handler),
    ):
        return run_async(parser.parse("https://cdn.test/who.png"))


class TestScreenshotParser:
    def test_returns_names(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"names": ["Alice", "Bob", 3]})

        assert _parse(handler, api_key="k3y") == ["Alice", "Bob"]
        assert seen["body"] == {"url": "https://cdn.test/who.png"}
        assert seen["auth"] == "Bearer k3y"

    def test_no_auth_header_without_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"names": []})

        assert _parse(handler) == []
        assert seen["auth"] is None

    def test_http_error_status(self):
        assert _parse(lambda request: httpx.Response(500)) is None

    def test_non_json_body(self):
        assert _parse(lambda request: httpx.Response(200, text="<html>")) is None

    def test_missing_names(self):
        assert _parse(lambda request: httpx.Response(200, json={"error": "blurry"})) is None

    def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        assert _parse(handler) is None
