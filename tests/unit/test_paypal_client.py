"""
Unit tests for the PayPal client's error handling.

Tests cover:
1. Transport failures surface as PayPalAPIError
2. Responses missing the expected fields surface as PayPalAPIError
3. A well-formed batch response
"""

import socket
from urllib.error import URLError

import pytest

from clients.http import HttpError
from clients.paypal import PayPalAPIError, PayPalClient, PayPalConfig, PayPalNotConfiguredError


def _client() -> PayPalClient:
    return PayPalClient(PayPalConfig(client_id="id", client_secret="secret"))


def _scripted(monkeypatch, *responses):
    """Replace the HTTP helper; each call returns or raises the next response."""
    queue = list(responses)
    calls = []

    async def _request(method, url, **kwargs):
        calls.append((method, url))
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr("clients.paypal.client.request", _request)
    return calls


# =============================================================================
# Transport Tests
# =============================================================================


class TestTransportErrors:
    """Network failures never leak past the client."""

    @pytest.mark.parametrize(
        "error",
        [
            URLError("connection refused"),
            socket.timeout("timed out"),
            ConnectionResetError("reset by peer"),
            ValueError("Expecting value: line 1 column 1 (char 0)"),
        ],
    )
    async def test_token_request_failure(self, monkeypatch, error):
        _scripted(monkeypatch, error)
        with pytest.raises(PayPalAPIError):
            await _client().create_payout("payout_1", "shop@example.com", 2000)

    async def test_payout_request_failure(self, monkeypatch):
        calls = _scripted(monkeypatch, {"access_token": "A21AA"}, URLError("connection refused"))
        with pytest.raises(PayPalAPIError, match="connection refused"):
            await _client().create_payout("payout_1", "shop@example.com", 2000)
        assert [c[1].rsplit("/", 1)[-1] for c in calls] == ["token", "payouts"]

    async def test_http_error_keeps_status(self, monkeypatch):
        _scripted(monkeypatch, {"access_token": "A21AA"}, HttpError(422, {"message": "Receiver is unregistered"}))
        with pytest.raises(PayPalAPIError, match=r"\(422\): Receiver is unregistered"):
            await _client().create_payout("payout_1", "shop@example.com", 2000)

    async def test_unconfigured(self):
        with pytest.raises(PayPalNotConfiguredError):
            await PayPalClient(PayPalConfig(client_id="", client_secret="")).create_payout(
                "payout_1", "shop@example.com", 2000
            )


# =============================================================================
# Response Shape Tests
# =============================================================================


class TestResponseShape:
    """Unexpected bodies are API errors, not KeyErrors."""

    async def test_token_without_access_token(self, monkeypatch):
        _scripted(monkeypatch, {"error": "invalid_client"})
        with pytest.raises(PayPalAPIError, match="no access_token"):
            await _client().create_payout("payout_1", "shop@example.com", 2000)

    async def test_payout_without_batch_header(self, monkeypatch):
        _scripted(monkeypatch, {"access_token": "A21AA"}, {"links": []})
        with pytest.raises(PayPalAPIError, match="no batch id"):
            await _client().create_payout("payout_1", "shop@example.com", 2000)

    async def test_non_object_body(self, monkeypatch):
        _scripted(monkeypatch, {"access_token": "A21AA"}, "OK")
        with pytest.raises(PayPalAPIError, match="unexpected body"):
            await _client().create_payout("payout_1", "shop@example.com", 2000)

    async def test_batch_created(self, monkeypatch):
        _scripted(
            monkeypatch,
            {"access_token": "A21AA"},
            {"batch_header": {"payout_batch_id": "BATCH-7", "batch_status": "PENDING"}},
        )
        batch = await _client().create_payout("payout_1", "shop@example.com", 2000)
        assert batch.batch_id == "BATCH-7"
        assert batch.batch_status == "PENDING"
        assert batch.sender_batch_id == "payout_1"
