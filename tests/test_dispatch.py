"""
Tests for request dispatch and response envelope handling.

Covers:
- Result unwrapping and exchange-reported errors
- Unparsable bodies and transport failures
- GET for public calls, signed POST for private calls
"""

import pytest
import requests
from unittest.mock import Mock

from krakencli.client import Client, sign
from krakencli.utils._exceptions import (
    KrakenError,
    KrakenConfigError,
    KrakenNetworkError,
    KrakenProtocolError,
    KrakenResponseError,
)
from tests.conftest import API_KEY, API_SECRET, envelope, make_response, parse_body


# =============================================================================
# Envelope handling
# =============================================================================


def test_returns_result(public_client):
    public_client.session.request.return_value = make_response(
        {"error": [], "result": {"unixtime": 1700000000}}
    )
    assert public_client._request("get", "public/Time") == {"unixtime": 1700000000}


def test_error_takes_precedence_over_result(public_client):
    public_client.session.request.return_value = make_response(
        {"error": ["EGeneral:Invalid arguments"], "result": []}
    )
    with pytest.raises(KrakenResponseError, match="EGeneral:Invalid arguments"):
        public_client._request("get", "public/Ticker", data={"pair": "NOPE"})


def test_only_first_error_in_message(public_client):
    errors = ["EQuery:Unknown asset pair", "EGeneral:Invalid arguments"]
    public_client.session.request.return_value = make_response(envelope(error=errors))
    with pytest.raises(KrakenResponseError) as excinfo:
        public_client._request("get", "public/Ticker")
    assert str(excinfo.value) == "EQuery:Unknown asset pair"
    assert excinfo.value.errors == errors


def test_invalid_json_is_protocol_error(public_client):
    public_client.session.request.return_value = make_response("<html>502 Bad Gateway</html>", 502)
    with pytest.raises(KrakenProtocolError, match="502"):
        public_client._request("get", "public/Time")


def test_body_without_envelope_is_protocol_error(public_client):
    public_client.session.request.return_value = make_response([1, 2, 3])
    with pytest.raises(KrakenProtocolError):
        public_client._request("get", "public/Time")


@pytest.mark.parametrize(
    "exc", [requests.exceptions.ConnectTimeout(), requests.exceptions.ReadTimeout()]
)
def test_timeout_is_network_error(public_client, exc):
    public_client.session.request.side_effect = exc
    with pytest.raises(KrakenNetworkError, match="timed out"):
        public_client._request("get", "public/Time")
    assert public_client.session.request.call_count == 1


def test_connection_failure_is_network_error(public_client):
    public_client.session.request.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(KrakenNetworkError) as excinfo:
        public_client._request("get", "public/Time")
    assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)


def test_network_and_exchange_errors_are_distinct():
    assert not issubclass(KrakenNetworkError, KrakenResponseError)
    assert not issubclass(KrakenResponseError, KrakenNetworkError)
    for exc in (KrakenConfigError, KrakenNetworkError, KrakenProtocolError, KrakenResponseError):
        assert issubclass(exc, KrakenError)


# =============================================================================
# Wire format
# =============================================================================


def test_public_call_is_get_with_query(public_client):
    public_client._request("get", "public/Ticker", data={"pair": "XXBTZEUR"})
    args, kwargs = public_client.session.request.call_args
    assert args == ("get", "https://api.kraken.com/0/public/Ticker")
    assert kwargs == {"params": {"pair": "XXBTZEUR"}}


def test_private_call_is_signed_post(client):
    client._request("post", "private/CancelOrder", signed=True, data={"txid": "OABC-123"})
    args, kwargs = client.session.request.call_args
    assert args == ("post", "https://api.kraken.com/0/private/CancelOrder")

    body = kwargs["data"].decode("utf-8")
    data = parse_body(body)
    assert list(data) == ["nonce", "txid"]
    assert data["txid"] == "OABC-123"

    headers = kwargs["headers"]
    assert headers["API-Key"] == API_KEY
    assert headers["API-Sign"] == sign("/0/private/CancelOrder", data, data["nonce"], API_SECRET)
    assert headers["Content-Type"].startswith("application/x-www-form-urlencoded")


def test_transmitted_body_is_the_signed_body(client):
    client.session.request.return_value = make_response(envelope({"count": 1}))
    captured = {}
    original = client._generate_signature

    def spy(path, body, nonce):
        captured["body"] = body
        return original(path, body, nonce)

    client._generate_signature = spy
    client.cancel_order("OABC-123")
    assert client.session.request.call_args.kwargs["data"] == captured["body"].encode("utf-8")


def test_private_call_without_credentials(public_client):
    with pytest.raises(KrakenConfigError):
        public_client.balance()
    public_client.session.request.assert_not_called()


def test_custom_origin_and_version():
    client = Client(api_url="https://example.test/", api_version=1)
    client.session.request = Mock(return_value=make_response(envelope({"unixtime": 1})))
    client.get_server_time()
    assert client.session.request.call_args.args[1] == "https://example.test/1/public/Time"


def test_timeout_is_applied_to_session():
    client = Client(timeout=3)
    assert client.session.request.keywords["timeout"] == 3
    assert Client().session.request.keywords["timeout"] == 10


def test_non_positive_timeout_rejected():
    with pytest.raises(KrakenConfigError):
        Client(timeout=0)


def test_credentials_are_read_only(client):
    assert client.api_key == API_KEY
    assert client.api_secret == API_SECRET
    with pytest.raises(AttributeError):
        client.api_key = "other"
