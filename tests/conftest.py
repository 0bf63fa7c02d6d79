"""Shared fixtures for the krakencli test suite. No test touches the network."""

import json
import pytest
from unittest.mock import Mock

from krakencli.client import Client


API_KEY = "test-api-key"
API_SECRET = "kQH5HW/8p1uGOVjbgWA7FunAmGO8lsSUXNsu3eow76sz84Q18fWxnyRzBHCd3pd5nE9qa99HAZtuZuj6F1huXg=="

ASSET_PAIRS = {
    "XXBTZEUR": {"altname": "XBTEUR", "pair_decimals": 1, "lot_decimals": 8},
    "XETHZUSD": {"altname": "ETHUSD", "pair_decimals": 2, "lot_decimals": 8},
    "ADAEUR": {"altname": "ADAEUR", "pair_decimals": 6, "lot_decimals": 0},
}


def make_response(payload, status_code=200):
    """Build a stand-in for requests.Response carrying `payload` as its JSON body"""
    response = Mock()
    response.status_code = status_code
    if isinstance(payload, (bytes, str)):
        text = payload.decode() if isinstance(payload, bytes) else payload
        response.text = text
        response.json = Mock(side_effect=lambda: json.loads(text))
    else:
        response.text = json.dumps(payload)
        response.json = Mock(return_value=payload)
    return response


def envelope(result=None, error=None):
    return {"error": error or [], "result": result if result is not None else {}}


def parse_body(body):
    """Split a canonical POST body back into an ordered dict"""
    body = body.decode("utf-8") if isinstance(body, bytes) else body
    return dict(pair.split("=", 1) for pair in body.split("&")) if body else {}


@pytest.fixture
def public_client() -> Client:
    client = Client()
    client.session.request = Mock(return_value=make_response(envelope()))
    return client


@pytest.fixture
def client() -> Client:
    client = Client(API_KEY, API_SECRET)
    client.session.request = Mock(return_value=make_response(envelope()))
    return client


@pytest.fixture
def trading_client(client) -> Client:
    client.precision.update(ASSET_PAIRS)
    return client
