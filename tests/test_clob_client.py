"""
Tests for the CLOB HTTP adapters (HTTP session mocked).
"""

from unittest.mock import Mock

import pytest
import requests
from eth_account import Account
from eth_account.messages import encode_typed_data

from core.retry import RetryPolicy
from infra.clob_client import (
    CLOB_AUTH_MESSAGE,
    ClobCredentialsClient,
    ClobPriceFeed,
    build_clob_auth_typed_data,
)
from tests.helpers import TEST_PRIVATE_KEY, TEST_PROXY_ADDRESS, TOKEN_ID


def _response(status=200, payload=None):
    response = Mock(status_code=status)
    response.json.return_value = payload or {}
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return response


NO_RETRY = RetryPolicy(max_retries=1, initial_delay_ms=0, max_delay_ms=0)


class TestClobPriceFeed:
    def test_midpoint(self):
        http = Mock()
        http.get.return_value = _response(payload={"mid": "0.515"})
        feed = ClobPriceFeed("https://clob.test/", http=http, retry_policy=NO_RETRY)

        assert feed.get_price(TOKEN_ID) == pytest.approx(0.515)
        http.get.assert_called_once_with(
            "https://clob.test/midpoint", params={"token_id": TOKEN_ID}, timeout=10.0
        )

    def test_unknown_token_is_none(self):
        http = Mock()
        http.get.return_value = _response(status=404)
        assert ClobPriceFeed(http=http, retry_policy=NO_RETRY).get_price(TOKEN_ID) is None

    def test_server_error_is_none(self):
        http = Mock()
        http.get.return_value = _response(status=500)
        assert ClobPriceFeed(http=http, retry_policy=NO_RETRY).get_price(TOKEN_ID) is None

    def test_connection_error_retried_then_none(self):
        http = Mock()
        http.get.side_effect = requests.ConnectionError("connection reset")
        assert ClobPriceFeed(http=http, retry_policy=NO_RETRY).get_price(TOKEN_ID) is None
        assert http.get.call_count == 2

    @pytest.mark.parametrize("payload", [{}, {"mid": ""}, {"mid": "0"}])
    def test_missing_or_zero_mid_is_none(self, payload):
        http = Mock()
        http.get.return_value = _response(payload=payload)
        assert ClobPriceFeed(http=http, retry_policy=NO_RETRY).get_price(TOKEN_ID) is None


class TestClobCredentialsClient:
    @pytest.fixture
    def signer(self):
        return Account.from_key(TEST_PRIVATE_KEY)

    def test_l1_headers_signature_recovers_signer(self, signer):
        client = ClobCredentialsClient(chain_id=137, http=Mock(), clock=lambda: 1700000000.7)

        headers = client.l1_headers(signer)

        assert headers["POLY_ADDRESS"] == signer.address
        assert headers["POLY_TIMESTAMP"] == "1700000000"
        assert headers["POLY_NONCE"] == "0"
        typed = build_clob_auth_typed_data(signer.address, 1700000000, 0, 137)
        recovered = Account.recover_message(encode_typed_data(full_message=typed), signature=headers["POLY_SIGNATURE"])
        assert recovered == signer.address

    def test_typed_data_shape(self):
        typed = build_clob_auth_typed_data(TEST_PROXY_ADDRESS, 5, 1, 80002)
        assert typed["domain"] == {"name": "ClobAuthDomain", "version": "1", "chainId": 80002}
        assert typed["message"]["timestamp"] == "5"
        assert typed["message"]["message"] == CLOB_AUTH_MESSAGE

    def test_derive_api_key(self, signer):
        http = Mock()
        http.get.return_value = _response(payload={"apiKey": "k", "secret": "s", "passphrase": "p"})
        client = ClobCredentialsClient("https://clob.test", http=http, clock=lambda: 1)

        creds = client.derive_api_key(signer, TEST_PROXY_ADDRESS)

        assert (creds.key, creds.secret, creds.passphrase) == ("k", "s", "p")
        url = http.get.call_args.args[0]
        assert url == "https://clob.test/auth/derive-api-key"
        assert http.get.call_args.kwargs["headers"]["POLY_ADDRESS"] == signer.address

    def test_create_api_key_posts(self, signer):
        http = Mock()
        http.post.return_value = _response(payload={"apiKey": "k2", "secret": "s2", "passphrase": "p2"})
        client = ClobCredentialsClient("https://clob.test", http=http)

        assert client.create_api_key(signer, TEST_PROXY_ADDRESS).key == "k2"
        assert http.post.call_args.args[0] == "https://clob.test/auth/api-key"

    def test_incomplete_credentials_raise(self, signer):
        http = Mock()
        http.get.return_value = _response(payload={"apiKey": "k"})
        with pytest.raises(ValueError, match="did not contain API credentials"):
            ClobCredentialsClient(http=http).derive_api_key(signer, TEST_PROXY_ADDRESS)

    def test_http_error_raises(self, signer):
        http = Mock()
        http.get.return_value = _response(status=401)
        with pytest.raises(requests.HTTPError):
            ClobCredentialsClient(http=http).derive_api_key(signer, TEST_PROXY_ADDRESS)
