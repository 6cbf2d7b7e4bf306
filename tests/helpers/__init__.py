"""Test helpers for the polyalgo test suite"""

from tests.helpers.algo_stubs import (
    START,
    TEST_PRIVATE_KEY,
    TEST_PROXY_ADDRESS,
    TOKEN_ID,
    FakeCredentialsClient,
    FakePriceFeed,
    FixedClock,
    StubExchange,
    make_stop_order,
    make_trailing_order,
    make_twap_order,
    paused,
)

__all__ = [
    "START",
    "TEST_PRIVATE_KEY",
    "TEST_PROXY_ADDRESS",
    "TOKEN_ID",
    "FakeCredentialsClient",
    "FakePriceFeed",
    "FixedClock",
    "StubExchange",
    "make_stop_order",
    "make_trailing_order",
    "make_twap_order",
    "paused",
]
