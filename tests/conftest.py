import sys
import os

# Ensure the repo root is on the path for all tests
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from crypto import ed25519_privkey_to_pubkey
from server.broadcast import StubBroadcaster
from server.escrow import create_service
from server.market import MarketStore
from server.store import EscrowStore


# Pre-generated node keypair for relay signing tests
NODE_PRIV = Ed25519PrivateKey.generate().private_bytes_raw()
NODE_PUB = ed25519_privkey_to_pubkey(NODE_PRIV)

ITEM_HASH = "f08f3d6e6a7f4a1b9d2b6c8e0a1c3e5f7092b4d6f8a0c2e4a6b8d0f2a4c6e8b0"

SAMPLE_ADDRESS = {
    "title": "Home",
    "first_name": "Robert",
    "last_name": "Fischer",
    "address_line1": "123 Fake Street",
    "address_line2": "Apt 4",
    "city": "Brooklyn",
    "state": "NY",
    "country": "US",
    "zip_code": "11201",
}


def make_template(market: MarketStore, posted: bool = False, with_payment: bool = True) -> tuple[int, int | None]:
    """Create a listing template. Returns (template_id, payment_information_id)."""
    template = market.create_template()
    payment_id = None
    if with_payment:
        payment_id = market.create_payment_information(template["id"])["id"]
    if posted:
        market.post_listing(template["id"], ITEM_HASH)
    return template["id"], payment_id


def escrow_body(payment_information_id, escrow_type="MAD", buyer=50, seller=50) -> dict:
    return {
        "payment_information_id": payment_information_id,
        "type": escrow_type,
        "ratio": {"buyer": buyer, "seller": seller},
    }


@pytest.fixture
def store():
    s = EscrowStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def market():
    m = MarketStore(":memory:")
    yield m
    m.close()


@pytest.fixture
def broadcaster():
    return StubBroadcaster()


@pytest.fixture
def service(store, market, broadcaster):
    return create_service(store=store, market=market, broadcaster=broadcaster)
