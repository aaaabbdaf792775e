"""Crypto utilities for the listing escrow service.

Provides:
- SHA-256 digests and canonical JSON for action-message ids
- Ed25519 node key loading and signing for message relay requests

Dependencies: hashlib, json, cryptography
"""

import hashlib
import json
import time as _time

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives import serialization


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------

def sha256_hash(data: bytes) -> str:
    """SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def canonical_json(obj: dict) -> bytes:
    """Canonical JSON: sorted keys, no extra whitespace, UTF-8."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def message_hash(envelope: dict) -> str:
    """Stable id of a protocol message envelope."""
    return sha256_hash(canonical_json(envelope))


# ---------------------------------------------------------------------------
# Ed25519 node key
# ---------------------------------------------------------------------------

def load_ed25519_key(path: str) -> bytes:
    """Load a 32-byte raw Ed25519 private key from file."""
    with open(path, "rb") as f:
        data = f.read()
    if len(data) != 32:
        raise ValueError(f"Expected 32-byte Ed25519 key, got {len(data)} bytes")
    return data


def ed25519_privkey_to_pubkey(privkey_bytes: bytes) -> bytes:
    """Derive the 32-byte public key from a 32-byte private key."""
    privkey = Ed25519PrivateKey.from_private_bytes(privkey_bytes)
    return privkey.public_key().public_bytes(
        serialization.Encoding.Raw,
        serialization.PublicFormat.Raw,
    )


def ed25519_sign(privkey_bytes: bytes, data: bytes) -> str:
    """Sign data with Ed25519 private key. Returns 128-char hex signature."""
    privkey = Ed25519PrivateKey.from_private_bytes(privkey_bytes)
    return privkey.sign(data).hex()


# ---------------------------------------------------------------------------
# Relay request signing
# ---------------------------------------------------------------------------

def request_payload(method: str, path: str, timestamp: str, body: str = "") -> bytes:
    """Bytes covered by a relay request signature: METHOD\\nPATH\\nTIMESTAMP\\nBODY"""
    return f"{method}\n{path}\n{timestamp}\n{body}".encode("utf-8")


def sign_request_ed25519(
    privkey_bytes: bytes,
    pubkey_hex: str,
    method: str,
    path: str,
    body: str = "",
    timestamp: float | None = None,
) -> dict:
    """Sign a relay request with Ed25519. Returns headers to include."""
    ts = str(int(_time.time() if timestamp is None else timestamp))
    sig = ed25519_sign(privkey_bytes, request_payload(method, path, ts, body))
    return {
        "X-Escrow-Timestamp": ts,
        "X-Escrow-Signature": sig,
        "X-Escrow-Pubkey": pubkey_hex,
    }
