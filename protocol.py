"""Shared constants and enums for the listing escrow service.

All modules import from here to avoid circular dependencies.
"""

import os
from enum import Enum

# --- Protocol Constants ---

# Marketplace protocol message version stamped on every action envelope
MESSAGE_VERSION = "0.0.1.0"

# --- Configuration (environment) ---

# Escrow rows + ratios
ESCROW_DB = os.environ.get("ESCROW_DB", ":memory:")
# Listing templates, posted listings, payment information, addresses
ESCROW_MARKET_DB = os.environ.get("ESCROW_MARKET_DB", ":memory:")
# Message relay base URL; empty means messages stay in-process (stub broadcaster)
ESCROW_RELAY_URL = os.environ.get("ESCROW_RELAY_URL", "")
# Path to a raw 32-byte Ed25519 key for signing relay requests
ESCROW_NODE_KEY = os.environ.get("ESCROW_NODE_KEY", "")

RELAY_TIMEOUT = 30.0  # seconds

# SQLite INTEGER is a signed 64-bit value
SQLITE_INT_MIN = -2**63
SQLITE_INT_MAX = 2**63 - 1


# --- Escrow modes ---

class EscrowType(str, Enum):
    NOP = "NOP"  # no escrow, funds move directly
    MAD = "MAD"  # mutually assured destruction, both sides deposit
    MULTISIG = "MULTISIG"


# Escrow modes that hold funds and therefore accept lock/refund/release
FUNDED_ESCROW_TYPES = {EscrowType.MAD, EscrowType.MULTISIG}


# --- Action messages ---

class EscrowMessageType(str, Enum):
    MPA_LOCK = "MPA_LOCK"
    MPA_REFUND = "MPA_REFUND"
    MPA_RELEASE = "MPA_RELEASE"


class EscrowActionType(str, Enum):
    LOCK = "lock"
    REFUND = "refund"
    RELEASE = "release"


ACTION_MESSAGE_TYPES = {
    EscrowActionType.LOCK: EscrowMessageType.MPA_LOCK,
    EscrowActionType.REFUND: EscrowMessageType.MPA_REFUND,
    EscrowActionType.RELEASE: EscrowMessageType.MPA_RELEASE,
}
