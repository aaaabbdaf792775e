"""Escrow action messages: lock, refund, release.

Each factory turns an escrow plus request context into the marketplace
protocol envelope that gets broadcast to the peer network:

    {"version": "0.0.1.0",
     "mpaction": {"action": "MPA_LOCK", "listing": "<item hash>", ...}}

Funds are only held by MAD and MULTISIG escrows, so NOP escrows reject
every action.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from crypto import message_hash
from protocol import (
    ACTION_MESSAGE_TYPES, FUNDED_ESCROW_TYPES, MESSAGE_VERSION,
    EscrowActionType, EscrowMessageType, EscrowType,
)
from server.exceptions import MessageException
from server.market import ADDRESS_FIELDS
from server.store import Escrow

log = logging.getLogger(__name__)


@dataclass
class EscrowActionMessage:
    """A constructed protocol message, ready to broadcast."""
    action: EscrowMessageType
    listing: str
    fields: dict = field(default_factory=dict)
    version: str = MESSAGE_VERSION

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "mpaction": {
                "action": self.action.value,
                "listing": self.listing,
                **self.fields,
            },
        }

    def hash(self) -> str:
        return message_hash(self.to_dict())


def format_address(address: dict) -> str:
    """Single-line shipping address: name, street, city, state, country, zip."""
    parts = [str(address.get(f, "") or "").strip() for f in ADDRESS_FIELDS if f != "title"]
    return " ".join(p for p in parts if p)


class EscrowActionFactory(ABC):
    """Shared checks for the three action factories."""

    action: EscrowActionType

    def _check_escrow(self, escrow: Escrow):
        try:
            escrow_type = EscrowType(escrow.type)
        except ValueError:
            raise MessageException(f"Escrow {escrow.id} has unknown type {escrow.type}")
        if escrow_type not in FUNDED_ESCROW_TYPES:
            raise MessageException(
                f"Escrow {escrow.id} of type {escrow_type.value} holds no funds, cannot {self.action.value}"
            )

    def _build(self, message_input: dict, **fields) -> EscrowActionMessage:
        self._check_escrow(message_input["escrow"])
        message = EscrowActionMessage(
            action=ACTION_MESSAGE_TYPES[self.action],
            listing=message_input["listing"],
            fields={**fields, "escrow": {"type": self.action.value}},
        )
        log.debug("Built %s message %s for escrow %s", message.action.value, message.hash(),
                  message_input["escrow"].id)
        return message

    @abstractmethod
    def get(self, message_input: dict) -> EscrowActionMessage:
        ...


class EscrowLockFactory(EscrowActionFactory):
    """message_input: {escrow, address, listing, nonce, memo}"""

    action = EscrowActionType.LOCK

    def get(self, message_input: dict) -> EscrowActionMessage:
        return self._build(
            message_input,
            nonce=message_input["nonce"],
            info={
                "address": format_address(message_input["address"]),
                "memo": message_input.get("memo", ""),
            },
        )


class EscrowRefundFactory(EscrowActionFactory):
    """message_input: {escrow, listing, accepted, memo}"""

    action = EscrowActionType.REFUND

    def get(self, message_input: dict) -> EscrowActionMessage:
        return self._build(
            message_input,
            accepted=bool(message_input["accepted"]),
            memo=message_input.get("memo", ""),
        )


class EscrowReleaseFactory(EscrowActionFactory):
    """message_input: {escrow, listing, memo}"""

    action = EscrowActionType.RELEASE

    def get(self, message_input: dict) -> EscrowActionMessage:
        return self._build(message_input, memo=message_input.get("memo", ""))
