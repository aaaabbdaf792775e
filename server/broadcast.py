"""Hands constructed escrow action messages to the peer network.

Pluggable broadcaster interface. The HTTP broadcaster posts envelopes to a
message relay that owns peer propagation; the stub keeps them in memory.
"""

import json
import logging
from abc import ABC, abstractmethod

import httpx

from crypto import ed25519_privkey_to_pubkey, sign_request_ed25519
from protocol import RELAY_TIMEOUT
from server.actions import EscrowActionMessage

log = logging.getLogger(__name__)


class MessageBroadcaster(ABC):
    """Override this to publish over SMSG, libp2p, whatever."""

    @abstractmethod
    async def broadcast(self, message: EscrowActionMessage) -> None:
        ...


class StubBroadcaster(MessageBroadcaster):
    """No-op broadcaster for testing. Records every message."""

    def __init__(self):
        self.messages: list[EscrowActionMessage] = []  # log of broadcasts for test assertions

    async def broadcast(self, message: EscrowActionMessage) -> None:
        self.messages.append(message)
        log.info("Stub broadcast of %s %s", message.action.value, message.hash())


class HTTPBroadcaster(MessageBroadcaster):
    """Posts message envelopes to a relay over HTTP, Ed25519-signed if a key is set."""

    PATH = "/messages"

    def __init__(
        self,
        relay_url: str,
        privkey_bytes: bytes | None = None,
        timeout: float = RELAY_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.relay_url = relay_url.rstrip("/")
        self.privkey_bytes = privkey_bytes
        self.timeout = timeout
        self._transport = transport
        if privkey_bytes:
            self.pubkey_hex = ed25519_privkey_to_pubkey(privkey_bytes).hex()
        else:
            self.pubkey_hex = ""

    def _headers(self, body: str) -> dict:
        h = {"Content-Type": "application/json"}
        if self.privkey_bytes:
            h.update(sign_request_ed25519(self.privkey_bytes, self.pubkey_hex, "POST", self.PATH, body))
        return h

    async def broadcast(self, message: EscrowActionMessage) -> None:
        """Raises httpx.HTTPError if the relay is unreachable or refuses the message."""
        body = json.dumps({"id": message.hash(), "message": message.to_dict()})
        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.post(
                f"{self.relay_url}{self.PATH}",
                content=body,
                headers=self._headers(body),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        log.info("Broadcast %s %s via %s", message.action.value, message.hash(), self.relay_url)
