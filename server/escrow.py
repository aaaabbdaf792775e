"""Escrow service for listing templates.

Creates, updates and destroys the escrow configuration attached to a
listing template's payment information, and sends lock/refund/release
action messages for an escrow to the peer network.

Escrow configuration is frozen once the template has been posted as a live
listing; the *_check_by_listing_item entry points enforce that before
delegating to the id-based operations.

Escrow + ratio writes are atomic: create inserts both rows in one
transaction, update replaces the ratio in the same transaction as the type
change, destroy removes both.
"""

import logging

from crypto import load_ed25519_key
from protocol import ESCROW_DB, ESCROW_MARKET_DB, ESCROW_NODE_KEY, ESCROW_RELAY_URL
from server.actions import EscrowLockFactory, EscrowRefundFactory, EscrowReleaseFactory
from server.broadcast import HTTPBroadcaster, MessageBroadcaster, StubBroadcaster
from server.exceptions import NotFoundException, ValidationException
from server.linkage import ListingLinkageGuard
from server.market import AddressService, MarketStore
from server.ratio import EscrowRatioService
from server.schemas import (
    EscrowCreateRequest, EscrowLockRequest, EscrowRefundRequest,
    EscrowReleaseRequest, EscrowUpdateRequest, validate_request,
)
from server.store import Escrow, EscrowStore

log = logging.getLogger(__name__)


def _describe_errors(errors: list) -> str:
    parts = []
    for e in errors:
        loc = ".".join(str(p) for p in e.get("loc", ()))
        parts.append(f"{loc}: {e.get('msg')}" if loc else str(e.get("msg")))
    return "; ".join(parts)


class EscrowService:
    """Escrow CRUD scoped to listing templates, plus escrow actions."""

    def __init__(
        self,
        store: EscrowStore,
        ratio_service: EscrowRatioService,
        market: MarketStore,
        address_service: AddressService,
        lock_factory: EscrowLockFactory,
        refund_factory: EscrowRefundFactory,
        release_factory: EscrowReleaseFactory,
        broadcaster: MessageBroadcaster,
        guard: ListingLinkageGuard | None = None,
    ):
        self.store = store
        self.ratio_service = ratio_service
        self.market = market
        self.address_service = address_service
        self.lock_factory = lock_factory
        self.refund_factory = refund_factory
        self.release_factory = release_factory
        self.broadcaster = broadcaster
        self.guard = guard or ListingLinkageGuard(market)

    # --- Helpers ---

    def _validate(self, model, data):
        request, errors = validate_request(model, data)
        if errors:
            message = f"Invalid {model.__name__}: {_describe_errors(errors)}"
            log.warning(message)
            raise ValidationException(message, errors)
        return request

    def _get(self, escrow_id: int, with_related: bool = True) -> Escrow:
        try:
            return self.store.find_one(escrow_id, with_related)
        except NotFoundException:
            log.warning("Escrow with the id=%s was not found!", escrow_id)
            raise

    @staticmethod
    def _template_id(body: dict):
        if not isinstance(body, dict) or body.get("listingItemTemplateId") is None:
            raise ValidationException("listingItemTemplateId is required")
        body = dict(body)
        return body.pop("listingItemTemplateId"), body

    # --- Queries ---

    async def find_all(self) -> list[Escrow]:
        return self.store.find_all()

    async def find_one(self, escrow_id: int, with_related: bool = True) -> Escrow:
        return self._get(escrow_id, with_related)

    async def find_one_by_payment_information(self, payment_information_id: int,
                                              with_related: bool = True) -> Escrow:
        try:
            return self.store.find_one_by_payment_information(payment_information_id, with_related)
        except NotFoundException:
            log.warning("Escrow with the payment_information_id=%s was not found!", payment_information_id)
            raise

    # --- Create ---

    async def create_check_by_listing_item(self, body: dict) -> Escrow:
        """Create the escrow for an unposted template's payment information."""
        template_id, body = self._template_id(body)
        body["payment_information_id"] = self.guard.resolve_payment_information(template_id, "created")
        return await self.create(body)

    async def create(self, data) -> Escrow:
        request = self._validate(EscrowCreateRequest, data)
        with self.store.transaction():
            escrow = self.store.create({
                "payment_information_id": request.payment_information_id,
                "type": request.type.value,
            })
            self.ratio_service.create({"escrow_id": escrow.id, **request.ratio.model_dump()})
        log.info("Created escrow %s (%s) for payment_information_id=%s",
                 escrow.id, request.type.value, request.payment_information_id)
        return self._get(escrow.id)

    # --- Update ---

    async def update_check_by_listing_item(self, body: dict) -> Escrow:
        """Update the escrow of an unposted template's payment information."""
        template_id, body = self._template_id(body)
        payment_information_id = self.guard.resolve_payment_information(template_id, "updated")
        escrow = await self.find_one_by_payment_information(payment_information_id, with_related=False)
        body["payment_information_id"] = payment_information_id
        return await self.update(escrow.id, body)

    async def update(self, escrow_id: int, data) -> Escrow:
        """Overwrite the escrow type and replace its ratio."""
        request = self._validate(EscrowUpdateRequest, data)
        with self.store.transaction():
            self._get(escrow_id, with_related=False)
            self.store.update(escrow_id, {"type": request.type.value})
            self.ratio_service.replace(escrow_id, request.ratio.model_dump())
        log.info("Updated escrow %s (%s)", escrow_id, request.type.value)
        return self._get(escrow_id)

    # --- Destroy ---

    async def destroy_check_by_listing_item(self, listing_item_template_id: int) -> None:
        """Destroy the escrow of an unposted template's payment information."""
        payment_information_id = self.guard.resolve_payment_information(listing_item_template_id, "destroyed")
        escrow = await self.find_one_by_payment_information(payment_information_id, with_related=False)
        await self.destroy(escrow.id)

    async def destroy(self, escrow_id: int) -> None:
        """Delete an escrow and its ratio. Missing ids raise NotFoundException."""
        try:
            self.store.destroy(escrow_id)
        except NotFoundException:
            log.warning("Escrow with the id=%s was not found!", escrow_id)
            raise
        log.info("Destroyed escrow %s", escrow_id)

    # --- Actions ---

    async def lock(self, data) -> None:
        """Broadcast an MPA_LOCK for the escrow, shipping to address_id.

        Raises NotFoundException for a missing escrow or address, and
        MessageException for a NOP escrow, which holds no funds to lock.
        """
        request = self._validate(EscrowLockRequest, data)
        escrow = self._get(request.escrow_id, with_related=False)
        address = self.address_service.find_one(request.address_id)
        message = self.lock_factory.get({
            "escrow": escrow,
            "address": address,
            "listing": request.item_hash,
            "nonce": request.nonce,
            "memo": request.memo,
        })
        await self.broadcaster.broadcast(message)

    async def refund(self, data) -> None:
        """Broadcast an MPA_REFUND. MessageException for a NOP escrow."""
        request = self._validate(EscrowRefundRequest, data)
        escrow = self._get(request.escrow_id, with_related=False)
        message = self.refund_factory.get({
            "escrow": escrow,
            "listing": request.item_hash,
            "accepted": request.accepted,
            "memo": request.memo,
        })
        await self.broadcaster.broadcast(message)

    async def release(self, data) -> None:
        """Broadcast an MPA_RELEASE. MessageException for a NOP escrow."""
        request = self._validate(EscrowReleaseRequest, data)
        escrow = self._get(request.escrow_id, with_related=False)
        message = self.release_factory.get({
            "escrow": escrow,
            "listing": request.item_hash,
            "memo": request.memo,
        })
        await self.broadcaster.broadcast(message)

    # --- Positional-parameter commands ---

    @staticmethod
    def _params(params, names: tuple) -> list:
        params = list(params or [])
        if len(params) < len(names):
            missing = ", ".join(names[len(params):])
            raise ValidationException(f"Missing parameters: {missing}")
        return params[:len(names)]

    async def rpc_find_all(self, params=None) -> list[Escrow]:
        return await self.find_all()

    async def rpc_find_one(self, params) -> Escrow:
        (escrow_id,) = self._params(params, ("id",))
        return await self.find_one(escrow_id)

    async def rpc_create(self, params) -> Escrow:
        escrow_type, buyer, seller, payment_information_id = self._params(
            params, ("type", "buyer", "seller", "payment_information_id"))
        return await self.create({
            "payment_information_id": payment_information_id,
            "type": escrow_type,
            "ratio": {"buyer": buyer, "seller": seller},
        })

    async def rpc_update(self, params) -> Escrow:
        escrow_id, escrow_type, buyer, seller = self._params(params, ("id", "type", "buyer", "seller"))
        return await self.update(escrow_id, {
            "type": escrow_type,
            "ratio": {"buyer": buyer, "seller": seller},
        })

    async def rpc_destroy(self, params) -> None:
        (escrow_id,) = self._params(params, ("id",))
        await self.destroy(escrow_id)


# --- Service factory ---

def create_service(
    store: EscrowStore | None = None,
    market: MarketStore | None = None,
    broadcaster: MessageBroadcaster | None = None,
    ratio_service: EscrowRatioService | None = None,
    address_service: AddressService | None = None,
) -> EscrowService:
    """Wire an EscrowService, building anything not injected from the environment.

    Without ESCROW_RELAY_URL, messages go to a StubBroadcaster.
    """
    _store = store or EscrowStore(ESCROW_DB)
    _market = market or MarketStore(ESCROW_MARKET_DB)

    if broadcaster is None:
        if ESCROW_RELAY_URL:
            privkey = load_ed25519_key(ESCROW_NODE_KEY) if ESCROW_NODE_KEY else None
            broadcaster = HTTPBroadcaster(ESCROW_RELAY_URL, privkey_bytes=privkey)
        else:
            broadcaster = StubBroadcaster()

    return EscrowService(
        store=_store,
        ratio_service=ratio_service or EscrowRatioService(_store),
        market=_market,
        address_service=address_service or AddressService(_market),
        lock_factory=EscrowLockFactory(),
        refund_factory=EscrowRefundFactory(),
        release_factory=EscrowReleaseFactory(),
        broadcaster=broadcaster,
    )
