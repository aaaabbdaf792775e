"""Buyer/seller ratio rows attached one-to-one to an escrow."""

import logging

from server.exceptions import NotFoundException
from server.store import EscrowRatio, EscrowStore

log = logging.getLogger(__name__)


class EscrowRatioService:
    """Creates, replaces and destroys the ratio row of an escrow."""

    def __init__(self, store: EscrowStore):
        self.store = store

    def find_one(self, ratio_id: int) -> EscrowRatio:
        ratio = self.store.find_ratio(ratio_id)
        if ratio is None:
            log.warning("EscrowRatio with the id=%s was not found!", ratio_id)
            raise NotFoundException(ratio_id)
        return ratio

    def find_by_escrow(self, escrow_id: int) -> EscrowRatio | None:
        return self.store.find_ratio_by_escrow(escrow_id)

    def create(self, body: dict) -> EscrowRatio:
        """Create a ratio. body: {buyer, seller, escrow_id}."""
        for key in ("escrow_id", "buyer", "seller"):
            if body.get(key) is None:
                raise ValueError(f"EscrowRatio body is missing '{key}'")
        return self.store.insert_ratio(body["escrow_id"], int(body["buyer"]), int(body["seller"]))

    def destroy(self, ratio_id: int) -> None:
        if not self.store.delete_ratio(ratio_id):
            log.warning("EscrowRatio with the id=%s was not found!", ratio_id)
            raise NotFoundException(ratio_id)

    def replace(self, escrow_id: int, body: dict) -> EscrowRatio:
        """Delete the escrow's current ratio (if any) and create a new one.

        Runs in one transaction: a failure leaves the old ratio in place.
        """
        with self.store.transaction():
            current = self.store.find_ratio_by_escrow(escrow_id)
            if current is not None:
                self.destroy(current.id)
            return self.create({**body, "escrow_id": escrow_id})
