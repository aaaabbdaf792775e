"""Escrow configuration is only editable while its listing template is unposted.

A template counts as posted as soon as one live listing item references it.
"""

import logging

from server.exceptions import MessageException, NotFoundException
from server.market import MarketStore

log = logging.getLogger(__name__)


class ListingLinkageGuard:
    """Resolves a listing template id to the payment information escrows attach to."""

    def __init__(self, market: MarketStore):
        self.market = market

    def resolve_payment_information(self, listing_item_template_id: int, action: str = "created") -> int:
        """Return the payment information id for an unposted template.

        action names the attempted change ("created", "updated", "destroyed")
        and only shapes the rejection message.

        Raises NotFoundException if the template does not exist, and
        MessageException if it was already posted or has no payment information.
        """
        template = self.market.find_template(listing_item_template_id)
        if template is None:
            log.warning("ListingItemTemplate with the id=%s was not found!", listing_item_template_id)
            raise NotFoundException(listing_item_template_id)

        if template["listing_items"]:
            message = (
                f"Escrow cannot be {action} because ListingItem has already been posted "
                f"with listing-item-template-id {listing_item_template_id}"
            )
            log.warning(message)
            raise MessageException(message)

        payment_information = self.market.find_payment_information_by_template(listing_item_template_id)
        if payment_information is None:
            message = f"PaymentInformation with the listing_item_template_id={listing_item_template_id} was not found!"
            log.warning(message)
            raise MessageException(message)
        return payment_information["id"]
