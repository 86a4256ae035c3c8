#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Webhook reconciler applying payment provider outcomes to inventory.

Every event is verified before anything else happens. A verified event is then
applied:

- checkout.session.completed (paid) and
  checkout.session.async_payment_succeeded: create the Order (once per
  session), the missing OrderItems, and mark the held products Sold.
- checkout.session.expired, checkout.session.async_payment_failed and
  payment_intent.payment_failed: release the held products.
- anything else: acknowledged without action.

Completion is written so a redelivered event finishes whatever an earlier
attempt left undone instead of duplicating it.
"""

import logging
from typing import Optional

from enums import PaymentEventType
from enums import PaymentStatus
from enums import ProductStatus
from enums import RELEASE_EVENTS
from exceptions import CartError
from exceptions import WebhookProcessingError
from inventory_store import InventoryStore
from models import EventObject
from models import HoldMetadata
from models import Order
from models import OrderItem
from models import WebhookEvent
from services.alerts import AlertHook
from services.alerts import log_alert
from services.payment_gateway import StripeGateway
from services.reservation_service import ReservationManager

logger = logging.getLogger(__name__)


def order_from_session(session: EventObject) -> Order:
  """Captures payment and shipping details from a completed session."""
  details = session.customer_details
  shipping = session.shipping()
  address = shipping.address
  return Order(
      session_id=session.id,
      email=(details.email if details else None) or session.customer_email,
      currency=(session.currency or "usd").upper(),
      amount_total=session.amount_total or 0,
      shipping_name=shipping.name or "",
      shipping_country=(address.country if address else None) or "",
      shipping_city=(address.city if address else None) or "",
      shipping_postal=(address.postal_code if address else None) or "",
      shipping_line1=(address.line1 if address else None) or "",
      shipping_line2=(address.line2 if address else None) or "",
  )


class WebhookReconciler:
  """Verifies payment provider events and reconciles holds against them."""

  def __init__(
      self,
      store: InventoryStore,
      reservations: ReservationManager,
      gateway: StripeGateway,
      alert: AlertHook = log_alert,
  ):
    self.store = store
    self.reservations = reservations
    self.gateway = gateway
    self._alert = alert

  async def handle(self, payload: bytes, signature: Optional[str]) -> None:
    """Verifies and applies one webhook delivery.

    Raises:
      WebhookSignatureError: Verification failed; nothing was changed.
      WebhookProcessingError: The event was genuine but could not be applied;
        the provider should redeliver it.
    """
    event = self.gateway.construct_event(payload, signature)
    logger.info("Received %s event %s", event.type, event.id)
    try:
      await self.reconcile(event)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.exception("Failed to apply %s event %s", event.type, event.id)
      self._alert(
          "webhook_processing_failed",
          {"event_id": event.id, "type": event.type, "error": str(e)},
      )
      message = e.message if isinstance(e, CartError) else str(e)
      raise WebhookProcessingError(message) from e

  async def reconcile(self, event: WebhookEvent) -> Optional[Order]:
    """Applies a verified event. Returns the order when one was finalized."""
    try:
      event_type = PaymentEventType(event.type)
    except ValueError:
      logger.debug("Ignoring unhandled event type %s", event.type)
      return None

    session = event.data.object
    hold = HoldMetadata.from_metadata(session.metadata)

    if event_type == PaymentEventType.SESSION_COMPLETED:
      if session.payment_status == PaymentStatus.UNPAID.value:
        logger.info(
            "Session %s completed without payment yet, awaiting async result",
            session.id,
        )
        return None
      return await self.finalize(session, hold)

    if event_type == PaymentEventType.SESSION_ASYNC_PAYMENT_SUCCEEDED:
      return await self.finalize(session, hold)

    if event_type in RELEASE_EVENTS:
      released = await self.reservations.release_holds(hold.product_ids)
      logger.info(
          "%s for %s released %d of %d hold(s)",
          event_type.value,
          session.id,
          len(released),
          len(hold.product_ids),
      )
    return None

  async def finalize(self, session: EventObject, hold: HoldMetadata) -> Order:
    """Records a paid session as an order and sells its products."""
    order = await self.store.find_order_by_session(session.id)
    if order is None:
      order = await self.store.create_order(order_from_session(session))
      logger.info("Created order %s for session %s", order.id, session.id)
    else:
      logger.info(
          "Order %s already exists for session %s", order.id, session.id
      )

    products = await self.store.fetch_products(hold.product_ids)
    missing = set(hold.product_ids) - {p.id for p in products}
    if missing:
      logger.error(
          "Paid session %s references unknown products %s",
          session.id,
          sorted(missing),
      )

    oversold = [
        p.id
        for p in products
        if p.status == ProductStatus.SOLD and p.sold_in_order != order.id
    ]
    if oversold:
      self._alert(
          "oversold",
          {
              "order_id": order.id,
              "session_id": session.id,
              "products": oversold,
          },
      )
    for product in products:
      if product.status == ProductStatus.AVAILABLE:
        logger.warning(
            "Product %s was no longer held when session %s was paid",
            product.id,
            session.id,
        )

    existing = set(await self.store.list_order_item_product_ids(order.id))
    items = [
        OrderItem(
            order_id=order.id,
            product_id=p.id,
            name=p.name,
            sku=p.sku,
            price=p.price,
            qty=hold.quantity_for(p.id),
        )
        for p in products
        if p.id not in existing
    ]
    if items:
      await self.store.create_order_items(items)

    # Products sold to another order keep their original back-reference.
    to_sell = [p.id for p in products if p.id not in oversold]
    await self.reservations.mark_sold(to_sell, order.id)
    return order
