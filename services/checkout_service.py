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

"""Checkout service orchestrating validation, holds and the hosted checkout.

`create_checkout` runs: fetch products -> validate -> quote shipping -> hold
inventory -> open a payment provider session whose metadata names the held
products. A cart with any unavailable line is rejected before anything is
held.
"""

import logging
from typing import List, Optional, Sequence

from exceptions import EmptyCartError
from exceptions import HoldConflictError
from exceptions import OutOfStockError
from exceptions import UpstreamError
from models import CartLine
from models import CheckoutSession
from models import CheckoutSessionRequest
from models import HoldMetadata
from models import OutOfStockLine
from models import ValidatedLine
from services.cart_service import cart_currency
from services.cart_service import CartService
from services.payment_gateway import StripeGateway
from services.reservation_service import ReservationManager
from services.shipping_service import ShippingService

logger = logging.getLogger(__name__)


class CheckoutService:
  """Service for turning a cart into a hosted checkout session."""

  def __init__(
      self,
      cart_service: CartService,
      shipping_service: ShippingService,
      reservations: ReservationManager,
      gateway: StripeGateway,
  ):
    self.cart_service = cart_service
    self.shipping_service = shipping_service
    self.reservations = reservations
    self.gateway = gateway

  async def create_checkout(
      self,
      cart: Sequence[CartLine],
      country: str,
      customer_email: Optional[str] = None,
  ) -> CheckoutSession:
    """Reserves the cart and opens a hosted checkout for it.

    Args:
      cart: Client cart lines (ids and quantities only).
      country: Destination country used to price shipping.
      customer_email: Prefilled on the hosted checkout if given.

    Returns:
      The payment provider session, including its redirect URL.

    Raises:
      EmptyCartError: The cart has no lines.
      OutOfStockError: A line is unavailable; no hold was placed.
      UpstreamError: The inventory store or payment provider failed.
    """
    if not cart:
      raise EmptyCartError()

    logger.info("Creating checkout for %d cart line(s)", len(cart))
    result = await self.cart_service.load_and_validate(cart)
    if result.out_of_stock:
      raise OutOfStockError(
          [line.model_dump() for line in result.out_of_stock]
      )
    if not result.validated:
      # Every line was unknown; there is nothing to sell.
      raise OutOfStockError(
          [OutOfStockLine(id=i).model_dump() for i in result.not_found]
      )

    lines = result.validated
    shipping = await self.shipping_service.quote(lines, country)

    try:
      hold_until = await self.reservations.place_holds(lines)
    except HoldConflictError as e:
      logger.info("Hold refused for %s", e.product_ids)
      raise OutOfStockError(self._conflict_lines(lines, e.product_ids)) from e

    held_ids = [line.product.id for line in lines]
    request = CheckoutSessionRequest(
        lines=lines,
        currency=cart_currency(lines),
        customer_email=customer_email,
        shipping=shipping,
        hold=HoldMetadata(
            product_ids=held_ids,
            quantities=[line.qty for line in lines],
            hold_until=hold_until,
        ),
    )
    try:
      session = await self.gateway.create_session(request)
    except UpstreamError:
      # No session references these holds, so nothing would ever release them.
      await self._release_unlinked_holds(held_ids)
      raise

    logger.info("Checkout session %s holds %s", session.id, held_ids)
    return session

  def _conflict_lines(
      self, lines: List[ValidatedLine], conflicting: List[str]
  ) -> List[dict]:
    names = {line.product.id: line.product.name for line in lines}
    return [
        OutOfStockLine(id=i, name=names.get(i, "")).model_dump()
        for i in conflicting
    ]

  async def _release_unlinked_holds(self, ids: List[str]) -> None:
    try:
      await self.reservations.release_holds(ids)
    except UpstreamError as e:
      logger.error(
          "Could not release holds on %s after session failure: %s", ids, e
      )
