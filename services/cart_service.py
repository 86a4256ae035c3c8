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

"""Cart service for validating carts and computing trusted prices.

The client cart only contributes product ids and quantities. Prices, names,
currency and shipping all come from the inventory store.
"""

import logging
from typing import Dict, List, Sequence

from enums import ProductStatus
from inventory_store import InventoryStore
from models import CartLine
from models import DEFAULT_CURRENCY
from models import normalize_quantity
from models import OutOfStockLine
from models import PricedItem
from models import PriceResponse
from models import Product
from models import ShippingBreakdownEntry
from models import ValidatedLine
from models import ValidationResult
from services.shipping_service import ShippingService

logger = logging.getLogger(__name__)


def merge_lines(cart: Sequence[CartLine]) -> List[CartLine]:
  """Combines lines for the same product, keeping first-seen order."""
  merged: Dict[str, int] = {}
  for line in cart:
    qty = normalize_quantity(line.qty)
    if line.id in merged:
      merged[line.id] += qty
    else:
      merged[line.id] = qty
  return [
      CartLine(id=product_id, qty=qty) for product_id, qty in merged.items()
  ]


def validate_cart(
    cart: Sequence[CartLine], products: Sequence[Product]
) -> ValidationResult:
  """Merges cart lines with fetched products.

  Lines repeating a product are merged first, so stock is checked against
  the total quantity requested for it. Each merged line is all-or-nothing:
  it is validated only when the product is Available with at least that many
  units. Unknown ids go to `not_found` and do not stop the remaining lines
  from being checked.

  Args:
    cart: Client cart lines.
    products: Products fetched for the cart's ids.

  Returns:
    The validated, not-found and out-of-stock lines.
  """
  by_id = {product.id: product for product in products}
  result = ValidationResult()
  for line in merge_lines(cart):
    product = by_id.get(line.id)
    if product is None:
      result.not_found.append(line.id)
      continue
    qty = normalize_quantity(line.qty)
    if product.status != ProductStatus.AVAILABLE or product.quantity < qty:
      result.out_of_stock.append(
          OutOfStockLine(id=product.id, name=product.name)
      )
      continue
    result.validated.append(ValidatedLine(product=product, qty=qty))
  return result


def cart_currency(lines: List[ValidatedLine]) -> str:
  return lines[0].product.currency if lines else DEFAULT_CURRENCY


class CartService:
  """Service for pricing carts against live inventory."""

  def __init__(self, store: InventoryStore, shipping_service: ShippingService):
    self.store = store
    self.shipping_service = shipping_service

  async def load_and_validate(
      self, cart: Sequence[CartLine]
  ) -> ValidationResult:
    """Fetches every product in the cart in one query and validates it."""
    products = await self.store.fetch_products(line.id for line in cart)
    result = validate_cart(cart, products)
    if result.not_found:
      logger.info("Cart references unknown products: %s", result.not_found)
    return result

  async def price(
      self, cart: Sequence[CartLine], country: str
  ) -> PriceResponse:
    """Prices a cart without reserving anything."""
    if not cart:
      return PriceResponse()

    result = await self.load_and_validate(cart)
    subtotal = sum(line.line_total for line in result.validated)
    quote = await self.shipping_service.quote(result.validated, country)

    return PriceResponse(
        items=[
            PricedItem(
                id=line.product.id,
                name=line.product.name,
                price=line.product.price,
                qty=line.qty,
                sku=line.product.sku,
                image=line.product.image_url,
                tier=line.product.shipping_tier,
            )
            for line in result.validated
        ],
        not_found=result.not_found,
        out_of_stock=result.out_of_stock,
        subtotal=subtotal,
        shipping=quote.total,
        total=subtotal + quote.total,
        currency=cart_currency(result.validated),
        shipping_breakdown=[
            ShippingBreakdownEntry(
                tier=charge.tier, amount=charge.amount, label=charge.label
            )
            for charge in quote.charges
        ],
    )
