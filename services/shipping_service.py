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

"""Shipping service for consolidating packaging tiers into charges.

A cart ships in at most one tube, sized for its largest tube item, plus at most
one flat envelope covering every flat item. This module collapses the tiers of
a cart's lines into that minimal set and prices each against the country's
rate table.
"""

import logging
import re
from typing import Iterable, List

from enums import ShippingTier
from enums import TUBE_ORDER
from inventory_store import InventoryStore
from models import ShippingCharge
from models import ShippingQuote
from models import ValidatedLine

logger = logging.getLogger(__name__)

_FLAT = re.compile("flat", re.IGNORECASE)
_TUBES = frozenset(tube.value for tube in TUBE_ORDER)


def consolidate_tiers(lines: Iterable[ValidatedLine]) -> List[str]:
  """Returns the shipping tiers to charge for, largest tube first.

  Args:
    lines: Validated cart lines.

  Returns:
    At most one tube tier (the largest present) followed by at most one
    flat-pack tier.
  """
  tiers = {line.product.shipping_tier for line in lines}
  tiers.discard(None)
  tiers.discard("")

  has_flat = any(_FLAT.search(tier) for tier in tiers)
  tubes = [tube for tube in TUBE_ORDER if tube.value in tiers]

  for tier in tiers:
    if not _FLAT.search(tier) and tier not in _TUBES:
      logger.warning("Ignoring unknown shipping tier %r", tier)

  needed = []
  if tubes:
    needed.append(tubes[-1].value)
  if has_flat:
    needed.append(ShippingTier.FLAT_PACK.value)
  return needed


class ShippingService:
  """Service for resolving consolidated tiers to shipping charges."""

  def __init__(self, store: InventoryStore):
    self.store = store

  async def resolve_rates(
      self, tiers: List[str], country: str
  ) -> ShippingQuote:
    """Looks up each tier in the country's rate table.

    A tier without a rate row adds nothing to the quote.
    """
    if not tiers:
      return ShippingQuote()

    rates = await self.store.fetch_shipping_rates(tiers, country)
    charges = []
    for tier in tiers:
      rate = rates.get(tier)
      if rate is None:
        logger.warning(
            "No shipping rate for tier %s in %s, charging nothing",
            tier,
            country,
        )
        continue
      charges.append(
          ShippingCharge(tier=tier, amount=rate.amount, label=rate.label)
      )
    return ShippingQuote(charges=charges)

  async def quote(
      self, lines: List[ValidatedLine], country: str
  ) -> ShippingQuote:
    return await self.resolve_rates(consolidate_tiers(lines), country)
