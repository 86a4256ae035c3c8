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

"""Reservation manager for the inventory hold lifecycle.

Each product moves Available -> On Hold -> (Sold | Available). Holds are
placed only by `place_holds` and end only through `mark_sold` or
`release_holds`; `release_expired_holds` is the periodic safety net for holds
whose payment session never reported back.
"""

import datetime
import logging
from typing import Callable, List, Optional, Sequence

from exceptions import PartialBatchError
from inventory_store import InventoryStore
from inventory_store import unique_ids
from models import ValidatedLine
from services.alerts import AlertHook
from services.alerts import log_alert

logger = logging.getLogger(__name__)

DEFAULT_HOLD_MINUTES = 30


def utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


class ReservationManager:
  """Places, releases and finalizes holds on inventory records."""

  def __init__(
      self,
      store: InventoryStore,
      hold_minutes: int = DEFAULT_HOLD_MINUTES,
      alert: AlertHook = log_alert,
      clock: Callable[[], datetime.datetime] = utcnow,
  ):
    self.store = store
    self.hold_minutes = hold_minutes
    self._alert = alert
    self._clock = clock

  def _report_partial(self, error: PartialBatchError) -> None:
    self._alert(
        "partial_batch",
        {
            "operation": error.operation,
            "applied": error.applied_ids,
            "pending": error.pending_ids,
        },
    )

  async def place_holds(
      self, lines: Sequence[ValidatedLine]
  ) -> datetime.datetime:
    """Puts every line's product On Hold.

    Args:
      lines: Validated lines of one cart.

    Returns:
      The hold expiry stamped on the products.

    Raises:
      HoldConflictError: A product stopped being Available.
      PartialBatchError: Only part of the cart was held. The applied holds
        are left in place and expire through the sweep.
    """
    ids = unique_ids(line.product.id for line in lines)
    hold_until = self._clock() + datetime.timedelta(minutes=self.hold_minutes)
    try:
      await self.store.hold_products(ids, hold_until)
    except PartialBatchError as e:
      self._report_partial(e)
      raise
    logger.info("Held %d product(s) until %s", len(ids), hold_until.isoformat())
    return hold_until

  async def release_holds(
      self,
      ids: Sequence[str],
      expired_before: Optional[datetime.datetime] = None,
  ) -> List[str]:
    """Returns held products to Available.

    Products that are not On Hold are left alone, so releasing twice is
    harmless and a Sold product is never made Available again.
    """
    ids = unique_ids(ids)
    if not ids:
      return []
    try:
      released = await self.store.release_products(ids, expired_before)
    except PartialBatchError as e:
      self._report_partial(e)
      raise
    if released:
      logger.info("Released holds on %s", released)
    return released

  async def mark_sold(self, ids: Sequence[str], order_id: str) -> None:
    """Finalizes products as Sold for an order. Terminal."""
    ids = unique_ids(ids)
    if not ids:
      return
    try:
      await self.store.mark_sold(ids, order_id)
    except PartialBatchError as e:
      self._report_partial(e)
      raise
    logger.info("Marked %s sold in order %s", ids, order_id)

  async def release_expired_holds(self, grace_minutes: int = 0) -> List[str]:
    """Releases holds that ended more than `grace_minutes` ago."""
    cutoff = self._clock() - datetime.timedelta(minutes=grace_minutes)
    expired = await self.store.find_expired_holds(cutoff)
    if not expired:
      return []
    logger.info("Found %d expired hold(s)", len(expired))
    return await self.release_holds(expired, expired_before=cutoff)
