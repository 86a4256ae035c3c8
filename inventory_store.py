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

"""Inventory store boundary.

`InventoryStore` is the only interface the services use to reach the remote
record store holding products, orders, order items and shipping rates.
Implementations convert between their own record format and the entities in
`models`, so nothing past this boundary deals with untyped records.

Two implementations exist:
- `airtable_store.AirtableInventoryStore`: the spreadsheet-style database.
- `db.SqlInventoryStore`: a SQLAlchemy backend used for local runs and tests.
"""

import abc
import datetime
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional
from typing import Sequence, TypeVar

from exceptions import InventoryStoreError
from exceptions import PartialBatchError
from models import Order
from models import OrderItem
from models import Product
from models import ShippingRate

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Remote API limit on records per write call.
MAX_BATCH_SIZE = 10


def unique_ids(ids: Iterable[str]) -> List[str]:
  """Drops blanks and duplicates, keeping first-seen order."""
  return list(dict.fromkeys(i for i in ids if i))


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
  size = max(1, size)
  return [items[i : i + size] for i in range(0, len(items), size)]


async def run_batched(
    operation: str,
    items: Sequence[T],
    batch_size: int,
    write: Callable[[Sequence[T]], Awaitable[None]],
    key: Callable[[T], str] = str,
) -> None:
  """Issues `write` for each bounded-size batch, one after another.

  Batches are not wrapped in a transaction. When batch k fails, batches
  1..k-1 stay applied and a `PartialBatchError` names both sides.

  Args:
    operation: Name used in logs and errors (e.g. "hold").
    items: Records or ids to write.
    batch_size: Maximum records per call.
    write: Coroutine writing one batch.
    key: Maps an item to the product/record id it affects.

  Raises:
    InventoryStoreError: The first batch failed; nothing was applied.
    PartialBatchError: A later batch failed.
  """
  applied: List[str] = []
  for batch in chunked(items, batch_size):
    try:
      await write(batch)
    except InventoryStoreError as e:
      if not applied:
        raise
      pending = [key(item) for item in items[len(applied) :]]
      raise PartialBatchError(operation, applied, pending) from e
    except Exception as e:  # pylint: disable=broad-exception-caught
      if not applied:
        raise InventoryStoreError(f"{operation} failed: {e}") from e
      pending = [key(item) for item in items[len(applied) :]]
      raise PartialBatchError(operation, applied, pending) from e
    applied.extend(key(item) for item in batch)
    logger.debug("%s batch applied (%d records)", operation, len(batch))


class InventoryStore(abc.ABC):
  """Typed access to the Products, Orders, OrderItems and ShippingRates data."""

  @abc.abstractmethod
  async def fetch_products(self, ids: Iterable[str]) -> List[Product]:
    """Fetches products in one query. Unknown ids are simply absent."""

  @abc.abstractmethod
  async def fetch_shipping_rates(
      self, tiers: Sequence[str], country: str
  ) -> Dict[str, ShippingRate]:
    """Returns the rate row for each tier that has one in `country`."""

  @abc.abstractmethod
  async def hold_products(
      self, ids: Sequence[str], hold_until: datetime.datetime
  ) -> None:
    """Moves Available products to On Hold.

    Raises:
      HoldConflictError: One or more products are not Available.
      PartialBatchError: Some batches were written before a failure.
    """

  @abc.abstractmethod
  async def release_products(
      self,
      ids: Sequence[str],
      expired_before: Optional[datetime.datetime] = None,
  ) -> List[str]:
    """Returns On Hold products to Available; other records are untouched.

    Args:
      ids: Products to release.
      expired_before: When set, only holds ending before this time (or with
        no end recorded) are released.

    Returns:
      The ids that were actually released.
    """

  @abc.abstractmethod
  async def mark_sold(self, ids: Sequence[str], order_id: str) -> None:
    """Marks products Sold with zero quantity and a link to the order."""

  @abc.abstractmethod
  async def find_expired_holds(self, cutoff: datetime.datetime) -> List[str]:
    """Returns ids of On Hold products whose hold ended before `cutoff`."""

  @abc.abstractmethod
  async def find_order_by_session(self, session_id: str) -> Optional[Order]:
    """Returns the order created for a payment session, if any."""

  @abc.abstractmethod
  async def create_order(self, order: Order) -> Order:
    """Creates an order and returns it with its id set."""

  @abc.abstractmethod
  async def list_order_item_product_ids(self, order_id: str) -> List[str]:
    """Returns the product ids that already have an item on the order."""

  @abc.abstractmethod
  async def create_order_items(self, items: Sequence[OrderItem]) -> None:
    """Creates order items in bounded-size batches."""

  async def close(self) -> None:
    """Releases any connections held by the store."""
