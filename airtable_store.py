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

"""Airtable implementation of the inventory store.

Talks to the Airtable REST API with an `httpx.AsyncClient`. Every record that
comes back is converted into a `models` entity here, with safe defaults for
fields an operator left blank, so a malformed row cannot corrupt pricing.

Airtable offers no conditional update. `hold_products` re-reads the records
and refuses the hold if any is no longer Available before writing, which
narrows the window between two concurrent checkouts but does not close it.
"""

import datetime
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import quote

from enums import DEFAULT_SHIPPING_TIER
from enums import OrderStatus
from enums import ProductStatus
from exceptions import HoldConflictError
from exceptions import InventoryStoreError
import httpx
from inventory_store import InventoryStore
from inventory_store import MAX_BATCH_SIZE
from inventory_store import run_batched
from inventory_store import unique_ids
from models import DEFAULT_CURRENCY
from models import Order
from models import OrderItem
from models import Product
from models import ShippingRate
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.airtable.com/v0"

_RECORD_ID = re.compile(r"^rec[A-Za-z0-9]{14}$")


class AirtableTables(BaseModel):
  products: str = "Products"
  orders: str = "Orders"
  order_items: str = "OrderItems"
  shipping: str = "ShippingRates"


def is_record_id(value: str) -> bool:
  return bool(_RECORD_ID.match(value or ""))


def _quote(value: str) -> str:
  """Quotes a value as an Airtable formula string literal."""
  escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
  return f"'{escaped}'"


def _as_int(value: Any, default: int) -> int:
  if value is None or value == "":
    return default
  try:
    return int(float(value))
  except (TypeError, ValueError, OverflowError):
    return default


def _parse_timestamp(value: Any) -> Optional[datetime.datetime]:
  if not value:
    return None
  try:
    parsed = datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
  except ValueError:
    logger.warning("Ignoring unparseable HoldUntil value %r", value)
    return None
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=datetime.timezone.utc)
  return parsed


def _format_timestamp(value: datetime.datetime) -> str:
  return (
      value.astimezone(datetime.timezone.utc)
      .isoformat(timespec="milliseconds")
      .replace("+00:00", "Z")
  )


def product_from_record(record: Dict[str, Any]) -> Product:
  """Maps a Products row to a `Product`."""
  fields = record.get("fields") or {}
  images = fields.get("Images") or []
  image_url = None
  if images and isinstance(images[0], dict):
    image_url = images[0].get("url")
  sold_in = fields.get("SoldInOrder") or []
  if isinstance(sold_in, str):
    sold_in = [sold_in]
  return Product(
      id=record["id"],
      name=fields.get("Name") or "",
      price=max(0, _as_int(fields.get("Price (cents)"), 0)),
      currency=str(fields.get("Currency") or DEFAULT_CURRENCY).lower(),
      sku=fields.get("SKU"),
      quantity=max(0, _as_int(fields.get("Quantity"), 1)),
      status=ProductStatus(fields.get("Status") or "Available"),
      shipping_tier=fields.get("Shipping Tier") or DEFAULT_SHIPPING_TIER.value,
      hold_until=_parse_timestamp(fields.get("HoldUntil")),
      image_url=image_url,
      sold_in_order=sold_in[0] if sold_in else None,
  )


def _order_from_record(record: Dict[str, Any]) -> Order:
  fields = record.get("fields") or {}
  return Order(
      id=record["id"],
      status=OrderStatus.PAID,
      session_id=fields.get("StripeSessionId") or "",
      email=fields.get("Email"),
      currency=fields.get("Currency") or DEFAULT_CURRENCY.upper(),
      amount_total=_as_int(fields.get("AmountTotal"), 0),
      shipping_name=fields.get("ShippingName") or "",
      shipping_country=fields.get("ShippingCountry") or "",
      shipping_city=fields.get("ShippingCity") or "",
      shipping_postal=fields.get("ShippingPostal") or "",
      shipping_line1=fields.get("ShippingLine1") or "",
      shipping_line2=fields.get("ShippingLine2") or "",
  )


def _order_fields(order: Order) -> Dict[str, Any]:
  return {
      "Status": order.status.value,
      "StripeSessionId": order.session_id,
      "Email": order.email,
      "Currency": order.currency,
      "AmountTotal": order.amount_total,
      "ShippingName": order.shipping_name,
      "ShippingCountry": order.shipping_country,
      "ShippingCity": order.shipping_city,
      "ShippingPostal": order.shipping_postal,
      "ShippingLine1": order.shipping_line1,
      "ShippingLine2": order.shipping_line2,
  }


class AirtableInventoryStore(InventoryStore):
  """`InventoryStore` backed by an Airtable base."""

  def __init__(
      self,
      api_key: str,
      base_id: str,
      tables: Optional[AirtableTables] = None,
      api_url: str = DEFAULT_API_URL,
      batch_size: int = MAX_BATCH_SIZE,
      client: Optional[httpx.AsyncClient] = None,
  ) -> None:
    self.tables = tables or AirtableTables()
    self._batch_size = min(batch_size, MAX_BATCH_SIZE)
    self._client = client or httpx.AsyncClient()
    self._base_url = f"{api_url.rstrip('/')}/{base_id}"
    self._headers = {"Authorization": f"Bearer {api_key}"}

  # --- HTTP helpers ---

  def _url(self, table: str, record_id: Optional[str] = None) -> str:
    url = f"{self._base_url}/{quote(table, safe='')}"
    if record_id:
      url += f"/{record_id}"
    return url

  async def _request(
      self, method: str, url: str, **kwargs: Any
  ) -> Dict[str, Any]:
    try:
      response = await self._client.request(
          method, url, headers=self._headers, **kwargs
      )
      response.raise_for_status()
      return response.json()
    except httpx.HTTPStatusError as e:
      logger.error(
          "Airtable %s %s returned %d: %s",
          method,
          url,
          e.response.status_code,
          e.response.text,
      )
      raise InventoryStoreError(
          f"Airtable returned {e.response.status_code}"
      ) from e
    except httpx.HTTPError as e:
      logger.error("Airtable %s %s failed: %s", method, url, e)
      raise InventoryStoreError(f"Airtable request failed: {e}") from e

  async def _select(
      self,
      table: str,
      formula: str,
      max_records: Optional[int] = None,
  ) -> List[Dict[str, Any]]:
    """Lists every record matching `formula`, following pagination."""
    params: Dict[str, Any] = {"filterByFormula": formula}
    if max_records:
      params["maxRecords"] = max_records
    records: List[Dict[str, Any]] = []
    while True:
      page = await self._request("GET", self._url(table), params=params)
      records.extend(page.get("records") or [])
      offset = page.get("offset")
      if not offset:
        return records
      params["offset"] = offset

  async def _update(
      self, operation: str, ids: Sequence[str], fields: Dict[str, Any]
  ) -> None:
    async def write(batch: Sequence[str]) -> None:
      await self._request(
          "PATCH",
          self._url(self.tables.products),
          json={"records": [{"id": i, "fields": fields} for i in batch]},
      )

    await run_batched(operation, list(ids), self._batch_size, write)

  # --- InventoryStore ---

  async def fetch_products(self, ids: Iterable[str]) -> List[Product]:
    ids = unique_ids(ids)
    # Anything that is not a record id cannot exist and stays out of the
    # formula.
    ids = [i for i in ids if is_record_id(i)]
    if not ids:
      return []
    formula = "OR({})".format(
        ",".join(f"RECORD_ID() = {_quote(i)}" for i in ids)
    )
    records = await self._select(
        self.tables.products, formula, max_records=len(ids)
    )
    return [product_from_record(r) for r in records]

  async def fetch_shipping_rates(
      self, tiers: Sequence[str], country: str
  ) -> Dict[str, ShippingRate]:
    if not tiers:
      return {}
    formula = "AND({{Country}} = {}, OR({}))".format(
        _quote(country),
        ",".join(f"{{Tier}} = {_quote(t)}" for t in tiers),
    )
    rates: Dict[str, ShippingRate] = {}
    for record in await self._select(self.tables.shipping, formula):
      fields = record.get("fields") or {}
      tier = fields.get("Tier")
      if not tier or tier in rates:
        continue
      rates[tier] = ShippingRate(
          tier=tier,
          country=fields.get("Country") or country,
          amount=max(0, _as_int(fields.get("Amount (cents)"), 0)),
          label=fields.get("Label") or f"{tier} shipping",
      )
    return rates

  async def hold_products(
      self, ids: Sequence[str], hold_until: datetime.datetime
  ) -> None:
    ids = unique_ids(ids)
    if not ids:
      return
    current = {p.id: p for p in await self.fetch_products(ids)}
    conflicts = [
        i
        for i in ids
        if i not in current or current[i].status != ProductStatus.AVAILABLE
    ]
    if conflicts:
      raise HoldConflictError(conflicts)
    await self._update(
        "hold",
        ids,
        {
            "Status": ProductStatus.ON_HOLD.value,
            "HoldUntil": _format_timestamp(hold_until),
        },
    )

  async def release_products(
      self,
      ids: Sequence[str],
      expired_before: Optional[datetime.datetime] = None,
  ) -> List[str]:
    ids = unique_ids(ids)
    if not ids:
      return []
    held = [
        p.id
        for p in await self.fetch_products(ids)
        if p.status == ProductStatus.ON_HOLD
        and (
            expired_before is None
            or p.hold_until is None
            or p.hold_until < expired_before
        )
    ]
    if held:
      await self._update(
          "release",
          held,
          {"Status": ProductStatus.AVAILABLE.value, "HoldUntil": None},
      )
    return held

  async def mark_sold(self, ids: Sequence[str], order_id: str) -> None:
    await self._update(
        "mark sold",
        unique_ids(ids),
        {
            "Status": ProductStatus.SOLD.value,
            "Quantity": 0,
            "HoldUntil": None,
            "SoldInOrder": [order_id],
        },
    )

  async def find_expired_holds(self, cutoff: datetime.datetime) -> List[str]:
    formula = "{{Status}} = {}".format(_quote(ProductStatus.ON_HOLD.value))
    expired = []
    for record in await self._select(self.tables.products, formula):
      product = product_from_record(record)
      if product.hold_until is None or product.hold_until < cutoff:
        expired.append(product.id)
    return expired

  async def find_order_by_session(self, session_id: str) -> Optional[Order]:
    formula = "{{StripeSessionId}} = {}".format(_quote(session_id))
    records = await self._select(self.tables.orders, formula, max_records=1)
    return _order_from_record(records[0]) if records else None

  async def create_order(self, order: Order) -> Order:
    body = await self._request(
        "POST",
        self._url(self.tables.orders),
        json={"records": [{"fields": _order_fields(order)}]},
    )
    created = (body.get("records") or [{}])[0]
    if not created.get("id"):
      raise InventoryStoreError("Airtable did not return the created order")
    return order.model_copy(update={"id": created["id"]})

  async def list_order_item_product_ids(self, order_id: str) -> List[str]:
    order = await self._request("GET", self._url(self.tables.orders, order_id))
    # Linked records come back as ids on the reverse link field.
    item_ids = [
        i
        for i in (order.get("fields") or {}).get(self.tables.order_items) or []
        if is_record_id(i)
    ]
    if not item_ids:
      return []
    formula = "OR({})".format(
        ",".join(f"RECORD_ID() = {_quote(i)}" for i in item_ids)
    )
    product_ids = []
    for record in await self._select(self.tables.order_items, formula):
      product_ids.extend((record.get("fields") or {}).get("Product") or [])
    return product_ids

  async def create_order_items(self, items: Sequence[OrderItem]) -> None:
    async def write(batch: Sequence[OrderItem]) -> None:
      await self._request(
          "POST",
          self._url(self.tables.order_items),
          json={
              "records": [
                  {
                      "fields": {
                          "Order": [item.order_id],
                          "Product": [item.product_id],
                          "Name": item.name,
                          "SKU": item.sku,
                          "Price": item.price,
                          "Qty": item.qty,
                      }
                  }
                  for item in batch
              ]
          },
      )

    await run_batched(
        "create order items",
        list(items),
        self._batch_size,
        write,
        key=lambda item: item.product_id,
    )

  async def close(self) -> None:
    await self._client.aclose()
