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

"""Tests for the Airtable inventory store against a fake Airtable API."""

import asyncio
import datetime
import json
import re
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from absl.testing import absltest
from airtable_store import AirtableInventoryStore
from airtable_store import AirtableTables
from airtable_store import product_from_record
from enums import ProductStatus
from exceptions import HoldConflictError
from exceptions import InventoryStoreError
from exceptions import PartialBatchError
import httpx
from models import Order
from models import OrderItem

_IDS = re.compile(r"RECORD_ID\(\) = '([^']+)'")
_FIELD_EQ = re.compile(r"\{(\w+)\} = '([^']*)'")


def rid(n: int) -> str:
  return f"rec{n:014d}"


class FakeAirtable:
  """Minimal in-memory Airtable: list, patch and create records."""

  def __init__(self, page_size: int = 100):
    self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
    self.requests: List[httpx.Request] = []
    self.page_size = page_size
    self.fail_patch_after: Optional[int] = None
    self._created = 900

  def add(self, table: str, record_id: str, **fields: Any) -> None:
    self.tables.setdefault(table, {})[record_id] = dict(fields)

  def patches(self) -> List[Dict[str, Any]]:
    return [
        json.loads(r.content) for r in self.requests if r.method == "PATCH"
    ]

  def _matches(self, record_id: str, fields: Dict[str, Any], formula: str):
    ids = _IDS.findall(formula)
    if ids and record_id not in ids:
      return False
    tiers = []
    for name, value in _FIELD_EQ.findall(formula):
      if name == "Tier":
        tiers.append(value)
      elif fields.get(name) != value:
        return False
    return not tiers or fields.get("Tier") in tiers

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    parts = request.url.path.split("/")
    table = unquote(parts[3])
    record_id = parts[4] if len(parts) > 4 else None
    rows = self.tables.setdefault(table, {})

    if request.method == "GET" and record_id:
      if record_id not in rows:
        return httpx.Response(404, json={"error": "NOT_FOUND"})
      return httpx.Response(
          200, json={"id": record_id, "fields": rows[record_id]}
      )

    if request.method == "GET":
      formula = request.url.params.get("filterByFormula", "")
      matched = [
          {"id": i, "fields": f}
          for i, f in rows.items()
          if self._matches(i, f, formula)
      ]
      start = int(request.url.params.get("offset", 0))
      page = matched[start : start + self.page_size]
      body: Dict[str, Any] = {"records": page}
      if start + self.page_size < len(matched):
        body["offset"] = str(start + self.page_size)
      return httpx.Response(200, json=body)

    payload = json.loads(request.content)
    if request.method == "PATCH":
      done = len(self.patches()) - 1
      if self.fail_patch_after is not None and done >= self.fail_patch_after:
        return httpx.Response(503, json={"error": "SERVICE_UNAVAILABLE"})
      for record in payload["records"]:
        rows[record["id"]].update(record["fields"])
      return httpx.Response(200, json=payload)

    created = []
    for record in payload["records"]:
      self._created += 1
      new_id = rid(self._created)
      rows[new_id] = dict(record["fields"])
      created.append({"id": new_id, "fields": rows[new_id]})
      if table == "OrderItems":
        order = self.tables["Orders"][record["fields"]["Order"][0]]
        order.setdefault("OrderItems", []).append(new_id)
    return httpx.Response(200, json={"records": created})


class AirtableStoreTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.airtable = FakeAirtable()
    self.airtable.add(
        "Products",
        rid(1),
        Name="Harbor at Dawn",
        **{"Price (cents)": 12000, "Shipping Tier": "Tube-L"},
        Status="Available",
        SKU="HD-001",
        Images=[{"url": "https://img.example.com/harbor.jpg"}],
    )
    self.airtable.add("Products", rid(2), Name="Fog Bank", Status="Sold")
    self.airtable.add(
        "ShippingRates",
        rid(50),
        Tier="Tube-L",
        Country="US",
        Label="Large tube",
        **{"Amount (cents)": 1500},
    )
    self.airtable.add(
        "ShippingRates",
        rid(51),
        Tier="FlatPack",
        Country="CA",
        **{"Amount (cents)": 900},
    )
    self.store = self._store()

  def tearDown(self):
    asyncio.run(self.store.close())
    super().tearDown()

  def _store(self, **kwargs) -> AirtableInventoryStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(self.airtable))
    return AirtableInventoryStore(
        api_key="pat_test",
        base_id="appTEST",
        tables=AirtableTables(),
        api_url="https://airtable.test/v0",
        client=client,
        **kwargs,
    )

  def test_product_defaults_for_blank_fields(self):
    product = product_from_record({"id": rid(9), "fields": {}})
    self.assertEqual(product.price, 0)
    self.assertEqual(product.currency, "usd")
    self.assertEqual(product.quantity, 1)
    self.assertEqual(product.status, ProductStatus.AVAILABLE)
    self.assertEqual(product.shipping_tier, "Tube-M")
    self.assertIsNone(product.image_url)

  def test_fetch_products_maps_fields(self):
    products = asyncio.run(self.store.fetch_products([rid(1), rid(2)]))
    by_id = {p.id: p for p in products}
    harbor = by_id[rid(1)]
    self.assertEqual(harbor.price, 12000)
    self.assertEqual(harbor.shipping_tier, "Tube-L")
    self.assertEqual(harbor.image_url, "https://img.example.com/harbor.jpg")
    self.assertEqual(by_id[rid(2)].status, ProductStatus.SOLD)
    request = self.airtable.requests[0]
    self.assertEqual(request.headers["Authorization"], "Bearer pat_test")
    self.assertEqual(request.url.path, "/v0/appTEST/Products")

  def test_malformed_ids_never_reach_the_api(self):
    products = asyncio.run(
        self.store.fetch_products(["not-a-record", "rec') OR TRUE()"])
    )
    self.assertEmpty(products)
    self.assertEmpty(self.airtable.requests)

  def test_select_follows_pagination(self):
    for n in range(10, 15):
      self.airtable.add("Products", rid(n), Status="On Hold")
    self.airtable.page_size = 2
    cutoff = datetime.datetime.now(datetime.timezone.utc)
    expired = asyncio.run(self.store.find_expired_holds(cutoff))
    self.assertLen(expired, 5)
    self.assertLen(self.airtable.requests, 3)

  def test_shipping_rates_by_country(self):
    rates = asyncio.run(
        self.store.fetch_shipping_rates(["Tube-L", "FlatPack"], "US")
    )
    self.assertEqual(list(rates), ["Tube-L"])
    self.assertEqual(rates["Tube-L"].amount, 1500)
    self.assertEqual(rates["Tube-L"].label, "Large tube")

  def test_hold_writes_status_and_expiry(self):
    hold_until = datetime.datetime(
        2026, 3, 1, 12, 30, tzinfo=datetime.timezone.utc
    )
    asyncio.run(self.store.hold_products([rid(1)], hold_until))
    self.assertEqual(
        self.airtable.patches(),
        [{
            "records": [{
                "id": rid(1),
                "fields": {
                    "Status": "On Hold",
                    "HoldUntil": "2026-03-01T12:30:00.000Z",
                },
            }]
        }],
    )
    product = asyncio.run(self.store.fetch_products([rid(1)]))[0]
    self.assertEqual(product.hold_until, hold_until)

  def test_hold_refused_when_not_available(self):
    with self.assertRaises(HoldConflictError) as ctx:
      asyncio.run(
          self.store.hold_products(
              [rid(1), rid(2)], datetime.datetime.now(datetime.timezone.utc)
          )
      )
    self.assertEqual(ctx.exception.product_ids, [rid(2)])
    self.assertEmpty(self.airtable.patches())

  def test_release_skips_products_that_are_not_held(self):
    self.airtable.add("Products", rid(3), Status="On Hold")
    released = asyncio.run(
        self.store.release_products([rid(1), rid(2), rid(3)])
    )
    self.assertEqual(released, [rid(3)])
    self.assertEqual(
        self.airtable.tables["Products"][rid(3)],
        {"Status": "Available", "HoldUntil": None},
    )

  def test_writes_are_batched_and_partial_failure_reported(self):
    ids = [rid(n) for n in range(100, 125)]
    for record_id in ids:
      self.airtable.add("Products", record_id, Status="On Hold")
    self.airtable.fail_patch_after = 1
    with self.assertRaises(PartialBatchError) as ctx:
      asyncio.run(self.store.mark_sold(ids, rid(900)))
    self.assertEqual(ctx.exception.applied_ids, ids[:10])
    self.assertEqual(ctx.exception.pending_ids, ids[10:])
    self.assertEqual(
        [len(p["records"]) for p in self.airtable.patches()], [10, 10]
    )
    self.assertEqual(
        self.airtable.tables["Products"][ids[0]]["SoldInOrder"], [rid(900)]
    )
    self.assertEqual(
        self.airtable.tables["Products"][ids[10]]["Status"], "On Hold"
    )

  def test_http_failure_is_a_store_error(self):
    self.airtable.fail_patch_after = 0
    with self.assertRaises(InventoryStoreError) as ctx:
      asyncio.run(self.store.mark_sold([rid(1)], rid(900)))
    self.assertNotIsInstance(ctx.exception, PartialBatchError)
    self.assertIn("503", ctx.exception.message)

  def test_orders_and_items_round_trip(self):
    order = asyncio.run(
        self.store.create_order(
            Order(session_id="cs_test_1", email="buyer@example.com")
        )
    )
    self.assertTrue(order.id.startswith("rec"))
    found = asyncio.run(self.store.find_order_by_session("cs_test_1"))
    self.assertEqual(found.id, order.id)
    self.assertEqual(found.email, "buyer@example.com")
    self.assertIsNone(
        asyncio.run(self.store.find_order_by_session("cs_other"))
    )

    self.assertEqual(
        asyncio.run(self.store.list_order_item_product_ids(order.id)), []
    )
    asyncio.run(
        self.store.create_order_items([
            OrderItem(
                order_id=order.id,
                product_id=rid(1),
                name="Harbor at Dawn",
                price=12000,
            )
        ])
    )
    self.assertEqual(
        asyncio.run(self.store.list_order_item_product_ids(order.id)),
        [rid(1)],
    )


if __name__ == "__main__":
  absltest.main()
