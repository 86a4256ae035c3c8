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

"""Shared fixtures for the cart backend tests.

Seeds temporary SQL inventory stores, stands in for the Stripe API client, and
signs webhook payloads the way Stripe does.
"""

import datetime
import hashlib
import hmac
import json
import time
import types
from typing import Any, Dict, List, Optional, Sequence, Tuple

import db
from enums import ProductStatus
from models import Product
from models import ShippingRate
from services.payment_gateway import StripeGateway
import stripe

WEBHOOK_SECRET = "whsec_test_secret"
SITE_URL = "https://shop.example.com"

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)

HARBOR = Product(
    id="print_harbor",
    name="Harbor at Dawn",
    price=12000,
    sku="HD-001",
    quantity=2,
    shipping_tier="Tube-L",
)
LIGHTHOUSE = Product(
    id="print_lighthouse",
    name="Lighthouse No. 3",
    price=4500,
    sku="LH-003",
    quantity=1,
    shipping_tier="Tube-S",
)
CARDS = Product(
    id="card_gulls",
    name="Gull Notecard Set",
    price=1800,
    sku="NC-005",
    quantity=10,
    shipping_tier="FlatPack",
)
FOG_BANK = Product(
    id="print_fog_bank",
    name="Fog Bank",
    price=9500,
    quantity=0,
    status=ProductStatus.SOLD,
    shipping_tier="Tube-M",
    sold_in_order="order_earlier",
)

PRODUCTS = (HARBOR, LIGHTHOUSE, CARDS, FOG_BANK)

RATES = (
    ShippingRate(tier="Tube-S", country="US", amount=800, label="Small tube"),
    ShippingRate(tier="Tube-M", country="US", amount=1000, label="Medium tube"),
    ShippingRate(tier="Tube-L", country="US", amount=1500, label="Large tube"),
    ShippingRate(tier="FlatPack", country="US", amount=500, label="Flat pack"),
    ShippingRate(tier="Tube-L", country="CA", amount=2500, label="Large tube"),
)


async def make_sql_store(
    db_path: str,
    products: Sequence[Product] = PRODUCTS,
    rates: Sequence[ShippingRate] = RATES,
    batch_size: int = 10,
) -> db.SqlInventoryStore:
  """Creates a SQL store at `db_path` seeded with `products` and `rates`."""
  manager = db.DatabaseManager()
  await manager.init_db(db_path)
  async with manager.session_factory() as session:
    session.add_all([db.record_from_product(p) for p in products])
    session.add_all([
        db.ShippingRateRecord(
            id=f"{r.country}_{r.tier}",
            tier=r.tier,
            country=r.country,
            amount=r.amount,
            label=r.label,
        )
        for r in rates
    ])
    await session.commit()
  return db.SqlInventoryStore(manager, batch_size=batch_size)


class FakeSessions:
  """Stands in for `StripeClient.checkout.sessions`."""

  def __init__(self) -> None:
    self.created: List[Dict[str, Any]] = []
    self.error: Optional[Exception] = None

  def create(self, params: Dict[str, Any]) -> types.SimpleNamespace:
    if self.error:
      raise self.error
    self.created.append(params)
    session_id = f"cs_test_{len(self.created)}"
    return types.SimpleNamespace(
        id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}"
    )


class FakeStripeClient:

  def __init__(self) -> None:
    self.sessions = FakeSessions()
    self.checkout = types.SimpleNamespace(sessions=self.sessions)


class RecordingAlerts:
  """Alert hook that remembers what it was called with."""

  def __init__(self) -> None:
    self.calls: List[Tuple[str, Dict[str, Any]]] = []

  def __call__(self, event: str, details: Dict[str, Any]) -> None:
    self.calls.append((event, details))

  def events(self) -> List[str]:
    return [event for event, _ in self.calls]


class FixedClock:
  """Settable replacement for `reservation_service.utcnow`."""

  def __init__(self, now: datetime.datetime = NOW) -> None:
    self.now = now

  def __call__(self) -> datetime.datetime:
    return self.now

  def advance(self, **kwargs: float) -> None:
    self.now += datetime.timedelta(**kwargs)


def sign_payload(
    payload: bytes,
    secret: str = WEBHOOK_SECRET,
    timestamp: Optional[int] = None,
) -> str:
  """Builds a Stripe-Signature header for `payload`."""
  timestamp = int(time.time()) if timestamp is None else timestamp
  signed = f"{timestamp}.".encode("utf-8") + payload
  digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256)
  return f"t={timestamp},v1={digest.hexdigest()}"


def session_event(
    event_type: str,
    session_id: str,
    product_ids: Sequence[str],
    quantities: Optional[Sequence[int]] = None,
    payment_status: str = "paid",
    event_id: str = "evt_test_1",
) -> bytes:
  """Serializes a checkout session event carrying hold metadata."""
  quantities = quantities or [1] * len(product_ids)
  body = {
      "id": event_id,
      "object": "event",
      "type": event_type,
      "data": {
          "object": {
              "id": session_id,
              "object": "checkout.session",
              "currency": "usd",
              "amount_total": 13500,
              "payment_status": payment_status,
              "metadata": {
                  "product_ids": ",".join(product_ids),
                  "quantities": ",".join(str(q) for q in quantities),
              },
              "customer_details": {
                  "email": "buyer@example.com",
                  "name": "Ada Buyer",
                  "address": {
                      "line1": "1 Pier Rd",
                      "city": "Portland",
                      "postal_code": "04101",
                      "country": "US",
                  },
              },
              "collected_information": {
                  "shipping_details": {
                      "name": "Ada Shipping",
                      "address": {
                          "line1": "2 Dock St",
                          "line2": "Unit 4",
                          "city": "Portland",
                          "postal_code": "04102",
                          "country": "US",
                      },
                  }
              },
          }
      },
  }
  return json.dumps(body).encode("utf-8")


def make_gateway(
    client: Optional[FakeStripeClient] = None,
) -> Tuple[StripeGateway, FakeStripeClient]:
  """Returns a `StripeGateway` wired to a fake client, and that client."""
  client = client or FakeStripeClient()
  gateway = StripeGateway(
      secret_key="sk_test_123",
      webhook_secret=WEBHOOK_SECRET,
      site_url=SITE_URL,
      client=client,
  )
  return gateway, client


def api_connection_error() -> stripe.StripeError:
  return stripe.APIConnectionError("Network error communicating with Stripe")
