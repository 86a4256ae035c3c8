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

"""Data models for the cart backend.

Internal entities (products, validated cart lines, shipping rates, orders) are
the only shapes the services work with; the inventory store implementations
convert their own record formats into these models at the boundary. The
request and response bodies of the HTTP surface, and the verified payment
provider event, are defined here too.
"""

import datetime
from typing import Any, Dict, List, Optional

from enums import OrderStatus
from enums import ProductStatus
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic.alias_generators import to_camel

DEFAULT_CURRENCY = "usd"
DEFAULT_COUNTRY = "US"


def normalize_quantity(value: Any) -> int:
  """Floors a client supplied quantity to at least 1."""
  try:
    qty = int(float(value))
  except (TypeError, ValueError, OverflowError):
    return 1
  return max(1, qty)


def normalize_country(value: Any) -> str:
  if not value:
    return DEFAULT_COUNTRY
  return str(value).strip().upper() or DEFAULT_COUNTRY


# --- Inventory entities ---


class Product(BaseModel):
  """Internal view of an inventory record."""

  model_config = ConfigDict(frozen=True)

  id: str
  name: str = ""
  price: int = 0  # In the currency's minor unit
  currency: str = DEFAULT_CURRENCY
  sku: Optional[str] = None
  quantity: int = 0
  status: ProductStatus = ProductStatus.AVAILABLE
  shipping_tier: Optional[str] = None
  hold_until: Optional[datetime.datetime] = None
  image_url: Optional[str] = None
  sold_in_order: Optional[str] = None


class CartLine(BaseModel):
  """A client submitted cart line. Only the id and quantity are trusted."""

  id: str = Field(min_length=1)
  qty: int = 1

  @field_validator("qty", mode="before")
  @classmethod
  def _floor_qty(cls, value: Any) -> int:
    return normalize_quantity(value)


class ValidatedLine(BaseModel):
  product: Product
  qty: int

  @property
  def line_total(self) -> int:
    return self.product.price * self.qty


class OutOfStockLine(BaseModel):
  id: str
  name: str = ""


class ValidationResult(BaseModel):
  validated: List[ValidatedLine] = []
  not_found: List[str] = []
  out_of_stock: List[OutOfStockLine] = []


class ShippingRate(BaseModel):
  model_config = ConfigDict(frozen=True)

  tier: str
  country: str
  amount: int = 0
  label: str = ""


class ShippingCharge(BaseModel):
  tier: str
  amount: int
  label: str


class ShippingQuote(BaseModel):
  """Resolved shipping charges for a consolidated set of tiers."""

  charges: List[ShippingCharge] = []

  @property
  def total(self) -> int:
    return sum(charge.amount for charge in self.charges)


class Order(BaseModel):
  """A paid order. Never modified after creation."""

  model_config = ConfigDict(frozen=True)

  id: Optional[str] = None
  status: OrderStatus = OrderStatus.PAID
  session_id: str
  email: Optional[str] = None
  currency: str = DEFAULT_CURRENCY.upper()
  amount_total: int = 0
  shipping_name: str = ""
  shipping_country: str = ""
  shipping_city: str = ""
  shipping_postal: str = ""
  shipping_line1: str = ""
  shipping_line2: str = ""


class OrderItem(BaseModel):
  """Snapshot of a product at the time it was sold."""

  model_config = ConfigDict(frozen=True)

  order_id: str
  product_id: str
  name: str = ""
  sku: Optional[str] = None
  price: int = 0
  qty: int = 1


# --- Payment provider ---


class HoldMetadata(BaseModel):
  """The session metadata linking a payment flow to the inventory it holds."""

  product_ids: List[str]
  quantities: List[int] = []
  hold_until: Optional[datetime.datetime] = None

  def quantity_for(self, product_id: str) -> int:
    try:
      index = self.product_ids.index(product_id)
      return normalize_quantity(self.quantities[index])
    except (ValueError, IndexError):
      return 1

  def to_metadata(self) -> Dict[str, str]:
    metadata = {
        "product_ids": ",".join(self.product_ids),
        "quantities": ",".join(str(q) for q in self.quantities),
    }
    if self.hold_until:
      metadata["hold_until"] = self.hold_until.isoformat()
    return metadata

  @classmethod
  def from_metadata(cls, metadata: Optional[Dict[str, Any]]) -> "HoldMetadata":
    metadata = metadata or {}
    product_ids = [
        pid.strip()
        for pid in str(metadata.get("product_ids") or "").split(",")
        if pid.strip()
    ]
    quantities = [
        normalize_quantity(q)
        for q in str(metadata.get("quantities") or "").split(",")
        if q.strip()
    ]
    hold_until = None
    if metadata.get("hold_until"):
      try:
        hold_until = datetime.datetime.fromisoformat(metadata["hold_until"])
      except ValueError:
        hold_until = None
    return cls(
        product_ids=product_ids, quantities=quantities, hold_until=hold_until
    )


class CheckoutSessionRequest(BaseModel):
  """Everything the payment provider needs to open a hosted checkout."""

  lines: List[ValidatedLine]
  currency: str
  customer_email: Optional[str] = None
  shipping: ShippingQuote
  hold: HoldMetadata


class CheckoutSession(BaseModel):
  id: str
  url: str


class Address(BaseModel):
  line1: Optional[str] = None
  line2: Optional[str] = None
  city: Optional[str] = None
  postal_code: Optional[str] = None
  country: Optional[str] = None


class CustomerDetails(BaseModel):
  email: Optional[str] = None
  name: Optional[str] = None
  address: Optional[Address] = None


class ShippingDetails(BaseModel):
  name: Optional[str] = None
  address: Optional[Address] = None


class CollectedInformation(BaseModel):
  shipping_details: Optional[ShippingDetails] = None


class EventObject(BaseModel):
  """The subset of a checkout session / payment intent the reconciler reads."""

  id: str
  object: Optional[str] = None
  metadata: Dict[str, Any] = {}
  currency: Optional[str] = None
  amount_total: Optional[int] = None
  payment_status: Optional[str] = None
  customer_email: Optional[str] = None
  customer_details: Optional[CustomerDetails] = None
  shipping_details: Optional[ShippingDetails] = None
  collected_information: Optional[CollectedInformation] = None

  def shipping(self) -> ShippingDetails:
    """Returns the most specific shipping details present on the session."""
    if (
        self.collected_information
        and self.collected_information.shipping_details
    ):
      return self.collected_information.shipping_details
    if self.shipping_details:
      return self.shipping_details
    details = self.customer_details or CustomerDetails()
    return ShippingDetails(name=details.name, address=details.address)


class EventData(BaseModel):
  object: EventObject


class WebhookEvent(BaseModel):
  id: str
  type: str
  data: EventData


# --- HTTP bodies ---


class CartRequest(BaseModel):
  items: Optional[List[CartLine]] = None
  country: str = DEFAULT_COUNTRY

  @field_validator("country", mode="before")
  @classmethod
  def _normalize_country(cls, value: Any) -> str:
    return normalize_country(value)


class PriceRequest(CartRequest):
  pass


class CheckoutCreateRequest(CartRequest):
  customer_email: Optional[str] = None


class ApiModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PricedItem(ApiModel):
  id: str
  name: str
  price: int
  qty: int
  sku: Optional[str] = None
  image: Optional[str] = None
  tier: Optional[str] = None


class ShippingBreakdownEntry(ApiModel):
  tier: str
  amount: int
  label: str


class PriceResponse(ApiModel):
  items: List[PricedItem] = []
  not_found: List[str] = []
  out_of_stock: List[OutOfStockLine] = []
  subtotal: int = 0
  shipping: int = 0
  total: int = 0
  currency: str = DEFAULT_CURRENCY
  shipping_breakdown: List[ShippingBreakdownEntry] = []


class CheckoutCreateResponse(ApiModel):
  url: str


class WebhookAck(ApiModel):
  received: bool = True
