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

"""Enumerations for the cart backend.

This module defines the enums used throughout the server application to
represent product availability, order state, shipping packaging tiers and the
payment provider events the webhook reconciler reacts to.
"""

import enum


class ProductStatus(str, enum.Enum):
  """Availability of an inventory record.

  Upstream values outside the known set map to UNAVAILABLE, which is never
  sold, held or released.
  """

  AVAILABLE = "Available"
  ON_HOLD = "On Hold"
  SOLD = "Sold"
  UNAVAILABLE = "Unavailable"

  @classmethod
  def _missing_(cls, value):
    if isinstance(value, str):
      for member in cls:
        if member.value.lower() == value.strip().lower():
          return member
    return cls.UNAVAILABLE


class OrderStatus(str, enum.Enum):
  PAID = "Paid"


class ShippingTier(str, enum.Enum):
  """Packaging tiers, tubes ordered smallest to largest."""

  TUBE_S = "Tube-S"
  TUBE_M = "Tube-M"
  TUBE_L = "Tube-L"
  TUBE_XL = "Tube-XL"
  FLAT_PACK = "FlatPack"


TUBE_ORDER = (
    ShippingTier.TUBE_S,
    ShippingTier.TUBE_M,
    ShippingTier.TUBE_L,
    ShippingTier.TUBE_XL,
)

DEFAULT_SHIPPING_TIER = ShippingTier.TUBE_M


class PaymentEventType(str, enum.Enum):
  SESSION_COMPLETED = "checkout.session.completed"
  SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
  SESSION_EXPIRED = "checkout.session.expired"
  SESSION_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
  PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"


RELEASE_EVENTS = frozenset({
    PaymentEventType.SESSION_EXPIRED,
    PaymentEventType.SESSION_ASYNC_PAYMENT_FAILED,
    PaymentEventType.PAYMENT_INTENT_FAILED,
})


class PaymentStatus(str, enum.Enum):
  PAID = "paid"
  UNPAID = "unpaid"
  NO_PAYMENT_REQUIRED = "no_payment_required"
