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

"""Payment provider gateway backed by Stripe Checkout.

Builds hosted checkout sessions from server-side priced lines and verifies
inbound webhook events. Unit prices and shipping amounts sent to Stripe always
come from the inventory store, never from the client.
"""

import asyncio
import datetime
import logging
from typing import Any, Dict, Optional, Sequence

from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
from exceptions import WebhookSignatureError
from models import CheckoutSession
from models import CheckoutSessionRequest
from models import WebhookEvent
import pydantic
import stripe

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_COUNTRIES = (
    "US", "CA", "GB", "IE", "FR", "DE", "ES", "IT", "AU", "NZ",
)

# Stripe refuses sessions that expire sooner than this after creation.
MIN_SESSION_MINUTES = 30


class StripeGateway:
  """Creates Stripe Checkout Sessions and verifies Stripe webhooks."""

  def __init__(
      self,
      secret_key: str,
      webhook_secret: str,
      site_url: str,
      allowed_countries: Sequence[str] = DEFAULT_ALLOWED_COUNTRIES,
      client: Optional[stripe.StripeClient] = None,
  ):
    self._client = client or stripe.StripeClient(secret_key)
    self._webhook_secret = webhook_secret
    self.site_url = site_url.rstrip("/")
    self.allowed_countries = list(allowed_countries)

  def build_session_params(
      self,
      request: CheckoutSessionRequest,
      now: Optional[datetime.datetime] = None,
  ) -> Dict[str, Any]:
    """Translates a session request into Stripe Checkout parameters."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    metadata = request.hold.to_metadata()

    params: Dict[str, Any] = {
        "mode": "payment",
        "allow_promotion_codes": True,
        "shipping_address_collection": {
            "allowed_countries": self.allowed_countries
        },
        "automatic_tax": {"enabled": True},
        "line_items": [
            {
                "price_data": {
                    "currency": line.product.currency,
                    "product_data": {
                        "name": line.product.name or line.product.id,
                        "metadata": {
                            "product_id": line.product.id,
                            "sku": line.product.sku or "",
                        },
                    },
                    "unit_amount": line.product.price,
                },
                "quantity": line.qty,
            }
            for line in request.lines
        ],
        "success_url": (
            f"{self.site_url}/checkout-success"
            "?session_id={CHECKOUT_SESSION_ID}"
        ),
        "cancel_url": f"{self.site_url}/cart?canceled=1",
        "metadata": metadata,
        # Payment intent events carry the same link back to the holds.
        "payment_intent_data": {"metadata": dict(metadata)},
    }
    if request.customer_email:
      params["customer_email"] = request.customer_email

    if request.shipping.charges:
      # Checkout shows shipping options as alternatives, so the consolidated
      # charges are offered as one option with their combined amount.
      params["shipping_options"] = [{
          "shipping_rate_data": {
              "type": "fixed_amount",
              "fixed_amount": {
                  "amount": request.shipping.total,
                  "currency": request.currency,
              },
              "display_name": " + ".join(
                  c.label for c in request.shipping.charges
              ),
              "delivery_estimate": {
                  "minimum": {"unit": "business_day", "value": 3},
                  "maximum": {"unit": "business_day", "value": 10},
              },
          }
      }]

    hold_until = request.hold.hold_until
    if hold_until and hold_until - now >= datetime.timedelta(
        minutes=MIN_SESSION_MINUTES
    ):
      # Expire the session just after the hold so its expiry event releases it.
      params["expires_at"] = int(
          (hold_until + datetime.timedelta(minutes=1)).timestamp()
      )
    return params

  async def create_session(
      self, request: CheckoutSessionRequest
  ) -> CheckoutSession:
    """Creates a hosted checkout session and returns its id and URL."""
    params = self.build_session_params(request)
    try:
      session = await asyncio.to_thread(
          self._client.checkout.sessions.create, params=params
      )
    except stripe.StripeError as e:
      logger.error("Stripe session creation failed: %s", e)
      raise PaymentProviderError(f"Stripe session creation failed: {e}") from e
    logger.info("Created Stripe checkout session %s", session.id)
    return CheckoutSession(id=session.id, url=session.url)

  def construct_event(
      self, payload: bytes, signature: Optional[str]
  ) -> WebhookEvent:
    """Verifies a webhook payload and parses it.

    Args:
      payload: The raw request body, exactly as received.
      signature: The Stripe-Signature header.

    Returns:
      The verified event.

    Raises:
      WebhookSignatureError: The signature is missing or invalid.
      InvalidRequestError: The payload is signed but not a usable event.
    """
    if not signature:
      raise WebhookSignatureError("Missing Stripe-Signature header")
    try:
      stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
    except stripe.SignatureVerificationError as e:
      logger.warning("Webhook signature verification failed: %s", e)
      raise WebhookSignatureError(f"Webhook Error: {e}") from e
    except ValueError as e:
      logger.warning("Webhook payload is not valid JSON: %s", e)
      raise WebhookSignatureError(f"Webhook Error: {e}") from e

    try:
      return WebhookEvent.model_validate_json(payload)
    except pydantic.ValidationError as e:
      logger.error("Verified webhook payload has unexpected shape: %s", e)
      raise InvalidRequestError("Unrecognized webhook payload") from e
