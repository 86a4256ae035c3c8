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

"""Tests for the Stripe gateway."""

import asyncio
import datetime
import json

from absl.testing import absltest
from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
from exceptions import WebhookSignatureError
from models import CheckoutSessionRequest
from models import HoldMetadata
from models import ShippingCharge
from models import ShippingQuote
from models import ValidatedLine
import testing_fakes


def _request(hold_minutes: int = 30, **kwargs) -> CheckoutSessionRequest:
  defaults = dict(
      lines=[
          ValidatedLine(product=testing_fakes.HARBOR, qty=2),
          ValidatedLine(product=testing_fakes.CARDS, qty=1),
      ],
      currency="usd",
      shipping=ShippingQuote(
          charges=[
              ShippingCharge(tier="Tube-L", amount=1500, label="Large tube"),
              ShippingCharge(tier="FlatPack", amount=500, label="Flat pack"),
          ]
      ),
      hold=HoldMetadata(
          product_ids=["print_harbor", "card_gulls"],
          quantities=[2, 1],
          hold_until=testing_fakes.NOW
          + datetime.timedelta(minutes=hold_minutes),
      ),
  )
  defaults.update(kwargs)
  return CheckoutSessionRequest(**defaults)


class BuildSessionParamsTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.gateway, _ = testing_fakes.make_gateway()

  def test_line_items_carry_store_prices(self):
    params = self.gateway.build_session_params(
        _request(), now=testing_fakes.NOW
    )
    self.assertEqual(params["mode"], "payment")
    self.assertEqual(
        [
            (i["price_data"]["unit_amount"], i["quantity"])
            for i in params["line_items"]
        ],
        [(12000, 2), (1800, 1)],
    )
    self.assertEqual(
        params["line_items"][0]["price_data"]["product_data"]["metadata"],
        {"product_id": "print_harbor", "sku": "HD-001"},
    )

  def test_metadata_links_session_and_payment_intent_to_holds(self):
    params = self.gateway.build_session_params(
        _request(), now=testing_fakes.NOW
    )
    self.assertEqual(
        params["metadata"]["product_ids"], "print_harbor,card_gulls"
    )
    self.assertEqual(params["metadata"]["quantities"], "2,1")
    self.assertIn("hold_until", params["metadata"])
    self.assertEqual(
        params["payment_intent_data"]["metadata"], params["metadata"]
    )
    hold = HoldMetadata.from_metadata(params["metadata"])
    self.assertEqual(hold.product_ids, ["print_harbor", "card_gulls"])
    self.assertEqual(hold.quantity_for("print_harbor"), 2)

  def test_shipping_is_one_combined_option(self):
    params = self.gateway.build_session_params(
        _request(), now=testing_fakes.NOW
    )
    self.assertLen(params["shipping_options"], 1)
    rate = params["shipping_options"][0]["shipping_rate_data"]
    self.assertEqual(rate["fixed_amount"], {"amount": 2000, "currency": "usd"})
    self.assertEqual(rate["display_name"], "Large tube + Flat pack")

  def test_no_shipping_option_without_charges(self):
    params = self.gateway.build_session_params(
        _request(shipping=ShippingQuote()), now=testing_fakes.NOW
    )
    self.assertNotIn("shipping_options", params)

  def test_redirect_urls_use_site_url(self):
    params = self.gateway.build_session_params(
        _request(customer_email="buyer@example.com"), now=testing_fakes.NOW
    )
    self.assertEqual(
        params["success_url"],
        "https://shop.example.com/checkout-success"
        "?session_id={CHECKOUT_SESSION_ID}",
    )
    self.assertEqual(
        params["cancel_url"], "https://shop.example.com/cart?canceled=1"
    )
    self.assertEqual(params["customer_email"], "buyer@example.com")
    self.assertEqual(
        params["shipping_address_collection"]["allowed_countries"][0], "US"
    )

  def test_session_expires_after_the_hold(self):
    params = self.gateway.build_session_params(
        _request(hold_minutes=45), now=testing_fakes.NOW
    )
    expected = testing_fakes.NOW + datetime.timedelta(minutes=46)
    self.assertEqual(params["expires_at"], int(expected.timestamp()))

  def test_short_hold_leaves_provider_default_expiry(self):
    params = self.gateway.build_session_params(
        _request(hold_minutes=10), now=testing_fakes.NOW
    )
    self.assertNotIn("expires_at", params)


class CreateSessionTest(absltest.TestCase):

  def test_returns_session_id_and_url(self):
    gateway, client = testing_fakes.make_gateway()
    session = asyncio.run(gateway.create_session(_request()))
    self.assertEqual(session.id, "cs_test_1")
    self.assertTrue(session.url.startswith("https://checkout.stripe.com/"))
    self.assertLen(client.sessions.created, 1)

  def test_stripe_error_becomes_provider_error(self):
    gateway, client = testing_fakes.make_gateway()
    client.sessions.error = testing_fakes.api_connection_error()
    with self.assertRaises(PaymentProviderError) as ctx:
      asyncio.run(gateway.create_session(_request()))
    self.assertEqual(ctx.exception.status_code, 500)


class ConstructEventTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.gateway, _ = testing_fakes.make_gateway()
    self.payload = testing_fakes.session_event(
        "checkout.session.completed", "cs_test_9", ["print_harbor"]
    )

  def test_valid_signature_parses_event(self):
    event = self.gateway.construct_event(
        self.payload, testing_fakes.sign_payload(self.payload)
    )
    self.assertEqual(event.type, "checkout.session.completed")
    self.assertEqual(event.data.object.id, "cs_test_9")
    self.assertEqual(
        event.data.object.metadata["product_ids"], "print_harbor"
    )

  def test_missing_signature_is_rejected(self):
    with self.assertRaises(WebhookSignatureError):
      self.gateway.construct_event(self.payload, None)

  def test_wrong_secret_is_rejected(self):
    signature = testing_fakes.sign_payload(self.payload, secret="whsec_other")
    with self.assertRaises(WebhookSignatureError) as ctx:
      self.gateway.construct_event(self.payload, signature)
    self.assertEqual(ctx.exception.status_code, 400)

  def test_tampered_body_is_rejected(self):
    signature = testing_fakes.sign_payload(self.payload)
    tampered = self.payload.replace(b"print_harbor", b"print_lighthouse")
    with self.assertRaises(WebhookSignatureError):
      self.gateway.construct_event(tampered, signature)

  def test_stale_signature_is_rejected(self):
    signature = testing_fakes.sign_payload(self.payload, timestamp=1000)
    with self.assertRaises(WebhookSignatureError):
      self.gateway.construct_event(self.payload, signature)

  def test_signed_payload_without_event_fields_is_invalid(self):
    payload = json.dumps({"id": "evt_1", "object": "event"}).encode("utf-8")
    with self.assertRaises(InvalidRequestError):
      self.gateway.construct_event(
          payload, testing_fakes.sign_payload(payload)
      )


if __name__ == "__main__":
  absltest.main()
