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

"""Tests for turning carts into held, hosted checkout sessions."""

import asyncio
import os
import shutil
import tempfile

from absl.testing import absltest
from enums import ProductStatus
from exceptions import EmptyCartError
from exceptions import OutOfStockError
from exceptions import PaymentProviderError
from models import CartLine
from services.cart_service import CartService
from services.checkout_service import CheckoutService
from services.reservation_service import ReservationManager
from services.shipping_service import ShippingService
import testing_fakes


class CheckoutServiceTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.store = asyncio.run(
        testing_fakes.make_sql_store(os.path.join(self.test_dir, "inv.db"))
    )
    self.gateway, self.stripe = testing_fakes.make_gateway()
    shipping = ShippingService(self.store)
    self.service = CheckoutService(
        CartService(self.store, shipping),
        shipping,
        ReservationManager(self.store, hold_minutes=30),
        self.gateway,
    )

  def tearDown(self):
    asyncio.run(self.store.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _status(self, product_id):
    products = asyncio.run(self.store.fetch_products([product_id]))
    return products[0].status

  def test_checkout_holds_items_and_returns_session(self):
    session = asyncio.run(
        self.service.create_checkout(
            [CartLine(id="print_harbor", qty=2), CartLine(id="card_gulls")],
            "US",
            "buyer@example.com",
        )
    )
    self.assertEqual(session.id, "cs_test_1")
    self.assertEqual(self._status("print_harbor"), ProductStatus.ON_HOLD)
    self.assertEqual(self._status("card_gulls"), ProductStatus.ON_HOLD)

    params = self.stripe.sessions.created[0]
    self.assertEqual(
        [i["price_data"]["unit_amount"] for i in params["line_items"]],
        [12000, 1800],
    )
    self.assertEqual(
        params["shipping_options"][0]["shipping_rate_data"]["fixed_amount"][
            "amount"
        ],
        1500 + 500,
    )
    self.assertEqual(
        params["metadata"]["product_ids"], "print_harbor,card_gulls"
    )
    self.assertEqual(params["customer_email"], "buyer@example.com")

  def test_unknown_lines_are_dropped(self):
    asyncio.run(
        self.service.create_checkout(
            [CartLine(id="nope"), CartLine(id="print_lighthouse")], "US"
        )
    )
    params = self.stripe.sessions.created[0]
    self.assertEqual(params["metadata"]["product_ids"], "print_lighthouse")

  def test_out_of_stock_line_blocks_everything(self):
    with self.assertRaises(OutOfStockError) as ctx:
      asyncio.run(
          self.service.create_checkout(
              [CartLine(id="print_harbor"), CartLine(id="print_fog_bank")],
              "US",
          )
      )
    self.assertEqual(ctx.exception.status_code, 409)
    self.assertEqual(
        ctx.exception.extra,
        {"outOfStock": [{"id": "print_fog_bank", "name": "Fog Bank"}]},
    )
    self.assertEqual(self._status("print_harbor"), ProductStatus.AVAILABLE)
    self.assertEmpty(self.stripe.sessions.created)

  def test_cart_of_unknown_products_is_rejected(self):
    with self.assertRaises(OutOfStockError) as ctx:
      asyncio.run(self.service.create_checkout([CartLine(id="nope")], "US"))
    self.assertEqual(
        ctx.exception.extra, {"outOfStock": [{"id": "nope", "name": ""}]}
    )
    self.assertEmpty(self.stripe.sessions.created)

  def test_empty_cart_is_rejected(self):
    with self.assertRaises(EmptyCartError) as ctx:
      asyncio.run(self.service.create_checkout([], "US"))
    self.assertEqual(ctx.exception.code, "empty_cart")

  def test_second_checkout_of_held_item_is_out_of_stock(self):
    asyncio.run(
        self.service.create_checkout([CartLine(id="print_lighthouse")], "US")
    )
    with self.assertRaises(OutOfStockError):
      asyncio.run(
          self.service.create_checkout([CartLine(id="print_lighthouse")], "US")
      )
    self.assertLen(self.stripe.sessions.created, 1)

  def test_repeated_one_of_a_kind_lines_are_out_of_stock(self):
    with self.assertRaises(OutOfStockError):
      asyncio.run(
          self.service.create_checkout(
              [
                  CartLine(id="print_lighthouse"),
                  CartLine(id="print_lighthouse"),
              ],
              "US",
          )
      )
    self.assertEqual(self._status("print_lighthouse"), ProductStatus.AVAILABLE)
    self.assertEmpty(self.stripe.sessions.created)

  def test_repeated_lines_become_one_line_item(self):
    asyncio.run(
        self.service.create_checkout(
            [CartLine(id="print_harbor"), CartLine(id="print_harbor")], "US"
        )
    )
    params = self.stripe.sessions.created[0]
    self.assertLen(params["line_items"], 1)
    self.assertEqual(params["line_items"][0]["quantity"], 2)
    self.assertEqual(params["metadata"]["product_ids"], "print_harbor")
    self.assertEqual(params["metadata"]["quantities"], "2")

  def test_session_failure_releases_holds(self):
    self.stripe.sessions.error = testing_fakes.api_connection_error()
    with self.assertRaises(PaymentProviderError):
      asyncio.run(
          self.service.create_checkout([CartLine(id="print_harbor")], "US")
      )
    self.assertEqual(self._status("print_harbor"), ProductStatus.AVAILABLE)


if __name__ == "__main__":
  absltest.main()
