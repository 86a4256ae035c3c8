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

"""FastAPI dependencies for the cart backend.

The store, payment gateway and alert hook are created once per app (see
`config.lifespan`) and live on `app.state`; the services built from them are
cheap and are instantiated per request.
"""

from config import Settings
from fastapi import Depends
from fastapi import Request
from inventory_store import InventoryStore
from services.alerts import AlertHook
from services.cart_service import CartService
from services.checkout_service import CheckoutService
from services.payment_gateway import StripeGateway
from services.reservation_service import ReservationManager
from services.shipping_service import ShippingService
from services.webhook_service import WebhookReconciler


def get_settings(request: Request) -> Settings:
  return request.app.state.settings


def get_store(request: Request) -> InventoryStore:
  return request.app.state.store


def get_gateway(request: Request) -> StripeGateway:
  return request.app.state.gateway


def get_alert_hook(request: Request) -> AlertHook:
  return request.app.state.alert


def get_shipping_service(
    store: InventoryStore = Depends(get_store),
) -> ShippingService:
  """Dependency provider for ShippingService."""
  return ShippingService(store)


def get_cart_service(
    store: InventoryStore = Depends(get_store),
    shipping_service: ShippingService = Depends(get_shipping_service),
) -> CartService:
  """Dependency provider for CartService."""
  return CartService(store, shipping_service)


def get_reservation_manager(
    store: InventoryStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    alert: AlertHook = Depends(get_alert_hook),
) -> ReservationManager:
  """Dependency provider for ReservationManager."""
  return ReservationManager(store, settings.hold_minutes, alert=alert)


def get_checkout_service(
    cart_service: CartService = Depends(get_cart_service),
    shipping_service: ShippingService = Depends(get_shipping_service),
    reservations: ReservationManager = Depends(get_reservation_manager),
    gateway: StripeGateway = Depends(get_gateway),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(cart_service, shipping_service, reservations, gateway)


def get_webhook_reconciler(
    store: InventoryStore = Depends(get_store),
    reservations: ReservationManager = Depends(get_reservation_manager),
    gateway: StripeGateway = Depends(get_gateway),
    alert: AlertHook = Depends(get_alert_hook),
) -> WebhookReconciler:
  """Dependency provider for WebhookReconciler."""
  return WebhookReconciler(store, reservations, gateway, alert=alert)
