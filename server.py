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

"""Cart and checkout backend (Python/FastAPI)."""

import logging
import sys
from typing import Optional, Sequence

from absl import app as absl_app
import config
from exceptions import CartError
from fastapi import FastAPI
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from inventory_store import InventoryStore
from routes.cart import router as cart_router
from routes.checkout import router as checkout_router
from routes.health import router as health_router
from routes.webhook import router as webhook_router
from services.alerts import AlertHook
from services.alerts import log_alert
from services.payment_gateway import StripeGateway
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def cart_exception_handler(request: Request, exc: CartError):
  """Converts cart errors to `{"error": code, "detail": message}` bodies."""
  del request  # Unused.
  return JSONResponse(
      status_code=exc.status_code,
      content={"error": exc.code, "detail": exc.message, **exc.extra},
  )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
  """Reports malformed request bodies as `invalid_request`."""
  del request  # Unused.
  return JSONResponse(
      status_code=400,
      content={"error": "invalid_request", "detail": str(exc.errors())},
  )


def create_app(
    settings: config.Settings,
    store: Optional[InventoryStore] = None,
    gateway: Optional[StripeGateway] = None,
    alert: AlertHook = log_alert,
) -> FastAPI:
  """Builds the application.

  Args:
    settings: Validated configuration.
    store: Inventory store to use; built from `settings` on startup if None.
    gateway: Payment gateway to use; built from `settings` on startup if None.
    alert: Receives operator alerts (partial writes, oversells).

  Returns:
    The FastAPI application.
  """
  app = FastAPI(
      title="Cart Backend",
      version=config.SERVER_VERSION,
      description="Cart pricing, inventory holds and hosted checkout",
      lifespan=config.lifespan,
  )
  app.state.settings = settings
  app.state.store = store
  app.state.gateway = gateway
  app.state.alert = alert

  app.add_middleware(
      CORSMiddleware,
      allow_origins=list(settings.cors_origins),
      allow_methods=["GET", "POST", "OPTIONS"],
      allow_headers=["*"],
  )
  app.add_exception_handler(CartError, cart_exception_handler)
  app.add_exception_handler(
      RequestValidationError, validation_exception_handler
  )

  app.include_router(health_router)
  app.include_router(cart_router)
  app.include_router(checkout_router)
  app.include_router(webhook_router)
  return app


def main(argv: Sequence[str]) -> None:
  """Main entry point for the cart backend."""
  del argv  # Unused.

  try:
    settings = config.load_settings()
  except ValueError as e:
    logger.error("Invalid configuration: %s", e)
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  logger.info(
      "Starting server on port %d with the %s inventory backend",
      config.FLAGS.port,
      settings.inventory_backend,
  )
  uvicorn.run(
      create_app(settings), host=config.FLAGS.host, port=config.FLAGS.port
  )


def run() -> None:
  """Console script entry point."""
  absl_app.run(main)


if __name__ == "__main__":
  run()
