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

"""Shared configuration and startup logic for the cart backend.

Every setting is an absl flag whose default comes from the environment, so the
server can be configured with either. `load_settings` validates the flags and
freezes them into a `Settings` object; that object is built once at startup
and passed to the app, and no business logic reads flags or the environment.
"""

import asyncio
import contextlib
import logging
import os
from typing import Literal, Optional, Tuple

from absl import flags
from airtable_store import AirtableInventoryStore
from airtable_store import AirtableTables
from airtable_store import DEFAULT_API_URL
import db
from fastapi import FastAPI
from inventory_store import InventoryStore
from inventory_store import MAX_BATCH_SIZE
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import model_validator
from services.hold_sweeper import run_hold_sweeper
from services.payment_gateway import DEFAULT_ALLOWED_COUNTRIES
from services.payment_gateway import StripeGateway
from services.reservation_service import ReservationManager

FLAGS = flags.FLAGS

SERVER_VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
  return os.environ.get(name) or default


# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string(
      "stripe_secret_key", _env("STRIPE_SECRET_KEY"), "Stripe API secret key"
  )
  flags.DEFINE_string(
      "stripe_webhook_secret",
      _env("STRIPE_WEBHOOK_SECRET"),
      "Signing secret of the Stripe webhook endpoint",
  )
  flags.DEFINE_string(
      "inventory_backend",
      _env("INVENTORY_BACKEND", "airtable"),
      "Inventory store backend: 'airtable' or 'sql'",
  )
  flags.DEFINE_string(
      "airtable_api_key", _env("AIRTABLE_API_KEY"), "Airtable access token"
  )
  flags.DEFINE_string(
      "airtable_base_id", _env("AIRTABLE_BASE_ID"), "Airtable base id"
  )
  flags.DEFINE_string(
      "airtable_api_url",
      _env("AIRTABLE_API_URL", DEFAULT_API_URL),
      "Airtable REST API root",
  )
  flags.DEFINE_string(
      "products_table",
      _env("AIRTABLE_PRODUCTS_TABLE", "Products"),
      "Products table name",
  )
  flags.DEFINE_string(
      "orders_table", _env("AIRTABLE_ORDERS_TABLE", "Orders"), "Orders table"
  )
  flags.DEFINE_string(
      "order_items_table",
      _env("AIRTABLE_ORDER_ITEMS_TABLE", "OrderItems"),
      "OrderItems table name",
  )
  flags.DEFINE_string(
      "shipping_table",
      _env("AIRTABLE_SHIPPING_TABLE", "ShippingRates"),
      "ShippingRates table name",
  )
  flags.DEFINE_string(
      "inventory_db_path",
      _env("INVENTORY_DB_PATH"),
      "Path to the SQLite inventory DB (sql backend)",
  )
  flags.DEFINE_string(
      "site_url",
      _env("SITE_URL"),
      "Public site URL used for success, cancel and sold-out redirects",
  )
  flags.DEFINE_integer(
      "hold_minutes", _env("HOLD_MINUTES", "30"), "Inventory hold duration"
  )
  flags.DEFINE_integer(
      "batch_size",
      _env("INVENTORY_BATCH_SIZE", str(MAX_BATCH_SIZE)),
      "Records per inventory write call",
  )
  flags.DEFINE_integer(
      "hold_sweep_interval_seconds",
      _env("HOLD_SWEEP_INTERVAL_SECONDS", "300"),
      "Seconds between expired-hold sweeps; 0 disables the sweeper",
  )
  flags.DEFINE_integer(
      "hold_sweep_grace_minutes",
      _env("HOLD_SWEEP_GRACE_MINUTES", "5"),
      "Minutes past expiry before the sweeper releases a hold",
  )
  flags.DEFINE_list(
      "allowed_countries",
      _env("ALLOWED_COUNTRIES", ",".join(DEFAULT_ALLOWED_COUNTRIES)),
      "Shipping countries offered by the hosted checkout",
  )
  flags.DEFINE_list(
      "cors_origins", _env("CORS_ORIGINS", "*"), "Allowed browser origins"
  )
  flags.DEFINE_string("host", _env("HOST", "0.0.0.0"), "Host to bind")
  flags.DEFINE_integer(
      "port", _env("PORT", "8787"), "Port to run the server on"
  )
except flags.DuplicateFlagError:
  pass


class Settings(BaseModel):
  """Validated, immutable server configuration."""

  model_config = ConfigDict(frozen=True)

  stripe_secret_key: str = Field(min_length=1)
  stripe_webhook_secret: str = Field(min_length=1)
  site_url: str = Field(min_length=1)
  inventory_backend: Literal["airtable", "sql"] = "airtable"
  airtable_api_key: Optional[str] = None
  airtable_base_id: Optional[str] = None
  airtable_api_url: str = DEFAULT_API_URL
  tables: AirtableTables = AirtableTables()
  inventory_db_path: Optional[str] = None
  hold_minutes: int = Field(30, ge=1)
  batch_size: int = Field(MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)
  hold_sweep_interval_seconds: int = Field(300, ge=0)
  hold_sweep_grace_minutes: int = Field(5, ge=0)
  allowed_countries: Tuple[str, ...] = DEFAULT_ALLOWED_COUNTRIES
  cors_origins: Tuple[str, ...] = ("*",)

  @model_validator(mode="after")
  def _check_backend(self) -> "Settings":
    if self.inventory_backend == "airtable" and not (
        self.airtable_api_key and self.airtable_base_id
    ):
      raise ValueError(
          "airtable_api_key and airtable_base_id are required for the"
          " airtable backend"
      )
    if self.inventory_backend == "sql" and not self.inventory_db_path:
      raise ValueError("inventory_db_path is required for the sql backend")
    return self


def load_settings(flag_values: flags.FlagValues = FLAGS) -> Settings:
  """Builds `Settings` from parsed flags.

  Raises:
    ValueError: A required value is missing or out of range.
  """
  return Settings(
      stripe_secret_key=flag_values.stripe_secret_key or "",
      stripe_webhook_secret=flag_values.stripe_webhook_secret or "",
      site_url=(flag_values.site_url or "").rstrip("/"),
      inventory_backend=flag_values.inventory_backend,
      airtable_api_key=flag_values.airtable_api_key,
      airtable_base_id=flag_values.airtable_base_id,
      airtable_api_url=flag_values.airtable_api_url,
      tables=AirtableTables(
          products=flag_values.products_table,
          orders=flag_values.orders_table,
          order_items=flag_values.order_items_table,
          shipping=flag_values.shipping_table,
      ),
      inventory_db_path=flag_values.inventory_db_path,
      hold_minutes=flag_values.hold_minutes,
      batch_size=flag_values.batch_size,
      hold_sweep_interval_seconds=flag_values.hold_sweep_interval_seconds,
      hold_sweep_grace_minutes=flag_values.hold_sweep_grace_minutes,
      allowed_countries=tuple(c.upper() for c in flag_values.allowed_countries),
      cors_origins=tuple(flag_values.cors_origins),
  )


async def build_store(settings: Settings) -> InventoryStore:
  """Creates the inventory store selected by the settings."""
  if settings.inventory_backend == "sql":
    manager = db.DatabaseManager()
    await manager.init_db(settings.inventory_db_path)
    return db.SqlInventoryStore(manager, batch_size=settings.batch_size)
  return AirtableInventoryStore(
      api_key=settings.airtable_api_key,
      base_id=settings.airtable_base_id,
      tables=settings.tables,
      api_url=settings.airtable_api_url,
      batch_size=settings.batch_size,
  )


def build_gateway(settings: Settings) -> StripeGateway:
  return StripeGateway(
      secret_key=settings.stripe_secret_key,
      webhook_secret=settings.stripe_webhook_secret,
      site_url=settings.site_url,
      allowed_countries=settings.allowed_countries,
  )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Opens the inventory store and runs the hold sweeper for the app's life.

  A store or gateway already placed on `app.state` (e.g. by tests) is used
  as is and left open on shutdown.
  """
  settings: Settings = app.state.settings
  owns_store = app.state.store is None
  if owns_store:
    app.state.store = await build_store(settings)
  if app.state.gateway is None:
    app.state.gateway = build_gateway(settings)

  sweeper = None
  if settings.hold_sweep_interval_seconds > 0:
    reservations = ReservationManager(
        app.state.store, settings.hold_minutes, alert=app.state.alert
    )
    sweeper = asyncio.create_task(
        run_hold_sweeper(
            reservations,
            settings.hold_sweep_interval_seconds,
            settings.hold_sweep_grace_minutes,
        )
    )
  yield
  if sweeper:
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await sweeper
  if owns_store:
    await app.state.store.close()
