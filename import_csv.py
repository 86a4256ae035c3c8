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

"""Database initialization script for the SQL inventory backend.

This script imports products and shipping rates from CSV files into the SQLite
inventory database. It clears any existing products and shipping rates before
populating them with the new dataset; orders are left untouched.

Usage:
  python import_csv.py --inventory_db_path=... --data_dir=...
"""

import asyncio
import csv
import logging
import os
import sys
from typing import List

from absl import app as absl_app
from absl import flags
import config
import db
from db import ProductRecord
from db import ShippingRateRecord
from enums import DEFAULT_SHIPPING_TIER
from enums import ProductStatus
from models import DEFAULT_CURRENCY
from sqlalchemy import delete

FLAGS = flags.FLAGS
flags.DEFINE_string(
    "data_dir",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
    "Directory containing products.csv and shipping_rates.csv",
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def read_products(path: str) -> List[ProductRecord]:
  products = []
  with open(path, "r", encoding="utf-8") as f:
    for row in csv.DictReader(f):
      products.append(
          ProductRecord(
              id=row["id"],
              name=row["name"],
              price=int(row["price"]),
              currency=row.get("currency") or DEFAULT_CURRENCY,
              sku=row.get("sku") or None,
              quantity=int(row.get("quantity") or 1),
              status=ProductStatus(
                  row.get("status") or ProductStatus.AVAILABLE.value
              ).value,
              shipping_tier=(
                  row.get("shipping_tier") or DEFAULT_SHIPPING_TIER.value
              ),
              image_url=row.get("image_url") or None,
          )
      )
  return products


def read_shipping_rates(path: str) -> List[ShippingRateRecord]:
  rates = []
  with open(path, "r", encoding="utf-8") as f:
    for row in csv.DictReader(f):
      rates.append(
          ShippingRateRecord(
              id=row["id"],
              tier=row["tier"],
              country=row["country"].upper(),
              amount=int(row["amount"]),
              label=row.get("label") or row["tier"],
          )
      )
  return rates


async def import_csv_data() -> None:
  """Reads CSV files and populates the database."""
  data_dir = FLAGS.data_dir
  manager = db.DatabaseManager()
  # Ensure tables exist
  await manager.init_db(FLAGS.inventory_db_path)

  try:
    async with manager.session_factory() as session:
      logger.info("Clearing existing products and shipping rates...")
      await session.execute(delete(ProductRecord))
      await session.execute(delete(ShippingRateRecord))

      logger.info("Importing Products from CSV...")
      products = read_products(os.path.join(data_dir, "products.csv"))
      session.add_all(products)

      rates_path = os.path.join(data_dir, "shipping_rates.csv")
      if os.path.exists(rates_path):
        logger.info("Importing Shipping Rates from CSV...")
        session.add_all(read_shipping_rates(rates_path))

      await session.commit()
      logger.info("Imported %d product(s)", len(products))
  finally:
    await manager.close()


def main(argv) -> None:
  """Main entry point for the import script."""
  del argv  # Unused.
  if not config.FLAGS.inventory_db_path:
    print("Error: --inventory_db_path is required.")
    sys.exit(1)
  asyncio.run(import_csv_data())


if __name__ == "__main__":
  absl_app.run(main)
