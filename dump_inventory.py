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

"""Utility script to dump inventory state.

This script reads every product from the SQLite inventory database and writes
its status, quantity and hold expiry to standard output in CSV format.

Usage:
  python dump_inventory.py --inventory_db_path=...
"""

import asyncio
import csv
import sys

from absl import app as absl_app
import config
import db
from db import ProductRecord
from sqlalchemy import select


async def dump_inventory():
  """Queries the database and prints the current state of every product."""
  manager = db.DatabaseManager()
  await manager.init_db(config.FLAGS.inventory_db_path)
  try:
    async with manager.session_factory() as session:
      result = await session.execute(
          select(ProductRecord).order_by(ProductRecord.id)
      )
      records = result.scalars().all()
  finally:
    await manager.close()

  writer = csv.writer(sys.stdout)
  writer.writerow(["id", "status", "quantity", "hold_until", "sold_in_order"])
  for record in records:
    writer.writerow([
        record.id,
        record.status,
        record.quantity,
        record.hold_until.isoformat() if record.hold_until else "",
        record.sold_in_order or "",
    ])


def main(argv):
  """Main entry point for the inventory dump script."""
  del argv
  if not config.FLAGS.inventory_db_path:
    print("Error: --inventory_db_path is required.")
    sys.exit(1)
  asyncio.run(dump_inventory())


if __name__ == "__main__":
  absl_app.run(main)
