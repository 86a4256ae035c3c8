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

"""Releases expired inventory holds once and exits.

Runs the same sweep as the server's background task against the configured
backend, for deployments that schedule it externally (e.g. cron) with
--hold_sweep_interval_seconds=0 on the server.

Usage:
  python sweep_holds.py --inventory_backend=sql --inventory_db_path=...
"""

import asyncio
import logging
import sys

from absl import app as absl_app
import config
from exceptions import CartError
from services.reservation_service import ReservationManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def sweep(settings: config.Settings) -> int:
  """Returns the number of products released."""
  store = await config.build_store(settings)
  try:
    reservations = ReservationManager(store, settings.hold_minutes)
    released = await reservations.release_expired_holds(
        settings.hold_sweep_grace_minutes
    )
  finally:
    await store.close()
  for product_id in released:
    print(product_id)
  return len(released)


def main(argv) -> None:
  """Main entry point for the hold sweep script."""
  del argv  # Unused.
  try:
    settings = config.load_settings()
  except ValueError as e:
    logger.error("Invalid configuration: %s", e)
    sys.exit(1)

  try:
    count = asyncio.run(sweep(settings))
  except CartError as e:
    logger.error("Hold sweep failed: %s", e.message)
    sys.exit(1)
  logger.info("Released %d expired hold(s)", count)


if __name__ == "__main__":
  absl_app.run(main)
