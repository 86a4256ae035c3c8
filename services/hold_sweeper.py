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

"""Background task releasing holds whose payment session never reported."""

import asyncio
import logging

from exceptions import CartError
from services.reservation_service import ReservationManager

logger = logging.getLogger(__name__)


async def run_hold_sweeper(
    reservations: ReservationManager,
    interval_seconds: float,
    grace_minutes: int,
) -> None:
  """Sweeps expired holds every `interval_seconds` until cancelled."""
  logger.info(
      "Hold sweeper started (every %ss, grace %d min)",
      interval_seconds,
      grace_minutes,
  )
  while True:
    await asyncio.sleep(interval_seconds)
    try:
      released = await reservations.release_expired_holds(grace_minutes)
    except CartError as e:
      # Retried on the next tick.
      logger.error("Hold sweep failed: %s", e)
      continue
    except Exception:  # pylint: disable=broad-exception-caught
      logger.exception("Hold sweep failed unexpectedly")
      continue
    if released:
      logger.info("Hold sweep released %d product(s)", len(released))
