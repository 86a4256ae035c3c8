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

"""Alerting hook for failures that leave inventory in a mixed state."""

import logging
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

AlertHook = Callable[[str, Dict[str, Any]], None]


def log_alert(event: str, details: Dict[str, Any]) -> None:
  """Default hook: reports the alert at CRITICAL level."""
  logger.critical("ALERT %s: %s", event, details)
