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

"""Payment provider webhook route."""

from typing import Optional

from dependencies import get_webhook_reconciler
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from models import WebhookAck
from services.webhook_service import WebhookReconciler

router = APIRouter()


@router.post(
    "/stripe/webhook",
    response_model=WebhookAck,
    summary="Receive Stripe events",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> WebhookAck:
  """Verifies and applies a Stripe event.

  The signature is computed over the exact bytes Stripe sent, so the body is
  read raw and never parsed before verification. Any non-2xx answer makes
  Stripe redeliver the event.
  """
  payload = await request.body()
  await reconciler.handle(payload, stripe_signature)
  return WebhookAck()
