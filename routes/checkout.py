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

"""Checkout routes: JSON session creation and the direct-link redirect."""

import logging
from typing import Optional

from config import Settings
from dependencies import get_checkout_service
from dependencies import get_settings
from exceptions import CartError
from exceptions import EmptyCartError
from exceptions import InvalidRequestError
from exceptions import OutOfStockError
from exceptions import UpstreamError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Query
from fastapi.responses import PlainTextResponse
from fastapi.responses import RedirectResponse
from models import CartLine
from models import CheckoutCreateRequest
from models import CheckoutCreateResponse
from models import normalize_country
from services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/checkout/create",
    response_model=CheckoutCreateResponse,
    summary="Create a hosted checkout session",
)
async def create_checkout(
    checkout_request: CheckoutCreateRequest = Body(None),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutCreateResponse:
  """Holds the cart's items and returns the hosted checkout URL."""
  checkout_request = checkout_request or CheckoutCreateRequest()
  if not checkout_request.items:
    raise EmptyCartError()
  try:
    session = await checkout_service.create_checkout(
        checkout_request.items,
        checkout_request.country,
        checkout_request.customer_email,
    )
  except UpstreamError as e:
    logger.error("Checkout session creation failed: %s", e.message)
    raise UpstreamError(e.message, code="session_failed") from e
  return CheckoutCreateResponse(url=session.url)


@router.get("/checkout/link", summary="Direct checkout link for one product")
async def checkout_link(
    product_id: Optional[str] = Query(None, alias="id"),
    qty: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    email: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings),
    checkout_service: CheckoutService = Depends(get_checkout_service),
):
  """Checks out a single product and redirects the browser.

  Sold-out products redirect to the site's sold-out page; any other failure
  answers with a plain-text error, since the caller is a browser following a
  link rather than an API client.
  """
  if not product_id:
    raise InvalidRequestError("missing id")

  line = CartLine(id=product_id, qty=qty)
  try:
    session = await checkout_service.create_checkout(
        [line], normalize_country(country), email
    )
  except OutOfStockError:
    logger.info("Checkout link for sold-out product %s", product_id)
    return RedirectResponse(f"{settings.site_url}/sold-out", status_code=302)
  except CartError as e:
    logger.error("Checkout link for %s failed: %s", product_id, e.message)
    return PlainTextResponse("link_error", status_code=500)
  return RedirectResponse(session.url, status_code=302)
