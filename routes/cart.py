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

"""Cart pricing route."""

import logging

from dependencies import get_cart_service
from exceptions import UpstreamError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from models import PriceRequest
from models import PriceResponse
from services.cart_service import CartService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/cart/price",
    response_model=PriceResponse,
    summary="Price a cart",
)
async def price_cart(
    price_request: PriceRequest = Body(None),
    cart_service: CartService = Depends(get_cart_service),
) -> PriceResponse:
  """Returns authoritative prices, totals and shipping for a cart.

  Nothing is reserved; a missing body or item list prices as an empty cart.
  """
  price_request = price_request or PriceRequest()
  try:
    return await cart_service.price(
        price_request.items or [], price_request.country
    )
  except UpstreamError as e:
    logger.error("Pricing failed: %s", e.message)
    raise UpstreamError(e.message, code="pricing_failed") from e
