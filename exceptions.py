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

"""Custom exceptions for the cart backend."""

from typing import Any, Dict, List, Optional, Sequence


class CartError(Exception):
  """Base class for all cart backend exceptions."""

  def __init__(
      self,
      message: str,
      code: str = "internal_error",
      status_code: int = 500,
      extra: Optional[Dict[str, Any]] = None,
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    self.extra = extra or {}
    super().__init__(self.message)


class EmptyCartError(CartError):
  """Raised when a checkout is requested for a cart with no lines."""

  def __init__(self, message: str = "Cart is empty"):
    super().__init__(message, code="empty_cart", status_code=400)


class InvalidRequestError(CartError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="invalid_request", status_code=400)


class OutOfStockError(CartError):
  """Raised when a cart cannot be reserved because items are unavailable."""

  def __init__(self, out_of_stock: List[Dict[str, Any]]):
    self.out_of_stock = out_of_stock
    super().__init__(
        f"{len(out_of_stock)} item(s) are out of stock",
        code="out_of_stock",
        status_code=409,
        extra={"outOfStock": out_of_stock},
    )


class HoldConflictError(CartError):
  """Raised when a hold cannot be placed because a record is not Available."""

  def __init__(self, product_ids: Sequence[str]):
    self.product_ids = list(product_ids)
    super().__init__(
        f"Products no longer available: {', '.join(self.product_ids)}",
        code="hold_conflict",
        status_code=409,
    )


class UpstreamError(CartError):
  """Raised when the inventory store or payment provider fails."""

  def __init__(self, message: str, code: str = "upstream_failed"):
    super().__init__(message, code=code, status_code=500)


class InventoryStoreError(UpstreamError):
  """Raised when a call to the inventory store fails."""


class PaymentProviderError(UpstreamError):
  """Raised when a call to the payment provider fails."""


class PartialBatchError(UpstreamError):
  """Raised when a batched write stops part way through.

  Batches before the failing one stay applied; nothing is rolled back.
  """

  def __init__(
      self,
      operation: str,
      applied_ids: Sequence[str],
      pending_ids: Sequence[str],
  ):
    self.operation = operation
    self.applied_ids = list(applied_ids)
    self.pending_ids = list(pending_ids)
    super().__init__(
        f"{operation} applied to {len(self.applied_ids)} record(s), failed"
        f" for {len(self.pending_ids)}",
        code="partial_batch",
    )


class WebhookSignatureError(CartError):
  """Raised when an inbound webhook fails signature verification."""

  def __init__(self, message: str):
    super().__init__(message, code="invalid_signature", status_code=400)


class WebhookProcessingError(CartError):
  """Raised when a verified webhook could not be applied.

  The 5xx status asks the payment provider to redeliver the event.
  """

  def __init__(self, message: str):
    super().__init__(message, code="webhook_error", status_code=500)
