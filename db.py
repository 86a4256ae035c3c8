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

"""SQL persistence layer for the cart backend.

This module provides the schema definitions, session management and an
`InventoryStore` implementation backed by SQLAlchemy with SQLite (via
aiosqlite). It holds the same Products, Orders, OrderItems and ShippingRates
data as the spreadsheet backend and is used for local runs and tests.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup.
- WAL Mode: Enables SQLite Write-Ahead Logging so the server and the sweep
  script can share the file.
- Conditional holds: a product only moves to On Hold if its row still says
  Available when the update runs, inside one transaction for the whole cart.
"""

import contextlib
import datetime
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Sequence
import uuid

from enums import OrderStatus
from enums import ProductStatus
from exceptions import HoldConflictError
from exceptions import InventoryStoreError
from inventory_store import chunked
from inventory_store import InventoryStore
from inventory_store import MAX_BATCH_SIZE
from inventory_store import run_batched
from inventory_store import unique_ids
from models import Order
from models import OrderItem
from models import Product
from models import ShippingRate
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import UniqueConstraint
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class DatabaseManager:
  """Manages the database engine and sessions."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, db_path: str) -> None:
    """Initializes the database engine and creates tables."""
    url = f"sqlite+aiosqlite:///{db_path}"
    # Connections are not reused, so the engine works from any event loop.
    self.engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()


class ProductRecord(Base):
  __tablename__ = "products"

  id = Column(String, primary_key=True)
  name = Column(String)
  price = Column(Integer, default=0)  # In cents
  currency = Column(String, default="usd")
  sku = Column(String, nullable=True)
  quantity = Column(Integer, default=1)
  status = Column(String, default=ProductStatus.AVAILABLE.value, index=True)
  shipping_tier = Column(String, nullable=True)
  hold_until = Column(DateTime, nullable=True)  # Naive UTC
  image_url = Column(String, nullable=True)
  sold_in_order = Column(String, nullable=True)


class OrderRecord(Base):
  __tablename__ = "orders"

  id = Column(String, primary_key=True)
  status = Column(String, default=OrderStatus.PAID.value)
  session_id = Column(String, unique=True, nullable=False)
  email = Column(String, nullable=True)
  currency = Column(String)
  amount_total = Column(Integer, default=0)
  shipping_name = Column(String, default="")
  shipping_country = Column(String, default="")
  shipping_city = Column(String, default="")
  shipping_postal = Column(String, default="")
  shipping_line1 = Column(String, default="")
  shipping_line2 = Column(String, default="")


class OrderItemRecord(Base):
  __tablename__ = "order_items"
  __table_args__ = (UniqueConstraint("order_id", "product_id"),)

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(String, ForeignKey("orders.id"), nullable=False)
  product_id = Column(String, nullable=False)
  name = Column(String)
  sku = Column(String, nullable=True)
  price = Column(Integer, default=0)  # In cents
  qty = Column(Integer, default=1)


class ShippingRateRecord(Base):
  __tablename__ = "shipping_rates"
  __table_args__ = (UniqueConstraint("tier", "country"),)

  id = Column(String, primary_key=True)
  tier = Column(String)  # e.g., 'Tube-L', 'FlatPack'
  country = Column(String)  # e.g., 'US'
  amount = Column(Integer, default=0)  # In cents
  label = Column(String)


# --- Mapping ---


def to_naive_utc(value: datetime.datetime) -> datetime.datetime:
  """Converts a timestamp to the naive UTC form stored in SQLite."""
  if value.tzinfo is not None:
    value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
  return value


def _from_naive_utc(
    value: Optional[datetime.datetime],
) -> Optional[datetime.datetime]:
  if value is None:
    return None
  return value.replace(tzinfo=datetime.timezone.utc)


def product_from_record(record: ProductRecord) -> Product:
  return Product(
      id=record.id,
      name=record.name or "",
      price=record.price or 0,
      currency=record.currency or "usd",
      sku=record.sku,
      quantity=record.quantity if record.quantity is not None else 1,
      status=ProductStatus(record.status or ProductStatus.AVAILABLE.value),
      shipping_tier=record.shipping_tier,
      hold_until=_from_naive_utc(record.hold_until),
      image_url=record.image_url,
      sold_in_order=record.sold_in_order,
  )


def record_from_product(product: Product) -> ProductRecord:
  return ProductRecord(
      id=product.id,
      name=product.name,
      price=product.price,
      currency=product.currency,
      sku=product.sku,
      quantity=product.quantity,
      status=product.status.value,
      shipping_tier=product.shipping_tier,
      hold_until=(
          to_naive_utc(product.hold_until) if product.hold_until else None
      ),
      image_url=product.image_url,
      sold_in_order=product.sold_in_order,
  )


def _order_from_record(record: OrderRecord) -> Order:
  return Order(
      id=record.id,
      status=OrderStatus(record.status),
      session_id=record.session_id,
      email=record.email,
      currency=record.currency,
      amount_total=record.amount_total or 0,
      shipping_name=record.shipping_name or "",
      shipping_country=record.shipping_country or "",
      shipping_city=record.shipping_city or "",
      shipping_postal=record.shipping_postal or "",
      shipping_line1=record.shipping_line1 or "",
      shipping_line2=record.shipping_line2 or "",
  )


@contextlib.contextmanager
def _store_errors(operation: str) -> Iterator[None]:
  try:
    yield
  except SQLAlchemyError as e:
    logger.error("Inventory database %s failed: %s", operation, e)
    raise InventoryStoreError(f"{operation} failed: {e}") from e


class SqlInventoryStore(InventoryStore):
  """`InventoryStore` backed by the local SQL database."""

  def __init__(
      self, manager: DatabaseManager, batch_size: int = MAX_BATCH_SIZE
  ) -> None:
    self._manager = manager
    self._batch_size = batch_size

  def _session(self) -> AsyncSession:
    if self._manager.session_factory is None:
      raise InventoryStoreError("Database is not initialized")
    return self._manager.session_factory()

  async def fetch_products(self, ids: Iterable[str]) -> List[Product]:
    ids = unique_ids(ids)
    if not ids:
      return []
    with _store_errors("fetch products"):
      async with self._session() as session:
        result = await session.execute(
            select(ProductRecord).where(ProductRecord.id.in_(ids))
        )
        return [product_from_record(r) for r in result.scalars().all()]

  async def fetch_shipping_rates(
      self, tiers: Sequence[str], country: str
  ) -> Dict[str, ShippingRate]:
    if not tiers:
      return {}
    with _store_errors("fetch shipping rates"):
      async with self._session() as session:
        result = await session.execute(
            select(ShippingRateRecord).where(
                ShippingRateRecord.tier.in_(list(tiers)),
                ShippingRateRecord.country == country,
            )
        )
        return {
            r.tier: ShippingRate(
                tier=r.tier,
                country=r.country,
                amount=r.amount or 0,
                label=r.label or f"{r.tier} shipping",
            )
            for r in result.scalars().all()
        }

  async def hold_products(
      self, ids: Sequence[str], hold_until: datetime.datetime
  ) -> None:
    ids = unique_ids(ids)
    if not ids:
      return
    hold = to_naive_utc(hold_until)
    with _store_errors("hold"):
      async with self._session() as session:
        # One transaction: a conflict on any product leaves every row as it was.
        async with session.begin():
          result = await session.execute(
              select(ProductRecord.id).where(
                  ProductRecord.id.in_(ids),
                  ProductRecord.status == ProductStatus.AVAILABLE.value,
              )
          )
          available = set(result.scalars().all())
          conflicts = [i for i in ids if i not in available]
          if conflicts:
            raise HoldConflictError(conflicts)

          for batch in chunked(ids, self._batch_size):
            result = await session.execute(
                update(ProductRecord)
                .where(ProductRecord.id.in_(batch))
                .where(ProductRecord.status == ProductStatus.AVAILABLE.value)
                .values(status=ProductStatus.ON_HOLD.value, hold_until=hold)
            )
            if result.rowcount != len(batch):
              raise HoldConflictError(batch)

  async def release_products(
      self,
      ids: Sequence[str],
      expired_before: Optional[datetime.datetime] = None,
  ) -> List[str]:
    ids = unique_ids(ids)
    if not ids:
      return []
    query = select(ProductRecord.id).where(
        ProductRecord.id.in_(ids),
        ProductRecord.status == ProductStatus.ON_HOLD.value,
    )
    if expired_before is not None:
      query = query.where(
          or_(
              ProductRecord.hold_until.is_(None),
              ProductRecord.hold_until < to_naive_utc(expired_before),
          )
      )
    with _store_errors("release"):
      async with self._session() as session:
        async with session.begin():
          result = await session.execute(query)
          held = list(result.scalars().all())
          for batch in chunked(held, self._batch_size):
            await session.execute(
                update(ProductRecord)
                .where(ProductRecord.id.in_(batch))
                .where(ProductRecord.status == ProductStatus.ON_HOLD.value)
                .values(
                    status=ProductStatus.AVAILABLE.value, hold_until=None
                )
            )
          return held

  async def mark_sold(self, ids: Sequence[str], order_id: str) -> None:
    ids = unique_ids(ids)

    async def write(batch: Sequence[str]) -> None:
      with _store_errors("mark sold"):
        async with self._session() as session:
          async with session.begin():
            await session.execute(
                update(ProductRecord)
                .where(ProductRecord.id.in_(list(batch)))
                .values(
                    status=ProductStatus.SOLD.value,
                    quantity=0,
                    hold_until=None,
                    sold_in_order=order_id,
                )
            )

    await run_batched("mark sold", ids, self._batch_size, write)

  async def find_expired_holds(self, cutoff: datetime.datetime) -> List[str]:
    with _store_errors("find expired holds"):
      async with self._session() as session:
        result = await session.execute(
            select(ProductRecord.id).where(
                ProductRecord.status == ProductStatus.ON_HOLD.value,
                or_(
                    ProductRecord.hold_until.is_(None),
                    ProductRecord.hold_until < to_naive_utc(cutoff),
                ),
            )
        )
        return list(result.scalars().all())

  async def find_order_by_session(self, session_id: str) -> Optional[Order]:
    with _store_errors("find order"):
      async with self._session() as session:
        result = await session.execute(
            select(OrderRecord).where(OrderRecord.session_id == session_id)
        )
        record = result.scalar_one_or_none()
        return _order_from_record(record) if record else None

  async def create_order(self, order: Order) -> Order:
    order_id = order.id or str(uuid.uuid4())
    record = OrderRecord(
        id=order_id,
        status=order.status.value,
        session_id=order.session_id,
        email=order.email,
        currency=order.currency,
        amount_total=order.amount_total,
        shipping_name=order.shipping_name,
        shipping_country=order.shipping_country,
        shipping_city=order.shipping_city,
        shipping_postal=order.shipping_postal,
        shipping_line1=order.shipping_line1,
        shipping_line2=order.shipping_line2,
    )
    try:
      with _store_errors("create order"):
        async with self._session() as session:
          async with session.begin():
            session.add(record)
    except InventoryStoreError as e:
      # A concurrent delivery of the same event created it first.
      if isinstance(e.__cause__, IntegrityError):
        existing = await self.find_order_by_session(order.session_id)
        if existing:
          return existing
      raise
    return order.model_copy(update={"id": order_id})

  async def list_order_item_product_ids(self, order_id: str) -> List[str]:
    with _store_errors("list order items"):
      async with self._session() as session:
        result = await session.execute(
            select(OrderItemRecord.product_id).where(
                OrderItemRecord.order_id == order_id
            )
        )
        return list(result.scalars().all())

  async def create_order_items(self, items: Sequence[OrderItem]) -> None:
    async def write(batch: Sequence[OrderItem]) -> None:
      with _store_errors("create order items"):
        async with self._session() as session:
          async with session.begin():
            session.add_all([
                OrderItemRecord(
                    order_id=item.order_id,
                    product_id=item.product_id,
                    name=item.name,
                    sku=item.sku,
                    price=item.price,
                    qty=item.qty,
                )
                for item in batch
            ])

    await run_batched(
        "create order items",
        list(items),
        self._batch_size,
        write,
        key=lambda item: item.product_id,
    )

  async def close(self) -> None:
    await self._manager.close()
