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

"""Tests for the batching helpers shared by the inventory stores."""

import asyncio
from typing import List, Sequence

from absl.testing import absltest
from exceptions import InventoryStoreError
from exceptions import PartialBatchError
from inventory_store import chunked
from inventory_store import run_batched
from inventory_store import unique_ids


class BatchingTest(absltest.TestCase):

  def test_unique_ids_drops_blanks_and_duplicates_in_order(self):
    self.assertEqual(
        unique_ids(["b", "", "a", "b", None, "c"]), ["b", "a", "c"]
    )

  def test_chunked_respects_batch_size(self):
    ids = [f"p{i}" for i in range(23)]
    batches = chunked(ids, 10)
    self.assertEqual([len(b) for b in batches], [10, 10, 3])
    self.assertEqual([i for b in batches for i in b], ids)

  def test_run_batched_writes_every_batch(self):
    written: List[Sequence[str]] = []

    async def write(batch):
      written.append(list(batch))

    ids = [f"p{i}" for i in range(12)]
    asyncio.run(run_batched("hold", ids, 5, write))
    self.assertEqual([len(b) for b in written], [5, 5, 2])

  def test_first_batch_failure_is_a_plain_store_error(self):
    async def write(batch):
      raise RuntimeError("connection reset")

    with self.assertRaises(InventoryStoreError) as ctx:
      asyncio.run(run_batched("hold", ["a", "b"], 1, write))
    self.assertNotIsInstance(ctx.exception, PartialBatchError)
    self.assertIn("hold failed", ctx.exception.message)

  def test_later_batch_failure_reports_applied_and_pending(self):
    calls = []

    async def write(batch):
      calls.append(list(batch))
      if len(calls) == 2:
        raise InventoryStoreError("rate limited")

    ids = ["a", "b", "c", "d", "e"]
    with self.assertRaises(PartialBatchError) as ctx:
      asyncio.run(run_batched("mark sold", ids, 2, write))
    self.assertEqual(ctx.exception.operation, "mark sold")
    self.assertEqual(ctx.exception.applied_ids, ["a", "b"])
    self.assertEqual(ctx.exception.pending_ids, ["c", "d", "e"])
    # Nothing after the failing batch is attempted.
    self.assertLen(calls, 2)


if __name__ == "__main__":
  absltest.main()
