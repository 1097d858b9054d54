"""
Archive numbers — human-readable filing codes for classified receipts.

Format: ``{year}-{month:02}-{code}-{serial:04}``, e.g. ``2024-03-EXP-0001``.
A bucket is the (year, month, category code) triple. Serials inside a bucket
come from a per-bucket counter guarded by its own lock, so two receipts
classified at the same time never receive the same number. On every
allocation the counter is reconciled with the numbers already in the store,
so receipts added with a number of their own are never handed a duplicate.
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Callable, Iterator

from receiptflow.models.receipt import CATEGORY_CODES, ReceiptCategory

if TYPE_CHECKING:
    from receiptflow.models.receipt import Receipt

logger = logging.getLogger("receiptflow.classification.archive")

ARCHIVE_NUMBER_PATTERN = re.compile(r"^(\d{4})-(\d{2})-([A-Z]{3})-(\d{4,})$")


@dataclass(frozen=True)
class ArchiveBucket:
    """The (year, month, category code) grouping serials are counted in."""

    year: int
    month: int
    category_code: str

    @property
    def prefix(self) -> str:
        return f"{self.year}-{self.month:02d}-{self.category_code}-"

    def format(self, serial: int) -> str:
        return f"{self.prefix}{serial:04d}"


def bucket_for(receipt: Receipt, now: datetime | None = None) -> ArchiveBucket:
    """Bucket for a receipt: invoice date, else creation time, else now."""
    when: date | datetime | None = receipt.invoice_date or receipt.created_at
    if when is None:
        when = now or datetime.now()
    code = CATEGORY_CODES.get(receipt.category, CATEGORY_CODES[ReceiptCategory.OTHER])
    return ArchiveBucket(year=when.year, month=when.month, category_code=code)


def parse_archive_number(number: str) -> tuple[ArchiveBucket, int] | None:
    """Split an archive number into its bucket and serial, or None if malformed."""
    match = ARCHIVE_NUMBER_PATTERN.match(number)
    if not match:
        return None
    year, month, code, serial = match.groups()
    return ArchiveBucket(int(year), int(month), code), int(serial)


class ArchiveNumberGenerator:
    """
    Issues archive numbers with a monotonic serial per bucket.

    ``lookup`` returns the archive numbers already issued under a prefix
    (typically ``ReceiptRepository.archive_numbers``). It is consulted on
    every allocation, under the bucket lock; the next serial is one past the
    larger of the counter and the highest serial already stored.

    Use ``allocate`` when the number must be persisted together with the
    receipt: the bucket stays locked until the block exits, and the serial
    is only consumed if the block succeeds.

        with generator.allocate(receipt) as number:
            receipt.archive_number = number
            store.update(receipt)
    """

    def __init__(
        self,
        lookup: Callable[[str], list[str]] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._lookup = lookup or (lambda prefix: [])
        self._clock = clock
        self._guard = threading.Lock()
        self._locks: dict[ArchiveBucket, threading.Lock] = {}
        self._last_serial: dict[ArchiveBucket, int] = {}

    def bucket_for(self, receipt: Receipt) -> ArchiveBucket:
        return bucket_for(receipt, now=self._clock())

    @contextmanager
    def allocate(self, receipt: Receipt) -> Iterator[str]:
        bucket = self.bucket_for(receipt)
        with self._lock_for(bucket):
            serial = self._current_serial(bucket) + 1
            number = bucket.format(serial)
            yield number
            # Only reached when the caller's block did not raise
            self._last_serial[bucket] = serial
            logger.debug("Issued archive number %s", number)

    def generate(self, receipt: Receipt) -> str:
        """Issue the next number for the receipt's bucket."""
        with self.allocate(receipt) as number:
            return number

    def peek(self, receipt: Receipt) -> str:
        """The number ``generate`` would issue next, without consuming it."""
        bucket = self.bucket_for(receipt)
        with self._lock_for(bucket):
            return bucket.format(self._current_serial(bucket) + 1)

    def _lock_for(self, bucket: ArchiveBucket) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(bucket)
            if lock is None:
                lock = self._locks[bucket] = threading.Lock()
            return lock

    def _current_serial(self, bucket: ArchiveBucket) -> int:
        # Caller holds the bucket lock
        issued = self._lookup(bucket.prefix)
        serials = [
            parsed[1]
            for parsed in (parse_archive_number(n) for n in issued)
            if parsed is not None and parsed[0] == bucket
        ]
        return max([self._last_serial.get(bucket, 0), len(issued), *serials])
