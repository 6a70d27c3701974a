"""
RECON Billing Store

The single shared document (company profile, customers, orders,
invoices) persisted as one JSON file, plus the write queue that keeps
concurrent billing operations from interleaving.

Every mutation is: read the committed state → apply a transform →
normalize → write the whole document → return the new state. Mutations
run one at a time behind an asyncio.Lock (waiters are served FIFO), so
each one sees everything submitted before it and a multi-customer batch
is atomic relative to other writers.

The file is written atomically (write to temp, then rename), so a crash
mid-write leaves the previous document intact. If a transform raises,
nothing is written and the error reaches the caller.

Limits: single process only. Nothing here coordinates two processes
sharing one data file. There is no cancellation or timeout, so a
transform that never finishes blocks every later mutation.

Usage:
    store = BillingStore("data/db.json")
    db = await store.read()

    def add_customer(db):
        db.customers.append(customer)

    db = await store.mutate(add_customer)
"""

import asyncio
import inspect
import json
import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from core.models import (
    DEFAULT_INVOICE_PREFIX,
    DEFAULT_TAX_RATE,
    CompanyProfile,
    Database,
    new_id,
)

logger = logging.getLogger("recon.store")


DEFAULT_STORE_PATH = "data/db.json"

TransformResult = Union[Database, None, Awaitable[Union[Database, None]]]
Transform = Callable[[Database], TransformResult]


class BillingStore:
    """JSON-file store with a single-writer mutation queue.

    Args:
        path:            Path to the JSON document.
        company:         Default issuer profile for a fresh document and
                         for filling blanks in a stored one.
        tax_rate:        Rate assumed for legacy invoices without one.
        invoice_prefix:  Prefix for numbering legacy invoices without a number.
    """

    def __init__(
        self,
        path: Union[str, Path] = DEFAULT_STORE_PATH,
        company: Optional[CompanyProfile] = None,
        tax_rate: float = DEFAULT_TAX_RATE,
        invoice_prefix: str = DEFAULT_INVOICE_PREFIX,
    ):
        self._path = Path(path)
        self._company = company or CompanyProfile()
        self._tax_rate = tax_rate
        self._invoice_prefix = invoice_prefix
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._mutation_count = 0
        logger.info("BillingStore initialized (path=%s)", self._path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def mutation_count(self) -> int:
        """Number of mutations committed by this store instance."""
        return self._mutation_count

    # -------------------------------------------------------------------
    # Id generators
    # -------------------------------------------------------------------

    @staticmethod
    def new_customer_id() -> str:
        return new_id("cust")

    @staticmethod
    def new_order_id() -> str:
        return new_id("ord")

    @staticmethod
    def new_invoice_id() -> str:
        return new_id("inv")

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    async def read(self) -> Database:
        """Return the last committed state. Creates the file on first use."""
        if not self._path.exists():
            async with self._writer_lock():
                if not self._path.exists():
                    self._write(Database.empty(self._company))
                    logger.info("Initialized empty store at %s", self._path)
        return self._load()

    async def mutate(self, transform: Transform) -> Database:
        """Apply transform to the current state and commit the result.

        transform receives a fresh Database. It may modify it in place
        and return None, or return a (new) Database; it may be a plain
        function or a coroutine function. Returns the committed,
        normalized state.
        """
        async with self._writer_lock():
            current = self._load() if self._path.exists() else Database.empty(self._company)

            result = transform(current)
            if inspect.isawaitable(result):
                result = await result
            updated = result if isinstance(result, Database) else current

            committed = self._normalize(updated.to_dict())
            self._write(committed)
            self._mutation_count += 1
            logger.debug(
                "Store mutation #%d committed (%d customers, %d orders, %d invoices)",
                self._mutation_count, len(committed.customers),
                len(committed.orders), len(committed.invoices),
            )
            return committed

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _writer_lock(self) -> asyncio.Lock:
        """The write lock for the running event loop.

        asyncio.Lock binds to one loop; a store reused under a new loop
        (e.g. successive asyncio.run calls) gets a fresh lock.
        """
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _normalize(self, raw) -> Database:
        return Database.from_dict(
            raw,
            company=self._company,
            tax_rate=self._tax_rate,
            invoice_prefix=self._invoice_prefix,
        )

    def _load(self) -> Database:
        """Read and normalize the document.

        A missing or unreadable file yields the default empty database.
        A corrupt file is copied aside (<name>.corrupt) before it can be
        overwritten by the next mutation.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Database.empty(self._company)
        except OSError as e:
            logger.warning("Failed to read store %s (%s), using empty database", self._path, e)
            return Database.empty(self._company)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            backup = self._path.with_name(self._path.name + ".corrupt")
            logger.warning(
                "Store %s is not valid JSON (%s), copied to %s, using empty database",
                self._path, e, backup,
            )
            shutil.copy2(self._path, backup)
            return Database.empty(self._company)

        return self._normalize(data)

    def _write(self, db: Database):
        """Persist the whole document atomically (temp file + rename)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            tmp_path.write_text(
                json.dumps(db.to_dict(), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            tmp_path.replace(self._path)
        except OSError as e:
            logger.error("Failed to write store %s: %s", self._path, e)
            raise
