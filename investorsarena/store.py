from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from django.db import DEFAULT_DB_ALIAS, DatabaseError, transaction

from .errors import StoreTransactionFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Store:
    """
    Handle on the relational store used by the ledger and membership services.

    Services take a `store` keyword and run every multi-write operation inside
    `store.atomic()`, so a group of writes either commits as a whole or not at all.
    Business errors raised inside the block roll the block back and propagate as-is;
    database failures surface as `StoreTransactionFailure`.
    """

    def __init__(self, using: str = DEFAULT_DB_ALIAS):
        self.using = using

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            with transaction.atomic(using=self.using):
                yield
        except DatabaseError as exc:
            logger.warning("Store transaction on %r rolled back: %s", self.using, exc)
            raise StoreTransactionFailure() from exc

    def run_in_transaction(self, fn: Callable[..., T], *args, **kwargs) -> T:
        with self.atomic():
            return fn(*args, **kwargs)


def get_store(store: Store | None = None) -> Store:
    return store if store is not None else Store()
