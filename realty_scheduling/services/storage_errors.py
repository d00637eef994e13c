from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager


class StorageError(Exception):
    pass


@contextmanager
def translate_storage_errors(operation: str) -> Iterator[None]:
    from pymongo.errors import PyMongoError

    try:
        yield
    except PyMongoError as exc:
        raise StorageError(f"{operation} failed: {exc}") from exc
