"""
Generic repository service — typed records over the registry's data store.

Request handlers work with pydantic models; they never see boto3 types.
``get`` returns ``None`` for a key that was never written; ``require`` turns
that into a 404.

Usage:
    repo = RepositoryService(Settings, store, table="Settings")
    repo.put(Settings(id="theme", value="dark"))
    repo.get("theme")                                   # → Settings(...)
    repo.query(Attr("value").eq("dark"))                # server-side filter
    repo.query(lambda s: s.value.startswith("d"))       # client-side filter
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Generic, Iterator, Optional, Type, TypeVar, Union

from boto3.dynamodb.conditions import ConditionBase
from pydantic import BaseModel

from service_template.app.core.errors import NotFoundError
from service_template.app.providers.data_store import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

Predicate = Union[ConditionBase, Callable[[Any], bool], None]


def to_item(record: BaseModel) -> Dict[str, Any]:
    """Model → store item. DynamoDB rejects floats, so numbers go through Decimal."""
    return json.loads(record.model_dump_json(), parse_float=Decimal)


class RecordQuery(Generic[T]):
    """
    Lazy, finite, restartable. Each ``iter()`` re-issues the scan, so two
    passes can see different data if the table changed in between.
    """

    def __init__(self, service: "RepositoryService[T]", predicate: Predicate = None):
        self._service = service
        self._predicate = predicate

    def __iter__(self) -> Iterator[T]:
        condition = self._predicate if isinstance(self._predicate, ConditionBase) else None
        check = self._predicate if callable(self._predicate) and condition is None else None

        for item in self._service.store.scan(self._service.table, condition):
            record = self._service.record_type.model_validate(item)
            if check is None or check(record):
                yield record

    def first(self) -> Optional[T]:
        return next(iter(self), None)

    def to_list(self) -> list:
        return list(self)


class RepositoryService(Generic[T]):
    def __init__(
        self,
        record_type: Type[T],
        store: DocumentStore,
        *,
        table: str,
        key_attribute: str = "id",
    ):
        self.record_type = record_type
        self.store = store
        self.table = table
        self.key_attribute = key_attribute

    def _key(self, key: Any) -> Dict[str, Any]:
        return {self.key_attribute: key}

    def get(self, key: Any) -> Optional[T]:
        item = self.store.get_item(self.table, self._key(key))
        if item is None:
            return None
        return self.record_type.model_validate(item)

    def require(self, key: Any) -> T:
        record = self.get(key)
        if record is None:
            raise NotFoundError(self.record_type.__name__, **{self.key_attribute: key})
        return record

    def put(self, record: T) -> T:
        self.store.put_item(self.table, to_item(record), key_fields=(self.key_attribute,))
        logger.debug("%s: put %s", self.table, getattr(record, self.key_attribute))
        return record

    def delete(self, key: Any) -> bool:
        deleted = self.store.delete_item(self.table, self._key(key))
        logger.debug("%s: delete %s (%s)", self.table, key, "hit" if deleted else "miss")
        return deleted

    def query(self, predicate: Predicate = None) -> RecordQuery[T]:
        return RecordQuery(self, predicate)
