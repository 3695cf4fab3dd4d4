"""
Data-store capability — document store behind one small interface.

Providers:
    • dynamodb — boto3 DynamoDB resource, strongly consistent reads by default
    • memory   — in-process dict store for local development and tests

Items are plain dicts. DynamoDB numbers come back as ``Decimal``; callers
that care (the repository service) convert through pydantic.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from boto3.dynamodb.conditions import ConditionBase
from botocore.exceptions import BotoCoreError, ClientError

from service_template.app.core.errors import RepositoryError
from service_template.app.providers.aws import AwsClientFactory, AwsConnection

logger = logging.getLogger(__name__)

DATA_STORE_SECTION = "ModuleConfiguration:ConnectionStrings:DynamoDb"

Item = Dict[str, Any]
Key = Mapping[str, Any]


class DocumentStore(ABC):
    """What repositories need from a store. Nothing more."""

    name = "store"
    table_prefix = ""

    def table_name(self, table: str) -> str:
        return f"{self.table_prefix}{table}"

    @abstractmethod
    def get_item(self, table: str, key: Key) -> Optional[Item]:
        """Item for ``key`` or None."""

    @abstractmethod
    def put_item(self, table: str, item: Item, key_fields: Tuple[str, ...] = ("id",)) -> None:
        """Insert or replace. ``key_fields`` names the primary-key attributes."""

    @abstractmethod
    def delete_item(self, table: str, key: Key) -> bool:
        """True when something was deleted."""

    @abstractmethod
    def scan(self, table: str, condition: Optional[ConditionBase] = None) -> Iterator[Item]:
        """Lazily page through the table, optionally filtered server-side."""

    def describe(self) -> Dict[str, Any]:
        return {"provider": self.name}


# ═══════════════════════════════════════════════════════════════════════════
# DynamoDB
# ═══════════════════════════════════════════════════════════════════════════

class DynamoDocumentStore(DocumentStore):
    name = "dynamodb"

    def __init__(
        self,
        resource: Any,
        *,
        consistent_read: bool = True,
        table_prefix: str = "",
        credential_mode: str = "",
    ):
        self.resource = resource
        self.consistent_read = consistent_read
        self.table_prefix = table_prefix
        self.credential_mode = credential_mode

    @property
    def endpoint_url(self) -> str:
        return self.resource.meta.client.meta.endpoint_url

    @property
    def uses_tls(self) -> bool:
        return self.endpoint_url.startswith("https://")

    def _table(self, table: str) -> Any:
        return self.resource.Table(self.table_name(table))

    def get_item(self, table: str, key: Key) -> Optional[Item]:
        try:
            response = self._table(table).get_item(
                Key=dict(key), ConsistentRead=self.consistent_read,
            )
        except (ClientError, BotoCoreError) as exc:
            raise RepositoryError("get", str(exc), table=table) from exc
        return response.get("Item")

    def put_item(self, table: str, item: Item, key_fields: Tuple[str, ...] = ("id",)) -> None:
        # Key schema lives on the DynamoDB table itself.
        try:
            self._table(table).put_item(Item=item)
        except (ClientError, BotoCoreError) as exc:
            raise RepositoryError("put", str(exc), table=table) from exc

    def delete_item(self, table: str, key: Key) -> bool:
        try:
            response = self._table(table).delete_item(Key=dict(key), ReturnValues="ALL_OLD")
        except (ClientError, BotoCoreError) as exc:
            raise RepositoryError("delete", str(exc), table=table) from exc
        return bool(response.get("Attributes"))

    def scan(self, table: str, condition: Optional[ConditionBase] = None) -> Iterator[Item]:
        kwargs: Dict[str, Any] = {"ConsistentRead": self.consistent_read}
        if condition is not None:
            kwargs["FilterExpression"] = condition

        handle = self._table(table)
        while True:
            try:
                page = handle.scan(**kwargs)
            except (ClientError, BotoCoreError) as exc:
                raise RepositoryError("query", str(exc), table=table) from exc
            yield from page.get("Items", [])
            last_key = page.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "endpoint": self.endpoint_url,
            "tls": self.uses_tls,
            "consistent_read": self.consistent_read,
            "credentials": self.credential_mode,
        }


# ═══════════════════════════════════════════════════════════════════════════
# In-memory
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed store. Items are deep-copied in and out so callers can't
    mutate stored state. Server-side conditions are not supported; use a
    Python predicate with the repository instead.
    """

    name = "memory"

    def __init__(self, *, table_prefix: str = ""):
        self.table_prefix = table_prefix
        self._tables: Dict[str, Dict[Tuple, Item]] = {}
        self._key_fields: Dict[str, Tuple[str, ...]] = {}
        self._lock = threading.Lock()

    def _key(self, table: str, key: Key) -> Tuple:
        fields = tuple(sorted(key))
        known = self._key_fields.setdefault(self.table_name(table), fields)
        if known != fields:
            raise RepositoryError("key", f"expected key fields {known}, got {fields}", table=table)
        return tuple(key[f] for f in fields)

    def get_item(self, table: str, key: Key) -> Optional[Item]:
        with self._lock:
            item = self._tables.get(self.table_name(table), {}).get(self._key(table, key))
            return copy.deepcopy(item) if item is not None else None

    def put_item(self, table: str, item: Item, key_fields: Tuple[str, ...] = ("id",)) -> None:
        key = {f: item[f] for f in key_fields}
        with self._lock:
            rows = self._tables.setdefault(self.table_name(table), {})
            rows[self._key(table, key)] = copy.deepcopy(item)

    def delete_item(self, table: str, key: Key) -> bool:
        with self._lock:
            rows = self._tables.get(self.table_name(table), {})
            return rows.pop(self._key(table, key), None) is not None

    def scan(self, table: str, condition: Optional[ConditionBase] = None) -> Iterator[Item]:
        if condition is not None:
            raise RepositoryError("query", "memory store cannot evaluate DynamoDB conditions", table=table)
        with self._lock:
            snapshot = [copy.deepcopy(i) for i in self._tables.get(self.table_name(table), {}).values()]
        yield from snapshot


# ═══════════════════════════════════════════════════════════════════════════
# Factories
# ═══════════════════════════════════════════════════════════════════════════

def make_dynamodb_factory(aws: AwsClientFactory):
    """``DynamoDb:Provider = dynamodb`` (default)."""

    def build_dynamodb_store(selection) -> DynamoDocumentStore:
        conn = AwsConnection.from_selection(selection)
        resource = aws.resource("dynamodb", conn)
        return DynamoDocumentStore(
            resource,
            consistent_read=selection.parameters.get_bool("ConsistentRead", True),
            table_prefix=selection.param("TablePrefix") or "",
            credential_mode=conn.credential_mode,
        )

    return build_dynamodb_store


def build_memory_store(selection) -> InMemoryDocumentStore:
    """``DynamoDb:Provider = memory`` — no AWS at all."""
    logger.warning("Data store: in-memory provider (data is lost on restart)")
    return InMemoryDocumentStore(table_prefix=selection.param("TablePrefix") or "")
