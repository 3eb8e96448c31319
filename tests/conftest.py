from __future__ import annotations

import re
import threading
from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import pytest
from botocore.exceptions import ClientError

from reservations.blocks import BlockService
from reservations.bookings import BookingService
from reservations.dal import DynamoStore
from reservations.events import DomainEvent
from reservations.models import Resource

NOW = datetime(2026, 1, 1, 8, 0, tzinfo=UTC)

_EXISTS = re.compile(r"attribute_(not_)?exists\((.+)\)")


def _condition_failed(operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


def _clause_holds(item: dict | None, clause: str, names: dict, values: dict) -> bool:
    m = _EXISTS.fullmatch(clause)
    if m:
        attr = names.get(m.group(2), m.group(2))
        present = item is not None and attr in item
        return present != bool(m.group(1))
    left, right = [s.strip() for s in clause.split("=")]
    attr = names.get(left, left)
    return item is not None and item.get(attr) == values[right]


def _check(item: dict | None, expression: str | None, names: dict, values: dict, operation: str) -> None:
    # AND binds tighter than OR, as in DynamoDB condition expressions.
    if not expression:
        return
    for alternative in expression.split(" OR "):
        clauses = [c.strip() for c in alternative.split(" AND ")]
        if all(_clause_holds(item, clause, names, values) for clause in clauses):
            return
    raise _condition_failed(operation)


def _apply_set(item: dict, expression: str, names: dict, values: dict) -> None:
    set_part = expression.split("SET", 1)[1]
    for assign in [s.strip() for s in set_part.split(",") if s.strip()]:
        name, val = [s.strip() for s in assign.split("=")]
        item[names.get(name, name)] = values[val]


class FakeTable:
    def __init__(self, name: str, key_attrs: tuple[str, ...], lock: threading.RLock) -> None:
        self.name = name
        self.key_attrs = key_attrs
        self.items: dict[tuple, dict] = {}
        self._lock = lock

    def key_of(self, mapping: dict) -> tuple:
        return tuple(mapping[a] for a in self.key_attrs)

    def put_item(self, Item, ConditionExpression=None, ExpressionAttributeNames=None, ExpressionAttributeValues=None):  # noqa: N803
        with self._lock:
            key = self.key_of(Item)
            _check(
                self.items.get(key),
                ConditionExpression,
                ExpressionAttributeNames or {},
                ExpressionAttributeValues or {},
                "PutItem",
            )
            self.items[key] = dict(Item)

    def get_item(self, Key, ConsistentRead=False):  # noqa: N803
        item = self.items.get(self.key_of(Key))
        return {"Item": dict(item)} if item else {}

    def query(self, KeyConditionExpression, ExpressionAttributeValues, **kwargs):  # noqa: N803
        attr, placeholder = [s.strip() for s in KeyConditionExpression.split("=")]
        value = ExpressionAttributeValues[placeholder]
        with self._lock:
            return {"Items": [dict(it) for it in self.items.values() if it.get(attr) == value]}

    def update_item(self, Key, UpdateExpression, ConditionExpression=None, ExpressionAttributeNames=None, ExpressionAttributeValues=None, ReturnValues=None):  # noqa: N803
        names = ExpressionAttributeNames or {}
        values = ExpressionAttributeValues or {}
        with self._lock:
            key = self.key_of(Key)
            existing = self.items.get(key)
            _check(existing, ConditionExpression, names, values, "UpdateItem")
            item = dict(existing) if existing else dict(Key)
            _apply_set(item, UpdateExpression, names, values)
            self.items[key] = item
            return {"Attributes": dict(item)}

    def scan(self, **kwargs):
        with self._lock:
            return {"Items": [dict(it) for it in self.items.values()]}

    def delete_item(self, Key, ConditionExpression=None, ExpressionAttributeNames=None, ExpressionAttributeValues=None):  # noqa: N803
        with self._lock:
            key = self.key_of(Key)
            _check(
                self.items.get(key),
                ConditionExpression,
                ExpressionAttributeNames or {},
                ExpressionAttributeValues or {},
                "DeleteItem",
            )
            self.items.pop(key, None)


class FakeDynamoClient:
    def __init__(self, tables: list[FakeTable], lock: threading.RLock) -> None:
        self.tables = {t.name: t for t in tables}
        self._lock = lock

    def transact_write_items(self, TransactItems):  # noqa: N803
        with self._lock:
            try:
                for op in TransactItems:
                    kind, params = next(iter(op.items()))
                    table = self.tables[params["TableName"]]
                    key = table.key_of(params["Item"] if kind == "Put" else params["Key"])
                    _check(
                        table.items.get(key),
                        params.get("ConditionExpression"),
                        params.get("ExpressionAttributeNames", {}),
                        params.get("ExpressionAttributeValues", {}),
                        "TransactWriteItems",
                    )
            except ClientError as exc:
                raise ClientError(
                    {"Error": {"Code": "TransactionCanceledException", "Message": "Transaction cancelled"}},
                    "TransactWriteItems",
                ) from exc

            for op in TransactItems:
                kind, params = next(iter(op.items()))
                table = self.tables[params["TableName"]]
                if kind == "Put":
                    table.items[table.key_of(params["Item"])] = dict(params["Item"])
                else:
                    key = table.key_of(params["Key"])
                    item = dict(table.items.get(key) or params["Key"])
                    _apply_set(
                        item,
                        params["UpdateExpression"],
                        params.get("ExpressionAttributeNames", {}),
                        params.get("ExpressionAttributeValues", {}),
                    )
                    table.items[key] = item
        return {}


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def record(self, event: DomainEvent) -> None:
        self.events.append(event)


class FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    def record(self, event: DomainEvent) -> None:
        self.calls += 1
        raise RuntimeError("sink is down")


@pytest.fixture()
def dynamo() -> SimpleNamespace:
    lock = threading.RLock()
    resources = FakeTable("resources", ("resource_id",), lock)
    bookings = FakeTable("bookings", ("resource_id", "booking_id"), lock)
    blocks = FakeTable("blocks", ("resource_id", "block_id"), lock)
    client = FakeDynamoClient([resources, bookings, blocks], lock)
    return SimpleNamespace(resources=resources, bookings=bookings, blocks=blocks, client=client)


@pytest.fixture()
def store(dynamo: SimpleNamespace) -> DynamoStore:
    return DynamoStore(dynamo.resources, dynamo.bookings, dynamo.blocks, dynamo.client)


@pytest.fixture()
def clock() -> Any:
    return lambda: NOW


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def resource(store: DynamoStore) -> Resource:
    studio = Resource(resource_id="r-1", name="Studio A", hourly_rate=Decimal("50.00"))
    store.put_resource(studio)
    return studio


@pytest.fixture()
def booking_service(store: DynamoStore, sink: RecordingSink, clock: Any) -> BookingService:
    return BookingService(store, [sink], clock=clock)


@pytest.fixture()
def block_service(store: DynamoStore, sink: RecordingSink, clock: Any) -> BlockService:
    return BlockService(store, [sink], clock=clock)
