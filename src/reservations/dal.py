from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypedDict, cast

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    # Only for static type checking; not imported at runtime
    from mypy_boto3_dynamodb.client import DynamoDBClient
    from mypy_boto3_dynamodb.service_resource import Table as DynamoDBTable
else:
    # Fallbacks to satisfy annotations at runtime
    DynamoDBClient = Any  # type: ignore[assignment]
    DynamoDBTable = Any  # type: ignore[assignment]

from .config import Settings
from .intervals import parse_instant, to_iso
from .models import Booking, BookingStatus, Resource, ResourceBlock, ResourceStatus

logger = Logger()

_CANCELLED_CODES = {"TransactionCanceledException", "ConditionalCheckFailedException"}


class ConcurrentWriteError(Exception):
    """A conditional write lost against another writer; re-read and decide again."""


class ResourceItem(TypedDict, total=False):
    resource_id: str
    name: str
    resource_type: str
    description: str
    capacity: int
    hourly_rate: Decimal
    status: str
    version: int


class BookingItem(TypedDict, total=False):
    booking_id: str
    resource_id: str
    user_id: str
    start_time: str
    end_time: str
    total_price: Decimal
    status: str
    notes: str
    created_at: str
    updated_at: str


class BlockItem(TypedDict, total=False):
    block_id: str
    resource_id: str
    start_time: str
    end_time: str
    reason: str
    created_by: str
    created_at: str


def _lost_race(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _CANCELLED_CODES


def _version_condition(expected: int) -> tuple[str, dict[str, Any]]:
    # Items written before versioning carry no version attribute; they count as 0.
    if expected == 0:
        expression = "attribute_exists(resource_id) AND attribute_not_exists(#_version) OR #_version = :expected"
    else:
        expression = "#_version = :expected"
    return expression, {":expected": expected}


def _query_all(table: DynamoDBTable, **kwargs: Any) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    while True:
        resp = cast(dict[str, Any], table.query(**kwargs))
        items.extend(it for it in resp.get("Items", []) if isinstance(it, dict))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def _scan_all(table: DynamoDBTable) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    kwargs: dict[str, Any] = {}
    while True:
        resp = cast(dict[str, Any], table.scan(**kwargs))
        items.extend(it for it in resp.get("Items", []) if isinstance(it, dict))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


class DynamoStore:
    """Storage handle for resources, bookings and blocks.

    Bookings and blocks are keyed by ``(resource_id, <id>)`` so that every
    per-resource read used for conflict checks is a strongly consistent
    base-table query. Lookups by id alone go through GSIs.
    """

    def __init__(
        self,
        resources: DynamoDBTable,
        bookings: DynamoDBTable,
        blocks: DynamoDBTable,
        client: DynamoDBClient,
    ) -> None:
        self._resources = resources
        self._bookings = bookings
        self._blocks = blocks
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> DynamoStore:
        dynamodb = boto3.resource("dynamodb")
        return cls(
            dynamodb.Table(settings.resources_table),
            dynamodb.Table(settings.bookings_table),
            dynamodb.Table(settings.blocks_table),
            dynamodb.meta.client,
        )

    # resources

    def get_resource(self, resource_id: str) -> Resource | None:
        resp = cast(
            dict[str, Any],
            self._resources.get_item(Key={"resource_id": resource_id}, ConsistentRead=True),
        )
        item = resp.get("Item")
        if not isinstance(item, dict):
            return None
        return _resource_from_item(cast(ResourceItem, item))

    def put_resource(self, resource: Resource) -> None:
        self._resources.put_item(
            Item=_resource_to_item(resource),  # type: ignore[arg-type]
            ConditionExpression="attribute_not_exists(resource_id)",
        )

    def update_resource(self, resource_id: str, changes: dict[str, Any]) -> Resource:
        if not changes:
            current = self.get_resource(resource_id)
            if current is None:
                raise KeyError(resource_id)
            return current

        set_parts: list[str] = []
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        for name, value in changes.items():
            names[f"#_{name}"] = name
            values[f":{name}"] = value.value if isinstance(value, ResourceStatus) else value
            set_parts.append(f"#_{name} = :{name}")

        try:
            resp = cast(
                dict[str, Any],
                self._resources.update_item(
                    Key={"resource_id": resource_id},
                    UpdateExpression="SET " + ", ".join(set_parts),
                    ConditionExpression="attribute_exists(resource_id)",
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values,
                    ReturnValues="ALL_NEW",
                ),
            )
        except ClientError as exc:
            if _lost_race(exc):
                raise KeyError(resource_id) from exc
            raise
        return _resource_from_item(cast(ResourceItem, resp.get("Attributes") or {}))

    def delete_resource(self, resource_id: str, expected_version: int) -> None:
        """Delete only if no booking or block was inserted since ``expected_version`` was read."""
        condition, values = _version_condition(expected_version)
        try:
            self._resources.delete_item(
                Key={"resource_id": resource_id},
                ConditionExpression=condition,
                ExpressionAttributeNames={"#_version": "version"},
                ExpressionAttributeValues=values,
            )
        except ClientError as exc:
            if _lost_race(exc):
                raise ConcurrentWriteError(resource_id) from exc
            raise

    def scan_resources(self) -> list[Resource]:
        return [_resource_from_item(cast(ResourceItem, it)) for it in _scan_all(self._resources)]

    # bookings

    def list_bookings(self, resource_id: str, *, include_cancelled: bool = False) -> list[Booking]:
        raw = _query_all(
            self._bookings,
            KeyConditionExpression="resource_id = :rid",
            ExpressionAttributeValues={":rid": resource_id},
            ConsistentRead=True,
        )
        bookings = [_booking_from_item(cast(BookingItem, it)) for it in raw]
        if include_cancelled:
            return bookings
        return [b for b in bookings if b.status != BookingStatus.CANCELLED]

    def get_booking(self, booking_id: str) -> Booking | None:
        raw = _query_all(
            self._bookings,
            IndexName="booking_id_index",
            KeyConditionExpression="booking_id = :bid",
            ExpressionAttributeValues={":bid": booking_id},
        )
        return _booking_from_item(cast(BookingItem, raw[0])) if raw else None

    def list_bookings_for_user(self, user_id: str) -> list[Booking]:
        raw = _query_all(
            self._bookings,
            IndexName="user_id_index",
            KeyConditionExpression="user_id = :uid",
            ExpressionAttributeValues={":uid": user_id},
        )
        return [_booking_from_item(cast(BookingItem, it)) for it in raw]

    def insert_booking(self, booking: Booking, resource_version: int) -> None:
        self._insert_versioned(
            self._bookings, "booking_id", _booking_to_item(booking), booking.resource_id, resource_version
        )

    def scan_bookings(self) -> list[Booking]:
        return [_booking_from_item(cast(BookingItem, it)) for it in _scan_all(self._bookings)]

    def set_booking_status(
        self, booking: Booking, status: BookingStatus, updated_at: datetime
    ) -> Booking:
        """Write ``status`` only if the stored status still equals ``booking.status``."""
        try:
            resp = cast(
                dict[str, Any],
                self._bookings.update_item(
                    Key={"resource_id": booking.resource_id, "booking_id": booking.booking_id},
                    UpdateExpression="SET #_status = :status, #_updated_at = :updated_at",
                    ConditionExpression="#_status = :expected",
                    ExpressionAttributeNames={"#_status": "status", "#_updated_at": "updated_at"},
                    ExpressionAttributeValues={
                        ":status": status.value,
                        ":updated_at": to_iso(updated_at),
                        ":expected": booking.status.value,
                    },
                    ReturnValues="ALL_NEW",
                ),
            )
        except ClientError as exc:
            if _lost_race(exc):
                raise ConcurrentWriteError(booking.booking_id) from exc
            raise
        return _booking_from_item(cast(BookingItem, resp.get("Attributes") or {}))

    # blocks

    def list_blocks(self, resource_id: str) -> list[ResourceBlock]:
        raw = _query_all(
            self._blocks,
            KeyConditionExpression="resource_id = :rid",
            ExpressionAttributeValues={":rid": resource_id},
            ConsistentRead=True,
        )
        return [_block_from_item(cast(BlockItem, it)) for it in raw]

    def get_block(self, block_id: str) -> ResourceBlock | None:
        raw = _query_all(
            self._blocks,
            IndexName="block_id_index",
            KeyConditionExpression="block_id = :bid",
            ExpressionAttributeValues={":bid": block_id},
        )
        return _block_from_item(cast(BlockItem, raw[0])) if raw else None

    def scan_blocks(self) -> list[ResourceBlock]:
        return [_block_from_item(cast(BlockItem, it)) for it in _scan_all(self._blocks)]

    def insert_block(self, block: ResourceBlock, resource_version: int) -> None:
        self._insert_versioned(
            self._blocks, "block_id", _block_to_item(block), block.resource_id, resource_version
        )

    def delete_block(self, block: ResourceBlock) -> None:
        self._blocks.delete_item(Key={"resource_id": block.resource_id, "block_id": block.block_id})

    def _insert_versioned(
        self,
        table: DynamoDBTable,
        id_attr: str,
        item: dict[str, Any],
        resource_id: str,
        resource_version: int,
    ) -> None:
        # One transaction: the insert commits only if nobody else bumped the
        # resource version since our conflict re-check read it.
        condition, values = _version_condition(resource_version)
        try:
            self._client.transact_write_items(
                TransactItems=[
                    {
                        "Put": {
                            "TableName": table.name,
                            "Item": item,
                            "ConditionExpression": "attribute_not_exists(#_id)",
                            "ExpressionAttributeNames": {"#_id": id_attr},
                        }
                    },
                    {
                        "Update": {
                            "TableName": self._resources.name,
                            "Key": {"resource_id": resource_id},
                            "UpdateExpression": "SET #_version = :version",
                            "ConditionExpression": condition,
                            "ExpressionAttributeNames": {"#_version": "version"},
                            "ExpressionAttributeValues": {":version": resource_version + 1, **values},
                        }
                    },
                ]
            )  # type: ignore[arg-type]
        except ClientError as exc:
            if _lost_race(exc):
                logger.info(
                    "Versioned insert cancelled",
                    extra={"resource_id": resource_id, "version": resource_version, id_attr: item[id_attr]},
                )
                raise ConcurrentWriteError(resource_id) from exc
            raise


def _resource_to_item(resource: Resource) -> ResourceItem:
    item: ResourceItem = {
        "resource_id": resource.resource_id,
        "name": resource.name,
        "resource_type": resource.resource_type,
        "capacity": resource.capacity,
        "hourly_rate": resource.hourly_rate,
        "status": resource.status.value,
        "version": resource.version,
    }
    if resource.description is not None:
        item["description"] = resource.description
    return item


def _resource_from_item(item: ResourceItem) -> Resource:
    return Resource(
        resource_id=item["resource_id"],
        name=item["name"],
        resource_type=item.get("resource_type", "room"),
        description=item.get("description"),
        capacity=int(item.get("capacity", 1)),
        hourly_rate=Decimal(str(item["hourly_rate"])),
        status=ResourceStatus(item.get("status", ResourceStatus.AVAILABLE)),
        version=int(item.get("version", 0)),
    )


def _booking_to_item(booking: Booking) -> dict[str, Any]:
    item: BookingItem = {
        "booking_id": booking.booking_id,
        "resource_id": booking.resource_id,
        "user_id": booking.user_id,
        "start_time": to_iso(booking.start_time),
        "end_time": to_iso(booking.end_time),
        "total_price": booking.total_price,
        "status": booking.status.value,
        "created_at": to_iso(booking.created_at),
        "updated_at": to_iso(booking.updated_at),
    }
    if booking.notes is not None:
        item["notes"] = booking.notes
    return cast(dict[str, Any], item)


def _booking_from_item(item: BookingItem) -> Booking:
    return Booking(
        booking_id=item["booking_id"],
        resource_id=item["resource_id"],
        user_id=item["user_id"],
        start_time=parse_instant(item["start_time"]),
        end_time=parse_instant(item["end_time"]),
        total_price=Decimal(str(item["total_price"])),
        status=BookingStatus(item.get("status", BookingStatus.CONFIRMED)),
        notes=item.get("notes"),
        created_at=parse_instant(item["created_at"]),
        updated_at=parse_instant(item["updated_at"]),
    )


def _block_to_item(block: ResourceBlock) -> dict[str, Any]:
    item: BlockItem = {
        "block_id": block.block_id,
        "resource_id": block.resource_id,
        "start_time": to_iso(block.start_time),
        "end_time": to_iso(block.end_time),
        "created_by": block.created_by,
        "created_at": to_iso(block.created_at),
    }
    if block.reason is not None:
        item["reason"] = block.reason
    return cast(dict[str, Any], item)


def _block_from_item(item: BlockItem) -> ResourceBlock:
    return ResourceBlock(
        block_id=item["block_id"],
        resource_id=item["resource_id"],
        start_time=parse_instant(item["start_time"]),
        end_time=parse_instant(item["end_time"]),
        reason=item.get("reason"),
        created_by=item["created_by"],
        created_at=parse_instant(item["created_at"]),
    )
