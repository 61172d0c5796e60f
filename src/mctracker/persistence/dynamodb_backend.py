"""DynamoDB backend implementing IManuscriptGateway (remote mode).

Single-table layout, partitioned per operator:

    PK = USER#{user_id}    SK = MANUSCRIPT#{id}   -> manuscript document
    PK = USER#{user_id}    SK = SETTINGS          -> settings document

boto3 is synchronous; each gateway call runs its blocking work in a worker
thread so the event loop is never held.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from mctracker.core.exceptions import GatewayUnavailableError, ManuscriptNotFoundError, PersistenceError
from mctracker.core.logging import get_logger
from mctracker.models.manuscript import Manuscript
from mctracker.models.settings import UserSettings
from mctracker.persistence.codec import changes_to_record, from_record, newest_first, to_record

logger = get_logger("persistence.dynamodb")

MANUSCRIPT_SK_PREFIX = "MANUSCRIPT#"
SETTINGS_SK = "SETTINGS"
TRANSACTION_LIMIT = 100  # DynamoDB max items per TransactWriteItems


def _to_dynamodb(obj: Any) -> Any:
    """Convert JSON floats to Decimal for DynamoDB."""
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, dict):
        return {k: _to_dynamodb(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_to_dynamodb(i) for i in obj]
    return obj


def _decode_decimals(obj: Any) -> Any:
    """Convert Decimal values in a DynamoDB item to int/float."""
    if isinstance(obj, Decimal):
        return int(obj) if obj == int(obj) else float(obj)
    if isinstance(obj, dict):
        return {k: _decode_decimals(v) for k, v in obj.items()}
    if isinstance(obj, (list, set)):
        return [_decode_decimals(i) for i in obj]
    return obj


def _is_condition_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class DynamoDBGateway:
    """Production IManuscriptGateway backed by DynamoDB."""

    def __init__(self, user_id: str, table_name: str = "mctracker-manuscripts",
                 table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._user_id = user_id
        self._table_name = f"{table_name}{table_suffix}"
        self._region = region
        self._endpoint_url = endpoint_url
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._ddb = boto3.resource("dynamodb", **kwargs)
        self._client = boto3.client("dynamodb", **kwargs)
        self._table = self._ddb.Table(self._table_name)
        self._serializer = TypeSerializer()

    @property
    def _pk(self) -> str:
        return f"USER#{self._user_id}"

    def _key(self, entity_id: str) -> dict[str, str]:
        return {"PK": self._pk, "SK": f"{MANUSCRIPT_SK_PREFIX}{entity_id}"}

    def _item(self, entity: Manuscript) -> dict[str, Any]:
        return {**self._key(entity.id), "userId": self._user_id, **_to_dynamodb(to_record(entity))}

    async def _run(self, action: str, fn, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except ClientError as exc:
            raise GatewayUnavailableError(f"DynamoDB {action} failed: {exc}") from exc

    # ---- blocking operations ----

    def _query_all(self) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": "PK = :pk AND begins_with(SK, :sk)",
            "ExpressionAttributeValues": {":pk": self._pk, ":sk": MANUSCRIPT_SK_PREFIX},
        }
        while True:
            resp = self._table.query(**kwargs)
            items.extend(_decode_decimals(item) for item in resp.get("Items", []))
            if "LastEvaluatedKey" not in resp:
                return items
            kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]

    def _put_new(self, item: dict[str, Any]) -> None:
        try:
            self._table.put_item(Item=item, ConditionExpression="attribute_not_exists(PK)")
        except ClientError as exc:
            if _is_condition_failure(exc):
                raise PersistenceError(f"Manuscript {item['id']!r} already exists") from exc
            raise

    def _put_existing(self, item: dict[str, Any]) -> None:
        try:
            self._table.put_item(Item=item, ConditionExpression="attribute_exists(PK)")
        except ClientError as exc:
            if _is_condition_failure(exc):
                raise ManuscriptNotFoundError(item["id"]) from exc
            raise

    def _update_transaction(self, ids: Sequence[str], patch: dict[str, Any]) -> None:
        names = {f"#f{i}": field for i, field in enumerate(patch)}
        values = {
            f":v{i}": self._serializer.serialize(_to_dynamodb(value))
            for i, value in enumerate(patch.values())
        }
        expression = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(patch)))
        for start in range(0, len(ids), TRANSACTION_LIMIT):
            chunk = ids[start:start + TRANSACTION_LIMIT]
            self._client.transact_write_items(TransactItems=[
                {
                    "Update": {
                        "TableName": self._table_name,
                        "Key": {k: {"S": v} for k, v in self._key(entity_id).items()},
                        "UpdateExpression": expression,
                        "ConditionExpression": "attribute_exists(PK)",
                        "ExpressionAttributeNames": names,
                        "ExpressionAttributeValues": values,
                    }
                }
                for entity_id in chunk
            ])

    def _delete(self, entity_id: str) -> None:
        self._table.delete_item(Key=self._key(entity_id))

    def _get_settings(self) -> dict[str, Any] | None:
        resp = self._table.get_item(Key={"PK": self._pk, "SK": SETTINGS_SK})
        item = resp.get("Item")
        return _decode_decimals(item) if item else None

    def _put_settings(self, settings: UserSettings) -> None:
        payload = _to_dynamodb(settings.model_dump(mode="json", by_alias=True))
        self._table.put_item(Item={"PK": self._pk, "SK": SETTINGS_SK, "userId": self._user_id, **payload})

    # ---- IManuscriptGateway methods ----

    async def list(self) -> list[Manuscript]:
        items = await self._run("query", self._query_all)
        return newest_first(from_record(item) for item in items)

    async def create(self, draft: Manuscript) -> Manuscript:
        item = self._item(draft)
        await self._run("put", self._put_new, item)
        return from_record(_decode_decimals(item))

    async def update(self, entity: Manuscript) -> Manuscript:
        item = self._item(entity)
        await self._run("put", self._put_existing, item)
        return from_record(_decode_decimals(item))

    async def update_many(self, ids: Sequence[str], changes: Mapping[str, Any]) -> None:
        patch = changes_to_record(changes)
        ids = list(dict.fromkeys(ids))
        if not ids or not patch:
            return
        await self._run("transact_write_items", self._update_transaction, ids, patch)
        logger.debug("Updated %d manuscripts in %s", len(ids), self._table_name)

    async def delete(self, entity_id: str) -> None:
        await self._run("delete", self._delete, entity_id)

    async def get_settings(self) -> UserSettings:
        item = await self._run("get", self._get_settings)
        if item is None:
            # First login: create the row with defaults.
            settings = UserSettings()
            await self._run("put", self._put_settings, settings)
            return settings
        return UserSettings.model_validate(item)

    async def update_settings(self, settings: UserSettings) -> UserSettings:
        await self._run("put", self._put_settings, settings)
        return settings
