"""Create the manuscripts table and seed a demo operator's workload.

Usage:
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566 --user-id demo
"""

from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import boto3

from mctracker.models.manuscript import Manuscript, Note, Priority, Status
from mctracker.models.settings import WEEKDAYS_ONLY_WEIGHTS, UserSchedule, UserSettings
from mctracker.persistence.codec import to_record

TABLE_NAME = "mctracker-manuscripts"


def create_table(ddb: Any, suffix: str = "") -> str:
    """Create the single PK/SK table. Skips if it already exists."""
    client = ddb.meta.client
    table_name = f"{TABLE_NAME}{suffix}"
    if table_name in client.list_tables().get("TableNames", []):
        print(f"  Table {table_name} already exists, skipping")
        return table_name
    client.create_table(
        TableName=table_name,
        KeySchema=[
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "PK", "AttributeType": "S"},
            {"AttributeName": "SK", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    print(f"  Created table {table_name}")
    return table_name


def _json_to_dynamodb(obj: Any) -> Any:
    """Convert JSON-parsed floats to Decimal for DynamoDB."""
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, dict):
        return {k: _json_to_dynamodb(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_json_to_dynamodb(i) for i in obj]
    return obj


def sample_manuscripts(now: datetime) -> list[Manuscript]:
    """A small spread of statuses and priorities for demos."""
    day = timedelta(days=1)
    return [
        Manuscript(
            manuscript_id="JOC-2024-0142", journal_code="JOC",
            date_received=now - 6 * day, due_date=now + day,
            priority=Priority.URGENT, date_updated=now - 5 * day,
        ),
        Manuscript(
            manuscript_id="JOC-2024-0157", journal_code="JOC",
            status=Status.PENDING_JM, date_received=now - 4 * day,
            date_queried=now - 2 * day, query_reason="Missing figure 3",
            date_status_changed=now - 2 * day, date_updated=now - 2 * day,
            notes=(Note(content="Queried to JM", timestamp=now - 2 * day),),
        ),
        Manuscript(
            manuscript_id="PHY-2024-0031", journal_code="PHY",
            status=Status.PENDING_CED, priority=Priority.HIGH,
            date_received=now - 3 * day, date_status_changed=now - day,
            date_updated=now - day,
        ),
        Manuscript(
            manuscript_id="PHY-2024-0029", journal_code="PHY",
            status=Status.WORKED, date_received=now - 8 * day,
            completed_date=now - 3 * day, date_status_changed=now - 3 * day,
            date_updated=now - 3 * day,
        ),
    ]


def seed_user_data(ddb: Any, user_id: str, suffix: str = "", now: datetime | None = None) -> int:
    """Write sample manuscripts and a settings row for ``user_id``."""
    now = now or datetime.now(timezone.utc)
    tbl = ddb.Table(f"{TABLE_NAME}{suffix}")
    pk = f"USER#{user_id}"
    manuscripts = sample_manuscripts(now)
    with tbl.batch_writer() as batch:
        for manuscript in manuscripts:
            batch.put_item(Item={
                "PK": pk, "SK": f"MANUSCRIPT#{manuscript.id}", "userId": user_id,
                **_json_to_dynamodb(to_record(manuscript)),
            })
    print(f"  Seeded {len(manuscripts)} manuscripts for {user_id}")

    settings = UserSettings(user_schedule=UserSchedule(weekly_weights=WEEKDAYS_ONLY_WEIGHTS))
    tbl.put_item(Item={
        "PK": pk, "SK": "SETTINGS", "userId": user_id,
        **_json_to_dynamodb(settings.model_dump(mode="json", by_alias=True)),
    })
    print("  Seeded settings (weekdays only)")
    return len(manuscripts)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed DynamoDB for mctracker")
    parser.add_argument("--endpoint-url", default=None, help="DynamoDB endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="", help="Table name suffix (e.g. -dev)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    parser.add_argument("--user-id", default="demo-user", help="Operator to seed")
    args = parser.parse_args()

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    ddb = boto3.resource("dynamodb", **kwargs)

    print("Creating table...")
    create_table(ddb, suffix=args.table_suffix)

    print("Seeding data...")
    seed_user_data(ddb, args.user_id, suffix=args.table_suffix)

    print("Done!")


if __name__ == "__main__":
    main()
