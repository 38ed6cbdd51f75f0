#!/usr/bin/env python3
"""
Load coordinators, reviewers and mentors from a YAML file into the users table.

Usage:
    python -m scripts.seed_directory --input data/directory.example.yaml
    python -m scripts.seed_directory --input staff.yaml --db data/intake.db --dry-run

Users are matched by employee_id: existing rows are updated in place, new
ones are inserted. The whole file is applied in one transaction.
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from db.record_store import RecordStore
from models.errors import WorkflowError, create_validation_error
from schemas.directory import DirectoryFile
from utils import audit
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Seed the workflow directory from a YAML file.")
    parser.add_argument(
        "--input",
        required=True,
        help="Path to the directory YAML file (top-level 'users' list).",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite DB path (default: INTAKEFLOW_DB or data/intake.db).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and print the parsed users; do not write to DB.",
    )
    return parser.parse_args(argv)


def load_directory(path: Path) -> List[Dict[str, Any]]:
    """
    Parse and validate a directory YAML file.

    Raises:
        WorkflowError: VALIDATION_ERROR for malformed files or entries
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    try:
        parsed = DirectoryFile.model_validate(raw)
    except ValidationError as e:
        raise map_pydantic_validation_error(e) from e

    seen = set()
    for entry in parsed.users:
        if entry.employee_id in seen:
            raise create_validation_error(
                f"Duplicate employee_id in directory file: {entry.employee_id}"
            )
        seen.add(entry.employee_id)

    return [entry.model_dump() for entry in parsed.users]


def seed_users(store: RecordStore, users: List[Dict[str, Any]]) -> Dict[str, int]:
    """
    Upsert users by employee_id inside the caller's transaction.

    Returns:
        Counts of inserted and updated users
    """
    inserted = 0
    updated = 0
    for user in users:
        fields = dict(user)
        fields["is_active"] = 1 if fields["is_active"] else 0
        existing = store.list("user", {"employee_id": fields["employee_id"]})
        if existing:
            before = existing[0]
            store.update_where("user", before["id"], {}, fields)
            audit.record(store, "user", before["id"], "DIRECTORY_UPDATE", None, before, store.get("user", before["id"]))
            updated += 1
        else:
            fields["created_at"] = get_current_utc_timestamp()
            created = store.create("user", fields)
            audit.record(store, "user", created["id"], "DIRECTORY_CREATE", None, None, created)
            inserted += 1
    return {"inserted": inserted, "updated": updated}


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    try:
        users = load_directory(Path(args.input))
    except WorkflowError as e:
        logger.error(e.message)
        return 1

    if args.dry_run:
        print(json.dumps(users, ensure_ascii=False, indent=2))
        return 0

    try:
        with RecordStore(args.db) as store:
            with store.transaction():
                counts = seed_users(store, users)
            db_path = store.resolved_path
    except WorkflowError as e:
        logger.error(e.message)
        return 1

    print(f"DB: {db_path}")
    print(f"Users in file: {len(users)}")
    print(f"Inserted: {counts['inserted']}")
    print(f"Updated: {counts['updated']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
