"""
Directory service: who holds which role in which department.

Injected into the workflow instead of ad hoc "find the active coordinator"
queries, so tests can substitute fakes.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from db.record_store import RecordStore
from models.status import Role
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)


class Directory(ABC):
    """Abstract interface for role and department lookups."""

    @abstractmethod
    def resolve_reviewer(self, role: str, department: Optional[str] = None) -> List[int]:
        """Active user ids holding ``role`` (optionally within ``department``), lowest id first."""

    @abstractmethod
    def provision_trainee(self, candidate: Dict[str, Any]) -> int:
        """Create (or find) the trainee account for an approved candidate and return its id."""


class StoreDirectory(Directory):
    """Directory backed by the ``users`` table of the record store."""

    def __init__(self, db_path: Optional[str] = None, busy_timeout: Optional[float] = None):
        self.db_path = db_path
        self.busy_timeout = busy_timeout

    def resolve_reviewer(self, role, department=None):
        filters: Dict[str, Any] = {"role": Role(role).value, "is_active": 1}
        if department is not None:
            filters["department"] = department
        with RecordStore(self.db_path, busy_timeout=self.busy_timeout) as store:
            users = store.list("user", filters)
        return [u["id"] for u in users]

    def provision_trainee(self, candidate):
        with RecordStore(self.db_path, busy_timeout=self.busy_timeout) as store:
            existing = store.list("user", {"role": Role.TRAINEE.value, "email": candidate["email"]})
            if existing:
                return existing[0]["id"]
            with store.transaction():
                user = store.create(
                    "user",
                    {
                        "first_name": candidate["first_name"],
                        "last_name": candidate["last_name"],
                        "email": candidate["email"],
                        "role": Role.TRAINEE.value,
                        "department": candidate.get("preferred_department"),
                        "is_active": 1,
                        "created_at": get_current_utc_timestamp(),
                    },
                )
        logger.info("Provisioned trainee account %s for candidate %s", user["id"], candidate["id"])
        return user["id"]
