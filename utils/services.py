"""
Collaborators injected into the workflow tool handlers.

Handlers accept an optional ``WorkflowServices``; when omitted they use the
default services for the target database, built once from global config.
"""

import threading
from typing import Dict, Mapping, Optional

from db.record_store import resolve_db_path
from utils.directory import Directory, StoreDirectory
from utils.mentor_allocator import DEFAULT_TIER_CAPACITY
from utils.notifier import InAppNotifier, LoggingNotifier, Notifier


class WorkflowServices:
    """Notifier, directory and allocation settings for one database."""

    def __init__(
        self,
        notifier: Notifier,
        directory: Directory,
        tier_capacity: Optional[Mapping[str, int]] = None,
        auto_assign_mentor: bool = True,
        provision_trainee_accounts: bool = False,
        allocation_attempts: int = 3,
        busy_timeout: Optional[float] = None,
    ):
        self.notifier = notifier
        self.directory = directory
        self.tier_capacity = dict(tier_capacity or DEFAULT_TIER_CAPACITY)
        self.auto_assign_mentor = auto_assign_mentor
        self.provision_trainee_accounts = provision_trainee_accounts
        self.allocation_attempts = max(1, allocation_attempts)
        self.busy_timeout = busy_timeout


_services: Dict[str, WorkflowServices] = {}
_services_lock = threading.Lock()


def build_default_services(db_path: str) -> WorkflowServices:
    """Build services for a database from global configuration."""
    from config import get_config

    config = get_config()
    if config.notifier == "in_app":
        notifier: Notifier = InAppNotifier(
            db_path,
            max_workers=config.notify_workers,
            busy_timeout=config.busy_timeout_seconds,
        )
    else:
        notifier = LoggingNotifier()

    return WorkflowServices(
        notifier=notifier,
        directory=StoreDirectory(db_path, busy_timeout=config.busy_timeout_seconds),
        tier_capacity=config.mentor_capacity_by_tier,
        auto_assign_mentor=config.auto_assign_mentor,
        provision_trainee_accounts=config.provision_trainee_accounts,
        allocation_attempts=config.allocation_attempts,
        busy_timeout=config.busy_timeout_seconds,
    )


def get_services(db_path: Optional[str] = None) -> WorkflowServices:
    """Default services for a database, cached per resolved path."""
    key = str(resolve_db_path(db_path))
    with _services_lock:
        if key not in _services:
            _services[key] = build_default_services(key)
        return _services[key]


def shutdown_services() -> None:
    """Shut down cached notifiers; used on server exit."""
    with _services_lock:
        for services in _services.values():
            services.notifier.shutdown(wait=True)
        _services.clear()
