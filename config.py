"""
Configuration module for the IntakeFlow MCP Server.

Provides centralized configuration management with support for:
- Environment variables
- Default values
- Path resolution
- Logging configuration
- Mentor capacity tiers (YAML file)
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from dotenv import load_dotenv

from models.status import MentorTier
from utils.mentor_allocator import DEFAULT_TIER_CAPACITY

# Load environment variables from .env file at project root
_env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=_env_path)


def _parse_bool(env_var: str, default: bool) -> bool:
    """Parse a boolean value from an environment variable."""
    value = os.getenv(env_var)
    if value is None:
        return default
    return value.lower() in ("true", "1", "t", "y", "yes")


class Config:
    """
    Configuration class for server and workflow settings.

    Supports configuration via environment variables (and .env file) with sensible defaults.
    All paths are resolved relative to the repository root.
    """

    def __init__(self):
        """Initialize configuration from environment variables and defaults."""
        self._repo_root = self._find_repo_root()

        # Database configuration
        self.db_path = self._resolve_db_path()
        self.busy_timeout_seconds = float(os.getenv("INTAKEFLOW_BUSY_TIMEOUT_SECONDS", "5"))

        # Logging configuration
        self.log_level = os.getenv("INTAKEFLOW_LOG_LEVEL", "INFO").upper()
        self.log_file = self._resolve_path_env("INTAKEFLOW_LOG_FILE")

        # Server configuration
        self.server_name = os.getenv("INTAKEFLOW_SERVER_NAME", "intakeflow-mcp-server")

        # Workflow configuration
        self.auto_assign_mentor = _parse_bool("INTAKEFLOW_AUTO_ASSIGN_MENTOR", True)
        self.provision_trainee_accounts = _parse_bool("INTAKEFLOW_PROVISION_TRAINEE_ACCOUNTS", False)
        self.allocation_attempts = int(os.getenv("INTAKEFLOW_ALLOCATION_ATTEMPTS", "3"))

        # Notification configuration
        self.notifier = os.getenv("INTAKEFLOW_NOTIFIER", "in_app").lower()
        self.notify_workers = int(os.getenv("INTAKEFLOW_NOTIFY_WORKERS", "2"))

        # Mentor capacity tiers
        self.capacity_file = self._resolve_path_env("INTAKEFLOW_CAPACITY_FILE")
        self.mentor_capacity_by_tier = self._load_capacity_tiers()

    def _find_repo_root(self) -> Path:
        """config.py sits at the repository root."""
        return Path(__file__).resolve().parent

    def _resolve_db_path(self) -> Path:
        """
        Resolve the database path from environment or default.

        Resolution order:
        1. INTAKEFLOW_DB environment variable (absolute or relative)
        2. INTAKEFLOW_ROOT/data/intake.db
        3. Default: <repo_root>/data/intake.db

        Returns:
            Resolved absolute Path to database
        """
        db_env = os.getenv("INTAKEFLOW_DB")
        if db_env:
            db_path = Path(db_env)
            if db_path.is_absolute():
                return db_path
            else:
                return self._repo_root / db_path

        root_env = os.getenv("INTAKEFLOW_ROOT")
        if root_env:
            return Path(root_env) / "data" / "intake.db"

        return self._repo_root / "data" / "intake.db"

    def _resolve_path_env(self, env_var: str) -> Optional[Path]:
        """Resolve an optional path env var; relative paths are repo-relative."""
        value = os.getenv(env_var)
        if not value:
            return None

        path = Path(value)
        if path.is_absolute():
            return path
        return self._repo_root / path

    def _load_capacity_tiers(self) -> Dict[str, int]:
        """
        Merge tier capacities from the YAML capacity file over the defaults.

        Expected file shape:
            PRINCIPAL: 2
            SENIOR: 3
            GENERAL: 4

        Unreadable files and unknown tiers are ignored here and reported
        by validate().
        """
        capacities = dict(DEFAULT_TIER_CAPACITY)
        if self.capacity_file is None or not self.capacity_file.is_file():
            return capacities

        try:
            with open(self.capacity_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logging.getLogger(__name__).warning("Cannot read capacity file: %s", e)
            return capacities

        if not isinstance(data, dict):
            return capacities

        for tier, capacity in data.items():
            tier_name = str(tier).upper()
            if tier_name in MentorTier.__members__ and isinstance(capacity, int) and capacity >= 0:
                capacities[tier_name] = capacity
        return capacities

    def setup_logging(self):
        """
        Configure logging based on configuration settings.

        Sets up logging to stderr and optionally to a file.
        Log level is controlled by INTAKEFLOW_LOG_LEVEL.
        """
        numeric_level = getattr(logging, self.log_level, logging.INFO)

        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)

        # Remove existing handlers to avoid duplicates
        root_logger.handlers.clear()

        # stderr only: stdout carries the MCP stdio transport
        stderr_handler = logging.StreamHandler()
        stderr_handler.setLevel(numeric_level)
        stderr_handler.setFormatter(formatter)
        root_logger.addHandler(stderr_handler)

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

            logging.info(f"Logging to file: {self.log_file}")

        logging.info(f"Log level set to: {self.log_level}")
        logging.info(f"Repository root: {self._repo_root}")
        logging.info(f"Database path: {self.db_path}")

    def validate(self) -> list[str]:
        """
        Validate configuration and return any warnings.

        Returns:
            List of warning messages (empty if all valid)
        """
        warnings = []

        if not self.db_path.exists():
            warnings.append(
                f"Database file not found: {self.db_path}. "
                "It will be created with an empty schema on first use."
            )

        if self.log_file:
            log_dir = self.log_file.parent
            if not log_dir.exists():
                try:
                    log_dir.mkdir(parents=True, exist_ok=True)
                except Exception as e:
                    warnings.append(f"Cannot create log directory {log_dir}: {e}")
            elif not os.access(log_dir, os.W_OK):
                warnings.append(f"Log directory not writable: {log_dir}")

        if self.capacity_file and not self.capacity_file.is_file():
            warnings.append(f"Capacity file not found: {self.capacity_file}. Using default tiers.")

        if self.notifier not in ("in_app", "log"):
            warnings.append(f"Unknown notifier '{self.notifier}'. Falling back to 'log'.")

        if self.allocation_attempts < 1:
            warnings.append("INTAKEFLOW_ALLOCATION_ATTEMPTS must be >= 1. Using 1.")

        return warnings


# Global configuration instance
config = Config()


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Global Config instance
    """
    return config
