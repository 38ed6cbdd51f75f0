"""
Unit tests for configuration module.

Tests configuration loading, path resolution, capacity tiers and validation.
"""

import logging
import os
from pathlib import Path
from unittest.mock import patch

from config import Config


class TestConfig:
    """Test suite for Config class."""

    def test_default_configuration(self):
        with patch.dict(os.environ, {}, clear=True):
            config = Config()

        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.server_name == "intakeflow-mcp-server"
        assert config.auto_assign_mentor is True
        assert config.provision_trainee_accounts is False
        assert config.allocation_attempts == 3
        assert config.notifier == "in_app"
        assert config.busy_timeout_seconds == 5.0
        assert config.mentor_capacity_by_tier == {"PRINCIPAL": 2, "SENIOR": 3, "GENERAL": 4}
        assert config._repo_root.is_dir()

    def test_db_path_from_env_absolute(self):
        with patch.dict(os.environ, {"INTAKEFLOW_DB": "/absolute/path/intake.db"}, clear=True):
            config = Config()
        assert str(config.db_path) == "/absolute/path/intake.db"

    def test_db_path_from_env_relative(self):
        with patch.dict(os.environ, {"INTAKEFLOW_DB": "custom/intake.db"}, clear=True):
            config = Config()
        assert config.db_path == config._repo_root / "custom" / "intake.db"

    def test_db_path_from_root(self):
        with patch.dict(os.environ, {"INTAKEFLOW_ROOT": "/opt/intakeflow"}, clear=True):
            config = Config()
        assert config.db_path == Path("/opt/intakeflow") / "data" / "intake.db"

    def test_db_path_priority(self):
        with patch.dict(
            os.environ, {"INTAKEFLOW_DB": "/custom/db.db", "INTAKEFLOW_ROOT": "/opt/intakeflow"}, clear=True
        ):
            config = Config()
        assert str(config.db_path) == "/custom/db.db"

    def test_log_level_case_insensitive(self):
        with patch.dict(os.environ, {"INTAKEFLOW_LOG_LEVEL": "debug"}, clear=True):
            config = Config()
        assert config.log_level == "DEBUG"

    def test_workflow_flags(self):
        env = {
            "INTAKEFLOW_AUTO_ASSIGN_MENTOR": "false",
            "INTAKEFLOW_PROVISION_TRAINEE_ACCOUNTS": "yes",
            "INTAKEFLOW_ALLOCATION_ATTEMPTS": "5",
            "INTAKEFLOW_NOTIFIER": "LOG",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config()

        assert config.auto_assign_mentor is False
        assert config.provision_trainee_accounts is True
        assert config.allocation_attempts == 5
        assert config.notifier == "log"

    def test_capacity_file_overrides_tiers(self, tmp_path):
        capacity_file = tmp_path / "capacity.yaml"
        capacity_file.write_text("principal: 1\nSENIOR: 6\nINTERN: 9\nGENERAL: -2\n")

        with patch.dict(os.environ, {"INTAKEFLOW_CAPACITY_FILE": str(capacity_file)}, clear=True):
            config = Config()

        assert config.mentor_capacity_by_tier == {"PRINCIPAL": 1, "SENIOR": 6, "GENERAL": 4}

    def test_malformed_capacity_file_keeps_defaults(self, tmp_path):
        capacity_file = tmp_path / "capacity.yaml"
        capacity_file.write_text("PRINCIPAL: [unclosed\n")

        with patch.dict(os.environ, {"INTAKEFLOW_CAPACITY_FILE": str(capacity_file)}, clear=True):
            config = Config()

        assert config.mentor_capacity_by_tier["PRINCIPAL"] == 2


class TestConfigValidation:
    """Tests for Config.validate()."""

    def test_missing_db_warns(self, tmp_path):
        with patch.dict(os.environ, {"INTAKEFLOW_DB": str(tmp_path / "missing.db")}, clear=True):
            warnings = Config().validate()
        assert any("Database file not found" in w for w in warnings)

    def test_existing_db_no_warning(self, tmp_path):
        db = tmp_path / "intake.db"
        db.touch()
        with patch.dict(os.environ, {"INTAKEFLOW_DB": str(db)}, clear=True):
            assert Config().validate() == []

    def test_missing_capacity_file_warns(self, tmp_path):
        db = tmp_path / "intake.db"
        db.touch()
        env = {"INTAKEFLOW_DB": str(db), "INTAKEFLOW_CAPACITY_FILE": str(tmp_path / "none.yaml")}
        with patch.dict(os.environ, env, clear=True):
            warnings = Config().validate()
        assert any("Capacity file not found" in w for w in warnings)

    def test_unknown_notifier_and_attempts_warn(self, tmp_path):
        db = tmp_path / "intake.db"
        db.touch()
        env = {
            "INTAKEFLOW_DB": str(db),
            "INTAKEFLOW_NOTIFIER": "pager",
            "INTAKEFLOW_ALLOCATION_ATTEMPTS": "0",
        }
        with patch.dict(os.environ, env, clear=True):
            warnings = Config().validate()
        assert any("Unknown notifier 'pager'" in w for w in warnings)
        assert any("ALLOCATION_ATTEMPTS" in w for w in warnings)


class TestLoggingSetup:
    """Tests for Config.setup_logging()."""

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "server.log"
        root_logger = logging.getLogger()
        saved = list(root_logger.handlers), root_logger.level
        try:
            with patch.dict(
                os.environ, {"INTAKEFLOW_LOG_FILE": str(log_file), "INTAKEFLOW_LOG_LEVEL": "DEBUG"}, clear=True
            ):
                Config().setup_logging()

            assert root_logger.level == logging.DEBUG
            assert len(root_logger.handlers) == 2
            assert log_file.parent.is_dir()
        finally:
            for handler in root_logger.handlers:
                handler.close()
            root_logger.handlers[:] = saved[0]
            root_logger.setLevel(saved[1])
