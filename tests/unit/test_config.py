"""Unit tests for configuration loading.

Tests import configuration loading, engine settings validation and error handling.
"""

import json
import os

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.config.settings import Settings
from src.services.config import load_import_config


@pytest.fixture
def export_file(tmp_path):
    path = tmp_path / "credit_export.json"
    path.write_text(json.dumps({"clientId": "MTC", "units": {}}))
    return path


class TestLoadImportConfig:
    """Tests for load_import_config function."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        """Run from an empty directory with a private copy of the environment."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(os, "environ", os.environ.copy())
        for name in ("CREDIT_EXPORT_PATH", "DRY_RUN", "IMPORT_SOURCE_LABEL", "LOG_FILE"):
            monkeypatch.delenv(name, raising=False)

    def test_missing_export_path(self):
        """Test that missing CREDIT_EXPORT_PATH raises ValueError with clear message."""
        with pytest.raises(ValueError, match="CREDIT_EXPORT_PATH not configured"):
            load_import_config()

    def test_missing_export_file(self, monkeypatch):
        """Test that a nonexistent export file raises ValueError."""
        monkeypatch.setenv("CREDIT_EXPORT_PATH", "/nonexistent/export.json")

        with pytest.raises(ValueError, match="Export file not found"):
            load_import_config()

    def test_invalid_json(self, monkeypatch, tmp_path):
        """Test that invalid JSON in the export raises ValueError."""
        bad = tmp_path / "bad.json"
        bad.write_text("{invalid json")
        monkeypatch.setenv("CREDIT_EXPORT_PATH", str(bad))

        with pytest.raises(ValueError, match="not valid JSON"):
            load_import_config()

    def test_missing_fields(self, monkeypatch, tmp_path):
        """Test that an export without clientId/units raises ValueError."""
        partial = tmp_path / "partial.json"
        partial.write_text(json.dumps({"units": {}}))
        monkeypatch.setenv("CREDIT_EXPORT_PATH", str(partial))

        with pytest.raises(ValueError, match="missing required fields: clientId"):
            load_import_config()

    def test_defaults(self, monkeypatch, export_file):
        """Test defaults when only the export path is configured."""
        monkeypatch.setenv("CREDIT_EXPORT_PATH", str(export_file))

        config = load_import_config()

        assert config.export_path == str(export_file)
        assert config.dry_run is False
        assert config.source_label == "import"
        assert config.log_file == "logs/rebuild_credit.log"

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("YES", True), ("no", False)])
    def test_dry_run_flag(self, monkeypatch, export_file, value, expected):
        monkeypatch.setenv("CREDIT_EXPORT_PATH", str(export_file))
        monkeypatch.setenv("DRY_RUN", value)

        assert load_import_config().dry_run is expected

    def test_reads_dotenv_file(self, monkeypatch, tmp_path, export_file):
        """Test values from a .env file in the working directory are used."""
        (tmp_path / ".env").write_text(f"CREDIT_EXPORT_PATH={export_file}\nIMPORT_SOURCE_LABEL=sheet-2024\n")

        config = load_import_config()

        assert config.export_path == str(export_file)
        assert config.source_label == "sheet-2024"


class TestSettings:
    """Engine settings validation."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FISCAL_YEAR_START_MONTH", raising=False)

        settings = Settings(_env_file=None)

        assert settings.fiscal_year_start_month == 1
        assert settings.module_priority == ["dues", "water"]
        assert settings.accrual_modules == ["dues"]
        assert settings.credit_history_limit == 50

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("FISCAL_YEAR_START_MONTH", "7")
        monkeypatch.setenv("MODULE_PRIORITY", '["water", "dues"]')

        settings = Settings(_env_file=None)

        assert settings.fiscal_year_start_month == 7
        assert settings.module_priority == ["water", "dues"]

    def test_rejects_bad_month(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, fiscal_year_start_month=13)

    def test_rejects_unknown_module(self):
        with pytest.raises(PydanticValidationError, match="Unknown charge modules"):
            Settings(_env_file=None, accrual_modules=["dues", "parking"])
