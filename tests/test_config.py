"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for service configs.
"""

import os
import shutil
import tempfile

import pytest
import yaml

from billing_query.config.loader import (
    AuthConfig,
    ValidatorKind,
    build_validator,
    default_config,
    load_config,
)
from billing_query.core.auth import HttpCredentialValidator, StaticCredentialValidator
from billing_query.core.catalog import DEFAULT_PROPERTY_CATALOG


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "database": {"path": "/var/lib/billing.db"},
            "query": {"timeout_seconds": 3},
            "auth": {
                "validator": "static",
                "credentials": {"alice": "alice-token"},
                "timeout_seconds": 2.5
            },
            "logging": {"level": "debug", "json": False},
            "properties": [
                {"name": "cpu", "enum": 0, "unit": "millicore", "display_name": "CPU"},
                {"name": "memory", "enum": 1, "unit": "Mi"}
            ]
        }

        config = load_config(self._write_config(config_data))

        assert config.database.path == "/var/lib/billing.db"
        assert config.query.timeout_seconds == 3.0
        assert config.auth.validator == ValidatorKind.STATIC
        assert config.auth.credentials == {"alice": "alice-token"}
        assert config.auth.timeout_seconds == 2.5
        assert config.logging.level == "DEBUG"
        assert config.logging.json is False
        assert config.catalog.names == ["cpu", "memory"]
        # display_name falls back to the property name
        assert config.catalog.get("memory").display_name == "memory"

    def test_sections_are_optional(self):
        """Test that omitted sections take their defaults."""
        config = load_config(self._write_config({"database": {"path": "billing.db"}}))

        defaults = default_config()
        assert config.query == defaults.query
        assert config.auth == defaults.auth
        assert config.logging == defaults.logging
        assert config.catalog is DEFAULT_PROPERTY_CATALOG

    def test_http_validator(self):
        config_data = {
            "auth": {"validator": "HTTP", "url": "https://auth.example/validate"}
        }
        config = load_config(self._write_config(config_data))
        assert config.auth.validator == ValidatorKind.HTTP
        assert config.auth.url == "https://auth.example/validate"

    def test_missing_file_raises_error(self):
        """Test that missing config file raises error."""
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config("nonexistent.yaml")

    def test_empty_config_raises_error(self):
        """Test that empty config file raises error."""
        config_path = self._write_config({})

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_config(config_path)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises error."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w') as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_config(config_path)

    def test_unknown_top_level_keys_raise_error(self):
        config_path = self._write_config({"database": {"path": "b.db"}, "budget": {}})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(config_path)

    def test_unknown_section_keys_raise_error(self):
        config_path = self._write_config({"query": {"timeout_seconds": 1, "retries": 3}})
        with pytest.raises(ValueError, match="Unknown query keys"):
            load_config(config_path)

    @pytest.mark.parametrize("timeout", [0, -1, "fast", True])
    def test_invalid_query_timeout_raises_error(self, timeout):
        config_path = self._write_config({"query": {"timeout_seconds": timeout}})
        with pytest.raises(ValueError, match="'query.timeout_seconds' must be > 0"):
            load_config(config_path)

    def test_invalid_validator_raises_error(self):
        config_path = self._write_config({"auth": {"validator": "ldap"}})
        with pytest.raises(ValueError, match="must be one of"):
            load_config(config_path)

    def test_http_validator_without_url_raises_error(self):
        config_path = self._write_config({"auth": {"validator": "http"}})
        with pytest.raises(ValueError, match="auth url is required"):
            load_config(config_path)

    def test_empty_credential_raises_error(self):
        config_path = self._write_config({"auth": {"credentials": {"alice": ""}}})
        with pytest.raises(ValueError, match="non-empty tokens"):
            load_config(config_path)

    def test_invalid_log_level_raises_error(self):
        config_path = self._write_config({"logging": {"level": "LOUD"}})
        with pytest.raises(ValueError, match="Unknown log level"):
            load_config(config_path)

    def test_property_missing_enum_raises_error(self):
        config_path = self._write_config({"properties": [{"name": "cpu", "unit": "millicore"}]})
        with pytest.raises(ValueError, match=r"Missing required 'enum' in properties\[0\]"):
            load_config(config_path)

    def test_unknown_property_keys_raise_error(self):
        config_path = self._write_config({
            "properties": [{"name": "cpu", "enum": 0, "unit": "millicore", "price": 3}]
        })
        with pytest.raises(ValueError, match=r"Unknown keys in properties\[0\]"):
            load_config(config_path)

    def test_duplicate_properties_raise_error(self):
        config_path = self._write_config({
            "properties": [
                {"name": "cpu", "enum": 0, "unit": "millicore"},
                {"name": "cpu", "enum": 1, "unit": "millicore"}
            ]
        })
        with pytest.raises(ValueError, match="names must be unique"):
            load_config(config_path)

    def test_empty_properties_raise_error(self):
        config_path = self._write_config({"properties": []})
        with pytest.raises(ValueError, match="non-empty list"):
            load_config(config_path)


class TestBuildValidator:
    """Test validator construction from auth settings."""

    def test_static_validator(self):
        validator = build_validator(AuthConfig(credentials={"alice": "alice-token"}))
        assert isinstance(validator, StaticCredentialValidator)

    def test_http_validator(self):
        validator = build_validator(AuthConfig(
            validator=ValidatorKind.HTTP,
            url="https://auth.example/validate",
            timeout_seconds=1.5
        ))
        assert isinstance(validator, HttpCredentialValidator)
        assert validator.url == "https://auth.example/validate"
        assert validator.timeout == 1.5
