"""
Configuration management and loading.

Handles service settings: database, query limits, credential validation,
logging and the billable property catalog.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from billing_query.core.auth import CredentialValidator, HttpCredentialValidator, StaticCredentialValidator
from billing_query.core.catalog import DEFAULT_PROPERTY_CATALOG, PropertyCatalog, PropertyDefinition
from billing_query.storage.db import DEFAULT_DB_PATH

DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0
DEFAULT_AUTH_TIMEOUT_SECONDS = 5.0


class ValidatorKind(Enum):
    """Supported credential validator backends."""
    STATIC = "static"
    HTTP = "http"


@dataclass(frozen=True)
class DatabaseConfig:
    """Location of the billing database."""
    path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate database path is set."""
        if not self.path:
            raise ValueError("database path cannot be empty")


@dataclass(frozen=True)
class QueryConfig:
    """Limits applied to every billing query."""
    timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS

    def __post_init__(self):
        """Validate timeout is positive."""
        if self.timeout_seconds <= 0:
            raise ValueError("query timeout_seconds must be > 0")


@dataclass(frozen=True)
class AuthConfig:
    """Credential validator settings."""
    validator: ValidatorKind = ValidatorKind.STATIC
    credentials: Dict[str, str] = field(default_factory=dict, repr=False)
    url: Optional[str] = None
    timeout_seconds: float = DEFAULT_AUTH_TIMEOUT_SECONDS

    def __post_init__(self):
        """Validate validator settings are consistent."""
        if self.timeout_seconds <= 0:
            raise ValueError("auth timeout_seconds must be > 0")
        if self.validator == ValidatorKind.HTTP and not self.url:
            raise ValueError("auth url is required for the http validator")


@dataclass(frozen=True)
class LoggingConfig:
    """Log output settings."""
    level: str = "INFO"
    json: bool = True

    def __post_init__(self):
        """Validate log level name."""
        if self.level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {self.level}")


@dataclass(frozen=True)
class AppConfig:
    """Complete service configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    catalog: PropertyCatalog = DEFAULT_PROPERTY_CATALOG


def default_config() -> AppConfig:
    """Configuration used when no config file is given."""
    return AppConfig()


def load_config(path: str) -> AppConfig:
    """Load and validate service configuration from YAML file.

    Strict validation ensures no silent misconfiguration: unknown keys are
    rejected and every value is type-checked.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'database', 'query', 'auth', 'logging', 'properties'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    # Parse database
    database_data = _section(raw_config, 'database', {'path'})
    database = DatabaseConfig(path=str(database_data.get('path', DEFAULT_DB_PATH)))

    # Parse query limits
    query_data = _section(raw_config, 'query', {'timeout_seconds'})
    query = QueryConfig(
        timeout_seconds=_positive_number(
            query_data.get('timeout_seconds', DEFAULT_QUERY_TIMEOUT_SECONDS), 'query.timeout_seconds'
        )
    )

    auth = _parse_auth_config(_section(raw_config, 'auth', {'validator', 'credentials', 'url', 'timeout_seconds'}))

    # Parse logging
    logging_data = _section(raw_config, 'logging', {'level', 'json'})
    level = logging_data.get('level', 'INFO')
    if not isinstance(level, str):
        raise ValueError("'logging.level' must be a string")
    json_output = logging_data.get('json', True)
    if not isinstance(json_output, bool):
        raise ValueError("'logging.json' must be a boolean")
    logging_config = LoggingConfig(level=level.upper(), json=json_output)

    # Parse property catalog
    if 'properties' in raw_config:
        catalog = _parse_catalog(raw_config['properties'])
    else:
        catalog = DEFAULT_PROPERTY_CATALOG

    return AppConfig(
        database=database,
        query=query,
        auth=auth,
        logging=logging_config,
        catalog=catalog
    )


def build_validator(config: AuthConfig) -> CredentialValidator:
    """Create the credential validator described by the auth config."""
    if config.validator == ValidatorKind.HTTP:
        return HttpCredentialValidator(config.url, timeout=config.timeout_seconds)
    return StaticCredentialValidator(config.credentials)


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: set) -> Dict[str, Any]:
    """Return an optional top-level section after checking its keys."""
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _positive_number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"'{path}' must be > 0")
    return float(value)


def _parse_auth_config(data: Dict[str, Any]) -> AuthConfig:
    """Parse and validate the auth section.

    Raises:
        ValueError: If configuration is invalid
    """
    validator_str = data.get('validator', ValidatorKind.STATIC.value)
    if not isinstance(validator_str, str):
        raise ValueError("'auth.validator' must be a string")
    try:
        validator = ValidatorKind(validator_str.lower())
    except ValueError:
        valid_kinds = [kind.value for kind in ValidatorKind]
        raise ValueError(f"'auth.validator' must be one of: {valid_kinds}")

    credentials = data.get('credentials', {}) or {}
    if not isinstance(credentials, dict):
        raise ValueError("'auth.credentials' must be a dictionary")
    for owner, token in credentials.items():
        if not isinstance(owner, str) or not isinstance(token, str) or not token:
            raise ValueError("'auth.credentials' must map owner names to non-empty tokens")

    url = data.get('url')
    if url is not None and not isinstance(url, str):
        raise ValueError("'auth.url' must be a string")

    return AuthConfig(
        validator=validator,
        credentials=dict(credentials),
        url=url,
        timeout_seconds=_positive_number(
            data.get('timeout_seconds', DEFAULT_AUTH_TIMEOUT_SECONDS), 'auth.timeout_seconds'
        )
    )


def _parse_catalog(data: Any) -> PropertyCatalog:
    """Parse the list of billable property definitions.

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, list) or not data:
        raise ValueError("'properties' must be a non-empty list")

    allowed_keys = {'name', 'enum', 'unit', 'display_name'}
    definitions: List[PropertyDefinition] = []
    for index, item in enumerate(data):
        path = f"properties[{index}]"
        if not isinstance(item, dict):
            raise ValueError(f"{path} must be a dictionary")
        unknown_keys = set(item.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
        for key in ('name', 'enum', 'unit'):
            if key not in item:
                raise ValueError(f"Missing required '{key}' in {path}")

        name = item['name']
        if not isinstance(name, str):
            raise ValueError(f"'name' in {path} must be a string")
        enum = item['enum']
        if isinstance(enum, bool) or not isinstance(enum, int):
            raise ValueError(f"'enum' in {path} must be an integer")

        definitions.append(PropertyDefinition(
            name=name,
            enum=enum,
            unit=str(item['unit']),
            display_name=str(item.get('display_name', name))
        ))

    return PropertyCatalog.from_definitions(definitions)
