"""Configuration management for cartridge-porter."""

import re
from pathlib import Path
from typing import Any, Literal, Optional, Union
from urllib.parse import quote

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..mapping.table_namer import DEFAULT_NAMING_RULES


def _parse_comma_separated_list(value: Any) -> Optional[list[str]]:
    """Parse comma-separated string into list of strings."""
    if value is None:
        return None
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        # Split by comma and strip whitespace, filter empty strings
        return [item.strip() for item in value.split(",") if item.strip()]
    return None


class SourceConfig(BaseModel):
    """Source document database configuration."""

    type: str = Field("mongodb", description="Type of source database")
    connection_string: str = Field(
        "mongodb://localhost:27017", description="Database connection string"
    )
    database: str = Field(description="Database name")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        """Validate source type."""
        allowed_types = ["mongodb"]
        if v not in allowed_types:
            raise ValueError(f"Source type must be one of: {', '.join(allowed_types)}")
        return v


class DestinationConfig(BaseModel):
    """Destination relational database configuration."""

    type: str = Field("postgresql", description="Type of destination database")
    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(description="Database name")
    username: Optional[str] = Field(None, description="Database user")
    password: Optional[str] = Field(None, description="Database password")
    connection_string: Optional[str] = Field(
        None, description="Full connection string, overrides host/port/credentials"
    )
    schema_name: str = Field("public", description="Schema holding exported tables")

    # Pool settings
    min_connections: int = Field(1, description="Minimum pooled connections")
    max_connections: int = Field(5, description="Maximum pooled connections")
    connection_timeout: float = Field(30.0, description="Connection timeout in seconds")
    command_timeout: float = Field(60.0, description="Command timeout in seconds")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        """Validate destination type."""
        allowed_types = ["postgresql"]
        if v not in allowed_types:
            raise ValueError(
                f"Destination type must be one of: {', '.join(allowed_types)}"
            )
        return v

    def get_connection_string(self) -> str:
        """Build the connection string from the individual settings."""
        if self.connection_string:
            return self.connection_string

        credentials = ""
        if self.username:
            credentials = quote(self.username, safe="")
            if self.password:
                credentials += ":" + quote(self.password, safe="")
            credentials += "@"

        return f"{self.type}://{credentials}{self.host}:{self.port}/{self.database}"


class NamingRule(BaseModel):
    """A regex substitution applied to natural document keys."""

    pattern: str = Field(description="Regular expression to match")
    replacement: str = Field("", description="Replacement text")

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v):
        """Ensure the pattern compiles."""
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid naming rule pattern {v!r}: {e}") from e
        return v


def _default_naming_rules() -> list[NamingRule]:
    return [
        NamingRule(pattern=pattern, replacement=replacement)
        for pattern, replacement in DEFAULT_NAMING_RULES
    ]


class ExportConfig(BaseModel):
    """Settings of the document-to-table export."""

    limit: Optional[int] = Field(
        None, description="Maximum documents per collection, for debugging large data sets"
    )
    data_only: bool = Field(
        False, description="Only load data into existing tables, never change schemas"
    )
    skip_tables: list[str] = Field(
        default_factory=list, description="Destination tables to leave out"
    )

    max_columns: int = Field(500, description="Rows with more attributes are skipped")
    max_varchar_length: int = Field(
        512, description="Strings longer than this are stored as text"
    )
    max_inline_elements: int = Field(
        25, description="Mappings with more keys are exported as child tables"
    )
    progress_interval_seconds: float = Field(
        5.0, description="Minimum time between progress reports"
    )

    # Table naming
    natural_key_field: str = Field("_key", description="Field holding the natural key")
    naming_rules: list[NamingRule] = Field(
        default_factory=_default_naming_rules,
        description="Ordered rules normalizing natural keys into table names",
    )

    @field_validator("skip_tables", mode="before")
    @classmethod
    def parse_skip_tables(cls, v):
        """Parse comma-separated string for the skip list."""
        return _parse_comma_separated_list(v) or []

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v):
        """Treat a zero limit as no limit."""
        if v is not None and v < 0:
            raise ValueError("limit must not be negative")
        return v or None

    @field_validator("max_columns", "max_varchar_length", "max_inline_elements")
    @classmethod
    def validate_positive(cls, v):
        """Ensure thresholds are positive."""
        if v < 1:
            raise ValueError("must be a positive integer")
        return v


class PrometheusConfig(BaseModel):
    """Prometheus monitoring configuration."""

    enabled: bool = False
    port: int = 8080
    path: str = "/metrics"


class MonitoringConfig(BaseModel):
    """Monitoring and observability configuration."""

    prometheus: PrometheusConfig = PrometheusConfig()
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    structured_logging: bool = False


class PorterConfig(BaseSettings):
    """Main configuration for cartridge-porter."""

    source: SourceConfig
    destination: DestinationConfig
    export: ExportConfig = ExportConfig()
    monitoring: MonitoringConfig = MonitoringConfig()

    model_config = SettingsConfigDict(
        env_prefix="CARTRIDGE_PORTER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "PorterConfig":
        """Load configuration from YAML file."""
        return cls.load(config_path)

    @classmethod
    def load(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        overrides: Optional[dict[str, dict[str, Any]]] = None,
    ) -> "PorterConfig":
        """Load configuration from an optional YAML file plus section overrides.

        Override values of None are ignored, so unset command-line options
        keep the file or environment values.
        """
        config_data: dict[str, Any] = {}
        if config_path is not None:
            config_path = Path(config_path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}

        for section, values in (overrides or {}).items():
            section_data = dict(config_data.get(section) or {})
            section_data.update(
                {key: value for key, value in values.items() if value is not None}
            )
            if section_data:
                config_data[section] = section_data

        return cls(**config_data)


__all__ = [
    "SourceConfig",
    "DestinationConfig",
    "NamingRule",
    "ExportConfig",
    "PrometheusConfig",
    "MonitoringConfig",
    "PorterConfig",
]
