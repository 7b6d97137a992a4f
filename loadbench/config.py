"""Run configuration via environment variables and command-line overrides."""

import logging
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from loadbench.engine.models import TestConfig
from loadbench.engine.report import OutputFormat
from loadbench.shared.errors import ConfigError


class RunSettings(BaseSettings):
    # Target server
    server: str = "localhost"
    port: int = Field(default=443, gt=0, le=65535)
    scheme: str = "https"
    insecure: bool = False
    request_timeout: float = Field(default=60.0, ge=0)  # 0 disables the timeout
    api_key: str = ""

    # Load shape
    qps: int = Field(default=10, gt=0)
    connections: int = Field(default=10, gt=0)
    duration: float = Field(default=30.0, gt=0)
    warmup: float = Field(default=10.0, ge=0)
    create_session: bool = False

    # Output
    output_format: OutputFormat = OutputFormat.PLAIN
    output: str | None = None
    store_profiling_data: bool = False
    profiling_dir: str = "."
    progress_interval: float = Field(default=5.0, gt=0)
    log_level: str = "INFO"

    model_config = {"env_prefix": "LOADBENCH_", "env_file": ".env", "extra": "ignore"}

    @field_validator("output_format", mode="before")
    @classmethod
    def _parse_output_format(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return OutputFormat(value)
            except ValueError:
                raise ValueError(
                    f"unsupported output format {value!r}, expected one of "
                    + ", ".join(f.value for f in OutputFormat)
                ) from None
        return value

    @field_validator("scheme")
    @classmethod
    def _check_scheme(cls, value: str) -> str:
        if value not in ("http", "https"):
            raise ValueError(f"scheme must be http or https, got {value!r}")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        if value.upper() not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level {value!r}")
        return value.upper()

    def to_test_config(self, test_name: str, resource: dict[str, Any] | None = None) -> TestConfig:
        return TestConfig(
            test_name=test_name,
            server_name=self.server,
            server_port=self.port,
            verify_tls=not self.insecure,
            connections=self.connections,
            create_session=self.create_session,
            warmup_duration=self.warmup,
            test_duration=self.duration,
            target_qps=self.qps,
            resource=resource,
        )


def load_settings(**overrides: Any) -> RunSettings:
    """Build settings; explicit *overrides* win over the environment.

    ``None`` overrides are ignored so unset CLI flags fall through to the
    environment and defaults.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return RunSettings(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
