"""
Application configuration management for smimemailer.

This module provides configuration loading from environment variables
and TOML configuration files, with type-safe settings classes.
"""

import json
import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import InvalidConfigError, MissingConfigError

EncryptingCertsValue = Optional[Union[str, list[str], dict[str, str]]]


class SMIMESettings(BaseSettings):
    """S/MIME signing and encryption settings."""

    model_config = SettingsConfigDict(
        env_prefix="SMIME_",
        extra="ignore",
    )

    encrypting_certs: EncryptingCertsValue = Field(
        None,
        description="Recipient certificate path, list of paths, or address -> path mapping",
    )
    signing_cert: Optional[str] = Field(None, description="Path to signing certificate")
    signing_key: Optional[str] = Field(None, description="Path to signing private key")
    signing_key_passphrase: Optional[SecretStr] = Field(
        None, description="Passphrase of the signing private key"
    )
    default_options: dict[str, Any] = Field(
        default_factory=dict,
        description="Signer options used when none are given explicitly",
    )

    @field_validator("encrypting_certs", mode="before")
    @classmethod
    def parse_encrypting_certs(cls, v: Any) -> Any:
        """Accept JSON or comma-separated strings from the environment."""
        if isinstance(v, str):
            stripped = v.strip()
            if not stripped:
                return None
            if stripped[0] in "[{":
                return json.loads(stripped)
            if "," in stripped:
                return [path.strip() for path in stripped.split(",") if path.strip()]
        return v


class SMTPSettings(BaseSettings):
    """Outgoing SMTP server settings."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="SMTP server hostname")
    port: int = Field(default=25, ge=1, le=65535, description="SMTP server port")
    username: Optional[str] = Field(None, description="SMTP login user")
    password: Optional[SecretStr] = Field(None, description="SMTP login password")
    use_tls: bool = Field(default=False, description="Use implicit TLS")
    start_tls: Optional[bool] = Field(
        default=None, description="Require (true), forbid (false) or auto STARTTLS"
    )
    timeout: int = Field(default=30, ge=1, description="Connection timeout in seconds")
    local_hostname: Optional[str] = Field(None, description="Hostname for HELO/EHLO")
    validate_certs: bool = Field(default=True, description="Verify server certificate")

    @model_validator(mode="after")
    def check_tls_mode(self) -> "SMTPSettings":
        """Implicit TLS and STARTTLS cannot both be requested."""
        if self.use_tls and self.start_tls:
            raise ValueError("use_tls and start_tls are mutually exclusive")
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper


class Settings(BaseSettings):
    """Main application settings aggregating all configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SMIMEMAILER_",
        extra="ignore",
    )

    app_name: str = Field(default="smimemailer", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")

    smime: SMIMESettings = Field(default_factory=SMIMESettings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_toml(cls, path: Union[str, Path]) -> "Settings":
        """
        Load settings from a TOML configuration file.

        Args:
            path: Path to the TOML configuration file.

        Returns:
            Settings instance with loaded configuration.

        Raises:
            MissingConfigError: If the file does not exist.
            InvalidConfigError: If the file cannot be parsed.
        """
        path = Path(path)
        if not path.exists():
            raise MissingConfigError(str(path), {"reason": "configuration file not found"})

        try:
            with open(path, "rb") as f:
                config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise InvalidConfigError(
                config_key="config_file",
                value=str(path),
                reason=f"Failed to parse TOML: {e}",
            ) from e

        try:
            return cls._from_dict(config_data)
        except ValidationError as e:
            raise InvalidConfigError(
                config_key="config_file",
                value=str(path),
                reason=str(e),
            ) from e

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Create settings from a dictionary.

        Args:
            data: Configuration dictionary.

        Returns:
            Settings instance.
        """
        settings_kwargs: dict[str, Any] = {}

        if "app" in data:
            settings_kwargs.update(data["app"])

        if "smime" in data:
            settings_kwargs["smime"] = SMIMESettings(**data["smime"])

        if "smtp" in data:
            settings_kwargs["smtp"] = SMTPSettings(**data["smtp"])

        if "logging" in data:
            settings_kwargs["logging"] = LoggingSettings(**data["logging"])

        return cls(**settings_kwargs)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings come from ``SMIMEMAILER_CONFIG_FILE`` when it points to an
    existing file, otherwise from environment variables alone.

    Returns:
        Settings instance.
    """
    config_file = os.getenv("SMIMEMAILER_CONFIG_FILE")

    if config_file and Path(config_file).exists():
        return Settings.from_toml(config_file)

    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings, clearing the cache.

    Returns:
        Fresh Settings instance.
    """
    get_settings.cache_clear()
    return get_settings()
