from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

from .models import Secret

DEFAULT_API_VERSION = "1.1-rev1"


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    base_url: str
    username: str
    password: Secret
    api_version: str = DEFAULT_API_VERSION
    verify_tls: bool | str = True
    timeout_seconds: float = 30.0
    page_size: int = 200


@dataclass(frozen=True, slots=True)
class MailConfig:
    smtp_host: str = ""
    smtp_port: int = 25
    sender: str = ""
    recipient: str = ""
    use_tls: bool = False
    username: str = ""
    password: Secret = field(default_factory=lambda: Secret(""))
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return all(value.strip() for value in (self.smtp_host, self.sender, self.recipient))


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class AppConfig:
    service: ServiceConfig
    mail: MailConfig = field(default_factory=MailConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping or mapping[key] in (None, ""):
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _read_secret(mapping: dict, section: str, environ: Mapping[str, str], *, required: bool) -> Secret:
    env_name = mapping.get("password_env")
    if env_name:
        if str(env_name) not in environ:
            raise ValueError(f"Environment variable `{env_name}` for `{section}.password_env` is not set")
        return Secret(environ[str(env_name)])
    value = mapping.get("password")
    if value in (None, ""):
        if required:
            raise ValueError(f"Missing `{section}.password` or `{section}.password_env` in config")
        return Secret("")
    return Secret(str(value))


def _to_bool(value: object, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"`{key}` must be true or false")


def load_config(path: str | Path, environ: Mapping[str, str] | None = None) -> AppConfig:
    environ = os.environ if environ is None else environ
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    service_raw = _require(raw, "service", "root")
    if not isinstance(service_raw, dict):
        raise ValueError("`service` must be a mapping")
    mail_raw = _section(raw, "mail")
    logging_raw = _section(raw, "logging")

    verify_raw = service_raw.get("verify_tls", True)
    verify_tls: bool | str
    if isinstance(verify_raw, bool):
        verify_tls = verify_raw
    elif isinstance(verify_raw, str) and verify_raw.strip():
        verify_tls = str(to_path(verify_raw))
    else:
        raise ValueError("`service.verify_tls` must be a boolean or a CA bundle path")

    service = ServiceConfig(
        base_url=str(_require(service_raw, "base_url", "service")).rstrip("/"),
        username=str(_require(service_raw, "username", "service")),
        password=_read_secret(service_raw, "service", environ, required=True),
        api_version=str(service_raw.get("api_version", DEFAULT_API_VERSION)),
        verify_tls=verify_tls,
        timeout_seconds=float(service_raw.get("timeout_seconds", 30)),
        page_size=int(service_raw.get("page_size", 200)),
    )
    if not service.base_url.startswith(("http://", "https://")):
        raise ValueError("`service.base_url` must start with http:// or https://")
    if service.timeout_seconds <= 0:
        raise ValueError("`service.timeout_seconds` must be > 0")
    if service.page_size < 1:
        raise ValueError("`service.page_size` must be >= 1")

    mail = MailConfig(
        smtp_host=str(mail_raw.get("smtp_host") or ""),
        smtp_port=int(mail_raw.get("smtp_port", 25)),
        sender=str(mail_raw.get("sender") or ""),
        recipient=str(mail_raw.get("recipient") or ""),
        use_tls=_to_bool(mail_raw.get("use_tls", False), "mail.use_tls"),
        username=str(mail_raw.get("username") or ""),
        timeout_seconds=float(mail_raw.get("timeout_seconds", 30)),
    )
    if not 0 < mail.smtp_port < 65536:
        raise ValueError("`mail.smtp_port` must be between 1 and 65535")
    if mail.is_configured:
        mail = replace(mail, password=_read_secret(mail_raw, "mail", environ, required=False))

    log_path = logging_raw.get("path")
    logging_config = LoggingConfig(path=to_path(log_path) if log_path else None)

    return AppConfig(service=service, mail=mail, logging=logging_config)


def ensure_local_paths(config: AppConfig) -> None:
    if config.logging.path is not None:
        config.logging.path.parent.mkdir(parents=True, exist_ok=True)
