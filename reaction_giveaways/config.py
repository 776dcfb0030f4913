from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import os
import yaml

from .models import GiveawayMessages


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(slots=True)
class LastChanceConfig:
    enabled: bool = False
    threshold_seconds: int = 5
    title: str = "⚠️ **LAST CHANCE TO ENTER !** ⚠️"
    embed_color: int = 0xFF0000


@dataclass(slots=True)
class GiveawayDefaults:
    reaction: str = "🎉"
    bots_can_win: bool = False
    exempt_permissions: List[str] = field(default_factory=list)
    embed_color: int = 0xFF0000
    embed_color_end: int = 0x000000
    exempt_members: Optional[Any] = None


@dataclass(slots=True)
class ManagerSettings:
    """Runtime options consumed by the giveaway manager and its scheduler."""
    update_countdown_every: float = 5.0
    requirement_refresh_every: float = 500.0
    requirement_refresh_delay: float = 10.0
    defaults: GiveawayDefaults = field(default_factory=GiveawayDefaults)
    last_chance: LastChanceConfig = field(default_factory=LastChanceConfig)
    messages: GiveawayMessages = field(default_factory=GiveawayMessages)


@dataclass(slots=True)
class Config:
    token: str
    application_id: int
    storage_path: Path
    logging: LoggingConfig
    manager: ManagerSettings


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]

def _resolve_env_value(value: str, key: str) -> str:
    trimmed = value.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        env_name = trimmed[2:-1].strip()
        if not env_name:
            raise ConfigError(f"Environment reference for '{key}' is empty.")
        env_value = os.getenv(env_name)
        if env_value is None:
            raise ConfigError(
                f"Environment variable '{env_name}' referenced by '{key}' is not set."
            )
        return env_value
    return value


def parse_color(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer or a '#RRGGBB' string.")
    if isinstance(value, int):
        color = value
    elif isinstance(value, str):
        raw = value.strip().lstrip("#")
        if raw.lower().startswith("0x"):
            raw = raw[2:]
        try:
            color = int(raw, 16)
        except ValueError as exc:
            raise ConfigError(
                f"{key} must be an integer or a '#RRGGBB' string, got {value!r}."
            ) from exc
    else:
        raise ConfigError(f"{key} must be an integer or a '#RRGGBB' string.")
    if not 0 <= color <= 0xFFFFFF:
        raise ConfigError(f"{key} must be between 0x000000 and 0xFFFFFF.")
    return color


def _positive_number(data: Dict[str, Any], key: str, default: float, section: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{section}.{key} must be a positive number of seconds.")
    return float(value)


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"logging.level has an unknown value: {level!r}")
    return LoggingConfig(level=level)


def _parse_defaults(data: Dict[str, Any]) -> GiveawayDefaults:
    base = GiveawayDefaults()
    exempt_raw = data.get("exempt_permissions", [])
    if not isinstance(exempt_raw, list):
        raise ConfigError("defaults.exempt_permissions must be a list of permission names.")
    reaction = str(data.get("reaction", base.reaction)).strip()
    if not reaction:
        raise ConfigError("defaults.reaction must not be empty.")
    return GiveawayDefaults(
        reaction=reaction,
        bots_can_win=bool(data.get("bots_can_win", base.bots_can_win)),
        exempt_permissions=[str(name) for name in exempt_raw],
        embed_color=parse_color(data.get("embed_color", base.embed_color), "defaults.embed_color"),
        embed_color_end=parse_color(
            data.get("embed_color_end", base.embed_color_end), "defaults.embed_color_end"
        ),
    )


def _parse_last_chance(data: Dict[str, Any]) -> LastChanceConfig:
    base = LastChanceConfig()
    threshold = data.get("threshold_seconds", base.threshold_seconds)
    if not isinstance(threshold, int) or threshold <= 0:
        raise ConfigError("last_chance.threshold_seconds must be a positive integer.")
    return LastChanceConfig(
        enabled=bool(data.get("enabled", base.enabled)),
        threshold_seconds=threshold,
        title=str(data.get("title", base.title)),
        embed_color=parse_color(data.get("embed_color", base.embed_color), "last_chance.embed_color"),
    )


def _parse_manager(data: Dict[str, Any]) -> ManagerSettings:
    for section in ("manager", "defaults", "last_chance", "messages"):
        if not isinstance(data.get(section, {}), dict):
            raise ConfigError(f"{section} must be a mapping.")
    manager_raw = data.get("manager", {})
    try:
        messages = GiveawayMessages.from_payload(data.get("messages", {}))
    except TypeError as exc:
        raise ConfigError(f"messages are invalid: {exc}") from exc
    return ManagerSettings(
        update_countdown_every=_positive_number(
            manager_raw, "update_countdown_every", 5.0, "manager"
        ),
        requirement_refresh_every=_positive_number(
            manager_raw, "requirement_refresh_every", 500.0, "manager"
        ),
        requirement_refresh_delay=_positive_number(
            manager_raw, "requirement_refresh_delay", 10.0, "manager"
        ),
        defaults=_parse_defaults(data.get("defaults", {})),
        last_chance=_parse_last_chance(data.get("last_chance", {})),
        messages=messages,
    )


def load_config(path: Path) -> Config:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping at the root.")

    token_raw = str(_require(data, "token"))
    token = _resolve_env_value(token_raw, "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")
    try:
        application_id = int(_require(data, "application_id"))
    except (TypeError, ValueError) as exc:
        raise ConfigError("application_id must be an integer.") from exc
    storage_path = Path(str(data.get("storage_path", "data/giveaways.json")))
    logging_cfg = _parse_logging(data.get("logging", {}) or {})
    manager_cfg = _parse_manager(data)

    return Config(
        token=token,
        application_id=application_id,
        storage_path=storage_path,
        logging=logging_cfg,
        manager=manager_cfg,
    )
