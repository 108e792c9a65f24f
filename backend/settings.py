from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from engagement_core.errors import ConfigurationError

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TRUE_VALUES = {"1", "true", "yes", "on"}


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    return int(_env_float(name, float(default), minimum=float(minimum)))


def _env_list(name: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in os.getenv(name, "").split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    db_path: str
    context_ttl_seconds: float = 30.0
    low_confidence_threshold: float = 0.6
    classification_timeout_seconds: float = 20.0
    classification_provider: str = "auto"
    disable_external_calls: bool = False
    messaging_gateway_url: str = ""
    messaging_gateway_token: str = ""
    staff_alert_recipients: tuple[str, ...] = field(default_factory=tuple)
    email_alerts_enabled: bool = False
    access_rate_limit_max: int = 10
    access_rate_limit_window_seconds: float = 300.0
    log_level: str = "INFO"
    json_logs: bool = True

    @classmethod
    def from_env(cls) -> Settings:
        default_db = str(Path(__file__).resolve().parent / "engagement.sqlite")
        threshold = _env_float("ENGAGE_LOW_CONFIDENCE_THRESHOLD", 0.6)
        if threshold > 1.0:
            raise ConfigurationError("ENGAGE_LOW_CONFIDENCE_THRESHOLD must be within [0, 1]")
        return cls(
            db_path=os.getenv("ENGAGE_DB_PATH", default_db),
            context_ttl_seconds=_env_float("ENGAGE_CONTEXT_TTL_SECONDS", 30.0),
            low_confidence_threshold=threshold,
            classification_timeout_seconds=_env_float("ENGAGE_CLASSIFICATION_TIMEOUT_SECONDS", 20.0, minimum=1.0),
            classification_provider=(os.getenv("ENGAGE_CLASSIFICATION_PROVIDER") or "auto").strip().lower(),
            disable_external_calls=_env_flag("ENGAGE_DISABLE_EXTERNAL_CALLS"),
            messaging_gateway_url=(os.getenv("ENGAGE_MESSAGING_GATEWAY_URL") or "").strip().rstrip("/"),
            messaging_gateway_token=(os.getenv("ENGAGE_MESSAGING_GATEWAY_TOKEN") or "").strip(),
            staff_alert_recipients=_env_list("ENGAGE_STAFF_ALERT_RECIPIENTS"),
            email_alerts_enabled=_env_flag("ENGAGE_EMAIL_ALERTS_ENABLED"),
            access_rate_limit_max=_env_int("ENGAGE_ACCESS_RATE_LIMIT_MAX", 10, minimum=1),
            access_rate_limit_window_seconds=_env_float("ENGAGE_ACCESS_RATE_LIMIT_WINDOW_SECONDS", 300.0, minimum=1.0),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
            json_logs=_env_flag("ENGAGE_JSON_LOGS", "true"),
        )
