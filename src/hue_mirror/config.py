from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import os


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _polling_interval(value: str) -> int:
    # Below 2 seconds the hub starts rejecting requests.
    return max(2, round(float(value)))


@dataclass(frozen=True)
class AppConfig:
    port: int
    bridge_host: Optional[str]
    bridge_port: int
    bridge_user: Optional[str]
    bridge_ssl: bool
    polling: bool
    polling_interval: int
    ignore_groups: bool
    ignore_scenes: bool
    ignore_osram: bool
    use_legacy_structure: bool
    native_turn_off_behaviour: bool
    turn_on_with_others: bool
    sync_software_sensors: bool
    push_enabled: bool
    push_reconnect_delay_seconds: float
    reconnect_delay_seconds: float
    write_lease_timeout_seconds: float
    auth_tokens: list[str]
    api_keys: list[str]
    retry_max_attempts: int
    retry_base_delay_ms: int
    db_path: str

    @staticmethod
    def from_env() -> "AppConfig":
        return AppConfig(
            port=int(os.getenv("PORT", "8000")),
            bridge_host=os.getenv("HUE_BRIDGE_HOST"),
            bridge_port=round(float(os.getenv("HUE_BRIDGE_PORT", "80"))),
            bridge_user=os.getenv("HUE_USER"),
            bridge_ssl=_env_flag("HUE_SSL"),
            polling=_env_flag("POLLING", True),
            polling_interval=_polling_interval(os.getenv("POLLING_INTERVAL", "5")),
            ignore_groups=_env_flag("IGNORE_GROUPS"),
            ignore_scenes=_env_flag("IGNORE_SCENES"),
            ignore_osram=_env_flag("IGNORE_OSRAM"),
            use_legacy_structure=_env_flag("USE_LEGACY_STRUCTURE"),
            native_turn_off_behaviour=_env_flag("NATIVE_TURN_OFF_BEHAVIOUR"),
            turn_on_with_others=_env_flag("TURN_ON_WITH_OTHERS"),
            sync_software_sensors=_env_flag("SYNC_SOFTWARE_SENSORS"),
            push_enabled=_env_flag("PUSH_ENABLED"),
            push_reconnect_delay_seconds=float(os.getenv("PUSH_RECONNECT_DELAY_SECONDS", "1")),
            reconnect_delay_seconds=float(os.getenv("RECONNECT_DELAY_SECONDS", "5")),
            write_lease_timeout_seconds=float(os.getenv("WRITE_LEASE_TIMEOUT_SECONDS", "10")),
            auth_tokens=_split_csv(os.getenv("GATEWAY_AUTH_TOKENS")),
            api_keys=_split_csv(os.getenv("GATEWAY_API_KEYS")),
            retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            retry_base_delay_ms=int(os.getenv("RETRY_BASE_DELAY_MS", "200")),
            db_path=os.getenv("DB_PATH", "/data/hue-mirror.db"),
        )
