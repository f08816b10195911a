from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import DEFAULT_PORT, SLOW_CLIENT_POLICIES


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    # 0 writes synchronously under the session write lock (no bound).
    outbound_queue_size: int = 256
    slow_client_policy: str = "disconnect"
    accept_poll_interval_s: float = 0.5
    writer_join_timeout_s: float = 1.0
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None
    # Per-component overrides, e.g. (("session", "DEBUG"),) for chatrelayd.session.
    log_levels: tuple[tuple[str, str], ...] = ()


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: RelayRuntimeConfig, data: Any) -> RelayRuntimeConfig:
    if not isinstance(data, dict):
        raise ValueError("config must be a TOML table")

    relay = data.get("relay")
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "console", "file", "format", "datefmt", "levels"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # The path the config was read from is set by the caller, never by the file.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in ("log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None

    try:
        for key in ("port", "outbound_queue_size"):
            if key in updates:
                updates[key] = int(updates[key])
        for key in ("accept_poll_interval_s", "writer_join_timeout_s"):
            if key in updates:
                updates[key] = float(updates[key])
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid config value: {e}") from e

    if "log_console" in updates:
        updates["log_console"] = bool(updates["log_console"])

    if "log_levels" in updates:
        levels = updates["log_levels"]
        if not isinstance(levels, dict):
            raise ValueError("[logging.levels] must be a table of component = level")
        updates["log_levels"] = tuple((str(k), str(v)) for k, v in sorted(levels.items()))

    cfg = replace(cfg, **updates) if updates else cfg
    validate_config(cfg)
    return cfg


def load_config_file(cfg: RelayRuntimeConfig, path: str) -> RelayRuntimeConfig:
    cfg = apply_config_data(cfg, load_toml(path))
    return replace(cfg, config_path=path)


def validate_config(cfg: RelayRuntimeConfig) -> None:
    if not 0 <= int(cfg.port) <= 65535:
        raise ValueError(f"port out of range: {cfg.port}")
    if int(cfg.outbound_queue_size) < 0:
        raise ValueError("outbound_queue_size must be >= 0")
    if cfg.slow_client_policy not in SLOW_CLIENT_POLICIES:
        raise ValueError(
            f"slow_client_policy must be one of {', '.join(SLOW_CLIENT_POLICIES)}"
        )
    if float(cfg.accept_poll_interval_s) <= 0:
        raise ValueError("accept_poll_interval_s must be > 0")
