from __future__ import annotations

import os
import tempfile
import tomllib
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable

from .config import ProxyConfig

CONFIG_FILE_ENV = "COPILOT_PROXY_CONFIG_FILE"
API_KEY_ENV_VARS = ("ZAI_API_KEY", "ZAI_CODING_API_KEY", "GLM_API_KEY")

_SECTION_MAP: dict[str, list[str]] = {
    "upstream": ["api_key", "base_url"],
    "server": ["host", "port", "debug", "verbose"],
    "pool": [
        "max_idle_connections_per_host",
        "idle_connection_timeout_s",
        "connect_timeout_s",
        "header_timeout_s",
    ],
    "relay": ["relay_chunk_bytes"],
}


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_FILE_ENV)
    if override:
        return Path(override).expanduser()
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home).expanduser() / "copilot-proxy" / "config.toml"
    return Path.home() / ".config" / "copilot-proxy" / "config.toml"


def _field_types() -> dict[str, Any]:
    return {f.name: f.type for f in fields(ProxyConfig)}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def _coerce_float(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return float(str(value).strip())


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _coerce_optional(value: Any, caster: Callable[[Any], Any]) -> Any:
    if value in ("", None):
        return None
    return caster(value)


_CASTERS: dict[str, Callable[[Any], Any]] = {
    "bool": _coerce_bool,
    "int": _coerce_int,
    "float": _coerce_float,
    "str": _coerce_str,
}


def _coerce_value(field_type: Any, value: Any) -> Any:
    # Annotations are strings under ``from __future__ import annotations``.
    type_name = str(field_type).replace(" ", "")
    if type_name.startswith("Optional[") and type_name.endswith("]"):
        caster = _CASTERS.get(type_name[len("Optional[") : -1])
        if caster:
            return _coerce_optional(value, caster)
        return value
    caster = _CASTERS.get(type_name)
    if caster:
        return caster(value)
    return value


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section, {})
        if not isinstance(section_values, dict):
            continue
        for key in keys:
            if key in section_values:
                out[key] = section_values[key]
    return out


ENV_VAR_NAMES: dict[str, tuple[str, ...]] = {
    "api_key": API_KEY_ENV_VARS,
    "base_url": ("ZAI_BASE_URL",),
    "host": ("ZAI_HOST",),
    "port": ("ZAI_PORT",),
    "debug": ("ZAI_DEBUG",),
    "verbose": ("ZAI_VERBOSE",),
    "max_idle_connections_per_host": ("ZAI_MAX_IDLE_CONNS_PER_HOST",),
    "idle_connection_timeout_s": ("ZAI_IDLE_CONN_TIMEOUT_S",),
    "connect_timeout_s": ("ZAI_CONNECT_TIMEOUT_S",),
    "header_timeout_s": ("ZAI_HEADER_TIMEOUT_S",),
    "relay_chunk_bytes": ("ZAI_RELAY_CHUNK_BYTES",),
}


def env_source(key: str) -> str | None:
    """Name of the environment variable that overrides ``key``, if any."""

    for name in ENV_VAR_NAMES.get(key, ()):
        if os.environ.get(name):
            return name
    return None


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    for key in ENV_VAR_NAMES:
        name = env_source(key)
        if name is None:
            continue
        try:
            config[key] = _coerce_value(field_types[key], os.environ[name])
        except (TypeError, ValueError):
            # Unusable values leave the file or default value in place.
            continue
    return config


def _default_config_dict() -> dict[str, Any]:
    data = asdict(ProxyConfig())
    data.pop("config_file_path", None)
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    normalized = {}
    for key, default_value in _default_config_dict().items():
        value = config.get(key, default_value)
        try:
            normalized[key] = _coerce_value(field_types.get(key), value)
        except (TypeError, ValueError):
            normalized[key] = default_value
    if normalized["relay_chunk_bytes"] <= 0:
        normalized["relay_chunk_bytes"] = ProxyConfig.relay_chunk_bytes
    return normalized


def load_file_config(path: Path | None = None) -> dict[str, Any]:
    base = _default_config_dict()
    base.update(_read_config_file(Path(path or default_config_path()).expanduser()))
    return _normalize(base)


def load_proxy_config(path: Path | None = None) -> ProxyConfig:
    """Resolve configuration: environment > config file > defaults."""

    candidate = Path(path or default_config_path()).expanduser()
    normalized = _normalize(_read_config_file(candidate))
    normalized = _apply_env_overrides(normalized)
    cfg = ProxyConfig(**normalized)
    cfg.config_file_path = str(candidate)
    return cfg


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return '""'
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _ordered_sections(values: dict[str, Any]) -> dict[str, dict[str, Any]]:
    sections: dict[str, dict[str, Any]] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = {key: values[key] for key in keys if key in values}
        if section_values:
            sections[section] = section_values
    return sections


def write_config(config: ProxyConfig, path: Path | None = None) -> Path:
    path = Path(path or default_config_path()).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    values = asdict(config)
    values.pop("config_file_path", None)
    lines: list[str] = [
        "# copilot-proxy configuration.",
        "# Environment variables (ZAI_*) take precedence over these values.",
    ]
    for section, section_values in _ordered_sections(values).items():
        lines.append("")
        lines.append(f"[{section}]")
        for key, value in section_values.items():
            lines.append(f"{key} = {_format_value(value)}")

    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix="copilot_proxy_config_", suffix=".toml", dir=path.parent
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        os.chmod(tmp_path, 0o600)
        Path(tmp_path).replace(path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
    return path


def update_config_file(updates: dict[str, Any], path: Path | None = None) -> ProxyConfig:
    """Merge ``updates`` into the config file and return the reloaded config."""

    path = Path(path or default_config_path()).expanduser()
    base = _default_config_dict()
    base.update(_read_config_file(path))

    unknown = [key for key in updates if key not in base]
    if unknown:
        raise KeyError(f"Unknown configuration field(s): {', '.join(sorted(unknown))}")

    base.update(updates)
    write_config(ProxyConfig(**_normalize(base)), path)
    return load_proxy_config(path)

