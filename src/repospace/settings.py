"""
Centralized application settings.

The configuration is shared across the CLI, the HTTP API, and background jobs.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[attr-defined]

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Project-wide settings loaded from env or .env files."""

    model_config = SettingsConfigDict(
        env_prefix="REPOSPACE_",
        env_nested_delimiter="__",
        extra="allow",
        populate_by_name=True,
    )

    archive_root: Path = Path.home() / "RepoSpace"
    index_path: Optional[Path] = None
    default_category: str = "uncategorized"
    github_api_url: str = "https://api.github.com"
    github_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("REPOSPACE_GITHUB_TOKEN", "GITHUB_TOKEN", "github_token"),
    )
    request_timeout: float = 30.0
    search_per_page: int = 30
    max_files: Optional[int] = None
    api_key: Optional[str] = None
    api_host: str = "127.0.0.1"
    api_port: int = 8000


_CONFIG_ENV_VAR = "REPOSPACE_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path("repospace_settings.toml")


def _load_toml_config() -> Dict[str, Any]:
    """Load configuration from the primary TOML file on disk."""
    candidates: List[Path] = []
    config_override = os.getenv(_CONFIG_ENV_VAR)
    if config_override:
        candidates.append(Path(config_override))
    candidates.append(_DEFAULT_CONFIG_FILE)

    for candidate in candidates:
        if candidate.is_file():
            with candidate.open("rb") as handle:
                return tomllib.load(handle)
    return {}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _flatten_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Translate grouped TOML sections into AppSettings keyword arguments."""
    data: Dict[str, Any] = {}

    archive = raw.get("archive", {})
    if "root" in archive:
        data["archive_root"] = Path(archive["root"]).expanduser()
    if "index_path" in archive:
        index_path = _blank_to_none(archive["index_path"])
        data["index_path"] = Path(index_path).expanduser() if index_path else None
    if "default_category" in archive:
        data["default_category"] = archive["default_category"]

    github = raw.get("github", {})
    if github:
        if "api_url" in github:
            data["github_api_url"] = github["api_url"]
        if "token" in github:
            data["github_token"] = _blank_to_none(github["token"])
        if "request_timeout" in github:
            data["request_timeout"] = float(github["request_timeout"])
        if "search_per_page" in github:
            data["search_per_page"] = int(github["search_per_page"])
        if "max_files" in github:
            data["max_files"] = _blank_to_none(github["max_files"])

    api_section = raw.get("api", {})
    if api_section:
        if "host" in api_section:
            data["api_host"] = api_section["host"]
        if "port" in api_section:
            data["api_port"] = int(api_section["port"])

    general = raw.get("general", {})
    if "api_key" in general:
        data["api_key"] = _blank_to_none(general["api_key"])

    return data


def load_settings() -> AppSettings:
    raw = _load_toml_config()
    flattened = _flatten_config(raw)
    return AppSettings(**flattened)


settings = load_settings()
