"""Settings resolution with 5-step precedence chain and named workspace profiles."""

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path

import tomlkit
import typer
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pgmt.errors import ConfigError

CONFIG_PATH = Path.home() / ".config" / "pgmt" / "config.toml"
DEFAULT_STORE_PATH = Path.home() / ".local" / "share" / "pgmt" / "issues.json"
STORES = ("json", "memory")


class PgmtSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PGMT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_workspace: str | None = None  # profile name

    # Record store
    store: str = "json"  # "json" | "memory"
    store_path: Path = DEFAULT_STORE_PATH
    default_project: str | None = None  # project key used when --project is omitted

    # Engine limits
    max_walk_steps: int = Field(default=64, ge=1)
    key_max_attempts: int = Field(default=16, ge=1)

    log_level: str = "WARNING"


@lru_cache(maxsize=4)
def _read_config(path: Path) -> tomlkit.TOMLDocument:
    if not path.exists():
        return tomlkit.document()
    with path.open() as fh:
        return tomlkit.load(fh)


def _list_profiles(config: Mapping) -> list[str]:
    # tomlkit Table implements MutableMapping but not dict, so check Mapping
    return [k for k, v in config.items() if isinstance(v, Mapping)]


def _active_workspace(workspace: str | None, config: Mapping) -> str | None:
    named = workspace or os.environ.get("PGMT_DEFAULT_WORKSPACE") or config.get("default_workspace")
    if named:
        return named
    # A store path pinned by the environment or ./.env means "no profile".
    if "store_path" in PgmtSettings().model_fields_set:
        return None
    profiles = _list_profiles(config)
    return profiles[0] if profiles else None


def get_settings(workspace: str | None = None) -> PgmtSettings:
    """Resolve the active workspace profile and return a fully populated PgmtSettings.

    Precedence (highest to lowest):
    1. workspace argument (--workspace CLI flag)
    2. PGMT_DEFAULT_WORKSPACE env var
    3. default_workspace key in ~/.config/pgmt/config.toml
    4. PGMT_STORE_PATH from the environment or .env in cwd (no profile)
    5. First profile defined in ~/.config/pgmt/config.toml
    """
    config = _read_config(CONFIG_PATH)
    active = _active_workspace(workspace, config)

    profile: Mapping = {}
    if active:
        profile = config.get(active)
        if not isinstance(profile, Mapping):
            available = _list_profiles(config) or "(none)"
            typer.echo(f"Workspace '{active}' not found in {CONFIG_PATH}. Available: {available}")
            raise typer.Exit(1)

    # Profile values are init kwargs, so they win; env vars + .env fill whatever the profile omits
    settings = PgmtSettings(**dict(profile))

    if settings.store not in STORES:
        typer.echo(f"Unknown store '{settings.store}' in [{active or 'env'}]. Valid: {', '.join(STORES)}")
        raise typer.Exit(1)

    return settings


def save_default_workspace(workspace: str) -> Path:
    """Record ``workspace`` as default_workspace in the config file and return its path.

    A missing file is created. An existing file must already define the profile.
    """
    if CONFIG_PATH.exists():
        doc = _read_config(CONFIG_PATH)
        profiles = _list_profiles(doc)
        if workspace not in profiles:
            raise ConfigError(f"Workspace '{workspace}' not found in {CONFIG_PATH}. Available: {profiles or '(none)'}")
    else:
        CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        doc = tomlkit.document()

    doc["default_workspace"] = workspace
    CONFIG_PATH.write_text(tomlkit.dumps(doc))
    _read_config.cache_clear()
    return CONFIG_PATH
