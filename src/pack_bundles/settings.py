from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pack_bundles.config import DEFAULT_CHUNK_SIZE, DEFAULT_EXTENSIONS, DEFAULT_OUT_DIR, ExtensionFilter, split_csv
from pack_bundles.exceptions import SettingsError

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_FILE = find_dotenv(usecwd=True)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def default_workers() -> int:
    """Number of available processing units, or 4 when it cannot be determined.

    Returns:
        int: the default worker count
    """
    return os.cpu_count() or 4


class Settings(BaseModel):
    """Configuration settings for the pack command."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    source_dir: Path = Field(default=Path(), description="Source directory to bundle.")
    out_dir: Path = Field(default=Path(DEFAULT_OUT_DIR), description="Output directory.")
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0, description="Bundle capacity in bytes.")
    extensions: ExtensionFilter = Field(
        default_factory=lambda: ExtensionFilter.parse(DEFAULT_EXTENSIONS),
        description="Accepted file extensions.",
    )
    trim: bool = Field(default=False, description="Trim trailing whitespace on each line.")
    exclude: list[str] = Field(default_factory=list, description="Directory names to exclude.")
    workers: int = Field(default_factory=default_workers, ge=1, description="Parallel workers.")
    no_git: bool = Field(default=False, description="Do not use git ls-files.")
    log_file: str = Field(default="", description="Log file path.")

    @field_validator("extensions", mode="before")
    @classmethod
    def parse_extensions(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, (str, list, tuple, set, frozenset)):
            return ExtensionFilter.parse(value)
        return value

    @field_validator("exclude", mode="before")
    @classmethod
    def parse_exclude(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, (str, list, tuple)):
            return [item.strip("/") for item in split_csv(value)]
        return value


class CollectSettings(BaseModel):
    """Configuration settings for the collect command."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    source_dir: Path = Field(default=Path(), description="Directory to collect from.")
    dest_dir: Path = Field(..., description="Flat destination directory.")
    extensions: ExtensionFilter = Field(..., description="Accepted file extensions.")
    as_txt: bool = Field(default=False, description="Rename copies to .txt.")
    log_file: str = Field(default="", description="Log file path.")

    @field_validator("extensions", mode="before")
    @classmethod
    def parse_extensions(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, (str, list, tuple, set, frozenset)):
            return ExtensionFilter.parse(value)
        return value


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load settings overrides from a YAML mapping.

    Keys are ``Settings`` field names; dashes are accepted in place of underscores.

    Args:
        path (str | Path): the YAML file to read

    Raises:
        SettingsError: if the file cannot be read, is not valid YAML, or is not a mapping

    Returns:
        dict[str, Any]: the overrides found in the file
    """
    p = Path(path)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise SettingsError(message=f"Cannot load config file {p}: {e}") from e
    if not isinstance(data, dict):
        raise SettingsError(message=f"Config file {p} must contain a mapping.")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def env_overrides(environ: Mapping[str, str] | None = None, env_file: str | None = None) -> dict[str, Any]:
    """Read the environment-style options.

    Recognized variables: ``PACK_EXTS`` (comma list), ``PACK_TRIM`` (1/true/yes),
    ``PACK_EXCLUDE`` (comma list) and ``PACK_WORKERS`` (int). Values from the
    process environment win over values from the ``.env`` file.

    Args:
        environ (Mapping[str, str] | None): the environment, defaults to ``os.environ``
        env_file (str | None): the dotenv file, defaults to the one found from the cwd

    Raises:
        SettingsError: if ``PACK_WORKERS`` is not an integer

    Returns:
        dict[str, Any]: the overrides, keyed by ``Settings`` field names
    """
    env_file = ENV_FILE if env_file is None else env_file
    merged: dict[str, str] = {}
    if env_file:
        merged.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    merged.update(os.environ if environ is None else environ)

    out: dict[str, Any] = {}
    if merged.get("PACK_EXTS"):
        out["extensions"] = merged["PACK_EXTS"]
    if merged.get("PACK_TRIM"):
        out["trim"] = merged["PACK_TRIM"].strip().lower() in _TRUE_VALUES
    if merged.get("PACK_EXCLUDE"):
        out["exclude"] = merged["PACK_EXCLUDE"]
    if merged.get("PACK_WORKERS"):
        try:
            out["workers"] = int(merged["PACK_WORKERS"])
        except ValueError as e:
            raise SettingsError(message=f"PACK_WORKERS must be an integer, got {merged['PACK_WORKERS']!r}") from e
    return out


def build_settings(
    cli_values: Mapping[str, Any],
    *,
    config_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    env_file: str | None = None,
) -> Settings:
    """Merge defaults, config file, environment and command line into ``Settings``.

    Command line values set to None are treated as "not given".

    Raises:
        SettingsError: if the merged values do not validate

    Returns:
        Settings: the validated settings
    """
    values: dict[str, Any] = {}
    if config_file:
        values.update(load_config_file(config_file))
    values.update(env_overrides(environ, env_file))
    values.update({k: v for k, v in cli_values.items() if v is not None})
    try:
        return Settings(**values)
    except ValidationError as e:
        raise SettingsError(message=f"Invalid settings: {e}") from e
