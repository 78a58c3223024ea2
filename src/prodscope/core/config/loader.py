"""
Configuration loader for YAML files.

Loads and validates application config, origin policies and recipes from
YAML files into Pydantic models.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from prodscope.core.normalize.urls import normalize_origin

from .models import AppConfig, OriginPolicy, OriginPolicyTable, Recipe

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    def __init__(self, message: str, path: Path | None = None, details: str | None = None):
        self.path = path
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.details:
            return f"{message}: {self.details}"
        return message


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dictionary.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML contents

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}", path=path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}", path=path, details=str(e)) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}", path=path, details=str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}", path=path)
    return data


def _expand_env_vars(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand environment variables in string values.

    Supports ${VAR} and ${VAR:-default} syntax.
    """

    def replacer(match: re.Match[str]) -> str:
        return os.environ.get(match.group(1), match.group(2) or "")

    def expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_PATTERN.sub(replacer, value)
        if isinstance(value, dict):
            return {k: expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [expand_value(item) for item in value]
        return value

    return expand_value(data)


def _format_validation_error(error: ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        messages.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    return messages


# =============================================================================
# Application Config
# =============================================================================


def load_app_config(
    path: Path | str | None = None,
    expand_env: bool = True,
) -> AppConfig:
    """Load application configuration from YAML file.

    Args:
        path: Path to app.yaml (default: configs/app.yaml)
        expand_env: Whether to expand environment variables

    Returns:
        Validated AppConfig instance (defaults if the file does not exist)

    Raises:
        ConfigError: If configuration is invalid
    """
    path = Path("configs/app.yaml") if path is None else Path(path)

    if not path.exists():
        return AppConfig()

    data = _load_yaml_file(path)
    if expand_env:
        data = _expand_env_vars(data)

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid app configuration in {path}",
            path=path,
            details="; ".join(_format_validation_error(e)),
        ) from e


# =============================================================================
# Origin Policies
# =============================================================================


def _build_policy(hostname: str, data: dict[str, Any] | None, defaults: OriginPolicy) -> OriginPolicy:
    merged = {**defaults.model_dump(exclude={"hostname"}, exclude_none=True), **(data or {})}
    merged["hostname"] = normalize_origin(hostname)
    return OriginPolicy.model_validate(merged)


def load_origin_policies(
    app_config: AppConfig,
    path: Path | str | None = None,
    expand_env: bool = True,
) -> OriginPolicyTable:
    """Load per-origin policies and freeze them for the run.

    Entries from the origins file override inline ``origins`` from app.yaml.
    Missing keys fall back to the global timeouts.

    Args:
        app_config: Application config supplying defaults and inline policies
        path: Origins YAML file (default: ``app_config.origins_file``)
        expand_env: Whether to expand environment variables

    Returns:
        Read-only policy table

    Raises:
        ConfigError: If any policy is invalid
    """
    defaults = app_config.default_origin_policy()
    raw: dict[str, Any] = {
        host: policy.model_dump(exclude={"hostname"}, exclude_unset=True)
        for host, policy in app_config.origins.items()
    }

    file_path = Path(path) if path is not None else app_config.origins_file
    if file_path is not None and file_path.exists():
        data = _load_yaml_file(file_path)
        if expand_env:
            data = _expand_env_vars(data)
        origins = data.get("origins", data)
        if not isinstance(origins, dict):
            raise ConfigError(f"Expected a hostname mapping in {file_path}", path=file_path)
        for host, entry in origins.items():
            raw[host] = {**raw.get(host, {}), **(entry or {})}

    policies: dict[str, OriginPolicy] = {}
    for host, entry in raw.items():
        try:
            policies[normalize_origin(host)] = _build_policy(host, entry, defaults)
        except ValidationError as e:
            raise ConfigError(
                f"Invalid origin policy for {host}",
                path=file_path,
                details="; ".join(_format_validation_error(e)),
            ) from e

    logger.debug(f"Loaded {len(policies)} origin policies")
    return OriginPolicyTable(policies, default=defaults)


# =============================================================================
# Recipes
# =============================================================================


def load_recipe(path: Path | str, expand_env: bool = True) -> Recipe:
    """Load one recipe file, compiling its assertions.

    Raises:
        ConfigError: If the recipe or any assertion is invalid
    """
    path = Path(path)
    data = _load_yaml_file(path)
    if expand_env:
        data = _expand_env_vars(data)

    try:
        return Recipe.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid recipe in {path}",
            path=path,
            details="; ".join(_format_validation_error(e)),
        ) from e


def load_all_recipes(
    recipes_dir: Path | str | None = None,
    expand_env: bool = True,
) -> dict[str, Recipe]:
    """Load every recipe in a directory, keyed by normalized domain.

    Files starting with ``_`` are ignored.

    Raises:
        ConfigError: If any recipe is invalid or two recipes claim one domain
    """
    recipes_dir = Path("configs/recipes") if recipes_dir is None else Path(recipes_dir)
    if not recipes_dir.exists():
        return {}

    recipes: dict[str, Recipe] = {}
    files = sorted([*recipes_dir.glob("*.yaml"), *recipes_dir.glob("*.yml")])
    for recipe_file in files:
        if recipe_file.name.startswith("_"):
            continue
        recipe = load_recipe(recipe_file, expand_env=expand_env)
        if recipe.domain in recipes:
            raise ConfigError(
                f"Duplicate recipe for {recipe.domain}",
                path=recipe_file,
            )
        recipes[recipe.domain] = recipe

    logger.debug(f"Loaded {len(recipes)} recipes from {recipes_dir}")
    return recipes


def validate_recipe_file(path: Path | str) -> list[str]:
    """Validate a recipe file without raising.

    Args:
        path: Path to recipe YAML file

    Returns:
        List of validation error messages (empty if valid)
    """
    path = Path(path)
    if not path.exists():
        return [f"File not found: {path}"]

    try:
        data = _load_yaml_file(path)
    except ConfigError as e:
        return [str(e)]

    try:
        Recipe.model_validate(data)
    except ValidationError as e:
        return _format_validation_error(e)
    return []
