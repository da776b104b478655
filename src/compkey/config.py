"""Configuration for cache-key derivation.

Settings are resolved with the following priority (highest to lowest):
1. Runtime Parameters (passed directly to ``load_config``)
2. Environment Variables (prefixed with COMPKEY_)
3. Project Config ([tool.compkey] in pyproject.toml)
4. Defaults (hardcoded fallbacks)

Changing ``hash_algorithm`` or ``config_encoding`` changes every derived key,
so all processes sharing one artifact cache must agree on them.
"""

import os
import sys
from pathlib import Path
from typing import Any, Iterator, Literal, Optional

from pydantic import BaseModel, Field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


class KeyConfig(BaseModel):
    """Settings consumed by the default key builder."""

    hash_algorithm: Literal["blake2b", "sha256"] = Field(
        default="blake2b",
        description="Digest used to compact the key prefix",
    )

    config_encoding: Literal["legacy", "length_prefixed"] = Field(
        default="legacy",
        description=(
            "Argument-config encoding: 'legacy' keeps the historical layout, "
            "'length_prefixed' guards dtype tags containing separators"
        ),
    )

    verbose: bool = Field(
        default=False,
        description="Log intermediate prefixes at DEBUG level",
    )

    model_config = {
        "extra": "forbid",
    }


ENV_PREFIX = "COMPKEY_"

_TRUTHY = frozenset({"true", "1", "yes", "on"})


def _find_pyproject(start: Path) -> Iterator[Path]:
    """Yield every pyproject.toml from *start* up to the filesystem root."""
    for directory in (start, *start.parents):
        candidate = directory / "pyproject.toml"
        if candidate.is_file():
            yield candidate


def _load_from_pyproject_toml(start: Optional[Path] = None) -> dict[str, Any]:
    """Return the nearest ``[tool.compkey]`` table above *start* (default: cwd).

    Unreadable or malformed files are skipped; an empty dict means no table.
    """
    for candidate in _find_pyproject(start or Path.cwd()):
        try:
            with candidate.open("rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError):
            continue
        table = data.get("tool", {}).get("compkey")
        if table is not None:
            return dict(table)
    return {}


def _load_from_env() -> dict[str, Any]:
    """Collect ``COMPKEY_<FIELD>`` overrides for the fields of ``KeyConfig``."""
    config: dict[str, Any] = {}
    for name, field in KeyConfig.model_fields.items():
        raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        if field.annotation is bool:
            config[name] = raw.strip().lower() in _TRUTHY
        else:
            config[name] = raw
    return config


def load_config(
    hash_algorithm: Optional[str] = None,
    config_encoding: Optional[str] = None,
    verbose: Optional[bool] = None,
    **kwargs: Any,
) -> KeyConfig:
    """Load configuration with hierarchical priority.

    Args:
        hash_algorithm: Digest used by the default key builder.
        config_encoding: Argument-config encoding variant.
        verbose: Enable DEBUG logging of key derivation.
        **kwargs: Additional configuration parameters.

    Returns:
        KeyConfig instance with merged configuration.

    Raises:
        pydantic.ValidationError: If a merged value is not allowed.
    """
    default_config = KeyConfig()
    file_config = _load_from_pyproject_toml()
    env_config = _load_from_env()

    runtime_config: dict[str, Any] = {}
    if hash_algorithm is not None:
        runtime_config["hash_algorithm"] = hash_algorithm
    if config_encoding is not None:
        runtime_config["config_encoding"] = config_encoding
    if verbose is not None:
        runtime_config["verbose"] = verbose
    runtime_config.update(kwargs)

    merged_config = default_config.model_dump()
    merged_config.update(file_config)
    merged_config.update(env_config)
    merged_config.update(runtime_config)

    return KeyConfig(**merged_config)
