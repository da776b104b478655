"""Key-construction primitive.

A ``KeyBuilder`` folds the encoded request into a compact, deterministic
prefix plus a human-readable debug string. The result object owns transient
buffers and must be released once the strings are copied out; use it as a
context manager so release happens on every exit path.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

from compkey.config import KeyConfig, load_config
from compkey.encoding import ConfigEncoding
from compkey.exceptions import KeyConstructionError
from compkey.utils.logging import configure_module_logger

logger = configure_module_logger(__name__, level=logging.INFO)

_DIGEST_SIZES = {"blake2b": 16, "sha256": 32}


class CacheKeyProperty(BaseModel):
    """Everything the key-construction primitive folds into a key."""

    config_prefix: str
    shapes_prefix: str
    function_name: str
    program_body: Any
    device_ids: list[int] = Field(default_factory=list)
    guaranteed_constants_size: int = 0
    function_library_fingerprint: int = 0
    num_cores_per_replica: int = 1
    num_replicas: int = 1
    mesh_state: bytes = b""

    model_config = {"frozen": True}


class KeyBuildResult:
    """Prefix and debug string produced by a ``KeyBuilder``.

    Reading either string after ``release()`` raises ``KeyConstructionError``.
    """

    def __init__(self, key: str, debug_string: str) -> None:
        self._key: Optional[str] = key
        self._debug_string: Optional[str] = debug_string

    @property
    def released(self) -> bool:
        return self._key is None

    @property
    def key(self) -> str:
        if self._key is None:
            raise KeyConstructionError("Key buffer read after release")
        return self._key

    @property
    def debug_string(self) -> str:
        if self._debug_string is None:
            raise KeyConstructionError("Debug string buffer read after release")
        return self._debug_string

    def release(self) -> None:
        self._key = None
        self._debug_string = None

    def __enter__(self) -> "KeyBuildResult":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


class KeyBuilder(ABC):
    """Interface of the deterministic key-construction primitive.

    Implementations must map equal properties to equal keys across processes
    and runs.
    """

    config_encoding: ConfigEncoding = "legacy"

    @abstractmethod
    def build(self, prop: CacheKeyProperty) -> KeyBuildResult:
        """Fold *prop* into a key.

        Args:
            prop: Encoded request.

        Returns:
            A result that the caller must release.

        Raises:
            KeyConstructionError: If the request cannot be keyed.
        """
        ...


def _program_bytes(prop: CacheKeyProperty) -> bytes:
    body = prop.program_body
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    raise KeyConstructionError(
        f"Program body must be str or bytes-like, got {type(body).__name__}",
        function_name=prop.function_name,
    )


def _frame(data: bytes) -> bytes:
    return len(data).to_bytes(8, "little") + data


class DefaultKeyBuilder(KeyBuilder):
    """Hash-based key builder.

    The prefix is ``<function_name>_<digest>`` where the digest covers every
    field of the property, each length-framed so adjacent fields cannot run
    into each other.
    """

    def __init__(self, config: Optional[KeyConfig] = None) -> None:
        self.config = config or KeyConfig()
        self.config_encoding = self.config.config_encoding

    def _new_digest(self) -> Any:
        if self.config.hash_algorithm == "sha256":
            return hashlib.sha256()
        return hashlib.blake2b(digest_size=_DIGEST_SIZES["blake2b"])

    def build(self, prop: CacheKeyProperty) -> KeyBuildResult:
        for name in ("guaranteed_constants_size", "num_cores_per_replica", "num_replicas"):
            if getattr(prop, name) < 0:
                raise KeyConstructionError(
                    f"{name} must be non-negative, got {getattr(prop, name)}",
                    function_name=prop.function_name,
                )

        program = _program_bytes(prop)
        program_fingerprint = hashlib.blake2b(program, digest_size=8).hexdigest()
        device_ids = ",".join(str(d) for d in prop.device_ids)

        digest = self._new_digest()
        for field in (
            prop.config_prefix.encode("utf-8"),
            prop.shapes_prefix.encode("utf-8"),
            prop.function_name.encode("utf-8"),
            program,
            device_ids.encode("ascii"),
            str(prop.guaranteed_constants_size).encode("ascii"),
            str(prop.function_library_fingerprint).encode("ascii"),
            str(prop.num_cores_per_replica).encode("ascii"),
            str(prop.num_replicas).encode("ascii"),
            prop.mesh_state,
        ):
            digest.update(_frame(field))

        key = f"{prop.function_name}_{digest.hexdigest()}"
        debug_string = (
            f"function={prop.function_name} "
            f"library_fingerprint={prop.function_library_fingerprint} "
            f"program_fingerprint={program_fingerprint} "
            f"config_prefix={prop.config_prefix!r} "
            f"shapes_prefix={prop.shapes_prefix!r} "
            f"device_ids=[{device_ids}] "
            f"guaranteed_constants={prop.guaranteed_constants_size} "
            f"num_cores_per_replica={prop.num_cores_per_replica} "
            f"num_replicas={prop.num_replicas}"
        )
        return KeyBuildResult(key=key, debug_string=debug_string)


def create_key_builder(config: KeyConfig) -> KeyBuilder:
    """Create the key builder described by *config*."""
    logger.debug(
        f"Creating DefaultKeyBuilder ({config.hash_algorithm}, "
        f"{config.config_encoding} config encoding)"
    )
    return DefaultKeyBuilder(config)


_BUILDER_INSTANCE: Optional[KeyBuilder] = None


def get_key_builder() -> KeyBuilder:
    """Return the process-wide key builder, created from ``load_config()``."""
    global _BUILDER_INSTANCE

    if _BUILDER_INSTANCE is None:
        _BUILDER_INSTANCE = create_key_builder(load_config())
    return _BUILDER_INSTANCE


def reset_key_builder() -> None:
    """Drop the process-wide key builder so the next call reloads config."""
    global _BUILDER_INSTANCE
    _BUILDER_INSTANCE = None
