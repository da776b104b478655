"""Compilation cache key assembly.

``create_compilation_cache_key`` combines function identity, the serialized
program, the argument and shape encodings and the device topology into a
``CacheKey``. When guaranteed constants are present, the key also carries the
session handle and a deferred fingerprint over those constants.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Union

from compkey.builder import CacheKeyProperty, KeyBuilder, get_key_builder
from compkey.encoding import create_config_prefix, create_shape_prefix
from compkey.fingerprint import GuaranteedConstFingerprinter, RollingHash
from compkey.types import CacheKey, CompileMetadata, MeshState, TensorShape
from compkey.utils.logging import configure_module_logger

logger = configure_module_logger(__name__, level=logging.INFO)

ProgramBody = Union[str, bytes]


def create_compilation_cache_key(
    function_name: str,
    function_library_fingerprint: int,
    program_body: ProgramBody,
    guaranteed_constants: Optional[Sequence[Any]],
    guaranteed_constants_size: int,
    dynamic_shapes: Sequence[TensorShape],
    metadata: CompileMetadata,
    mesh_state: Optional[MeshState] = None,
    *,
    builder: Optional[KeyBuilder] = None,
    rolling_hash: Optional[RollingHash] = None,
) -> CacheKey:
    """Derive the cache key for one compilation request.

    The returned key borrows ``metadata`` and ``guaranteed_constants`` for its
    deferred constants fingerprint. Both must outlive the key and stay
    unmodified while it is in use.

    Args:
        function_name: Name of the function being compiled.
        function_library_fingerprint: 64-bit fingerprint of the function library.
        program_body: Serialized program.
        guaranteed_constants: Constant tensors (buffer-protocol objects), or
            ``None``. Only the first ``guaranteed_constants_size`` are used.
        guaranteed_constants_size: Number of constants.
        dynamic_shapes: Dynamic input shapes, aligned with ``metadata.args``.
        metadata: Compile metadata.
        mesh_state: Optional device mesh descriptor.
        builder: Key-construction primitive. When omitted, the process-wide
            builder from ``get_key_builder()`` is used; the first such call
            reads ``COMPKEY_*`` variables and the nearest ``pyproject.toml``,
            so the key then depends on the environment and working directory.
            Pass a builder to keep derivation free of I/O.
        rolling_hash: Rolling hash used for the constants fingerprint.

    Returns:
        The assembled ``CacheKey``.

    Raises:
        KeyConstructionError: If the key-construction primitive fails.
    """
    if builder is None:
        builder = get_key_builder()

    logger.debug(f"FunctionLibraryFingerprint: {function_library_fingerprint}")
    shapes_prefix = create_shape_prefix(dynamic_shapes)
    logger.debug(f"shapes_prefix = {shapes_prefix}")
    config_prefix = create_config_prefix(metadata.args, builder.config_encoding)
    logger.debug(f"config_prefix = {config_prefix}")

    flattened_device_ids: list[int] = []
    if metadata.device_assignment is not None:
        flattened_device_ids = metadata.device_assignment.flatten()

    prop = CacheKeyProperty(
        config_prefix=config_prefix,
        shapes_prefix=shapes_prefix,
        function_name=function_name,
        program_body=program_body,
        device_ids=flattened_device_ids,
        guaranteed_constants_size=guaranteed_constants_size,
        function_library_fingerprint=function_library_fingerprint,
        num_cores_per_replica=metadata.num_cores_per_replica,
        num_replicas=metadata.num_replicas,
        mesh_state=mesh_state.data() if mesh_state is not None else b"",
    )
    with builder.build(prop) as result:
        key = CacheKey(prefix=result.key, debug_string=result.debug_string)

    # Constants may differ between sessions; the session handle and the
    # constants fingerprint keep such keys apart.
    if guaranteed_constants is not None and guaranteed_constants_size > 0:
        key.has_guaranteed_const = True
        key.session_handle = metadata.session_handle
        key.guaranteed_const_fingerprint = GuaranteedConstFingerprinter(
            metadata,
            guaranteed_constants,
            guaranteed_constants_size,
            rolling_hash=rolling_hash,
        )

    return key


def create_compilation_cache_key_from_list(
    function_name: str,
    function_library_fingerprint: int,
    program_body: ProgramBody,
    guaranteed_constants: Sequence[Any],
    dynamic_shapes: Sequence[TensorShape],
    metadata: CompileMetadata,
    mesh_state: Optional[MeshState] = None,
    *,
    builder: Optional[KeyBuilder] = None,
    rolling_hash: Optional[RollingHash] = None,
) -> CacheKey:
    """Same as ``create_compilation_cache_key`` with the constants count taken
    from the list itself."""
    return create_compilation_cache_key(
        function_name,
        function_library_fingerprint,
        program_body,
        guaranteed_constants if len(guaranteed_constants) > 0 else None,
        len(guaranteed_constants),
        dynamic_shapes,
        metadata,
        mesh_state,
        builder=builder,
        rolling_hash=rolling_hash,
    )
