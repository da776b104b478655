"""Deterministic cache keys for compiled programs.

Example::

    from compkey import ArgumentConfig, CompileMetadata, create_compilation_cache_key_from_list

    metadata = CompileMetadata(args=[ArgumentConfig(dtype="int32")])
    key = create_compilation_cache_key_from_list(
        "matmul_fn", 42, serialized_module, [], [], metadata
    )
    artifact = cache.lookup_or_compile(key, lambda: compile_module(serialized_module))
"""

from compkey._version import __version__
from compkey.builder import (
    CacheKeyProperty,
    DefaultKeyBuilder,
    KeyBuilder,
    KeyBuildResult,
    create_key_builder,
    get_key_builder,
)
from compkey.cache import CacheStats, CompilationCache
from compkey.config import KeyConfig, load_config
from compkey.encoding import create_config_prefix, create_shape_prefix
from compkey.exceptions import CompKeyError, KeyConstructionError
from compkey.fingerprint import (
    GuaranteedConstFingerprinter,
    compute_guaranteed_const_fingerprint,
    fingerprint_cat64,
)
from compkey.key import (
    create_compilation_cache_key,
    create_compilation_cache_key_from_list,
)
from compkey.types import (
    ArgumentConfig,
    CacheKey,
    CompileMetadata,
    ComputationDevices,
    DeviceAssignment,
    MeshState,
    ShardingPermission,
    StaticMeshState,
)

__all__ = [
    "__version__",
    "ArgumentConfig",
    "CacheKey",
    "CacheKeyProperty",
    "CacheStats",
    "CompKeyError",
    "CompilationCache",
    "CompileMetadata",
    "ComputationDevices",
    "DefaultKeyBuilder",
    "DeviceAssignment",
    "GuaranteedConstFingerprinter",
    "KeyBuildResult",
    "KeyBuilder",
    "KeyConfig",
    "KeyConstructionError",
    "MeshState",
    "ShardingPermission",
    "StaticMeshState",
    "compute_guaranteed_const_fingerprint",
    "create_compilation_cache_key",
    "create_compilation_cache_key_from_list",
    "create_config_prefix",
    "create_key_builder",
    "create_shape_prefix",
    "fingerprint_cat64",
    "get_key_builder",
    "load_config",
]
