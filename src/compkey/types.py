"""Value types consumed and produced by key derivation."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

# One dynamic input shape: ordered dimension sizes, -1 for unknown dims.
TensorShape = Sequence[int]


class ShardingPermission(str, Enum):
    """Whether the compiler may shard an argument.

    Three states, mirroring the compile protocol; ``UNSPECIFIED`` is not the
    same as ``DISALLOWED``.
    """

    DISALLOWED = "disallowed"
    ALLOWED = "allowed"
    UNSPECIFIED = "unspecified"


class ArgumentConfig(BaseModel):
    """Static compilation settings for one compiled argument.

    Args:
        is_same_data_across_replicas: Every replica receives identical data.
        enable_sharding: Sharding permission tri-state.
        unrestricted_layout: The compiler may choose the argument's layout.
        dtype: Element type tag (e.g. ``"float32"``).
        shape: Static shape, or ``None`` when the argument has none.
    """

    is_same_data_across_replicas: bool = False
    enable_sharding: ShardingPermission = ShardingPermission.UNSPECIFIED
    unrestricted_layout: bool = False
    dtype: str
    shape: Optional[list[int]] = None

    model_config = {"extra": "forbid"}


class ComputationDevices(BaseModel):
    """Device ids assigned to one computation, one per replica."""

    replica_device_ids: list[int] = Field(default_factory=list)


class DeviceAssignment(BaseModel):
    """Computations x replicas mapping onto physical device ids."""

    computation_devices: list[ComputationDevices] = Field(default_factory=list)

    def flatten(self) -> list[int]:
        """Device ids row-major: computations first, then replicas within each."""
        flattened: list[int] = []
        for device in self.computation_devices:
            flattened.extend(device.replica_device_ids)
        return flattened


class CompileMetadata(BaseModel):
    """Per-request compile metadata.

    Args:
        args: Argument configs, positionally aligned with the program inputs.
        guaranteed_const_fingerprint: Fingerprint precomputed upstream for the
            guaranteed constants; empty when it must be computed here.
        session_handle: Session that owns the guaranteed constants.
        device_assignment: Optional replica-to-device mapping.
        num_replicas: Replica count.
        num_cores_per_replica: Cores used by each replica.
    """

    args: list[ArgumentConfig] = Field(default_factory=list)
    guaranteed_const_fingerprint: str = ""
    session_handle: str = ""
    device_assignment: Optional[DeviceAssignment] = None
    num_replicas: int = 1
    num_cores_per_replica: int = 1

    model_config = {"extra": "forbid"}


class MeshState(Protocol):
    """Opaque description of the device mesh the program runs on."""

    def data(self) -> bytes: ...


class StaticMeshState(BaseModel):
    """Mesh state backed by a fixed serialized payload."""

    payload: bytes = b""

    def data(self) -> bytes:
        return self.payload


class CacheKey(BaseModel):
    """Key identifying one compiled artifact.

    ``prefix`` is the lookup token; ``debug_string`` is for diagnostics only.
    When ``has_guaranteed_const`` is set, ``guaranteed_const_fingerprint``
    computes (once) a fingerprint over the constants the key was built from.
    That callable borrows the request metadata and constants: they must stay
    alive and unmodified for as long as the key is used.
    """

    prefix: str
    debug_string: str = ""
    has_guaranteed_const: bool = False
    session_handle: str = ""
    guaranteed_const_fingerprint: Optional[Callable[[], str]] = None

    def subkey(self) -> str:
        """Full lookup key including the session and constants fingerprint.

        Keys without constants use the prefix alone. Otherwise each part is
        written as ``<len>:<text>`` so a ``|`` inside a session handle or a
        precomputed fingerprint cannot shift the part boundaries.
        """
        if not self.has_guaranteed_const or self.guaranteed_const_fingerprint is None:
            return self.prefix
        parts = [self.prefix, self.session_handle, self.guaranteed_const_fingerprint()]
        return "|".join(f"{len(part)}:{part}" for part in parts)
