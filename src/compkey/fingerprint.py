"""Fingerprints over guaranteed-constant tensors."""

from __future__ import annotations

import hashlib
import logging
import threading
from typing import Any, Callable, Optional, Sequence

from compkey.types import CompileMetadata
from compkey.utils.logging import configure_module_logger

logger = configure_module_logger(__name__, level=logging.INFO)

_UINT64_MASK = (1 << 64) - 1

RollingHash = Callable[[int, Any], int]


def fingerprint_cat64(seed: int, data: Any) -> int:
    """Fold *data* into a running 64-bit fingerprint.

    Args:
        seed: Previous fingerprint (0 to start).
        data: Bytes-like payload.

    Returns:
        Unsigned 64-bit fingerprint.
    """
    digest = hashlib.blake2b(digest_size=8)
    digest.update((seed & _UINT64_MASK).to_bytes(8, "little"))
    digest.update(data)
    return int.from_bytes(digest.digest(), "little")


def tensor_bytes(tensor: Any) -> Any:
    """Raw bytes of a buffer-protocol object, without copying when contiguous."""
    view = memoryview(tensor)
    if view.c_contiguous:
        return view
    return view.tobytes(order="C")


def compute_guaranteed_const_fingerprint(
    constants: Sequence[Any],
    rolling_hash: RollingHash = fingerprint_cat64,
) -> str:
    """Fingerprint *constants* in order, as a decimal string."""
    fingerprint = 0
    for constant in constants:
        fingerprint = rolling_hash(fingerprint, tensor_bytes(constant))
    return str(fingerprint)


class GuaranteedConstFingerprinter:
    """Deferred, memoized fingerprint of a request's guaranteed constants.

    The fingerprinter keeps references to *metadata* and *constants*; it
    never copies tensor data. The first call computes the fingerprint (or
    takes the one precomputed in the metadata) and every later call returns
    the same string. Concurrent first calls compute it exactly once.
    """

    def __init__(
        self,
        metadata: CompileMetadata,
        constants: Sequence[Any],
        constants_size: Optional[int] = None,
        rolling_hash: Optional[RollingHash] = None,
    ) -> None:
        self._metadata = metadata
        self._constants = constants
        self._constants_size = len(constants) if constants_size is None else constants_size
        self._rolling_hash = rolling_hash or fingerprint_cat64
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def computed(self) -> bool:
        return self._fingerprint is not None

    def __call__(self) -> str:
        fingerprint = self._fingerprint
        if fingerprint is not None:
            return fingerprint
        with self._lock:
            if self._fingerprint is None:
                self._fingerprint = self._compute()
            return self._fingerprint

    get_fingerprint = __call__

    def _compute(self) -> str:
        precomputed = self._metadata.guaranteed_const_fingerprint
        if precomputed:
            logger.debug(f"Using precomputed guaranteed const fingerprint {precomputed}")
            return precomputed
        constants = [self._constants[i] for i in range(self._constants_size)]
        fingerprint = compute_guaranteed_const_fingerprint(constants, self._rolling_hash)
        logger.debug(
            f"Guaranteed const fingerprint over {self._constants_size} constants: "
            f"{fingerprint}"
        )
        return fingerprint
