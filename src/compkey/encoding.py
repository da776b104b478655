"""Deterministic string encodings folded into the cache key.

Both encoders assume their input is positionally aligned with the program
arguments. A misaligned request yields a key for a different program; this
is not checked.
"""

from __future__ import annotations

from typing import Iterable, Literal, Union

from compkey.types import ArgumentConfig, CompileMetadata, ShardingPermission, TensorShape

ConfigEncoding = Literal["legacy", "length_prefixed"]


def create_shape_prefix(dynamic_shapes: Iterable[TensorShape]) -> str:
    """Encode dynamic input shapes.

    Every dimension is followed by ``,`` and every shape by ``;``, so a
    rank-0 shape (``";"``) and a shape boundary can never be mistaken for a
    dimension.

    Args:
        dynamic_shapes: Shapes in argument order.

    Returns:
        The encoded shapes, e.g. ``"2,3,;;"`` for ``[[2, 3], []]``.
    """
    parts: list[str] = []
    for shape in dynamic_shapes:
        for size in shape:
            parts.append(f"{int(size)},")
        parts.append(";")
    return "".join(parts)


def _encode_dtype(dtype: str, encoding: ConfigEncoding) -> str:
    if encoding == "length_prefixed":
        return f",type({len(dtype)}:{dtype})"
    return f",type({dtype})"


def _encode_argument(arg: ArgumentConfig, encoding: ConfigEncoding) -> str:
    parts = [":s" if arg.is_same_data_across_replicas else ":"]
    if arg.enable_sharding == ShardingPermission.ALLOWED:
        parts.append("e")
    if arg.unrestricted_layout:
        parts.append(":u")
    parts.append(_encode_dtype(arg.dtype, encoding))
    if arg.shape is not None:
        parts.append(",shape(")
        parts.extend(f"{int(dim)}," for dim in arg.shape)
        parts.append(")")
    return "".join(parts)


def create_config_prefix(
    args: Union[CompileMetadata, Iterable[ArgumentConfig]],
    encoding: ConfigEncoding = "legacy",
) -> str:
    """Encode the per-argument settings the compiler branches on.

    Only settings that change the compiled artifact belong here; runtime
    routing hints are left out.

    Args:
        args: Argument configs in order, or metadata carrying them.
        encoding: ``"legacy"`` for the historical layout, ``"length_prefixed"``
            to length-prefix dtype tags.

    Returns:
        The encoded configs, e.g. ``":s,type(float32)"``.
    """
    if isinstance(args, CompileMetadata):
        args = args.args
    return "".join(_encode_argument(arg, encoding) for arg in args)
