"""Test cases for cache key assembly."""

from typing import Any
from unittest.mock import Mock, patch

import pytest

from compkey.builder import CacheKeyProperty, DefaultKeyBuilder, KeyBuilder, KeyBuildResult
from compkey.config import KeyConfig
from compkey.fingerprint import fingerprint_cat64
from compkey.key import create_compilation_cache_key, create_compilation_cache_key_from_list
from compkey.types import (
    ArgumentConfig,
    CompileMetadata,
    ComputationDevices,
    DeviceAssignment,
    StaticMeshState,
)


class RecordingBuilder(KeyBuilder):
    """Builder that records the properties and results it hands out."""

    def __init__(self) -> None:
        self.props: list[CacheKeyProperty] = []
        self.results: list[KeyBuildResult] = []

    def build(self, prop: CacheKeyProperty) -> KeyBuildResult:
        self.props.append(prop)
        result = KeyBuildResult(key=f"key-{len(self.props)}", debug_string="debug")
        self.results.append(result)
        return result


class _BrokenResult(KeyBuildResult):
    @property
    def debug_string(self) -> str:
        raise RuntimeError("debug buffer unavailable")


class BrokenBuilder(KeyBuilder):
    """Builder whose result fails while being copied out."""

    def __init__(self) -> None:
        self.result = _BrokenResult(key="k", debug_string="d")

    def build(self, prop: CacheKeyProperty) -> KeyBuildResult:
        return self.result


@pytest.fixture
def builder() -> DefaultKeyBuilder:
    return DefaultKeyBuilder(KeyConfig())


@pytest.fixture
def metadata() -> CompileMetadata:
    return CompileMetadata(
        args=[ArgumentConfig(dtype="int32")],
        session_handle="session-7",
    )


class TestCreateCompilationCacheKey:
    """Test cases for create_compilation_cache_key."""

    def test_matmul_scenario(self) -> None:
        """Test the plain request without constants."""
        recorder = RecordingBuilder()
        metadata = CompileMetadata(
            args=[ArgumentConfig(is_same_data_across_replicas=False, dtype="int32")]
        )

        key = create_compilation_cache_key(
            "matmul_fn", 42, "module {}", None, 0, [], metadata, builder=recorder
        )

        prop = recorder.props[0]
        assert prop.config_prefix == ":,type(int32)"
        assert prop.shapes_prefix == ""
        assert prop.function_name == "matmul_fn"
        assert prop.function_library_fingerprint == 42
        assert key.has_guaranteed_const is False
        assert key.guaranteed_const_fingerprint is None
        assert key.session_handle == ""
        assert key.prefix == "key-1"
        assert key.debug_string == "debug"

    def test_deterministic(self, builder: DefaultKeyBuilder, metadata: CompileMetadata) -> None:
        """Test that repeated calls give byte-identical prefixes."""
        keys = [
            create_compilation_cache_key(
                "f", 7, b"\x00\x01", None, 0, [[2, 3]], metadata, builder=builder
            )
            for _ in range(3)
        ]
        assert len({k.prefix for k in keys}) == 1
        assert len({k.debug_string for k in keys}) == 1

    def test_uses_process_builder_by_default(self, metadata: CompileMetadata) -> None:
        """Test that the process-wide builder is used when none is given."""
        recorder = RecordingBuilder()
        with patch("compkey.key.get_key_builder", return_value=recorder):
            key = create_compilation_cache_key("f", 1, "m", None, 0, [], metadata)
        assert key.prefix == "key-1"

    def test_explicit_builder_skips_config_loading(self, metadata: CompileMetadata) -> None:
        """Test that deriving with a given builder never reads configuration."""
        with patch("compkey.builder.load_config") as mock_load:
            create_compilation_cache_key(
                "f", 1, "m", None, 0, [], metadata, builder=DefaultKeyBuilder()
            )
        mock_load.assert_not_called()

    def test_device_assignment_is_flattened(self, metadata: CompileMetadata) -> None:
        """Test row-major flattening of the device assignment."""
        recorder = RecordingBuilder()
        metadata = metadata.model_copy(
            update={
                "device_assignment": DeviceAssignment(
                    computation_devices=[
                        ComputationDevices(replica_device_ids=[0, 1]),
                        ComputationDevices(replica_device_ids=[2, 3]),
                    ]
                ),
                "num_replicas": 2,
                "num_cores_per_replica": 2,
            }
        )

        create_compilation_cache_key("f", 1, "m", None, 0, [], metadata, builder=recorder)

        prop = recorder.props[0]
        assert prop.device_ids == [0, 1, 2, 3]
        assert prop.num_replicas == 2
        assert prop.num_cores_per_replica == 2

    def test_no_device_assignment(self, metadata: CompileMetadata) -> None:
        """Test that an absent assignment flattens to nothing."""
        recorder = RecordingBuilder()
        create_compilation_cache_key("f", 1, "m", None, 0, [], metadata, builder=recorder)
        assert recorder.props[0].device_ids == []

    def test_mesh_state_is_forwarded(self, metadata: CompileMetadata) -> None:
        """Test that mesh data reaches the builder."""
        recorder = RecordingBuilder()
        create_compilation_cache_key(
            "f", 1, "m", None, 0, [], metadata, StaticMeshState(payload=b"mesh"),
            builder=recorder,
        )
        assert recorder.props[0].mesh_state == b"mesh"

    def test_config_encoding_follows_builder(self, metadata: CompileMetadata) -> None:
        """Test that the builder's argument encoding is used."""
        recorder = RecordingBuilder()
        recorder.config_encoding = "length_prefixed"
        create_compilation_cache_key("f", 1, "m", None, 0, [], metadata, builder=recorder)
        assert recorder.props[0].config_prefix == ":,type(5:int32)"

    def test_build_result_released_on_success(self, metadata: CompileMetadata) -> None:
        """Test that the builder's buffers are released after copying."""
        recorder = RecordingBuilder()
        create_compilation_cache_key("f", 1, "m", None, 0, [], metadata, builder=recorder)
        assert recorder.results[0].released is True

    def test_build_result_released_on_error(self, metadata: CompileMetadata) -> None:
        """Test that the builder's buffers are released when copying fails."""
        broken = BrokenBuilder()
        with pytest.raises(RuntimeError):
            create_compilation_cache_key("f", 1, "m", None, 0, [], metadata, builder=broken)
        assert broken.result.released is True

    def test_logs_prefixes(self, builder: DefaultKeyBuilder, metadata: CompileMetadata) -> None:
        """Test that intermediate prefixes are logged at debug level."""
        with patch("compkey.key.logger") as mock_logger:
            create_compilation_cache_key(
                "f", 99, "m", None, 0, [[4]], metadata, builder=builder
            )
        messages = " ".join(str(call) for call in mock_logger.debug.call_args_list)
        assert "99" in messages
        assert "shapes_prefix = 4,;" in messages
        assert "config_prefix = :,type(int32)" in messages


class TestGuaranteedConstants:
    """Test cases for keys built with guaranteed constants."""

    def test_constants_attach_fingerprint(
        self, builder: DefaultKeyBuilder, metadata: CompileMetadata
    ) -> None:
        """Test that constants set the flag, session and fingerprint."""
        constants = [b"\x01\x02\x03"]
        key = create_compilation_cache_key(
            "f", 1, "m", constants, 1, [], metadata, builder=builder
        )

        assert key.has_guaranteed_const is True
        assert key.session_handle == "session-7"
        assert key.guaranteed_const_fingerprint is not None
        assert key.guaranteed_const_fingerprint() == str(fingerprint_cat64(0, constants[0]))

    def test_fingerprint_not_computed_eagerly(
        self, builder: DefaultKeyBuilder, metadata: CompileMetadata
    ) -> None:
        """Test that key construction does not read the constants."""
        rolling_hash = Mock(wraps=fingerprint_cat64)
        create_compilation_cache_key(
            "f", 1, "m", [b"x"], 1, [], metadata, builder=builder, rolling_hash=rolling_hash
        )
        rolling_hash.assert_not_called()

    def test_fingerprint_memoized(
        self, builder: DefaultKeyBuilder, metadata: CompileMetadata
    ) -> None:
        """Test that two fingerprint calls invoke the rolling hash once."""
        rolling_hash = Mock(wraps=fingerprint_cat64)
        key = create_compilation_cache_key(
            "f", 1, "m", [b"x"], 1, [], metadata, builder=builder, rolling_hash=rolling_hash
        )
        assert key.guaranteed_const_fingerprint is not None

        first = key.guaranteed_const_fingerprint()
        second = key.guaranteed_const_fingerprint()

        assert first == second
        assert rolling_hash.call_count == 1

    def test_precomputed_fingerprint(self, builder: DefaultKeyBuilder) -> None:
        """Test that a precomputed fingerprint bypasses the rolling hash."""
        rolling_hash = Mock(wraps=fingerprint_cat64)
        metadata = CompileMetadata(guaranteed_const_fingerprint="abc123")
        key = create_compilation_cache_key(
            "f", 1, "m", [b"x", b"y"], 2, [], metadata,
            builder=builder, rolling_hash=rolling_hash,
        )
        assert key.guaranteed_const_fingerprint is not None
        assert key.guaranteed_const_fingerprint() == "abc123"
        rolling_hash.assert_not_called()

    def test_zero_size_means_no_constants(
        self, builder: DefaultKeyBuilder, metadata: CompileMetadata
    ) -> None:
        """Test that a non-empty list with size zero is treated as no constants."""
        key = create_compilation_cache_key(
            "f", 1, "m", [b"x"], 0, [], metadata, builder=builder
        )
        assert key.has_guaranteed_const is False
        assert key.guaranteed_const_fingerprint is None

    def test_constants_count_changes_prefix(
        self, builder: DefaultKeyBuilder, metadata: CompileMetadata
    ) -> None:
        """Test that the number of constants is part of the prefix."""
        without = create_compilation_cache_key(
            "f", 1, "m", None, 0, [], metadata, builder=builder
        )
        with_one = create_compilation_cache_key(
            "f", 1, "m", [b"x"], 1, [], metadata, builder=builder
        )
        assert without.prefix != with_one.prefix

    def test_subkey_separates_sessions(
        self, builder: DefaultKeyBuilder, metadata: CompileMetadata
    ) -> None:
        """Test that equal prefixes in different sessions get different subkeys."""
        other = metadata.model_copy(update={"session_handle": "session-8"})
        a = create_compilation_cache_key("f", 1, "m", [b"x"], 1, [], metadata, builder=builder)
        b = create_compilation_cache_key("f", 1, "m", [b"x"], 1, [], other, builder=builder)

        assert a.prefix == b.prefix
        assert a.subkey() != b.subkey()
        assert a.subkey().startswith(f"{len(a.prefix)}:{a.prefix}|9:session-7|")

    def test_subkey_separator_inside_parts(self, builder: DefaultKeyBuilder) -> None:
        """Test that a '|' inside the session or fingerprint cannot alias another key."""
        a = create_compilation_cache_key(
            "f", 1, "m", [b"x"], 1, [],
            CompileMetadata(session_handle="a|b", guaranteed_const_fingerprint="1"),
            builder=builder,
        )
        b = create_compilation_cache_key(
            "f", 1, "m", [b"x"], 1, [],
            CompileMetadata(session_handle="a", guaranteed_const_fingerprint="b|1"),
            builder=builder,
        )

        assert a.prefix == b.prefix
        assert a.subkey() != b.subkey()
        assert a.subkey().endswith("|3:a|b|1:1")
        assert b.subkey().endswith("|1:a|3:b|1")


class TestCreateFromList:
    """Test cases for the list overload."""

    @pytest.mark.parametrize("constants", [[], [b"a"], [b"a", bytearray(b"bc")]])
    def test_matches_sized_form(
        self,
        constants: list[Any],
        builder: DefaultKeyBuilder,
        metadata: CompileMetadata,
    ) -> None:
        """Test that both forms give the same prefix and constants flag."""
        sized = create_compilation_cache_key(
            "f", 3, "m", constants or None, len(constants), [[1, 2]], metadata,
            builder=builder,
        )
        listed = create_compilation_cache_key_from_list(
            "f", 3, "m", constants, [[1, 2]], metadata, builder=builder
        )

        assert listed.prefix == sized.prefix
        assert listed.debug_string == sized.debug_string
        assert listed.has_guaranteed_const == sized.has_guaranteed_const
        if constants:
            assert listed.guaranteed_const_fingerprint is not None
            assert sized.guaranteed_const_fingerprint is not None
            assert listed.guaranteed_const_fingerprint() == sized.guaranteed_const_fingerprint()

    def test_empty_list_has_no_fingerprint(
        self, builder: DefaultKeyBuilder, metadata: CompileMetadata
    ) -> None:
        """Test the no-constants path through the list overload."""
        key = create_compilation_cache_key_from_list(
            "f", 3, "m", [], [], metadata, builder=builder
        )
        assert key.has_guaranteed_const is False
        assert key.guaranteed_const_fingerprint is None
        assert key.subkey() == key.prefix
