"""Unit tests for configuration bridges."""

import json

import pydantic
import pytest

from skipsilence.controller.config_bridge import (
    InMemoryConfigBridge,
    JsonFileConfigBridge,
    normalize_keys,
    validate_changes,
)
from skipsilence.controller.types import ConfigValidationError, ControllerConfig


class TestControllerConfig:
    @pytest.mark.unit
    def test_defaults(self):
        config = ControllerConfig()

        assert config.silence_threshold == 0.005
        assert config.grace_ms == 400
        assert config.fast_rate == 2.0
        assert config.natural_rate == 1.0
        assert config.enabled is True

    @pytest.mark.unit
    def test_wire_format_is_camel_case(self):
        wire = ControllerConfig().to_wire()

        assert set(wire) == {
            "silenceThreshold",
            "graceMs",
            "fastRate",
            "naturalRate",
            "enabled",
            "calibrated",
        }

    @pytest.mark.unit
    def test_snapshot_is_immutable(self):
        config = ControllerConfig()

        with pytest.raises(pydantic.ValidationError):
            config.fast_rate = 3.0

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "changes",
        [
            {"silence_threshold": -0.1},
            {"silence_threshold": 1.5},
            {"grace_ms": -1},
            {"fast_rate": 0},
            {"natural_rate": -1.0},
        ],
    )
    def test_out_of_range_rejected(self, changes):
        with pytest.raises(ConfigValidationError):
            validate_changes(ControllerConfig(), changes)


class TestNormalizeKeys:
    @pytest.mark.unit
    def test_all_spellings_map_to_field_names(self):
        normalized = normalize_keys(
            {"SILENCE_THRESHOLD": 0.01, "graceMs": 250, "fast_rate": 3.0, "bogus": 1}
        )

        assert normalized == {"silence_threshold": 0.01, "grace_ms": 250, "fast_rate": 3.0}


class TestInMemoryConfigBridge:
    @pytest.mark.unit
    def test_load_applies_stored_values_over_defaults(self):
        bridge = InMemoryConfigBridge({"NATURAL_RATE": 1.25})

        config = bridge.load(ControllerConfig())

        assert config.natural_rate == 1.25
        assert config.fast_rate == 2.0

    @pytest.mark.unit
    def test_load_rejects_invalid_stored_values(self):
        bridge = InMemoryConfigBridge({"grace_ms": -5})

        with pytest.raises(ConfigValidationError):
            bridge.load(ControllerConfig())

    @pytest.mark.unit
    def test_listeners_receive_only_changed_fields(self):
        bridge = InMemoryConfigBridge({"fast_rate": 3.0})
        received = []
        bridge.on_change(received.append)

        bridge.update(graceMs=150)

        assert received == [{"grace_ms": 150}]

    @pytest.mark.unit
    def test_unsubscribe(self):
        bridge = InMemoryConfigBridge()
        received = []
        unsubscribe = bridge.on_change(received.append)

        unsubscribe()
        unsubscribe()
        bridge.update(enabled=False)

        assert received == []
        assert bridge.listener_count == 0

    @pytest.mark.unit
    def test_invalid_update_notifies_nobody(self):
        bridge = InMemoryConfigBridge()
        received = []
        bridge.on_change(received.append)

        with pytest.raises(ConfigValidationError):
            bridge.update(silence_threshold=2.0)

        assert received == []
        assert bridge.load(ControllerConfig()).silence_threshold == 0.005

    @pytest.mark.unit
    def test_save_records_config(self):
        bridge = InMemoryConfigBridge()
        config = ControllerConfig(silence_threshold=0.01, calibrated=True)

        bridge.save(config)

        assert bridge.saved == [config]
        assert bridge.load(ControllerConfig()).silence_threshold == 0.01


class TestJsonFileConfigBridge:
    @pytest.mark.unit
    def test_missing_file_gives_defaults(self, tmp_path):
        bridge = JsonFileConfigBridge(tmp_path / "settings.json")

        assert bridge.load(ControllerConfig()) == ControllerConfig()

    @pytest.mark.unit
    def test_reads_legacy_and_camel_case_keys(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"SILENCE_THRESHOLD": 0.02, "graceMs": 250}))

        config = JsonFileConfigBridge(path).load(ControllerConfig())

        assert config.silence_threshold == 0.02
        assert config.grace_ms == 250

    @pytest.mark.unit
    def test_save_writes_camel_case_json(self, tmp_path):
        path = tmp_path / "nested" / "settings.json"
        bridge = JsonFileConfigBridge(path)

        bridge.save(ControllerConfig(silence_threshold=0.0123, calibrated=True))

        stored = json.loads(path.read_text())
        assert stored["silenceThreshold"] == 0.0123
        assert stored["calibrated"] is True
        assert list(path.parent.iterdir()) == [path]

    @pytest.mark.unit
    def test_update_persists(self, tmp_path):
        path = tmp_path / "settings.json"
        JsonFileConfigBridge(path).update(fastRate=2.5)

        assert JsonFileConfigBridge(path).load(ControllerConfig()).fast_rate == 2.5

    @pytest.mark.unit
    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_malformed_file_rejected(self, tmp_path, content):
        path = tmp_path / "settings.json"
        path.write_text(content)

        with pytest.raises(ConfigValidationError):
            JsonFileConfigBridge(path)
