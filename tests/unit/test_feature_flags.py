"""Tests for the feature flag store."""

import json

import pytest

from staged_launch.core.feature_flags import FeatureFlag, FeatureFlagClient, FlagStore


class TestFeatureFlag:
    """Tests for FeatureFlag."""

    def test_round_trip(self):
        """Test serialization keeps every field."""
        flag = FeatureFlag(name="x", enabled=True, description="d", updated_at=1.0)
        assert FeatureFlag.from_dict(flag.to_dict()) == flag


class TestFeatureFlagClient:
    """Tests for FeatureFlagClient."""

    def test_memory_backend(self):
        """Test flags default to disabled and follow the last write."""
        client = FeatureFlagClient()
        assert client.is_enabled("WIDGETS") is False
        assert client.is_enabled("WIDGETS", default=True) is True
        client.set_flag("WIDGETS", True)
        assert client.is_enabled("WIDGETS") is True
        client.set_flag("WIDGETS", False)
        assert client.is_enabled("WIDGETS") is False
        assert [f.name for f in client.list_flags()] == ["WIDGETS"]

    def test_set_flag_updates_timestamp(self):
        """Test rewriting a flag bumps its timestamp."""
        client = FeatureFlagClient()
        client.set_flag("WIDGETS", True)
        client.get_flag("WIDGETS").updated_at = 0.0
        client.set_flag("WIDGETS", False)
        assert client.get_flag("WIDGETS").updated_at > 0.0

    def test_env_backend(self, monkeypatch):
        """Test initial values are read from prefixed environment variables."""
        monkeypatch.setenv("FF_WIDGETS", "true")
        monkeypatch.setenv("FF_LEGACY", "0")
        client = FeatureFlagClient(backend="env")
        assert client.is_enabled("WIDGETS") is True
        assert client.is_enabled("LEGACY") is False

    def test_config_backend(self, tmp_path):
        """Test initial values are read from a JSON file."""
        path = tmp_path / "flags.json"
        path.write_text(json.dumps({"flags": [{"name": "WIDGETS", "enabled": True}]}))
        client = FeatureFlagClient(backend="config", config_path=str(path))
        assert client.is_enabled("WIDGETS") is True

    def test_config_backend_invalid_file(self, tmp_path):
        """Test an unreadable config file leaves the store empty."""
        path = tmp_path / "flags.json"
        path.write_text("{not json")
        client = FeatureFlagClient(backend="config", config_path=str(path))
        assert client.list_flags() == []

    def test_satisfies_flag_store(self):
        """Test the client can be handed to the controller as its flag store."""
        assert isinstance(FeatureFlagClient(), FlagStore)

    def test_yaml_config_backend(self, tmp_path):
        """Test YAML seed files are accepted alongside JSON."""
        path = tmp_path / "flags.yaml"
        path.write_text("flags:\n  - name: WIDGETS\n    enabled: true\n")
        client = FeatureFlagClient(backend="config", config_path=str(path))
        assert client.is_enabled("WIDGETS") is True

    def test_missing_config_file(self, tmp_path):
        """Test a missing seed file starts an empty store."""
        client = FeatureFlagClient(backend="config", config_path=str(tmp_path / "nope.json"))
        assert client.list_flags() == []

    def test_unknown_backend(self):
        """Test an unknown backend name is rejected."""
        with pytest.raises(ValueError):
            FeatureFlagClient(backend="redis")

    def test_write_counter(self):
        """Test every write is counted, including no-op rewrites."""
        client = FeatureFlagClient()
        client.set_flag("WIDGETS", True)
        client.set_flag("WIDGETS", True)
        client.set_flag("WIDGETS", False)
        assert client.get_flag("WIDGETS").writes == 3
