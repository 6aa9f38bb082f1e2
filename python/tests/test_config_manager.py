"""
Tests for ConfigManager and logging setup.
"""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from config_manager import ConfigManager, ConfigurationError, configure_logging, get_config


@pytest.fixture
def write_config(tmp_path):
    def _write(text):
        path = tmp_path / "config.yaml"
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


class TestConfigLoading:
    def test_defaults_when_file_missing(self, tmp_path):
        config = ConfigManager(str(tmp_path / "missing.yaml"))

        assert config.verification.eligible_subject_types == ["servicemen"]
        assert config.snapshot.event_limit == 50
        assert config.snapshot.max_event_limit == 500
        assert config.audit.record_profile_field_changes is False
        assert config.audit.log_mutations is True
        assert config.logging.level == "INFO"

    def test_yaml_file(self, write_config):
        path = write_config(
            "verification:\n"
            "  eligible_subject_types: [servicemen, contractor]\n"
            "snapshot:\n"
            "  event_limit: 20\n"
            "audit:\n"
            "  record_profile_field_changes: true\n"
            "logging:\n"
            "  level: debug\n"
            "  file: null\n"
        )

        config = ConfigManager(path)

        assert config.verification.eligible_subject_types == ["servicemen", "contractor"]
        assert config.snapshot.event_limit == 20
        assert config.audit.record_profile_field_changes is True
        assert config.logging.level == "DEBUG"
        assert config.logging.file is None

    def test_single_subject_type_string(self):
        config = ConfigManager.create(
            config_path="/nonexistent/config.yaml",
            raw={"verification": {"eligible_subject_types": "contractor"}},
        )
        assert config.verification.eligible_subject_types == ["contractor"]

    def test_shipped_config_file(self):
        config = ConfigManager(str(Path(__file__).parent.parent / "config.yaml"))
        assert config.database.name == "identity_verification"
        assert config.snapshot.event_limit == 50

    def test_invalid_yaml(self, write_config):
        path = write_config("snapshot: [unclosed\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path)

    def test_non_mapping_document(self, write_config):
        path = write_config("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path)

    def test_non_mapping_section(self, write_config):
        path = write_config("audit: yes\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path)


class TestConfigValidation:
    @pytest.mark.parametrize("raw", [
        {"snapshot": {"event_limit": 0}},
        {"snapshot": {"event_limit": 600}},
        {"snapshot": {"max_event_limit": 0}},
        {"snapshot": {"event_limit": "ten"}},
        {"verification": {"eligible_subject_types": []}},
        {"verification": {"eligible_subject_types": ["  "]}},
        {"logging": {"level": "VERBOSE"}},
        {"database": {"port": 70000}},
    ])
    def test_rejected(self, raw):
        with pytest.raises(ConfigurationError):
            ConfigManager.create(config_path="/nonexistent/config.yaml", raw=raw)

    def test_to_dict_masks_password(self):
        config = ConfigManager.create(
            config_path="/nonexistent/config.yaml",
            raw={"database": {"password": "s3cret"}},
        )
        exported = config.to_dict()

        assert exported["database"]["password"] == "***"
        assert "s3cret" not in str(exported)
        assert exported["snapshot"] == {"event_limit": 50, "max_event_limit": 500}


class TestSingleton:
    def setup_method(self):
        ConfigManager.reset_instance()

    def teardown_method(self):
        ConfigManager.reset_instance()

    def test_get_config_returns_same_instance(self, tmp_path):
        first = get_config(str(tmp_path / "config.yaml"))
        assert get_config() is first

    def test_create_is_not_the_singleton(self, tmp_path):
        shared = get_config(str(tmp_path / "config.yaml"))
        assert ConfigManager.create(str(tmp_path / "config.yaml")) is not shared


class TestConfigureLogging:
    def setup_method(self):
        self._root_level = logging.getLogger().level

    def teardown_method(self):
        root = logging.getLogger()
        root.setLevel(self._root_level)
        for handler in list(root.handlers):
            if getattr(handler, "_verification_handler", False):
                root.removeHandler(handler)
                handler.close()

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "verification.log"
        config = ConfigManager.create(
            config_path=str(tmp_path / "config.yaml"),
            raw={"logging": {"level": "WARNING", "file": str(log_file), "console": False}},
        )

        root = configure_logging(config)

        ours = [h for h in root.handlers if getattr(h, "_verification_handler", False)]
        assert len(ours) == 1
        assert isinstance(ours[0], logging.FileHandler)
        assert root.level == logging.WARNING
        assert log_file.parent.exists()

    def test_reconfiguring_replaces_handlers(self, tmp_path):
        config = ConfigManager.create(
            config_path=str(tmp_path / "config.yaml"),
            raw={"logging": {"file": None, "console": True}},
        )

        configure_logging(config)
        root = configure_logging(config)

        ours = [h for h in root.handlers if getattr(h, "_verification_handler", False)]
        assert len(ours) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
