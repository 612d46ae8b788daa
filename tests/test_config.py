"""
Configuration System Tests

Tests for configuration loading, validation, and the default phase table.
"""

import pytest
import yaml

from phasegate.config import (
    ConfigManager,
    PhaseConfig,
    ReviewConfig,
    RetryConfig,
    WorkflowConfig,
    validate_config,
)
from phasegate.errors import ConfigurationError
from phasegate.roles import DEFAULT_REVIEWER_TABLE, Concern, Role


class TestDefaultConfiguration:
    """Tests for default configuration values"""

    def test_creates_with_defaults(self):
        """Should create config with default values"""
        config = WorkflowConfig()

        assert config.engine.max_workers == 4
        assert config.review.vote_timeout_seconds == 30.0
        assert config.review.max_debate_rounds == 2
        assert config.chronicle.db_path == ":memory:"
        assert config.logging.level == "INFO"

    def test_retry_defaults(self):
        config = RetryConfig()

        assert config.initial_delay_ms == 100
        assert config.max_delay_ms == 5000
        assert config.jitter is True

    def test_default_phase_table(self):
        """Should ship the four-phase table with its reviewer roles"""
        config = WorkflowConfig()

        assert [p.name for p in config.phases] == [
            "Inventory", "Rule Extraction", "Implementation", "Quality Review",
        ]
        assert config.reviewer_table() == DEFAULT_REVIEWER_TABLE

    def test_default_priorities(self):
        config = WorkflowConfig()

        assert config.priority_for(1) == Concern.TESTABILITY
        assert config.priority_for(2) == Concern.FIDELITY
        assert config.priority_for(4) == Concern.QUALITY

    def test_defaults_are_valid(self):
        assert validate_config(WorkflowConfig()) == (True, [])


class TestConfigurationFromDict:
    """Tests for loading configuration from dictionary"""

    def test_from_dict_review(self):
        config = WorkflowConfig.from_dict({"review": {"vote_timeout_seconds": 5, "max_revisions": 1}})

        assert config.review.vote_timeout_seconds == 5
        assert config.review.max_revisions == 1
        assert config.review.max_vote_retries == 3

    def test_from_dict_phases(self):
        """Should replace the phase table when phases are given"""
        config = WorkflowConfig.from_dict({
            "phases": [
                {
                    "ordinal": 1,
                    "name": "Survey",
                    "reviewers": ["analyst"],
                    "criteria": [{"id": "done", "kind": "items_done"}],
                },
                {"ordinal": 2, "reviewers": ["architect", "implementer"]},
            ]
        })

        assert len(config.phases) == 2
        assert config.phases[0].criteria[0].kind == "items_done"
        assert config.phases[1].name == "Phase 2"
        assert config.reviewer_table()[2] == frozenset({Role.ARCHITECT, Role.IMPLEMENTER})

    def test_priority_falls_back_to_position(self):
        phases = [PhaseConfig(ordinal=n, name=f"p{n}", reviewers=["analyst"]) for n in (1, 2, 3)]
        config = WorkflowConfig(phases=phases)

        assert config.priority_for(1) == Concern.TESTABILITY
        assert config.priority_for(3) == Concern.QUALITY

    def test_unknown_phase(self):
        with pytest.raises(ConfigurationError):
            WorkflowConfig().phase(9)


class TestConfigManager:
    """Tests for file and environment sources"""

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = ConfigManager(tmp_path / "phasegate.yaml")

        assert manager.get("engine").max_workers == 4

    def test_loads_yaml_file(self, tmp_path):
        config_file = tmp_path / "phasegate.yaml"
        config_file.write_text(yaml.safe_dump({
            "engine": {"max_workers": 2},
            "chronicle": {"db_path": "chronicle.db"},
        }))

        manager = ConfigManager(config_file)

        assert manager.get("engine").max_workers == 2
        assert manager.get("chronicle").db_path == "chronicle.db"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "phasegate.yaml"
        config_file.write_text(yaml.safe_dump({"engine": {"max_workers": 2}}))
        monkeypatch.setenv("PHASEGATE_ENGINE_MAX_WORKERS", "8")
        monkeypatch.setenv("PHASEGATE_REVIEW_VOTE_TIMEOUT_SECONDS", "1.5")
        monkeypatch.setenv("PHASEGATE_LOG_LEVEL", "DEBUG")

        config = ConfigManager(config_file).get()

        assert config.engine.max_workers == 8
        assert config.review.vote_timeout_seconds == 1.5
        assert config.logging.level == "DEBUG"

    def test_malformed_yaml_raises(self, tmp_path):
        config_file = tmp_path / "phasegate.yaml"
        config_file.write_text("engine: [unclosed\n")

        with pytest.raises(ConfigurationError):
            ConfigManager(config_file)

    def test_unknown_key_raises(self, tmp_path):
        config_file = tmp_path / "phasegate.yaml"
        config_file.write_text(yaml.safe_dump({"review": {"vote_timeout": 5}}))

        with pytest.raises(ConfigurationError):
            ConfigManager(config_file)

    def test_save_and_reload(self, tmp_path):
        config_file = tmp_path / "conf" / "phasegate.yaml"
        manager = ConfigManager(config_file)
        manager.get("review").max_revisions = 7

        manager.save()
        manager.reload()

        assert manager.get("review").max_revisions == 7
        assert manager.get().reviewer_table() == DEFAULT_REVIEWER_TABLE


class TestValidation:

    def test_debate_rounds_capped(self):
        config = WorkflowConfig(review=ReviewConfig(max_debate_rounds=5))

        valid, errors = validate_config(config)

        assert not valid
        assert any("Debate rounds" in e for e in errors)

    def test_phase_table_errors(self):
        config = WorkflowConfig.from_dict({
            "phases": [
                {"ordinal": 1, "reviewers": ["wizard"], "priority": "speed"},
                {"ordinal": 3, "reviewers": [], "criteria": [{"id": "x", "kind": "vibes"}]},
            ]
        })

        valid, errors = validate_config(config)

        assert not valid
        assert "Phase ordinals must run 1..N in order" in errors
        assert "Phase 3 has no reviewers" in errors
        assert any("unknown priority 'speed'" in e for e in errors)
        assert any("unknown criterion kind 'vibes'" in e for e in errors)
        assert any(e.startswith("Phase 1:") and "wizard" in e for e in errors)

    def test_invalid_log_level(self):
        config = WorkflowConfig()
        config.logging.level = "LOUD"

        assert validate_config(config)[0] is False
