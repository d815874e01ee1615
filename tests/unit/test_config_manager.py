"""
Unit tests for Config Manager and configuration dataclasses
"""

import os
import tempfile

import pytest
import yaml

from volrisk.core.config_manager import ConfigManager
from volrisk.core.risk_config import (
    PositionSizingConfig,
    RegimeClassifierConfig,
    VolRiskConfig,
    config_to_dict,
)
from volrisk.core.risk_types import (
    ConfigurationError,
    RiskLevel,
    SizingCombination,
    SizingMethod,
    VolatilityRegime,
)


def write_config(data):
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(data, f)
        return f.name


def rewrite_config(path, data):
    """Rewrite a config and push its mtime forward so the change is seen."""
    mtime = os.path.getmtime(path)
    with open(path, 'w') as f:
        yaml.dump(data, f)
    os.utime(path, (mtime + 10, mtime + 10))


class TestVolRiskConfig:
    """Test suite for configuration dataclasses."""

    def test_defaults_valid(self):
        """Test that the defaults pass validation."""
        assert VolRiskConfig().validate() == []

    def test_from_dict_overrides(self):
        """Test nested overrides with enum coercion."""
        config = VolRiskConfig.from_dict({
            'sizing': {
                'method': 'kelly',
                'combination': 'average',
                'regime_factors': {'LOW': 1.2, 'NORMAL': 1.0, 'HIGH': 0.6, 'SPIKE': 0.2},
            },
            'regime': {'fixed_thresholds': [0.12, 0.25, 0.35]},
        })

        assert config.sizing.method == SizingMethod.KELLY
        assert config.sizing.combination == SizingCombination.AVERAGE
        assert config.sizing.regime_factors[VolatilityRegime.SPIKE] == 0.2
        assert config.regime.fixed_thresholds == (0.12, 0.25, 0.35)
        assert config.volatility.ewma_lambda == 0.94

    def test_unknown_section(self):
        """Test that unknown sections are rejected."""
        with pytest.raises(ConfigurationError):
            VolRiskConfig.from_dict({'risk_management': {}})

    def test_unknown_key(self):
        """Test that unknown keys are rejected."""
        with pytest.raises(ConfigurationError):
            VolRiskConfig.from_dict({'sizing': {'kelly_fraction': 0.25}})

    def test_invalid_enum_value(self):
        """Test that an unknown sizing method is rejected."""
        with pytest.raises(ConfigurationError):
            VolRiskConfig.from_dict({'sizing': {'method': 'martingale'}})

    def test_invalid_values(self):
        """Test value validation across sections."""
        with pytest.raises(ConfigurationError) as exc_info:
            VolRiskConfig.from_dict({
                'sizing': {'kelly_multiplier': 2.0},
                'regime': {'fixed_thresholds': [0.3, 0.2, 0.4]},
            })

        assert len(exc_info.value.errors) == 2

    def test_incomplete_risk_level_scaling(self):
        """Test that every risk level needs a scaling factor."""
        config = PositionSizingConfig(risk_level_scaling={RiskLevel.LOW: 1.0})

        assert config.validate()

    def test_trend_lag(self):
        """Test the lag between short and long window centers."""
        assert RegimeClassifierConfig().trend_lag == 7.5

    def test_trend_windows_must_match_estimator(self):
        """Test that overriding only the estimator windows is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            VolRiskConfig.from_dict({'volatility': {'short_window': 10}})

        assert any("trend windows" in e for e in exc_info.value.errors)

        config = VolRiskConfig.from_dict({
            'volatility': {'short_window': 10},
            'regime': {'trend_short_window': 10},
        })
        assert config.regime.trend_lag == 5.0

    def test_to_dict_round_trip(self):
        """Test that a serialized config loads back unchanged."""
        config = VolRiskConfig.from_dict({'sizing': {'method': 'regime_scaled'}})

        data = config_to_dict(config)

        assert data['sizing']['method'] == 'regime_scaled'
        assert VolRiskConfig.from_dict(data) == config


class TestConfigManager:
    """Test suite for Hot-Reload Config Manager."""

    def test_initialization_with_missing_file(self):
        """Test initialization with non-existent file."""
        manager = ConfigManager(config_path="nonexistent.yaml")

        assert manager.config == VolRiskConfig()
        assert manager.get_all() == {}

    def test_load_valid_config(self):
        """Test loading valid configuration."""
        temp_path = write_config({
            'sizing': {'kelly_multiplier': 0.5, 'risk_percent': 0.02},
            'scoring': {'hard_max_leverage': 3.0},
        })

        try:
            manager = ConfigManager(config_path=temp_path)

            assert manager.config.sizing.kelly_multiplier == 0.5
            assert manager.config.scoring.hard_max_leverage == 3.0
            assert manager.get('sizing.risk_percent') == 0.02
            assert manager.get('nonexistent.key', 'default') == 'default'
            assert manager.reload_count == 1
        finally:
            os.unlink(temp_path)

    def test_validation_invalid_kelly(self):
        """Test validation rejects an invalid Kelly multiplier."""
        manager = ConfigManager(config_path="nonexistent.yaml")

        assert manager.validate_config({'sizing': {'kelly_multiplier': 1.5}}) is False

    def test_validation_non_mapping(self):
        """Test validation rejects a non-mapping document."""
        manager = ConfigManager(config_path="nonexistent.yaml")

        assert manager.validate_config(['sizing']) is False

    def test_reload_notifies_callbacks(self):
        """Test that a changed file is reloaded and subscribers notified."""
        temp_path = write_config({'sizing': {'kelly_multiplier': 0.25}})

        try:
            manager = ConfigManager(config_path=temp_path)
            calls = []
            manager.register_callback(lambda old, new: calls.append((old, new)))

            rewrite_config(temp_path, {'sizing': {'kelly_multiplier': 0.1}})

            assert manager.reload_config() is True
            assert manager.config.sizing.kelly_multiplier == 0.1
            assert len(calls) == 1
            old, new = calls[0]
            assert old.sizing.kelly_multiplier == 0.25
            assert new.sizing.kelly_multiplier == 0.1
        finally:
            os.unlink(temp_path)

    def test_unchanged_file_not_reloaded(self):
        """Test that reloading an unchanged file is a no-op."""
        temp_path = write_config({'sizing': {'kelly_multiplier': 0.25}})

        try:
            manager = ConfigManager(config_path=temp_path)

            assert manager.reload_config() is False
            assert manager.reload_count == 1
        finally:
            os.unlink(temp_path)

    def test_invalid_reload_keeps_previous(self):
        """Test that an invalid edit leaves the running config in place."""
        temp_path = write_config({'sizing': {'kelly_multiplier': 0.25}})

        try:
            manager = ConfigManager(config_path=temp_path)
            calls = []
            manager.register_callback(lambda old, new: calls.append(new))

            rewrite_config(temp_path, {'sizing': {'kelly_multiplier': 5.0}})

            assert manager.reload_config() is False
            assert manager.config.sizing.kelly_multiplier == 0.25
            assert manager.failed_reloads == 1
            assert calls == []
        finally:
            os.unlink(temp_path)

    def test_failing_callback_does_not_block_others(self):
        """Test callback isolation."""
        temp_path = write_config({})

        try:
            manager = ConfigManager(config_path=temp_path)
            calls = []

            def broken(old, new):
                raise RuntimeError("subscriber failure")

            manager.register_callback(broken)
            manager.register_callback(lambda old, new: calls.append(new))

            rewrite_config(temp_path, {'sizing': {'risk_percent': 0.02}})
            manager.reload_config()

            assert len(calls) == 1
        finally:
            os.unlink(temp_path)

    def test_sample_config_file_valid(self):
        """Test that the shipped sample configuration loads."""
        path = os.path.join(os.path.dirname(__file__), '..', '..', 'config', 'volrisk_config.yaml')

        manager = ConfigManager(config_path=path)

        assert manager.reload_count == 1
        assert manager.failed_reloads == 0

    def test_get_state(self):
        """Test state retrieval."""
        manager = ConfigManager(config_path="nonexistent.yaml", poll_interval=10)

        state = manager.get_state()

        assert 'config_path' in state
        assert state['poll_interval_sec'] == 10
        assert state['watcher_running'] is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
