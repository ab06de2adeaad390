"""
Tests for engine configuration and scoring weights.
"""

import json

import pytest

from nativeready.config import DEFAULT_CONFIG, EngineConfig, ScoringWeights
from nativeready.errors import ConfigError


class TestScoringWeights:

    def test_defaults(self):
        w = ScoringWeights()
        assert (w.allocations, w.abstract_types, w.dynamic_dispatch, w.lifetimes, w.constants) == (
            25.0, 20.0, 20.0, 20.0, 15.0,
        )
        assert w.total == 100.0

    def test_must_sum_to_100(self):
        with pytest.raises(ConfigError, match="sum to 100"):
            ScoringWeights(allocations=30)

    def test_negative_weight(self):
        with pytest.raises(ConfigError, match="allocations"):
            ScoringWeights(allocations=-5, abstract_types=50)

    def test_from_dict_rejects_unknown(self):
        with pytest.raises(ConfigError, match="unknown scoring weight"):
            ScoringWeights.from_dict({"speed": 10})


class TestEngineConfig:

    def test_defaults(self):
        assert DEFAULT_CONFIG.ready_threshold == 80
        assert DEFAULT_CONFIG.cache_ttl == 300.0
        assert DEFAULT_CONFIG.max_workers is None

    @pytest.mark.parametrize("threshold", [-1, 101])
    def test_threshold_range(self, threshold):
        with pytest.raises(ConfigError, match="ready_threshold"):
            EngineConfig(ready_threshold=threshold)

    def test_depth_limits(self):
        with pytest.raises(ConfigError, match="max_call_depth"):
            EngineConfig(max_call_depth=0)

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            EngineConfig(cache_ttl=-1)

    def test_replace_validates(self):
        strict = DEFAULT_CONFIG.replace(ready_threshold=95)
        assert strict.ready_threshold == 95
        assert DEFAULT_CONFIG.ready_threshold == 80
        with pytest.raises(ConfigError):
            DEFAULT_CONFIG.replace(max_workers=0)

    def test_dict_round_trip(self):
        cfg = EngineConfig(ready_threshold=70, weights=ScoringWeights(allocations=40, constants=0))
        assert EngineConfig.from_dict(cfg.to_dict()) == cfg

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="unknown configuration key"):
            EngineConfig.from_dict({"threshold": 80})


class TestLoad:

    def test_load_file(self, tmp_path):
        path = tmp_path / "nativeready.json"
        path.write_text(json.dumps({"ready_threshold": 90, "weights": {"constants": 15, "allocations": 25,
                                                                      "abstract_types": 20,
                                                                      "dynamic_dispatch": 20,
                                                                      "lifetimes": 20}}))
        cfg = EngineConfig.load(path)
        assert cfg.ready_threshold == 90
        assert cfg.weights == ScoringWeights()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{ready_threshold: 90")
        with pytest.raises(ConfigError, match="invalid JSON"):
            EngineConfig.load(path)

    def test_top_level_must_be_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError, match="JSON object"):
            EngineConfig.load(path)
