import json

import pytest

from entity_resolution.config import (
    DEFAULT_FIELD_WEIGHTS,
    Propagation,
    ResolutionConfig,
    Thresholds,
    load_config,
)
from entity_resolution.errors import ConfigurationError
from entity_resolution.models import MatchTier, StrategySpec
from entity_resolution.schema import SemanticType
from entity_resolution.steps.blocking import BlockingEngine


def test_defaults_are_documented_values() -> None:
    config = ResolutionConfig()
    assert config.thresholds == Thresholds(high=0.9, medium=0.7, low=0.5)
    assert config.max_transitive_depth == 3
    assert config.transitive_threshold == 0.7
    assert config.propagation is Propagation.MIN
    assert config.field_weights[SemanticType.EMAIL] == 0.9
    assert config.blocking_strategies[SemanticType.FIRST_NAME] == (
        StrategySpec.of("exact"),
        StrategySpec.of("prefix", length=3),
        StrategySpec.of("phonetic"),
    )


def test_thresholds_must_be_ordered_and_bounded() -> None:
    with pytest.raises(ConfigurationError):
        Thresholds(high=0.6, medium=0.7, low=0.5)
    with pytest.raises(ConfigurationError):
        Thresholds(high=0.9, medium=0.4, low=0.5)
    with pytest.raises(ConfigurationError):
        Thresholds(high=1.2)
    Thresholds(high=0.7, medium=0.7, low=0.7)


def test_threshold_classification() -> None:
    thresholds = Thresholds()
    assert thresholds.classify(0.95) is MatchTier.HIGH
    assert thresholds.classify(0.9) is MatchTier.HIGH
    assert thresholds.classify(0.75) is MatchTier.MEDIUM
    assert thresholds.classify(0.5) is MatchTier.LOW
    assert thresholds.classify(0.49) is MatchTier.NO_MATCH


def test_from_mapping_merges_camel_case_options() -> None:
    config = ResolutionConfig.from_mapping(
        {
            "blockingStrategies": {"email": ["exact", {"name": "prefix", "length": 4}]},
            "fieldWeights": {"email": 2.0},
            "thresholds": {"high": 0.95},
            "maxTransitiveDepth": 2,
            "propagation": "product",
            "comparators": {"firstName": {"name": "jaro_winkler"}},
        }
    )
    assert config.blocking_strategies[SemanticType.EMAIL] == (
        StrategySpec.of("exact"),
        StrategySpec.of("prefix", length=4),
    )
    assert config.blocking_strategies[SemanticType.PHONE] == ResolutionConfig().blocking_strategies[SemanticType.PHONE]
    assert config.field_weights[SemanticType.EMAIL] == 2.0
    assert config.field_weights[SemanticType.PHONE] == DEFAULT_FIELD_WEIGHTS[SemanticType.PHONE]
    assert config.thresholds.high == 0.95
    assert config.thresholds.low == 0.5
    assert config.max_transitive_depth == 2
    assert config.propagation is Propagation.PRODUCT
    assert config.comparators[SemanticType.FIRST_NAME] == StrategySpec.of("jaro_winkler")


def test_strategy_params_are_snake_cased_and_nested() -> None:
    config = ResolutionConfig.from_mapping(
        {
            "blockingStrategies": {
                "description": {"name": "ngram", "minKeys": 2, "maxKeys": 5},
                "dateOfBirth": [{"name": "compound", "strategies": ["year", {"name": "prefix", "length": 7}]}],
            }
        }
    )
    assert config.blocking_strategies[SemanticType.DESCRIPTION] == (StrategySpec.of("ngram", min_keys=2, max_keys=5),)
    compound = config.blocking_strategies[SemanticType.DATE_OF_BIRTH][0]
    assert compound.kwargs["strategies"] == (StrategySpec.of("year"), StrategySpec.of("prefix", length=7))


@pytest.mark.parametrize(
    ("options", "config_key"),
    [
        ({"fieldWeights": {"bogus": 1.0}}, "fieldWeights.bogus"),
        ({"fieldWeights": {"email": -1}}, "fieldWeights.email"),
        ({"thresholds": {"high": 0.4, "medium": 0.6}}, "thresholds"),
        ({"thresholds": {"extreme": 0.99}}, "thresholds"),
        ({"transitiveThreshold": 1.1}, "transitiveThreshold"),
        ({"maxTransitiveDepth": 0}, "maxTransitiveDepth"),
        ({"propagation": "average"}, "propagation"),
        ({"blockingStrategies": {"email": []}}, "blockingStrategies.email"),
        ({"blockingStrategies": {"email": [{"length": 3}]}}, "blockingStrategies.email"),
        ({"blockingStrategies": {"email": 5}}, "blockingStrategies.email"),
        ({"blockingStrategies": ["email"]}, "blockingStrategies"),
        (
            {"blockingStrategies": {"dateOfBirth": [{"name": "compound", "strategies": 3}]}},
            "blockingStrategies.dateOfBirth",
        ),
        ({"fieldWeights": [1, 2]}, "fieldWeights"),
        ({"comparators": []}, "comparators"),
        ({"thresholds": 0.9}, "thresholds"),
        ({"maxCandidatesPerRecord": 0}, "maxCandidatesPerRecord"),
        ({"workers": 0}, "workers"),
    ],
)
def test_invalid_options_raise_configuration_error(options, config_key) -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        ResolutionConfig.from_mapping(options)
    assert excinfo.value.config_key == config_key


def test_unknown_option_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        ResolutionConfig.from_mapping({"fuzzyness": 3})


def test_unknown_strategy_name_fails_when_engine_binds() -> None:
    config = ResolutionConfig.from_mapping({"blockingStrategies": {"email": ["telepathy"]}})
    with pytest.raises(ConfigurationError):
        BlockingEngine(config.blocking_strategies)


def test_load_config_from_toml(tmp_path) -> None:
    path = tmp_path / "resolution.toml"
    path.write_text(
        'maxTransitiveDepth = 2\npropagation = "product"\n\n'
        "[thresholds]\nhigh = 0.95\n\n"
        "[fieldWeights]\nemail = 1.5\n\n"
        "[blockingStrategies]\n"
        'lastName = ["exact", { name = "prefix", length = 4 }]\n',
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.max_transitive_depth == 2
    assert config.propagation is Propagation.PRODUCT
    assert config.thresholds.high == 0.95
    assert config.field_weights[SemanticType.EMAIL] == 1.5
    assert config.blocking_strategies[SemanticType.LAST_NAME][1] == StrategySpec.of("prefix", length=4)


def test_load_config_from_json(tmp_path) -> None:
    path = tmp_path / "resolution.json"
    path.write_text(json.dumps({"transitiveThreshold": 0.8, "workers": 2}), encoding="utf-8")
    config = load_config(path)
    assert config.transitive_threshold == 0.8
    assert config.workers == 2


def test_load_config_errors(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(bad)
    yaml = tmp_path / "config.yaml"
    yaml.write_text("a: 1", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(yaml)
