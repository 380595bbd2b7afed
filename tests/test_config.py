"""Tests for engine configuration."""

import json
import logging

import pytest
from rdflib import Graph, Namespace
from rdflib.namespace import SH

from shacl_rules.config import EngineConfig, configure_logging
from shacl_rules.rules import RulesEntailment

EX = Namespace("http://example.org/ns#")
DRAFT = Namespace("http://example.org/draft#")

SHAPES = """
@prefix ex: <http://example.org/ns#> .
@prefix draft: <http://example.org/draft#> .
@prefix sh: <http://www.w3.org/ns/shacl#> .

ex:PersonShape sh:targetClass ex:Person ; sh:closed true ; sh:minLength 2 .
draft:PersonShape sh:targetClass ex:Person .
"""


@pytest.fixture
def shapes_graph():
    return Graph().parse(data=SHAPES, format="turtle")


@pytest.fixture
def package_logger():
    """The package logger, restored after the test."""
    pkg_logger = logging.getLogger("shacl_rules")
    handlers = list(pkg_logger.handlers)
    level = pkg_logger.level
    yield pkg_logger
    pkg_logger.handlers = handlers
    pkg_logger.setLevel(level)


class TestLoading:
    def test_defaults(self):
        config = EngineConfig()
        assert config.max_rounds is None
        assert config.incremental
        assert config.include_core_vocabulary
        assert config.log_level == "INFO"

    def test_missing_file(self, tmp_path):
        assert EngineConfig.from_file(tmp_path / "absent.json") == EngineConfig()

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "max_rounds": 10,
            "incremental": False,
            "excluded_namespaces": [str(DRAFT)],
            "log_level": "debug",
        }))
        config = EngineConfig.from_file(path)
        assert config.max_rounds == 10
        assert not config.incremental
        assert config.excluded_namespaces == (str(DRAFT),)
        assert config.log_level == "DEBUG"

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            EngineConfig.from_file(path)

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown configuration key"):
            EngineConfig.from_dict({"max_round": 3})

    @pytest.mark.parametrize("data", [
        {"max_rounds": 0},
        {"max_rounds": "10"},
        {"max_rounds": True},
        {"incremental": "yes"},
        {"excluded_namespaces": "http://example.org/"},
        {"excluded_components": [1]},
        {"log_level": "LOUD"},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(ValueError):
            EngineConfig.from_dict(data)

    def test_to_dict_round_trip(self):
        config = EngineConfig(max_rounds=4, excluded_components=(str(SH.ClosedConstraintComponent),))
        data = config.to_dict()
        assert data["excluded_components"] == [str(SH.ClosedConstraintComponent)]
        assert EngineConfig.from_dict(json.loads(json.dumps(data))) == config


class TestBuilders:
    def test_no_filters_by_default(self):
        assert EngineConfig().shape_filter() is None
        assert EngineConfig().constraint_filter() is None

    def test_excluded_namespace(self, shapes_graph):
        config = EngineConfig(excluded_namespaces=(str(DRAFT),))
        shapes = config.build_shapes_graph(shapes_graph)
        assert [s.node for s in shapes.root_shapes()] == [EX.PersonShape]
        assert shapes.is_ignored(DRAFT.PersonShape)

    def test_excluded_component(self, shapes_graph):
        config = EngineConfig(excluded_components=(str(SH.ClosedConstraintComponent),))
        shapes = config.build_shapes_graph(shapes_graph)
        ignored = [
            c.component.node
            for c in shapes.shape(EX.PersonShape).constraints
            if shapes.is_ignored_constraint(c)
        ]
        assert ignored == [SH.ClosedConstraintComponent]

    def test_without_core_vocabulary(self, shapes_graph):
        config = EngineConfig(include_core_vocabulary=False)
        shapes = config.build_shapes_graph(shapes_graph)
        assert shapes.shape(EX.PersonShape).constraints == ()

    def test_build_entailment(self):
        entailment = EngineConfig(max_rounds=7, incremental=False).build_entailment()
        assert isinstance(entailment, RulesEntailment)
        assert entailment._max_rounds == 7
        assert not entailment._incremental


class TestConfigureLogging:
    def test_sets_level(self, package_logger):
        configure_logging("debug")
        assert package_logger.level == logging.DEBUG

    def test_single_handler(self, package_logger):
        package_logger.handlers = []
        configure_logging("INFO")
        configure_logging("INFO")
        assert len(package_logger.handlers) == 1
        assert isinstance(package_logger.handlers[0], logging.StreamHandler)
