"""Tests for the command line interface."""

import json
import logging

import pytest
from rdflib import Graph, Namespace
from rdflib.namespace import RDF

from shacl_rules.__main__ import main

EX = Namespace("http://example.org/ns#")

PREFIXES = """
@prefix ex: <http://example.org/ns#> .
@prefix sh: <http://www.w3.org/ns/shacl#> .
@prefix rdfs: <http://www.w3.org/2000/01/rdf-schema#> .
"""

SHAPES = PREFIXES + """
ex:PersonShape a sh:NodeShape ;
    sh:targetClass ex:Person ;
    sh:property [ sh:path ex:name ; sh:minCount 1 ] ;
    sh:rule [ sh:construct "CONSTRUCT { $this a ex:Agent } WHERE { $this a ex:Person }" ] .
"""

DATA = PREFIXES + """
ex:alice a ex:Person ; ex:name "Alice" .
ex:age rdfs:domain ex:Person .
"""


@pytest.fixture(autouse=True)
def restore_logging():
    pkg_logger = logging.getLogger("shacl_rules")
    handlers = list(pkg_logger.handlers)
    level = pkg_logger.level
    yield
    pkg_logger.handlers = handlers
    pkg_logger.setLevel(level)


@pytest.fixture
def files(tmp_path):
    shapes = tmp_path / "shapes.ttl"
    shapes.write_text(SHAPES, encoding="utf-8")
    data = tmp_path / "data.ttl"
    data.write_text(DATA, encoding="utf-8")
    return {
        "shapes": str(shapes),
        "data": str(data),
        "config": str(tmp_path / "absent.json"),
        "dir": tmp_path,
    }


class TestCommands:
    def test_shapes(self, files, capsys):
        main(["--config", files["config"], "shapes", files["shapes"]])
        summary = json.loads(capsys.readouterr().out)
        [shape] = summary["root_shapes"]
        assert shape["shape"] == str(EX.PersonShape)
        assert shape["targets"] == [{"kind": "class", "value": str(EX.Person)}]
        assert shape["constraints"] == ["PropertyConstraintComponent"]
        assert len(shape["rules"]) == 1

    def test_infer_to_file(self, files, capsys):
        output = files["dir"] / "out.ttl"
        main([
            "--config", files["config"], "infer", files["data"],
            "--shapes", files["shapes"], "--output", str(output), "--inferred-only",
        ])
        assert '"inferred": 1' in capsys.readouterr().err
        inferred = Graph().parse(output, format="turtle")
        assert set(inferred) == {(EX.alice, RDF.type, EX.Agent)}

    def test_infer_full_model(self, files, capsys):
        main(["--config", files["config"], "infer", files["data"], "--shapes", files["shapes"]])
        out = capsys.readouterr().out
        model = Graph().parse(data=out, format="turtle")
        assert (EX.alice, RDF.type, EX.Agent) in model
        assert (EX.alice, RDF.type, EX.Person) in model

    def test_paths(self, files, capsys):
        query = files["dir"] / "rule.rq"
        query.write_text(
            "PREFIX ex: <http://example.org/ns#>\n"
            "CONSTRUCT { $this ex:out ?x } WHERE { $this ?p ?x . ?y ex:child $this }",
            encoding="utf-8",
        )
        main([
            "--config", files["config"], "paths", str(query),
            "--arg", f"p={EX.knows}",
        ])
        paths = json.loads(capsys.readouterr().out)
        assert paths == [
            {"predicate": str(EX.child), "direction": "subject"},
            {"predicate": str(EX.knows), "direction": "object"},
            {"predicate": str(EX.out), "direction": "object"},
        ]

    def test_paths_bad_argument(self, files):
        query = files["dir"] / "rule.rq"
        query.write_text("ASK { $this ?p ?x }", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", files["config"], "paths", str(query), "--kind", "ask", "--arg", "p"])
        assert exc_info.value.code == 2

    def test_relevant(self, files, capsys):
        main([
            "--config", files["config"], "relevant", str(EX.Person),
            "--graph", files["data"], "--shapes", files["shapes"],
        ])
        assert json.loads(capsys.readouterr().out) == [str(EX.age), str(EX.name), str(RDF.type)]

    def test_unknown_command(self):
        with pytest.raises(SystemExit):
            main(["frobnicate"])

    def test_validate_unsupported_entailment(self, files, capsys):
        pytest.importorskip("pyshacl")
        shapes = files["dir"] / "unsupported.ttl"
        shapes.write_text(SHAPES + "ex:PersonShape sh:entailment ex:Magic .\n", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", files["config"], "validate", files["data"], "--shapes", str(shapes)])
        assert exc_info.value.code == 1
        assert "Unsupported entailment" in capsys.readouterr().err
