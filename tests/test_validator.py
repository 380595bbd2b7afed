"""Tests for SHACL Validator module."""

import pytest
from rdflib import Graph, Namespace
from rdflib.namespace import RDF, RDFS, SH

from shacl_rules.errors import UnsupportedEntailmentError
from shacl_rules.rules import RulesEntailment
from shacl_rules.shapes_graph import ShapesGraph
from shacl_rules.validator import SHACLValidator, ValidationReport, Violation
EX = Namespace("http://example.org/ns#")

PREFIXES = """
@prefix ex: <http://example.org/ns#> .
@prefix sh: <http://www.w3.org/ns/shacl#> .
"""

SHAPES = PREFIXES + """
ex:StatusShape a sh:NodeShape ;
    sh:targetClass ex:Person ;
    sh:property [ sh:path ex:status ; sh:minCount 1 ; sh:message "Missing status" ] .

ex:StatusRule a sh:NodeShape ;
    sh:targetClass ex:Person ;
    sh:rule [ sh:construct "CONSTRUCT { $this ex:status \\"checked\\" } WHERE { $this a ex:Person }" ] .

ex:Hidden a sh:NodeShape ;
    sh:targetNode ex:alice ;
    sh:deactivated true ;
    sh:property [ sh:path ex:missing ; sh:minCount 1 ] .

ex:Draft a sh:NodeShape ;
    sh:targetClass ex:Person ;
    sh:property [ sh:path ex:draftOnly ; sh:minCount 1 ] .
"""

DATA = PREFIXES + """
ex:alice a ex:Person .
ex:bob a ex:Person .
"""


@pytest.fixture
def shapes():
    graph = Graph().parse(data=SHAPES, format="turtle")
    return ShapesGraph(graph, shape_filter=lambda s: s.node != EX.Draft)


@pytest.fixture
def data():
    return Graph().parse(data=DATA, format="turtle")


class TestPrepareShapes:
    def test_inactive_targets_removed(self, shapes):
        """Deactivated and filtered shapes lose their targets."""
        prepared = SHACLValidator(shapes).prepare_shapes()
        assert (EX.Hidden, SH.targetNode, EX.alice) not in prepared
        assert (EX.Draft, SH.targetClass, EX.Person) not in prepared
        assert (EX.StatusShape, SH.targetClass, EX.Person) in prepared

    def test_source_untouched(self, shapes):
        SHACLValidator(shapes).prepare_shapes()
        assert (EX.Draft, SH.targetClass, EX.Person) in shapes.source_graph

    def test_cached(self, shapes):
        validator = SHACLValidator(shapes)
        assert validator.prepare_shapes() is validator.prepare_shapes()

    def test_implicit_class_shape_filtered(self):
        """A filtered shape that is also a class loses its class typing."""
        graph = Graph().parse(data=PREFIXES + """
            @prefix rdfs: <http://www.w3.org/2000/01/rdf-schema#> .
            ex:Person a rdfs:Class, sh:NodeShape ;
                sh:property [ sh:path ex:name ; sh:minCount 1 ] .
        """, format="turtle")
        shapes = ShapesGraph(graph, shape_filter=lambda s: s.node != EX.Person)
        prepared = SHACLValidator(shapes).prepare_shapes()
        assert (EX.Person, RDF.type, RDFS.Class) not in prepared
        assert (EX.Person, RDF.type, SH.NodeShape) in prepared

    def test_filtered_constraint_parameters_removed(self):
        graph = Graph().parse(data=PREFIXES + """
            ex:NameShape sh:targetClass ex:Person ;
                sh:property ex:nameProperty .
            ex:nameProperty sh:path ex:name ; sh:minCount 1 ; sh:maxLength 3 .
        """, format="turtle")
        shapes = ShapesGraph(
            graph,
            constraint_filter=lambda c: c.component.node != SH.MaxLengthConstraintComponent,
        )
        prepared = SHACLValidator(shapes).prepare_shapes()
        assert (EX.nameProperty, SH.maxLength, None) not in prepared
        assert (EX.nameProperty, SH.minCount, None) in prepared
        assert (EX.nameProperty, SH.path, EX.name) in prepared
        assert (EX.nameProperty, SH.maxLength, None) in graph


class TestEntail:
    def test_declared_rules(self, data):
        """sh:entailment sh:Rules runs rules without an explicit engine."""
        graph = Graph().parse(data=SHAPES + "ex:StatusShape sh:entailment sh:Rules .", format="turtle")
        model = SHACLValidator(ShapesGraph(graph)).entail(data)
        assert (EX.alice, EX.status, None) in model

    def test_no_declaration(self, shapes, data):
        assert SHACLValidator(shapes).entail(data) is data

    def test_explicit_engine(self, shapes, data):
        model = SHACLValidator(shapes, RulesEntailment()).entail(data)
        assert (EX.bob, EX.status, None) in model

    def test_unsupported_declaration(self, data):
        graph = Graph().parse(data=SHAPES + "ex:StatusShape sh:entailment ex:Magic .", format="turtle")
        with pytest.raises(UnsupportedEntailmentError):
            SHACLValidator(ShapesGraph(graph)).entail(data)

    def test_declarations_skipped(self, data):
        graph = Graph().parse(data=SHAPES + "ex:StatusShape sh:entailment ex:Magic .", format="turtle")
        validator = SHACLValidator(ShapesGraph(graph), apply_declared=False)
        assert validator.entail(data) is data


class TestValidate:
    def test_without_entailment(self, shapes, data):
        pytest.importorskip("pyshacl")
        report = SHACLValidator(shapes).validate(data)
        assert isinstance(report, ValidationReport)
        assert report.conforms is False
        assert report.stats["errors"] == 2
        assert report.stats["inferred"] == 0
        assert {v.focus_node for v in report.violations} == {str(EX.alice), str(EX.bob)}
        assert all(v.path == "status" for v in report.violations)
        assert all(v.message == "Missing status" for v in report.violations)

    def test_with_entailment(self, shapes, data):
        """Inferred triples are visible to the constraints."""
        pytest.importorskip("pyshacl")
        report = SHACLValidator(shapes, RulesEntailment()).validate(data)
        assert report.conforms is True
        assert report.violations == ()
        assert report.stats["inferred"] == 2

    def test_declared_entailment(self, data):
        pytest.importorskip("pyshacl")
        graph = Graph().parse(data=SHAPES + "ex:StatusShape sh:entailment sh:Rules .", format="turtle")
        shapes = ShapesGraph(graph, shape_filter=lambda s: s.node != EX.Draft)
        report = SHACLValidator(shapes).validate(data)
        assert report.conforms is True
        assert report.stats["inferred"] == 2

    def test_filters_apply_to_validation(self, data):
        """Filtered implicit class shapes and filtered constraints report nothing."""
        pytest.importorskip("pyshacl")
        graph = Graph().parse(data=PREFIXES + """
            @prefix rdfs: <http://www.w3.org/2000/01/rdf-schema#> .
            ex:Person a rdfs:Class, sh:NodeShape ;
                sh:property [ sh:path ex:name ; sh:minCount 1 ] .
            ex:NameShape sh:targetClass ex:Person ;
                sh:property [ sh:path ex:status ; sh:maxCount 0 ; sh:minCount 0 ] .
        """, format="turtle")
        data.add((EX.alice, EX.status, EX.active))
        shapes = ShapesGraph(
            graph,
            shape_filter=lambda s: s.node != EX.Person,
            constraint_filter=lambda c: c.component.node != SH.MaxCountConstraintComponent,
        )
        assert SHACLValidator(shapes).validate(data).conforms is True
        assert SHACLValidator(ShapesGraph(graph)).validate(data).conforms is False

    def test_data_not_modified(self, shapes, data):
        pytest.importorskip("pyshacl")
        before = len(data)
        SHACLValidator(shapes, RulesEntailment()).validate(data)
        assert len(data) == before


class TestValidationReport:
    def test_frozen(self):
        """ValidationReport should be immutable."""
        report = ValidationReport(
            conforms=True,
            violations=(),
            stats={"total_violations": 0, "errors": 0, "warnings": 0},
        )
        with pytest.raises(AttributeError):
            report.conforms = False

    def test_violation_frozen(self):
        """Violation should be immutable."""
        v = Violation(
            severity="Violation",
            focus_node="urn:test",
            path="status",
            message="Missing status",
            source_shape="StatusShape",
        )
        with pytest.raises(AttributeError):
            v.severity = "Warning"
