"""
shacl-rules - SHACL Validator.

Checks data against a shapes graph after entailment, so that constraints
see inferred triples too. The entailments applied are those the shapes
graph declares with sh:entailment, plus sh:Rules when an explicit rules
engine is given. Validation runs on ShapesGraph.validation_graph(), so
the same participation rules apply to validation and to rule firing.

pyshacl is an optional dependency. If not installed, validate() raises
ImportError with a clear message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

from rdflib import Graph, URIRef
from rdflib.namespace import RDF, SH

from ._utils import import_pyshacl, local_name
from .entailment import RULES, with_entailments
from .rules import RulesEntailment, data_graph_of
from .shapes_graph import ShapesGraph

if TYPE_CHECKING:
    from .progress import ProgressMonitor

logger = logging.getLogger("shacl_rules.validator")

__all__ = ["SHACLValidator", "ValidationReport", "Violation"]


# ── Frozen result dataclasses ──────────────────────────────────────────────

@dataclass(frozen=True)
class Violation:
    """A single SHACL validation result."""

    severity: str
    focus_node: str
    path: str
    message: str
    source_shape: str
    source_component: str = ""


@dataclass(frozen=True)
class ValidationReport:
    """Result of a SHACL validation run."""

    conforms: bool
    violations: tuple[Violation, ...]
    stats: MappingProxyType[str, int]


# ── Validator class ────────────────────────────────────────────────────────

class SHACLValidator:
    """
    Validates data graphs against a ShapesGraph.

    Args:
        shapes_graph: The shapes to validate against.
        entailment: Engine for sh:Rules. It runs before validation whether
            or not the shapes graph declares sh:Rules.
        apply_declared: Apply the entailments declared in the shapes
            graph. When False only the explicit engine (if any) runs.
    """

    def __init__(
        self,
        shapes_graph: ShapesGraph,
        entailment: RulesEntailment | None = None,
        *,
        apply_declared: bool = True,
    ) -> None:
        self._shapes = shapes_graph
        self._entailment = entailment
        self._apply_declared = apply_declared

    def prepare_shapes(self) -> Graph:
        """The shapes graph handed to pyshacl, without inactive shapes and constraints."""
        return self._shapes.validation_graph()

    def entail(
        self,
        dataset: Graph,
        shapes_graph_uri: URIRef | None = None,
        monitor: ProgressMonitor | None = None,
    ) -> Graph:
        """The model validation runs on. Raises UnsupportedEntailmentError."""
        engines = {RULES: self._entailment} if self._entailment is not None else {}
        if self._apply_declared:
            return with_entailments(
                dataset, shapes_graph_uri, self._shapes, monitor, engines=engines,
            )
        if self._entailment is not None:
            return self._entailment.create_model_with_entailment(
                dataset, shapes_graph_uri, self._shapes, monitor,
            )
        return data_graph_of(dataset)

    def validate(
        self,
        dataset: Graph,
        shapes_graph_uri: URIRef | None = None,
        monitor: ProgressMonitor | None = None,
    ) -> ValidationReport:
        """
        Validate the data graph of dataset.

        Returns:
            ValidationReport with conformance status and violations.
        """
        pyshacl = import_pyshacl()
        model = self.entail(dataset, shapes_graph_uri, monitor)

        data = Graph()
        for triple in model.triples((None, None, None)):
            data.add(triple)

        conforms, results_graph, _results_text = pyshacl.validate(
            data_graph=data,
            shacl_graph=self.prepare_shapes(),
            inference="none",
            abort_on_first=False,
        )

        violations = self._parse_results(results_graph)

        violation_count = sum(1 for v in violations if v.severity == "Violation")
        warning_count = sum(1 for v in violations if v.severity == "Warning")

        return ValidationReport(
            conforms=conforms,
            violations=tuple(violations),
            stats=MappingProxyType({
                "total_violations": len(violations),
                "errors": violation_count,
                "warnings": warning_count,
                "inferred": len(data) - len(data_graph_of(dataset)),
            }),
        )

    def _parse_results(self, results_graph: Graph) -> list[Violation]:
        """Parse a SHACL validation results graph into Violation objects."""
        violations: list[Violation] = []

        for result in results_graph.subjects(RDF.type, SH.ValidationResult):
            severity_uri = results_graph.value(result, SH.resultSeverity)
            severity = local_name(severity_uri) if severity_uri else "Violation"

            focus = results_graph.value(result, SH.focusNode)
            path = results_graph.value(result, SH.resultPath)
            message = results_graph.value(result, SH.resultMessage)
            source = results_graph.value(result, SH.sourceShape)
            component = results_graph.value(result, SH.sourceConstraintComponent)

            violations.append(Violation(
                severity=severity,
                focus_node=str(focus) if focus else "",
                path=local_name(path) if path else "",
                message=str(message) if message else "",
                source_shape=local_name(source) if source else "",
                source_component=local_name(component) if component else "",
            ))

        return sorted(violations, key=lambda v: (v.severity != "Violation", v.path, v.focus_node))
