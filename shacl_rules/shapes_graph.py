"""
shacl-rules - Shapes graph.

Single source of truth for which shapes exist in a shapes graph, which
constraints they carry and which of them take part in a run.

Usage:
    from rdflib import Graph
    from shacl_rules.shapes_graph import ShapesGraph

    shapes = ShapesGraph(Graph().parse("shapes.ttl"))
    for shape in shapes.root_shapes():
        print(shape.node, [str(c) for c in shape.constraints])

Filters are fixed at construction time. Every derived collection (root
shapes, shape wrappers, the parameter -> component map) is computed on
first access and cached for the life of the instance, so later edits to
the underlying graph are not observed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from rdflib import Graph, URIRef
from rdflib.graph import ReadOnlyGraphAggregate
from rdflib.namespace import RDF, RDFS, SH
from rdflib.term import Node

from ._utils import all_instances, has_indirect_type, local_name
from .errors import ShapeDeclarationError
from .model import (
    TARGET_PREDICATES,
    Constraint,
    ConstraintComponent,
    Shape,
    as_constraint_component,
)

logger = logging.getLogger("shacl_rules.shapes_graph")

__all__ = ["ShapesGraph", "ParameterConflict", "ShapeFilter", "ConstraintFilter", "core_vocabulary"]

ShapeFilter = Callable[[Shape], bool]
ConstraintFilter = Callable[[Constraint], bool]

_CORE_PATH = Path(__file__).parent / "shacl-core.ttl"

_SHAPE_TYPES = (SH.NodeShape, SH.PropertyShape)


@lru_cache(maxsize=1)
def core_vocabulary() -> Graph:
    """The bundled SHACL Core constraint components, parsed once per process."""
    graph = Graph()
    graph.parse(str(_CORE_PATH), format="turtle")
    logger.debug("SHACL core vocabulary loaded: %d triples", len(graph))
    return graph


@dataclass(frozen=True)
class ParameterConflict:
    """A required parameter predicate claimed by more than one component."""

    predicate: URIRef
    components: tuple[Node, ...]
    winner: Node


class ShapesGraph:
    """
    Cached, filtered view of the shapes declared in an RDF graph.

    Args:
        graph: The shapes graph. It is never modified.
        shape_filter: Returns True for shapes to keep. None keeps all.
        constraint_filter: Returns True for constraints to keep. None keeps all.
        include_core: Read the bundled SHACL Core component declarations
            alongside the given graph.
    """

    def __init__(
        self,
        graph: Graph,
        *,
        shape_filter: ShapeFilter | None = None,
        constraint_filter: ConstraintFilter | None = None,
        include_core: bool = True,
    ) -> None:
        self._source = graph
        if include_core:
            self._graph: Graph = ReadOnlyGraphAggregate([graph, core_vocabulary()])
        else:
            self._graph = graph
        self._shape_filter = shape_filter
        self._constraint_filter = constraint_filter

        self._root_shapes: list[Shape] | None = None
        self._shapes: dict[Node, Shape] = {}
        self._components: dict[Node, ConstraintComponent | None] = {}
        self._parameters_map: dict[URIRef, ConstraintComponent] | None = None
        self._parameter_conflicts: list[ParameterConflict] = []
        self._declaration_errors: list[ShapeDeclarationError] = []
        self._ignored_constraints: dict[tuple[Node, Node], bool] = {}
        self._namespaces: dict[str, str] | None = None
        self._validation_graph: Graph | None = None

    # ── Accessors ──────────────────────────────────────────────────────

    @property
    def graph(self) -> Graph:
        """The graph all reads go through (includes the core vocabulary)."""
        return self._graph

    @property
    def source_graph(self) -> Graph:
        return self._source

    @property
    def shape_filter(self) -> ShapeFilter | None:
        return self._shape_filter

    @property
    def constraint_filter(self) -> ConstraintFilter | None:
        return self._constraint_filter

    @property
    def parameter_conflicts(self) -> tuple[ParameterConflict, ...]:
        self._parameters()
        return tuple(self._parameter_conflicts)

    @property
    def declaration_errors(self) -> tuple[ShapeDeclarationError, ...]:
        return tuple(self._declaration_errors)

    def namespaces(self) -> dict[str, str]:
        """Prefix -> namespace bindings of the source shapes graph."""
        if self._namespaces is None:
            self._namespaces = {
                prefix: str(ns) for prefix, ns in self._source.namespaces() if prefix
            }
        return self._namespaces

    def report(self, error: ShapeDeclarationError) -> None:
        """Record a malformed declaration found while reading the graph."""
        for known in self._declaration_errors:
            if known.node == error.node and known.message == error.message:
                return
        logger.warning("Malformed declaration %s", error)
        self._declaration_errors.append(error)

    # ── Shapes ─────────────────────────────────────────────────────────

    def shape(self, node: Node) -> Shape:
        """The Shape wrapper for node, built once per node."""
        shape = self._shapes.get(node)
        if shape is None:
            shape = Shape(self, node)
            self._shapes[node] = shape
        return shape

    def root_shapes(self) -> list[Shape]:
        """
        Shapes that are entry points for validation and rule firing.

        Nodes with any target declaration plus shapes that are also
        rdfs:Class instances, minus those rejected by the shape filter.
        The same list object is returned on every call.
        """
        if self._root_shapes is None:
            g = self._graph
            candidates: set[Node] = set()
            for predicate in TARGET_PREDICATES:
                candidates.update(g.subjects(predicate, None))
            for shape_type in _SHAPE_TYPES:
                for node in all_instances(shape_type, g):
                    if has_indirect_type(g, node, RDFS.Class):
                        candidates.add(node)
            self._root_shapes = [
                self.shape(node)
                for node in sorted(candidates, key=str)
                if not self.is_ignored(node)
            ]
            logger.debug(
                "Root shapes: %d of %d candidates", len(self._root_shapes), len(candidates),
            )
        return self._root_shapes

    def shapes_for_class(self, cls: Node) -> list[Shape]:
        """The class itself if it is a shape, plus shapes with sh:targetClass cls."""
        g = self._graph
        shapes: list[Shape] = []
        if any(has_indirect_type(g, cls, t) for t in _SHAPE_TYPES):
            shapes.append(self.shape(cls))
        for node in sorted(set(g.subjects(SH.targetClass, cls)), key=str):
            if node != cls:
                shapes.append(self.shape(node))
        return shapes

    # ── Filters ────────────────────────────────────────────────────────

    def is_ignored(self, node: Node) -> bool:
        if self._shape_filter is None:
            return False
        return not self._shape_filter(self.shape(node))

    def is_ignored_constraint(self, constraint: Constraint) -> bool:
        if self._constraint_filter is None:
            return False
        key = (constraint.shape.node, constraint.component.node)
        ignored = self._ignored_constraints.get(key)
        if ignored is None:
            ignored = not self._constraint_filter(constraint)
            self._ignored_constraints[key] = ignored
        return ignored

    def participates(self, shape: Shape) -> bool:
        """
        True if the shape takes part in a run.

        Deactivated shapes and shapes rejected by the shape filter never
        do. A shape all of whose constraints are rejected by the
        constraint filter does not either; a shape without constraints is
        unaffected by the constraint filter.
        """
        if shape.is_deactivated or self.is_ignored(shape.node):
            return False
        constraints = shape.constraints
        if constraints and all(self.is_ignored_constraint(c) for c in constraints):
            return False
        return True

    def validation_graph(self) -> Graph:
        """
        Clone of the source graph for an external SHACL validator.

        Shapes that take no part in a run lose their target triples and
        their rdfs:Class typing, so they select no focus nodes. Constraints
        rejected by the constraint filter lose their parameter triples,
        except those a kept constraint of the same shape still needs. The
        clone is built once.
        """
        if self._validation_graph is not None:
            return self._validation_graph
        source = self._source
        pruned = Graph()
        for prefix, ns in source.namespaces():
            pruned.bind(prefix, ns)
        for triple in source.triples((None, None, None)):
            pruned.add(triple)

        removed = 0
        candidates: set[Node] = set()
        for predicate in TARGET_PREDICATES:
            candidates.update(source.subjects(predicate, None))
        for shape_type in _SHAPE_TYPES:
            candidates.update(all_instances(shape_type, source, self._graph))
        for node in sorted(candidates, key=str):
            shape = self.shape(node)
            if not (shape.is_deactivated or self.is_ignored(node)):
                continue
            for predicate in TARGET_PREDICATES:
                for triple in list(pruned.triples((node, predicate, None))):
                    pruned.remove(triple)
                    removed += 1
            for type_ in list(pruned.objects(node, RDF.type)):
                if RDFS.Class in self._graph.transitive_objects(type_, RDFS.subClassOf):
                    pruned.remove((node, RDF.type, type_))
                    removed += 1

        if self._constraint_filter is not None:
            for node in sorted(set(source.subjects()), key=str):
                constraints = self.shape(node).constraints
                kept = {
                    p for c in constraints if not self.is_ignored_constraint(c)
                    for p in c.parameter_values
                }
                for constraint in constraints:
                    if not self.is_ignored_constraint(constraint):
                        continue
                    for predicate in constraint.parameter_values:
                        if predicate in kept:
                            continue
                        for triple in list(pruned.triples((node, predicate, None))):
                            pruned.remove(triple)
                            removed += 1
        if removed:
            logger.info("Removed %d triples of inactive shapes and constraints", removed)
        self._validation_graph = pruned
        return pruned

    # ── Constraint components ──────────────────────────────────────────

    def component(self, node: Node) -> ConstraintComponent | None:
        """The ConstraintComponent view of node, None if it is malformed."""
        if node not in self._components:
            try:
                component = as_constraint_component(self._graph, node, self.namespaces())
            except ShapeDeclarationError as exc:
                self.report(exc)
                component = None
            self._components[node] = component
        return self._components[node]

    def components(self) -> list[ConstraintComponent]:
        """All well-formed constraint components, in IRI order."""
        nodes = all_instances(SH.ConstraintComponent, self._graph)
        return [c for c in (self.component(n) for n in sorted(nodes, key=str)) if c is not None]

    def component_for_parameter(self, predicate: Node) -> ConstraintComponent | None:
        """The component that declares predicate as a required parameter."""
        return self._parameters().get(predicate)

    def _parameters(self) -> dict[URIRef, ConstraintComponent]:
        if self._parameters_map is None:
            mapping: dict[URIRef, ConstraintComponent] = {}
            claimants: dict[URIRef, list[Node]] = {}
            for component in self.components():
                for param in component.required_parameters:
                    claimants.setdefault(param.predicate, []).append(component.node)
                    mapping[param.predicate] = component
            core = core_vocabulary()
            for predicate in sorted(claimants, key=str):
                owners = claimants[predicate]
                if len(owners) < 2:
                    continue
                conflict = ParameterConflict(predicate, tuple(owners), owners[-1])
                self._parameter_conflicts.append(conflict)
                # The core qualified components share sh:qualifiedValueShape.
                level = logging.WARNING
                if all((o, RDF.type, SH.ConstraintComponent) in core for o in owners):
                    level = logging.DEBUG
                logger.log(
                    level,
                    "Parameter %s is required by %d components (%s), using %s",
                    local_name(predicate), len(owners),
                    ", ".join(local_name(o) for o in owners), local_name(owners[-1]),
                )
            self._parameters_map = mapping
        return self._parameters_map
