"""
shacl-rules - Typed views over shapes graph nodes.

A single node in a shapes graph may be read as a shape, a constraint
component, a parameter, a rule or a target depending on who asks. Each
role has its own constructor function (as_parameter, as_rule, ...) that
reads exactly the declarations that role needs and raises
ShapeDeclarationError when they are missing. The resulting views are
frozen and borrow only the node and the graph they were read from.

Shape is the exception: it is a lazily-populated wrapper owned and
memoized by ShapesGraph, so that nested shape references resolve to the
same instance.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from rdflib import Graph, Literal, URIRef
from rdflib.namespace import RDF, RDFS, SH
from rdflib.paths import (
    AlternativePath,
    InvPath,
    MulPath,
    OneOrMore,
    Path,
    SequencePath,
    ZeroOrMore,
    ZeroOrOne,
)
from rdflib.term import Node

from ._utils import all_instances, has_indirect_type, is_true, local_name, rdf_list
from .errors import ShapeDeclarationError

if TYPE_CHECKING:
    from .evaluator import QueryEvaluator
    from .shapes_graph import ShapesGraph

logger = logging.getLogger("shacl_rules.model")

__all__ = [
    "SparqlBody",
    "Parameter",
    "ConstraintComponent",
    "Constraint",
    "SPARQLConstraint",
    "TargetKind",
    "Target",
    "ExpressionKind",
    "NodeExpression",
    "Rule",
    "SPARQLRule",
    "TripleRule",
    "Shape",
    "TARGET_PREDICATES",
    "as_sparql_body",
    "as_parameter",
    "as_constraint_component",
    "as_sparql_constraint",
    "as_target",
    "as_node_expression",
    "as_rule",
    "shacl_path",
]

_BODY_PREDICATES: dict[str, URIRef] = {
    "ask": SH.ask,
    "select": SH.select,
    "construct": SH.construct,
}

_VALIDATOR_PREDICATES: tuple[tuple[str, URIRef], ...] = (
    ("validator", SH.validator),
    ("nodeValidator", SH.nodeValidator),
    ("propertyValidator", SH.propertyValidator),
)


def _order(graph: Graph, node: Node) -> float:
    value = graph.value(node, SH.order)
    if isinstance(value, Literal):
        number = value.toPython()
        if isinstance(number, (int, float)) and not isinstance(number, bool):
            return float(number)
    return 0.0


def _sorted_objects(graph: Graph, node: Node, predicate: URIRef) -> list[Node]:
    return sorted(set(graph.objects(node, predicate)), key=str)


# ── SPARQL bodies ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SparqlBody:
    """Query text attached to a node, with the prefixes it is parsed under."""

    node: Node
    text: str
    kind: str
    prefixes: tuple[tuple[str, str], ...] = ()

    @property
    def namespaces(self) -> dict[str, str]:
        return dict(self.prefixes)


def _collect_prefixes(
    graph: Graph, node: Node, base: Mapping[str, str] | None = None,
) -> tuple[tuple[str, str], ...]:
    """Graph-level prefixes overlaid with the node's sh:prefixes declarations."""
    prefixes = {k: str(v) for k, v in (base or {}).items()}
    for ontology in graph.objects(node, SH.prefixes):
        for decl in graph.objects(ontology, SH.declare):
            prefix = graph.value(decl, SH.prefix)
            namespace = graph.value(decl, SH.namespace)
            if prefix is not None and namespace is not None:
                prefixes[str(prefix)] = str(namespace)
    return tuple(sorted(prefixes.items()))


def as_sparql_body(
    graph: Graph, node: Node, kind: str, namespaces: Mapping[str, str] | None = None,
) -> SparqlBody:
    """Read the sh:ask / sh:select / sh:construct query carried by node."""
    text = graph.value(node, _BODY_PREDICATES[kind])
    if text is None:
        raise ShapeDeclarationError(node, f"missing sh:{kind} query")
    return SparqlBody(
        node=node,
        text=str(text),
        kind=kind,
        prefixes=_collect_prefixes(graph, node, namespaces),
    )


# ── Constraint components ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Parameter:
    """A constraint component parameter declaration."""

    node: Node
    predicate: URIRef
    optional: bool = False
    order: float = 0.0

    @property
    def var_name(self) -> str:
        """Name of the SPARQL variable this parameter is bound to."""
        return local_name(self.predicate)


def as_parameter(graph: Graph, node: Node) -> Parameter:
    predicate = graph.value(node, SH.path)
    if not isinstance(predicate, URIRef):
        raise ShapeDeclarationError(node, "parameter without an IRI sh:path")
    return Parameter(
        node=node,
        predicate=predicate,
        optional=is_true(graph, node, SH.optional),
        order=_order(graph, node),
    )


@dataclass(frozen=True)
class ConstraintComponent:
    """A reusable constraint kind with its parameters and SPARQL validators."""

    node: Node
    parameters: tuple[Parameter, ...]
    validators: tuple[tuple[str, SparqlBody], ...] = ()

    @property
    def required_parameters(self) -> tuple[Parameter, ...]:
        return tuple(p for p in self.parameters if not p.optional)

    @property
    def optional_parameters(self) -> tuple[Parameter, ...]:
        return tuple(p for p in self.parameters if p.optional)

    def validator_for(self, property_shape: bool) -> SparqlBody | None:
        """The most specific validator for a node or property shape."""
        roles = ("propertyValidator" if property_shape else "nodeValidator", "validator")
        for role in roles:
            for validator_role, body in self.validators:
                if validator_role == role:
                    return body
        return None


def as_constraint_component(
    graph: Graph, node: Node, namespaces: Mapping[str, str] | None = None,
) -> ConstraintComponent:
    parameters = sorted(
        (as_parameter(graph, p) for p in set(graph.objects(node, SH.parameter))),
        key=lambda p: (p.order, str(p.predicate)),
    )
    validators: list[tuple[str, SparqlBody]] = []
    for role, predicate in _VALIDATOR_PREDICATES:
        for validator in _sorted_objects(graph, node, predicate):
            kind = "ask" if graph.value(validator, SH.ask) is not None else "select"
            validators.append((role, as_sparql_body(graph, validator, kind, namespaces)))
    return ConstraintComponent(
        node=node, parameters=tuple(parameters), validators=tuple(validators),
    )


@dataclass(frozen=True)
class Constraint:
    """A shape bound to one constraint component and its parameter values."""

    shape: Shape
    component: ConstraintComponent
    parameter_values: Mapping[URIRef, tuple[Node, ...]] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, hash=False,
    )

    def value(self, predicate: URIRef) -> Node | None:
        values = self.parameter_values.get(predicate, ())
        return values[0] if values else None

    @property
    def arguments(self) -> dict[str, Node]:
        """Parameter variable name -> first value, for templated bodies."""
        return {local_name(p): v[0] for p, v in self.parameter_values.items() if v}

    @property
    def validator(self) -> SparqlBody | None:
        return self.component.validator_for(self.shape.is_property_shape)

    def __str__(self) -> str:
        return f"{local_name(self.component.node)} of {self.shape.node}"


@dataclass(frozen=True)
class SPARQLConstraint:
    """An sh:sparql constraint (SELECT-based)."""

    node: Node
    body: SparqlBody | None
    deactivated: bool = False
    label: str | None = None
    comment: str | None = None
    message: str | None = None

    def __str__(self) -> str:
        for text in (self.label, self.comment, self.message):
            if text is not None:
                return text
        if self.body is not None:
            return self.body.text
        return "(Incomplete SPARQL Constraint)"


def as_sparql_constraint(
    graph: Graph, node: Node, namespaces: Mapping[str, str] | None = None,
) -> SPARQLConstraint:
    def text(predicate: URIRef) -> str | None:
        value = graph.value(node, predicate)
        return str(value) if value is not None else None

    body = None
    if graph.value(node, SH.select) is not None:
        body = as_sparql_body(graph, node, "select", namespaces)
    return SPARQLConstraint(
        node=node,
        body=body,
        deactivated=is_true(graph, node, SH.deactivated),
        label=text(RDFS.label),
        comment=text(RDFS.comment),
        message=text(SH.message),
    )


# ── Targets ────────────────────────────────────────────────────────────────

class TargetKind(str, Enum):
    NODE = "node"
    CLASS = "class"
    IMPLICIT_CLASS = "implicit_class"
    SUBJECTS_OF = "subjects_of"
    OBJECTS_OF = "objects_of"
    SPARQL = "sparql"


_TARGET_KINDS: dict[URIRef, TargetKind] = {
    SH.targetNode: TargetKind.NODE,
    SH.targetClass: TargetKind.CLASS,
    SH.targetSubjectsOf: TargetKind.SUBJECTS_OF,
    SH.targetObjectsOf: TargetKind.OBJECTS_OF,
}

TARGET_PREDICATES: tuple[URIRef, ...] = (SH.target, *_TARGET_KINDS)


@dataclass(frozen=True)
class Target:
    """A focus node selector of a shape."""

    kind: TargetKind
    value: Node | None = None
    body: SparqlBody | None = None

    @property
    def predicates(self) -> frozenset[URIRef] | None:
        """Predicates whose triples decide the focus nodes, None if unknown."""
        if self.kind == TargetKind.NODE:
            return frozenset()
        if self.kind in (TargetKind.CLASS, TargetKind.IMPLICIT_CLASS):
            return frozenset({RDF.type, RDFS.subClassOf})
        if self.kind in (TargetKind.SUBJECTS_OF, TargetKind.OBJECTS_OF):
            return frozenset({self.value})
        return None

    def focus_nodes(
        self, view: Graph, schema: Graph, evaluator: QueryEvaluator,
    ) -> set[Node]:
        if self.kind == TargetKind.NODE:
            return {self.value}
        if self.kind in (TargetKind.CLASS, TargetKind.IMPLICIT_CLASS):
            return all_instances(self.value, view, schema)
        if self.kind == TargetKind.SUBJECTS_OF:
            return set(view.subjects(self.value, None))
        if self.kind == TargetKind.OBJECTS_OF:
            return set(view.objects(None, self.value))
        rows = evaluator.select(self.body, view)
        return {row["this"] for row in rows if row.get("this") is not None}


def as_target(
    graph: Graph, node: Node, namespaces: Mapping[str, str] | None = None,
) -> Target:
    """Read an sh:target value. Only SPARQL-based targets are understood."""
    if graph.value(node, SH.select) is None:
        raise ShapeDeclarationError(node, "custom target without sh:select")
    return Target(
        kind=TargetKind.SPARQL,
        value=node,
        body=as_sparql_body(graph, node, "select", namespaces),
    )


# ── Property paths and node expressions ────────────────────────────────────

_MUL_PATHS: tuple[tuple[URIRef, str], ...] = (
    (SH.zeroOrMorePath, ZeroOrMore),
    (SH.oneOrMorePath, OneOrMore),
    (SH.zeroOrOnePath, ZeroOrOne),
)


def shacl_path(graph: Graph, node: Node | None) -> URIRef | Path:
    """Convert a SHACL property path declaration into an rdflib path."""
    if isinstance(node, URIRef):
        return node
    if node is None or isinstance(node, Literal):
        raise ShapeDeclarationError(node, "not a property path")
    if graph.value(node, RDF.first) is not None:
        items = [shacl_path(graph, item) for item in rdf_list(graph, node)]
        if len(items) < 2:
            raise ShapeDeclarationError(node, "sequence path needs two or more members")
        return SequencePath(*items)
    inverse = graph.value(node, SH.inversePath)
    if inverse is not None:
        return InvPath(shacl_path(graph, inverse))
    alternatives = graph.value(node, SH.alternativePath)
    if alternatives is not None:
        return AlternativePath(*[shacl_path(graph, i) for i in rdf_list(graph, alternatives)])
    for predicate, mod in _MUL_PATHS:
        inner = graph.value(node, predicate)
        if inner is not None:
            return MulPath(shacl_path(graph, inner), mod)
    raise ShapeDeclarationError(node, "unrecognised property path")


class ExpressionKind(str, Enum):
    FOCUS = "focus"
    CONSTANT = "constant"
    PATH = "path"
    UNION = "union"
    INTERSECTION = "intersection"


@dataclass(frozen=True)
class NodeExpression:
    """A node expression of a triple rule."""

    kind: ExpressionKind
    node: Node
    path: URIRef | Path | None = None
    path_node: Node | None = None
    items: tuple[NodeExpression, ...] = ()

    def evaluate(self, view: Graph, focus: Node) -> set[Node]:
        if self.kind == ExpressionKind.FOCUS:
            return {focus}
        if self.kind == ExpressionKind.CONSTANT:
            return {self.node}
        if self.kind == ExpressionKind.PATH:
            inputs = self.items[0].evaluate(view, focus) if self.items else {focus}
            return {o for n in inputs for o in view.objects(n, self.path)}
        results = [item.evaluate(view, focus) for item in self.items]
        if not results:
            return set()
        if self.kind == ExpressionKind.UNION:
            return set().union(*results)
        return set.intersection(*results)


def as_node_expression(graph: Graph, node: Node) -> NodeExpression:
    if node == SH.this:
        return NodeExpression(ExpressionKind.FOCUS, node)
    if isinstance(node, (URIRef, Literal)):
        return NodeExpression(ExpressionKind.CONSTANT, node)
    path = graph.value(node, SH.path)
    if path is not None:
        nodes = graph.value(node, SH.nodes)
        return NodeExpression(
            ExpressionKind.PATH,
            node,
            path=shacl_path(graph, path),
            path_node=path,
            items=(as_node_expression(graph, nodes),) if nodes is not None else (),
        )
    for predicate, kind in ((SH.union, ExpressionKind.UNION),
                            (SH.intersection, ExpressionKind.INTERSECTION)):
        members = graph.value(node, predicate)
        if members is not None:
            items = tuple(as_node_expression(graph, m) for m in rdf_list(graph, members))
            return NodeExpression(kind, node, items=items)
    raise ShapeDeclarationError(node, "unsupported node expression")


# ── Rules ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Rule:
    """Common part of SHACL rules."""

    node: Node
    order: float = 0.0
    deactivated: bool = False
    conditions: tuple[Node, ...] = ()


@dataclass(frozen=True)
class SPARQLRule(Rule):
    body: SparqlBody | None = None


@dataclass(frozen=True)
class TripleRule(Rule):
    subject: NodeExpression | None = None
    predicate: NodeExpression | None = None
    object: NodeExpression | None = None

    def infer(self, view: Graph, focus: Node) -> Iterator[tuple[Node, Node, Node]]:
        """Cross product of the three node expressions for one focus node."""
        subjects = [n for n in self.subject.evaluate(view, focus) if not isinstance(n, Literal)]
        if not subjects:
            return
        predicates = [n for n in self.predicate.evaluate(view, focus) if isinstance(n, URIRef)]
        objects = self.object.evaluate(view, focus)
        for s in subjects:
            for p in predicates:
                for o in objects:
                    yield s, p, o


def as_rule(
    graph: Graph, node: Node, namespaces: Mapping[str, str] | None = None,
) -> Rule:
    common = {
        "node": node,
        "order": _order(graph, node),
        "deactivated": is_true(graph, node, SH.deactivated),
        "conditions": tuple(_sorted_objects(graph, node, SH.condition)),
    }
    types = set(graph.objects(node, RDF.type))
    if SH.SPARQLRule in types or graph.value(node, SH.construct) is not None:
        return SPARQLRule(body=as_sparql_body(graph, node, "construct", namespaces), **common)
    if SH.TripleRule in types or graph.value(node, SH.subject) is not None:
        parts: dict[str, NodeExpression] = {}
        for name, predicate in (("subject", SH.subject), ("predicate", SH.predicate),
                                ("object", SH.object)):
            value = graph.value(node, predicate)
            if value is None:
                raise ShapeDeclarationError(node, f"triple rule without sh:{name}")
            parts[name] = as_node_expression(graph, value)
        return TripleRule(**parts, **common)
    raise ShapeDeclarationError(node, "neither a SPARQL rule nor a triple rule")


# ── Shapes ─────────────────────────────────────────────────────────────────

class Shape:
    """
    A shapes graph node viewed as a shape.

    Created and memoized by ShapesGraph.shape(). Targets, constraints and
    rules are read on first access and cached for the life of the owning
    ShapesGraph. Declarations that cannot be read are reported to the
    ShapesGraph and skipped.
    """

    def __init__(self, shapes_graph: ShapesGraph, node: Node) -> None:
        self._shapes_graph = shapes_graph
        self._node = node
        self._targets: tuple[Target, ...] | None = None
        self._constraints: tuple[Constraint, ...] | None = None
        self._sparql_constraints: tuple[SPARQLConstraint, ...] | None = None
        self._rules: tuple[Rule, ...] | None = None
        self._property_shapes: tuple[Shape, ...] | None = None

    def __repr__(self) -> str:
        return f"<Shape {self._node}>"

    @property
    def node(self) -> Node:
        return self._node

    @property
    def shapes_graph(self) -> ShapesGraph:
        return self._shapes_graph

    @property
    def graph(self) -> Graph:
        return self._shapes_graph.graph

    @property
    def is_deactivated(self) -> bool:
        return is_true(self.graph, self._node, SH.deactivated)

    @property
    def path(self) -> Node | None:
        return self.graph.value(self._node, SH.path)

    @property
    def is_property_shape(self) -> bool:
        return self.path is not None

    def _views(self, nodes, factory) -> list:
        views = []
        namespaces = self._shapes_graph.namespaces()
        for node in nodes:
            try:
                views.append(factory(self.graph, node, namespaces))
            except ShapeDeclarationError as exc:
                self._shapes_graph.report(exc)
        return views

    @property
    def targets(self) -> tuple[Target, ...]:
        if self._targets is None:
            g = self.graph
            targets = [
                Target(kind, value)
                for predicate, kind in _TARGET_KINDS.items()
                for value in _sorted_objects(g, self._node, predicate)
            ]
            targets += self._views(_sorted_objects(g, self._node, SH.target), as_target)
            if has_indirect_type(g, self._node, RDFS.Class):
                targets.append(Target(TargetKind.IMPLICIT_CLASS, self._node))
            self._targets = tuple(targets)
        return self._targets

    @property
    def constraints(self) -> tuple[Constraint, ...]:
        """Constraints of this shape; empty when the shape is deactivated."""
        if self.is_deactivated:
            return ()
        if self._constraints is None:
            self._constraints = self._resolve_constraints()
        return self._constraints

    def _resolve_constraints(self) -> tuple[Constraint, ...]:
        g = self.graph
        found: dict[Node, Constraint] = {}
        for predicate in sorted(set(g.predicates(self._node)), key=str):
            component = self._shapes_graph.component_for_parameter(predicate)
            if component is None or component.node in found:
                continue
            values = {
                param.predicate: tuple(_sorted_objects(g, self._node, param.predicate))
                for param in component.parameters
            }
            missing = [p.predicate for p in component.required_parameters if not values[p.predicate]]
            if missing:
                logger.debug(
                    "Shape %s: %s lacks required parameters %s",
                    self._node, local_name(component.node), [local_name(m) for m in missing],
                )
                continue
            found[component.node] = Constraint(
                shape=self,
                component=component,
                parameter_values=MappingProxyType({k: v for k, v in values.items() if v}),
            )
        return tuple(found[k] for k in sorted(found, key=str))

    @property
    def sparql_constraints(self) -> tuple[SPARQLConstraint, ...]:
        if self.is_deactivated:
            return ()
        if self._sparql_constraints is None:
            self._sparql_constraints = tuple(self._views(
                _sorted_objects(self.graph, self._node, SH.sparql), as_sparql_constraint,
            ))
        return self._sparql_constraints

    @property
    def rules(self) -> tuple[Rule, ...]:
        """Rules of this shape ordered by sh:order, then by node."""
        if self._rules is None:
            rules = self._views(_sorted_objects(self.graph, self._node, SH.rule), as_rule)
            self._rules = tuple(sorted(rules, key=lambda r: (r.order, str(r.node))))
        return self._rules

    @property
    def property_shapes(self) -> tuple[Shape, ...]:
        if self._property_shapes is None:
            self._property_shapes = tuple(
                self._shapes_graph.shape(n)
                for n in _sorted_objects(self.graph, self._node, SH.property)
            )
        return self._property_shapes

    def focus_nodes(self, view: Graph, evaluator: QueryEvaluator) -> set[Node]:
        """Union of the focus nodes selected by all targets against view."""
        nodes: set[Node] = set()
        for target in self.targets:
            nodes |= target.focus_nodes(view, self.graph, evaluator)
        return nodes
