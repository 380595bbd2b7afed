"""
shacl-rules - Property path extraction.

Static analysis of SPARQL rule and constraint bodies: which properties a
body reads or writes relative to the focus node ($this).

Usage:
    from shacl_rules.paths import PropertyPathsGetter

    getter = PropertyPathsGetter(body, arguments={"p": EX.knows})
    for path in getter.run():
        print(path)

Only triple patterns with $this in subject or object position count.
A variable in predicate position is resolved through the supplied
arguments and skipped when it has no IRI binding. Property path
expressions (ex:a/ex:b, ^ex:a, ex:a*) are not plain predicates and are
not recorded.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum

from rdflib import URIRef
from rdflib.paths import AlternativePath, InvPath, MulPath, NegatedPath, Path, SequencePath
from rdflib.plugins.sparql.parserutils import CompValue
from rdflib.term import Node, Variable

from ._utils import local_name
from .evaluator import prepare_body
from .model import (
    ExpressionKind,
    NodeExpression,
    Shape,
    SparqlBody,
    SPARQLRule,
    TripleRule,
)

logger = logging.getLogger("shacl_rules.paths")

__all__ = [
    "Direction",
    "PropertyPath",
    "PropertyPathsGetter",
    "collect_predicates",
    "triple_rule_paths",
    "shape_property_paths",
    "THIS",
]

THIS = Variable("this")


class Direction(str, Enum):
    OBJECT = "object"
    SUBJECT = "subject"


@dataclass(frozen=True)
class PropertyPath:
    """A predicate read relative to the focus node, in one direction."""

    predicate: URIRef
    direction: Direction

    @property
    def inverse(self) -> bool:
        return self.direction == Direction.SUBJECT

    def __str__(self) -> str:
        if self.inverse:
            return f"?x <{self.predicate}> $this"
        return f"$this <{self.predicate}> ?x"


def _where_patterns(node) -> Iterator[tuple[Node, Node, Node]]:
    """Triple patterns of every BGP below an algebra node.

    Covers nested groups, OPTIONAL, UNION, MINUS, sub-queries and the
    patterns of FILTER (NOT) EXISTS expressions. A CONSTRUCT template is
    not a BGP and is not visited.

    The graph of an EXISTS expression may be left as a parse tree, where
    triples sit in TriplesBlock nodes as flat subject, predicate, object
    runs rather than in a BGP.
    """
    if isinstance(node, CompValue):
        if node.name == "BGP":
            yield from node.triples or ()
            return
        if node.name == "TriplesBlock":
            terms = [term for run in node.triples or () for term in run]
            for i in range(0, len(terms) - 2, 3):
                yield terms[i], terms[i + 1], terms[i + 2]
            return
        for key, value in node.items():
            if key == "template":
                continue
            yield from _where_patterns(value)
    elif isinstance(node, (list, tuple)):
        for item in node:
            yield from _where_patterns(item)


def _normalize_arguments(arguments: Mapping | None) -> dict[str, Node]:
    """Key arguments by variable name; URIRef keys count by local name."""
    names: dict[str, Node] = {}
    for key, value in (arguments or {}).items():
        name = local_name(key) if isinstance(key, URIRef) else str(key).lstrip("?$")
        names[name] = value
    return names


class PropertyPathsGetter:
    """
    Collects the property paths of a SPARQL body.

    Args:
        body: The body to analyse.
        arguments: Bindings for variables in predicate position, keyed by
            variable name or by parameter predicate.
        include_template: Also walk the CONSTRUCT template, so that
            properties a rule writes count as well.
    """

    def __init__(
        self,
        body: SparqlBody,
        arguments: Mapping | None = None,
        include_template: bool = True,
    ) -> None:
        self._body = body
        self._arguments = _normalize_arguments(arguments)
        self._include_template = include_template
        self._results: set[PropertyPath] = set()

    @property
    def results(self) -> frozenset[PropertyPath]:
        return frozenset(self._results)

    def run(self) -> frozenset[PropertyPath]:
        algebra = prepare_body(self._body).algebra
        for pattern in _where_patterns(algebra):
            self._visit(pattern)
        if self._include_template and algebra.template:
            for pattern in algebra.template:
                self._visit(pattern)
        return self.results

    def _predicate(self, predicate: Node) -> URIRef | None:
        if isinstance(predicate, Variable):
            bound = self._arguments.get(str(predicate))
            if isinstance(bound, URIRef):
                return bound
            logger.debug("Unbound predicate variable ?%s in %s", predicate, self._body.node)
            return None
        if isinstance(predicate, URIRef):
            return predicate
        return None

    def _visit(self, pattern: tuple[Node, Node, Node]) -> None:
        subject, predicate, obj = pattern
        if subject != THIS and obj != THIS:
            return
        resolved = self._predicate(predicate)
        if resolved is None:
            return
        if subject == THIS:
            self._results.add(PropertyPath(resolved, Direction.OBJECT))
        if obj == THIS:
            self._results.add(PropertyPath(resolved, Direction.SUBJECT))


def _path_predicates(path) -> tuple[set[URIRef], bool]:
    if isinstance(path, URIRef):
        return {path}, True
    if isinstance(path, NegatedPath):
        return set(), False
    if isinstance(path, (SequencePath, AlternativePath)):
        found: set[URIRef] = set()
        complete = True
        for arg in path.args:
            predicates, ok = _path_predicates(arg)
            found |= predicates
            complete = complete and ok
        return found, complete
    if isinstance(path, (InvPath, MulPath)):
        return _path_predicates(path.arg if isinstance(path, InvPath) else path.path)
    return set(), False


def collect_predicates(
    body: SparqlBody, arguments: Mapping | None = None,
) -> tuple[frozenset[URIRef], bool]:
    """
    Every predicate the WHERE clause of body may read.

    Returns the predicates and whether the set is complete. It is not
    complete when a predicate variable has no IRI binding or a negated
    property set is used, since such patterns may read any predicate.
    """
    names = _normalize_arguments(arguments)
    found: set[URIRef] = set()
    complete = True
    for _, predicate, _ in _where_patterns(prepare_body(body).algebra):
        if isinstance(predicate, Variable):
            bound = names.get(str(predicate))
            if isinstance(bound, URIRef):
                found.add(bound)
            else:
                complete = False
        elif isinstance(predicate, (URIRef, Path)):
            predicates, ok = _path_predicates(predicate)
            found |= predicates
            complete = complete and ok
    return frozenset(found), complete


def _expression_paths(expression: NodeExpression) -> set[PropertyPath]:
    paths: set[PropertyPath] = set()
    if expression.kind == ExpressionKind.PATH:
        # Only expressions that start from the focus node read its paths.
        starts_at_focus = (
            not expression.items or expression.items[0].kind == ExpressionKind.FOCUS
        )
        if starts_at_focus:
            if isinstance(expression.path, URIRef):
                paths.add(PropertyPath(expression.path, Direction.OBJECT))
            elif isinstance(expression.path, InvPath) and isinstance(expression.path.arg, URIRef):
                paths.add(PropertyPath(expression.path.arg, Direction.SUBJECT))
    for item in expression.items:
        paths |= _expression_paths(item)
    return paths


def triple_rule_paths(rule: TripleRule) -> frozenset[PropertyPath]:
    """Paths read by the path expressions of a triple rule."""
    paths: set[PropertyPath] = set()
    for expression in (rule.subject, rule.predicate, rule.object):
        if expression is not None:
            paths |= _expression_paths(expression)
    return frozenset(paths)


def expression_predicates(expression: NodeExpression) -> tuple[set[URIRef], bool]:
    """Predicates a node expression reads, and whether the set is complete."""
    found: set[URIRef] = set()
    complete = True
    if expression.kind == ExpressionKind.PATH:
        found, complete = _path_predicates(expression.path)
    for item in expression.items:
        predicates, ok = expression_predicates(item)
        found |= predicates
        complete = complete and ok
    return found, complete


def shape_property_paths(shape: Shape, include_template: bool = True) -> frozenset[PropertyPath]:
    """Property paths of every SPARQL body and triple rule attached to a shape."""
    paths: set[PropertyPath] = set()
    for constraint in shape.sparql_constraints:
        if constraint.body is not None and not constraint.deactivated:
            paths |= PropertyPathsGetter(constraint.body).run()
    for constraint in shape.constraints:
        validator = constraint.validator
        if validator is not None:
            paths |= PropertyPathsGetter(validator, constraint.arguments).run()
    for rule in shape.rules:
        if isinstance(rule, SPARQLRule) and rule.body is not None:
            paths |= PropertyPathsGetter(rule.body, include_template=include_template).run()
        elif isinstance(rule, TripleRule):
            paths |= triple_rule_paths(rule)
    return frozenset(paths)
