"""
shacl-rules - Rule engine and rules entailment.

Computes the closure of the triples inferred by the sh:rule declarations
of a shapes graph, without touching the data graph.

Usage:
    from shacl_rules.rules import RulesEntailment

    model = RulesEntailment().create_model_with_entailment(data, None, shapes)

Inferred triples go to a fresh, engine-owned inference graph. All reads
go through a read-only union of the data graph and the inference graph,
so later firings see earlier inferences. Rounds repeat until one adds
nothing. The result is the data graph itself when nothing was inferred,
otherwise the union view.

sh:condition shapes are checked with their SPARQL constraints and
validators. A condition that uses SHACL Core components without a SPARQL
validator is handed to pyshacl; without pyshacl it never holds.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import TYPE_CHECKING

from rdflib import Dataset, Graph, Literal, URIRef
from rdflib.graph import ReadOnlyGraphAggregate
from rdflib.namespace import SH

from ._utils import import_pyshacl
from .errors import EntailmentCancelled, FixpointNotReached, ShapeDeclarationError
from .evaluator import QueryEvaluator
from .model import Rule, Shape, SparqlBody, SPARQLRule, TripleRule, shacl_path
from .paths import collect_predicates, expression_predicates
from .progress import NullProgressMonitor
from .shapes_graph import ShapesGraph

if TYPE_CHECKING:
    from rdflib.term import Node

    from .model import Constraint
    from .progress import ProgressMonitor

logger = logging.getLogger("shacl_rules.rules")

__all__ = ["RuleEngine", "RulesEntailment", "EngineStats", "data_graph_of"]


@dataclass
class EngineStats:
    rounds: int = 0
    fired: int = 0
    skipped: int = 0
    inferred: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class _Plan:
    """One rule of one shape, with the predicates it reads (None if unknown)."""

    shape: Shape
    rule: Rule
    reads: frozenset[URIRef] | None


def data_graph_of(dataset: Graph) -> Graph:
    """The data graph of a dataset; a plain Graph is its own data graph."""
    if isinstance(dataset, Dataset):
        return dataset.default_graph
    return dataset


class RuleEngine:
    """
    Fires the rules of a shapes graph until no new triples appear.

    Args:
        data: The data graph. Read only.
        shapes_graph: Shapes whose rules are fired.
        inferences: Graph receiving the inferred triples.
        shapes_graph_uri: Bound to $shapesGraph in SPARQL bodies.
        evaluator: Query evaluator, a default QueryEvaluator if None.
        monitor: Polled for cancellation, told about progress.
        max_rounds: Give up with FixpointNotReached after this many rounds.
        incremental: Skip rules whose read predicates did not change.
    """

    def __init__(
        self,
        data: Graph,
        shapes_graph: ShapesGraph,
        inferences: Graph,
        *,
        shapes_graph_uri: URIRef | None = None,
        evaluator: QueryEvaluator | None = None,
        monitor: ProgressMonitor | None = None,
        max_rounds: int | None = None,
        incremental: bool = True,
    ) -> None:
        self._data = data
        self._shapes = shapes_graph
        self._inferences = inferences
        self._view = ReadOnlyGraphAggregate([data, inferences])
        self._shapes_graph_uri = shapes_graph_uri
        self._evaluator = evaluator or QueryEvaluator()
        self._monitor = monitor or NullProgressMonitor()
        self._max_rounds = max_rounds
        self._incremental = incremental
        self._undecided: set[Node] = set()
        self._core_shapes: dict[Node, bool] = {}
        self._snapshot_graph: Graph | None = None
        self._snapshot_size = 0
        self.stats = EngineStats()

    @property
    def view(self) -> Graph:
        """Union of the data graph and the inference graph."""
        return self._view

    @property
    def inferences(self) -> Graph:
        return self._inferences

    def model(self) -> Graph:
        """The data graph if nothing was inferred, otherwise the union view."""
        if len(self._inferences) == 0:
            return self._data
        return self._view

    # ── Planning ───────────────────────────────────────────────────────

    def rule_shapes(self) -> list[Shape]:
        """Root shapes with at least one rule that take part in the run."""
        return [
            shape for shape in self._shapes.root_shapes()
            if shape.rules and self._shapes.participates(shape)
        ]

    def _plans(self) -> list[_Plan]:
        plans = [
            _Plan(shape, rule, self._reads(shape, rule))
            for shape in self.rule_shapes()
            for rule in shape.rules
            if not rule.deactivated
        ]
        return sorted(plans, key=lambda p: (p.rule.order, str(p.shape.node), str(p.rule.node)))

    def _reads(self, shape: Shape, rule: Rule) -> frozenset[URIRef] | None:
        """Every predicate whose triples can change what rule produces."""
        if rule.conditions:
            return None
        predicates: set[URIRef] = set()
        for target in shape.targets:
            if target.predicates is None:
                return None
            predicates |= target.predicates
        if isinstance(rule, SPARQLRule):
            found, complete = collect_predicates(rule.body)
        else:
            found, complete = set(), True
            for expression in (rule.subject, rule.predicate, rule.object):
                more, ok = expression_predicates(expression)
                found |= more
                complete = complete and ok
        if not complete:
            return None
        return frozenset(predicates | found)

    # ── Fixpoint ───────────────────────────────────────────────────────

    def execute_all(self) -> None:
        """Run rounds until one adds nothing, then log the statistics."""
        plans = self._plans()
        logger.debug("%d rules on %d shapes", len(plans), len({p.shape.node for p in plans}))
        changed: set[URIRef] | None = None
        while True:
            self._check_canceled()
            if self._max_rounds is not None and self.stats.rounds >= self._max_rounds:
                raise FixpointNotReached(
                    f"No fixpoint after {self.stats.rounds} rounds",
                    self._inferences, self.model(), self.stats.rounds,
                )
            changed = self._round(plans, changed)
            if not changed:
                break
        self._monitor.done()
        logger.info(
            "Rules entailment: %d rounds, %d firings, %d skipped, %d triples inferred",
            self.stats.rounds, self.stats.fired, self.stats.skipped, self.stats.inferred,
        )

    def _round(self, plans: list[_Plan], changed: set[URIRef] | None) -> set[URIRef]:
        """One pass over all rules. Returns the predicates of the added triples."""
        self.stats.rounds += 1
        self._monitor.begin_task(f"Rules round {self.stats.rounds}", len(plans))
        added: set[URIRef] = set()
        focus_cache: dict[Node, list[Node]] = {}
        for plan in plans:
            if self._skippable(plan, changed):
                self.stats.skipped += 1
                self._monitor.worked(1)
                continue
            focus_nodes = focus_cache.get(plan.shape.node)
            if focus_nodes is None:
                focus_nodes = sorted(plan.shape.focus_nodes(self._view, self._evaluator), key=str)
                focus_cache[plan.shape.node] = focus_nodes
            for focus in focus_nodes:
                self._check_canceled()
                if not self._conditions_hold(plan.rule, focus):
                    continue
                self.stats.fired += 1
                for triple in self._fire(plan.rule, focus):
                    if triple not in self._view:
                        self._inferences.add(triple)
                        added.add(triple[1])
                        self.stats.inferred += 1
            self._monitor.worked(1)
        logger.debug("Round %d added triples for %d predicates", self.stats.rounds, len(added))
        return added

    def _skippable(self, plan: _Plan, changed: set[URIRef] | None) -> bool:
        if not self._incremental or changed is None or plan.reads is None:
            return False
        return plan.reads.isdisjoint(changed)

    def _check_canceled(self) -> None:
        if self._monitor.is_canceled():
            logger.info("Rules entailment cancelled in round %d", self.stats.rounds)
            raise EntailmentCancelled(
                "Rules entailment cancelled",
                self._inferences, self.model(), self.stats.rounds,
            )

    def _bindings(self) -> dict[str, Node]:
        if self._shapes_graph_uri is None:
            return {}
        return {"shapesGraph": self._shapes_graph_uri}

    def _fire(self, rule: Rule, focus: Node) -> list[tuple[Node, Node, Node]]:
        if isinstance(rule, SPARQLRule):
            triples = self._evaluator.construct(rule.body, self._view, focus, self._bindings())
        elif isinstance(rule, TripleRule):
            triples = list(rule.infer(self._view, focus))
        else:
            return []
        return [
            (s, p, o) for s, p, o in triples
            if not isinstance(s, Literal) and isinstance(p, URIRef)
        ]

    # ── Conditions ─────────────────────────────────────────────────────

    def _conditions_hold(self, rule: Rule, focus: Node) -> bool:
        return all(self._condition_holds(focus, self._shapes.shape(c)) for c in rule.conditions)

    def _condition_holds(self, focus: Node, shape: Shape) -> bool:
        if shape.is_deactivated:
            return True
        if self._needs_core_validator(shape):
            return self._core_conforms(focus, shape)
        return self._conforms(focus, shape)

    def _undecidable(self, shape: Shape, reason: str) -> bool:
        if shape.node not in self._undecided:
            self._undecided.add(shape.node)
            logger.warning(
                "Condition shape %s cannot be checked (%s); rules depending on it will not fire",
                shape.node, reason,
            )
        return False

    def _needs_core_validator(self, shape: Shape) -> bool:
        """True if an active constraint at or below shape has no SPARQL validator."""
        needed = self._core_shapes.get(shape.node)
        if needed is None:
            needed = any(
                c.validator is None
                for c in shape.constraints
                if c.component.node != SH.PropertyConstraintComponent
                and not self._shapes.is_ignored_constraint(c)
            ) or any(self._needs_core_validator(ps) for ps in shape.property_shapes)
            self._core_shapes[shape.node] = needed
        return needed

    def _snapshot(self) -> Graph:
        """Plain copy of the view, rebuilt whenever the inference graph has grown."""
        size = len(self._inferences)
        if self._snapshot_graph is None or self._snapshot_size != size:
            graph = Graph()
            for triple in self._view.triples((None, None, None)):
                graph.add(triple)
            self._snapshot_graph, self._snapshot_size = graph, size
        return self._snapshot_graph

    def _core_conforms(self, focus: Node, shape: Shape) -> bool:
        """Decide conformance with pyshacl, for shapes using SHACL Core components."""
        if not isinstance(shape.node, URIRef) or not isinstance(focus, URIRef):
            return self._undecidable(shape, "pyshacl needs an IRI shape and focus node")
        try:
            pyshacl = import_pyshacl()
        except ImportError:
            return self._undecidable(shape, "SHACL Core constraints need pyshacl")
        conforms, _results_graph, _results_text = pyshacl.validate(
            data_graph=self._snapshot(),
            shacl_graph=self._shapes.validation_graph(),
            inference="none",
            abort_on_first=True,
            focus_nodes=[focus],
            use_shapes=[shape.node],
        )
        return bool(conforms)

    def _value_nodes(self, focus: Node, shape: Shape) -> set[Node]:
        if not shape.is_property_shape:
            return {focus}
        path = shacl_path(self._shapes.graph, shape.path)
        return set(self._view.objects(focus, path))

    def _with_path(self, body: SparqlBody, shape: Shape) -> SparqlBody:
        """body with $PATH replaced by the sh:path of a property shape."""
        if not shape.is_property_shape or "$PATH" not in body.text:
            return body
        path = shacl_path(self._shapes.graph, shape.path)
        text = path.n3() if isinstance(path, URIRef) else f"({path.n3()})"
        return replace(body, text=body.text.replace("$PATH", text))

    def _conforms(self, focus: Node, shape: Shape) -> bool:
        """Decide conformance of focus to shape with SPARQL bodies only."""
        if shape.is_deactivated:
            return True
        bindings = {**self._bindings(), "this": focus, "currentShape": shape.node}
        for constraint in shape.sparql_constraints:
            if constraint.deactivated:
                continue
            if constraint.body is None:
                return self._undecidable(shape, f"incomplete constraint {constraint.node}")
            try:
                body = self._with_path(constraint.body, shape)
            except ShapeDeclarationError as exc:
                self._shapes.report(exc)
                return self._undecidable(shape, "malformed sh:path")
            if self._evaluator.select(body, self._view, bindings):
                return False
        for constraint in shape.constraints:
            if constraint.component.node == SH.PropertyConstraintComponent:
                continue
            if self._shapes.is_ignored_constraint(constraint):
                continue
            if not self._satisfies(focus, shape, constraint, bindings):
                return False
        return all(self._conforms(focus, ps) for ps in shape.property_shapes)

    def _satisfies(
        self, focus: Node, shape: Shape, constraint: Constraint, bindings: dict[str, Node],
    ) -> bool:
        validator = constraint.validator
        if validator is None:
            return self._undecidable(shape, f"{constraint} has no SPARQL validator")
        bindings = {**constraint.arguments, **bindings}
        try:
            body = self._with_path(validator, shape)
            values = self._value_nodes(focus, shape)
        except ShapeDeclarationError as exc:
            self._shapes.report(exc)
            return self._undecidable(shape, "malformed sh:path")
        if body.kind == "ask":
            return all(self._evaluator.ask(body, self._view, {**bindings, "value": v}) for v in values)
        return not self._evaluator.select(body, self._view, bindings)


class RulesEntailment:
    """
    The sh:Rules entailment regime.

    Args:
        evaluator: Query evaluator shared by all runs.
        max_rounds: Round bound passed to each RuleEngine.
        incremental: Enable rule skipping on unchanged predicates.
    """

    def __init__(
        self,
        evaluator: QueryEvaluator | None = None,
        max_rounds: int | None = None,
        incremental: bool = True,
    ) -> None:
        self._evaluator = evaluator or QueryEvaluator()
        self._max_rounds = max_rounds
        self._incremental = incremental
        self.last_stats: EngineStats | None = None
        self.last_inferences: Graph | None = None

    def create_model_with_entailment(
        self,
        dataset: Graph,
        shapes_graph_uri: URIRef | None,
        shapes_graph: ShapesGraph | Graph | None,
        monitor: ProgressMonitor | None = None,
    ) -> Graph:
        """
        Entail the rules of shapes_graph over the data graph of dataset.

        When shapes_graph is None it is read from the named graph
        shapes_graph_uri of dataset. Raises EntailmentCancelled,
        FixpointNotReached or RuleEvaluationError; the partial results of
        the first two are carried on the exception.
        """
        data = data_graph_of(dataset)
        if shapes_graph is None:
            if shapes_graph_uri is None or not isinstance(dataset, Dataset):
                raise ValueError("A shapes graph or a dataset with a named shapes graph is required")
            shapes_graph = dataset.graph(shapes_graph_uri)
        if not isinstance(shapes_graph, ShapesGraph):
            shapes_graph = ShapesGraph(shapes_graph)

        inferences = Graph()
        for prefix, namespace in data.namespaces():
            inferences.bind(prefix, namespace, override=False)

        engine = RuleEngine(
            data,
            shapes_graph,
            inferences,
            shapes_graph_uri=shapes_graph_uri,
            evaluator=self._evaluator,
            monitor=monitor,
            max_rounds=self._max_rounds,
            incremental=self._incremental,
        )
        try:
            engine.execute_all()
        finally:
            self.last_stats = engine.stats
            self.last_inferences = inferences
        return engine.model()
