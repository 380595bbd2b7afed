"""
shacl-rules - Query evaluator adapter.

Thin wrapper around rdflib's SPARQL engine. Bodies are parsed once and
the parsed form is reused for every focus node; parse and evaluation
failures are reported as RuleEvaluationError naming the node that
carries the failing body.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from functools import lru_cache

from rdflib import Graph
from rdflib.plugins.sparql import prepareQuery
from rdflib.plugins.sparql.sparql import Query
from rdflib.term import Node

from .errors import RuleEvaluationError
from .model import SparqlBody

logger = logging.getLogger("shacl_rules.evaluator")

__all__ = ["QueryEvaluator", "prepare_body"]

_QUERY_TYPES = {
    "ask": "AskQuery",
    "select": "SelectQuery",
    "construct": "ConstructQuery",
}


@lru_cache(maxsize=512)
def _prepare(text: str, prefixes: tuple[tuple[str, str], ...]) -> Query:
    return prepareQuery(text, initNs=dict(prefixes))


def prepare_body(body: SparqlBody) -> Query:
    """Parse a body into an rdflib Query, checking its query form."""
    try:
        query = _prepare(body.text, body.prefixes)
    except Exception as exc:
        raise RuleEvaluationError(body.node, f"cannot parse {body.kind} query: {exc}") from exc
    expected = _QUERY_TYPES.get(body.kind)
    if expected is not None and query.algebra.name != expected:
        raise RuleEvaluationError(
            body.node, f"expected a {body.kind.upper()} query, got {query.algebra.name}",
        )
    return query


class QueryEvaluator:
    """
    Executes SPARQL bodies against rdflib graphs.

    Bindings map variable names (without '?' or '$') to graph nodes and
    are applied as initial bindings, so ``$this`` is bound through the
    "this" key.
    """

    def _execute(self, body: SparqlBody, graph: Graph, bindings: Mapping[str, Node] | None):
        query = prepare_body(body)
        init = {k: v for k, v in (bindings or {}).items() if v is not None}
        try:
            return graph.query(query, initBindings=init)
        except RuleEvaluationError:
            raise
        except Exception as exc:
            raise RuleEvaluationError(body.node, f"{body.kind} query failed: {exc}") from exc

    def construct(
        self,
        body: SparqlBody,
        graph: Graph,
        focus: Node | None = None,
        arguments: Mapping[str, Node] | None = None,
    ) -> list[tuple[Node, Node, Node]]:
        """Triples produced by a CONSTRUCT body with $this bound to focus."""
        bindings = dict(arguments or {})
        if focus is not None:
            bindings["this"] = focus
        result = self._execute(body, graph, bindings)
        try:
            triples = list(result)
        except Exception as exc:
            raise RuleEvaluationError(body.node, f"construct query failed: {exc}") from exc
        logger.debug("CONSTRUCT %s on %s: %d triples", body.node, focus, len(triples))
        return triples

    def ask(
        self, body: SparqlBody, graph: Graph, bindings: Mapping[str, Node] | None = None,
    ) -> bool:
        return bool(self._execute(body, graph, bindings).askAnswer)

    def select(
        self, body: SparqlBody, graph: Graph, bindings: Mapping[str, Node] | None = None,
    ) -> list[dict[str, Node]]:
        """Result rows as plain dicts of bound variable name -> node."""
        result = self._execute(body, graph, bindings)
        try:
            return [{str(k): v for k, v in row.asdict().items()} for row in result]
        except Exception as exc:
            raise RuleEvaluationError(body.node, f"select query failed: {exc}") from exc
