"""
shacl-rules - Exception taxonomy.

Usage:
    from shacl_rules.errors import EntailmentCancelled

    try:
        model = entailment.create_model_with_entailment(ds, None, shapes, token)
    except EntailmentCancelled as exc:
        partial = exc.inferences
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rdflib import Graph
    from rdflib.term import Node

__all__ = [
    "ShaclRulesError",
    "ShapeDeclarationError",
    "RuleEvaluationError",
    "EntailmentInterrupted",
    "EntailmentCancelled",
    "FixpointNotReached",
    "UnsupportedEntailmentError",
]


class ShaclRulesError(Exception):
    """Base exception for the package."""


class ShapeDeclarationError(ShaclRulesError):
    """A typed view was requested for a node lacking required declarations."""

    def __init__(self, node: Node, message: str) -> None:
        self.node = node
        self.message = message
        super().__init__(f"{node}: {message}")


class RuleEvaluationError(ShaclRulesError):
    """The query evaluator failed to parse or execute a body."""

    def __init__(self, node: Node | None, message: str) -> None:
        self.node = node
        self.message = message
        super().__init__(f"{node}: {message}" if node is not None else message)


class EntailmentInterrupted(ShaclRulesError):
    """
    A rule run stopped before reaching its fixpoint.

    The triples inferred so far are kept, never rolled back:
    ``inferences`` is the engine-owned inference graph and ``model`` is
    what a completed run would have returned for that state.
    """

    def __init__(self, message: str, inferences: Graph, model: Graph, rounds: int) -> None:
        self.inferences = inferences
        self.model = model
        self.rounds = rounds
        super().__init__(message)


class EntailmentCancelled(EntailmentInterrupted):
    """The progress monitor requested cancellation."""


class FixpointNotReached(EntailmentInterrupted):
    """The configured maximum number of rounds was used up."""


class UnsupportedEntailmentError(ShaclRulesError):
    """A shapes graph declares an sh:entailment with no registered engine."""

    def __init__(self, iri: Node) -> None:
        self.iri = iri
        super().__init__(f"Unsupported entailment: {iri}")
