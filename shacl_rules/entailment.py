"""
shacl-rules - Entailment regimes.

A shapes graph may declare ``sh:entailment <iri>`` on any node to ask
that the data be entailed before it is validated. This module maps
those IRIs to engines; only sh:Rules is built in.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Protocol

from rdflib import Graph, URIRef
from rdflib.namespace import SH

from .errors import UnsupportedEntailmentError
from .rules import RulesEntailment, data_graph_of
from .shapes_graph import ShapesGraph

if TYPE_CHECKING:
    from .progress import ProgressMonitor

logger = logging.getLogger("shacl_rules.entailment")

__all__ = [
    "RULES",
    "Entailment",
    "register_entailment",
    "get_entailment",
    "declared_entailments",
    "with_entailments",
]

RULES = URIRef("http://www.w3.org/ns/shacl#Rules")


class Entailment(Protocol):
    def create_model_with_entailment(
        self,
        dataset: Graph,
        shapes_graph_uri: URIRef | None,
        shapes_graph: ShapesGraph,
        monitor: ProgressMonitor | None = None,
    ) -> Graph: ...


_registry: dict[URIRef, Callable[[], Entailment]] = {
    RULES: RulesEntailment,
}


def register_entailment(iri: URIRef, factory: Callable[[], Entailment]) -> None:
    """Register (or replace) the engine factory for an entailment IRI."""
    _registry[iri] = factory


def get_entailment(iri: URIRef) -> Entailment:
    factory = _registry.get(iri)
    if factory is None:
        raise UnsupportedEntailmentError(iri)
    return factory()


def declared_entailments(shapes_graph: ShapesGraph) -> list[URIRef]:
    """The sh:entailment values of the source shapes graph, in IRI order."""
    values = {o for o in shapes_graph.source_graph.objects(None, SH.entailment)
              if isinstance(o, URIRef)}
    return sorted(values, key=str)


def with_entailments(
    dataset: Graph,
    shapes_graph_uri: URIRef | None,
    shapes_graph: ShapesGraph,
    monitor: ProgressMonitor | None = None,
    *,
    engines: Mapping[URIRef, Entailment] | None = None,
) -> Graph:
    """
    Apply every declared entailment in turn and return the resulting model.

    engines supplies ready-made engines by IRI. They take precedence over
    the registry and are applied even when the shapes graph does not
    declare their IRI. Engines are looked up before any runs, so an
    unsupported IRI fails fast. With nothing to apply the dataset's data
    graph is returned.
    """
    engines = dict(engines or {})
    iris = sorted(set(declared_entailments(shapes_graph)) | set(engines), key=str)
    plan = [(iri, engines[iri] if iri in engines else get_entailment(iri)) for iri in iris]
    model = dataset
    for iri, engine in plan:
        logger.info("Applying entailment %s", iri)
        model = engine.create_model_with_entailment(model, shapes_graph_uri, shapes_graph, monitor)
    if model is dataset:
        return data_graph_of(dataset)
    return model
