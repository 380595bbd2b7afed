"""
shacl-rules - Relevant properties of classes and instances.

Best-effort answers to "which properties is an instance of this class
expected to carry", for tooling such as form builders and editors. The
results are hints and are never used to decide conformance.
"""

from __future__ import annotations

import logging

from rdflib import Graph, URIRef
from rdflib.namespace import OWL, RDF, RDFS, SH
from rdflib.term import Node

from .paths import Direction, shape_property_paths
from .shapes_graph import ShapesGraph

logger = logging.getLogger("shacl_rules.relevance")

__all__ = [
    "relevant_properties_of_class",
    "relevant_shacl_properties_of_class",
    "relevant_shacl_properties_of_instance",
    "relevant_constraint_properties_of_instance",
]


def _superclasses(cls: Node, *graphs: Graph) -> list[Node]:
    """Transitive rdfs:subClassOf ancestors of cls, excluding cls."""
    seen = {cls}
    pending = [cls]
    ordered: list[Node] = []
    while pending:
        current = pending.pop()
        for graph in graphs:
            for parent in graph.objects(current, RDFS.subClassOf):
                if parent not in seen:
                    seen.add(parent)
                    ordered.append(parent)
                    pending.append(parent)
    return ordered


def _add_domainless_subproperties(
    prop: Node, graph: Graph, results: set[URIRef], visited: set[Node],
) -> None:
    for sub in graph.subjects(RDFS.subPropertyOf, prop):
        if sub in visited:
            continue
        visited.add(sub)
        if isinstance(sub, URIRef) and graph.value(sub, RDFS.domain) is None:
            results.add(sub)
            _add_domainless_subproperties(sub, graph, results, visited)


def _declares_shapes(graph: Graph) -> bool:
    for shape_type in (SH.NodeShape, SH.PropertyShape):
        if (None, RDF.type, shape_type) in graph:
            return True
    return (None, SH.targetClass, None) in graph or (None, SH.property, None) in graph


def _direct_properties(cls: Node, shapes_graph: ShapesGraph) -> set[URIRef]:
    """IRI paths of the property shapes of the shapes for cls."""
    results: set[URIRef] = set()
    for shape in shapes_graph.shapes_for_class(cls):
        for property_shape in shape.property_shapes:
            if isinstance(property_shape.path, URIRef):
                results.add(property_shape.path)
    return results


def _body_properties(classes: list[Node], shapes_graph: ShapesGraph) -> set[URIRef]:
    """Object-direction predicates read by bodies of shapes for the classes."""
    results: set[URIRef] = set()
    for cls in classes:
        for shape in shapes_graph.shapes_for_class(cls):
            for path in shape_property_paths(shape, include_template=False):
                if path.direction == Direction.OBJECT:
                    results.add(path.predicate)
    return results


def relevant_properties_of_class(
    cls: Node, graph: Graph, shapes_graph: ShapesGraph | None = None,
) -> set[URIRef]:
    """
    Properties relevant to instances of cls.

    The union of:
      - properties with rdfs:domain cls, plus their domainless
        sub-properties (transitively);
      - owl:onProperty values of restrictions among the superclasses;
      - properties read from $this by SPARQL bodies of shapes for cls;
      - paths of property shapes of shapes for cls.

    The last two need a shapes graph: the given one, or graph itself
    when it declares shapes. Bodies of superclass shapes are not
    visited.
    """
    results: set[URIRef] = set()
    for prop in graph.subjects(RDFS.domain, cls):
        if isinstance(prop, URIRef):
            results.add(prop)
            _add_domainless_subproperties(prop, graph, results, set())

    for superclass in _superclasses(cls, graph):
        restricted = graph.value(superclass, OWL.onProperty)
        if isinstance(restricted, URIRef):
            results.add(restricted)

    if shapes_graph is None and _declares_shapes(graph):
        shapes_graph = ShapesGraph(graph)
    if shapes_graph is not None:
        results |= _body_properties([cls], shapes_graph)
        results |= _direct_properties(cls, shapes_graph)
    logger.debug("Relevant properties of %s: %d", cls, len(results))
    return results


def relevant_shacl_properties_of_class(
    cls: Node, shapes_graph: ShapesGraph, graph: Graph | None = None,
) -> set[URIRef]:
    """Property shape paths of cls and of all its superclasses."""
    graphs = [shapes_graph.graph] + ([graph] if graph is not None else [])
    results: set[URIRef] = set()
    for current in [cls, *_superclasses(cls, *graphs)]:
        results |= _direct_properties(current, shapes_graph)
    return results


def relevant_shacl_properties_of_instance(
    instance: Node, graph: Graph, shapes_graph: ShapesGraph,
) -> set[URIRef]:
    """Union of the SHACL properties of every rdf:type of instance."""
    results: set[URIRef] = set()
    for type_ in set(graph.objects(instance, RDF.type)):
        results |= relevant_shacl_properties_of_class(type_, shapes_graph, graph)
    return results


def relevant_constraint_properties_of_instance(
    instance: Node, graph: Graph, shapes_graph: ShapesGraph,
) -> set[URIRef]:
    """Properties read from $this by bodies attached to the instance's types."""
    classes: list[Node] = []
    for type_ in sorted(set(graph.objects(instance, RDF.type)), key=str):
        for cls in [type_, *_superclasses(type_, graph, shapes_graph.graph)]:
            if cls not in classes:
                classes.append(cls)
    return _body_properties(classes, shapes_graph)
