"""shacl-rules - Shared graph helper functions."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from rdflib import Graph, Literal, URIRef
from rdflib.collection import Collection
from rdflib.namespace import RDF, RDFS
from rdflib.term import Node
from rdflib.util import guess_format

__all__ = [
    "local_name",
    "is_true",
    "rdf_list",
    "subclasses",
    "all_instances",
    "has_indirect_type",
    "load_graph",
    "import_pyshacl",
]


def local_name(uri: URIRef | str | None) -> str:
    """Extract the local name from a URI (after # or last /).

    Accepts rdflib URIRef, plain strings, or None.
    Returns the fragment after '#' if present, otherwise the last path segment.
    """
    if uri is None:
        return ""
    s = str(uri)
    if "#" in s:
        return s.rsplit("#", 1)[-1]
    return s.rsplit("/", 1)[-1]


def is_true(graph: Graph, node: Node, predicate: URIRef) -> bool:
    """True if node carries predicate with a boolean true literal."""
    for value in graph.objects(node, predicate):
        if isinstance(value, Literal) and value.toPython() is True:
            return True
    return False


def rdf_list(graph: Graph, head: Node | None) -> list[Node]:
    """Items of an RDF collection, empty for rdf:nil or None."""
    if head is None or head == RDF.nil:
        return []
    return list(Collection(graph, head))


def subclasses(cls: Node, *graphs: Graph) -> set[Node]:
    """cls plus all its transitive rdfs:subClassOf descendants.

    The closure is computed across all given graphs, so a hierarchy split
    between a shapes graph and a data graph is still followed.
    """
    seen = {cls}
    pending = [cls]
    while pending:
        current = pending.pop()
        for graph in graphs:
            for sub in graph.subjects(RDFS.subClassOf, current):
                if sub not in seen:
                    seen.add(sub)
                    pending.append(sub)
    return seen


def all_instances(cls: Node, data: Graph, *schema: Graph) -> set[Node]:
    """Instances of cls in data, including instances of its subclasses."""
    classes = subclasses(cls, data, *schema)
    return {s for c in classes for s in data.subjects(RDF.type, c)}


def has_indirect_type(graph: Graph, node: Node, cls: Node) -> bool:
    """True if node has cls as rdf:type, directly or via rdfs:subClassOf."""
    for type_ in graph.objects(node, RDF.type):
        if cls in graph.transitive_objects(type_, RDFS.subClassOf):
            return True
    return False


def load_graph(paths: Path | str | Iterable[Path | str]) -> Graph:
    """Parse one or more RDF files into a single Graph.

    The serialization format is guessed from each file extension and
    falls back to Turtle.
    """
    if isinstance(paths, (str, Path)):
        paths = [paths]
    graph = Graph()
    for path in paths:
        path = Path(path)
        graph.parse(str(path), format=guess_format(str(path)) or "turtle")
    return graph


def import_pyshacl():
    """Lazy import of pyshacl, the optional SHACL Core validator."""
    try:
        import pyshacl
        return pyshacl
    except ImportError as exc:
        raise ImportError(
            "pyshacl is required for SHACL validation. "
            "Install it with: pip install shacl-rules[shacl]"
        ) from exc
