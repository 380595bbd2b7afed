"""
shacl-rules CLI.
Usage:
    shacl-rules infer DATA --shapes SHAPES [--output FILE]   Run rules entailment
    shacl-rules shapes SHAPES                                Summarise root shapes
    shacl-rules paths QUERY_FILE [--arg NAME=IRI ...]        Property paths of a body
    shacl-rules relevant CLASS --graph FILE [--shapes FILE]  Relevant properties
    shacl-rules validate DATA --shapes SHAPES                SHACL validation
"""

import argparse
import json
import sys
from pathlib import Path

from rdflib import Graph, URIRef

from ._utils import load_graph, local_name
from .config import EngineConfig, configure_logging
from .errors import (
    EntailmentInterrupted,
    FixpointNotReached,
    RuleEvaluationError,
    UnsupportedEntailmentError,
)
from .model import SparqlBody
from .paths import PropertyPathsGetter
from .relevance import relevant_properties_of_class
from .rules import RulesEntailment


def _config(args) -> EngineConfig:
    config = EngineConfig.from_file(args.config)
    configure_logging(config.log_level)
    return config


def cmd_infer(args):
    config = _config(args)
    data = load_graph(args.data)
    shapes = config.build_shapes_graph(load_graph(args.shapes))
    max_rounds = args.max_rounds if args.max_rounds is not None else config.max_rounds
    entailment = RulesEntailment(max_rounds=max_rounds, incremental=config.incremental)

    exit_code = 0
    try:
        model = entailment.create_model_with_entailment(data, None, shapes)
        inferences = entailment.last_inferences
    except FixpointNotReached as e:
        print(str(e), file=sys.stderr)
        model, inferences, exit_code = e.model, e.inferences, 1
    except RuleEvaluationError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    if args.inferred_only:
        output = inferences
    else:
        output = Graph()
        for prefix, ns in data.namespaces():
            output.bind(prefix, ns)
        for triple in model.triples((None, None, None)):
            output.add(triple)

    text = output.serialize(format=args.format)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
    else:
        print(text)
    print(json.dumps(entailment.last_stats.to_dict(), indent=2), file=sys.stderr)
    if exit_code:
        sys.exit(exit_code)


def cmd_shapes(args):
    config = _config(args)
    shapes = config.build_shapes_graph(load_graph(args.shapes))
    summary = {
        "root_shapes": [
            {
                "shape": str(shape.node),
                "deactivated": shape.is_deactivated,
                "targets": [
                    {"kind": t.kind.value, "value": str(t.value) if t.value is not None else None}
                    for t in shape.targets
                ],
                "constraints": [local_name(c.component.node) for c in shape.constraints],
                "sparql_constraints": [str(c) for c in shape.sparql_constraints],
                "rules": [str(r.node) for r in shape.rules],
            }
            for shape in shapes.root_shapes()
        ],
        "parameter_conflicts": [
            {
                "parameter": str(c.predicate),
                "components": [str(n) for n in c.components],
                "winner": str(c.winner),
            }
            for c in shapes.parameter_conflicts
        ],
        "declaration_errors": [str(e) for e in shapes.declaration_errors],
    }
    print(json.dumps(summary, indent=2))


def cmd_paths(args):
    _config(args)
    text = Path(args.query_file).read_text(encoding="utf-8")
    kind = args.kind
    arguments = {}
    for item in args.arg:
        name, sep, value = item.partition("=")
        if not sep:
            print(f"Invalid --arg {item!r}, expected NAME=IRI", file=sys.stderr)
            sys.exit(2)
        arguments[name] = URIRef(value)
    body = SparqlBody(node=URIRef(Path(args.query_file).resolve().as_uri()), text=text, kind=kind)
    try:
        paths = PropertyPathsGetter(body, arguments).run()
    except RuleEvaluationError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    results = sorted(
        ({"predicate": str(p.predicate), "direction": p.direction.value} for p in paths),
        key=lambda d: (d["predicate"], d["direction"]),
    )
    print(json.dumps(results, indent=2))


def cmd_relevant(args):
    config = _config(args)
    graph = load_graph(args.graph)
    shapes = config.build_shapes_graph(load_graph(args.shapes)) if args.shapes else None
    properties = relevant_properties_of_class(URIRef(args.cls), graph, shapes)
    print(json.dumps(sorted(str(p) for p in properties), indent=2))


def cmd_validate(args):
    from .validator import SHACLValidator

    config = _config(args)
    data = load_graph(args.data)
    shapes = config.build_shapes_graph(load_graph(args.shapes))
    entailment = None if args.no_entailment else config.build_entailment()
    validator = SHACLValidator(shapes, entailment, apply_declared=not args.no_entailment)
    try:
        report = validator.validate(data)
    except (
        ImportError, EntailmentInterrupted, RuleEvaluationError, UnsupportedEntailmentError,
    ) as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    print(f"Conforms: {report.conforms}")
    print(f"Errors: {report.stats['errors']}, Warnings: {report.stats['warnings']}")
    for v in report.violations:
        print(f"  [{v.severity}] {v.focus_node} {v.path}: {v.message}")
    if not report.conforms:
        sys.exit(1)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="shacl-rules",
        description="SHACL shapes graph engine, rules entailment and dependency analysis",
    )
    parser.add_argument("--config", default="shacl-rules.config.json", help="Config file path")
    sub = parser.add_subparsers(dest="command", required=True)

    p_infer = sub.add_parser("infer", help="Run rules entailment")
    p_infer.add_argument("data", nargs="+", help="Data graph file(s)")
    p_infer.add_argument("--shapes", nargs="+", required=True, help="Shapes graph file(s)")
    p_infer.add_argument("--output", default=None, help="Output file path")
    p_infer.add_argument("--format", default="turtle", help="Output serialization")
    p_infer.add_argument("--inferred-only", action="store_true", help="Only write inferred triples")
    p_infer.add_argument("--max-rounds", type=int, default=None, help="Round bound")

    p_shapes = sub.add_parser("shapes", help="Summarise a shapes graph")
    p_shapes.add_argument("shapes", nargs="+", help="Shapes graph file(s)")

    p_paths = sub.add_parser("paths", help="Property paths of a SPARQL body")
    p_paths.add_argument("query_file")
    p_paths.add_argument(
        "--kind", choices=["construct", "ask", "select"], default="construct", help="Query form",
    )
    p_paths.add_argument("--arg", action="append", default=[], help="Argument NAME=IRI")

    p_rel = sub.add_parser("relevant", help="Relevant properties of a class")
    p_rel.add_argument("cls", metavar="CLASS", help="Class IRI")
    p_rel.add_argument("--graph", nargs="+", required=True, help="Schema/data graph file(s)")
    p_rel.add_argument("--shapes", nargs="+", default=None, help="Shapes graph file(s)")

    p_val = sub.add_parser("validate", help="SHACL validation after rules entailment")
    p_val.add_argument("data", nargs="+", help="Data graph file(s)")
    p_val.add_argument("--shapes", nargs="+", required=True, help="Shapes graph file(s)")
    p_val.add_argument("--no-entailment", action="store_true", help="Skip rules and declared entailments")

    args = parser.parse_args(argv)

    dispatch = {
        "infer": cmd_infer,
        "shapes": cmd_shapes,
        "paths": cmd_paths,
        "relevant": cmd_relevant,
        "validate": cmd_validate,
    }
    dispatch[args.command](args)


if __name__ == "__main__":
    main()
