"""CLI entry point: parses the verb, drives the engine, reports to stdout."""

import argparse
import logging
import sys

from .config import load_config
from .engine import STAGES, run_pipeline
from .errors import AtomizerError
from .stats import RunStats

_VERBS = {stage: (stage,) for stage in STAGES}
_VERBS["run"] = STAGES


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="atomizer", description="Split a large JavaScript file into modules."
    )
    parser.add_argument("verb", choices=list(_VERBS), help="stage to run; 'run' runs all four")
    parser.add_argument("--source", help="script to split (overrides source_path)")
    parser.add_argument("--max-files", type=int, help="maximum number of modules")
    parser.add_argument("--min-cluster-size", type=int, help="minimum functions per module")
    parser.add_argument("--llm", action="store_true", help="ask the configured LLM for the plan")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    if args.source:
        config.source_path = args.source
    if args.max_files is not None:
        config.max_files = args.max_files
    if args.min_cluster_size is not None:
        config.min_cluster_size = args.min_cluster_size
    if args.llm:
        config.llm.enabled = True

    run_stats = RunStats()
    try:
        for message in run_pipeline(config, stages=_VERBS[args.verb], stats=run_stats):
            print(message)
    except AtomizerError as exc:
        print(f"atomizer: {exc}", file=sys.stderr)
        sys.exit(1)
    for line in run_stats.format_summary():
        print(line)
