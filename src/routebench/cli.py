"""Command-line entry point.

Usage:
    routebench                                   # Default scenario, all providers
    routebench --iterations 10                   # Fewer iterations per cell
    routebench --providers claude deepseek       # Specific providers
    routebench --prompts v1 v3                   # Specific prompt versions
    routebench --scenario scenario.json          # Scenario from a file
    routebench --checkpoint run.json             # Resume from / save to a checkpoint
    routebench --json-output report.json         # Also write a JSON report
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from collections.abc import Sequence
from pathlib import Path

from routebench.aggregator import ConsistencyAggregator
from routebench.config import get_settings
from routebench.errors import ConfigurationError
from routebench.logging import get_logger, setup_logging
from routebench.prompts import PromptStore
from routebench.providers import ProviderClient, create_clients
from routebench.report import build_json_report, render_text_report
from routebench.scenario import Scenario, default_scenario, load_scenario
from routebench.sweep import SweepController

log = get_logger("routebench.cli")

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="routebench",
        description="Measure routing consistency across LLM providers and prompt versions",
    )
    parser.add_argument("--scenario", type=Path, help="Scenario JSON file")
    parser.add_argument("--utterance", help="Override the scenario's test sentence")
    parser.add_argument("--iterations", type=int, help="Iterations per prompt/provider pair")
    parser.add_argument("--providers", nargs="+", help="Provider ids to test")
    parser.add_argument("--prompts", nargs="+", help="Prompt versions to test")
    parser.add_argument("--prompts-file", type=Path, help="JSON file of extra prompt templates")
    parser.add_argument("--concurrency", type=int, help="Maximum provider calls in flight")
    parser.add_argument("--timeout", type=float, help="Per-call timeout in seconds")
    parser.add_argument("--checkpoint", type=Path, help="Checkpoint file to resume from and save")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Ignore an existing checkpoint and start over",
    )
    parser.add_argument("--json-output", type=Path, help="Write the JSON report here")
    return parser


def resolve_scenario(args: argparse.Namespace) -> Scenario:
    scenario = load_scenario(args.scenario) if args.scenario else default_scenario()
    if args.utterance is not None:
        scenario.utterance = args.utterance
    if args.iterations is not None:
        scenario.iterations_per_config = args.iterations
    if args.providers:
        scenario.providers = list(args.providers)
    if args.prompts:
        scenario.prompt_versions = list(args.prompts)
    scenario.validate()
    return scenario


def resolve_aggregator(args: argparse.Namespace) -> ConsistencyAggregator | None:
    if args.checkpoint is None or args.fresh or not args.checkpoint.exists():
        return None
    return ConsistencyAggregator.load_checkpoint(args.checkpoint)


async def _run_sweep(
    controller: SweepController, clients: dict[str, ProviderClient]
) -> ConsistencyAggregator:
    try:
        return await controller.run()
    finally:
        for client in clients.values():
            await client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Run a sweep and print the report. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    setup_logging()
    settings = get_settings()

    try:
        scenario = resolve_scenario(args)
        prompts = PromptStore.from_file(args.prompts_file) if args.prompts_file else PromptStore()
        prompts.require(scenario.prompt_versions)
        aggregator = resolve_aggregator(args)
        clients = create_clients(scenario.providers, settings)
        controller = SweepController(
            scenario,
            clients,
            prompts=prompts,
            aggregator=aggregator,
            max_concurrency=(
                args.concurrency if args.concurrency is not None else settings.max_concurrency
            ),
            call_timeout=args.timeout if args.timeout is not None else settings.request_timeout,
            request_delay=settings.request_delay,
        )
    except ConfigurationError as e:
        log.error("configuration_error", error=str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    exit_code = EXIT_OK
    start = time.perf_counter()
    try:
        asyncio.run(_run_sweep(controller, clients))
    except KeyboardInterrupt:
        log.warning("sweep_interrupted", completed=controller.completed)
        exit_code = EXIT_INTERRUPTED
    finally:
        if args.checkpoint is not None:
            controller.aggregator.save_checkpoint(args.checkpoint)

    elapsed = time.perf_counter() - start
    table = controller.aggregator.reduce_all(scenario.prompt_versions, scenario.providers)
    print(render_text_report(table, scenario))

    if args.json_output is not None:
        report = build_json_report(
            table,
            scenario,
            metadata={
                "elapsed_seconds": round(elapsed, 1),
                "calls": controller.completed,
                "interrupted": exit_code == EXIT_INTERRUPTED,
            },
        )
        args.json_output.parent.mkdir(parents=True, exist_ok=True)
        args.json_output.write_text(json.dumps(report, indent=2), encoding="utf-8")
        log.info("json_report_written", path=str(args.json_output))

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
