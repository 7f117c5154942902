"""
Layer Orchestrator - CLI Entry Point.

Usage:
    layer-orchestrator [options] deploy [LAYER ...]
    layer-orchestrator [options] verify [LAYER ...]
    layer-orchestrator [options] destroy [LAYER ...]
    layer-orchestrator [options] status
    layer-orchestrator [options] list

Exit code is 0 when the operation succeeded, 1 when any layer failed,
and 2 for configuration errors.
"""

import argparse
import json
import sys
from typing import List, Optional

import layer_orchestrator.constants as CONSTANTS
import layer_orchestrator.layers  # noqa: F401  (registers the built-in variants)
from layer_orchestrator.core.config_loader import apply_overrides, load_config
from layer_orchestrator.core.exceptions import OrchestratorError
from layer_orchestrator.core.registry import LayerRegistry
from layer_orchestrator.logger import configure_logger, logger, print_stack_trace
from layer_orchestrator.orchestrator import Orchestrator, format_summary

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2

COMMANDS = ("deploy", "verify", "destroy", "status", "list")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="layer-orchestrator",
        description="Deploy, verify and destroy dependent infrastructure layers in order.",
    )
    parser.add_argument("command", choices=COMMANDS, help="Operation to perform")
    parser.add_argument("layers", nargs="*", help="Target layers (default: all enabled)")
    parser.add_argument("-c", "--config", default=str(CONSTANTS.DEFAULT_CONFIG_FILE),
                        help="Path to the orchestrator config file")
    parser.add_argument("-l", "--log-level", choices=CONSTANTS.LOG_LEVELS,
                        help="Override global.log_level")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print the resolved plan and only verify (never deploy or destroy)")
    parser.add_argument("--json", action="store_true",
                        help="Print the full state document for status")
    parser.add_argument("--continue-on-error", action="store_true", default=None,
                        help="Keep going after a layer fails")
    parser.add_argument("--state-file", help="Override global.state_file")
    parser.add_argument("--profile", help="Override global.aws_profile")
    parser.add_argument("--region", help="Override global.aws_region")
    parser.add_argument("--force", action="store_true",
                        help="Do not ask for confirmation before destroy")
    return parser


def confirm_destroy(layer_names: List[str]) -> bool:
    print(f"About to destroy: {', '.join(layer_names)}")
    try:
        answer = input("Type 'yes' to continue: ").strip()
    except EOFError:
        return False
    return answer == "yes"


def print_plan(orchestrator: Orchestrator, command: str, targets: List[str]) -> None:
    order = orchestrator.plan(targets)
    if command == "destroy":
        order = [s for s in reversed(order) if not targets or s.name in targets]
    print(f"{command.capitalize()} plan ({len(order)} layers):")
    for index, spec in enumerate(order, start=1):
        deps = f" (depends on: {', '.join(spec.depends_on)})" if spec.depends_on else ""
        print(f"  {index}. {spec.name} [{spec.layer_type}]{deps}")


def handle_list(orchestrator: Orchestrator) -> None:
    enabled = {spec.name for spec in orchestrator.plan()}
    print("Configured layers:")
    for spec in orchestrator.config.layers:
        marker = "enabled" if spec.name in enabled else "disabled"
        print(f"  {spec.name:<20} {spec.layer_type:<20} {marker}")
        if spec.depends_on:
            print(f"      depends on: {', '.join(spec.depends_on)}")
        if spec.source:
            print(f"      repository: {spec.source.repo_url} ({spec.source.branch})")
    print(f"Registered layer types: {', '.join(LayerRegistry.list_types())}")


def handle_status(orchestrator: Orchestrator, as_json: bool = False) -> None:
    state = orchestrator.status()
    if not state.layers:
        print(f"No deployment state recorded in {orchestrator.state_store.path}")
        return
    if as_json:
        print(json.dumps(state.to_dict(), indent=2))
        return

    print(f"Deployment state (updated {state.timestamp}):")
    for name, output in state.layers.items():
        marker = "✓" if output.deployed else "-"
        print(f"  {marker} {name:<20} {output.timestamp}")
        for key in sorted(output.outputs)[:CONSTANTS.STATUS_OUTPUT_KEYS]:
            print(f"      {key}: {output.outputs[key]}")
        hidden = len(output.outputs) - CONSTANTS.STATUS_OUTPUT_KEYS
        if hidden > 0:
            print(f"      ... {hidden} more (use --json)")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        config = apply_overrides(
            config,
            continue_on_error=args.continue_on_error,
            profile=args.profile,
            region=args.region,
            state_file=args.state_file,
            log_level=args.log_level,
        )
        configure_logger(config.global_config.log_level)
        orchestrator = Orchestrator(config)

        if args.command == "list":
            handle_list(orchestrator)
            return EXIT_OK
        if args.command == "status":
            handle_status(orchestrator, as_json=args.json)
            return EXIT_OK
        if args.dry_run:
            print_plan(orchestrator, args.command, args.layers)
            if args.command == "destroy":
                return EXIT_OK
            result = orchestrator.verify(args.layers)
        elif args.command == "deploy":
            result = orchestrator.run(args.layers)
        elif args.command == "verify":
            result = orchestrator.verify(args.layers)
        else:
            names = args.layers or [spec.name for spec in reversed(orchestrator.plan())]
            if not args.force and not confirm_destroy(names):
                print("Destroy cancelled.")
                return EXIT_FAILURE
            result = orchestrator.destroy(args.layers)
    except OrchestratorError as e:
        print_stack_trace()
        logger.error(f"✗ {e}")
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return EXIT_FAILURE

    print()
    for line in format_summary(result):
        print(line)
    return EXIT_OK if result.success else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
