#!/usr/bin/env python3
"""
Upgrade a Talos node to a target tag unless it is already up to date.
"""

import argparse
import logging
import signal
import threading
from typing import List, Optional

import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from talos_client.errors import ConfigNotFoundError, CycleCancelled, NodeUpgradeError
from talos_client.models import CycleState, RebootMode, UpgradeSettings
from talos_client.upgrade import UpgradeCycle, wait_for_tag
from talos_client.utils.config import load_settings
from talos_client.utils.display import (
    display_error,
    display_outcome,
    display_run_header,
    display_settings,
    display_success,
    display_warning,
)
from talos_client.utils.session import check_talosctl, create_talos_client, create_variant_oracle

console = Console()
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Upgrade a Talos node to an image tag, keeping its schematic.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  talos-node-upgrade --node node-a --tag v1.6.0
  talos-node-upgrade --node node-a --tag v1.6.0 --reboot-mode powercycle --no-stage
  talos-node-upgrade --node node-a --tag v1.6.0 --config nodes.yaml --wait
        """,
    )
    parser.add_argument("--node", required=True, help="The name of the node to upgrade.")
    parser.add_argument("--tag", required=True, help="The image tag to upgrade to.")
    parser.add_argument(
        "--reboot-mode",
        choices=[mode.value for mode in RebootMode],
        help="Reboot mode during upgrade (default: default).",
    )
    parser.add_argument(
        "--stage",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Stage the upgrade so it is applied on the next reboot (default: staged).",
    )
    parser.add_argument("--config", help="Path to a YAML settings file.")
    parser.add_argument("--talosconfig", help="Path to the talosconfig file.")
    parser.add_argument("--context", help="talosconfig context to use.")
    parser.add_argument(
        "--endpoints",
        action="append",
        help="Talos API endpoint. Can be provided multiple times.",
    )
    parser.add_argument("--kubeconfig", help="Path to the kubeconfig file.")
    parser.add_argument("--kube-context", help="kubeconfig context to use.")
    parser.add_argument(
        "--timeout",
        type=int,
        dest="timeout_minutes",
        help="Timeout in minutes for each talosctl call (default: 5).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the planned upgrade without sending it.",
    )
    parser.add_argument(
        "--wait",
        action="store_true",
        help="After dispatching, wait until the node reports the new tag.",
    )
    parser.add_argument(
        "--wait-timeout",
        type=int,
        dest="wait_timeout_minutes",
        help="Minutes to wait for the node to report the new tag (default: 30).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    configure_logging(verbose=args.verbose)

    try:
        settings = load_settings(
            args.config,
            node=args.node,
            overrides={
                "talosconfig": args.talosconfig,
                "context": args.context,
                "endpoints": args.endpoints,
                "kubeconfig": args.kubeconfig,
                "kube_context": args.kube_context,
                "timeout_minutes": args.timeout_minutes,
                "staged": args.stage,
                "reboot_mode": args.reboot_mode,
                "wait_timeout_minutes": args.wait_timeout_minutes,
            },
        )
    except (ConfigNotFoundError, FileNotFoundError, yaml.YAMLError) as e:
        display_error(f"Configuration Error: {e}")
        return EXIT_USAGE
    except ValidationError as e:
        display_error(f"Invalid settings: {e}")
        return EXIT_USAGE

    display_run_header(args.node, args.tag)
    display_settings(settings)
    check_talosctl()

    cancel = threading.Event()
    previous_handler = signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())
    try:
        return upgrade_node(args, settings, cancel)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGTERM, previous_handler)


def upgrade_node(args: argparse.Namespace, settings: UpgradeSettings, cancel: threading.Event) -> int:
    client = create_talos_client(args.node, settings, cancel)
    oracle = create_variant_oracle(settings, cancel)
    cycle = UpgradeCycle(client, oracle, settings.upgrade_options(), cancel)

    try:
        outcome = cycle.run(args.node, args.tag, dry_run=args.dry_run)
    except CycleCancelled as e:
        display_warning(str(e))
        return EXIT_INTERRUPTED
    except NodeUpgradeError as e:
        logger.debug("Upgrade cycle failed", exc_info=True)
        display_error(str(e))
        return EXIT_FAILED

    if outcome.state == CycleState.UP_TO_DATE:
        display_success(f"node is up-to-date (schematic: {outcome.variant}, tag: {args.tag})")
        return EXIT_OK

    if outcome.state == CycleState.PLANNED:
        console.print(
            f"[yellow]DRY RUN[/yellow] Would upgrade [cyan]{outcome.node}[/cyan] "
            f"to [green]{outcome.image}[/green]."
        )
        display_outcome(outcome)
        return EXIT_OK

    console.print(f"upgrade started: {outcome.acknowledgement}")
    display_outcome(outcome)

    if not args.wait:
        return EXIT_OK

    if settings.staged:
        display_warning("The upgrade is staged; it is applied once the node reboots.")
    console.print(
        f"[bold blue]Waiting up to {settings.wait_timeout_minutes} minutes for "
        f"{args.node} to report {args.tag}...[/bold blue]"
    )
    try:
        converged = wait_for_tag(
            client,
            args.tag,
            timeout_minutes=settings.wait_timeout_minutes,
            poll_seconds=settings.wait_poll_seconds,
            cancel=cancel,
        )
    except CycleCancelled as e:
        display_warning(str(e))
        return EXIT_INTERRUPTED

    if not converged:
        display_error(f"{args.node} did not report {args.tag} within {settings.wait_timeout_minutes} minutes")
        return EXIT_FAILED

    display_success(f"✓ {args.node} is running {args.tag}")
    return EXIT_OK


def run() -> None:
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Node upgrade interrupted by user.[/yellow]")
        raise SystemExit(EXIT_INTERRUPTED)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    run()
