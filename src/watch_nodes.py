#!/usr/bin/env python3
"""
Log label and annotation changes on Kubernetes nodes.

Events are reported when a node is added, when its generation changes, or
when its annotations change. Nothing is modified.
"""

import argparse
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from kubernetes import watch
from rich.console import Console
from rich.logging import RichHandler

from talos_client.variant import load_core_v1_api

console = Console()
logger = logging.getLogger(__name__)

NODE_EVENT_TYPES = ("ADDED", "MODIFIED", "DELETED")

NodeSnapshot = Tuple[Optional[int], Dict[str, str]]


def _snapshot(node: Any) -> NodeSnapshot:
    metadata = node.metadata
    return metadata.generation, dict(metadata.annotations or {})


def node_changed(previous: Optional[NodeSnapshot], current: NodeSnapshot) -> bool:
    """A node counts as changed when its generation or its annotations differ."""
    if previous is None:
        return True
    return previous[0] != current[0] or previous[1] != current[1]


def process_events(events: Iterable[Dict[str, Any]], seen: Dict[str, NodeSnapshot]) -> int:
    """Log relevant node events and return how many were logged."""
    logged = 0
    for event in events:
        event_type = event.get("type")
        node = event.get("object")
        if event_type not in NODE_EVENT_TYPES or getattr(node, "metadata", None) is None:
            if event_type == "ERROR":
                logger.warning(f"Watch error: {node}")
            else:
                logger.debug(f"Ignoring {event_type} event")
            continue
        name = node.metadata.name

        if event_type == "DELETED":
            seen.pop(name, None)
            logger.info(f"Node {name} deleted")
            logged += 1
            continue

        current = _snapshot(node)
        if not node_changed(seen.get(name), current):
            continue
        seen[name] = current
        logger.info(
            f"Node {name} changed. Labels: {node.metadata.labels or {}}, "
            f"Annotations: {node.metadata.annotations or {}}"
        )
        logged += 1
    return logged


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Log metadata changes on Kubernetes nodes.")
    parser.add_argument("--kubeconfig", help="Path to the kubeconfig file.")
    parser.add_argument("--kube-context", help="kubeconfig context to use.")
    parser.add_argument(
        "--timeout-seconds",
        type=int,
        default=0,
        help="Stop watching after this many seconds (default: watch until interrupted).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def main() -> int:
    args = parse_arguments()
    configure_logging(verbose=args.verbose)

    try:
        api = load_core_v1_api(args.kubeconfig, args.kube_context)
    except Exception as e:
        console.print(f"[red]Failed to load Kubernetes configuration: {e}[/red]")
        return 1

    seen: Dict[str, NodeSnapshot] = {}
    watcher = watch.Watch()
    stream_kwargs: Dict[str, Any] = {}
    if args.timeout_seconds:
        stream_kwargs["timeout_seconds"] = args.timeout_seconds

    console.print("[bold blue]👀 Watching nodes[/bold blue]")
    try:
        process_events(watcher.stream(api.list_node, **stream_kwargs), seen)
    finally:
        watcher.stop()
    return 0


def run() -> None:
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Node watch interrupted by user.[/yellow]")
        raise SystemExit(130)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    run()
