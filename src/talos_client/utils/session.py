"""
Client construction for the Talos and Kubernetes APIs.
"""

import shutil
import threading
from typing import Optional

from rich.console import Console

from ..client import TalosctlClient
from ..models import UpgradeSettings
from ..variant import KubernetesVariantOracle
from .display import display_success, display_warning

console = Console()


def check_talosctl(binary: str = "talosctl") -> bool:
    """Check that the talosctl binary is on PATH."""
    path = shutil.which(binary)
    if path is None:
        display_warning(f"{binary} not found on PATH. Install it from https://www.talos.dev/")
        return False
    console.print(f"[dim]Using {path}[/dim]")
    return True


def create_talos_client(
    node: str, settings: UpgradeSettings, cancel: Optional[threading.Event] = None
) -> TalosctlClient:
    """Create the management client for a node."""
    client = TalosctlClient(
        node=node,
        talosconfig=settings.talosconfig,
        context=settings.context,
        endpoints=settings.endpoints,
        timeout_minutes=settings.timeout_minutes,
        cancel=cancel,
    )
    display_success(f"✓ Talos client ready for node {node}")
    return client


def create_variant_oracle(
    settings: UpgradeSettings, cancel: Optional[threading.Event] = None
) -> KubernetesVariantOracle:
    """
    Create the schematic lookup; the Kubernetes configuration is loaded on first use.
    """
    return KubernetesVariantOracle(
        kubeconfig=settings.kubeconfig,
        context=settings.kube_context,
        annotation=settings.schematic_annotation,
        request_timeout=settings.request_timeout_seconds,
        cancel=cancel,
    )
