"""Talos node management client backed by the talosctl CLI."""

import json
import logging
import re
import subprocess
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

import yaml
from rich.console import Console

from .errors import CycleCancelled, RemoteCallTimeout, TalosctlError
from .models import UpgradeAck, UpgradeRequest, VersionInfo

logger = logging.getLogger(__name__)
console = Console()

_NOT_FOUND_MARKERS = ("code = NotFound", "doesn't exist", "not found")
_COLUMN_SPLIT = re.compile(r"\s{2,}")


class NodeManagementClient(Protocol):
    """Operations the upgrade cycle needs from a node's management API."""

    node: str

    def get_resource(
        self, namespace: str, resource_type: str, resource_id: str
    ) -> Optional[Dict[str, Any]]:
        """Fetch a typed resource; returns None when it does not exist."""
        ...

    def version(self) -> List[VersionInfo]:
        """Query the running version."""
        ...

    def upgrade(self, request: UpgradeRequest) -> List[UpgradeAck]:
        """Request an upgrade and return the acknowledgement messages."""
        ...


def _load_spec(spec: Any) -> Any:
    """Machine config resources carry their spec as a (multi-document) YAML string."""
    if not isinstance(spec, str):
        return spec
    documents = [doc for doc in yaml.safe_load_all(spec) if isinstance(doc, dict)]
    for document in documents:
        if "machine" in document:
            return document
    return documents[0] if documents else None


def parse_version_output(output: str) -> List[VersionInfo]:
    """Parse the Server section of `talosctl version` output."""
    messages: List[VersionInfo] = []
    in_server = False
    current: Optional[VersionInfo] = None

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line == "Server:":
            in_server = True
            continue
        if line == "Client:":
            in_server = False
            continue
        if not in_server or ":" not in line:
            continue

        key, _, value = line.partition(":")
        key, value = key.strip(), value.strip()
        if key == "NODE":
            current = VersionInfo(tag="", node=value)
            messages.append(current)
        elif key == "Tag":
            if current is None or current.tag:
                current = VersionInfo(tag=value)
                messages.append(current)
            else:
                current.tag = value
        elif key == "SHA" and current is not None:
            current.sha = value

    return [message for message in messages if message.tag]


def parse_upgrade_output(output: str) -> List[UpgradeAck]:
    """Parse the acknowledgement table printed by `talosctl upgrade --wait=false`."""
    acks: List[UpgradeAck] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("NODE"):
            continue
        columns = _COLUMN_SPLIT.split(line)
        if len(columns) >= 2:
            acks.append(UpgradeAck(node=columns[0], message=columns[1]))
        else:
            acks.append(UpgradeAck(message=line))
    return acks


class TalosctlClient:
    """Client for a single Talos node, running talosctl for every call."""

    def __init__(
        self,
        node: str,
        talosconfig: Optional[str] = None,
        context: Optional[str] = None,
        endpoints: Optional[Sequence[str]] = None,
        timeout_minutes: int = 5,
        cancel: Optional[threading.Event] = None,
        binary: str = "talosctl",
        poll_interval: float = 0.5,
    ):
        """
        Initialize the client.

        Args:
            node: Node name or address passed as --nodes
            talosconfig: Optional path to the talosconfig file
            context: Optional talosconfig context
            endpoints: Optional endpoints overriding the talosconfig ones
            timeout_minutes: Upper bound for every talosctl invocation
            cancel: Event that aborts a running invocation when set
            binary: talosctl executable name or path
            poll_interval: Seconds between cancellation checks
        """
        self.node = node
        self.talosconfig = talosconfig
        self.context = context
        self.endpoints = list(endpoints or [])
        self.timeout_minutes = timeout_minutes
        self.cancel = cancel
        self.binary = binary
        self.poll_interval = poll_interval

    def _base_command(self) -> List[str]:
        cmd = [self.binary, "--nodes", self.node]
        if self.talosconfig:
            cmd.extend(["--talosconfig", self.talosconfig])
        if self.context:
            cmd.extend(["--context", self.context])
        if self.endpoints:
            cmd.extend(["--endpoints", ",".join(self.endpoints)])
        return cmd

    def _abort(self, process: subprocess.Popen) -> None:
        process.kill()
        process.communicate()

    def _run(self, args: Sequence[str]) -> str:
        """Run talosctl and return stdout, enforcing the timeout and cancel event."""
        operation = f"talosctl {args[0]}"
        if self.cancel is not None and self.cancel.is_set():
            raise CycleCancelled(f"{operation} was not started", node=self.node)

        cmd = self._base_command() + list(args)
        logger.debug("Running: %s", " ".join(cmd))
        deadline = time.monotonic() + self.timeout_minutes * 60

        try:
            process = subprocess.Popen(
                cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
            )
        except FileNotFoundError:
            raise TalosctlError(
                f"{self.binary} not found. Please install it first: "
                "https://www.talos.dev/latest/talos-guides/install/talosctl/"
            )

        with process:
            try:
                while True:
                    try:
                        stdout, stderr = process.communicate(timeout=self.poll_interval)
                        break
                    except subprocess.TimeoutExpired:
                        if self.cancel is not None and self.cancel.is_set():
                            self._abort(process)
                            raise CycleCancelled(f"{operation} was cancelled", node=self.node)
                        if time.monotonic() >= deadline:
                            self._abort(process)
                            raise RemoteCallTimeout(
                                f"{operation} did not finish within {self.timeout_minutes} minutes",
                                node=self.node,
                                step=operation,
                            )
            except KeyboardInterrupt:
                self._abort(process)
                raise

        if process.returncode != 0:
            message = stderr.strip() or f"exit code {process.returncode}"
            raise TalosctlError(
                f"{operation} failed: {message}", returncode=process.returncode, stderr=stderr
            )
        return stdout

    def get_resource(
        self, namespace: str, resource_type: str, resource_id: str
    ) -> Optional[Dict[str, Any]]:
        """Fetch a resource with `talosctl get`; returns None if it does not exist."""
        try:
            output = self._run(
                ["get", resource_type, resource_id, "--namespace", namespace, "--output", "json"]
            )
        except TalosctlError as e:
            if any(marker in e.stderr for marker in _NOT_FOUND_MARKERS):
                logger.debug(f"Resource {namespace}/{resource_type}/{resource_id} not found")
                return None
            raise

        output = output.strip()
        if not output:
            return None
        try:
            resource = json.JSONDecoder().raw_decode(output)[0]
        except json.JSONDecodeError as e:
            raise TalosctlError(f"talosctl get returned invalid JSON: {e}")

        if not isinstance(resource, dict):
            raise TalosctlError(f"talosctl get returned unexpected payload: {type(resource).__name__}")
        resource["spec"] = _load_spec(resource.get("spec"))
        return resource

    def version(self) -> List[VersionInfo]:
        """Query the running Talos version of the node."""
        return parse_version_output(self._run(["version"]))

    def upgrade(self, request: UpgradeRequest) -> List[UpgradeAck]:
        """Send an upgrade request without waiting for it to complete."""
        args = ["upgrade", "--image", request.image]
        if request.preserve:
            args.append("--preserve")
        if request.stage:
            args.append("--stage")
        args.extend(["--reboot-mode", request.reboot_mode.value, "--wait=false"])

        console.print(f"[dim]Running: {' '.join(self._base_command() + args)}[/dim]")
        return parse_upgrade_output(self._run(args))
