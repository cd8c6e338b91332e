"""Shared fakes for the Talos and Kubernetes APIs."""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from talos_client.errors import VariantAnnotationMissing
from talos_client.models import UpgradeAck, UpgradeRequest, VersionInfo
from talos_client.node_state import MACHINE_CONFIG_RESOURCE, NODENAME_RESOURCE

INSTALL_IMAGE = "factory.talos.dev/installer/abc123:v1.5.0"


class FakeTalosClient:
    """In-memory NodeManagementClient.

    ``errors`` maps an operation name ("nodename", "machineconfig", "version",
    "upgrade") to the exception it raises. When ``converge`` is set, an
    upgrade immediately moves the node to the requested image.
    """

    def __init__(
        self,
        node: str = "node-a",
        nodename: Optional[str] = "node-a",
        image: Optional[str] = INSTALL_IMAGE,
        tag: Optional[str] = "v1.5.0",
        acks: Optional[List[UpgradeAck]] = None,
        converge: bool = False,
    ) -> None:
        self.node = node
        self.resources: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        if nodename is not None:
            self.resources[NODENAME_RESOURCE] = {"spec": {"nodename": nodename}}
        if image is not None:
            self.resources[MACHINE_CONFIG_RESOURCE] = {
                "spec": {"machine": {"install": {"image": image}}}
            }
        self.versions = [VersionInfo(tag=tag)] if tag else []
        self.acks = [UpgradeAck(message="Upgrade request received", node=node)] if acks is None else acks
        self.converge = converge
        self.errors: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self.upgrades: List[UpgradeRequest] = []

    def get_resource(self, namespace: str, resource_type: str, resource_id: str) -> Optional[Dict[str, Any]]:
        operation = "nodename" if resource_type == NODENAME_RESOURCE[1] else "machineconfig"
        self.calls.append(operation)
        if operation in self.errors:
            raise self.errors[operation]
        return self.resources.get((namespace, resource_type, resource_id))

    def version(self) -> List[VersionInfo]:
        self.calls.append("version")
        if "version" in self.errors:
            raise self.errors["version"]
        return list(self.versions)

    def upgrade(self, request: UpgradeRequest) -> List[UpgradeAck]:
        self.calls.append("upgrade")
        self.upgrades.append(request)
        if "upgrade" in self.errors:
            raise self.errors["upgrade"]
        if self.converge:
            self.resources[MACHINE_CONFIG_RESOURCE] = {
                "spec": {"machine": {"install": {"image": request.image}}}
            }
            self.versions = [VersionInfo(tag=request.image.rsplit(":", 1)[1])]
        return list(self.acks)


class FakeOracle:
    """In-memory VariantOracle."""

    def __init__(self, variant: Optional[str] = "abc123", error: Optional[Exception] = None) -> None:
        self.variant = variant
        self.error = error
        self.lookups: List[str] = []

    def lookup(self, node_name: str) -> str:
        self.lookups.append(node_name)
        if self.error is not None:
            raise self.error
        if self.variant is None:
            raise VariantAnnotationMissing("extensions.talos.dev/schematic annotation not found", node=node_name)
        return self.variant


@pytest.fixture
def fake_client() -> FakeTalosClient:
    return FakeTalosClient()


@pytest.fixture
def fake_oracle() -> FakeOracle:
    return FakeOracle()
