"""Read the identity, install image and running version of a Talos node."""

import logging
from typing import Any, Dict, Optional

from .client import NodeManagementClient
from .errors import (
    ConfigUnavailable,
    IdentityMismatch,
    IdentityUnavailable,
    InvalidReference,
    TalosctlError,
    VersionQueryFailed,
    VersionResponseEmpty,
)
from .models import NodeState
from .reference import ImageReference, parse_reference

logger = logging.getLogger(__name__)

NODENAME_RESOURCE = ("k8s", "Nodenames.kubernetes.talos.dev", "nodename")
MACHINE_CONFIG_RESOURCE = ("config", "MachineConfigs.config.talos.dev", "v1alpha1")


def _spec(resource: Dict[str, Any]) -> Dict[str, Any]:
    spec = resource.get("spec")
    return spec if isinstance(spec, dict) else {}


class NodeStateReader:
    """Reads node facts from the node's own management API."""

    def __init__(self, client: NodeManagementClient):
        self.client = client

    @property
    def node(self) -> str:
        return self.client.node

    def read_identity(self, expected: Optional[str] = None) -> str:
        """
        Return the Kubernetes node name the node reports for itself.

        Raises:
            IdentityUnavailable: If the nodename resource cannot be fetched.
            IdentityMismatch: If ``expected`` is given and differs.
        """
        try:
            resource = self.client.get_resource(*NODENAME_RESOURCE)
        except TalosctlError as e:
            raise IdentityUnavailable(str(e), node=self.node) from e

        if resource is None:
            raise IdentityUnavailable("nodename resource not found", node=self.node)
        name = _spec(resource).get("nodename")
        if not name:
            raise IdentityUnavailable("nodename resource has no nodename", node=self.node)

        if expected is not None and name != expected:
            raise IdentityMismatch(f"expected node {expected}, got {name}", node=self.node)
        return name

    def read_install_image(self) -> ImageReference:
        """
        Return the install image configured in the machine config.

        Raises:
            ConfigUnavailable: If the machine config or its install image is missing.
            InvalidReference: If the image cannot be parsed or has no tag.
        """
        try:
            resource = self.client.get_resource(*MACHINE_CONFIG_RESOURCE)
        except TalosctlError as e:
            raise ConfigUnavailable(str(e), node=self.node) from e

        if resource is None:
            raise ConfigUnavailable("machine config resource not found", node=self.node)

        install = (_spec(resource).get("machine") or {}).get("install") or {}
        image = install.get("image")
        if not image:
            raise ConfigUnavailable("machine config has no install image", node=self.node)

        try:
            ref = parse_reference(image)
        except InvalidReference as e:
            e.node = self.node
            raise
        logger.debug(f"Install image for {self.node}: {ref}")
        return ref

    def read_running_tag(self) -> str:
        """
        Return the version tag the node is currently running.

        Raises:
            VersionQueryFailed: If the version query errors.
            VersionResponseEmpty: If the response has no version message.
        """
        try:
            messages = self.client.version()
        except TalosctlError as e:
            raise VersionQueryFailed(str(e), node=self.node) from e

        if not messages or not messages[0].tag:
            raise VersionResponseEmpty("version response has no messages", node=self.node)
        return messages[0].tag

    def read(self, expected_identity: Optional[str] = None) -> NodeState:
        """Read identity, install image and running tag, in that order."""
        name = self.read_identity(expected_identity)
        image = self.read_install_image()
        tag = self.read_running_tag()
        return NodeState(node_name=name, install_image=image, running_tag=tag)
