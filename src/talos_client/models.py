"""Data models for the Talos node upgrade client."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .reference import ImageReference

SCHEMATIC_ANNOTATION = "extensions.talos.dev/schematic"


class RebootMode(str, Enum):
    """Reboot strategies accepted by the upgrade API."""
    DEFAULT = "default"
    POWERCYCLE = "powercycle"


class CycleState(str, Enum):
    """States of a single decision-and-dispatch cycle."""
    START = "start"
    READING_NODE_STATE = "reading_node_state"
    READING_VARIANT = "reading_variant"
    DECIDING = "deciding"
    UP_TO_DATE = "up_to_date"
    PLANNED = "planned"
    DISPATCHING = "dispatching"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class UpgradeOptions(BaseModel):
    """Options sent with every upgrade request."""
    model_config = ConfigDict(frozen=True)

    preserve_data: Literal[True] = True
    staged: bool = True
    reboot_mode: RebootMode = RebootMode.DEFAULT


class UpgradeSettings(BaseModel):
    """Run-time settings, loaded from YAML and overridden by CLI flags."""
    model_config = ConfigDict(validate_assignment=True)

    talosconfig: Optional[str] = None
    context: Optional[str] = None
    endpoints: List[str] = Field(default_factory=list)
    kubeconfig: Optional[str] = None
    kube_context: Optional[str] = None
    schematic_annotation: str = SCHEMATIC_ANNOTATION
    timeout_minutes: int = Field(default=5, gt=0)
    request_timeout_seconds: int = Field(default=60, gt=0)
    staged: bool = True
    reboot_mode: RebootMode = RebootMode.DEFAULT
    wait_timeout_minutes: int = Field(default=30, gt=0)
    wait_poll_seconds: int = Field(default=15, gt=0)

    def upgrade_options(self) -> UpgradeOptions:
        """Build the upgrade options for the dispatcher."""
        return UpgradeOptions(staged=self.staged, reboot_mode=self.reboot_mode)


@dataclass
class VersionInfo:
    """One version message returned by a node."""
    tag: str
    node: Optional[str] = None
    sha: Optional[str] = None


@dataclass
class UpgradeRequest:
    """Payload of the remote upgrade operation."""
    image: str
    preserve: bool
    stage: bool
    reboot_mode: RebootMode


@dataclass
class UpgradeAck:
    """Acknowledgement message returned by the upgrade operation."""
    message: str
    node: Optional[str] = None
    actor_id: Optional[str] = None

    def __str__(self) -> str:
        parts = [self.message]
        if self.actor_id:
            parts.append(f"(actor {self.actor_id})")
        return " ".join(parts)


@dataclass
class NodeState:
    """Facts read from the node's own management API."""
    node_name: str
    install_image: ImageReference
    running_tag: str

    @property
    def installed_variant(self) -> str:
        return self.install_image.variant


@dataclass
class DispatchResult:
    """Result of a successful upgrade dispatch."""
    image: str
    acknowledgement: UpgradeAck
    issued: bool = True


@dataclass
class UpgradeOutcome:
    """Terminal result of an upgrade cycle."""
    node: str
    state: CycleState
    issued: bool
    running_tag: Optional[str] = None
    variant: Optional[str] = None
    image: Optional[str] = None
    acknowledgement: Optional[UpgradeAck] = None
    history: List[CycleState] = field(default_factory=list)
