"""Error taxonomy for the node upgrade cycle."""

from typing import Optional


class NodeUpgradeError(Exception):
    """Base class for every failure that terminates an upgrade cycle."""

    step = "upgrade"

    def __init__(self, message: str, node: Optional[str] = None, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node = node
        if step is not None:
            self.step = step

    def __str__(self) -> str:
        if self.node:
            return f"{self.step} failed for node {self.node}: {self.message}"
        return f"{self.step} failed: {self.message}"


class IdentityUnavailable(NodeUpgradeError):
    step = "identity lookup"


class IdentityMismatch(NodeUpgradeError):
    step = "identity check"


class ConfigUnavailable(NodeUpgradeError):
    step = "machine config lookup"


class VersionQueryFailed(NodeUpgradeError):
    step = "version query"


class VersionResponseEmpty(NodeUpgradeError):
    step = "version query"


class VariantLookupFailed(NodeUpgradeError):
    step = "schematic lookup"


class VariantAnnotationMissing(NodeUpgradeError):
    step = "schematic lookup"


class InvalidReference(NodeUpgradeError):
    step = "image reference parsing"


class ReferenceNotTagged(InvalidReference):
    pass


class TagSubstitutionFailed(NodeUpgradeError):
    step = "image tag substitution"


class UpgradeRequestFailed(NodeUpgradeError):
    step = "upgrade request"


class UpgradeResponseEmpty(NodeUpgradeError):
    step = "upgrade request"


class RemoteCallTimeout(NodeUpgradeError):
    step = "remote call"


class CycleCancelled(NodeUpgradeError):
    step = "upgrade cycle"


class TalosctlError(Exception):
    """Raised when a talosctl invocation cannot be run or exits non-zero."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ConfigNotFoundError(Exception):
    """Custom exception for configuration not found errors."""
    pass
