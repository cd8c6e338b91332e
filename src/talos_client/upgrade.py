"""
Decide whether a Talos node needs an upgrade and dispatch it.

One cycle reads the node state and its schematic, compares them with the
desired tag, and sends a single upgrade request only when they differ::

    START -> READING_NODE_STATE -> READING_VARIANT -> DECIDING
          -> UP_TO_DATE | DISPATCHING -> DISPATCHED | PLANNED (dry run)
    (any failure) -> FAILED

Nothing is retried. A failed step raises a NodeUpgradeError subclass and no
upgrade is attempted.
"""

import logging
import threading
from typing import List, Optional

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    stop_when_event_set,
    wait_fixed,
)

from .client import NodeManagementClient
from .errors import (
    CycleCancelled,
    InvalidReference,
    NodeUpgradeError,
    TagSubstitutionFailed,
    TalosctlError,
    UpgradeRequestFailed,
    UpgradeResponseEmpty,
)
from .models import (
    CycleState,
    DispatchResult,
    UpgradeOptions,
    UpgradeOutcome,
    UpgradeRequest,
)
from .node_state import NodeStateReader
from .reference import ImageReference, with_tag
from .variant import VariantOracle

logger = logging.getLogger(__name__)


def needs_upgrade(
    running_tag: str, desired_tag: str, installed_variant: str, external_variant: str
) -> bool:
    """Return False only when both the tag and the schematic already match (exact comparison)."""
    return not (running_tag == desired_tag and installed_variant == external_variant)


class UpgradeDispatcher:
    """Builds the new install image and sends the upgrade request."""

    def __init__(self, client: NodeManagementClient, options: Optional[UpgradeOptions] = None):
        self.client = client
        self.options = options or UpgradeOptions()

    def build_request(self, install_image: ImageReference, desired_tag: str) -> UpgradeRequest:
        try:
            new_ref = with_tag(install_image, desired_tag)
        except InvalidReference as e:
            raise TagSubstitutionFailed(e.message, node=self.client.node) from e

        return UpgradeRequest(
            image=str(new_ref),
            preserve=self.options.preserve_data,
            stage=self.options.staged,
            reboot_mode=self.options.reboot_mode,
        )

    def dispatch(self, install_image: ImageReference, desired_tag: str) -> DispatchResult:
        """
        Send one upgrade request for ``desired_tag``.

        Raises:
            TagSubstitutionFailed: If the new image reference cannot be built.
            UpgradeRequestFailed: If the upgrade call errors.
            UpgradeResponseEmpty: If the call returns no acknowledgement.
        """
        request = self.build_request(install_image, desired_tag)
        logger.info(f"upgrading {self.client.node} to {request.image}")

        try:
            acks = self.client.upgrade(request)
        except TalosctlError as e:
            raise UpgradeRequestFailed(str(e), node=self.client.node) from e

        if not acks:
            raise UpgradeResponseEmpty("upgrade response has no messages", node=self.client.node)
        return DispatchResult(image=request.image, acknowledgement=acks[0])


class UpgradeCycle:
    """A single decision-and-dispatch run against one node."""

    def __init__(
        self,
        client: NodeManagementClient,
        oracle: VariantOracle,
        options: Optional[UpgradeOptions] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.reader = NodeStateReader(client)
        self.oracle = oracle
        self.dispatcher = UpgradeDispatcher(client, options)
        self.cancel = cancel
        self.state = CycleState.START
        self.history: List[CycleState] = [CycleState.START]

    def _enter(self, state: CycleState, node: str, check_cancel: bool = True) -> None:
        # Terminal states record what already happened and are never cancelled.
        if check_cancel and self.cancel is not None and self.cancel.is_set():
            raise CycleCancelled(f"cancelled before {state.value}", node=node)
        logger.debug(f"{node}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _fail(self, node: str, error: NodeUpgradeError) -> None:
        logger.debug(f"{node}: {self.state.value} -> {CycleState.FAILED.value} ({error})")
        self.state = CycleState.FAILED
        self.history.append(CycleState.FAILED)

    def run(
        self,
        node: str,
        desired_tag: str,
        expected_identity: Optional[str] = None,
        dry_run: bool = False,
    ) -> UpgradeOutcome:
        """
        Run the cycle.

        Args:
            node: Node the client talks to, used in messages
            desired_tag: Talos version tag to converge to
            expected_identity: Node name the node must report (defaults to ``node``)
            dry_run: Stop after building the upgrade request instead of sending it

        Returns:
            UpgradeOutcome with ``issued`` False when the node is already current.
        """
        expected = node if expected_identity is None else expected_identity
        try:
            self._enter(CycleState.READING_NODE_STATE, node)
            node_state = self.reader.read(expected)

            self._enter(CycleState.READING_VARIANT, node)
            external_variant = self.oracle.lookup(node_state.node_name)

            self._enter(CycleState.DECIDING, node)
            installed_variant = node_state.installed_variant
            if not needs_upgrade(
                node_state.running_tag, desired_tag, installed_variant, external_variant
            ):
                self._enter(CycleState.UP_TO_DATE, node, check_cancel=False)
                logger.info(
                    f"node is up-to-date (schematic: {installed_variant}, tag: {desired_tag})"
                )
                return UpgradeOutcome(
                    node=node_state.node_name,
                    state=self.state,
                    issued=False,
                    running_tag=node_state.running_tag,
                    variant=installed_variant,
                    history=list(self.history),
                )

            logger.info(
                f"{node_state.node_name} runs {node_state.running_tag} "
                f"(schematic {installed_variant}, expected {external_variant}); "
                f"target is {desired_tag}"
            )
            if dry_run:
                request = self.dispatcher.build_request(node_state.install_image, desired_tag)
                self._enter(CycleState.PLANNED, node, check_cancel=False)
                return UpgradeOutcome(
                    node=node_state.node_name,
                    state=self.state,
                    issued=False,
                    running_tag=node_state.running_tag,
                    variant=installed_variant,
                    image=request.image,
                    history=list(self.history),
                )

            self._enter(CycleState.DISPATCHING, node)
            result = self.dispatcher.dispatch(node_state.install_image, desired_tag)
            self._enter(CycleState.DISPATCHED, node, check_cancel=False)
        except NodeUpgradeError as e:
            self._fail(node, e)
            raise

        return UpgradeOutcome(
            node=node_state.node_name,
            state=self.state,
            issued=result.issued,
            running_tag=node_state.running_tag,
            variant=installed_variant,
            image=result.image,
            acknowledgement=result.acknowledgement,
            history=list(self.history),
        )


def run_upgrade_cycle(
    client: NodeManagementClient,
    oracle: VariantOracle,
    node: str,
    desired_tag: str,
    options: Optional[UpgradeOptions] = None,
    cancel: Optional[threading.Event] = None,
    dry_run: bool = False,
) -> UpgradeOutcome:
    """Convenience wrapper running one UpgradeCycle."""
    return UpgradeCycle(client, oracle, options, cancel).run(node, desired_tag, dry_run=dry_run)


def wait_for_tag(
    client: NodeManagementClient,
    desired_tag: str,
    timeout_minutes: int = 30,
    poll_seconds: int = 15,
    cancel: Optional[threading.Event] = None,
) -> bool:
    """
    Poll the node's version until it reports ``desired_tag``.

    Query errors are expected while the node reboots and are retried. Returns
    False when the timeout expires first.
    """
    event = cancel or threading.Event()

    def current_tag() -> Optional[str]:
        messages = client.version()
        tag = messages[0].tag if messages else None
        logger.debug(f"{client.node} reports {tag or 'no version'}")
        return tag

    retrying = Retrying(
        stop=stop_after_delay(timeout_minutes * 60) | stop_when_event_set(event),
        wait=wait_fixed(poll_seconds),
        retry=retry_if_result(lambda tag: tag != desired_tag)
        | retry_if_exception_type((TalosctlError, NodeUpgradeError)),
        sleep=event.wait,
    )
    try:
        retrying(current_tag)
    except RetryError:
        if event.is_set():
            raise CycleCancelled("wait for upgrade was cancelled", node=client.node)
        return False
    return True
