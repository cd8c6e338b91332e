"""Look up the schematic a node was built from in the Kubernetes API."""

import logging
import threading
from typing import Optional, Protocol

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError
from urllib3.exceptions import TimeoutError as Urllib3TimeoutError

from .errors import (
    CycleCancelled,
    RemoteCallTimeout,
    VariantAnnotationMissing,
    VariantLookupFailed,
)
from .models import SCHEMATIC_ANNOTATION

logger = logging.getLogger(__name__)


class VariantOracle(Protocol):
    def lookup(self, node_name: str) -> str:
        ...


def load_core_v1_api(
    kubeconfig: Optional[str] = None, context: Optional[str] = None
) -> k8s_client.CoreV1Api:
    """
    Build a CoreV1Api client.

    In-cluster configuration is used when running inside a pod and no
    kubeconfig was given; otherwise the kubeconfig file (default location if
    None) is loaded.
    """
    if kubeconfig is None and context is None:
        try:
            k8s_config.load_incluster_config()
            logger.debug("Using in-cluster Kubernetes configuration")
            return k8s_client.CoreV1Api()
        except ConfigException:
            logger.debug("Not running in a cluster, falling back to kubeconfig")

    k8s_config.load_kube_config(config_file=kubeconfig, context=context)
    return k8s_client.CoreV1Api()


class KubernetesVariantOracle:
    """Reads the schematic annotation of a Kubernetes Node."""

    def __init__(
        self,
        api: Optional[k8s_client.CoreV1Api] = None,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        annotation: str = SCHEMATIC_ANNOTATION,
        request_timeout: int = 60,
        cancel: Optional[threading.Event] = None,
    ):
        self._api = api
        self.kubeconfig = kubeconfig
        self.context = context
        self.annotation = annotation
        self.request_timeout = request_timeout
        self.cancel = cancel

    @property
    def api(self) -> k8s_client.CoreV1Api:
        """Lazy-load the CoreV1 client."""
        if self._api is None:
            try:
                self._api = load_core_v1_api(self.kubeconfig, self.context)
            except Exception as e:
                raise VariantLookupFailed(f"could not load Kubernetes configuration: {e}") from e
        return self._api

    def _timeout(self, node_name: str) -> RemoteCallTimeout:
        return RemoteCallTimeout(
            f"no response from the Kubernetes API within {self.request_timeout}s",
            node=node_name,
            step="schematic lookup",
        )

    def lookup(self, node_name: str) -> str:
        """
        Return the schematic recorded on the Kubernetes node.

        Raises:
            VariantLookupFailed: If the Kubernetes API cannot be reached or denies access.
            VariantAnnotationMissing: If the node has no schematic annotation.
            RemoteCallTimeout: If the Kubernetes API does not answer in time.
        """
        if self.cancel is not None and self.cancel.is_set():
            raise CycleCancelled("schematic lookup was not started", node=node_name)

        api = self.api
        try:
            node = api.read_node(node_name, _request_timeout=self.request_timeout)
        except ApiException as e:
            raise VariantLookupFailed(
                f"Kubernetes API returned {e.status} ({e.reason})", node=node_name
            ) from e
        except Urllib3TimeoutError as e:
            raise self._timeout(node_name) from e
        except MaxRetryError as e:
            if isinstance(e.reason, Urllib3TimeoutError):
                raise self._timeout(node_name) from e
            raise VariantLookupFailed(str(e), node=node_name) from e
        except Exception as e:
            raise VariantLookupFailed(str(e), node=node_name) from e

        annotations = (node.metadata.annotations if node.metadata else None) or {}
        value = annotations.get(self.annotation)
        if value is None:
            raise VariantAnnotationMissing(
                f"{self.annotation} annotation not found", node=node_name
            )
        logger.debug(f"Schematic for {node_name}: {value}")
        return value
