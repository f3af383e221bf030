"""
Cluster scheduler capability and the Kubernetes adapter.

The job runner depends only on the Scheduler protocol:
- create(manifest) -> JobHandle
- get(handle) -> PodStatus
- delete(handle)
- close()

KubernetesScheduler implements it with the official kubernetes client.
"""

import logging
from typing import Any, Optional, Protocol, runtime_checkable

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from stagehand.runner.run_spec import ContainerStatus, JobHandle, JobPhase, PodStatus

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"


@runtime_checkable
class Scheduler(Protocol):
    """
    Protocol for cluster schedulers.

    Implementations must be safe for sequential reuse across many runs.
    Thread safety is not assumed.
    """

    def create(self, manifest: dict[str, Any]) -> JobHandle:
        """Create the execution unit described by `manifest`."""
        ...

    def get(self, handle: JobHandle) -> PodStatus:
        """Return the current status of an execution unit."""
        ...

    def delete(self, handle: JobHandle) -> None:
        """Delete an execution unit."""
        ...

    def close(self) -> None:
        """Release the underlying connection."""
        ...


def _container_status(raw: Any) -> ContainerStatus:
    terminated = raw.state.terminated if raw.state is not None else None
    message = terminated.message if terminated is not None else None
    return ContainerStatus(name=raw.name, terminated_message=message)


class KubernetesScheduler:
    """
    Scheduler backed by a Kubernetes cluster.

    Args:
        api: CoreV1Api to use; built from kubeconfig (or in-cluster config) if omitted
        namespace: Namespace pods are created in
        context: kubeconfig context to load when building the api
    """

    def __init__(
        self,
        api: Optional[k8s_client.CoreV1Api] = None,
        namespace: str = DEFAULT_NAMESPACE,
        context: Optional[str] = None,
    ):
        self._api = api
        self.namespace = namespace
        self._context = context
        self._closed = False

    @property
    def api(self) -> k8s_client.CoreV1Api:
        if self._api is None:
            try:
                k8s_config.load_kube_config(context=self._context)
            except ConfigException:
                logger.debug("No usable kubeconfig, falling back to in-cluster config")
                k8s_config.load_incluster_config()
            self._api = k8s_client.CoreV1Api()
        return self._api

    def create(self, manifest: dict[str, Any]) -> JobHandle:
        pod = self.api.create_namespaced_pod(namespace=self.namespace, body=manifest)
        return JobHandle(name=pod.metadata.name, namespace=self.namespace)

    def get(self, handle: JobHandle) -> PodStatus:
        pod = self.api.read_namespaced_pod(name=handle.name, namespace=handle.namespace)
        status = pod.status
        return PodStatus(
            phase=JobPhase.parse(status.phase),
            container_statuses=tuple(
                _container_status(cs) for cs in (status.container_statuses or [])
            ),
        )

    def delete(self, handle: JobHandle) -> None:
        try:
            self.api.delete_namespaced_pod(name=handle.name, namespace=handle.namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            logger.debug("Pod %s already deleted", handle.name)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._api is not None:
            self._api.api_client.close()
