"""
Workload accessors for the supported Kubernetes controller kinds.

Each accessor knows how to list, read and replace one kind of workload and
where its pod template lives. Everything else in imago is kind-agnostic.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from kubernetes import client


class WorkloadKind(str, Enum):
    """Supported Kubernetes workload types."""

    DEPLOYMENT = "Deployment"
    DAEMONSET = "DaemonSet"
    STATEFULSET = "StatefulSet"
    CRONJOB = "CronJob"


class WorkloadAccessor(ABC):
    """
    Abstract base class for per-kind workload access.

    Subclasses set `kind` and `resource` (the snake_case resource name used
    in the kubernetes client method names, e.g. 'stateful_set').
    """

    kind: WorkloadKind
    resource: str

    def __init__(self, api: Any):
        """
        Args:
            api: AppsV1Api or BatchV1Api instance serving this kind
        """
        self._api = api

    def list(self, namespace: str = "", field_selector: str = "", label_selector: str = "") -> list[Any]:
        """
        List workloads of this kind.

        Args:
            namespace: Namespace to list, or "" for all namespaces
            field_selector: Kubernetes field selector
            label_selector: Kubernetes label selector
        """
        kwargs = {"field_selector": field_selector, "label_selector": label_selector}
        if namespace:
            method = getattr(self._api, f"list_namespaced_{self.resource}")
            return method(namespace, **kwargs).items
        method = getattr(self._api, f"list_{self.resource}_for_all_namespaces")
        return method(**kwargs).items

    def get(self, namespace: str, name: str) -> Any:
        """Read the current object from the API server."""
        return getattr(self._api, f"read_namespaced_{self.resource}")(name, namespace)

    def update(self, namespace: str, name: str, body: Any) -> Any:
        """
        Replace the object.

        The body carries the resourceVersion it was read with, so the API
        server rejects the write with 409 if the object changed meanwhile.
        """
        return getattr(self._api, f"replace_namespaced_{self.resource}")(name, namespace, body)

    @abstractmethod
    def pod_template(self, obj: Any) -> Any:
        """Return the V1PodTemplateSpec of a workload object."""
        ...


class DeploymentAccessor(WorkloadAccessor):
    kind = WorkloadKind.DEPLOYMENT
    resource = "deployment"

    def pod_template(self, obj: Any) -> Any:
        return obj.spec.template


class DaemonSetAccessor(WorkloadAccessor):
    kind = WorkloadKind.DAEMONSET
    resource = "daemon_set"

    def pod_template(self, obj: Any) -> Any:
        return obj.spec.template


class StatefulSetAccessor(WorkloadAccessor):
    kind = WorkloadKind.STATEFULSET
    resource = "stateful_set"

    def pod_template(self, obj: Any) -> Any:
        return obj.spec.template


class CronJobAccessor(WorkloadAccessor):
    kind = WorkloadKind.CRONJOB
    resource = "cron_job"

    def pod_template(self, obj: Any) -> Any:
        return obj.spec.job_template.spec.template


def build_accessors(api_client: Any = None) -> dict[WorkloadKind, WorkloadAccessor]:
    """
    Create one accessor per supported kind.

    Args:
        api_client: Optional kubernetes ApiClient (default configuration if None)

    Returns:
        Mapping in processing order: Deployment, DaemonSet, StatefulSet, CronJob
    """
    apps = client.AppsV1Api(api_client)
    batch = client.BatchV1Api(api_client)
    accessors: list[WorkloadAccessor] = [
        DeploymentAccessor(apps),
        DaemonSetAccessor(apps),
        StatefulSetAccessor(apps),
        CronJobAccessor(batch),
    ]
    return {accessor.kind: accessor for accessor in accessors}
