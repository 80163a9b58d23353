"""
Collect the image digests actually running in a workload's pods.
"""

import logging
from typing import Any, Optional

from kubernetes.client import ApiException

from imago.exceptions import ParseError
from imago.image_utils import parse_image_id
from imago.planner import RunningDigests
from imago.workloads import WorkloadKind

logger = logging.getLogger(__name__)


def label_selector(labels: Optional[dict[str, str]]) -> str:
    """Build a label selector string matching all given labels."""
    return ",".join(f"{key}={value}" for key, value in sorted((labels or {}).items()))


class RunningDigestCollector:
    """
    Finds pods owned by a workload and records their container image digests.

    Deployment pods are matched through their ReplicaSet owner; DaemonSet and
    StatefulSet pods directly. CronJob pods are never matched.
    """

    def __init__(self, core_api: Any, apps_api: Any):
        self._core = core_api
        self._apps = apps_api
        self._replica_sets: dict[str, Any] = {}

    def collect(self, kind: WorkloadKind, workload: Any, template: Any) -> tuple[RunningDigests, RunningDigests]:
        """
        Collect running digests for a workload.

        Args:
            kind: Workload kind
            workload: Workload object
            template: Its V1PodTemplateSpec

        Returns:
            Tuple of (running init container digests, running container digests)

        Raises:
            ApiException: If pods cannot be listed
        """
        running_init: RunningDigests = {}
        running: RunningDigests = {}
        meta = workload.metadata

        pods = self._core.list_namespaced_pod(
            meta.namespace, label_selector=label_selector(template.metadata.labels)
        )
        for pod in pods.items:
            if not self._owned_by(pod, kind, meta):
                continue
            status = pod.status
            if status is None:
                continue
            pod_name = pod.metadata.name
            for container in status.init_container_statuses or []:
                _add_image(running_init, container, pod_name)
            for container in status.container_statuses or []:
                _add_image(running, container, pod_name)

        return running_init, running

    def _owned_by(self, pod: Any, kind: WorkloadKind, meta: Any) -> bool:
        for owner in pod.metadata.owner_references or []:
            if owner.kind == "ReplicaSet":
                replica_set = self._get_replica_set(meta.namespace, owner.name)
                if replica_set is None:
                    continue
                for rs_owner in replica_set.metadata.owner_references or []:
                    if rs_owner.kind == kind.value and rs_owner.name == meta.name:
                        return True
            elif owner.kind in (WorkloadKind.DAEMONSET.value, WorkloadKind.STATEFULSET.value):
                if owner.kind == kind.value and owner.name == meta.name:
                    return True
        return False

    def _get_replica_set(self, namespace: str, name: str) -> Optional[Any]:
        key = f"{namespace}/{name}"
        if key not in self._replica_sets:
            try:
                self._replica_sets[key] = self._apps.read_namespaced_replica_set(name, namespace)
            except ApiException as e:
                logger.warning(f"Unable to get ReplicaSet {key}: {e.status} {e.reason}")
                return None
        return self._replica_sets[key]


def _add_image(containers: RunningDigests, status: Any, pod_name: str) -> None:
    try:
        reference = parse_image_id(status.image_id)
    except ParseError as e:
        logger.info(str(e))
        return
    containers.setdefault(status.name, {})[pod_name] = reference
