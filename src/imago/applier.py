"""
Apply UpdatePlans to live workloads with optimistic concurrency.

Every attempt re-reads the object, re-merges and re-plans against it when a
replan callback is given, rewrites the annotation and the image fields on that
fresh copy, and submits them in one replace call. Only version conflicts
(HTTP 409) are retried.
"""

import logging
import time
from typing import Any, Callable, Optional

from kubernetes.client import ApiException

from imago.annotation import ConfigAnnotation
from imago.constants import CONFIG_ANNOTATION, CONFLICT_BACKOFF_SECONDS, CONFLICT_RETRIES
from imago.exceptions import ConcurrentUpdateError
from imago.planner import UpdatePlan
from imago.workloads import WorkloadAccessor

Replan = Callable[[Any], tuple[UpdatePlan, ConfigAnnotation]]
"""Fresh object -> (plan, merged annotation) recomputed from that object."""

logger = logging.getLogger(__name__)


def set_annotation(metadata: Any, value: str) -> None:
    """Store the config annotation on object metadata."""
    if metadata.annotations is None:
        metadata.annotations = {}
    metadata.annotations[CONFIG_ANNOTATION] = value


def set_images(containers: Optional[list[Any]], updates: dict[str, str]) -> None:
    """Rewrite the image of each container named in updates."""
    for container in containers or []:
        if container.name in updates:
            container.image = updates[container.name]


class ReconciliationApplier:
    """Commits UpdatePlans to the API server."""

    def __init__(
        self,
        max_attempts: int = CONFLICT_RETRIES,
        backoff: float = CONFLICT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize applier.

        Args:
            max_attempts: Update attempts before giving up on conflicts
            backoff: Seconds to wait between conflicting attempts
            sleep: Sleep function (injectable for tests)
        """
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._sleep = sleep

    def apply(
        self,
        accessor: WorkloadAccessor,
        namespace: str,
        name: str,
        plan: UpdatePlan,
        annotation: ConfigAnnotation,
        replan: Optional[Replan] = None,
    ) -> bool:
        """
        Apply a plan and the merged annotation to a workload.

        Args:
            accessor: Accessor for the workload's kind
            namespace: Workload namespace
            name: Workload name
            plan: Image replacements
            annotation: Merged config to store
            replan: Recomputes plan and annotation from each freshly fetched
                object, so edits made since the workload was listed are kept

        Returns:
            True if an update was committed, False if the plan is (or became)
            empty

        Raises:
            ConcurrentUpdateError: If every attempt hit a version conflict
            ApiException: On any other API error
        """
        if plan.is_empty:
            return False

        for attempt in range(1, self.max_attempts + 1):
            resource = accessor.get(namespace, name)
            if replan is not None:
                plan, annotation = replan(resource)
                if plan.is_empty:
                    logger.info(f"{namespace}/{accessor.kind.value}/{name} is already up to date")
                    return False

            set_annotation(resource.metadata, annotation.to_json())
            template = accessor.pod_template(resource)
            set_images(template.spec.containers, plan.containers)
            set_images(template.spec.init_containers, plan.init_containers)

            try:
                accessor.update(namespace, name, resource)
                return True
            except ApiException as e:
                if e.status != 409:
                    raise
                logger.debug(
                    f"Conflict updating {namespace}/{accessor.kind.value}/{name} "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff)

        raise ConcurrentUpdateError(
            f"Gave up updating {namespace}/{accessor.kind.value}/{name} "
            f"after {self.max_attempts} conflicting attempts"
        )
