"""
Update decisions for a workload.

For every tracked container the planner resolves the current digest of its tag
and compares the pinned candidate against either the live spec or, when pod
checking is enabled, the digests the pods are actually running.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import requests

from imago.annotation import ConfigAnnotation, ImageSpec
from imago.credentials import CredentialSet
from imago.exceptions import AuthChallengeError, DigestFetchError
from imago.image_utils import digest_of, is_pinned, strip_tag
from imago.registry import RegistryClient

logger = logging.getLogger(__name__)

RunningDigests = dict[str, dict[str, str]]
"""Container name -> pod name -> 'name@sha256:...' reported by the pod."""


@dataclass
class UpdatePlan:
    """Image replacements to apply to a workload.

    Attributes:
        containers: Container name -> new image for regular containers.
        init_containers: Container name -> new image for init containers.
    """

    containers: dict[str, str] = field(default_factory=dict)
    init_containers: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.containers and not self.init_containers


def needs_update(name: str, candidate: str, spec_image: str, running: Optional[dict[str, str]]) -> bool:
    """
    Decide whether a container must be moved to the candidate image.

    Args:
        name: Container name (for logging)
        candidate: 'repository@sha256:...' for the latest digest
        spec_image: Image currently in the workload spec
        running: Pod name -> reference reported by the pod, empty when pods
            are not checked or none were found

    Returns:
        True if the spec (or any pod) is not on the candidate digest
    """
    if not running:
        if candidate != spec_image:
            logger.info(f"    {name} need to be updated from {spec_image} to {candidate}")
            return True
        logger.info(f"    {name} ok")
        return False

    # Pods report a normalized name (e.g. docker.io/library/nginx), so only
    # the digests are comparable.
    result = False
    for pod, reference in sorted(running.items()):
        if digest_of(reference) != digest_of(candidate):
            logger.info(f"    {name} on {pod} need to be updated from {reference} to {candidate}")
            result = True
        else:
            logger.info(f"    {name} on {pod} ok")
    return result


class UpdatePlanner:
    """Builds UpdatePlans by consulting the registry."""

    def __init__(self, registry: RegistryClient):
        self.registry = registry

    def plan(
        self,
        config_containers: list[ImageSpec],
        live_containers: Optional[Iterable[Any]],
        running: Optional[RunningDigests] = None,
        auth: Optional[CredentialSet] = None,
    ) -> dict[str, str]:
        """
        Compute replacements for one container list.

        Args:
            config_containers: Merged image specs
            live_containers: V1Container objects from the pod template
            running: Running digests per container, or None
            auth: Credentials for registry access

        Returns:
            Container name -> new image, only for out-of-date containers
        """
        running = running or {}
        spec_images = {c.name: c.image for c in live_containers or []}
        updates: dict[str, str] = {}

        for container in config_containers:
            if is_pinned(container.image):
                logger.info(f"    {container.name} ok (fixed digest)")
                continue

            if container.name not in spec_images:
                continue

            try:
                digest = self.registry.get_digest(container.image, auth)
            except (DigestFetchError, AuthChallengeError, requests.RequestException) as e:
                logger.warning(f"    {container.name} unable to get digest: {e}")
                continue

            candidate = f"{strip_tag(container.image)}@{digest}"
            if needs_update(container.name, candidate, spec_images[container.name], running.get(container.name)):
                updates[container.name] = candidate

        return updates

    def plan_workload(
        self,
        config: ConfigAnnotation,
        pod_spec: Any,
        running_init: Optional[RunningDigests] = None,
        running: Optional[RunningDigests] = None,
        auth: Optional[CredentialSet] = None,
    ) -> UpdatePlan:
        """Compute the UpdatePlan for both container lists of a pod spec."""
        return UpdatePlan(
            init_containers=self.plan(config.init_containers, pod_spec.init_containers, running_init, auth),
            containers=self.plan(config.containers, pod_spec.containers, running, auth),
        )
