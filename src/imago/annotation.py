"""
Pinned image config stored as a workload annotation.

The annotation records, per container, the image the user asked for (usually a
tag). It lets imago rewrite the live spec to 'repo@sha256:...' while still
knowing which tag to track on the next run.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

from imago.exceptions import AnnotationDecodeError
from imago.image_utils import is_pinned


@dataclass
class ImageSpec:
    """Image tracked for one container."""

    name: str
    image: str


@dataclass
class ConfigAnnotation:
    """Decoded content of the imago-config-spec annotation.

    Attributes:
        containers: Tracked images of regular containers.
        init_containers: Tracked images of init containers.
    """

    containers: list[ImageSpec] = field(default_factory=list)
    init_containers: list[ImageSpec] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ConfigAnnotation":
        """
        Decode an annotation value.

        An empty or missing value, or JSON null, decodes to an empty config.

        Raises:
            AnnotationDecodeError: If the value is not valid JSON or does not
                have the expected shape
        """
        if not raw:
            return cls()

        try:
            data = json.loads(raw)
            if data is None:
                return cls()
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            return cls(
                containers=_decode_specs(data.get("containers")),
                init_containers=_decode_specs(data.get("initContainers")),
            )
        except (json.JSONDecodeError, ValueError, TypeError, KeyError) as e:
            raise AnnotationDecodeError(f"Invalid config annotation: {e}") from e

    def to_json(self) -> str:
        """Encode as the compact JSON stored in the annotation."""
        return json.dumps(
            {
                "containers": [asdict(c) for c in self.containers],
                "initContainers": [asdict(c) for c in self.init_containers],
            },
            separators=(",", ":"),
        )


def _decode_specs(items: Any) -> list[ImageSpec]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError("container list must be a JSON array")
    return [ImageSpec(name=item["name"], image=item["image"]) for item in items]


def merge_containers(stored: list[ImageSpec], live: Optional[Iterable[Any]]) -> list[ImageSpec]:
    """
    Merge stored image specs with the live container list.

    - Containers only in the live spec are added with their live image.
    - Containers in both keep the stored image if the live image is pinned to
      a digest (possibly by a previous imago run), otherwise take the live
      image since someone changed the tag.
    - Containers only in the stored config are dropped.

    Args:
        stored: Image specs from the existing annotation
        live: V1Container objects from the pod template

    Returns:
        Merged specs in live spec order
    """
    stored_images = {spec.name: spec.image for spec in stored}
    merged = []
    for container in live or []:
        image = container.image
        if container.name in stored_images and is_pinned(image):
            image = stored_images[container.name]
        merged.append(ImageSpec(name=container.name, image=image))
    return merged


def merge_config(existing: Optional[str], pod_spec: Any) -> ConfigAnnotation:
    """
    Build the desired config for a workload.

    Args:
        existing: Current annotation value, or None
        pod_spec: V1PodSpec of the workload's pod template

    Returns:
        Merged ConfigAnnotation

    Raises:
        AnnotationDecodeError: If the existing annotation is invalid
    """
    config = ConfigAnnotation.from_json(existing)
    return ConfigAnnotation(
        containers=merge_containers(config.containers, pod_spec.containers),
        init_containers=merge_containers(config.init_containers, pod_spec.init_containers),
    )
