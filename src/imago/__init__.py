"""imago: pin Kubernetes workload images to their latest registry digest."""

from imago.annotation import ConfigAnnotation, merge_config
from imago.image_utils import ImageReference
from imago.planner import UpdatePlan, UpdatePlanner
from imago.registry import RegistryClient

__version__ = "0.4.0"

__all__ = [
    "ConfigAnnotation",
    "ImageReference",
    "RegistryClient",
    "UpdatePlan",
    "UpdatePlanner",
    "merge_config",
]
