"""
Utilities for parsing and manipulating container image references.

Provides the ImageReference dataclass used to build registry manifest URLs,
plus helpers for recognising digest-pinned images and for reading the digest
reported in a pod's container status.
"""

import re
from dataclasses import dataclass

from imago.constants import (
    DEFAULT_DOMAIN,
    DEFAULT_TAG,
    LEGACY_DEFAULT_DOMAIN,
    OFFICIAL_IMAGES_NAMESPACE,
)
from imago.exceptions import ParseError

PINNED_IMAGE_RE = re.compile(r".*@(sha256:.*)")
# docker reports 'docker-pullable://name@sha256:...', containerd a bare 'name@sha256:...'
IMAGE_ID_RE = re.compile(r"^(?:[a-z-]+://)?(.*@sha256:.*)$")


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed container image reference.

    Unlike a full OCI reference parser this keeps only what is needed to address
    a manifest on the registry: the domain, the repository path and the tag.
    """

    domain: str
    """Registry host, optionally with port (e.g., 'registry.hub.docker.com', 'myhost:5000')."""

    repository: str
    """Repository path on the registry (e.g., 'library/nginx')."""

    tag: str
    """Tag to resolve. Defaults to 'latest'."""

    @classmethod
    def parse(cls, image: str) -> "ImageReference":
        """
        Parse a container image reference string.

        Handles various formats:
            - nginx -> registry.hub.docker.com/library/nginx:latest
            - bitnami/redis:7 -> registry.hub.docker.com/bitnami/redis:7
            - index.docker.io/nginx -> registry.hub.docker.com/library/nginx:latest
            - myhost:5000/app:v1 -> myhost:5000/app:v1
            - localhost/app -> localhost/app:latest

        Never raises: any string yields a best-effort reference.

        Args:
            image: Image reference string

        Returns:
            Parsed ImageReference
        """
        domain, remainder = split_domain(image)

        tag = DEFAULT_TAG
        if ":" in remainder:
            remainder, tag = remainder.split(":", 1)

        return cls(domain=domain, repository=remainder, tag=tag)

    @property
    def manifest_url(self) -> str:
        """URL of the manifest endpoint for this reference."""
        return f"https://{self.domain}/v2/{self.repository}/manifests/{self.tag}"


def split_domain(name: str) -> tuple[str, str]:
    """
    Split an image name into registry domain and remainder.

    The part before the first '/' is only a domain if it contains '.' or ':'
    or is exactly 'localhost'. Otherwise the whole name lives on the public
    registry.

    Args:
        name: Image name, possibly with tag

    Returns:
        Tuple of (domain, remainder)
    """
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        domain, remainder = first, rest
    else:
        domain, remainder = DEFAULT_DOMAIN, name

    if domain == LEGACY_DEFAULT_DOMAIN:
        domain = DEFAULT_DOMAIN
    if domain == DEFAULT_DOMAIN and "/" not in remainder:
        remainder = f"{OFFICIAL_IMAGES_NAMESPACE}/{remainder}"

    return domain, remainder


def normalize_host(host: str) -> str:
    """
    Normalize a credential file host key to a bare registry domain.

    Docker config files often key Docker Hub as 'https://index.docker.io/v1/'.

    Examples:
        >>> normalize_host("https://index.docker.io/v1/")
        'registry.hub.docker.com'
        >>> normalize_host("ghcr.io")
        'ghcr.io'
    """
    host = re.sub(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", "", host.strip())
    host = host.split("/", 1)[0]
    if host == LEGACY_DEFAULT_DOMAIN:
        return DEFAULT_DOMAIN
    return host


def is_pinned(image: str) -> bool:
    """Check if an image reference is pinned to a sha256 digest."""
    return PINNED_IMAGE_RE.match(image) is not None


def strip_tag(image: str) -> str:
    """
    Remove the tag from an image reference, keeping any registry port.

    Examples:
        >>> strip_tag("nginx:1.25")
        'nginx'
        >>> strip_tag("myhost:5000/app:v1")
        'myhost:5000/app'
        >>> strip_tag("myhost:5000/app")
        'myhost:5000/app'
    """
    last_slash = image.rfind("/")
    last_colon = image.rfind(":")
    if last_colon > last_slash:
        return image[:last_colon]
    return image


def digest_of(image: str) -> str:
    """Return the 'sha256:...' part of a pinned reference, or the input unchanged."""
    match = PINNED_IMAGE_RE.match(image)
    return match.group(1) if match else image


def parse_image_id(image_id: str) -> str:
    """
    Extract the pinned reference from a container status imageID.

    Args:
        image_id: Value like 'docker-pullable://nginx@sha256:abc...' or
            'docker.io/library/nginx@sha256:abc...'

    Returns:
        The 'name@sha256:...' portion

    Raises:
        ParseError: If the imageID does not carry a digest reference
    """
    match = IMAGE_ID_RE.match(image_id or "")
    if not match:
        raise ParseError(f"Unable to parse image digest {image_id}")
    return match.group(1)
