"""
Centralized configuration constants for imago.

Single source of truth for registry, annotation and retry defaults that are
shared across modules.
"""

# ============================================================================
# Registry
# ============================================================================

DEFAULT_DOMAIN = "registry.hub.docker.com"
"""Canonical public registry domain used when an image has no domain."""

LEGACY_DEFAULT_DOMAIN = "index.docker.io"
"""Legacy alias rewritten to DEFAULT_DOMAIN."""

OFFICIAL_IMAGES_NAMESPACE = "library"
"""Namespace prefixed to single-segment repositories on the public registry."""

DEFAULT_TAG = "latest"
"""Tag assumed when an image reference has none."""

MANIFEST_MEDIA_TYPES = [
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v1+prettyjws",
]
"""Manifest media types sent in the Accept header of digest requests."""

DIGEST_HEADER = "Docker-Content-Digest"
"""Response header carrying the manifest digest."""

REGISTRY_TIMEOUT = 10.0
"""Timeout in seconds for each registry HTTP call."""

# ============================================================================
# Kubernetes
# ============================================================================

CONFIG_ANNOTATION = "imago-config-spec"
"""Workload annotation holding the JSON-encoded pinned image config."""

DOCKER_CONFIG_JSON_KEY = ".dockerconfigjson"
"""Key of the registry credentials payload in a kubernetes.io/dockerconfigjson secret."""

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"
"""Mount point of the in-cluster service account credentials."""

DEFAULT_NAMESPACE = "default"
"""Namespace used when neither flags nor kubeconfig context name one."""

# ============================================================================
# Optimistic Concurrency
# ============================================================================

CONFLICT_RETRIES = 5
"""Maximum update attempts when the API server reports a version conflict."""

CONFLICT_BACKOFF_SECONDS = 0.01
"""Delay between conflict retries."""
