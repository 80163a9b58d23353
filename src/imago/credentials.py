"""
Registry credential handling.

Credentials come from two layers:

1. A default set read once from a Docker config file (~/.docker/config.json
   unless overridden).
2. Per-namespace pull secrets referenced by a workload's pod template. These
   override the default set host by host.

Bearer tokens obtained from a registry challenge are the third tier and are
handled by the registry client itself.
"""

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from kubernetes.client import ApiException

from imago.constants import DOCKER_CONFIG_JSON_KEY
from imago.exceptions import CredentialFetchError
from imago.image_utils import normalize_host

logger = logging.getLogger(__name__)

CredentialSet = dict[str, str]
"""Mapping of registry host to base64 'user:pass' Basic auth token."""

DEFAULT_DOCKER_CONFIG = Path.home() / ".docker" / "config.json"


def parse_docker_config(data: Any) -> CredentialSet:
    """
    Extract host -> auth tokens from a decoded Docker config document.

    Entries without an 'auth' value (credential helpers, identity tokens) are
    skipped.

    Raises:
        ValueError: If the document does not have the expected shape
    """
    if not isinstance(data, dict):
        raise ValueError("registry credentials must be a JSON object")

    auths = data.get("auths") or {}
    if not isinstance(auths, dict):
        raise ValueError("'auths' must be a JSON object")

    result: CredentialSet = {}
    for host, entry in auths.items():
        if isinstance(entry, dict) and entry.get("auth"):
            result[normalize_host(host)] = entry["auth"]
    return result


def load_docker_config(path: Optional[Path] = None) -> CredentialSet:
    """
    Load the default credential set from a Docker config file.

    Args:
        path: Explicit config file. When None, ~/.docker/config.json is used
            and its absence is not an error.

    Returns:
        Credential set, empty if no default file exists

    Raises:
        CredentialFetchError: If an explicit file is missing, or any file is
            unreadable or not valid JSON
    """
    explicit = path is not None
    config_path = Path(path) if explicit else DEFAULT_DOCKER_CONFIG

    try:
        raw = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        if explicit:
            raise CredentialFetchError(f"Docker config file not found: {config_path}")
        logger.debug(f"No docker config at {config_path}, using anonymous registry access")
        return {}
    except OSError as e:
        raise CredentialFetchError(f"Unable to read docker config {config_path}: {e}") from e

    if not raw.strip():
        return {}

    try:
        auths = parse_docker_config(json.loads(raw))
    except (json.JSONDecodeError, ValueError) as e:
        raise CredentialFetchError(f"Invalid docker config {config_path}: {e}") from e

    logger.debug(f"Loaded credentials for {len(auths)} registries from {config_path}")
    return auths


class SecretCache:
    """
    Per-run cache of fetched Kubernetes secrets keyed by 'namespace/name'.

    Write-once: the first lookup of a key fetches the secret, later lookups
    return the stored object without touching the API server.
    """

    def __init__(self, reader: Callable[[str, str], Any]):
        """
        Initialize the cache.

        Args:
            reader: Callable (namespace, name) -> V1Secret
        """
        self._reader = reader
        self._secrets: dict[str, Any] = {}

    def get(self, namespace: str, name: str) -> Any:
        """Return the secret, fetching it on first access."""
        key = f"{namespace}/{name}"
        if key not in self._secrets:
            try:
                self._secrets[key] = self._reader(namespace, name)
            except ApiException as e:
                raise CredentialFetchError(
                    f"Unable to get pull secret {key}: {e.status} {e.reason}"
                ) from e
        return self._secrets[key]

    def __len__(self) -> int:
        return len(self._secrets)


class CredentialStore:
    """
    Layers namespace pull secrets over a default credential set.
    """

    def __init__(self, default_auth: CredentialSet, secrets: SecretCache):
        self._default_auth = dict(default_auth)
        self._secrets = secrets

    def default_auth(self) -> CredentialSet:
        """Return a copy of the default credential set."""
        return dict(self._default_auth)

    def effective_auth(self, namespace: str, pull_secret_refs: Optional[Iterable[Any]]) -> CredentialSet:
        """
        Build the credential set for a workload.

        Args:
            namespace: Namespace of the workload
            pull_secret_refs: The pod template's image_pull_secrets
                (V1LocalObjectReference list, may be None)

        Returns:
            Default credentials overlaid with each referenced secret in order

        Raises:
            CredentialFetchError: If a secret is missing or its payload is invalid
        """
        auth = self.default_auth()
        for ref in pull_secret_refs or []:
            secret = self._secrets.get(namespace, ref.name)
            auth.update(self._decode_secret(namespace, ref.name, secret))
        return auth

    @staticmethod
    def _decode_secret(namespace: str, name: str, secret: Any) -> CredentialSet:
        """Decode the registry credentials embedded in a pull secret."""
        data = secret.data or {}
        payload = data.get(DOCKER_CONFIG_JSON_KEY)
        if not payload:
            raise CredentialFetchError(
                f"Pull secret {namespace}/{name} has no {DOCKER_CONFIG_JSON_KEY} key"
            )

        # Secret data is base64 encoded by the API server
        try:
            decoded = base64.b64decode(payload, validate=True)
            return parse_docker_config(json.loads(decoded))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
            raise CredentialFetchError(
                f"Invalid registry credentials in pull secret {namespace}/{name}: {e}"
            ) from e
