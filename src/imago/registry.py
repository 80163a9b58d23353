"""
Registry client for resolving image tags to manifest digests.

Issues a HEAD request against the registry manifest endpoint and reads the
Docker-Content-Digest header. Registries that answer 401 with a Bearer
challenge are handled with a single token round-trip:

    UNAUTHENTICATED --401 + Bearer--> CHALLENGED --token--> AUTHENTICATED

Uses a requests Session for connection pooling and memoizes digests per raw
image string for the lifetime of the client.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

from imago.constants import DIGEST_HEADER, MANIFEST_MEDIA_TYPES, REGISTRY_TIMEOUT
from imago.credentials import CredentialSet
from imago.exceptions import AuthChallengeError, DigestFetchError
from imago.image_utils import ImageReference

logger = logging.getLogger(__name__)

CHALLENGE_PARAM_RE = re.compile(r'([A-Za-z_]+)\s*=\s*"([^"]*)"')


class AuthState(Enum):
    """Authentication state of a single digest request."""

    UNAUTHENTICATED = "unauthenticated"
    CHALLENGED = "challenged"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class BearerChallenge:
    """Parameters of a 'WWW-Authenticate: Bearer ...' challenge."""

    realm: str
    service: str
    scope: str

    @staticmethod
    def is_bearer(header: Optional[str]) -> bool:
        """Check if a WWW-Authenticate header is a Bearer challenge."""
        return bool(header) and header.startswith("Bearer ")

    @classmethod
    def parse(cls, header: str) -> "BearerChallenge":
        """
        Parse a Bearer challenge header.

        Args:
            header: e.g. 'Bearer realm="https://auth.docker.io/token",service="registry.docker.io",scope="repository:library/nginx:pull"'

        Returns:
            Parsed challenge

        Raises:
            AuthChallengeError: If the header is not a Bearer challenge or any
                of realm, service and scope is missing or empty
        """
        if not cls.is_bearer(header):
            raise AuthChallengeError(f"Not a Bearer challenge: {header!r}")

        params = dict(CHALLENGE_PARAM_RE.findall(header.split(" ", 1)[1]))
        missing = [key for key in ("realm", "service", "scope") if not params.get(key)]
        if missing:
            raise AuthChallengeError(
                f"Unexpected or missing auth parameters ({', '.join(missing)}) in challenge: {header}"
            )
        return cls(realm=params["realm"], service=params["service"], scope=params["scope"])


class DigestCache:
    """
    Raw image string -> digest, write-once per key.

    Owned by a single run; there is no invalidation.
    """

    def __init__(self):
        self._digests: dict[str, str] = {}

    def get(self, image: str) -> Optional[str]:
        return self._digests.get(image)

    def set(self, image: str, digest: str) -> None:
        self._digests.setdefault(image, digest)

    def __contains__(self, image: str) -> bool:
        return image in self._digests

    def __len__(self) -> int:
        return len(self._digests)


class RegistryClient:
    """
    Resolves image references to registry content digests.

    Supports anonymous registries, Basic auth from a credential set, and the
    Bearer token challenge flow used by Docker Hub, GHCR and most
    distribution-based registries.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = REGISTRY_TIMEOUT,
        cache: Optional[DigestCache] = None,
    ):
        """
        Initialize registry client.

        Args:
            session: Optional requests Session (a new one is created if omitted)
            timeout: Timeout in seconds applied to every HTTP call
            cache: Optional digest cache (a new one is created if omitted)
        """
        self._session = session or requests.Session()
        self.timeout = timeout
        self.cache = cache if cache is not None else DigestCache()

    def get_digest(self, image: str, auth: Optional[CredentialSet] = None) -> str:
        """
        Get the manifest digest currently published for an image.

        Args:
            image: Image reference (e.g., "nginx:1.25", "ghcr.io/org/app:latest")
            auth: Credential set used for Basic auth against the image's domain

        Returns:
            Digest string (e.g., "sha256:abc123...")

        Raises:
            AuthChallengeError: If the registry challenge is malformed
            DigestFetchError: If the registry or token endpoint answers
                unexpectedly or no digest header is returned
            requests.RequestException: On transport errors and timeouts
        """
        cached = self.cache.get(image)
        if cached:
            logger.debug(f"Cache hit for {image}")
            return cached

        ref = ImageReference.parse(image)
        url = ref.manifest_url
        headers = {"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}

        token = (auth or {}).get(ref.domain)
        if token:
            headers["Authorization"] = f"Basic {token}"

        state = AuthState.UNAUTHENTICATED
        response = self._head(url, headers)

        challenge_header = response.headers.get("WWW-Authenticate")
        if response.status_code == 401 and BearerChallenge.is_bearer(challenge_header):
            state = AuthState.CHALLENGED
            challenge = BearerChallenge.parse(challenge_header)
            logger.debug(f"{url} challenged for {challenge.scope} by {challenge.realm}")

            headers["Authorization"] = f"Bearer {self._fetch_bearer_token(challenge)}"
            state = AuthState.AUTHENTICATED
            response = self._head(url, headers)

        if response.status_code != 200:
            raise DigestFetchError(
                f"Unexpected response while requesting {url}: {response.status_code} {response.reason}"
                f" ({state.value})",
                status=response.status_code,
                url=url,
            )

        digest = response.headers.get(DIGEST_HEADER)
        if not digest:
            raise DigestFetchError(
                f"No {DIGEST_HEADER} in response headers for {url}",
                status=response.status_code,
                url=url,
            )

        self.cache.set(image, digest)
        logger.debug(f"Resolved {image} -> {digest}")
        return digest

    def _head(self, url: str, headers: dict[str, str]) -> requests.Response:
        """Issue a manifest HEAD request."""
        return self._session.head(url, headers=headers, timeout=self.timeout, allow_redirects=True)

    def _fetch_bearer_token(self, challenge: BearerChallenge) -> str:
        """
        Request a bearer token for a challenge.

        The token endpoint is called without registry credentials.

        Raises:
            DigestFetchError: If the endpoint fails or returns no token
        """
        response = self._session.get(
            challenge.realm,
            params={"service": challenge.service, "scope": challenge.scope},
            timeout=self.timeout,
        )
        if response.status_code != 200:
            raise DigestFetchError(
                f"Error while requesting auth token on {response.url}: {response.status_code} {response.reason}",
                status=response.status_code,
                url=challenge.realm,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise DigestFetchError(
                f"Invalid token response from {challenge.realm}: {e}",
                status=response.status_code,
                url=challenge.realm,
            ) from e

        token = None
        if isinstance(body, dict):
            token = body.get("token") or body.get("access_token")
        if not token:
            raise DigestFetchError(
                f"No token in response from {challenge.realm}",
                status=response.status_code,
                url=challenge.realm,
            )
        return token
