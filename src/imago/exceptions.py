"""Exception hierarchy for imago.

Errors are grouped by the scope they abort:

- container scope (``DigestFetchError``, ``AuthChallengeError``): the container
  is skipped and keeps its current image;
- workload scope (``CredentialFetchError``, ``AnnotationDecodeError``,
  ``ConcurrentUpdateError``): the workload is skipped and reported at the end;
- run scope (``ReconcileError``): the aggregate of workload failures.
"""

from __future__ import annotations

from typing import Optional


class ImagoError(Exception):
    """Base class for all imago errors."""


class ParseError(ImagoError):
    """An image reference or image ID could not be parsed."""


class AuthChallengeError(ImagoError):
    """A registry bearer challenge was malformed or incomplete."""


class DigestFetchError(ImagoError):
    """The registry did not return a usable digest."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class CredentialFetchError(ImagoError):
    """A pull secret or credential file is missing or undecodable."""


class AnnotationDecodeError(ImagoError):
    """The stored config annotation is not valid JSON."""


class ConcurrentUpdateError(ImagoError):
    """The update retry budget was exhausted on version conflicts."""


class ReconcileError(ImagoError):
    """One or more workloads failed during a run."""

    def __init__(self, failures: list[str]):
        super().__init__("\n".join(failures))
        self.failures = failures
