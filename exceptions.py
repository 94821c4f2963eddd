"""
exceptions.py

Responsibility: Defines all custom exception classes used across the provider.
Does NOT: classify errors (see services/error_classifier.py), log, or perform
HTTP handling.
"""

from __future__ import annotations

from typing import Any


class ProviderError(Exception):
    """
    Base class for every error raised by the provider core.

    Callers that only need to know "the provider failed" may catch this.
    """


class ConfigError(ProviderError):
    """
    Raised by ProviderConfig when a provider-level setting is missing or
    malformed (no token, bad endpoint URL, unparseable spaces template).
    """


class CredentialsMissingError(ConfigError):
    """
    Raised by CombinedClient.spaces_client() when the Spaces access ID or
    secret key has not been configured.
    """


class ApiError(ProviderError):
    """
    Raised by DigitalOceanClient when the REST API answers with a non-2xx status.

    Carries the structured parts of the upstream error envelope so that the
    error classifier never has to parse the message text on its own.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        method: str = "",
        url: str = "",
        request_id: str = "",
        error_id: str = "",
        retry_after: float | None = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.method = method
        self.url = url
        self.request_id = request_id
        self.error_id = error_id
        self.retry_after = retry_after
        super().__init__(f"{method} {url}: {status_code} {message}".strip())


class TransportError(ProviderError):
    """
    Raised by DigitalOceanClient when the request never produced an HTTP
    response (DNS failure, connection reset, read timeout).
    """


class SpacesError(ProviderError):
    """
    Raised by SpacesClient when an S3-compatible call fails.

    The AWS-style error code (NoSuchKey, NoSuchBucket, BucketDeleted, ...) is
    kept in ``code`` for classification.
    """

    def __init__(self, code: str, message: str, *, status_code: int = 0) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"{code}: {message}")


class ActionErroredError(ProviderError):
    """
    Raised by the action waiter when a polled action or resource reaches the
    "errored" terminal status.
    """


class WaitTimeoutError(ProviderError):
    """
    Raised by the action waiter when the target state is not reached within
    the allotted timeout, or when the object stays invisible for more than
    the tolerated number of not-found checks.
    """


class UnexpectedStateError(ProviderError):
    """
    Raised by the action waiter when a poll reports a status that is neither
    pending nor a target.
    """


class OperationCanceledError(ProviderError):
    """
    Raised when the host signals cancellation while a polling loop is running.
    """


class ImportFormatError(ProviderError):
    """
    Raised when an import ID does not match the composite format a resource
    kind expects, e.g. expected "<cluster_id>,<name>".
    """


class ValidationError(ProviderError):
    """
    Raised when a resource or data-source configuration fails schema validation.

    All problems found in one pass are collected in ``errors``.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class DataListError(ProviderError):
    """
    Raised by the datalist engine when a filter value cannot be parsed for its
    field type, a regex does not compile, or the record schema is inconsistent.
    """


class ResourceOperationError(ProviderError):
    """
    Raised by the lifecycle engine when a resource operation fails.

    The handle and the partial observed state are preserved so that the host
    can persist a created-but-incomplete resource and converge on the next plan.
    """

    def __init__(
        self,
        operation: str,
        kind: str,
        handle: str,
        cause: BaseException,
        *,
        state: dict[str, Any] | None = None,
    ) -> None:
        self.operation = operation
        self.kind = kind
        self.handle = handle
        self.cause = cause
        self.state = state
        target = f"{kind} ({handle})" if handle else kind
        super().__init__(f"Error {operation} {target}: {cause}")
