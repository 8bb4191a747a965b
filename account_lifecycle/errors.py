"""
Error taxonomy for the Account Lifecycle Engine.

Steps classify their own failures into an ErrorKind; the executor only
needs to know whether a failure is retryable, fatal or soft. The
classifiers here map botocore errors and generic Python exceptions onto
that taxonomy.
"""

import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from .models import ErrorKind

logger = logging.getLogger(__name__)


class LifecycleError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class ConfigurationError(LifecycleError):
    kind = ErrorKind.CONFIGURATION


class InvalidInputError(LifecycleError):
    kind = ErrorKind.INVALID_INPUT


class NotFoundError(LifecycleError):
    kind = ErrorKind.NOT_FOUND


class WorkflowTimeoutError(LifecycleError):
    kind = ErrorKind.TIMEOUT


class WorkflowFailedError(LifecycleError):
    """A step failed fatally and aborted the remaining chain."""

    def __init__(self, step: str, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(f"{step}: {message}", kind)
        self.step = step


class BranchCollisionError(LifecycleError):
    """Two Join branches wrote the same output field."""
    kind = ErrorKind.CONFIGURATION


CONFLICT_CODES = {"ConditionalCheckFailedException", "TransactionConflictException"}

NOT_FOUND_CODES = {
    "ResourceNotFoundException",
    "UserNotFoundException",
    "NoSuchBucket",
    "NoSuchKey",
}

TRANSIENT_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "InternalServerError",
    "InternalErrorException",
    "InternalFailure",
    "RequestTimeout",
    "RequestTimeoutException",
    "SlowDown",
}

CONFIGURATION_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "NotAuthorizedException",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "MessageRejected",
    "MailFromDomainNotVerifiedException",
}

INVALID_INPUT_CODES = {
    "ValidationException",
    "ValidationError",
    "InvalidParameterException",
    "InvalidParameterValue",
}


def classify_client_error(error: Exception) -> ErrorKind:
    """
    Classify a botocore error.

    Args:
        error: ClientError or BotoCoreError raised by a boto3 call

    Returns:
        ErrorKind for the failure
    """
    if isinstance(error, BotoCoreError):
        # Connection, endpoint and read timeout problems
        return ErrorKind.TRANSIENT

    if not isinstance(error, ClientError):
        return classify_exception(error)

    code = error.response.get("Error", {}).get("Code", "")
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

    if code in CONFLICT_CODES:
        return ErrorKind.CONFLICT
    if code in NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND
    if code in TRANSIENT_CODES or status >= 500:
        return ErrorKind.TRANSIENT
    if code in CONFIGURATION_CODES:
        return ErrorKind.CONFIGURATION
    if code in INVALID_INPUT_CODES:
        return ErrorKind.INVALID_INPUT

    logger.debug(f"Unrecognised error code {code!r}, treating as transient")
    return ErrorKind.TRANSIENT


def classify_exception(error: BaseException) -> ErrorKind:
    """Classify an arbitrary exception raised inside a step."""
    if isinstance(error, LifecycleError):
        return error.kind
    if isinstance(error, (ClientError, BotoCoreError)):
        return classify_client_error(error)
    if isinstance(error, (ValidationError, ValueError, KeyError, TypeError)):
        return ErrorKind.INVALID_INPUT
    if isinstance(error, (ConnectionError, TimeoutError, OSError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.TRANSIENT
