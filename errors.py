"""
Error types raised while declaring the stack and while the engine applies it.

Declaration errors are raised synchronously while the graph is assembled and
stop the program before anything is submitted. Provisioning errors come back
from the Pulumi engine; they are only classified and passed through.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DeclarationError(ValueError):
    pass


class InvalidCidrError(DeclarationError):
    pass


class InvalidPortError(DeclarationError):
    pass


class DuplicateNameError(DeclarationError):
    pass


class UnresolvedReferenceError(DeclarationError):
    pass


class ConfigError(DeclarationError):
    pass


class ProvisioningErrorKind(str, Enum):
    NAME_COLLISION = "name_collision"
    PERMISSION_DENIED = "permission_denied"
    QUOTA_EXCEEDED = "quota_exceeded"
    DRIFT = "drift"
    CONCURRENT_UPDATE = "concurrent_update"
    UNKNOWN = "unknown"


# Checked in order; the first match wins.
_FAILURE_PATTERNS = [
    (ProvisioningErrorKind.CONCURRENT_UPDATE, re.compile(
        r"ConcurrentUpdateError|update is currently in progress|stack is locked|409\]? Conflict", re.IGNORECASE)),
    (ProvisioningErrorKind.PERMISSION_DENIED, re.compile(
        r"AccessDenied|UnauthorizedOperation|not authorized|InvalidClientTokenId|ExpiredToken"
        r"|no valid credential|SignatureDoesNotMatch", re.IGNORECASE)),
    (ProvisioningErrorKind.NAME_COLLISION, re.compile(
        r"BucketAlreadyExists|BucketAlreadyOwnedByYou|EntityAlreadyExists|InvalidGroup\.Duplicate"
        r"|InvalidKeyPair\.Duplicate|already exists", re.IGNORECASE)),
    (ProvisioningErrorKind.QUOTA_EXCEEDED, re.compile(
        r"LimitExceeded|TooManyBuckets|InsufficientInstanceCapacity|quota", re.IGNORECASE)),
    (ProvisioningErrorKind.DRIFT, re.compile(
        r"\.NotFound|NoSuchBucket|NoSuchEntity|does not exist|refresh", re.IGNORECASE)),
]

_URN_PATTERN = re.compile(r"urn:pulumi:[^\s\"']+")


def classify_failure(message: str) -> ProvisioningErrorKind:
    for kind, pattern in _FAILURE_PATTERNS:
        if pattern.search(message):
            return kind
    return ProvisioningErrorKind.UNKNOWN


@dataclass(frozen=True)
class ProvisioningFailure:
    kind: ProvisioningErrorKind
    message: str
    resource: Optional[str] = None

    @classmethod
    def from_message(cls, message: str) -> "ProvisioningFailure":
        urn = _URN_PATTERN.search(message)
        return cls(
            kind=classify_failure(message),
            message=message.strip(),
            resource=urn.group(0) if urn else None,
        )

    def describe(self) -> str:
        target = f" ({self.resource})" if self.resource else ""
        return f"{self.kind.value}{target}: {self.message}"


class ProvisioningError(Exception):
    def __init__(self, failure: ProvisioningFailure):
        super().__init__(failure.describe())
        self.failure = failure

    @property
    def kind(self) -> ProvisioningErrorKind:
        return self.failure.kind
