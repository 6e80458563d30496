"""
Encryption context binding a wrapped DEK to its subject.

Format: subjectId={subject_id};timestamp={epoch_millis};version={provider_version}

The subject id is matched greedily so subject ids containing ';' or '='
still round-trip.
"""
import re
import time
from dataclasses import dataclass
from typing import Optional

from transit_envelope.services.errors import InvalidContextError

PROVIDER_VERSION = "1.0"

_CONTEXT_PATTERN = re.compile(
    r"^subjectId=(?P<subject_id>.*);timestamp=(?P<timestamp>[^;]*);version=(?P<version>[^;]*)$",
    re.DOTALL,
)


@dataclass(frozen=True)
class EncryptionContext:
    """Parsed encryption context."""

    subject_id: str
    timestamp_ms: int
    version: str

    def serialize(self) -> str:
        return f"subjectId={self.subject_id};timestamp={self.timestamp_ms};version={self.version}"


def build_context(subject_id: str, timestamp_ms: Optional[int] = None) -> str:
    """Build the context string for a freshly generated DEK."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return EncryptionContext(subject_id, timestamp_ms, PROVIDER_VERSION).serialize()


def parse_context(context: Optional[str]) -> EncryptionContext:
    """
    Parse a context string.

    Raises:
        InvalidContextError: If the context is missing or not in the expected
            format, or its timestamp is not a non-negative integer, or its
            version is empty
    """
    if not context:
        raise InvalidContextError("Encryption context is required", context)

    match = _CONTEXT_PATTERN.match(context)
    if match is None:
        raise InvalidContextError("Malformed encryption context", context)

    raw_timestamp = match.group("timestamp")
    if not re.fullmatch(r"[0-9]+", raw_timestamp):
        raise InvalidContextError(
            f"Invalid timestamp in encryption context: {raw_timestamp!r}", context
        )

    version = match.group("version")
    if not version.strip():
        raise InvalidContextError("Empty version in encryption context", context)

    return EncryptionContext(
        subject_id=match.group("subject_id"),
        timestamp_ms=int(raw_timestamp),
        version=version,
    )


def validate_context(context: Optional[str], subject_id: str) -> EncryptionContext:
    """
    Parse a context and check it belongs to subject_id.

    Raises:
        InvalidContextError: If parsing fails or the subject id does not match
    """
    parsed = parse_context(context)
    if parsed.subject_id != subject_id:
        raise InvalidContextError(
            "Encryption context subject does not match requested subject", context
        )
    return parsed
