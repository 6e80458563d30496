"""
Unit tests for encryption context building and strict validation.
"""
import pytest

from transit_envelope.services.encryption_context import (
    PROVIDER_VERSION,
    EncryptionContext,
    build_context,
    parse_context,
    validate_context,
)
from transit_envelope.services.errors import InvalidContextError


class TestBuildContext:

    def test_format(self):
        assert build_context("user-42", 1700000000000) == (
            "subjectId=user-42;timestamp=1700000000000;version=1.0"
        )

    def test_current_timestamp(self):
        parsed = parse_context(build_context("user-42"))
        assert parsed.timestamp_ms > 1_600_000_000_000
        assert parsed.version == PROVIDER_VERSION


class TestParseContext:

    def test_roundtrip(self):
        context = EncryptionContext("user-42", 1700000000000, "1.0")
        assert parse_context(context.serialize()) == context

    def test_subject_with_separators(self):
        """Subject IDs containing ';' and '=' still parse."""
        context = build_context("a;b=c", 5)
        assert parse_context(context).subject_id == "a;b=c"

    @pytest.mark.parametrize("context", [None, ""])
    def test_missing(self, context):
        with pytest.raises(InvalidContextError, match="required"):
            parse_context(context)

    @pytest.mark.parametrize(
        "context",
        [
            "garbage",
            "subjectId=a;version=1.0",
            "timestamp=1;subjectId=a;version=1.0",
            "subjectId=a;timestamp=1;version=1.0;extra=x",
        ],
    )
    def test_malformed(self, context):
        with pytest.raises(InvalidContextError):
            parse_context(context)

    @pytest.mark.parametrize("timestamp", ["", "-1", "12.5", "abc", "١٢٣"])
    def test_invalid_timestamp(self, timestamp):
        with pytest.raises(InvalidContextError, match="timestamp"):
            parse_context(f"subjectId=a;timestamp={timestamp};version=1.0")

    @pytest.mark.parametrize("version", ["", "  "])
    def test_empty_version(self, version):
        with pytest.raises(InvalidContextError, match="version"):
            parse_context(f"subjectId=a;timestamp=1;version={version}")

    def test_error_carries_context(self):
        with pytest.raises(InvalidContextError) as exc_info:
            parse_context("garbage")
        assert exc_info.value.encryption_context == "garbage"


class TestValidateContext:

    def test_matching_subject(self):
        parsed = validate_context(build_context("user-42", 1), "user-42")
        assert parsed.subject_id == "user-42"

    def test_subject_mismatch(self):
        with pytest.raises(InvalidContextError, match="does not match"):
            validate_context(build_context("user-42", 1), "user-43")

    def test_prefix_is_not_a_match(self):
        with pytest.raises(InvalidContextError):
            validate_context(build_context("user-42", 1), "user-4")
