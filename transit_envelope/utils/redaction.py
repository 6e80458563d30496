"""
Log redaction helpers.

Masks values that must never reach a log sink:
- the configured transit credential
- base64 runs longer than BASE64_REDACTION_THRESHOLD characters (wrapped keys,
  plaintext payloads)
- token=/key=/secret=/password= shaped assignments, including prefixed
  names such as api_key= or client_secret=
"""
import re
from typing import Any, Iterable, Optional

REDACTED = "[REDACTED]"
BASE64_REDACTION_THRESHOLD = 64

_SECRET_ASSIGNMENT = re.compile(
    r"(?i)([A-Za-z0-9_-]*(?:token|key|secret|password))=([^\s&;,|]+)"
)
_BASE64_RUN = re.compile(
    r"[A-Za-z0-9+/]{%d,}={0,2}" % (BASE64_REDACTION_THRESHOLD + 1)
)


def redact_patterns(text: str) -> str:
    """Mask secret-shaped assignments and long base64 runs."""
    text = _SECRET_ASSIGNMENT.sub(lambda m: f"{m.group(1)}={REDACTED}", text)
    return _BASE64_RUN.sub(lambda m: f"[BASE64:{len(m.group(0))} chars]", text)


class Redactor:
    """
    Redacts known secrets plus secret-shaped patterns.

    The transit client builds one with its credential so the token is masked
    even when it shows up outside a token= assignment (e.g. inside an error
    body echoed by the server).
    """

    def __init__(self, secrets: Iterable[Optional[str]] = ()):
        self._secrets = [s for s in secrets if s]

    def redact(self, value: Any) -> str:
        text = str(value)
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return redact_patterns(text)
