"""Sensitive-data vocabulary: data types, strategies, markers and patterns.

Detection has two independent axes:

1. **Pattern library** -- regexes tagged by the kind of secret they find
   (bearer tokens, platform access tokens, JWTs, credential-bearing URLs,
   emails, IPs, UUIDs, PEM private-key blocks).
2. **Field-name keywords** -- a mapping key whose name contains one of
   :data:`FIELD_KEYWORDS` forces sanitization of its string value no
   matter what the value looks like.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class SensitiveDataType(str, Enum):
    """Kinds of sensitive content the sanitizer recognises."""

    TOKEN = "token"
    PASSWORD = "password"
    SECRET = "secret"
    KEY = "key"
    CREDENTIAL = "credential"
    BEARER = "bearer"
    COOKIE = "cookie"
    SESSION = "session"
    PRIVATE = "private"
    EMAIL = "email"
    URL = "url"
    IP = "ip"
    UUID = "uuid"


class SanitizationStrategy(str, Enum):
    """How a detected value is rewritten."""

    REDACT = "redact"  # fixed placeholder
    REMOVE = "remove"  # drop the field, or a marker where dropping is impossible
    PARTIAL = "partial"  # keep first/last N characters
    HASH = "hash"  # salted, truncated SHA-256 tagged as a hash


# -- Output markers -----------------------------------------------------------

REDACTED_PLACEHOLDER = "***REDACTED***"
REMOVED_MARKER = "[REMOVED]"
NULL_PLACEHOLDER = "[null]"
UNDEFINED_PLACEHOLDER = "[undefined]"
CIRCULAR_PLACEHOLDER = "[Circular Reference]"
DEPTH_PLACEHOLDER = "[Max Depth Exceeded]"
ARRAY_MARKER = "[Array]"
OBJECT_MARKER = "[Object]"
HASH_DIGEST_LENGTH = 16

_HASH_TAG_RE = re.compile(r"^\[HASH:[0-9a-f]{%d}\]$" % HASH_DIGEST_LENGTH)

_FIXED_MARKERS = frozenset(
    {
        REDACTED_PLACEHOLDER,
        REMOVED_MARKER,
        NULL_PLACEHOLDER,
        UNDEFINED_PLACEHOLDER,
        CIRCULAR_PLACEHOLDER,
        DEPTH_PLACEHOLDER,
        ARRAY_MARKER,
        OBJECT_MARKER,
    }
)


def hash_tag(digest: str) -> str:
    return f"[HASH:{digest[:HASH_DIGEST_LENGTH]}]"


def is_sanitized_marker(value: str) -> bool:
    """Return True if *value* is output the sanitizer itself produced."""
    return value in _FIXED_MARKERS or bool(_HASH_TAG_RE.match(value))


# -- Strategy defaults --------------------------------------------------------

DEFAULT_STRATEGIES: dict[SensitiveDataType, SanitizationStrategy] = {
    SensitiveDataType.TOKEN: SanitizationStrategy.REDACT,
    SensitiveDataType.PASSWORD: SanitizationStrategy.REDACT,
    SensitiveDataType.SECRET: SanitizationStrategy.REDACT,
    SensitiveDataType.KEY: SanitizationStrategy.REDACT,
    SensitiveDataType.CREDENTIAL: SanitizationStrategy.REDACT,
    SensitiveDataType.BEARER: SanitizationStrategy.REDACT,
    SensitiveDataType.COOKIE: SanitizationStrategy.REDACT,
    SensitiveDataType.SESSION: SanitizationStrategy.REDACT,
    SensitiveDataType.PRIVATE: SanitizationStrategy.REDACT,
    SensitiveDataType.EMAIL: SanitizationStrategy.PARTIAL,
    SensitiveDataType.URL: SanitizationStrategy.PARTIAL,
    SensitiveDataType.IP: SanitizationStrategy.HASH,
    SensitiveDataType.UUID: SanitizationStrategy.HASH,
}

# Field-name keywords and the data type they imply.  Content-detected
# types (email, url, ip, uuid) are deliberately absent: "ip" would match
# "description" and "recipient".
FIELD_KEYWORDS: dict[str, SensitiveDataType] = {
    "token": SensitiveDataType.TOKEN,
    "password": SensitiveDataType.PASSWORD,
    "passwd": SensitiveDataType.PASSWORD,
    "secret": SensitiveDataType.SECRET,
    "key": SensitiveDataType.KEY,
    "credential": SensitiveDataType.CREDENTIAL,
    "bearer": SensitiveDataType.BEARER,
    "cookie": SensitiveDataType.COOKIE,
    "session": SensitiveDataType.SESSION,
    "private": SensitiveDataType.PRIVATE,
    "auth": SensitiveDataType.CREDENTIAL,
}


@dataclass(frozen=True)
class SensitivePattern:
    """A named detection regex tagged with the data type it finds.

    ``strategy`` pins the rewrite for this pattern; when None the
    sanitizer's per-type strategy table decides.
    """

    name: str
    pattern: str | re.Pattern[str]
    type: SensitiveDataType
    strategy: SanitizationStrategy | None = None
    case_sensitive: bool = True

    def compile(self) -> re.Pattern[str]:
        """Compile the pattern; raises :class:`re.error` when malformed."""
        flags = 0 if self.case_sensitive else re.IGNORECASE
        if isinstance(self.pattern, re.Pattern):
            return re.compile(self.pattern.pattern, self.pattern.flags | flags)
        return re.compile(self.pattern, flags)


BUILTIN_PATTERNS: tuple[SensitivePattern, ...] = (
    SensitivePattern(
        name="private-key",
        pattern=r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----",
        type=SensitiveDataType.PRIVATE,
    ),
    SensitivePattern(
        name="github-token",
        pattern=r"\b(?:gh[opsur]_\w{6,255}|github_pat_\w{20,255})\b",
        type=SensitiveDataType.TOKEN,
    ),
    SensitivePattern(
        name="api-key",
        pattern=r"\b(?:api[_-]?key|access[_-]?token|secret[_-]?key)\s*[:=]\s*['\"]?[\w+/=\-]{20,}['\"]?",
        type=SensitiveDataType.KEY,
        case_sensitive=False,
    ),
    SensitivePattern(
        name="bearer-token",
        pattern=r"\bbearer\s+[\w+/=\-.]{20,}",
        type=SensitiveDataType.BEARER,
        case_sensitive=False,
    ),
    SensitivePattern(
        name="basic-auth",
        # Credentials must look like base64: a digit, a lower-to-upper case
        # change, or "=" padding.  Plain words after "basic" are prose.
        pattern=(
            r"\b(?i:basic)\s+(?:"
            r"(?=[A-Za-z0-9+/]*(?:\d|[a-z][A-Z]))[A-Za-z0-9+/]{8,}={0,2}"
            r"|[A-Za-z0-9+/]{8,}={1,2}"
            r")(?![A-Za-z0-9+/=])"
        ),
        type=SensitiveDataType.CREDENTIAL,
    ),
    SensitivePattern(
        name="jwt-token",
        pattern=r"\beyJ[\w\-+/=]+\.[\w\-+/=]+\.[\w\-+/=]*",
        type=SensitiveDataType.TOKEN,
    ),
    SensitivePattern(
        name="url-with-credentials",
        pattern=r"https?://[^:@\s/]+:[^@\s/]+@[^/\s]+",
        type=SensitiveDataType.URL,
        case_sensitive=False,
    ),
    SensitivePattern(
        name="email-address",
        pattern=r"\b[\w.%+-]+@[\w.-]+\.[a-z]{2,}\b",
        type=SensitiveDataType.EMAIL,
        case_sensitive=False,
    ),
    SensitivePattern(
        name="ip-address",
        pattern=r"\b(?:\d{1,3}\.){3}\d{1,3}\b",
        type=SensitiveDataType.IP,
    ),
    SensitivePattern(
        name="uuid",
        pattern=r"\b[\da-f]{8}-[\da-f]{4}-[\da-f]{4}-[\da-f]{4}-[\da-f]{12}\b",
        type=SensitiveDataType.UUID,
        case_sensitive=False,
    ),
)
