"""Redaction and preview helpers for safe logging.

Session snapshots, request bodies and config dumps pass through here
before they are logged or printed. Keys are matched case-insensitively
by substring; nested dicts and lists of dicts are handled recursively.
"""

import re

_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "password",
    "credential", "cookie",
})

# Keys whose entire value is redacted regardless of content type
_CONTAINER_KEYS = frozenset({"headers", "credentials"})

_REDACTED = "***REDACTED***"

_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|"
    r'"(?:secret|token|password|api_key|authorization)"\s*:\s*"[^"]*"'
    r"|"
    r"(?:secret|token|password|api_key)\s*[=:]\s*\S+"
    r")",
)


def _is_sensitive_key(key: str, sensitive_patterns: frozenset[str]) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in sensitive_patterns)


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict:
    """Redact sensitive values from a dict for safe logging.

    Args:
        obj: Dict to redact (not mutated; a copy is returned).
        sensitive_patterns: Substring patterns whose matching keys' values
            should be replaced. Matching is case-insensitive.

    Returns:
        New dict with sensitive values replaced by '***REDACTED***'.
    """
    result = {}
    for key, value in obj.items():
        if key.lower() in _CONTAINER_KEYS or _is_sensitive_key(key, sensitive_patterns):
            result[key] = _REDACTED
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value, sensitive_patterns)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item, sensitive_patterns) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def preview_text(text: str | None, max_length: int = 50) -> str:
    """Shorten free text for a single log line.

    Secrets that look like key=value pairs or bearer tokens are masked
    before truncation.

    Args:
        text: Text to preview (None renders as empty).
        max_length: Maximum length of the preview.

    Returns:
        Single-line preview, suffixed with '...' when truncated.
    """
    if not text:
        return ""
    flat = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, text.replace("\n", " "))
    if len(flat) > max_length:
        return flat[:max_length] + "..."
    return flat
