import re
from dataclasses import dataclass
from typing import Callable, Match, Pattern, Tuple, Union

REDACTED = "REDACTED"


def _provider_key(match: Match[str]) -> str:
    return "sk-ant-REDACTED" if match.group(1) else "sk-REDACTED"


_Replacement = Union[str, Callable[[Match[str]], str]]

# Applied in order; JSON fields go first so their values are not rewritten twice.
_RULES: Tuple[Tuple[Pattern[str], _Replacement], ...] = (
    (
        re.compile(r'(?i)"(\w*(?:api_?key|token|secret|password))"\s*:\s*"[^"]*"'),
        r'"\1": "' + REDACTED + '"',
    ),
    (re.compile(r"\bsk-(ant-)?[A-Za-z0-9_-]{6,}"), _provider_key),
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer " + REDACTED),
    (
        re.compile(r"(?i)\b(\w*(?:api[_-]?key|token|secret|password))\s*[:=]\s*([^\s,;\"]+)"),
        r"\1=" + REDACTED,
    ),
)


@dataclass(frozen=True)
class RedactionResult:
    text: str
    redacted: bool
    replacements: int


def redact(text: str) -> str:
    return redact_with_audit(text).text


def redact_with_audit(text: str) -> RedactionResult:
    value = text or ""
    total = 0
    for regex, replacement in _RULES:
        value, count = regex.subn(replacement, value)
        total += count
    return RedactionResult(text=value, redacted=total > 0, replacements=total)


def mask_secret(secret: str, visible: int = 4) -> str:
    """Keep the last ``visible`` characters of a secret, e.g. ``****2345``."""
    value = secret or ""
    if not value:
        return ""
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]
