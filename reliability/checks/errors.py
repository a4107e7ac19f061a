"""Error taxonomy: map arbitrary extractor failures to a fixed set of types."""

import logging
from typing import NamedTuple, Optional

from reliability.checks.models import ErrorDetails, ErrorType

logger = logging.getLogger(__name__)

RETRYABLE = frozenset({ErrorType.TIMEOUT, ErrorType.RATE_LIMITED, ErrorType.NETWORK_ERROR})


# ── Rules ────────────────────────────────────────────────────────────


class _Rule(NamedTuple):
    type: ErrorType
    phrases: tuple[str, ...]
    codes: tuple[str, ...] = ()
    exc_types: tuple[type, ...] = ()


# Order matters: first match wins.
_RULES: tuple[_Rule, ...] = (
    _Rule(
        ErrorType.TIMEOUT,
        ("timeout", "timed out"),
        codes=("ETIMEDOUT",),
        exc_types=(TimeoutError,),
    ),
    _Rule(
        ErrorType.SELECTOR_NOT_FOUND,
        ("selector", "element not found", "waiting for selector", "no such element"),
    ),
    _Rule(
        ErrorType.RATE_LIMITED,
        ("rate limit", "too many requests", "429"),
        codes=("RATE_LIMITED", "429"),
    ),
    _Rule(
        ErrorType.AUTH_REQUIRED,
        ("login", "authentication", "unauthorized", "401"),
        codes=("401",),
    ),
    _Rule(
        ErrorType.NOT_FOUND,
        ("not found", "404"),
        codes=("404",),
    ),
    _Rule(
        ErrorType.NETWORK_ERROR,
        ("network", "connection", "econnreset", "enotfound"),
        codes=("ECONNRESET", "ENOTFOUND", "ECONNREFUSED"),
        exc_types=(ConnectionError,),
    ),
    _Rule(
        ErrorType.CAPTCHA_REQUIRED,
        ("captcha", "verification", "suspicious activity", "please verify"),
    ),
)


# ── Public API ───────────────────────────────────────────────────────


def classify_error(error: object, code: Optional[str] = None) -> ErrorDetails:
    """Classify a failure (exception, message, or anything else).

    Never raises. Unmatched input becomes UNKNOWN and non-retryable.
    """
    message = _message_of(error)
    code = _code_of(error, code)
    lowered = message.lower()

    error_type = ErrorType.UNKNOWN
    for rule in _RULES:
        if _matches(rule, error, lowered, code):
            error_type = rule.type
            break

    return ErrorDetails(
        type=error_type,
        message=message,
        code=code,
        is_retryable=error_type in RETRYABLE,
    )


def is_retryable(error_type: ErrorType) -> bool:
    return error_type in RETRYABLE


# ── Helpers ──────────────────────────────────────────────────────────


def _matches(rule: _Rule, error: object, lowered: str, code: Optional[str]) -> bool:
    if rule.exc_types and isinstance(error, rule.exc_types):
        return True
    if code is not None and code.upper() in rule.codes:
        return True
    return any(phrase in lowered for phrase in rule.phrases)


def _message_of(error: object) -> str:
    if error is None:
        return ""
    try:
        text = str(error)
    except Exception:
        text = ""
    if not text and isinstance(error, BaseException):
        text = type(error).__name__
    return text


def _code_of(error: object, code: Optional[str]) -> Optional[str]:
    if code is None:
        for attr in ("code", "status_code", "errno"):
            try:
                value = getattr(error, attr, None)
            except Exception:
                value = None
            if value is not None:
                code = value
                break
    if code is None:
        return None
    try:
        return str(code)
    except Exception:
        logger.debug("Unprintable error code on %r", type(error).__name__)
        return None
