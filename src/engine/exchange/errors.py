"""Exchange error classification.

Maps an exchange failure to the single repair the order submitter should
attempt before its next try. Structured Binance error codes are checked
first, then HTTP status, and only then the message text, since the
exchange does not attach a code to every rejection.
"""

import re
from enum import Enum

from engine.exceptions import ExchangeFailure, ExchangeTransient

# Binance futures error codes
POSITION_SIDE_MISMATCH_CODE = -4061  # Order's position side does not match user's setting.
PRECISION_CODE = -1111  # Precision is over the maximum defined for this asset.
ORDER_NOT_FOUND_CODE = -2013  # Order does not exist.

_POSITION_SIDE_PHRASES = ("position side does not match",)
_PRECISION_PHRASES = ("precision",)

_CODE_PATTERN = re.compile(r'"code"\s*:\s*(-?\d+)')


class RepairAction(str, Enum):
    """Closed set of things to do before retrying a failed order."""

    RESOLVE_POSITION_MODE = "resolve_position_mode"
    BUMP_PRECISION = "bump_precision"
    RETRY = "retry"


def extract_error_code(message: str) -> int | None:
    """Pull the Binance error code out of a raw error payload, if present."""
    match = _CODE_PATTERN.search(message)
    return int(match.group(1)) if match else None


def classify_exchange_error(error: Exception) -> RepairAction:
    """Decide which repair applies to a failed order attempt.

    Transient failures and anything unrecognised map to a plain RETRY.
    """
    if isinstance(error, ExchangeTransient):
        return RepairAction.RETRY

    code = error.code if isinstance(error, ExchangeFailure) else None
    if code is None:
        code = extract_error_code(str(error))

    if code == POSITION_SIDE_MISMATCH_CODE:
        return RepairAction.RESOLVE_POSITION_MODE
    if code == PRECISION_CODE:
        return RepairAction.BUMP_PRECISION

    status = error.http_status if isinstance(error, ExchangeFailure) else None
    if status is not None and status >= 500:
        return RepairAction.RETRY

    message = str(error).lower()
    if any(phrase in message for phrase in _POSITION_SIDE_PHRASES):
        return RepairAction.RESOLVE_POSITION_MODE
    if any(phrase in message for phrase in _PRECISION_PHRASES):
        return RepairAction.BUMP_PRECISION

    return RepairAction.RETRY
