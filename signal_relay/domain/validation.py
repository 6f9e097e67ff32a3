"""
Validation and normalization of trade signal and message submissions.

Checks run in a fixed order so that a submission with several problems
always reports the same single error:

1. presence of symbol, type, entry, sl, tp
2. type membership (case-insensitive)
3. entry, sl, tp parse as finite numbers, first failure wins
"""

import math
import re
from typing import Any, Mapping, Optional

from .ports import (
    InvalidNumberError,
    InvalidTypeError,
    MissingFieldsError,
    ValidationError,
)
from .schema import NormalizedSignal, SignalType


REQUIRED_SIGNAL_FIELDS = ("symbol", "type", "entry", "sl", "tp")
NUMERIC_SIGNAL_FIELDS = ("entry", "sl", "tp")

DERIVED_MESSAGE_TEMPLATE = "SINAL\nPAR: {symbol}\n{type}\nENTRADA: {entry}\nSL: {sl}\nTP: {tp}"
DEFAULT_SIGNAL_TEXT_TEMPLATE = "{symbol} - {type} em {entry}"

_NUMBER_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def is_present(value: Any) -> bool:
    """A value is present unless it is None or a blank string."""
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a price value.

    Returns:
        The finite float, or None if the value is not a finite number
    """
    if isinstance(value, bool):
        return None

    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            candidate = value.strip()
            if not _NUMBER_PATTERN.match(candidate):
                return None
            number = float(candidate)
        else:
            return None
    except OverflowError:
        return None

    if not math.isfinite(number):
        return None
    return number


def format_number(value: float) -> str:
    """Render a price in its shortest form: 50000 rather than 50000.0."""
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)


def normalize_signal_type(value: Any) -> SignalType:
    received = value
    token = str(value).strip().upper()
    member = SignalType.aliases().get(token)
    if member is None:
        raise InvalidTypeError(SignalType.allowed_values(), received)
    return member


def normalize_signal(item: Any) -> NormalizedSignal:
    """
    Validate one signal submission.

    Args:
        item: Raw submitted object

    Returns:
        Normalized signal with uppercase symbol and parsed prices

    Raises:
        MissingFieldsError: If a required field is absent
        InvalidTypeError: If the type is not COMPRA/VENDA (or BUY/SELL)
        InvalidNumberError: Naming the first of entry, sl, tp that is not finite
    """
    if not isinstance(item, Mapping):
        raise MissingFieldsError(REQUIRED_SIGNAL_FIELDS, item)

    if not all(is_present(item.get(field)) for field in REQUIRED_SIGNAL_FIELDS):
        raise MissingFieldsError(REQUIRED_SIGNAL_FIELDS, dict(item))

    # Lists and objects are not a usable symbol
    if isinstance(item["symbol"], bool) or not isinstance(item["symbol"], (str, int, float)):
        raise MissingFieldsError(REQUIRED_SIGNAL_FIELDS, dict(item))

    signal_type = normalize_signal_type(item["type"])

    prices = {}
    for field in NUMERIC_SIGNAL_FIELDS:
        number = parse_number(item[field])
        if number is None:
            raise InvalidNumberError(field, item[field])
        prices[field] = number

    symbol = str(item["symbol"]).strip().upper()
    text = item.get("text")
    if not is_present(text):
        text = default_signal_text(symbol, signal_type, prices["entry"])

    return NormalizedSignal(
        symbol=symbol,
        type=signal_type,
        entry=prices["entry"],
        sl=prices["sl"],
        tp=prices["tp"],
        text=str(text)
    )


def default_signal_text(symbol: str, signal_type: SignalType, entry: float) -> str:
    return DEFAULT_SIGNAL_TEXT_TEMPLATE.format(
        symbol=symbol,
        type=signal_type.value,
        entry=format_number(entry)
    )


def derived_message_text(signal: NormalizedSignal) -> str:
    """Companion message text created alongside every stored signal."""
    return DERIVED_MESSAGE_TEMPLATE.format(
        symbol=signal.symbol,
        type=signal.type.value,
        entry=format_number(signal.entry),
        sl=format_number(signal.sl),
        tp=format_number(signal.tp)
    )


def normalize_message_text(value: Any) -> str:
    """
    Validate message text.

    Raises:
        ValidationError: If text is missing, blank or not a string
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Field 'text' is required and must be a non-empty string")
    return value
