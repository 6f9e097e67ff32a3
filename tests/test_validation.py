"""Signal and message validation rules."""

import pytest

from signal_relay.domain.ports import (
    InvalidNumberError,
    InvalidTypeError,
    MissingFieldsError,
    ValidationError,
)
from signal_relay.domain.schema import SignalType
from signal_relay.domain.validation import (
    derived_message_text,
    format_number,
    normalize_message_text,
    normalize_signal,
    parse_number,
)


def make_item(**overrides):
    item = {"symbol": "btcusd", "type": "compra", "entry": "50000", "sl": "49000", "tp": "52000"}
    item.update(overrides)
    return item


class TestNormalizeSignal:
    """Validation order and normalization of a single submission."""

    def test_normalizes_symbol_type_and_prices(self):
        signal = normalize_signal(make_item())

        assert signal.symbol == "BTCUSD"
        assert signal.type is SignalType.BUY
        assert signal.entry == 50000.0
        assert signal.sl == 49000.0
        assert signal.tp == 52000.0

    @pytest.mark.parametrize("raw_type", ["compra", "COMPRA", "Compra", " compra "])
    def test_type_is_case_insensitive(self, raw_type):
        assert normalize_signal(make_item(type=raw_type)).type is SignalType.BUY

    @pytest.mark.parametrize("raw_type,expected", [("buy", SignalType.BUY), ("Sell", SignalType.SELL), ("venda", SignalType.SELL)])
    def test_english_aliases(self, raw_type, expected):
        assert normalize_signal(make_item(type=raw_type)).type is expected

    @pytest.mark.parametrize("field", ["symbol", "type", "entry", "sl", "tp"])
    def test_missing_field(self, field):
        item = make_item()
        del item[field]

        with pytest.raises(MissingFieldsError) as exc_info:
            normalize_signal(item)

        payload = exc_info.value.to_dict()
        assert payload["type"] == "MissingFieldsError"
        assert payload["required"] == ["symbol", "type", "entry", "sl", "tp"]
        assert payload["received"] == item

    def test_blank_string_counts_as_missing(self):
        with pytest.raises(MissingFieldsError):
            normalize_signal(make_item(symbol="   "))

    def test_zero_price_is_present(self):
        assert normalize_signal(make_item(sl=0)).sl == 0.0

    def test_missing_field_wins_over_invalid_type(self):
        with pytest.raises(MissingFieldsError):
            normalize_signal(make_item(type="HOLD", tp=None))

    def test_invalid_type(self):
        with pytest.raises(InvalidTypeError) as exc_info:
            normalize_signal(make_item(type="HOLD"))

        payload = exc_info.value.to_dict()
        assert payload["allowed"] == ["COMPRA", "VENDA"]
        assert payload["received"] == "HOLD"

    def test_invalid_type_wins_over_invalid_number(self):
        with pytest.raises(InvalidTypeError):
            normalize_signal(make_item(type="HOLD", entry="abc"))

    def test_first_invalid_number_is_reported(self):
        with pytest.raises(InvalidNumberError) as exc_info:
            normalize_signal(make_item(sl="abc", tp="xyz"))

        assert exc_info.value.extra["field"] == "sl"

    def test_entry_checked_before_sl(self):
        with pytest.raises(InvalidNumberError) as exc_info:
            normalize_signal(make_item(entry="nope", sl="abc"))

        assert exc_info.value.extra["field"] == "entry"

    def test_default_text(self):
        assert normalize_signal(make_item()).text == "BTCUSD - COMPRA em 50000"

    def test_explicit_text_is_kept(self):
        assert normalize_signal(make_item(text="breakout")).text == "breakout"

    def test_non_object_item(self):
        with pytest.raises(MissingFieldsError):
            normalize_signal("BTCUSD COMPRA")

    @pytest.mark.parametrize("symbol", [[1], {"name": "BTC"}, True])
    def test_non_scalar_symbol_is_missing(self, symbol):
        with pytest.raises(MissingFieldsError):
            normalize_signal(make_item(symbol=symbol))

    def test_numeric_symbol_is_kept(self):
        assert normalize_signal(make_item(symbol=1000)).symbol == "1000"

    def test_oversized_integer_price(self):
        with pytest.raises(InvalidNumberError) as exc_info:
            normalize_signal(make_item(entry=10 ** 400))

        assert exc_info.value.extra["field"] == "entry"


class TestParseNumber:

    @pytest.mark.parametrize("value,expected", [
        ("50000", 50000.0),
        (" 1.5 ", 1.5),
        (42, 42.0),
        (0.25, 0.25),
        ("-3", -3.0),
        ("1e3", 1000.0),
        (".5", 0.5),
    ])
    def test_valid(self, value, expected):
        assert parse_number(value) == expected

    @pytest.mark.parametrize("value", [
        "abc", "", "NaN", "inf", "1_000", "12abc", True, None, [1],
        float("nan"), float("inf"), 10 ** 400, -(10 ** 400), "1" + "0" * 400,
    ])
    def test_invalid(self, value):
        assert parse_number(value) is None


def test_format_number_shortest_form():
    assert format_number(50000.0) == "50000"
    assert format_number(1.5) == "1.5"
    assert format_number(-0.001) == "-0.001"


def test_derived_message_template():
    signal = normalize_signal(make_item())

    assert derived_message_text(signal) == (
        "SINAL\nPAR: BTCUSD\nCOMPRA\nENTRADA: 50000\nSL: 49000\nTP: 52000"
    )


class TestMessageText:

    def test_accepts_text(self):
        assert normalize_message_text("hello") == "hello"

    @pytest.mark.parametrize("value", [None, "", "   ", 12])
    def test_rejects(self, value):
        with pytest.raises(ValidationError):
            normalize_message_text(value)
