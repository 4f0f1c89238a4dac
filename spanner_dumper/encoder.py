"""
Column value encoding for Spanner Database Dumper.

Renders typed column values as Spanner SQL literals that reproduce the
original value exactly when the dump is replayed.
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable

from .errors import EncodeError
from .models import ColumnType, ColumnValue, TypeCode

NULL = 'NULL'

_STRING_ESCAPES = {
    '"': '\\"',
    '\\': '\\\\',
    '\a': '\\a',
    '\b': '\\b',
    '\f': '\\f',
    '\n': '\\n',
    '\r': '\\r',
    '\t': '\\t',
    '\v': '\\v',
}

# Decimal exponents outside [-4, 6) switch floats to scientific notation.
_FLOAT_MIN_EXP = -4
_FLOAT_MAX_EXP = 6


def _format_bool(value: Any) -> str:
    if not isinstance(value, bool):
        raise EncodeError(f"Expected bool for BOOL column, got {type(value).__name__}")
    return 'true' if value else 'false'


def _format_bytes(value: Any) -> str:
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise EncodeError(f"Expected bytes for BYTES column, got {type(value).__name__}")
    return 'b"' + ''.join(f'\\x{b:02x}' for b in bytes(value)) + '"'


def _format_float(value: Any) -> str:
    if isinstance(value, bool):
        raise EncodeError("Expected float for FLOAT64 column, got bool")
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise EncodeError(f"Invalid FLOAT64 value: {value!r}") from None

    if math.isnan(value):
        return "CAST('nan' AS FLOAT64)"
    if math.isinf(value):
        return "CAST('inf' AS FLOAT64)" if value > 0 else "CAST('-inf' AS FLOAT64)"
    return format_float64(value)


def format_float64(value: float) -> str:
    """Shortest round-trip rendering of a finite float, in ``%g`` layout.

    ``repr`` supplies the shortest digit string that parses back to the
    same double; the layout drops trailing zeros and padding.
    """
    sign, digits, exponent = Decimal(repr(value)).normalize().as_tuple()
    prefix = '-' if sign else ''
    if digits == (0,):
        return prefix + '0'

    mantissa = ''.join(str(d) for d in digits)
    point = len(mantissa) + exponent  # position of the decimal point
    decimal_exp = point - 1

    if decimal_exp < _FLOAT_MIN_EXP or decimal_exp >= _FLOAT_MAX_EXP:
        head, tail = mantissa[0], mantissa[1:]
        exp_sign = '-' if decimal_exp < 0 else '+'
        body = head + ('.' + tail if tail else '')
        return f"{prefix}{body}e{exp_sign}{abs(decimal_exp):02d}"

    if point <= 0:
        return f"{prefix}0.{'0' * -point}{mantissa}"
    if point >= len(mantissa):
        return prefix + mantissa + '0' * (point - len(mantissa))
    return f"{prefix}{mantissa[:point]}.{mantissa[point:]}"


def _format_int(value: Any) -> str:
    if isinstance(value, bool):
        raise EncodeError("Expected int for INT64 column, got bool")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        try:
            return str(int(value, 10))
        except ValueError:
            pass
    raise EncodeError(f"Invalid INT64 value: {value!r}")


def quote_string(value: str) -> str:
    """Double-quote a string, escaping quotes, backslashes and non-printables."""
    parts = ['"']
    for ch in value:
        escaped = _STRING_ESCAPES.get(ch)
        if escaped is not None:
            parts.append(escaped)
        elif ch.isprintable():
            parts.append(ch)
        else:
            code = ord(ch)
            if code < 0x80:
                parts.append(f'\\x{code:02x}')
            elif code < 0x10000:
                parts.append(f'\\u{code:04x}')
            else:
                parts.append(f'\\U{code:08x}')
    parts.append('"')
    return ''.join(parts)


def _format_string(value: Any) -> str:
    if not isinstance(value, str):
        raise EncodeError(f"Expected str for STRING column, got {type(value).__name__}")
    return quote_string(value)


def format_rfc3339_nano(value: datetime) -> str:
    """RFC 3339 with nanosecond precision, trailing fractional zeros trimmed."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)

    # DatetimeWithNanoseconds keeps precision beyond microseconds
    nanos = getattr(value, 'nanosecond', None)
    if nanos is None:
        nanos = value.microsecond * 1000

    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    fraction = f"{nanos:09d}".rstrip('0')
    if fraction:
        text += '.' + fraction

    offset_minutes = int(value.utcoffset().total_seconds()) // 60
    if offset_minutes == 0:
        return text + 'Z'
    sign = '-' if offset_minutes < 0 else '+'
    hours, minutes = divmod(abs(offset_minutes), 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def _format_timestamp(value: Any) -> str:
    if not isinstance(value, datetime):
        raise EncodeError(f"Expected datetime for TIMESTAMP column, got {type(value).__name__}")
    return f'TIMESTAMP "{format_rfc3339_nano(value)}"'


def _format_date(value: Any) -> str:
    if isinstance(value, datetime) or not isinstance(value, date):
        raise EncodeError(f"Expected date for DATE column, got {type(value).__name__}")
    return f'DATE "{value.year:04d}-{value.month:02d}-{value.day:02d}"'


_SCALAR_FORMATTERS: dict[TypeCode, Callable[[Any], str]] = {
    TypeCode.BOOL: _format_bool,
    TypeCode.BYTES: _format_bytes,
    TypeCode.FLOAT64: _format_float,
    TypeCode.INT64: _format_int,
    TypeCode.STRING: _format_string,
    TypeCode.TIMESTAMP: _format_timestamp,
    TypeCode.DATE: _format_date,
}


def is_supported(column_type: ColumnType) -> bool:
    """Whether values of this type get an exact literal encoding."""
    if column_type.code == TypeCode.ARRAY:
        element_type = column_type.array_element_type
        return element_type is not None and element_type.code in _SCALAR_FORMATTERS
    return column_type.code in _SCALAR_FORMATTERS


def _encode_scalar(code: TypeCode, value: Any) -> str:
    if code == TypeCode.STRUCT:
        raise EncodeError("Unexpected STRUCT data type in column")
    if value is None:
        return NULL

    formatter = _SCALAR_FORMATTERS.get(code)
    if formatter is None:
        # Raw text, not guaranteed to be a valid literal
        return str(value)
    return formatter(value)


def _encode_array(element_type: ColumnType, value: Any) -> str:
    if element_type.code == TypeCode.STRUCT:
        raise EncodeError("Unexpected STRUCT data type in array column")
    if value is None:
        return NULL
    if isinstance(value, (str, bytes, bytearray)) or not isinstance(value, Iterable):
        raise EncodeError(f"Expected a list for ARRAY column, got {type(value).__name__}")

    elements = [_encode_scalar(element_type.code, element) for element in value]
    return f"[{', '.join(elements)}]"


def encode_value(column: ColumnValue) -> str:
    """Encode a single column value as a literal.

    Raises:
        EncodeError: The column is STRUCT-typed or the raw value does not
            match its declared type.
    """
    column_type = column.type
    if column_type.code == TypeCode.ARRAY:
        if column_type.array_element_type is None:
            raise EncodeError("ARRAY column without an element type")
        return _encode_array(column_type.array_element_type, column.value)
    return _encode_scalar(column_type.code, column.value)


def encode_row(values: Iterable[ColumnValue]) -> list[str]:
    """Encode every column of a row, failing on the first bad value."""
    return [encode_value(value) for value in values]
