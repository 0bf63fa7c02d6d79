import calendar
import datetime as dt
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation, localcontext
from krakencli.utils._exceptions import KrakenConfigError


def _parse_date(date_string):
    """Parse a "YYYY-MM-DD" or "YYYY-MM-DD HH:MM:SS" string to a naive datetime

    The result carries no timezone; `_to_unix` reads naive datetimes as UTC.
    """
    if ":" in date_string:
        dt_obj = dt.datetime.strptime(
            date_string, "%Y-%m-%d %H:%M:%S"
        )
    else:
        dt_obj = dt.datetime.strptime(
            date_string, "%Y-%m-%d"
        )
    return dt_obj


def _to_unix(date) -> int:
    """Convert an int epoch, datetime, or date string to a UTC unix epoch in seconds"""
    if isinstance(date, bool):
        raise TypeError("Dates may not be given as booleans")
    if isinstance(date, int):
        return date
    if isinstance(date, str):
        date = _parse_date(date)
    if isinstance(date, dt.datetime):
        return int(calendar.timegm(date.utctimetuple()))
    raise TypeError(f"Cannot convert {date!r} to a unix epoch")


def _bool_str(flag) -> str:
    """Render a boolean as the lower case string Kraken expects"""
    return "true" if flag else "false"


def _join_ids(ids, limit=20) -> str:
    """Join one or more IDs into the comma separated form used by query endpoints"""
    ids = [ids] if isinstance(ids, str) else list(ids)
    if not ids:
        raise ValueError("At least one ID must be given")
    if len(ids) > limit:
        raise ValueError(f"This endpoint is limited to {limit} IDs per call.")
    return ",".join(ids)


def format_decimal(value, precision:int) -> str:
    """Render `value` in fixed-point notation with exactly `precision` decimals

    Rounding is round-half-to-even applied to the exact decimal expansion of
    `value`, e.g. ``format_decimal(2.5, 0) == "2"`` and
    ``format_decimal(123.456, 0) == "123"``.

    Parameters
    ----------
    value : float or int or str or Decimal
        Quantity or price to render.
    precision : int
        Number of digits after the decimal point. Must be non-negative.

    Returns
    -------
    str
        Fixed-point string without exponent or thousands separators.
    """
    if isinstance(precision, bool) or not isinstance(precision, int):
        raise ValueError(f"Precision must be an integer, got {precision!r}")
    if precision < 0:
        raise ValueError(f"Precision must be non-negative, got {precision}")
    try:
        d = Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Cannot format {value!r} as a decimal") from e
    if not d.is_finite():
        raise ValueError(f"Cannot format non-finite value {value!r}")
    quantum = Decimal(1).scaleb(-precision)
    with localcontext() as ctx:
        # quantize fails if the result has more digits than the context allows
        ctx.prec = max(ctx.prec, d.adjusted() + precision + 2)
        return f"{d.quantize(quantum, rounding=ROUND_HALF_EVEN):f}"


def load_api_key(filename) -> tuple:
    """Read API key and secret from a two line key file

    Line 1 holds the API key and line 2 the base64 API secret. Both are
    stripped of surrounding whitespace.

    Returns
    -------
    tuple
        ``(api_key, api_secret)``
    """
    with open(filename, "r", encoding="utf-8") as fh:
        lines = fh.read().splitlines()
    if len(lines) != 2:
        raise KrakenConfigError(
            f"Invalid key file format, two lines are expected. Found {len(lines)} in {filename}"
        )
    return lines[0].strip(), lines[1].strip()
