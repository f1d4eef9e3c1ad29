"""
Currency Formatting

VND is shown as a whole number with a thousands separator and the ₫
symbol after it ("1,000,000₫"); USDT/USD with two decimals. Symbol,
position, decimals, separator and the rounding mode all come from the
user's preferences (`app_settings`).
"""

import math
from typing import Any, Callable, Optional

from cashbook.formulas import parse_number, round_half_up
from cashbook.models.sheet import AppPreferences, CurrencyDisplay


_ROUNDING: dict[str, Callable[[float], float]] = {
    "round": lambda v: round_half_up(v, 0),
    "floor": math.floor,
    "ceil": math.ceil,
}


def _render(amount: float, display: CurrencyDisplay, decimals: int, separator: str) -> str:
    formatted = f"{abs(amount):,.{decimals}f}".replace(",", separator)
    if display.position == "before":
        result = f"{display.symbol}{formatted}"
    else:
        result = f"{formatted}{display.symbol}"
    return f"-{result}" if amount < 0 else result


def _zero(display: CurrencyDisplay, show_zero: bool) -> str:
    if not show_zero:
        return ""
    return f"{display.symbol}0" if display.position == "before" else f"0{display.symbol}"


def format_vnd(value: Any, preferences: Optional[AppPreferences] = None) -> str:
    """
    Format an amount as VND.

    format_vnd(1000000) -> "1,000,000₫"
    format_vnd(-500)    -> "-500₫"
    Unreadable input and zero render as "0₫", or "" when show_zero is off.
    """
    prefs = preferences or AppPreferences()
    display = prefs.currency
    number = parse_number(value)
    if number is None or number == 0:
        return _zero(display, prefs.display.show_zero)

    rounded = _ROUNDING.get(prefs.display.rounding, _ROUNDING["round"])(number)
    if rounded == 0:
        return _zero(display, prefs.display.show_zero)
    return _render(rounded, display, display.decimals, display.separator or ",")


def format_usdt(value: Any, preferences: Optional[AppPreferences] = None) -> str:
    """Format a USDT/USD amount, two decimals by default ("1,000.50$")."""
    prefs = preferences or AppPreferences()
    display = prefs.crypto
    number = parse_number(value)
    if number is None:
        return _zero(display, prefs.display.show_zero)
    return _render(number, display, display.decimals or 2, ",")


format_usd = format_usdt
