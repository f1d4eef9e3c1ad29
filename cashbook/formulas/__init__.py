"""Formula evaluation for the ledger's computed columns."""

from cashbook.formulas.engine import (
    DEFAULT_FORMULAS,
    KNOWN_VARIABLES,
    FormulaEngine,
    FormulaError,
    parse_name_count,
    parse_number,
    prepare_variables,
    round_half_up,
    sanitize_number,
)

__all__ = [
    "DEFAULT_FORMULAS",
    "KNOWN_VARIABLES",
    "FormulaEngine",
    "FormulaError",
    "parse_name_count",
    "parse_number",
    "prepare_variables",
    "round_half_up",
    "sanitize_number",
]
