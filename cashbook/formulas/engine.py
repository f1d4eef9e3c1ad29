"""
Formula Engine

Every computed column of the ledger (Chia, TT, VND, the totals) is an
arithmetic expression stored as a string. Users can override any of
them from the settings page; overrides are persisted under
`app_settings.formulas`.

DESIGN DECISION: Formulas are NEVER passed to eval().
The expression is parsed with the `ast` module, the tree is checked
against a whitelist once, and then interpreted node by node. Anything
the whitelist does not know (attribute access, subscripts, lambdas,
strings, comprehensions) is a FormulaError before evaluation starts.

Evaluation is forgiving, parsing is not:
- A formula that parses but fails at runtime (division by zero, an
  unknown variable, None in arithmetic) is logged and yields 0.
- A formula that does not parse raises FormulaError.
"""

import ast
import copy
import math
import operator
import re
from functools import lru_cache
from typing import Any, Mapping, Optional, Union

import structlog
from pydantic import BaseModel

from cashbook.models.sheet import SheetKind


# =============================================================================
# ERRORS
# =============================================================================

class FormulaError(Exception):
    """Raised when a formula cannot be parsed or uses forbidden syntax."""

    def __init__(self, message: str, formula: Optional[str] = None):
        self.message = message
        self.formula = formula
        super().__init__(message)


class _EvaluationError(Exception):
    """Runtime failure inside a formula that parsed fine."""


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_FORMULAS: dict[str, dict[str, str]] = {
    "ae": {
        "total": "money",
        "chia": "money / name_count if name_count > 1 else None",
        "tt": "chia * 0.5 if chia and chia > 0 else 0",
    },
    "aeqt": {
        "total": "money",
        "chia": "money / name_count if name_count > 1 else None",
        "tt": "chia * 0.8 if chia and chia > 0 else 0",
    },
    "conversion": {
        "vnd": "vnd if vnd and vnd > 0 else ((usdt or 0) + (usd or 0)) * (price or 0)",
        "total_usdt": "usdt or 0",
        "total_usd": "usd or 0",
        "avg_price": "price or 0",
    },
    "withdraw": {
        "total": "(bankdep or 0) + (bankbad or 0) + (visa or 0)",
    },
}

FORMULA_DESCRIPTIONS: dict[str, dict[str, str]] = {
    "ae": {
        "total": "Tổng tiền = Tiền làm (không tính toán)",
        "chia": "Chia = Tiền làm ÷ Số người (nếu > 1 người)",
        "tt": "TT = Chia × 0.5",
    },
    "aeqt": {
        "total": "Tổng tiền = Tiền làm (không tính toán)",
        "chia": "Chia = Tiền làm ÷ Số người (nếu > 1 người)",
        "tt": "TT = Chia × 0.8",
    },
    "conversion": {
        "vnd": "VND = (USDT + USD) × Giá (hoặc nhập thủ công)",
        "total_usdt": "Tổng USDT",
        "total_usd": "Tổng USD",
        "avg_price": "Giá trung bình",
    },
    "withdraw": {
        "total": "Tổng = Bank đẹp + Bank xấu + Visa",
    },
}

NO_DESCRIPTION = "Không có mô tả"

# Values used to trial-run a formula before it is accepted
SAMPLE_VARIABLES: dict[str, Any] = {
    "money": 1000,
    "name": "Test",
    "name_count": 1,
    "chia": 500,
    "usdt": 100,
    "usd": 100,
    "price": 25000,
    "vnd": 2500000,
    "bankdep": 1000000,
    "bankbad": 500000,
    "visa": 200000,
}

KNOWN_VARIABLES = frozenset(SAMPLE_VARIABLES)

FUNCTIONS = {
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "floor": math.floor,
    "ceil": math.ceil,
    "sqrt": math.sqrt,
}

MAX_EXPONENT = 100


# =============================================================================
# VARIABLE PREPARATION
# =============================================================================

_NUMBER_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_FORMATTING_CHARS = re.compile(r"[₫$,\s]")


def round_half_up(value: float, places: int = 2) -> float:
    """Round like a spreadsheet does: .5 always goes up."""
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def parse_name_count(name: Any) -> int:
    """Number of non-empty comma separated names."""
    if not name or not isinstance(name, str):
        return 0
    return len([part for part in (n.strip() for n in name.split(",")) if part])


def parse_number(value: Any) -> Optional[float]:
    """
    Read the number a cell starts with.

    Currency symbols, thousands separators and whitespace are ignored and
    the leading numeric part is used, so "1,500₫" is 1500 and "12abc" is
    12. Returns None when there is no number to read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None

    text = _FORMATTING_CHARS.sub("", str(value))
    match = _NUMBER_PREFIX.match(text)
    if not match:
        return None
    try:
        number = float(match.group(0))
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def sanitize_number(value: Any) -> float:
    """Like parse_number, with 0 for anything unreadable."""
    number = parse_number(value)
    return 0.0 if number is None else number


def _table_name(table: Union[str, SheetKind]) -> str:
    return table.value if isinstance(table, SheetKind) else str(table)


def prepare_variables(row: Union[Mapping[str, Any], BaseModel], table: Union[str, SheetKind]) -> dict[str, Any]:
    """
    Bind the row's fields to formula variable names.

    `money`, `name`/`name_count` and `chia` are bound when the row has
    them; the conversion and withdraw tables add their own columns.
    """
    if isinstance(row, BaseModel):
        row = row.model_dump()
    if not isinstance(row, Mapping):
        return {}

    table = _table_name(table)
    variables: dict[str, Any] = {}

    if "money" in row:
        variables["money"] = sanitize_number(row["money"])
    if "name" in row:
        name = str(row["name"] or "").strip()
        variables["name"] = name
        variables["name_count"] = parse_name_count(name)
    if "chia" in row:
        variables["chia"] = sanitize_number(row["chia"])

    if table == SheetKind.CONVERSION.value:
        for col in ("usdt", "usd", "price", "vnd"):
            variables[col] = sanitize_number(row.get(col))
    elif table == SheetKind.WITHDRAW.value:
        for col in ("bankdep", "bankbad", "visa"):
            variables[col] = sanitize_number(row.get(col))

    return variables


# =============================================================================
# PARSING AND INTERPRETATION
# =============================================================================

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

_ALLOWED_NODES = (
    ast.Expression, ast.BinOp, ast.UnaryOp, ast.BoolOp, ast.Compare,
    ast.IfExp, ast.Call, ast.Name, ast.Constant, ast.Load,
    ast.And, ast.Or,
    *_BINARY_OPS, *_UNARY_OPS, *_COMPARE_OPS,
)


@lru_cache(maxsize=256)
def parse_formula(formula: str) -> ast.Expression:
    """
    Parse and whitelist-check a formula.

    Raises:
        FormulaError: On a syntax error or a forbidden construct
    """
    if not isinstance(formula, str) or not formula.strip():
        raise FormulaError("Công thức không hợp lệ", formula)

    try:
        tree = ast.parse(formula.strip(), mode="eval")
    except SyntaxError as e:
        raise FormulaError(f"Lỗi cú pháp: {e.msg}", formula) from e

    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise FormulaError(
                f"Cú pháp không được phép: {type(node).__name__}", formula
            )
        if isinstance(node, ast.Constant) and not (
            node.value is None or isinstance(node.value, (int, float, bool))
        ):
            raise FormulaError("Chỉ cho phép hằng số dạng số", formula)
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
                raise FormulaError("Hàm không được hỗ trợ", formula)
            if node.keywords:
                raise FormulaError("Không hỗ trợ tham số có tên", formula)

    return tree


def formula_variables(tree: ast.Expression) -> set[str]:
    """Variable names referenced by a parsed formula (function names excluded)."""
    called = {
        id(node.func) for node in ast.walk(tree) if isinstance(node, ast.Call)
    }
    return {
        node.id for node in ast.walk(tree)
        if isinstance(node, ast.Name) and id(node) not in called
    }


def _interpret(node: ast.AST, variables: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Expression):
        return _interpret(node.body, variables)

    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        if node.id not in variables:
            raise _EvaluationError(f"unknown variable '{node.id}'")
        return variables[node.id]

    if isinstance(node, ast.BinOp):
        left = _interpret(node.left, variables)
        right = _interpret(node.right, variables)
        if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > MAX_EXPONENT:
            raise _EvaluationError("exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)

    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPS[type(node.op)](_interpret(node.operand, variables))

    if isinstance(node, ast.BoolOp):
        # Python semantics: return the deciding operand, not a bool
        value = None
        for operand in node.values:
            value = _interpret(operand, variables)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    if isinstance(node, ast.Compare):
        left = _interpret(node.left, variables)
        for op, comparator in zip(node.ops, node.comparators):
            right = _interpret(comparator, variables)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.IfExp):
        if _interpret(node.test, variables):
            return _interpret(node.body, variables)
        return _interpret(node.orelse, variables)

    if isinstance(node, ast.Call):
        args = [_interpret(arg, variables) for arg in node.args]
        return FUNCTIONS[node.func.id](*args)

    raise _EvaluationError(f"unsupported node {type(node).__name__}")


def _run(formula: str, variables: Mapping[str, Any]) -> Optional[float]:
    """Evaluate strictly: runtime errors propagate."""
    tree = parse_formula(formula)
    try:
        result = _interpret(tree, variables)
        if result is None:
            return None
        if isinstance(result, bool) or not isinstance(result, (int, float)):
            return 0
        # Big ints overflow here and big floats in the rounding
        result = float(result)
        if not math.isfinite(result):
            return 0
        return round_half_up(result, 2)
    except _EvaluationError:
        raise
    except (ArithmeticError, TypeError, ValueError) as e:
        raise _EvaluationError(str(e)) from e


# =============================================================================
# ENGINE
# =============================================================================

class FormulaEngine:
    """
    Evaluates the ledger's formulas.

    Holds the user's custom formulas; every lookup merges them over
    DEFAULT_FORMULAS so a partial override keeps the other defaults.
    """

    SETTINGS_KEY = "app_settings"

    def __init__(self, custom_formulas: Optional[Mapping[str, Mapping[str, str]]] = None):
        self._logger = structlog.get_logger(__name__)
        self._custom: dict[str, dict[str, str]] = {}
        if custom_formulas:
            self.set_custom_formulas(custom_formulas)

    @property
    def custom_formulas(self) -> dict[str, dict[str, str]]:
        return copy.deepcopy(self._custom)

    def set_custom_formulas(self, formulas: Mapping[str, Mapping[str, str]]) -> None:
        self._custom = {
            _table_name(table): dict(columns) for table, columns in formulas.items()
        }

    def formulas(
        self,
        custom_formulas: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> dict[str, dict[str, str]]:
        """The effective formula set: defaults overlaid with custom formulas."""
        merged = copy.deepcopy(DEFAULT_FORMULAS)
        overrides = self._custom if custom_formulas is None else custom_formulas
        for table, columns in overrides.items():
            merged.setdefault(_table_name(table), {}).update(columns)
        return merged

    def evaluate(self, formula: str, variables: Mapping[str, Any]) -> Optional[float]:
        """
        Evaluate a formula against bound variables.

        Returns:
            None when the formula yields None, the result rounded half-up
            to 2 decimals when it is a finite number, 0 otherwise or on a
            runtime error.

        Raises:
            FormulaError: If the formula does not parse or is not allowed
        """
        try:
            return _run(formula, variables)
        except _EvaluationError as e:
            self._logger.warning(
                "formula_evaluation_error",
                formula=formula,
                error=str(e),
            )
            return 0

    def calculate(
        self,
        table: Union[str, SheetKind],
        column: str,
        row: Union[Mapping[str, Any], BaseModel],
        custom_formulas: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> Optional[float]:
        """Compute `table.column` for a row."""
        table = _table_name(table)
        formula = self.formulas(custom_formulas).get(table, {}).get(column)
        if not formula:
            self._logger.warning("formula_missing", table=table, column=column)
            return 0

        variables = prepare_variables(row, table)
        try:
            return self.evaluate(formula, variables)
        except FormulaError as e:
            # Stored formulas are validated on save; a broken one here
            # must not interrupt editing.
            self._logger.error(
                "formula_invalid",
                table=table,
                column=column,
                formula=formula,
                error=e.message,
            )
            return 0

    def validate_formula(self, formula: str) -> tuple[bool, Optional[str]]:
        """
        Check a formula before it is saved.

        Returns (valid, error_message).
        """
        try:
            tree = parse_formula(formula)
        except FormulaError as e:
            return False, e.message

        unknown = sorted(formula_variables(tree) - KNOWN_VARIABLES)
        if unknown:
            return False, f"Biến không hợp lệ: {', '.join(unknown)}"

        try:
            _run(formula, SAMPLE_VARIABLES)
        except _EvaluationError as e:
            return False, f"Lỗi khi tính thử: {e}"

        return True, None

    def describe(self, table: Union[str, SheetKind], column: str) -> str:
        return FORMULA_DESCRIPTIONS.get(_table_name(table), {}).get(column, NO_DESCRIPTION)

    async def load_custom_formulas(self, store) -> dict[str, dict[str, str]]:
        """Load `app_settings.formulas` from the store and activate them."""
        settings = await store.load(self.SETTINGS_KEY, {})
        formulas = settings.get("formulas") if isinstance(settings, dict) else None
        if not isinstance(formulas, dict):
            formulas = {}
        self.set_custom_formulas(formulas)
        return self.custom_formulas

    async def save_custom_formulas(
        self,
        store,
        formulas: Mapping[str, Mapping[str, str]],
    ) -> None:
        """
        Validate and persist a custom formula set.

        The set is all-or-nothing: one invalid formula rejects the save.

        Raises:
            FormulaError: Listing every invalid formula
        """
        errors = []
        for table, columns in formulas.items():
            for column, formula in columns.items():
                valid, error = self.validate_formula(formula)
                if not valid:
                    errors.append(f"{_table_name(table)}.{column}: {error}")

        if errors:
            raise FormulaError("; ".join(errors))

        settings = await store.load(self.SETTINGS_KEY, {})
        if not isinstance(settings, dict):
            settings = {}
        self.set_custom_formulas(formulas)
        settings["formulas"] = self.custom_formulas
        await store.save(self.SETTINGS_KEY, settings)
        self._logger.info("formulas_saved", tables=sorted(settings["formulas"]))
