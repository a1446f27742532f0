"""Formula evaluator for extragrid cells.

A cell value is a formula when it starts with ``=``. Column references are
written ``[Column Title]`` and resolve against the same row (first column
with that title wins). The expression language is deliberately small:

- number and double-quoted string literals
- ``+ - * /``, parentheses and unary minus
- ``+`` concatenates when either operand is a string

When the full row list is supplied, ``SUM``, ``AVERAGE``, ``COUNT``,
``MIN`` and ``MAX`` over a single ``[Column]`` and ``IF(cond, a, b)`` with
``= <> < > <= >=`` comparisons are also available.

Evaluation never raises: any failure yields ``#ERROR``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from extragrid.models import is_empty_value, is_numeric_text, parse_number, value_to_text

if TYPE_CHECKING:
    from extragrid.models import CellValue, Column, Row

FORMULA_ERROR = "#ERROR"

AGGREGATES = frozenset({"SUM", "AVERAGE", "COUNT", "MIN", "MAX"})
_FUNCTIONS = AGGREGATES | {"IF"}
_COMPARISONS = ("<=", ">=", "<>", "<", ">", "=")

Scalar = int | float | str


class _FormulaError(Exception):
    pass


@dataclass(frozen=True)
class _Token:
    kind: Literal["num", "str", "ref", "op", "name", "end"]
    text: str
    value: Scalar | None = None


def is_formula(value: object) -> bool:
    return isinstance(value, str) and value.startswith("=")


def evaluate_formula(
    expression: str,
    row: Row,
    columns: list[Column],
    all_rows: list[Row] | None = None,
) -> Scalar:
    """Evaluate ``expression`` (with its leading ``=``) against ``row``.

    Args:
        expression: Formula text, e.g. ``=[Price] * 2``
        row: Row supplying referenced values
        columns: Column list used to resolve titles
        all_rows: Full row list; enables the aggregate functions

    Returns:
        The computed number or string, or ``"#ERROR"``
    """
    try:
        if not is_formula(expression):
            raise _FormulaError("not a formula")
        tokens = _tokenize(expression[1:])
        parser = _Parser(tokens, row, columns, all_rows)
        result = parser.parse()
    except (_FormulaError, ArithmeticError, ValueError, RecursionError):
        return FORMULA_ERROR
    return _normalize(result)


def display_value(
    row: Row,
    column: Column,
    columns: list[Column],
    all_rows: list[Row] | None = None,
) -> str:
    """Text shown for a cell: formulas evaluated, tags joined."""
    raw = row.get(column.id)
    if is_formula(raw):
        return value_to_text(evaluate_formula(raw, row, columns, all_rows))  # type: ignore[arg-type]
    return value_to_text(raw)


def _normalize(value: Scalar) -> Scalar:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch.isdigit() or (ch == "." and i + 1 < n and text[i + 1].isdigit()):
            j = i
            while j < n and (text[j].isdigit() or text[j] == "."):
                j += 1
            if j < n and text[j] in "eE":
                k = j + 1
                if k < n and text[k] in "+-":
                    k += 1
                if k < n and text[k].isdigit():
                    j = k
                    while j < n and text[j].isdigit():
                        j += 1
            literal = text[i:j]
            tokens.append(_Token("num", literal, parse_number(literal)))
            i = j
            continue
        if ch == '"':
            end = text.find('"', i + 1)
            if end == -1:
                raise _FormulaError("unterminated string")
            tokens.append(_Token("str", text[i : end + 1], text[i + 1 : end]))
            i = end + 1
            continue
        if ch == "[":
            end = text.find("]", i + 1)
            if end == -1:
                raise _FormulaError("unterminated column reference")
            tokens.append(_Token("ref", text[i + 1 : end]))
            i = end + 1
            continue
        two = text[i : i + 2]
        if two in ("<=", ">=", "<>"):
            tokens.append(_Token("op", two))
            i += 2
            continue
        if ch in "+-*/(),<>=":
            tokens.append(_Token("op", ch))
            i += 1
            continue
        if ch.isalpha() or ch == "_":
            j = i
            while j < n and (text[j].isalnum() or text[j] == "_"):
                j += 1
            name = text[i:j].upper()
            if name not in _FUNCTIONS:
                raise _FormulaError(f"unsupported name {text[i:j]!r}")
            tokens.append(_Token("name", name))
            i = j
            continue
        raise _FormulaError(f"unsupported character {ch!r}")
    tokens.append(_Token("end", ""))
    return tokens


class _Parser:
    """Recursive-descent evaluator over the token list."""

    def __init__(
        self,
        tokens: list[_Token],
        row: Row,
        columns: list[Column],
        all_rows: list[Row] | None,
    ) -> None:
        self._tokens = tokens
        self._pos = 0
        self._row = row
        self._columns = columns
        self._all_rows = all_rows

    def parse(self) -> Scalar:
        if self._peek().kind == "end":
            raise _FormulaError("empty formula")
        value = self._additive()
        if self._peek().kind != "end":
            raise _FormulaError(f"unexpected {self._peek().text!r}")
        return value

    def _peek(self) -> _Token:
        return self._tokens[self._pos]

    def _next(self) -> _Token:
        token = self._tokens[self._pos]
        if token.kind != "end":
            self._pos += 1
        return token

    def _expect(self, text: str) -> None:
        token = self._next()
        if token.kind != "op" or token.text != text:
            raise _FormulaError(f"expected {text!r}")

    def _additive(self) -> Scalar:
        left = self._term()
        while self._peek().kind == "op" and self._peek().text in "+-":
            op = self._next().text
            right = self._term()
            if op == "+":
                left = _add(left, right)
            else:
                left = _number(left) - _number(right)
        return left

    def _term(self) -> Scalar:
        left = self._unary()
        while self._peek().kind == "op" and self._peek().text in "*/":
            op = self._next().text
            right = self._unary()
            if op == "*":
                left = _number(left) * _number(right)
            else:
                divisor = _number(right)
                if divisor == 0:
                    raise _FormulaError("division by zero")
                left = _number(left) / divisor
        return left

    def _unary(self) -> Scalar:
        token = self._peek()
        if token.kind == "op" and token.text == "-":
            self._next()
            return -_number(self._unary())
        if token.kind == "op" and token.text == "+":
            self._next()
            return _number(self._unary())
        return self._primary()

    def _primary(self) -> Scalar:
        token = self._next()
        if token.kind in ("num", "str"):
            assert token.value is not None
            return token.value
        if token.kind == "ref":
            return self._resolve(token.text)
        if token.kind == "op" and token.text == "(":
            value = self._additive()
            self._expect(")")
            return value
        if token.kind == "name":
            return self._call(token.text)
        raise _FormulaError(f"unexpected {token.text!r}")

    def _resolve(self, title: str) -> Scalar:
        column = _column_by_title(self._columns, title)
        if column is None:
            return 0
        value = self._row.get(column.id)
        return _scalar(value)

    def _call(self, name: str) -> Scalar:
        self._expect("(")
        if name == "IF":
            condition = self._condition()
            self._expect(",")
            when_true = self._additive()
            self._expect(",")
            when_false = self._additive()
            self._expect(")")
            return when_true if condition else when_false

        token = self._next()
        if token.kind != "ref":
            raise _FormulaError(f"{name} expects a column reference")
        self._expect(")")
        return self._aggregate(name, token.text)

    def _condition(self) -> bool:
        left = self._additive()
        token = self._peek()
        if token.kind == "op" and token.text in _COMPARISONS:
            op = self._next().text
            right = self._additive()
            return _compare(op, left, right)
        if isinstance(left, str):
            return left != ""
        return left != 0

    def _aggregate(self, name: str, title: str) -> Scalar:
        if self._all_rows is None:
            return 0
        column = _column_by_title(self._columns, title)
        if column is None:
            return 0
        values = [r.get(column.id) for r in self._all_rows]
        if name == "COUNT":
            return sum(1 for v in values if not is_empty_value(v))
        numbers = [n for n in (_as_number(v) for v in values) if n is not None]
        if name == "SUM":
            return sum(numbers)
        if not numbers:
            return 0
        if name == "AVERAGE":
            return sum(numbers) / len(numbers)
        if name == "MIN":
            return min(numbers)
        return max(numbers)


def _column_by_title(columns: list[Column], title: str) -> Column | None:
    for column in columns:
        if column.title == title:
            return column
    return None


def _scalar(value: CellValue) -> Scalar:
    if is_empty_value(value):
        return 0
    if isinstance(value, bool):
        raise _FormulaError("boolean cell value")
    if isinstance(value, (int, float)):
        return value
    text = value_to_text(value)
    if is_numeric_text(text):
        return parse_number(text)
    return text


def _as_number(value: CellValue) -> int | float | None:
    if isinstance(value, bool) or is_empty_value(value):
        return None
    if isinstance(value, (int, float)):
        return value
    text = value_to_text(value)
    return parse_number(text) if is_numeric_text(text) else None


def _number(value: Scalar) -> int | float:
    if isinstance(value, str):
        raise _FormulaError(f"{value!r} is not a number")
    return value


def _add(left: Scalar, right: Scalar) -> Scalar:
    if isinstance(left, str) or isinstance(right, str):
        return value_to_text(left) + value_to_text(right)
    return left + right


def _compare(op: str, left: Scalar, right: Scalar) -> bool:
    a: Scalar
    b: Scalar
    if isinstance(left, str) or isinstance(right, str):
        a, b = value_to_text(left), value_to_text(right)
    else:
        a, b = left, right
    if op == "=":
        return a == b
    if op == "<>":
        return a != b
    if op == "<":
        return a < b  # type: ignore[operator]
    if op == ">":
        return a > b  # type: ignore[operator]
    if op == "<=":
        return a <= b  # type: ignore[operator]
    return a >= b  # type: ignore[operator]
