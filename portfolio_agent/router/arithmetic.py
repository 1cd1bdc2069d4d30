from __future__ import annotations

import math
import re
import sys

ARITHMETIC_QUERY_PATTERN = re.compile(r"^\s*(?:what(?:'s| is)\s+)?[-+*/().\d\s%=]+\??\s*$", flags=re.IGNORECASE)
_OPERATOR_PATTERN = re.compile(r"[+\-*/]")
_DIGIT_PATTERN = re.compile(r"\d")
_PREFIX_PATTERN = re.compile(r"^\s*(?:what(?:'s| is)\s+)?", flags=re.IGNORECASE)
_TRAILING_QUESTION_PATTERN = re.compile(r"\?+$")

_OPERATOR_WORDS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bdivided\s+by\b", flags=re.IGNORECASE), " / "),
    (re.compile(r"\bmultiplied\s+by\b", flags=re.IGNORECASE), " * "),
    (re.compile(r"\btimes\b", flags=re.IGNORECASE), " * "),
    (re.compile(r"\bplus\b", flags=re.IGNORECASE), " + "),
    (re.compile(r"\bminus\b", flags=re.IGNORECASE), " - "),
]
_NUMBER_WORDS: dict[str, str] = {
    "zero": "0",
    "one": "1",
    "two": "2",
    "three": "3",
    "four": "4",
    "five": "5",
    "six": "6",
    "seven": "7",
    "eight": "8",
    "nine": "9",
    "ten": "10",
    "eleven": "11",
    "twelve": "12",
    "thirteen": "13",
    "fourteen": "14",
    "fifteen": "15",
    "sixteen": "16",
    "seventeen": "17",
    "eighteen": "18",
    "nineteen": "19",
    "twenty": "20",
    "thirty": "30",
    "forty": "40",
    "fifty": "50",
    "hundred": "100",
}
_NUMBER_WORD_PATTERN = re.compile(r"\b(" + "|".join(_NUMBER_WORDS) + r")\b", flags=re.IGNORECASE)


class _UnsupportedExpression(Exception):
    pass


class _ExpressionParser:
    """Recursive-descent evaluator for + - * / with parentheses and unary signs."""

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.cursor = 0

    def _peek(self) -> str:
        if self.cursor < len(self.expression):
            return self.expression[self.cursor]
        return ""

    def _skip_whitespace(self) -> None:
        while self.cursor < len(self.expression) and self.expression[self.cursor].isspace():
            self.cursor += 1

    def parse(self) -> float:
        value = self._expression()
        self._skip_whitespace()
        if self.cursor != len(self.expression):
            raise _UnsupportedExpression(f"unexpected token at {self.cursor}")
        if not math.isfinite(value):
            raise _UnsupportedExpression("non-finite result")
        return value

    def _expression(self) -> float:
        value = self._term()
        while True:
            self._skip_whitespace()
            operator = self._peek()
            if operator not in {"+", "-"}:
                return value
            self.cursor += 1
            right = self._term()
            value = value + right if operator == "+" else value - right

    def _term(self) -> float:
        value = self._factor()
        while True:
            self._skip_whitespace()
            operator = self._peek()
            if operator not in {"*", "/"}:
                return value
            self.cursor += 1
            right = self._factor()
            if operator == "*":
                value *= right
                continue
            if abs(right) < sys.float_info.epsilon:
                raise _UnsupportedExpression("division by zero")
            value /= right

    def _factor(self) -> float:
        self._skip_whitespace()
        token = self._peek()
        if token == "+":
            self.cursor += 1
            return self._factor()
        if token == "-":
            self.cursor += 1
            return -self._factor()
        if token == "(":
            self.cursor += 1
            nested = self._expression()
            self._skip_whitespace()
            if self._peek() != ")":
                raise _UnsupportedExpression("unbalanced parenthesis")
            self.cursor += 1
            return nested
        return self._number()

    def _number(self) -> float:
        self._skip_whitespace()
        start = self.cursor
        dot_count = 0
        while self.cursor < len(self.expression):
            token = self.expression[self.cursor]
            if token.isdigit():
                self.cursor += 1
                continue
            if token == ".":
                dot_count += 1
                if dot_count > 1:
                    raise _UnsupportedExpression("malformed number")
                self.cursor += 1
                continue
            break
        raw = self.expression[start : self.cursor]
        if not raw or raw == ".":
            raise _UnsupportedExpression("number expected")
        return float(raw)


def replace_arithmetic_words(query: str) -> str:
    text = str(query or "")
    for pattern, symbol in _OPERATOR_WORDS:
        text = pattern.sub(symbol, text)
    text = _NUMBER_WORD_PATTERN.sub(lambda match: _NUMBER_WORDS[match.group(1).lower()], text)
    return re.sub(r"[ \t]+", " ", text).strip()


def is_arithmetic_query(query: str) -> bool:
    candidate = replace_arithmetic_words(query)
    if not ARITHMETIC_QUERY_PATTERN.match(candidate):
        return False
    return bool(_OPERATOR_PATTERN.search(candidate)) and bool(_DIGIT_PATTERN.search(candidate))


def format_numeric_result(value: float) -> str:
    if abs(value) < sys.float_info.epsilon:
        return "0"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6f}".rstrip("0").rstrip(".")


def evaluate_arithmetic(query: str) -> str | None:
    """Return ``"<expr> = <value>"`` or ``None`` when the expression is unsupported."""
    if not is_arithmetic_query(query):
        return None

    candidate = replace_arithmetic_words(query)
    expression = _PREFIX_PATTERN.sub("", candidate, count=1)
    expression = _TRAILING_QUESTION_PATTERN.sub("", expression.strip())
    expression = expression.replace("=", "").strip()
    if not expression:
        return None

    try:
        value = _ExpressionParser(expression).parse()
    except (_UnsupportedExpression, RecursionError, OverflowError, ValueError):
        return None
    return f"{expression} = {format_numeric_result(value)}"
