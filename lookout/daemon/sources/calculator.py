"""Calculator source: evaluates arithmetic typed into the search field."""

import re
from typing import Callable, List, Optional

from loguru import logger

from ..config import CalculatorSettings
from ..models import Candidate, Query
from .base import CancelToken, Source


EXPRESSION_RE = re.compile(r"^[0-9+\-*/().^\s]+$")
RESULT_SCORE = 100


class ExpressionError(ValueError):
    pass


class _Parser:
    """Recursive-descent parser for + - * / ^, unary signs and parentheses."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def _peek(self) -> str:
        while self.pos < len(self.text) and self.text[self.pos] == " ":
            self.pos += 1
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _eat(self, char: str) -> bool:
        if self._peek() == char:
            self.pos += 1
            return True
        return False

    def parse(self) -> float:
        value = self._expression()
        if self._peek():
            raise ExpressionError(f"Unexpected: {self.text[self.pos]}")
        return value

    def _expression(self) -> float:
        value = self._term()
        while True:
            if self._eat("+"):
                value += self._term()
            elif self._eat("-"):
                value -= self._term()
            else:
                return value

    def _term(self) -> float:
        value = self._factor()
        while True:
            if self._eat("*"):
                value *= self._factor()
            elif self._eat("/"):
                value /= self._factor()
            else:
                return value

    def _factor(self) -> float:
        if self._eat("+"):
            return self._factor()
        if self._eat("-"):
            return -self._factor()

        if self._eat("("):
            value = self._expression()
            if not self._eat(")"):
                raise ExpressionError("Missing closing parenthesis")
        else:
            start = self.pos
            while self.pos < len(self.text) and (self.text[self.pos].isdigit() or self.text[self.pos] == "."):
                self.pos += 1
            literal = self.text[start:self.pos]
            if not literal:
                raise ExpressionError("Unexpected: " + (self.text[self.pos] if self.pos < len(self.text) else "end"))
            value = float(literal)

        if self._eat("^"):
            return value ** self._factor()
        return value


def is_expression(text: str) -> bool:
    cleaned = " ".join(text.split())
    return bool(cleaned) and EXPRESSION_RE.match(cleaned) is not None


def format_result(value: float) -> str:
    formatted = f"{value:.8f}".rstrip("0").rstrip(".")
    return "0" if formatted in ("-0", "") else formatted


def compute(text: str) -> Optional[str]:
    """Evaluate an arithmetic expression. Returns None when it is not one."""
    cleaned = " ".join(text.split())
    if not is_expression(cleaned):
        return None
    try:
        value = _Parser(cleaned).parse()
    except (ExpressionError, ValueError, ZeroDivisionError, OverflowError):
        return None
    if isinstance(value, complex):
        return None
    return format_result(value)


class CalculatorSource(Source):
    """Single fixed-score result with the evaluated expression."""

    id = "calculator"
    display_name = "Calculator"

    def __init__(
        self,
        settings: Optional[CalculatorSettings] = None,
        copy_to_clipboard: Optional[Callable[[str], None]] = None,
    ):
        settings = settings or CalculatorSettings()
        super().__init__(enabled=settings.enabled)
        self.settings = settings
        self._copy = copy_to_clipboard

    def accepts(self, query: Query) -> bool:
        return is_expression(query.normalized_text)

    async def search(self, query: Query, token: CancelToken) -> List[Candidate]:
        expression = query.normalized_text
        result = compute(expression)
        if result is None:
            return []

        def action() -> str:
            if self._copy is not None:
                self._copy(result)
            logger.debug(f"Calculator result selected: {result}")
            return result

        return [
            Candidate(
                id=f"{self.id}:{expression}",
                title=f"= {result}",
                subtitle=expression,
                source_id=self.id,
                rank_score=RESULT_SCORE,
                action=action,
            )
        ]
