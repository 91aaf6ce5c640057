"""
Restricted arithmetic expression evaluator.

Expressions are tokenized and parsed into a small AST, then evaluated
against a variable scope. Nothing is ever handed to eval/exec: the only
operations available are the operators below and a whitelisted set of math
functions.

Grammar:
    comparison := additive [("<" | "<=" | ">" | ">=" | "==" | "!=") additive]
    additive   := term (("+" | "-") term)*
    term       := unary (("*" | "/" | "%") unary)*
    unary      := ("-" | "+") unary | primary
    primary    := NUMBER | STRING | NAME | NAME "(" [args] ")" | "(" comparison ")"
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from chatflow_engine.template.resolver import navigate, to_text


class ExpressionError(Exception):
    """Expression could not be parsed or evaluated."""


class UnsafeExpressionError(ExpressionError):
    """Expression contains characters or keywords outside the allowed set."""


# Arithmetic-only guard, applied before parsing
ALLOWED_CHARS = re.compile(r"^[0-9\s+\-*/%().,_a-zA-Z]*$")
FORBIDDEN_TOKENS = re.compile(
    r"(=|new\b|Function\b|constructor\b|while\b|for\b|import\b|require\b)",
    re.IGNORECASE,
)


# Bounds on parser input; deeper or longer expressions are rejected
MAX_TOKENS = 400
MAX_DEPTH = 64


def _js_round(x: float) -> float:
    return math.floor(x + 0.5)


FUNCTIONS = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": _js_round,
    "floor": math.floor,
    "ceil": math.ceil,
    "trunc": math.trunc,
    "sqrt": math.sqrt,
    "pow": math.pow,
    "log": math.log,
    "log10": math.log10,
    "exp": math.exp,
}

CONSTANTS = {
    "pi": math.pi,
    "PI": math.pi,
    "e": math.e,
    "E": math.e,
}


# ==================== Coercion ====================


def to_number(value: Any) -> float:
    """Numeric reading of a value; NaN when it has none."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def loose_equals(left: Any, right: Any) -> bool:
    """
    Equality that treats "5" and 5 as equal.

    Mixed number/text operands compare numerically, None equals only None,
    everything else compares as-is.
    """
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool):
            return left == right
        return to_number(left) == to_number(right)
    if (is_number(left) and isinstance(right, str)) or (isinstance(left, str) and is_number(right)):
        return to_number(left) == to_number(right)
    return left == right


# ==================== Tokenizer ====================


TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
    | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)
    | (?P<string>"[^"]*"|'[^']*')
    | (?P<op><=|>=|==|!=|[-+*/%(),<>])
    """,
    re.VERBOSE,
)


@dataclass
class Token:
    kind: str
    text: str
    pos: int


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(source):
        match = TOKEN_PATTERN.match(source, pos)
        if not match:
            raise ExpressionError(f"Unexpected character {source[pos]!r} at position {pos}")
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, match.group(kind), pos))
        pos = match.end()
    return tokens


# ==================== AST ====================


@dataclass(frozen=True)
class Num:
    value: float


@dataclass(frozen=True)
class Str:
    value: str


@dataclass(frozen=True)
class Name:
    path: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple["Node", ...]


Node = Union[Num, Str, Name, Unary, Binary, Call]


class Parser:
    """Recursive-descent parser producing the AST above."""

    COMPARISONS = ("<", "<=", ">", ">=", "==", "!=")

    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.index = 0
        self.depth = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionError("Empty expression")
        if len(self.tokens) > MAX_TOKENS:
            raise ExpressionError(f"Expression too long ({len(self.tokens)} tokens, limit {MAX_TOKENS})")
        node = self._comparison()
        if self._peek() is not None:
            token = self._peek()
            raise ExpressionError(f"Unexpected '{token.text}' at position {token.pos}")
        return node

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        self.index += 1
        return token

    def _accept(self, *ops: str) -> Optional[str]:
        token = self._peek()
        if token is not None and token.kind == "op" and token.text in ops:
            self.index += 1
            return token.text
        return None

    def _expect(self, op: str) -> None:
        if self._accept(op) is None:
            token = self._peek()
            found = token.text if token else "end of expression"
            raise ExpressionError(f"Expected '{op}' but found '{found}'")

    def _descend(self) -> None:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise ExpressionError(f"Expression nested deeper than {MAX_DEPTH} levels")

    def _comparison(self) -> Node:
        self._descend()
        try:
            left = self._additive()
            op = self._accept(*self.COMPARISONS)
            if op:
                return Binary(op, left, self._additive())
            return left
        finally:
            self.depth -= 1

    def _additive(self) -> Node:
        node = self._term()
        while op := self._accept("+", "-"):
            node = Binary(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while op := self._accept("*", "/", "%"):
            node = Binary(op, node, self._unary())
        return node

    def _unary(self) -> Node:
        op = self._accept("-", "+")
        if op:
            self._descend()
            try:
                return Unary(op, self._unary())
            finally:
                self.depth -= 1
        return self._primary()

    def _primary(self) -> Node:
        token = self._next()
        if token.kind == "number":
            return Num(float(token.text))
        if token.kind == "string":
            return Str(token.text[1:-1])
        if token.kind == "name":
            if self._accept("("):
                args: list[Node] = []
                if self._accept(")") is None:
                    args.append(self._comparison())
                    while self._accept(","):
                        args.append(self._comparison())
                    self._expect(")")
                return Call(token.text, tuple(args))
            return Name(token.text)
        if token.kind == "op" and token.text == "(":
            node = self._comparison()
            self._expect(")")
            return node
        raise ExpressionError(f"Unexpected '{token.text}' at position {token.pos}")


# ==================== Evaluation ====================


def _strip_math(name: str) -> str:
    return name[5:] if name.startswith("Math.") else name


def _resolve_name(path: str, scope: dict[str, Any]) -> Any:
    head, _, rest = path.partition(".")
    if head in scope:
        value = scope[head]
        return navigate(value, rest.split(".")) if rest else value
    constant = _strip_math(path)
    if constant in CONSTANTS:
        return CONSTANTS[constant]
    raise ExpressionError(f"Unknown variable '{path}'")


def _arith(value: Any) -> float:
    return value if is_number(value) else to_number(value)


def _evaluate(node: Node, scope: dict[str, Any]) -> Any:
    if isinstance(node, Num):
        return node.value
    if isinstance(node, Str):
        return node.value
    if isinstance(node, Name):
        return _resolve_name(node.path, scope)
    if isinstance(node, Unary):
        operand = _arith(_evaluate(node.operand, scope))
        return -operand if node.op == "-" else operand
    if isinstance(node, Call):
        fn = FUNCTIONS.get(_strip_math(node.name))
        if fn is None:
            raise ExpressionError(f"Function '{node.name}' is not allowed")
        args = [_arith(_evaluate(arg, scope)) for arg in node.args]
        try:
            return fn(*args)
        except (TypeError, ValueError, OverflowError) as e:
            raise ExpressionError(f"{node.name}() failed: {e}") from e
    if isinstance(node, Binary):
        return _binary(node.op, _evaluate(node.left, scope), _evaluate(node.right, scope))
    raise ExpressionError(f"Unsupported node {node!r}")


def _binary(op: str, left: Any, right: Any) -> Any:
    if op == "==":
        return loose_equals(left, right)
    if op == "!=":
        return not loose_equals(left, right)
    if op == "+" and (isinstance(left, str) or isinstance(right, str)):
        return to_text(left) + to_text(right)

    a, b = _arith(left), _arith(right)
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    if op == ">=":
        return a >= b
    try:
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            return a / b
        if op == "%":
            return math.fmod(a, b)
    except (ZeroDivisionError, ValueError) as e:
        raise ExpressionError(f"Division by zero in '{op}'") from e
    except OverflowError as e:
        raise ExpressionError(str(e)) from e
    raise ExpressionError(f"Unknown operator '{op}'")


def check_safe(expression: str) -> None:
    """
    Reject text outside the arithmetic allow-list before it is parsed.

    Raises:
        UnsafeExpressionError: If the text has disallowed characters or keywords
    """
    if not ALLOWED_CHARS.match(expression) or FORBIDDEN_TOKENS.search(expression):
        raise UnsafeExpressionError("unsafe_expression")


def parse_expression(expression: str) -> Node:
    return Parser(str(expression)).parse()


def evaluate(expression: str, scope: Optional[dict[str, Any]] = None) -> Any:
    """
    Parse and evaluate an expression. Names resolve against scope, with
    dotted names navigating into nested dicts.
    """
    try:
        return _evaluate(parse_expression(expression), scope or {})
    except RecursionError as e:
        raise ExpressionError("Expression too deeply nested") from e


def evaluate_arithmetic(expression: str, scope: Optional[dict[str, Any]] = None) -> float:
    """
    Evaluate a guarded arithmetic expression to a finite number.

    Raises:
        UnsafeExpressionError: If the guard rejects the text
        ExpressionError: If parsing fails or the result is not a finite number
    """
    expression = str(expression)
    check_safe(expression)
    value = evaluate(expression, scope)
    if not is_number(value) or math.isnan(value) or math.isinf(value):
        raise ExpressionError("invalid_result")
    return value
