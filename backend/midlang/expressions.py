"""Expression classification and evaluation for MidLang.

Expressions are the fragments that follow a command keyword (`x+1`,
`"Hello" name`, `a < b`). `parse_expression` classifies the text into one of
four tagged forms using a small regex tokenizer:

- `Literal`: a number or a single quoted string,
- `VariableRef`: a bare identifier,
- `Interpolated`: quoted text mixed with bare words; quoted segments are kept
  verbatim and each bare word is looked up in the environment when the
  expression is evaluated,
- `Arithmetic`: a numeric/relational expression parsed with operator
  precedence (`+ - * /`, `< > <= >= == !=`, unary sign, parentheses).

`eval_expr` resolves a fragment against an `Environment`. A fragment that is
exactly the name of a bound variable always wins over any other reading.
Python's own `eval` is never involved: the grammar is fixed and can only read
values already bound in the environment.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from .environment import MISSING, Environment


class EvalError(Exception):
    """Raised when an expression cannot be parsed or evaluated.

    Callers translate this into an EVALUATION_ERROR diagnostic; it never
    crosses a line boundary.

    Attributes:
        column: optional 1-based column of the offending token in the expression
        text: optional original expression text
    """

    def __init__(self, message: str, *, column: Optional[int] = None, text: Optional[str] = None):
        super().__init__(message)
        self.column = column
        self.text = text


TOKEN_SPEC = [
    ("NUMBER", r"\d+(?:\.\d*)?|\.\d+"),
    ("STRING", r'"[^"]*"'),
    ("NAME", r"[^\W\d]\w*"),
    ("OP", r"==|!=|<=|>=|[-+*/<>()]"),
    ("WS", r"\s+"),
    ("MISMATCH", r"."),
]
TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in TOKEN_SPEC))
NUMBER_RE = re.compile(TOKEN_SPEC[0][1])
OPERATOR_RE = re.compile(TOKEN_SPEC[3][1])

COMPARISON_OPS = ("<", ">", "<=", ">=", "==", "!=")
# integers past this magnitude continue as floats (double precision)
MAX_EXACT_INT = 2 ** 53
MAX_EXACT_DIGITS = 15
CONSTANTS = {"true": True, "false": False, "undefined": None}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    column: int


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class VariableRef:
    name: str


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class BinOp:
    op: str
    left: "Node"
    right: "Node"


Node = Union[Literal, VariableRef, UnaryOp, BinOp]


@dataclass(frozen=True)
class Interpolated:
    parts: Tuple[Union[Literal, VariableRef], ...]


@dataclass(frozen=True)
class Arithmetic:
    node: Node


Expression = Union[Literal, VariableRef, Interpolated, Arithmetic]


def tokenize(text: str) -> List[Token]:
    """Split an arithmetic expression into tokens (whitespace dropped)."""
    tokens: List[Token] = []
    for match in TOKEN_RE.finditer(text):
        kind = match.lastgroup
        if kind == "WS":
            continue
        if kind == "MISMATCH":
            char = match.group()
            message = "Unterminated string literal" if char == '"' else f"Unexpected character {char!r}"
            raise EvalError(message, column=match.start() + 1, text=text)
        tokens.append(Token(kind, match.group(), match.start() + 1))
    return tokens


def _to_number(text: str) -> Union[int, float]:
    # float() turns literals too large for a double into inf
    if "." in text or len(text.lstrip("0")) > MAX_EXACT_DIGITS:
        return float(text)
    return int(text)


def _bound_int(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > MAX_EXACT_INT:
        return float(value)
    return value


class _Parser:
    """Recursive-descent parser for the arithmetic/relational grammar.

    comparison := additive [cmp_op additive]
    additive   := term (('+' | '-') term)*
    term       := unary (('*' | '/') unary)*
    unary      := ('-' | '+') unary | primary
    primary    := NUMBER | STRING | NAME | '(' comparison ')'
    """

    def __init__(self, tokens: List[Token], text: str):
        self.tokens = tokens
        self.text = text
        self.pos = 0

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, *ops: str) -> Optional[str]:
        tok = self._peek()
        if tok is not None and tok.kind == "OP" and tok.text in ops:
            self.pos += 1
            return tok.text
        return None

    def _error(self, message: str, tok: Optional[Token] = None) -> EvalError:
        column = tok.column if tok is not None else len(self.text) + 1
        return EvalError(message, column=column, text=self.text)

    def parse(self) -> Node:
        if not self.tokens:
            raise EvalError("Empty expression", column=1, text=self.text)
        node = self._comparison()
        tok = self._peek()
        if tok is not None:
            raise self._error(f"Unexpected token {tok.text!r}", tok)
        return node

    def _comparison(self) -> Node:
        left = self._additive()
        op = self._accept(*COMPARISON_OPS)
        if op is None:
            return left
        right = self._additive()
        tok = self._peek()
        if tok is not None and tok.kind == "OP" and tok.text in COMPARISON_OPS:
            raise self._error("Chained comparisons not supported", tok)
        return BinOp(op, left, right)

    def _additive(self) -> Node:
        node = self._term()
        op = self._accept("+", "-")
        while op is not None:
            node = BinOp(op, node, self._term())
            op = self._accept("+", "-")
        return node

    def _term(self) -> Node:
        node = self._unary()
        op = self._accept("*", "/")
        while op is not None:
            node = BinOp(op, node, self._unary())
            op = self._accept("*", "/")
        return node

    def _unary(self) -> Node:
        op = self._accept("-", "+")
        if op is not None:
            return UnaryOp(op, self._unary())
        return self._primary()

    def _primary(self) -> Node:
        tok = self._peek()
        if tok is None:
            raise self._error("Unexpected end of expression")
        self.pos += 1
        if tok.kind == "NUMBER":
            return Literal(_to_number(tok.text))
        if tok.kind == "STRING":
            return Literal(tok.text[1:-1])
        if tok.kind == "NAME":
            return VariableRef(tok.text)
        if tok.text == "(":
            node = self._comparison()
            if self._accept(")") is None:
                raise self._error("Missing closing parenthesis", self._peek())
            return node
        raise self._error(f"Unexpected token {tok.text!r}", tok)


def _has_operator_outside_quotes(text: str) -> bool:
    # even segments of a split on '"' are the unquoted parts
    return any(OPERATOR_RE.search(segment) for segment in text.split('"')[::2])


def _parse_interpolated(text: str) -> Expression:
    parts: List[Union[Literal, VariableRef]] = []
    for index, segment in enumerate(text.split('"')):
        if index % 2:
            parts.append(Literal(segment))
            continue
        for word in segment.split():
            if NUMBER_RE.fullmatch(word):
                parts.append(Literal(format_value(_to_number(word))))
            elif word.isidentifier():
                parts.append(VariableRef(word))
            else:
                parts.append(Literal(f'"{word}"'))
    if len(parts) == 1 and isinstance(parts[0], Literal):
        return parts[0]
    return Interpolated(tuple(parts))


def parse_expression(text: str) -> Expression:
    """Classify `text` into a tagged expression form.

    Text containing a double quote is interpolation unless an operator
    appears outside the quotes, in which case the quoted parts are string
    literals inside an arithmetic/relational expression (`x == "yes"`).

    Raises:
        EvalError: on empty input or arithmetic syntax errors.
    """
    stripped = text.strip()
    if not stripped:
        raise EvalError("Empty expression", column=1, text=text)
    if '"' in stripped and not _has_operator_outside_quotes(stripped):
        return _parse_interpolated(stripped)
    node = _Parser(tokenize(stripped), stripped).parse()
    if isinstance(node, (Literal, VariableRef)):
        return node
    return Arithmetic(node)


def format_value(value: Any) -> str:
    """Render a runtime value the way `print` shows it."""
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
    return str(value)


def is_truthy(value: Any) -> bool:
    if value is None or value is MISSING:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float))


def _describe(value: Any) -> str:
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, str):
        return "string"
    return "number"


def _apply_unary(op: str, operand: Any) -> Any:
    if not _is_number(operand):
        raise EvalError(f"Unary '{op}' needs a number, got {_describe(operand)}")
    return -operand if op == "-" else +operand


def _apply_binary(op: str, left: Any, right: Any) -> Any:
    if op == "+" and (isinstance(left, str) or isinstance(right, str)):
        return format_value(left) + format_value(right)
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    if op in COMPARISON_OPS:
        same_kind = (_is_number(left) and _is_number(right)) or (
            isinstance(left, str) and isinstance(right, str)
        )
        if not same_kind:
            raise EvalError(f"Cannot compare {_describe(left)} and {_describe(right)}")
        if op == "<":
            return left < right
        if op == ">":
            return left > right
        if op == "<=":
            return left <= right
        return left >= right
    if not (_is_number(left) and _is_number(right)):
        raise EvalError(f"Operator '{op}' needs numbers, got {_describe(left)} and {_describe(right)}")
    if op == "+":
        return _bound_int(left + right)
    if op == "-":
        return _bound_int(left - right)
    if op == "*":
        return _bound_int(left * right)
    if op == "/":
        if right == 0:
            raise EvalError("Division by zero")
        return left / right
    raise EvalError(f"Unsupported operator {op!r}")


def _evaluate_node(node: Node, env: Environment) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, VariableRef):
        value = env.lookup_variable(node.name)
        if value is not MISSING:
            return value
        if node.name in CONSTANTS:
            return CONSTANTS[node.name]
        raise EvalError(f"Undefined variable '{node.name}'")
    if isinstance(node, UnaryOp):
        return _apply_unary(node.op, _evaluate_node(node.operand, env))
    if isinstance(node, BinOp):
        left = _evaluate_node(node.left, env)
        right = _evaluate_node(node.right, env)
        return _apply_binary(node.op, left, right)
    raise EvalError(f"Unsupported expression: {type(node).__name__}")


def _interpolate(part: Union[Literal, VariableRef], env: Environment) -> str:
    if isinstance(part, Literal):
        return str(part.value)
    value = env.lookup_variable(part.name)
    if value is MISSING:
        # unresolved words stay visible as a quoted fragment
        return f'"{part.name}"'
    return format_value(value)


def eval_expr(expr: str, env: Environment) -> Any:
    """Evaluate an expression fragment against `env`.

    Resolution order:
    1. the whole trimmed fragment is the name of a bound variable,
    2. interpolation (quoted text with bare words),
    3. literal, variable reference or arithmetic/relational expression.

    Raises:
        EvalError: when the fragment cannot be parsed or evaluated.
    """
    value = env.lookup_variable(expr.strip())
    if value is not MISSING:
        return value
    try:
        form = parse_expression(expr)
        if isinstance(form, Interpolated):
            return "".join(_interpolate(part, env) for part in form.parts)
        node = form.node if isinstance(form, Arithmetic) else form
        return _evaluate_node(node, env)
    except EvalError as e:
        if e.text is None:
            e.text = expr
        raise
    except (TypeError, ValueError, OverflowError) as e:
        raise EvalError(str(e), text=expr) from e
