# src/atlas_provision/core/expressions/parser.py
"""
Parser de expressões `${...}` do Atlas Provision.

Este módulo transforma texto em uma AST imutável, sem avaliar nada. A AST é
usada por dois consumidores:
    - o Dependency Graph Builder (análise estática de referências)
    - o avaliador (cálculo de valores sobre escopos já resolvidos)

Gramática suportada (v1):
    - literais: números, strings entre aspas (com templates aninhados),
      `true`, `false`, `null`
    - referências: `var.x`, `local.x`, `count.index`, `each.key`,
      `<tipo>.<nome>`, `module.<nome>.<output>`, `workspace.name`
    - acesso `.attr`, índice `[expr]`, splat `[*]`
    - construtores `[a, b]` e `{chave = valor}`
    - operadores `! -`, `* / %`, `+ -`, `< <= > >=`, `== !=`, `&&`, `||`,
      condicional `c ? a : b`
    - chamadas de função `f(a, b)` (com `...` expandindo o último argumento)
    - comprehensions `[for x in c : v if cond]` e
      `{for k, v in c : chave => valor if cond}`

Decisões arquiteturais:
    - Uma string que é exatamente um `${expr}` produz o valor bruto da
      expressão; qualquer outro texto vira template (resultado string)
    - `$${` escapa uma interpolação literal
    - Identificadores não aceitam hífen (`a-b` é subtração)
    - Erros de sintaxe levantam `ExpressionSyntaxError` com a posição

Limites explícitos:
    - Não resolve referências nem valida existência de declarações
    - Não avalia funções
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Optional, Set, Tuple


class ExpressionSyntaxError(ValueError):
    """Texto de expressão malformado."""

    def __init__(self, message: str, *, source: str = "", position: Optional[int] = None):
        super().__init__(message)
        self.source = source
        self.position = position


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

class Node:
    """Base de todos os nós da AST."""


@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class Template(Node):
    parts: Tuple[Node, ...]


@dataclass(frozen=True)
class Variable(Node):
    name: str


@dataclass(frozen=True)
class GetAttr(Node):
    obj: Node
    name: str


@dataclass(frozen=True)
class Index(Node):
    obj: Node
    key: Node


@dataclass(frozen=True)
class Splat(Node):
    source: Node
    # passos aplicados a cada elemento: ("attr", nome) | ("index", Node)
    steps: Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class ListExpr(Node):
    items: Tuple[Node, ...]


@dataclass(frozen=True)
class MapExpr(Node):
    items: Tuple[Tuple[Node, Node], ...]


@dataclass(frozen=True)
class Unary(Node):
    op: str
    operand: Node


@dataclass(frozen=True)
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Conditional(Node):
    condition: Node
    when_true: Node
    when_false: Node


@dataclass(frozen=True)
class Call(Node):
    name: str
    args: Tuple[Node, ...]
    expand_final: bool = False


@dataclass(frozen=True)
class ForExpr(Node):
    key_var: Optional[str]
    value_var: str
    collection: Node
    value: Node
    key: Optional[Node] = None  # presente apenas na forma que produz map
    condition: Optional[Node] = None

    @property
    def produces_map(self) -> bool:
        return self.key is not None


# ---------------------------------------------------------------------------
# Tokenização
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Token:
    kind: str  # NUMBER | STRING | IDENT | OP | EOF
    value: Any
    pos: int


_NUMBER_RE = re.compile(r"\d+(\.\d+)?([eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_OPERATORS = (
    "...", "=>", "==", "!=", "<=", ">=", "&&", "||",
    "(", ")", "[", "]", "{", "}", ",", ".", ":", "?", "=",
    "<", ">", "!", "+", "-", "*", "/", "%",
)


def _skip_string(text: str, start: int) -> int:
    """Retorna o índice após a aspa que fecha a string iniciada em `start`."""
    k = start + 1
    n = len(text)
    while k < n:
        ch = text[k]
        if ch == "\\":
            k += 2
            continue
        if text.startswith("${", k):
            k = _find_closing(text, k + 2) + 1
            continue
        if ch == '"':
            return k + 1
        k += 1
    raise ExpressionSyntaxError("string sem aspa de fechamento", source=text, position=start)


def _find_closing(text: str, start: int) -> int:
    """Índice do `}` que fecha uma interpolação cujo conteúdo começa em `start`."""
    depth = 1
    j = start
    n = len(text)
    while j < n:
        ch = text[j]
        if ch == '"':
            j = _skip_string(text, j)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return j
        j += 1
    raise ExpressionSyntaxError("interpolação `${` sem `}` de fechamento", source=text, position=start - 2)


def tokenize(text: str) -> List[Token]:
    """Quebra o texto de uma expressão em tokens."""
    tokens: List[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch.isdigit():
            m = _NUMBER_RE.match(text, i)
            raw = m.group(0)
            value = float(raw) if (m.group(1) or m.group(2)) else int(raw)
            tokens.append(Token("NUMBER", value, i))
            i = m.end()
            continue
        if ch.isalpha() or ch == "_":
            m = _IDENT_RE.match(text, i)
            tokens.append(Token("IDENT", m.group(0), i))
            i = m.end()
            continue
        if ch == '"':
            end = _skip_string(text, i)
            tokens.append(Token("STRING", text[i + 1:end - 1], i))
            i = end
            continue
        for op in _OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token("OP", op, i))
                i += len(op)
                break
        else:
            raise ExpressionSyntaxError(f"caractere inesperado {ch!r}", source=text, position=i)
    tokens.append(Token("EOF", None, n))
    return tokens


# ---------------------------------------------------------------------------
# Parser (descida recursiva)
# ---------------------------------------------------------------------------

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.i = 0

    # -- navegação ---------------------------------------------------------
    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.i + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def at_op(self, *values: str) -> bool:
        tok = self.peek()
        return tok.kind == "OP" and tok.value in values

    def at_keyword(self, word: str) -> bool:
        tok = self.peek()
        return tok.kind == "IDENT" and tok.value == word

    def expect_op(self, value: str) -> Token:
        if not self.at_op(value):
            self._error(f"esperado {value!r}")
        return self.advance()

    def expect_ident(self) -> str:
        tok = self.peek()
        if tok.kind != "IDENT":
            self._error("esperado identificador")
        self.advance()
        return tok.value

    def _error(self, message: str) -> None:
        tok = self.peek()
        found = "fim da expressão" if tok.kind == "EOF" else repr(tok.value)
        raise ExpressionSyntaxError(f"{message}, encontrado {found}", source=self.text, position=tok.pos)

    # -- gramática ---------------------------------------------------------
    def parse(self) -> Node:
        if self.peek().kind == "EOF":
            self._error("expressão vazia")
        node = self.expression()
        if self.peek().kind != "EOF":
            self._error("token inesperado")
        return node

    def expression(self) -> Node:
        cond = self.binary(0)
        if self.at_op("?"):
            self.advance()
            when_true = self.expression()
            self.expect_op(":")
            when_false = self.expression()
            return Conditional(cond, when_true, when_false)
        return cond

    _LEVELS = (
        ("||",),
        ("&&",),
        ("==", "!="),
        ("<", "<=", ">", ">="),
        ("+", "-"),
        ("*", "/", "%"),
    )

    def binary(self, level: int) -> Node:
        if level == len(self._LEVELS):
            return self.unary()
        left = self.binary(level + 1)
        while self.at_op(*self._LEVELS[level]):
            op = self.advance().value
            right = self.binary(level + 1)
            left = Binary(op, left, right)
        return left

    def unary(self) -> Node:
        if self.at_op("!", "-"):
            op = self.advance().value
            return Unary(op, self.unary())
        return self.postfix()

    def postfix(self) -> Node:
        node = self.primary()
        while True:
            if self.at_op("."):
                self.advance()
                node = GetAttr(node, self.expect_ident())
            elif self.at_op("[") and self.peek(1).kind == "OP" and self.peek(1).value == "*":
                self.advance()
                self.advance()
                self.expect_op("]")
                node = Splat(node, self._splat_steps())
            elif self.at_op("["):
                self.advance()
                key = self.expression()
                self.expect_op("]")
                node = Index(node, key)
            else:
                return node

    def _splat_steps(self) -> Tuple[Tuple[str, Any], ...]:
        steps: List[Tuple[str, Any]] = []
        while True:
            if self.at_op("."):
                self.advance()
                steps.append(("attr", self.expect_ident()))
            elif self.at_op("[") and not (self.peek(1).kind == "OP" and self.peek(1).value == "*"):
                self.advance()
                key = self.expression()
                self.expect_op("]")
                steps.append(("index", key))
            else:
                return tuple(steps)

    def primary(self) -> Node:
        tok = self.peek()
        if tok.kind == "NUMBER":
            self.advance()
            return Literal(tok.value)
        if tok.kind == "STRING":
            self.advance()
            return parse_template(tok.value, escapes=True)
        if tok.kind == "IDENT":
            self.advance()
            if tok.value == "true":
                return Literal(True)
            if tok.value == "false":
                return Literal(False)
            if tok.value == "null":
                return Literal(None)
            if self.at_op("("):
                return self.call(tok.value)
            return Variable(tok.value)
        if self.at_op("("):
            self.advance()
            node = self.expression()
            self.expect_op(")")
            return node
        if self.at_op("["):
            self.advance()
            if self.at_keyword("for"):
                return self.for_expr(closing="]")
            items: List[Node] = []
            while not self.at_op("]"):
                items.append(self.expression())
                if not self.at_op("]"):
                    self.expect_op(",")
            self.advance()
            return ListExpr(tuple(items))
        if self.at_op("{"):
            self.advance()
            if self.at_keyword("for"):
                return self.for_expr(closing="}")
            pairs: List[Tuple[Node, Node]] = []
            while not self.at_op("}"):
                if self.peek().kind == "IDENT" and self.peek(1).kind == "OP" and self.peek(1).value in ("=", ":"):
                    key: Node = Literal(self.advance().value)
                else:
                    key = self.expression()
                if not self.at_op("=", ":"):
                    self._error("esperado '=' ou ':' em construtor de map")
                self.advance()
                pairs.append((key, self.expression()))
                if self.at_op(","):
                    self.advance()
            self.advance()
            return MapExpr(tuple(pairs))
        self._error("expressão inválida")
        raise AssertionError("unreachable")  # pragma: no cover

    def call(self, name: str) -> Node:
        self.expect_op("(")
        args: List[Node] = []
        expand_final = False
        while not self.at_op(")"):
            args.append(self.expression())
            if self.at_op("..."):
                self.advance()
                expand_final = True
                if not self.at_op(")"):
                    self._error("'...' só é permitido no último argumento")
                break
            if not self.at_op(")"):
                self.expect_op(",")
        self.expect_op(")")
        return Call(name, tuple(args), expand_final)

    def for_expr(self, *, closing: str) -> Node:
        self.advance()  # for
        first = self.expect_ident()
        key_var: Optional[str] = None
        value_var = first
        if self.at_op(","):
            self.advance()
            key_var, value_var = first, self.expect_ident()
        if not self.at_keyword("in"):
            self._error("esperado 'in'")
        self.advance()
        collection = self.expression()
        self.expect_op(":")
        key: Optional[Node] = None
        value = self.expression()
        if closing == "}":
            self.expect_op("=>")
            key, value = value, self.expression()
        condition: Optional[Node] = None
        if self.at_keyword("if"):
            self.advance()
            condition = self.expression()
        self.expect_op(closing)
        return ForExpr(key_var, value_var, collection, value, key, condition)


def parse_expression(text: str) -> Node:
    """Interpreta o conteúdo de uma interpolação (sem `${` e `}`)."""
    return _Parser(text).parse()


def parse_template(text: str, *, escapes: bool = False) -> Node:
    """
    Interpreta uma string que pode conter interpolações `${...}`.

    Args:
        text: Texto bruto.
        escapes: Processa escapes de barra invertida (strings dentro de expressões).
            Strings vindas de YAML/JSON já chegam com escapes resolvidos.

    Returns:
        Node: `Literal` (sem interpolação), o próprio nó da expressão (quando o
        texto é exatamente um `${expr}`) ou `Template`.
    """
    parts: List[Node] = []
    buf: List[str] = []
    i = 0
    n = len(text)

    def flush() -> None:
        if buf:
            parts.append(Literal("".join(buf)))
            buf.clear()

    while i < n:
        if escapes and text[i] == "\\" and i + 1 < n:
            buf.append(_ESCAPES.get(text[i + 1], text[i + 1]))
            i += 2
        elif text.startswith("$${", i):
            buf.append("${")
            i += 3
        elif text.startswith("${", i):
            end = _find_closing(text, i + 2)
            flush()
            parts.append(parse_expression(text[i + 2:end]))
            i = end + 1
        else:
            buf.append(text[i])
            i += 1
    flush()

    if not parts:
        return Literal("")
    if len(parts) == 1:
        return parts[0]
    return Template(tuple(parts))


# ---------------------------------------------------------------------------
# Análise estática
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Reference:
    """Caminho estático de uma referência: raiz + atributos (`("var", "region")`)."""

    parts: Tuple[str, ...]

    @property
    def root(self) -> str:
        return self.parts[0]

    def __str__(self) -> str:
        return ".".join(self.parts)


def _static_path(node: Node) -> Optional[Tuple[str, ...]]:
    if isinstance(node, Variable):
        return (node.name,)
    if isinstance(node, GetAttr):
        base = _static_path(node.obj)
        return None if base is None else base + (node.name,)
    return None


def collect_references(node: Node) -> List[Reference]:
    """
    Lista as referências estáticas de uma expressão, em ordem de ocorrência.

    Nomes ligados por comprehensions (`for x in ...`) não são referências.
    Cada referência carrega o caminho estático máximo (`aws_instance.web.id`);
    o caminho para no primeiro índice ou splat.
    """
    out: List[Reference] = []
    _walk(node, frozenset(), out)
    return out


def _walk(node: Node, bound: frozenset, out: List[Reference]) -> None:
    if isinstance(node, (Variable, GetAttr)):
        path = _static_path(node)
        if path is not None:
            if path[0] not in bound:
                out.append(Reference(path))
            return
        _walk(node.obj, bound, out)
    elif isinstance(node, Literal):
        return
    elif isinstance(node, Template):
        for p in node.parts:
            _walk(p, bound, out)
    elif isinstance(node, Index):
        _walk(node.obj, bound, out)
        _walk(node.key, bound, out)
    elif isinstance(node, Splat):
        _walk(node.source, bound, out)
        for kind, arg in node.steps:
            if kind == "index":
                _walk(arg, bound, out)
    elif isinstance(node, ListExpr):
        for item in node.items:
            _walk(item, bound, out)
    elif isinstance(node, MapExpr):
        for k, v in node.items:
            _walk(k, bound, out)
            _walk(v, bound, out)
    elif isinstance(node, Unary):
        _walk(node.operand, bound, out)
    elif isinstance(node, Binary):
        _walk(node.left, bound, out)
        _walk(node.right, bound, out)
    elif isinstance(node, Conditional):
        _walk(node.condition, bound, out)
        _walk(node.when_true, bound, out)
        _walk(node.when_false, bound, out)
    elif isinstance(node, Call):
        for a in node.args:
            _walk(a, bound, out)
    elif isinstance(node, ForExpr):
        _walk(node.collection, bound, out)
        inner = bound | {node.value_var} | ({node.key_var} if node.key_var else set())
        _walk(node.value, inner, out)
        if node.key is not None:
            _walk(node.key, inner, out)
        if node.condition is not None:
            _walk(node.condition, inner, out)


def collect_function_names(node: Node) -> Set[str]:
    """Nomes de todas as funções chamadas em uma expressão."""
    names: Set[str] = set()
    stack: List[Any] = [node]
    while stack:
        cur = stack.pop()
        if isinstance(cur, Call):
            names.add(cur.name)
        if isinstance(cur, Node):
            for value in vars(cur).values():
                stack.append(value)
        elif isinstance(cur, tuple):
            stack.extend(cur)
    return names
