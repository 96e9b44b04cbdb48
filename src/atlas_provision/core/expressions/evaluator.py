# src/atlas_provision/core/expressions/evaluator.py
"""
Avaliador de expressões do Atlas Provision.

Avalia nós da AST (`parser.py`) sobre um `Scope` de valores já resolvidos.
O avaliador é puro: não cria recursos, não lê state, não faz I/O.

Regras semânticas (v1):
    - UNKNOWN propaga por operadores, acessos, funções e templates
    - `false && x` e `true || x` não avaliam `x`
    - `+ - * / %` exigem números; divisão por zero é erro
    - `==` / `!=` usam igualdade estrita por variante
    - Comprehensions iteram listas por (índice, valor), maps na ordem de
      inserção e sets na ordem canônica
    - Comprehension que produz map com chave repetida → DuplicateKeyError
    - Atributo ausente de uma instância de recurso é UNKNOWN (calculado
      pelo provider no apply); atributo ausente de um map comum é erro

Limites explícitos:
    - Não resolve ordem de avaliação (responsabilidade do grafo)
    - Não expande instâncias
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from ..exceptions import DuplicateKeyError, ExpressionError
from ..values import (
    UNKNOWN,
    ValueConversionError,
    ValueKind,
    is_known,
    iter_set,
    kind_of,
    to_display_string,
    values_equal,
)
from .functions import FunctionCallError, call_function
from .parser import (
    Binary,
    Call,
    Conditional,
    ForExpr,
    GetAttr,
    Index,
    ListExpr,
    Literal,
    MapExpr,
    Node,
    Splat,
    Template,
    Unary,
    Variable,
)


class InstanceObject(dict):
    """Atributos de uma instância de recurso; atributo ausente é UNKNOWN."""


class Scope:
    """Tabela encadeada de nomes visíveis durante a avaliação."""

    def __init__(self, roots: Mapping[str, Any], parent: Optional["Scope"] = None):
        self.roots = dict(roots)
        self.parent = parent

    def lookup(self, name: str) -> Any:
        scope: Optional[Scope] = self
        while scope is not None:
            if name in scope.roots:
                return scope.roots[name]
            scope = scope.parent
        raise KeyError(name)

    def child(self, bindings: Mapping[str, Any]) -> "Scope":
        return Scope(bindings, parent=self)


class ExpressionEvaluator:
    """
    Avalia expressões em nome de uma declaração.

    `declaration` é a identidade usada nos detalhes de erro
    (ex.: `aws_instance.web`, `module.net.local.cidr`).
    """

    def __init__(self, *, declaration: str = ""):
        self.declaration = declaration

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------
    def evaluate(self, node: Node, scope: Scope) -> Any:
        method = getattr(self, f"_eval_{type(node).__name__}")
        return method(node, scope)

    def evaluate_tree(self, tree: Any, scope: Scope) -> Any:
        """Avalia uma árvore de atributos (dict/list de literais e nós)."""
        if isinstance(tree, Node):
            return self.evaluate(tree, scope)
        if isinstance(tree, dict):
            return {k: self.evaluate_tree(v, scope) for k, v in tree.items()}
        if isinstance(tree, list):
            return [self.evaluate_tree(v, scope) for v in tree]
        return tree

    # ------------------------------------------------------------------
    # Erros
    # ------------------------------------------------------------------
    def _error(self, message: str, **details: Any) -> ExpressionError:
        return ExpressionError(
            message=message,
            details={"declaration": self.declaration, **details},
            hint="Revise a expressão da declaração indicada",
        )

    # ------------------------------------------------------------------
    # Nós
    # ------------------------------------------------------------------
    def _eval_Literal(self, node: Literal, scope: Scope) -> Any:
        return node.value

    def _eval_Template(self, node: Template, scope: Scope) -> Any:
        chunks: List[str] = []
        unknown = False
        for part in node.parts:
            value = self.evaluate(part, scope)
            if not is_known(value):
                unknown = True
                continue
            if value is None:
                raise self._error("valor null não pode ser interpolado em template")
            try:
                chunks.append(to_display_string(value))
            except ValueConversionError as e:
                raise self._error(f"interpolação inválida: {e}") from e
        return UNKNOWN if unknown else "".join(chunks)

    def _eval_Variable(self, node: Variable, scope: Scope) -> Any:
        try:
            return scope.lookup(node.name)
        except KeyError:
            raise self._error(f"nome desconhecido: {node.name}", reference=node.name) from None

    def _eval_GetAttr(self, node: GetAttr, scope: Scope) -> Any:
        return self._get_attr(self.evaluate(node.obj, scope), node.name)

    def _get_attr(self, obj: Any, name: str) -> Any:
        if obj is UNKNOWN:
            return UNKNOWN
        if isinstance(obj, Mapping):
            if name in obj:
                return obj[name]
            if isinstance(obj, InstanceObject):
                return UNKNOWN
            raise self._error(f"atributo inexistente: {name}", attribute=name)
        kind = kind_of(obj)
        if kind is ValueKind.LIST:
            raise self._error(
                f"acesso .{name} em lista; use índice ([0]) ou splat ([*])",
                attribute=name,
            )
        raise self._error(f"acesso .{name} em valor {kind.value}", attribute=name)

    def _eval_Index(self, node: Index, scope: Scope) -> Any:
        return self._get_index(self.evaluate(node.obj, scope), self.evaluate(node.key, scope))

    def _get_index(self, obj: Any, key: Any) -> Any:
        if obj is UNKNOWN or key is UNKNOWN:
            return UNKNOWN
        kind = kind_of(obj)
        if kind is ValueKind.LIST:
            if kind_of(key) is not ValueKind.NUMBER or (isinstance(key, float) and not key.is_integer()):
                raise self._error(f"índice de lista deve ser inteiro, recebido {key!r}")
            idx = int(key)
            if idx < 0 or idx >= len(obj):
                raise self._error(f"índice {idx} fora do intervalo (tamanho {len(obj)})", index=idx)
            return obj[idx]
        if kind is ValueKind.MAP:
            if kind_of(key) is not ValueKind.STRING:
                raise self._error(f"chave de map deve ser string, recebido {key!r}")
            if key in obj:
                return obj[key]
            if isinstance(obj, InstanceObject):
                return UNKNOWN
            raise self._error(f"chave inexistente: {key!r}", key=key)
        if kind is ValueKind.SET:
            raise self._error("sets não são indexáveis; use tolist(...)")
        raise self._error(f"valor {kind.value} não é indexável")

    def _eval_Splat(self, node: Splat, scope: Scope) -> Any:
        source = self.evaluate(node.source, scope)
        if source is UNKNOWN:
            return UNKNOWN
        if source is None:
            return []
        kind = kind_of(source)
        if kind is ValueKind.SET:
            items = iter_set(source)
        elif kind is ValueKind.LIST:
            items = list(source)
        else:
            items = [source]
        out: List[Any] = []
        for item in items:
            for step, arg in node.steps:
                if step == "attr":
                    item = self._get_attr(item, arg)
                else:
                    item = self._get_index(item, self.evaluate(arg, scope))
            out.append(item)
        return out

    def _eval_ListExpr(self, node: ListExpr, scope: Scope) -> Any:
        return [self.evaluate(item, scope) for item in node.items]

    def _map_key(self, key: Any) -> str:
        if kind_of(key) in (ValueKind.STRING, ValueKind.NUMBER, ValueKind.BOOL):
            return to_display_string(key)
        raise self._error(f"chave de map deve ser primitiva, recebido {kind_of(key).value}")

    def _eval_MapExpr(self, node: MapExpr, scope: Scope) -> Any:
        out: Dict[str, Any] = {}
        unknown = False
        for key_node, value_node in node.items:
            key = self.evaluate(key_node, scope)
            value = self.evaluate(value_node, scope)
            if key is UNKNOWN:
                unknown = True
                continue
            key = self._map_key(key)
            if key in out:
                raise DuplicateKeyError(
                    message=f"chave duplicada em construtor de map: {key!r}",
                    details={"declaration": self.declaration, "key": key},
                )
            out[key] = value
        return UNKNOWN if unknown else out

    def _eval_Unary(self, node: Unary, scope: Scope) -> Any:
        value = self.evaluate(node.operand, scope)
        if value is UNKNOWN:
            return UNKNOWN
        kind = kind_of(value)
        if node.op == "!":
            if kind is not ValueKind.BOOL:
                raise self._error(f"operador ! exige bool, recebido {kind.value}")
            return not value
        if kind is not ValueKind.NUMBER:
            raise self._error(f"operador - exige number, recebido {kind.value}")
        return -value

    def _require_bool(self, value: Any, op: str) -> None:
        if value is not UNKNOWN and kind_of(value) is not ValueKind.BOOL:
            raise self._error(f"operador {op} exige bool, recebido {kind_of(value).value}")

    def _eval_Binary(self, node: Binary, scope: Scope) -> Any:
        op = node.op
        left = self.evaluate(node.left, scope)

        if op in ("&&", "||"):
            self._require_bool(left, op)
            if op == "&&" and left is False:
                return False
            if op == "||" and left is True:
                return True
            right = self.evaluate(node.right, scope)
            self._require_bool(right, op)
            if left is UNKNOWN or right is UNKNOWN:
                return UNKNOWN
            return right

        right = self.evaluate(node.right, scope)
        if left is UNKNOWN or right is UNKNOWN:
            return UNKNOWN

        if op == "==":
            return values_equal(left, right)
        if op == "!=":
            return not values_equal(left, right)

        for side in (left, right):
            if kind_of(side) is not ValueKind.NUMBER:
                raise self._error(f"operador {op} exige number, recebido {kind_of(side).value}")

        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            if right == 0:
                raise self._error("divisão por zero")
            if isinstance(left, int) and isinstance(right, int) and left % right == 0:
                return left // right
            return left / right
        if op == "%":
            if right == 0:
                raise self._error("módulo por zero")
            return left % right
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
        raise self._error(f"operador desconhecido: {op}")

    def _eval_Conditional(self, node: Conditional, scope: Scope) -> Any:
        cond = self.evaluate(node.condition, scope)
        if cond is UNKNOWN:
            return UNKNOWN
        if kind_of(cond) is not ValueKind.BOOL:
            raise self._error(f"condição deve ser bool, recebido {kind_of(cond).value}")
        return self.evaluate(node.when_true if cond else node.when_false, scope)

    def _eval_Call(self, node: Call, scope: Scope) -> Any:
        args = [self.evaluate(a, scope) for a in node.args]
        if node.expand_final and args:
            last = args.pop()
            if last is UNKNOWN:
                return UNKNOWN
            kind = kind_of(last)
            if kind is ValueKind.SET:
                args.extend(iter_set(last))
            elif kind is ValueKind.LIST:
                args.extend(last)
            else:
                raise self._error(f"'...' exige list ou set, recebido {kind.value}")
        try:
            return call_function(node.name, args)
        except (FunctionCallError, ValueConversionError) as e:
            raise self._error(str(e), function=node.name) from e

    def _iterate(self, collection: Any) -> List[Any]:
        kind = kind_of(collection)
        if kind is ValueKind.LIST:
            return list(enumerate(collection))
        if kind is ValueKind.MAP:
            return list(collection.items())
        if kind is ValueKind.SET:
            return [(v, v) for v in iter_set(collection)]
        raise self._error(f"'for' exige list, map ou set, recebido {kind.value}")

    def _eval_ForExpr(self, node: ForExpr, scope: Scope) -> Any:
        collection = self.evaluate(node.collection, scope)
        if collection is UNKNOWN:
            return UNKNOWN

        items: List[Any] = []
        result: Dict[str, Any] = {}
        unknown = False
        for key, value in self._iterate(collection):
            bindings = {node.value_var: value}
            if node.key_var is not None:
                bindings[node.key_var] = key
            inner = scope.child(bindings)

            if node.condition is not None:
                keep = self.evaluate(node.condition, inner)
                if keep is UNKNOWN:
                    return UNKNOWN
                if kind_of(keep) is not ValueKind.BOOL:
                    raise self._error(f"condição 'if' deve ser bool, recebido {kind_of(keep).value}")
                if not keep:
                    continue

            out_value = self.evaluate(node.value, inner)
            if not node.produces_map:
                items.append(out_value)
                continue

            out_key = self.evaluate(node.key, inner)
            if out_key is UNKNOWN:
                unknown = True
                continue
            out_key = self._map_key(out_key)
            if out_key in result:
                raise DuplicateKeyError(
                    message=f"chave duplicada produzida por comprehension: {out_key!r}",
                    details={"declaration": self.declaration, "key": out_key},
                    hint="Garanta que a expressão de chave seja única por elemento",
                )
            result[out_key] = out_value

        if not node.produces_map:
            return items
        return UNKNOWN if unknown else result
