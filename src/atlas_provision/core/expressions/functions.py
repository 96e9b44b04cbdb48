# src/atlas_provision/core/expressions/functions.py
"""
Funções built-in disponíveis em expressões.

Todas as funções operam sobre o modelo fechado de `core.values`:
    - recebem argumentos já avaliados
    - nunca fazem coerção implícita entre variantes
    - devolvem UNKNOWN quando algum argumento ainda é desconhecido

Erros de uso (aridade, tipo de argumento) levantam `FunctionCallError`,
que o avaliador converte em `ExpressionError` com a identidade da declaração.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Any, Callable, Dict, List

from ..values import (
    UNKNOWN,
    ValueConversionError,
    ValueKind,
    is_known,
    iter_set,
    kind_of,
    make_set,
    to_display_string,
    values_equal,
)


class FunctionCallError(ValueError):
    """Uso inválido de função built-in."""


def _expect(value: Any, *kinds: ValueKind, fn: str, position: int = 1) -> ValueKind:
    kind = kind_of(value)
    if kind not in kinds:
        allowed = " ou ".join(k.value for k in kinds)
        raise FunctionCallError(f"{fn}: argumento {position} deve ser {allowed}, recebido {kind.value}")
    return kind


def _arity(args: List[Any], fn: str, minimum: int, maximum: int = -1) -> None:
    if len(args) < minimum or (maximum >= 0 and len(args) > maximum):
        expected = str(minimum) if minimum == maximum else f"{minimum}..{'n' if maximum < 0 else maximum}"
        raise FunctionCallError(f"{fn}: esperado {expected} argumento(s), recebido {len(args)}")


def _as_list(value: Any) -> List[Any]:
    if kind_of(value) is ValueKind.SET:
        return iter_set(value)
    return list(value)


# ---------------------------------------------------------------------------
# Conversões explícitas
# ---------------------------------------------------------------------------

def fn_toset(args: List[Any]) -> Any:
    _arity(args, "toset", 1, 1)
    _expect(args[0], ValueKind.LIST, ValueKind.SET, fn="toset")
    try:
        return make_set(args[0])
    except ValueConversionError as e:
        raise FunctionCallError(f"toset: {e}") from e


def fn_tolist(args: List[Any]) -> Any:
    _arity(args, "tolist", 1, 1)
    _expect(args[0], ValueKind.LIST, ValueKind.SET, fn="tolist")
    return _as_list(args[0])


def fn_tomap(args: List[Any]) -> Any:
    _arity(args, "tomap", 1, 1)
    _expect(args[0], ValueKind.MAP, fn="tomap")
    return dict(args[0])


def fn_tostring(args: List[Any]) -> Any:
    _arity(args, "tostring", 1, 1)
    if args[0] is None:
        return None
    try:
        return to_display_string(args[0])
    except ValueConversionError as e:
        raise FunctionCallError(f"tostring: {e}") from e


def fn_tonumber(args: List[Any]) -> Any:
    _arity(args, "tonumber", 1, 1)
    value = args[0]
    if value is None:
        return None
    kind = _expect(value, ValueKind.NUMBER, ValueKind.STRING, fn="tonumber")
    if kind is ValueKind.NUMBER:
        return value
    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        raise FunctionCallError(f"tonumber: {value!r} não é um número") from None


# ---------------------------------------------------------------------------
# Coleções
# ---------------------------------------------------------------------------

def fn_length(args: List[Any]) -> Any:
    _arity(args, "length", 1, 1)
    _expect(args[0], ValueKind.STRING, ValueKind.LIST, ValueKind.MAP, ValueKind.SET, fn="length")
    return len(args[0])


def fn_keys(args: List[Any]) -> Any:
    _arity(args, "keys", 1, 1)
    _expect(args[0], ValueKind.MAP, fn="keys")
    return sorted(args[0].keys())


def fn_values(args: List[Any]) -> Any:
    _arity(args, "values", 1, 1)
    _expect(args[0], ValueKind.MAP, fn="values")
    return [args[0][k] for k in sorted(args[0].keys())]


def fn_lookup(args: List[Any]) -> Any:
    _arity(args, "lookup", 2, 3)
    _expect(args[0], ValueKind.MAP, fn="lookup")
    _expect(args[1], ValueKind.STRING, fn="lookup", position=2)
    if args[1] in args[0]:
        return args[0][args[1]]
    if len(args) == 3:
        return args[2]
    raise FunctionCallError(f"lookup: chave {args[1]!r} ausente e nenhum default informado")


def fn_contains(args: List[Any]) -> Any:
    _arity(args, "contains", 2, 2)
    _expect(args[0], ValueKind.LIST, ValueKind.SET, fn="contains")
    return any(values_equal(item, args[1]) for item in args[0])


def fn_concat(args: List[Any]) -> Any:
    out: List[Any] = []
    for i, arg in enumerate(args, start=1):
        _expect(arg, ValueKind.LIST, fn="concat", position=i)
        out.extend(arg)
    return out


def fn_merge(args: List[Any]) -> Any:
    out: Dict[str, Any] = {}
    for i, arg in enumerate(args, start=1):
        if arg is None:
            continue
        _expect(arg, ValueKind.MAP, fn="merge", position=i)
        out.update(arg)
    return out


def fn_range(args: List[Any]) -> Any:
    _arity(args, "range", 1, 3)
    for i, a in enumerate(args, start=1):
        _expect(a, ValueKind.NUMBER, fn="range", position=i)
    if len(args) == 1:
        start, end, step = 0, args[0], 1
    else:
        start, end = args[0], args[1]
        step = args[2] if len(args) == 3 else (1 if end >= start else -1)
    if step == 0:
        raise FunctionCallError("range: step não pode ser zero")
    out: List[Any] = []
    cur = start
    while (step > 0 and cur < end) or (step < 0 and cur > end):
        out.append(cur)
        cur += step
    return out


def fn_element(args: List[Any]) -> Any:
    _arity(args, "element", 2, 2)
    _expect(args[0], ValueKind.LIST, fn="element")
    _expect(args[1], ValueKind.NUMBER, fn="element", position=2)
    if not args[0]:
        raise FunctionCallError("element: lista vazia")
    return args[0][int(args[1]) % len(args[0])]


def _flatten(items: List[Any], out: List[Any]) -> None:
    for item in items:
        if kind_of(item) is ValueKind.LIST:
            _flatten(item, out)
        else:
            out.append(item)


def fn_flatten(args: List[Any]) -> Any:
    _arity(args, "flatten", 1, 1)
    _expect(args[0], ValueKind.LIST, fn="flatten")
    out: List[Any] = []
    _flatten(args[0], out)
    return out


def fn_distinct(args: List[Any]) -> Any:
    _arity(args, "distinct", 1, 1)
    _expect(args[0], ValueKind.LIST, fn="distinct")
    out: List[Any] = []
    for item in args[0]:
        if not any(values_equal(item, seen) for seen in out):
            out.append(item)
    return out


def fn_zipmap(args: List[Any]) -> Any:
    _arity(args, "zipmap", 2, 2)
    _expect(args[0], ValueKind.LIST, fn="zipmap")
    _expect(args[1], ValueKind.LIST, fn="zipmap", position=2)
    if len(args[0]) != len(args[1]):
        raise FunctionCallError("zipmap: listas de chaves e valores com tamanhos diferentes")
    out: Dict[str, Any] = {}
    for k, v in zip(args[0], args[1]):
        _expect(k, ValueKind.STRING, fn="zipmap")
        out[k] = v
    return out


def fn_coalesce(args: List[Any]) -> Any:
    for arg in args:
        if arg is not None and arg != "":
            return arg
    raise FunctionCallError("coalesce: nenhum argumento não-nulo")


# ---------------------------------------------------------------------------
# Strings
# ---------------------------------------------------------------------------

def fn_join(args: List[Any]) -> Any:
    _arity(args, "join", 2, 2)
    _expect(args[0], ValueKind.STRING, fn="join")
    _expect(args[1], ValueKind.LIST, ValueKind.SET, fn="join", position=2)
    try:
        return args[0].join(to_display_string(v) for v in _as_list(args[1]))
    except ValueConversionError as e:
        raise FunctionCallError(f"join: {e}") from e


def fn_split(args: List[Any]) -> Any:
    _arity(args, "split", 2, 2)
    _expect(args[0], ValueKind.STRING, fn="split")
    _expect(args[1], ValueKind.STRING, fn="split", position=2)
    if args[0] == "":
        raise FunctionCallError("split: separador vazio")
    return args[1].split(args[0])


def fn_upper(args: List[Any]) -> Any:
    _arity(args, "upper", 1, 1)
    _expect(args[0], ValueKind.STRING, fn="upper")
    return args[0].upper()


def fn_lower(args: List[Any]) -> Any:
    _arity(args, "lower", 1, 1)
    _expect(args[0], ValueKind.STRING, fn="lower")
    return args[0].lower()


_FORMAT_RE = re.compile(r"%(\.\d+)?([sdfvq%])")


def fn_format(args: List[Any]) -> Any:
    _arity(args, "format", 1)
    _expect(args[0], ValueKind.STRING, fn="format")
    rest = list(args[1:])

    def render(m: "re.Match[str]") -> str:
        precision, verb = m.group(1), m.group(2)
        if verb == "%":
            return "%"
        if not rest:
            raise FunctionCallError("format: argumentos insuficientes para o formato")
        value = rest.pop(0)
        try:
            if verb == "d":
                _expect(value, ValueKind.NUMBER, fn="format")
                return str(int(value))
            if verb == "f":
                _expect(value, ValueKind.NUMBER, fn="format")
                digits = int(precision[1:]) if precision else 6
                return f"{value:.{digits}f}"
            if verb == "q":
                return '"' + to_display_string(value).replace('"', '\\"') + '"'
            return to_display_string(value)
        except ValueConversionError as e:
            raise FunctionCallError(f"format: {e}") from e

    out = _FORMAT_RE.sub(render, args[0])
    if rest:
        raise FunctionCallError("format: argumentos excedentes para o formato")
    return out


def fn_replace(args: List[Any]) -> Any:
    _arity(args, "replace", 3, 3)
    for i, a in enumerate(args, start=1):
        _expect(a, ValueKind.STRING, fn="replace", position=i)
    text, search, repl = args
    if len(search) >= 2 and search.startswith("/") and search.endswith("/"):
        try:
            return re.sub(search[1:-1], repl.replace("$", "\\"), text)
        except re.error as e:
            raise FunctionCallError(f"replace: regex inválida: {e}") from e
    return text.replace(search, repl)


# ---------------------------------------------------------------------------
# Rede
# ---------------------------------------------------------------------------

def _network(prefix: Any, fn: str) -> "ipaddress.IPv4Network | ipaddress.IPv6Network":
    _expect(prefix, ValueKind.STRING, fn=fn)
    try:
        return ipaddress.ip_network(prefix, strict=False)
    except ValueError as e:
        raise FunctionCallError(f"{fn}: prefixo inválido {prefix!r}") from e


def fn_cidrsubnet(args: List[Any]) -> Any:
    _arity(args, "cidrsubnet", 3, 3)
    net = _network(args[0], "cidrsubnet")
    _expect(args[1], ValueKind.NUMBER, fn="cidrsubnet", position=2)
    _expect(args[2], ValueKind.NUMBER, fn="cidrsubnet", position=3)
    newbits, netnum = int(args[1]), int(args[2])
    new_prefix = net.prefixlen + newbits
    if newbits < 0 or new_prefix > net.max_prefixlen:
        raise FunctionCallError(f"cidrsubnet: {newbits} bits extras excedem o prefixo {args[0]}")
    if netnum < 0 or netnum >= 2 ** newbits:
        raise FunctionCallError(f"cidrsubnet: netnum {netnum} fora do intervalo para {newbits} bits")
    base = int(net.network_address) + (netnum << (net.max_prefixlen - new_prefix))
    address = ipaddress.ip_address(base) if net.version == 4 else ipaddress.IPv6Address(base)
    return f"{address}/{new_prefix}"


def fn_cidrhost(args: List[Any]) -> Any:
    _arity(args, "cidrhost", 2, 2)
    net = _network(args[0], "cidrhost")
    _expect(args[1], ValueKind.NUMBER, fn="cidrhost", position=2)
    hostnum = int(args[1])
    size = net.num_addresses
    if hostnum < 0:
        hostnum += size
    if hostnum < 0 or hostnum >= size:
        raise FunctionCallError(f"cidrhost: host {args[1]} fora do prefixo {args[0]}")
    return str(net.network_address + hostnum)


FUNCTIONS: Dict[str, Callable[[List[Any]], Any]] = {
    "toset": fn_toset,
    "tolist": fn_tolist,
    "tomap": fn_tomap,
    "tostring": fn_tostring,
    "tonumber": fn_tonumber,
    "length": fn_length,
    "keys": fn_keys,
    "values": fn_values,
    "lookup": fn_lookup,
    "contains": fn_contains,
    "concat": fn_concat,
    "merge": fn_merge,
    "join": fn_join,
    "split": fn_split,
    "upper": fn_upper,
    "lower": fn_lower,
    "format": fn_format,
    "replace": fn_replace,
    "range": fn_range,
    "element": fn_element,
    "flatten": fn_flatten,
    "distinct": fn_distinct,
    "zipmap": fn_zipmap,
    "coalesce": fn_coalesce,
    "cidrsubnet": fn_cidrsubnet,
    "cidrhost": fn_cidrhost,
}


def call_function(name: str, args: List[Any]) -> Any:
    """Invoca uma função built-in; argumentos desconhecidos propagam UNKNOWN."""
    fn = FUNCTIONS.get(name)
    if fn is None:
        raise FunctionCallError(f"função desconhecida: {name}")
    if not all(is_known(a) for a in args):
        return UNKNOWN
    return fn(args)


__all__ = ["FUNCTIONS", "FunctionCallError", "call_function"]
