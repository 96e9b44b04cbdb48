# src/atlas_provision/core/values.py
"""
Modelo canônico de valores do Atlas Provision.

Este módulo define o conjunto **fechado** de tipos de valor que circulam por
declarações, variáveis, expressões e state:

    - string  → `str`
    - number  → `int` | `float` (nunca `bool`)
    - bool    → `bool`
    - list    → `list` (ordenada)
    - map     → `dict` com chaves string
    - set     → `frozenset` de primitivos (string, number, bool)
    - null    → `None`
    - unknown → `UNKNOWN` (valor só conhecido após apply)

Princípios fundamentais:
    - Nenhuma coerção implícita entre variantes
    - Conversão lista → set é sempre explícita (`toset`, ou tipo declarado `set(...)`)
    - Iteração de sets é determinística (ordem canônica)
    - Valores desconhecidos propagam, nunca são adivinhados

Decisões arquiteturais:
    - Valores são representados por tipos nativos do Python
    - `ValueKind` é a etiqueta explícita de cada variante
    - Sets persistidos em JSON são marcados (`{"__set__": [...]}`) para que o
      round-trip do state preserve a variante
    - Maps do usuário com uma única chave reservada (`__set__`, `__map__`,
      `__unknown__`) são envolvidos em `{"__map__": {...}}` na serialização
    - Sets não misturam bool e number quando os elementos colidem
      (`1` e `true`): a construção falha em vez de descartar um deles

Limites explícitos:
    - Não avalia expressões
    - Não conhece declarações, grafo ou state store
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


class ValueKind(str, Enum):
    """Etiqueta de variante do modelo fechado de valores."""

    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    LIST = "list"
    MAP = "map"
    SET = "set"
    NULL = "null"
    UNKNOWN = "unknown"


class _Unknown:
    """Sentinela de valor só conhecido após apply."""

    _instance: Optional["_Unknown"] = None

    def __new__(cls) -> "_Unknown":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __reduce__(self):
        return (_Unknown, ())


UNKNOWN = _Unknown()

SET_TAG = "__set__"
MAP_TAG = "__map__"
UNKNOWN_TAG = "__unknown__"

_RESERVED_TAGS = (SET_TAG, MAP_TAG, UNKNOWN_TAG)


class ValueConversionError(ValueError):
    """Valor não pode ser convertido para o tipo pedido (motivo em `args[0]`)."""


def kind_of(value: Any) -> ValueKind:
    """Retorna a variante de um valor; tipos fora do modelo são rejeitados."""
    if value is UNKNOWN:
        return ValueKind.UNKNOWN
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (frozenset, set)):
        return ValueKind.SET
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    if isinstance(value, Mapping):
        return ValueKind.MAP
    raise ValueConversionError(f"tipo de valor não suportado: {type(value).__name__}")


def is_known(value: Any) -> bool:
    """True se o valor (recursivamente) não contém UNKNOWN."""
    if value is UNKNOWN:
        return False
    if isinstance(value, Mapping):
        return all(is_known(v) for v in value.values())
    if isinstance(value, (list, tuple, frozenset, set)):
        return all(is_known(v) for v in value)
    return True


def _set_sort_key(item: Any) -> Tuple[int, Any]:
    if isinstance(item, bool):
        return (0, item)
    if isinstance(item, (int, float)):
        return (1, item)
    return (2, str(item))


def iter_set(values: Iterable[Any]) -> List[Any]:
    """Ordem canônica de iteração de um set (bool < number < string)."""
    return sorted(values, key=_set_sort_key)


def make_set(items: Iterable[Any]) -> Any:
    """
    Constrói um set explícito; elementos devem ser primitivos conhecidos.

    Python considera `1 == True`; um bool e um number iguais nesse sentido
    não podem coexistir no mesmo set e levantam ValueConversionError.
    """
    elements = []
    seen = {ValueKind.BOOL: set(), ValueKind.NUMBER: set()}
    for item in items:
        if item is UNKNOWN:
            return UNKNOWN
        kind = kind_of(item)
        if kind not in (ValueKind.STRING, ValueKind.NUMBER, ValueKind.BOOL):
            raise ValueConversionError(f"sets aceitam apenas string, number ou bool; recebido {kind.value}")
        if kind is not ValueKind.STRING:
            other = ValueKind.NUMBER if kind is ValueKind.BOOL else ValueKind.BOOL
            if item in seen[other]:
                raise ValueConversionError(f"set não pode conter {to_display_string(item)} junto de um {other.value} igual")
            seen[kind].add(item)
        elements.append(item)
    return frozenset(elements)


def values_equal(a: Any, b: Any) -> bool:
    """Igualdade estrita por variante (1 != true, [1] != toset([1]))."""
    ka, kb = kind_of(a), kind_of(b)
    if ValueKind.UNKNOWN in (ka, kb):
        return False
    if ka is not kb:
        return False
    if ka is ValueKind.LIST:
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if ka is ValueKind.MAP:
        return set(a.keys()) == set(b.keys()) and all(values_equal(a[k], b[k]) for k in a)
    if ka is ValueKind.SET:
        return len(a) == len(b) and all(any(values_equal(x, y) for y in b) for x in a)
    return a == b


def format_number(value: Any) -> str:
    """Renderização canônica de número (3.0 → "3")."""
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def to_display_string(value: Any) -> str:
    """Converte um primitivo para texto de template; coleções e null são rejeitados."""
    kind = kind_of(value)
    if kind is ValueKind.STRING:
        return value
    if kind is ValueKind.NUMBER:
        return format_number(value)
    if kind is ValueKind.BOOL:
        return "true" if value else "false"
    raise ValueConversionError(f"valor {kind.value} não pode ser convertido para string")


# ---------------------------------------------------------------------------
# Tipos declarados
# ---------------------------------------------------------------------------

_PRIMITIVES = {"string", "number", "bool", "any"}
_COLLECTIONS = {"list", "set", "map"}
_TYPE_RE = re.compile(r"^\s*([a-z]+)\s*(?:\((.*)\))?\s*$")


@dataclass(frozen=True)
class TypeSpec:
    """Tipo declarado de uma variável (ex.: `string`, `list(number)`, `map(any)`)."""

    name: str
    element: Optional["TypeSpec"] = None

    def __str__(self) -> str:
        if self.element is None:
            return self.name
        return f"{self.name}({self.element})"


ANY = TypeSpec("any")


def parse_type(text: Any) -> TypeSpec:
    """Interpreta a notação textual de tipo. Notação inválida → ValueConversionError."""
    if text is None:
        return ANY
    if not isinstance(text, str):
        raise ValueConversionError(f"tipo deve ser texto, recebido {type(text).__name__}")
    m = _TYPE_RE.match(text)
    if m is None:
        raise ValueConversionError(f"tipo inválido: {text!r}")
    name, inner = m.group(1), m.group(2)
    if name in _PRIMITIVES:
        if inner is not None:
            raise ValueConversionError(f"tipo {name} não aceita parâmetro: {text!r}")
        return TypeSpec(name)
    if name in _COLLECTIONS:
        element = parse_type(inner) if inner is not None and inner.strip() else ANY
        if name == "set" and element.name not in ("string", "number", "bool", "any"):
            raise ValueConversionError(f"sets aceitam apenas elementos primitivos: {text!r}")
        return TypeSpec(name, element)
    raise ValueConversionError(f"tipo desconhecido: {text!r}")


def convert_value(value: Any, spec: TypeSpec) -> Any:
    """
    Valida e converte um valor para o tipo declarado.

    Regras (v1):
        - null e UNKNOWN satisfazem qualquer tipo
        - `number` não aceita bool; `string` não aceita number
        - `list(T)` aceita apenas listas (sets exigem `tolist` explícito)
        - `set(T)` aceita set ou lista sem duplicatas: o tipo declarado
          é a conversão explícita
        - `map(T)` exige chaves string

    Raises:
        ValueConversionError: com o motivo da incompatibilidade.
    """
    if value is None or value is UNKNOWN:
        return value

    kind = kind_of(value)
    name = spec.name

    if name == "any":
        return normalize(value)
    if name == "string":
        if kind is not ValueKind.STRING:
            raise ValueConversionError(f"esperado string, recebido {kind.value}")
        return value
    if name == "number":
        if kind is not ValueKind.NUMBER:
            raise ValueConversionError(f"esperado number, recebido {kind.value}")
        return value
    if name == "bool":
        if kind is not ValueKind.BOOL:
            raise ValueConversionError(f"esperado bool, recebido {kind.value}")
        return value

    element = spec.element or ANY
    if name == "list":
        if kind is not ValueKind.LIST:
            raise ValueConversionError(f"esperado list, recebido {kind.value}")
        return [convert_value(v, element) for v in value]
    if name == "set":
        if kind is ValueKind.SET:
            items = list(value)
        elif kind is ValueKind.LIST:
            items = list(value)
            seen: List[Any] = []
            for item in items:
                if any(values_equal(item, s) for s in seen):
                    raise ValueConversionError(f"elemento duplicado em set: {item!r}")
                seen.append(item)
        else:
            raise ValueConversionError(f"esperado set, recebido {kind.value}")
        return make_set(convert_value(v, element) for v in items)
    if name == "map":
        if kind is not ValueKind.MAP:
            raise ValueConversionError(f"esperado map, recebido {kind.value}")
        out: Dict[str, Any] = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValueConversionError(f"chaves de map devem ser string, recebido {k!r}")
            out[k] = convert_value(v, element)
        return out
    raise ValueConversionError(f"tipo desconhecido: {spec}")


def normalize(value: Any) -> Any:
    """Normaliza estruturas nativas (tuple → list, set → frozenset) sem coerção."""
    kind = kind_of(value)
    if kind is ValueKind.LIST:
        return [normalize(v) for v in value]
    if kind is ValueKind.MAP:
        return {k: normalize(v) for k, v in value.items()}
    if kind is ValueKind.SET:
        return make_set(value)
    return value


# ---------------------------------------------------------------------------
# JSON (state / plano)
# ---------------------------------------------------------------------------

def _wrap_map(original: Mapping, encoded: Dict[str, Any]) -> Dict[str, Any]:
    if len(original) == 1 and next(iter(original)) in _RESERVED_TAGS:
        return {MAP_TAG: encoded}
    return encoded


def _tag_of(value: Dict[str, Any]) -> Optional[str]:
    if len(value) == 1:
        key = next(iter(value))
        if key in _RESERVED_TAGS:
            return key
    return None


def to_json_value(value: Any) -> Any:
    """Serializa um valor conhecido para JSON, marcando sets explicitamente."""
    kind = kind_of(value)
    if kind is ValueKind.UNKNOWN:
        raise ValueConversionError("valores desconhecidos não são persistíveis")
    if kind is ValueKind.SET:
        return {SET_TAG: iter_set(value)}
    if kind is ValueKind.LIST:
        return [to_json_value(v) for v in value]
    if kind is ValueKind.MAP:
        return _wrap_map(value, {k: to_json_value(v) for k, v in value.items()})
    return value


def from_json_value(value: Any) -> Any:
    """Inverso de `to_json_value`."""
    if isinstance(value, dict):
        tag = _tag_of(value)
        if tag == SET_TAG:
            return make_set(value[SET_TAG])
        if tag == MAP_TAG:
            return {k: from_json_value(v) for k, v in value[MAP_TAG].items()}
        return {k: from_json_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_json_value(v) for v in value]
    return value


def to_plan_value(value: Any) -> Any:
    """Como `to_json_value`, mas UNKNOWN vira o marcador `{"__unknown__": true}`."""
    if value is UNKNOWN:
        return {UNKNOWN_TAG: True}
    if isinstance(value, (frozenset, set)):
        return {SET_TAG: iter_set(value)}
    if isinstance(value, (list, tuple)):
        return [to_plan_value(v) for v in value]
    if isinstance(value, Mapping):
        return _wrap_map(value, {k: to_plan_value(v) for k, v in value.items()})
    return value


def from_plan_value(value: Any) -> Any:
    """Inverso de `to_plan_value`."""
    if isinstance(value, dict):
        tag = _tag_of(value)
        if tag == UNKNOWN_TAG and value[UNKNOWN_TAG] is True:
            return UNKNOWN
        if tag == SET_TAG:
            return make_set(value[SET_TAG])
        if tag == MAP_TAG:
            return {k: from_plan_value(v) for k, v in value[MAP_TAG].items()}
        return {k: from_plan_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_plan_value(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """Serialização JSON canônica (chaves ordenadas, separadores compactos)."""
    return json.dumps(to_plan_value(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
