# src/atlas_provision/core/expansion/expander.py
"""
Expansion Engine do Atlas Provision.

Transforma o valor avaliado de uma diretiva (`count` ou `for_each`) na lista
de chaves de instância de uma declaração.

Regras (v1):
    - sem diretiva → exatamente uma instância, sem chave
    - `count` → inteiro não negativo `n`; chaves `0..n-1`
    - `for_each` → map (uma instância por chave) ou set (uma por elemento,
      com `each.value == each.key`)
    - chaves de set são strings; números e bools são renderizados de forma
      canônica; chaves que colidem após a renderização → DuplicateKeyError
    - listas não são aceitas em `for_each` (conversão explícita via `toset`)
    - valor desconhecido na diretiva → UnknownValueError
    - mais instâncias que `engine.max_expansion` → ExpansionLimitError

Decisões arquiteturais:
    - O módulo é puro: não lê state, não avalia expressões, não faz I/O
    - A ordem das instâncias é determinística (índice numérico, chave textual)

Limites explícitos:
    - Não reaproveita state de endereços antigos (endereço novo é instância nova)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from ..exceptions import (
    DuplicateKeyError,
    ExpansionLimitError,
    TypeMismatchError,
    UnknownValueError,
)
from ..values import UNKNOWN, ValueKind, is_known, iter_set, kind_of, to_display_string


@dataclass(frozen=True)
class InstanceKey:
    """Chave de uma instância: None (sem diretiva), int (count) ou str (for_each)."""

    value: Union[None, int, str] = None

    def __str__(self) -> str:
        if self.value is None:
            return ""
        if isinstance(self.value, int):
            return f"[{self.value}]"
        return f"[{json.dumps(self.value, ensure_ascii=False)}]"

    def sort_key(self) -> Tuple[int, Any]:
        if self.value is None:
            return (0, 0)
        if isinstance(self.value, int):
            return (1, self.value)
        return (2, self.value)


NO_KEY = InstanceKey(None)


@dataclass(frozen=True)
class ExpandedInstance:
    """Uma ocorrência expandida: chave e, para `for_each`, o valor de `each.value`."""

    key: InstanceKey
    each_value: Any = None

    def bindings(self, directive_kind: Optional[str]) -> dict:
        """Raízes de escopo (`count`, `each`) disponíveis para a instância."""
        if directive_kind == "count":
            return {"count": {"index": self.key.value}}
        if directive_kind == "for_each":
            return {"each": {"key": self.key.value, "value": self.each_value}}
        return {}


def _check_limit(n: int, declaration: str, max_expansion: int) -> None:
    if n > max_expansion:
        raise ExpansionLimitError(
            message=f"{declaration} expande para {n} instâncias (limite {max_expansion})",
            details={"declaration": declaration, "instances": n, "max_expansion": max_expansion},
            hint="Reduza a diretiva ou aumente engine.max_expansion",
        )


def _unknown(declaration: str, directive: str) -> UnknownValueError:
    return UnknownValueError(
        message=f"{directive} de {declaration} depende de valores só conhecidos após apply",
        details={"declaration": declaration, "directive": directive},
        hint="Derive a diretiva de variables/locals, ou aplique antes as dependências",
    )


def expand_count(value: Any, *, declaration: str, max_expansion: int) -> List[ExpandedInstance]:
    if value is UNKNOWN:
        raise _unknown(declaration, "count")
    kind = kind_of(value)
    if kind is not ValueKind.NUMBER or (isinstance(value, float) and not value.is_integer()) or value < 0:
        raise TypeMismatchError(
            message=f"count de {declaration} deve ser inteiro não negativo, recebido {value!r}",
            details={"declaration": declaration, "directive": "count", "received": kind.value},
            hint="Use um número inteiro >= 0",
        )
    n = int(value)
    _check_limit(n, declaration, max_expansion)
    return [ExpandedInstance(InstanceKey(i)) for i in range(n)]


def expand_for_each(value: Any, *, declaration: str, max_expansion: int) -> List[ExpandedInstance]:
    if value is UNKNOWN:
        raise _unknown(declaration, "for_each")
    kind = kind_of(value)

    if kind is ValueKind.LIST:
        raise TypeMismatchError(
            message=f"for_each de {declaration} recebeu uma lista; esperado map ou set",
            details={"declaration": declaration, "directive": "for_each", "received": "list"},
            hint="Converta explicitamente com toset(...)",
        )

    if kind is ValueKind.MAP:
        items: List[Tuple[str, Any]] = list(value.items())
    elif kind is ValueKind.SET:
        if not is_known(value):
            raise _unknown(declaration, "for_each")
        items = []
        seen = {}
        for element in iter_set(value):
            if kind_of(element) not in (ValueKind.STRING, ValueKind.NUMBER, ValueKind.BOOL):
                raise TypeMismatchError(
                    message=f"elementos do set de for_each em {declaration} devem ser primitivos",
                    details={"declaration": declaration, "directive": "for_each"},
                )
            key = to_display_string(element)
            if key in seen:
                raise DuplicateKeyError(
                    message=f"for_each de {declaration} produz a chave {key!r} mais de uma vez",
                    details={"declaration": declaration, "key": key, "elements": [repr(seen[key]), repr(element)]},
                    hint="Garanta que os elementos sejam distintos após conversão para string",
                )
            seen[key] = element
            items.append((key, key))
    else:
        raise TypeMismatchError(
            message=f"for_each de {declaration} deve ser map ou set, recebido {kind.value}",
            details={"declaration": declaration, "directive": "for_each", "received": kind.value},
            hint="Use um map, ou toset(...) sobre uma lista",
        )

    _check_limit(len(items), declaration, max_expansion)
    instances = [ExpandedInstance(InstanceKey(k), v) for k, v in items]
    return sorted(instances, key=lambda i: i.key.sort_key())


def expand(
    directive_kind: Optional[str],
    value: Any,
    *,
    declaration: str,
    max_expansion: int,
) -> List[ExpandedInstance]:
    """
    Expande uma declaração em instâncias.

    Args:
        directive_kind: `count`, `for_each` ou None (sem diretiva).
        value: Valor avaliado da diretiva (ignorado quando não há diretiva).
        declaration: Identidade da declaração (para erros).
        max_expansion: Limite de instâncias por declaração.

    Returns:
        List[ExpandedInstance]: Instâncias em ordem determinística.
    """
    if directive_kind is None:
        return [ExpandedInstance(NO_KEY)]
    if directive_kind == "count":
        return expand_count(value, declaration=declaration, max_expansion=max_expansion)
    return expand_for_each(value, declaration=declaration, max_expansion=max_expansion)
