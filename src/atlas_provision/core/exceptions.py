"""
Atlas Provision — Canonical Exceptions (v1)

Este módulo define as exceções tipadas do engine de expansão e reconciliação.

Objetivo:
- Permitir que loader, resolver, grafo, expansão, planner e applier levantem
  exceções semânticas tipadas
- Facilitar o mapeamento determinístico para AtlasErrorPayload
- Evitar ValueError/RuntimeError genéricos em guardrails críticos

Regras:
- Toda exceção carrega a identidade da declaração ofensora em `details`
- Exceções devem carregar apenas dados estruturados (serializáveis)
- Erros de load/resolve/grafo são fatais: nenhum plano parcial é produzido
- `retryable` indica falhas transitórias (ex.: lock de workspace ocupado)

Nota:
    As classes não são `frozen`: o runtime (contextlib, pytest) atribui
    `__traceback__` e notas em exceções já levantadas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(eq=False)
class AtlasException(Exception):
    """Base class para exceções internas do Atlas Provision.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Não embedar stack trace em payloads de erro
    - Mensagem deve ser curta e humana
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None
    retryable: bool = False

    def __str__(self) -> str:  # pragma: no cover
        return self.message


# ---------------------------------------------------------------------------
# Load / estrutura
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class DeclarationSyntaxError(AtlasException):
    """Documento de declaração malformado (estrutura, chave ou expressão)."""


@dataclass(eq=False)
class DuplicateDeclarationError(AtlasException):
    """Mesmo `(kind, name)` declarado duas vezes no mesmo namespace."""


@dataclass(eq=False)
class UnknownReferenceError(AtlasException):
    """Expressão referencia uma declaração que não existe no namespace."""


@dataclass(eq=False)
class CyclicDependencyError(AtlasException):
    """Referências entre declarações (ou módulos) formam um ciclo."""


# ---------------------------------------------------------------------------
# Variáveis / tipos
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class TypeMismatchError(AtlasException):
    """Valor não satisfaz o tipo declarado ou esperado pela operação."""


@dataclass(eq=False)
class MissingVariableError(AtlasException):
    """Variável obrigatória sem valor em nenhuma camada e sem default."""


@dataclass(eq=False)
class UndeclaredVariableError(AtlasException):
    """Override fornecido para variável que não foi declarada."""


# ---------------------------------------------------------------------------
# Avaliação / expansão
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class ExpressionError(AtlasException):
    """Falha ao avaliar uma expressão (operando inválido, índice, função)."""


@dataclass(eq=False)
class DuplicateKeyError(AtlasException):
    """Chave duplicada após avaliação (for_each ou comprehension de map)."""


@dataclass(eq=False)
class UnknownValueError(AtlasException):
    """Valor só conhecido após apply usado onde o plano exige valor conhecido."""


@dataclass(eq=False)
class ExpansionLimitError(AtlasException):
    """Diretiva de expansão excede `engine.max_expansion`."""


# ---------------------------------------------------------------------------
# State / apply
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class LockConflictError(AtlasException):
    """Lock do workspace já está em posse de outra execução."""

    retryable: bool = True


@dataclass(eq=False)
class StateVersionError(AtlasException):
    """Documento de state com versão de schema não suportada."""


@dataclass(eq=False)
class WorkspaceNotEmptyError(AtlasException):
    """Remoção de workspace que ainda possui state records."""


@dataclass(eq=False)
class StalePlanError(AtlasException):
    """Plano calculado contra um state que mudou desde então."""


@dataclass(eq=False)
class ProviderOperationError(AtlasException):
    """Falha reportada pelo provider externo ao aplicar uma instância."""


@dataclass(eq=False)
class SkippedDueToDependencyFailure(AtlasException):
    """Instância não aplicada porque uma dependência falhou ou foi pulada."""
