"""
Atlas Provision — Canonical Error Structures (v1)

Este módulo define o padrão canônico de erros serializáveis do Atlas Provision.
Erros são artefatos do resultado de um apply (e do Manifest da run), devendo ser:

- explícitos
- serializáveis
- rastreáveis
- acionáveis

Nenhuma decisão implícita é permitida.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from .exceptions import (
    AtlasException,
    CyclicDependencyError,
    DeclarationSyntaxError,
    DuplicateDeclarationError,
    DuplicateKeyError,
    ExpansionLimitError,
    ExpressionError,
    LockConflictError,
    MissingVariableError,
    ProviderOperationError,
    SkippedDueToDependencyFailure,
    StalePlanError,
    StateVersionError,
    TypeMismatchError,
    UndeclaredVariableError,
    UnknownReferenceError,
    UnknownValueError,
    WorkspaceNotEmptyError,
)


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AtlasErrorPayload:
    """
    Payload canônico de erro do Atlas Provision.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador (onde corrigir)
    - retryable: indica se repetir a operação pode ter sucesso
      (ex.: lock ocupado por outra execução)
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

# Load / estrutura
DECLARATION_SYNTAX_ERROR = "DECLARATION_SYNTAX_ERROR"
DUPLICATE_DECLARATION = "DUPLICATE_DECLARATION"
UNKNOWN_REFERENCE = "UNKNOWN_REFERENCE"
CYCLIC_DEPENDENCY = "CYCLIC_DEPENDENCY"

# Variáveis
TYPE_MISMATCH = "TYPE_MISMATCH"
MISSING_VARIABLE = "MISSING_VARIABLE"
UNDECLARED_VARIABLE = "UNDECLARED_VARIABLE"

# Avaliação / expansão
EXPRESSION_ERROR = "EXPRESSION_ERROR"
DUPLICATE_KEY = "DUPLICATE_KEY"
UNKNOWN_VALUE = "UNKNOWN_VALUE"
EXPANSION_LIMIT = "EXPANSION_LIMIT"

# State / apply
LOCK_CONFLICT = "LOCK_CONFLICT"
STATE_VERSION = "STATE_VERSION"
WORKSPACE_NOT_EMPTY = "WORKSPACE_NOT_EMPTY"
STALE_PLAN = "STALE_PLAN"
PROVIDER_OPERATION_ERROR = "PROVIDER_OPERATION_ERROR"
SKIPPED_DUE_TO_DEPENDENCY_FAILURE = "SKIPPED_DUE_TO_DEPENDENCY_FAILURE"
APPLY_CANCELED = "APPLY_CANCELED"
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"


_CODES: Dict[type, str] = {
    DeclarationSyntaxError: DECLARATION_SYNTAX_ERROR,
    DuplicateDeclarationError: DUPLICATE_DECLARATION,
    UnknownReferenceError: UNKNOWN_REFERENCE,
    CyclicDependencyError: CYCLIC_DEPENDENCY,
    TypeMismatchError: TYPE_MISMATCH,
    MissingVariableError: MISSING_VARIABLE,
    UndeclaredVariableError: UNDECLARED_VARIABLE,
    ExpressionError: EXPRESSION_ERROR,
    DuplicateKeyError: DUPLICATE_KEY,
    UnknownValueError: UNKNOWN_VALUE,
    ExpansionLimitError: EXPANSION_LIMIT,
    LockConflictError: LOCK_CONFLICT,
    StateVersionError: STATE_VERSION,
    StalePlanError: STALE_PLAN,
    WorkspaceNotEmptyError: WORKSPACE_NOT_EMPTY,
    ProviderOperationError: PROVIDER_OPERATION_ERROR,
    SkippedDueToDependencyFailure: SKIPPED_DUE_TO_DEPENDENCY_FAILURE,
}


def error_code_for(exc: BaseException) -> str:
    """Retorna o código estável do catálogo para uma exceção."""
    for cls in type(exc).__mro__:
        code = _CODES.get(cls)
        if code is not None:
            return code
    return ENGINE_EXECUTION_ERROR


def exception_to_payload(exc: BaseException) -> AtlasErrorPayload:
    """Converte exceções em AtlasErrorPayload (serializável, acionável).

    Regras:
    - AtlasException: já vem com message/details/hint/retryable.
    - Outras exceções: encapsular como ENGINE_EXECUTION_ERROR sem expor stack trace.
    """
    if isinstance(exc, AtlasException):
        return AtlasErrorPayload(
            type=error_code_for(exc),
            message=exc.message or "Erro de execução",
            details=dict(exc.details or {}),
            hint=exc.hint,
            retryable=bool(exc.retryable),
        )

    return AtlasErrorPayload(
        type=ENGINE_EXECUTION_ERROR,
        message=str(exc) or "Erro inesperado durante execução",
        details={"exception_class": exc.__class__.__name__},
        hint="Verifique o log técnico do provider e a configuração da run",
        retryable=False,
    )


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------

def skipped_due_to_dependency(
    *,
    address: str,
    failed_dependencies: List[str],
    hint: str = "Corrija a falha da dependência e execute novamente o apply; nenhuma tentativa foi feita para esta instância.",
) -> AtlasErrorPayload:
    return AtlasErrorPayload(
        type=SKIPPED_DUE_TO_DEPENDENCY_FAILURE,
        message="Instância pulada por falha de dependência",
        details={
            "address": address,
            "failed_dependencies": list(failed_dependencies),
        },
        hint=hint,
        retryable=True,
    )


def apply_canceled(
    *,
    address: str,
    reason: str = "canceled",
    hint: str = "A execução foi interrompida antes desta instância; execute um novo plan/apply.",
) -> AtlasErrorPayload:
    return AtlasErrorPayload(
        type=APPLY_CANCELED,
        message="Instância não aplicada: execução interrompida",
        details={"address": address, "reason": reason},
        hint=hint,
        retryable=True,
    )
