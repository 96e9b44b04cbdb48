# src/atlas_provision/core/config/__init__.py

"""
Camada de configuração do engine Atlas Provision.

Este pacote resolve as configurações de execução do engine (limites de
expansão, paralelismo do apply, backend de state) a partir de:
    - defaults embutidos (`DEFAULT_CONFIG`)
    - um arquivo de defaults do projeto (opcional)
    - um arquivo local de overrides (opcional)

Princípios fundamentais:
    - Configuração não contém declarações de infraestrutura
    - Overrides são sempre explícitos e tipados
    - A mesma entrada sempre produz a mesma configuração final

Limites explícitos:
    - Não carrega documentos de declaração
    - Não resolve variáveis de entrada
"""

from .errors import (
    ConfigError,
    ConfigTypeConflictError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    InvalidConfigValueError,
    OverrideFileNotFoundError,
    UnsupportedConfigFormatError,
)
from .hashing import compute_config_hash, compute_hash
from .loader import DEFAULT_CONFIG, load_config, load_document, validate_config
from .merge import deep_merge

__all__ = [
    "ConfigError",
    "ConfigTypeConflictError",
    "DefaultsNotFoundError",
    "InvalidConfigRootTypeError",
    "InvalidConfigValueError",
    "OverrideFileNotFoundError",
    "UnsupportedConfigFormatError",
    "compute_config_hash",
    "compute_hash",
    "DEFAULT_CONFIG",
    "load_config",
    "load_document",
    "validate_config",
    "deep_merge",
]
