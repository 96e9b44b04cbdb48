# src/atlas_provision/core/config/loader.py
"""
Loader de configuração do engine Atlas Provision.

A configuração efetiva é resolvida em camadas, da menos para a mais específica:
    1. `DEFAULT_CONFIG` (embutido)
    2. arquivo de defaults do projeto (opcional; obrigatório se informado)
    3. arquivo local de overrides (opcional; ignorado se ausente)

Cada camada é aplicada com `deep_merge` e o resultado é validado por
`validate_config`. O mesmo leitor de arquivos (`load_document`) é usado para
arquivos de override de variáveis por ambiente.

Decisões arquiteturais:
    - YAML é lido com `yaml.safe_load`; JSON com `json.load`
    - Arquivos vazios equivalem a `{}`
    - O hash da configuração é responsabilidade do chamador (Manifest)

Limites explícitos:
    - Não carrega documentos de declaração (ver `core.declarations`)
    - Não resolve variáveis
"""

import json
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Type

import yaml  # PyYAML

from .errors import (
    ConfigError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    InvalidConfigValueError,
    UnsupportedConfigFormatError,
)
from .merge import deep_merge


DEFAULT_CONFIG: Dict[str, Any] = {
    "engine": {"max_expansion": 1000},
    "apply": {"max_workers": 4, "fail_fast": False},
    "state": {"backend": "local", "path": ".atlas/state"},
}

_BACKENDS = ("local", "memory")


def load_document(
    path: Path,
    *,
    missing_error: Type[ConfigError] = DefaultsNotFoundError,
) -> Dict[str, Any]:
    """
    Lê um arquivo YAML/JSON cuja raiz deve ser um mapa.

    Args:
        path (Path): Caminho do arquivo.
        missing_error: Exceção levantada quando o arquivo não existe.

    Returns:
        Dict[str, Any]: Conteúdo do arquivo.

    Raises:
        ConfigError: `missing_error` se o arquivo não existir.
        UnsupportedConfigFormatError: Extensão não suportada.
        InvalidConfigRootTypeError: Raiz diferente de dict.
    """
    path = Path(path)
    if not path.exists():
        raise missing_error(f"Arquivo não encontrado: {path}")

    suffix = path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

    elif suffix == ".json":
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)

    else:
        raise UnsupportedConfigFormatError(f"Formato não suportado: {path.suffix}")

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise InvalidConfigRootTypeError(
            f"Raiz do arquivo {path} deve ser dict, recebido: {type(data).__name__}"
        )

    return data


def _require_int(config: Dict[str, Any], section: str, key: str, minimum: int) -> None:
    value = (config.get(section) or {}).get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise InvalidConfigValueError(
            f"{section}.{key} deve ser inteiro >= {minimum}, recebido: {value!r}"
        )


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Valida os valores usados pelo engine.

    Regras (v1):
        - `engine.max_expansion`: inteiro >= 0
        - `apply.max_workers`: inteiro >= 1
        - `apply.fail_fast`: bool
        - `state.backend`: `local` ou `memory`
        - `state.path`: string não vazia

    Returns:
        Dict[str, Any]: A própria configuração (para encadeamento).

    Raises:
        InvalidConfigValueError: Na primeira violação encontrada.
    """
    _require_int(config, "engine", "max_expansion", 0)
    _require_int(config, "apply", "max_workers", 1)

    fail_fast = (config.get("apply") or {}).get("fail_fast")
    if not isinstance(fail_fast, bool):
        raise InvalidConfigValueError(f"apply.fail_fast deve ser bool, recebido: {fail_fast!r}")

    state_cfg = config.get("state") or {}
    if state_cfg.get("backend") not in _BACKENDS:
        raise InvalidConfigValueError(
            f"state.backend deve ser um de {list(_BACKENDS)}, recebido: {state_cfg.get('backend')!r}"
        )
    if not isinstance(state_cfg.get("path"), str) or not state_cfg["path"].strip():
        raise InvalidConfigValueError("state.path deve ser string não vazia")

    return config


def load_config(
    *,
    defaults_path: Optional[str] = None,
    local_path: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Carrega e resolve a configuração efetiva do engine.

    Política de resolução:
        - `DEFAULT_CONFIG` é sempre a base
        - `defaults_path`, quando informado, deve existir
        - `local_path`, quando informado e existente, tem a maior prioridade

    Args:
        defaults_path (Optional[str]): Arquivo de defaults do projeto.
        local_path (Optional[str]): Arquivo local de overrides.

    Returns:
        Dict[str, Any]: Configuração final resolvida e validada.

    Raises:
        DefaultsNotFoundError: Se `defaults_path` não existir.
        UnsupportedConfigFormatError: Extensão não suportada.
        InvalidConfigRootTypeError: Raiz diferente de dict.
        ConfigTypeConflictError: Conflito estrutural no merge.
        InvalidConfigValueError: Valor fora do domínio aceito.
    """
    effective = deepcopy(DEFAULT_CONFIG)

    if defaults_path is not None:
        effective = deep_merge(effective, load_document(Path(defaults_path)))

    if local_path is not None:
        local_file = Path(local_path)
        if local_file.exists():
            effective = deep_merge(effective, load_document(local_file))

    return validate_config(effective)
