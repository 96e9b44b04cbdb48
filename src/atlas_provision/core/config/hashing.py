# src/atlas_provision/core/config/hashing.py
"""
Hashing canônico do Atlas Provision.

A mesma política (JSON canônico + SHA-256) identifica:
    - a configuração efetiva de uma run (`compute_config_hash`)
    - o conteúdo de um plano (`compute_hash`, usado como fingerprint)

Invariantes:
    - Estruturas equivalentes produzem o mesmo hash, independente da ordem
      original das chaves
    - O resultado é sempre uma string hexadecimal de 64 caracteres
"""

import hashlib
import json
from typing import Any, Dict


def compute_hash(data: Any) -> str:
    """
    SHA-256 de uma estrutura JSON-serializável em forma canônica.

    Política:
        - chaves ordenadas
        - separadores compactos
        - UTF-8 sem escape de caracteres não-ASCII
    """
    canonical_json = json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def compute_config_hash(config: Dict[str, Any]) -> str:
    """
    Identidade estrutural da configuração efetiva do engine.

    Args:
        config (Dict[str, Any]): Configuração resolvida.

    Returns:
        str: Hash SHA-256 hexadecimal.

    Raises:
        TypeError: Se `config` não for um dicionário.
    """
    if not isinstance(config, dict):
        raise TypeError(
            f"Config para hashing deve ser dict, recebido: {type(config).__name__}"
        )
    return compute_hash(config)
