# src/atlas_provision/core/variables/resolver.py
"""
Variable Resolver do Atlas Provision.

Produz a tabela única de bindings de variáveis a partir de camadas de
override aplicadas sobre os defaults declarados.

Precedência (da menor para a maior):
    1. default declarado
    2. variáveis de ambiente `ATLAS_VAR_<nome>`
    3. arquivos de override por ambiente, na ordem informada
    4. overrides de linha de comando (`nome=valor`)

Decisões arquiteturais:
    - `resolve_variables` é uma função pura das camadas recebidas; a leitura
      de ambiente e arquivos acontece apenas nos construtores de camada
    - Camadas textuais (ambiente, CLI) têm seus valores interpretados como
      YAML flow para qualquer tipo diferente de `string`
    - Overrides para variáveis não declaradas são erro (`UndeclaredVariableError`);
      a camada de ambiente considera apenas nomes declarados

Invariantes:
    - Toda variável declarada aparece no resultado
    - Todo valor do resultado satisfaz o tipo declarado

Limites explícitos:
    - Não avalia expressões (variáveis aceitam apenas valores literais)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import yaml  # PyYAML

from ..config.errors import OverrideFileNotFoundError
from ..config.loader import load_document
from ..declarations.model import VariableDecl
from ..exceptions import MissingVariableError, TypeMismatchError, UndeclaredVariableError
from ..values import ValueConversionError, convert_value


ENV_PREFIX = "ATLAS_VAR_"


@dataclass(frozen=True)
class VariableLayer:
    """Uma fonte de overrides (ex.: `env`, `file:prod.yaml`, `cli`)."""

    source: str
    values: Mapping[str, Any] = field(default_factory=dict)
    textual: bool = False


def env_layer(
    declared: Mapping[str, VariableDecl],
    environ: Optional[Mapping[str, str]] = None,
) -> VariableLayer:
    """Camada com as variáveis `ATLAS_VAR_<nome>` correspondentes a variáveis declaradas."""
    env = os.environ if environ is None else environ
    values = {
        key[len(ENV_PREFIX):]: value
        for key, value in env.items()
        if key.startswith(ENV_PREFIX) and key[len(ENV_PREFIX):] in declared
    }
    return VariableLayer(source="env", values=values, textual=True)


def file_layer(path: Union[str, Path]) -> VariableLayer:
    """Camada a partir de um arquivo YAML/JSON `nome → valor`."""
    data = load_document(Path(path), missing_error=OverrideFileNotFoundError)
    return VariableLayer(source=f"file:{path}", values=data, textual=False)


def cli_layer(assignments: Sequence[str]) -> VariableLayer:
    """
    Camada a partir de atribuições `nome=valor` da linha de comando.

    Raises:
        ValueError: Atribuição sem `=` ou com nome vazio.
    """
    values: Dict[str, Any] = {}
    for item in assignments:
        name, sep, value = item.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ValueError(f"override de variável inválido (esperado nome=valor): {item!r}")
        values[name] = value
    return VariableLayer(source="cli", values=values, textual=True)


def _parse_text(raw: str, decl: VariableDecl, source: str) -> Any:
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise TypeMismatchError(
            message=f"valor de var.{decl.name} vindo de {source} não pôde ser interpretado como {decl.type_spec}",
            details={"variable": decl.name, "source": source, "type": str(decl.type_spec), "value": raw},
            hint="Use notação YAML flow (ex.: [a, b] ou {k: v})",
        ) from e


def resolve_variables(
    declared: Mapping[str, VariableDecl],
    layers: Sequence[VariableLayer] = (),
) -> Dict[str, Any]:
    """
    Resolve os valores finais das variáveis declaradas.

    Args:
        declared: Variáveis declaradas no namespace (nome → VariableDecl).
        layers: Camadas de override, da menos para a mais específica.

    Returns:
        Dict[str, Any]: Bindings `nome → valor` já convertidos para o tipo declarado.

    Raises:
        UndeclaredVariableError: Override para variável não declarada.
        MissingVariableError: Variável obrigatória sem valor.
        TypeMismatchError: Valor incompatível com o tipo declarado.
    """
    for layer in layers:
        for name in layer.values:
            if name not in declared:
                raise UndeclaredVariableError(
                    message=f"override para variável não declarada: {name}",
                    details={"variable": name, "source": layer.source, "declared": sorted(declared)},
                    hint="Declare a variável ou remova o override",
                )

    resolved: Dict[str, Any] = {}
    for name, decl in declared.items():
        value = decl.default
        source = "default"
        textual = False
        found = decl.has_default
        for layer in layers:
            if name in layer.values:
                value = layer.values[name]
                source = layer.source
                textual = layer.textual
                found = True

        if not found:
            raise MissingVariableError(
                message=f"variável obrigatória sem valor: var.{name}",
                details={"variable": name, "document": decl.document},
                hint=f"Informe {ENV_PREFIX}{name}, um arquivo de override ou `{name}=...` na CLI",
            )

        if textual and isinstance(value, str) and decl.type_spec.name != "string":
            value = _parse_text(value, decl, source)

        try:
            resolved[name] = convert_value(value, decl.type_spec)
        except ValueConversionError as e:
            raise TypeMismatchError(
                message=f"var.{name} (de {source}) não satisfaz o tipo {decl.type_spec}: {e}",
                details={"variable": name, "source": source, "type": str(decl.type_spec)},
                hint="Ajuste o valor informado ou o tipo declarado",
            ) from e

    return resolved
