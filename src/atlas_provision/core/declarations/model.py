# src/atlas_provision/core/declarations/model.py
"""
Modelo em memória das declarações de um conjunto de documentos.

Tipos principais:
    - Declaration (base) e suas variantes: VariableDecl, LocalDecl,
      ResourceDecl, ModuleCallDecl, OutputDecl
    - ExpansionDirective → `count` ou `for_each` de uma declaração
    - ModuleTree → namespace de um módulo (raiz ou filho), com as
      declarações indexadas por identidade local

Árvores de atributos:
    Valores de atributos são estruturas aninhadas de dict/list cujas folhas
    são literais (str, number, bool, null) ou nós de expressão já parseados
    (`expressions.Node`). Strings sem interpolação permanecem literais.

Invariantes:
    - Cada declaração conhece seu documento de origem e sua ordem global
      de declaração dentro do namespace
    - Identidades locais são únicas por namespace
    - O modelo é imutável após o load (nenhum componente o altera)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..expressions.parser import Node
from ..values import ANY, TypeSpec


class DeclarationKind(str, Enum):
    VARIABLE = "variable"
    LOCAL = "local"
    RESOURCE = "resource"
    MODULE = "module"
    OUTPUT = "output"


def iter_nodes(tree: Any) -> Iterator[Node]:
    """Percorre uma árvore de atributos devolvendo os nós de expressão."""
    if isinstance(tree, Node):
        yield tree
    elif isinstance(tree, dict):
        for value in tree.values():
            yield from iter_nodes(value)
    elif isinstance(tree, list):
        for value in tree:
            yield from iter_nodes(value)


@dataclass(frozen=True)
class ExpansionDirective:
    """`count` (inteiro não negativo) ou `for_each` (map ou set)."""

    kind: str  # "count" | "for_each"
    expression: Any


@dataclass
class Declaration:
    name: str
    document: str
    order: int

    kind = DeclarationKind.VARIABLE

    @property
    def local_id(self) -> str:
        """Identidade dentro do namespace (ex.: `var.region`, `aws_instance.web`)."""
        raise NotImplementedError

    def expression_trees(self) -> List[Any]:
        """Árvores que participam da análise de dependências."""
        return []


@dataclass
class VariableDecl(Declaration):
    type_spec: TypeSpec = ANY
    default: Any = None
    has_default: bool = False
    description: Optional[str] = None

    kind = DeclarationKind.VARIABLE

    @property
    def local_id(self) -> str:
        return f"var.{self.name}"

    @property
    def required(self) -> bool:
        return not self.has_default


@dataclass
class LocalDecl(Declaration):
    value: Any = None

    kind = DeclarationKind.LOCAL

    @property
    def local_id(self) -> str:
        return f"local.{self.name}"

    def expression_trees(self) -> List[Any]:
        return [self.value]


@dataclass
class ResourceDecl(Declaration):
    resource_type: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    directive: Optional[ExpansionDirective] = None
    depends_on: List[Tuple[str, ...]] = field(default_factory=list)

    kind = DeclarationKind.RESOURCE

    @property
    def local_id(self) -> str:
        return f"{self.resource_type}.{self.name}"

    def expression_trees(self) -> List[Any]:
        trees: List[Any] = [self.attributes]
        if self.directive is not None:
            trees.append(self.directive.expression)
        return trees


@dataclass
class ModuleCallDecl(Declaration):
    source: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)
    directive: Optional[ExpansionDirective] = None
    depends_on: List[Tuple[str, ...]] = field(default_factory=list)
    tree: Optional["ModuleTree"] = None

    kind = DeclarationKind.MODULE

    @property
    def local_id(self) -> str:
        return f"module.{self.name}"

    def expression_trees(self) -> List[Any]:
        trees: List[Any] = [self.inputs]
        if self.directive is not None:
            trees.append(self.directive.expression)
        return trees


@dataclass
class OutputDecl(Declaration):
    value: Any = None
    description: Optional[str] = None

    kind = DeclarationKind.OUTPUT

    @property
    def local_id(self) -> str:
        return f"output.{self.name}"

    def expression_trees(self) -> List[Any]:
        return [self.value]


@dataclass
class ModuleTree:
    """
    Namespace de declarações (módulo raiz ou chamada de módulo filho).

    `path` é a sequência de nomes de chamadas de módulo a partir da raiz
    (vazia para a raiz). `source_dir` é o diretório de origem, quando houver.
    """

    path: Tuple[str, ...] = ()
    source_dir: Optional[Path] = None
    documents: List[str] = field(default_factory=list)
    variables: Dict[str, VariableDecl] = field(default_factory=dict)
    locals: Dict[str, LocalDecl] = field(default_factory=dict)
    resources: Dict[str, ResourceDecl] = field(default_factory=dict)
    modules: Dict[str, ModuleCallDecl] = field(default_factory=dict)
    outputs: Dict[str, OutputDecl] = field(default_factory=dict)

    def declarations(self) -> List[Declaration]:
        """Todas as declarações do namespace, em ordem de declaração."""
        items: List[Declaration] = []
        items.extend(self.variables.values())
        items.extend(self.locals.values())
        items.extend(self.resources.values())
        items.extend(self.modules.values())
        items.extend(self.outputs.values())
        return sorted(items, key=lambda d: d.order)
