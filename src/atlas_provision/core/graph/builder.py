# src/atlas_provision/core/graph/builder.py
"""
Dependency Graph Builder do Atlas Provision.

Este módulo analisa estaticamente as referências de todas as declarações
(inclusive dentro de módulos filhos) e constrói o DAG de ordem de avaliação.

Cada nó do grafo é uma declaração qualificada pelo caminho de módulo:
    - `var.region`, `local.name`, `aws_instance.web`, `output.ip`
    - `module.net`, `module.net.aws_subnet.this`, `module.net.output.ids`

Regras de arestas (A depende de B):
    - A referencia B em qualquer expressão (atributos, directive, inputs)
    - A declara B em `depends_on` (`depends_on` de módulo inclui todos os
      resources do módulo)
    - `module.<nome>.<output>` aponta para o output do filho;
      `module.<nome>` (objeto inteiro) aponta para a chamada e todos os outputs
    - toda declaração de um módulo filho depende da chamada de módulo

Princípios fundamentais:
    - Referências são resolvidas para arestas explícitas uma única vez
    - Referência a declaração inexistente é erro fatal
    - Ciclos são detectados por DFS e reportados com o caminho completo
    - A ordem topológica é determinística: empates são resolvidos pela ordem
      de declaração (filhos de um módulo seguem a chamada do módulo)

Limites explícitos:
    - Não avalia expressões
    - Não expande instâncias
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..declarations.model import (
    Declaration,
    DeclarationKind,
    ModuleCallDecl,
    ModuleTree,
    ResourceDecl,
    iter_nodes,
)
from ..exceptions import CyclicDependencyError, UnknownReferenceError
from ..expressions.parser import Reference, collect_references


@dataclass(frozen=True)
class GraphNode:
    """Declaração qualificada pelo caminho de módulo."""

    id: str
    module_path: Tuple[str, ...]
    declaration: Declaration
    tree: ModuleTree
    index: int

    @property
    def kind(self) -> DeclarationKind:
        return self.declaration.kind


def qualify(module_path: Tuple[str, ...], local_id: str) -> str:
    prefix = "".join(f"module.{name}." for name in module_path)
    return prefix + local_id


class DependencyGraph:
    """DAG de avaliação já validado e ordenado."""

    def __init__(
        self,
        nodes: Dict[str, GraphNode],
        dependencies: Dict[str, Set[str]],
        order: List[str],
    ):
        self.nodes = nodes
        self.dependencies = dependencies
        self.order = order
        self._position = {node_id: i for i, node_id in enumerate(order)}
        self.dependents: Dict[str, Set[str]] = {node_id: set() for node_id in nodes}
        for node_id, deps in dependencies.items():
            for dep in deps:
                self.dependents[dep].add(node_id)

    def topological_order(self) -> List[GraphNode]:
        return [self.nodes[node_id] for node_id in self.order]

    def position(self, node_id: str) -> int:
        """Posição do nó na ordem topológica."""
        return self._position[node_id]

    def resource_dependencies(self, node_id: str) -> Set[str]:
        """
        Resources dos quais `node_id` depende, atravessando nós que não são
        resources (variáveis, locals, outputs, chamadas de módulo).
        """
        found: Set[str] = set()
        seen: Set[str] = set()
        stack = list(self.dependencies.get(node_id, ()))
        while stack:
            dep = stack.pop()
            if dep in seen:
                continue
            seen.add(dep)
            if self.nodes[dep].kind is DeclarationKind.RESOURCE:
                found.add(dep)
            else:
                stack.extend(self.dependencies.get(dep, ()))
        return found


class _GraphBuilder:
    def __init__(self) -> None:
        self.nodes: Dict[str, GraphNode] = {}
        self.dependencies: Dict[str, Set[str]] = {}
        self.counter = 0

    # -- coleta de nós -----------------------------------------------------
    def collect(self, tree: ModuleTree) -> None:
        for decl in tree.declarations():
            node_id = qualify(tree.path, decl.local_id)
            self.nodes[node_id] = GraphNode(node_id, tree.path, decl, tree, self.counter)
            self.dependencies[node_id] = set()
            self.counter += 1
            if isinstance(decl, ModuleCallDecl) and decl.tree is not None:
                self.collect(decl.tree)

    # -- arestas -----------------------------------------------------------
    def link(self, tree: ModuleTree, call_id: Optional[str] = None) -> None:
        for decl in tree.declarations():
            node_id = qualify(tree.path, decl.local_id)
            if call_id is not None:
                self.dependencies[node_id].add(call_id)

            directive = getattr(decl, "directive", None)
            if directive is not None:
                for node in iter_nodes(directive.expression):
                    for ref in collect_references(node):
                        if ref.root in ("count", "each"):
                            raise UnknownReferenceError(
                                message=f"{node_id}: `{ref}` não pode ser usado na própria diretiva de expansão",
                                details={"declaration": node_id, "reference": str(ref)},
                                hint="A diretiva define as instâncias; use valores de variables/locals",
                            )

            for tree_value in decl.expression_trees():
                for node in iter_nodes(tree_value):
                    for ref in collect_references(node):
                        for target in self._resolve(ref, decl, tree, node_id):
                            self.dependencies[node_id].add(target)

            for path in getattr(decl, "depends_on", ()):
                for target in self._resolve_depends_on(path, tree, node_id):
                    self.dependencies[node_id].add(target)

            if isinstance(decl, ModuleCallDecl) and decl.tree is not None:
                self.link(decl.tree, node_id)

    def _unknown(self, node_id: str, ref: str, tree: ModuleTree, hint: Optional[str] = None) -> UnknownReferenceError:
        return UnknownReferenceError(
            message=f"{node_id} referencia declaração inexistente: {ref}",
            details={"declaration": node_id, "reference": ref, "module": ".".join(tree.path) or "<root>"},
            hint=hint or "Declare o alvo da referência ou corrija o nome",
        )

    def _resolve(self, ref: Reference, decl: Declaration, tree: ModuleTree, node_id: str) -> List[str]:
        parts = ref.parts
        root = ref.root
        directive = getattr(decl, "directive", None)

        if root in ("var", "local"):
            if len(parts) < 2:
                raise self._unknown(node_id, str(ref), tree)
            table = tree.variables if root == "var" else tree.locals
            if parts[1] not in table:
                raise self._unknown(node_id, f"{root}.{parts[1]}", tree)
            return [qualify(tree.path, f"{root}.{parts[1]}")]

        if root == "count":
            if directive is None or directive.kind != "count" or parts[1:2] != ("index",):
                raise self._unknown(
                    node_id, str(ref), tree,
                    hint="`count.index` só existe em declarações com `count`",
                )
            return []

        if root == "each":
            if directive is None or directive.kind != "for_each" or len(parts) < 2 or parts[1] not in ("key", "value"):
                raise self._unknown(
                    node_id, str(ref), tree,
                    hint="`each.key`/`each.value` só existem em declarações com `for_each`",
                )
            return []

        if root == "workspace":
            if parts[1:2] != ("name",):
                raise self._unknown(node_id, str(ref), tree, hint="Use `workspace.name`")
            return []

        if root == "module":
            if len(parts) < 2 or parts[1] not in tree.modules:
                raise self._unknown(node_id, ".".join(parts[:2]), tree)
            call = tree.modules[parts[1]]
            call_id = qualify(tree.path, call.local_id)
            child = call.tree
            if len(parts) >= 3:
                if parts[2] not in child.outputs:
                    raise self._unknown(node_id, ".".join(parts[:3]), tree, hint="O módulo não declara este output")
                return [qualify(child.path, f"output.{parts[2]}")]
            return [call_id] + [qualify(child.path, f"output.{name}") for name in child.outputs]

        if len(parts) < 2 or f"{root}.{parts[1]}" not in tree.resources:
            raise self._unknown(node_id, ".".join(parts[:2]), tree)
        return [qualify(tree.path, f"{root}.{parts[1]}")]

    def _resolve_depends_on(self, path: Tuple[str, ...], tree: ModuleTree, node_id: str) -> List[str]:
        if path[0] == "module":
            call = tree.modules.get(path[1])
            if call is None:
                raise self._unknown(node_id, ".".join(path), tree)
            return [qualify(tree.path, call.local_id)] + _all_resources(call.tree)
        local_id = ".".join(path)
        if local_id not in tree.resources:
            raise self._unknown(node_id, local_id, tree)
        return [qualify(tree.path, local_id)]


def _all_resources(tree: ModuleTree) -> List[str]:
    out = [qualify(tree.path, r.local_id) for r in tree.resources.values()]
    for call in tree.modules.values():
        if call.tree is not None:
            out.extend(_all_resources(call.tree))
    return out


def _find_cycle(nodes: Dict[str, GraphNode], dependencies: Dict[str, Set[str]]) -> Optional[List[str]]:
    """DFS iterativa; devolve o caminho do primeiro ciclo encontrado."""
    white, gray, black = 0, 1, 2
    color = {node_id: white for node_id in nodes}

    def ordered(ids: Iterable[str]) -> List[str]:
        return sorted(ids, key=lambda n: nodes[n].index)

    for start in ordered(nodes):
        if color[start] != white:
            continue
        path: List[str] = [start]
        color[start] = gray
        iterators = [iter(ordered(dependencies[start]))]
        while iterators:
            dep = next(iterators[-1], None)
            if dep is None:
                iterators.pop()
                color[path.pop()] = black
                continue
            if color[dep] == gray:
                return path[path.index(dep):] + [dep]
            if color[dep] == white:
                color[dep] = gray
                path.append(dep)
                iterators.append(iter(ordered(dependencies[dep])))
    return None


def build_graph(tree: ModuleTree) -> DependencyGraph:
    """
    Constrói e valida o DAG de avaliação de um namespace raiz.

    Args:
        tree (ModuleTree): Namespace raiz (com módulos filhos já carregados).

    Returns:
        DependencyGraph: Grafo validado, com ordem topológica determinística.

    Raises:
        UnknownReferenceError: Referência a declaração inexistente ou meta
            referência (`count`, `each`) fora de contexto.
        CyclicDependencyError: Ciclo entre declarações (caminho em `details`).
    """
    builder = _GraphBuilder()
    builder.collect(tree)
    builder.link(tree)
    nodes, dependencies = builder.nodes, builder.dependencies

    cycle = _find_cycle(nodes, dependencies)
    if cycle is not None:
        raise CyclicDependencyError(
            message=f"ciclo de dependência: {' -> '.join(cycle)}",
            details={"cycle": cycle},
            hint="Remova uma das referências do ciclo",
        )

    # Kahn determinístico: empates resolvidos pela ordem de declaração
    remaining = {node_id: len(deps) for node_id, deps in dependencies.items()}
    dependents: Dict[str, List[str]] = {node_id: [] for node_id in nodes}
    for node_id, deps in dependencies.items():
        for dep in deps:
            dependents[dep].append(node_id)

    ready: List[Tuple[int, str]] = [(nodes[n].index, n) for n, c in remaining.items() if c == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_id)
        for child in dependents[node_id]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, (nodes[child].index, child))

    return DependencyGraph(nodes, dependencies, order)


def resource_nodes(graph: DependencyGraph) -> List[GraphNode]:
    return [n for n in graph.topological_order() if isinstance(n.declaration, ResourceDecl)]
