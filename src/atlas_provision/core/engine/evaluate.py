# src/atlas_provision/core/engine/evaluate.py
"""
Avaliação do estado desejado.

Percorre o grafo de dependências em ordem topológica e, para cada
declaração, em cada instância de módulo que a contém:
    - avalia a diretiva de expansão e expande as instâncias
    - avalia atributos, locals, inputs de módulo e outputs
    - registra o objeto de cada resource para as declarações seguintes

Atributos calculados pelo provider vêm de uma função `computed(address)`:
no plan ela lê o state anterior; no apply, os resultados já aplicados. Uma
instância sem atributos calculados conhecidos expõe UNKNOWN para qualquer
atributo não declarado.

Invariantes:
    - Endereços de instância são únicos
    - Dependências de instância apontam apenas para instâncias da mesma
      ramificação de módulo (mesmas chaves no prefixo comum do caminho)
    - A avaliação é pura: não lê nem grava state diretamente
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..declarations.model import (
    LocalDecl,
    ModuleCallDecl,
    ModuleTree,
    OutputDecl,
    ResourceDecl,
    VariableDecl,
)
from ..exceptions import MissingVariableError, TypeMismatchError
from ..expansion.expander import ExpandedInstance, InstanceKey, expand
from ..expressions.evaluator import ExpressionEvaluator, InstanceObject, Scope
from ..graph.builder import DependencyGraph, GraphNode
from ..values import ValueConversionError, convert_value, normalize


ModuleInstance = Tuple[Tuple[str, InstanceKey], ...]
ComputedLookup = Callable[[str], Optional[Dict[str, Any]]]


def module_prefix(module_instance: ModuleInstance) -> str:
    return "".join(f"module.{name}{key}." for name, key in module_instance)


def instance_address(module_instance: ModuleInstance, local_id: str, key: InstanceKey) -> str:
    """Endereço textual: `module.net[1].aws_subnet.this["x"]`."""
    return f"{module_prefix(module_instance)}{local_id}{key}"


def _module_sort_key(module_instance: ModuleInstance) -> Tuple:
    return tuple((name, key.sort_key()) for name, key in module_instance)


@dataclass
class DesiredInstance:
    address: str
    node_id: str
    resource_type: str
    module_instance: ModuleInstance
    key: InstanceKey
    attributes: Dict[str, Any]
    dependencies: List[str] = field(default_factory=list)
    sort_key: Tuple = ()


@dataclass
class DesiredState:
    instances: Dict[str, DesiredInstance]
    outputs: Dict[str, Any]

    def ordered(self) -> List[DesiredInstance]:
        return sorted(self.instances.values(), key=lambda i: i.sort_key)


def _no_computed(address: str) -> Optional[Dict[str, Any]]:
    return None


class DesiredStateEvaluator:
    """Avalia um namespace raiz já carregado e com grafo validado."""

    def __init__(
        self,
        *,
        tree: ModuleTree,
        graph: DependencyGraph,
        variables: Dict[str, Any],
        workspace: str,
        max_expansion: int,
        computed: Optional[ComputedLookup] = None,
    ):
        self.tree = tree
        self.graph = graph
        self.variables = variables
        self.workspace = workspace
        self.max_expansion = max_expansion
        self.computed = computed or _no_computed

    # ------------------------------------------------------------------
    def evaluate(self) -> DesiredState:
        root: ModuleInstance = ()
        self._module_instances: Dict[Tuple[str, ...], List[ModuleInstance]] = {(): [root]}
        self._vars: Dict[ModuleInstance, Dict[str, Any]] = {root: {}}
        self._locals: Dict[ModuleInstance, Dict[str, Any]] = {root: {}}
        self._resources: Dict[ModuleInstance, Dict[str, Dict[str, Any]]] = {root: {}}
        self._modules: Dict[ModuleInstance, Dict[str, Any]] = {root: {}}
        self._outputs: Dict[ModuleInstance, Dict[str, Any]] = {root: {}}
        self._inputs: Dict[ModuleInstance, Dict[str, Any]] = {}
        self._by_node: Dict[str, List[DesiredInstance]] = {}
        self._instances: Dict[str, DesiredInstance] = {}

        for node in self.graph.topological_order():
            for mi in self._module_instances.get(node.module_path, []):
                decl = node.declaration
                if isinstance(decl, VariableDecl):
                    self._eval_variable(node, decl, mi)
                elif isinstance(decl, LocalDecl):
                    self._eval_local(node, decl, mi)
                elif isinstance(decl, ResourceDecl):
                    self._eval_resource(node, decl, mi)
                elif isinstance(decl, ModuleCallDecl):
                    self._eval_module_call(node, decl, mi)
                elif isinstance(decl, OutputDecl):
                    self._eval_output(node, decl, mi)

        return DesiredState(instances=self._instances, outputs=dict(self._outputs[root]))

    # ------------------------------------------------------------------
    def _scope(self, mi: ModuleInstance) -> Scope:
        roots: Dict[str, Any] = dict(self._resources[mi])
        roots.update(
            {
                "var": self._vars[mi],
                "local": self._locals[mi],
                "module": self._modules[mi],
                "workspace": {"name": self.workspace},
            }
        )
        return Scope(roots)

    def _evaluator(self, mi: ModuleInstance, local_id: str) -> ExpressionEvaluator:
        return ExpressionEvaluator(declaration=module_prefix(mi) + local_id)

    def _expand(self, decl: Any, mi: ModuleInstance, scope: Scope) -> List[ExpandedInstance]:
        directive = decl.directive
        if directive is None:
            return expand(None, None, declaration=module_prefix(mi) + decl.local_id, max_expansion=self.max_expansion)
        value = self._evaluator(mi, decl.local_id).evaluate_tree(directive.expression, scope)
        return expand(
            directive.kind,
            value,
            declaration=module_prefix(mi) + decl.local_id,
            max_expansion=self.max_expansion,
        )

    # ------------------------------------------------------------------
    def _eval_variable(self, node: GraphNode, decl: VariableDecl, mi: ModuleInstance) -> None:
        if not mi:
            if decl.name not in self.variables:
                raise MissingVariableError(
                    message=f"variável sem valor resolvido: var.{decl.name}",
                    details={"variable": decl.name},
                    hint="Resolva as variáveis com resolve_variables antes do plan",
                )
            self._vars[mi][decl.name] = self.variables[decl.name]
            return

        inputs = self._inputs.get(mi, {})
        if decl.name not in inputs:
            self._vars[mi][decl.name] = decl.default
            return
        try:
            self._vars[mi][decl.name] = convert_value(inputs[decl.name], decl.type_spec)
        except ValueConversionError as e:
            raise TypeMismatchError(
                message=f"input {decl.name!r} de {module_prefix(mi)[:-1]} não satisfaz o tipo {decl.type_spec}: {e}",
                details={"variable": decl.name, "source": module_prefix(mi)[:-1], "type": str(decl.type_spec)},
                hint="Ajuste o valor passado na chamada do módulo",
            ) from e

    def _eval_local(self, node: GraphNode, decl: LocalDecl, mi: ModuleInstance) -> None:
        scope = self._scope(mi)
        self._locals[mi][decl.name] = self._evaluator(mi, decl.local_id).evaluate_tree(decl.value, scope)

    def _eval_output(self, node: GraphNode, decl: OutputDecl, mi: ModuleInstance) -> None:
        scope = self._scope(mi)
        value = self._evaluator(mi, decl.local_id).evaluate_tree(decl.value, scope)
        self._outputs[mi][decl.name] = normalize(value)

    def _eval_module_call(self, node: GraphNode, decl: ModuleCallDecl, mi: ModuleInstance) -> None:
        scope = self._scope(mi)
        expanded = self._expand(decl, mi, scope)
        child_path = node.module_path + (decl.name,)
        registry = self._module_instances.setdefault(child_path, [])

        by_key: Dict[Any, Dict[str, Any]] = {}
        for inst in expanded:
            cmi: ModuleInstance = mi + ((decl.name, inst.key),)
            inner = scope.child(inst.bindings(decl.directive.kind if decl.directive else None))
            self._inputs[cmi] = self._evaluator(mi, decl.local_id).evaluate_tree(decl.inputs, inner)
            for table in (self._vars, self._locals, self._resources, self._modules, self._outputs):
                table[cmi] = {}
            registry.append(cmi)
            by_key[inst.key.value] = self._outputs[cmi]

        if decl.directive is None:
            self._modules[mi][decl.name] = by_key[None]
        elif decl.directive.kind == "count":
            self._modules[mi][decl.name] = [by_key[i.key.value] for i in expanded]
        else:
            self._modules[mi][decl.name] = {i.key.value: by_key[i.key.value] for i in expanded}

    def _eval_resource(self, node: GraphNode, decl: ResourceDecl, mi: ModuleInstance) -> None:
        scope = self._scope(mi)
        expanded = self._expand(decl, mi, scope)
        evaluator = self._evaluator(mi, decl.local_id)
        directive_kind = decl.directive.kind if decl.directive else None
        dependency_nodes = sorted(self.graph.resource_dependencies(node.id))

        objects: Dict[Any, InstanceObject] = {}
        created: List[DesiredInstance] = []
        for inst in expanded:
            inner = scope.child(inst.bindings(directive_kind))
            attributes = normalize(evaluator.evaluate_tree(decl.attributes, inner))
            address = instance_address(mi, decl.local_id, inst.key)

            obj = InstanceObject(self.computed(address) or {})
            obj.update(attributes)
            objects[inst.key.value] = obj

            desired = DesiredInstance(
                address=address,
                node_id=node.id,
                resource_type=decl.resource_type,
                module_instance=mi,
                key=inst.key,
                attributes=attributes,
                dependencies=self._instance_dependencies(node, mi, dependency_nodes),
                sort_key=(self.graph.position(node.id), _module_sort_key(mi), inst.key.sort_key()),
            )
            created.append(desired)
            self._instances[address] = desired

        self._by_node.setdefault(node.id, []).extend(created)

        by_type = self._resources[mi].setdefault(decl.resource_type, {})
        if directive_kind is None:
            by_type[decl.name] = objects[None]
        elif directive_kind == "count":
            by_type[decl.name] = [objects[i.key.value] for i in expanded]
        else:
            by_type[decl.name] = {i.key.value: objects[i.key.value] for i in expanded}

    def _instance_dependencies(self, node: GraphNode, mi: ModuleInstance, dependency_nodes: List[str]) -> List[str]:
        out: List[str] = []
        for dep_id in dependency_nodes:
            dep_path = self.graph.nodes[dep_id].module_path
            common = 0
            for a, b in zip(node.module_path, dep_path):
                if a != b:
                    break
                common += 1
            for candidate in self._by_node.get(dep_id, []):
                if candidate.module_instance[:common] == mi[:common]:
                    out.append(candidate.address)
        return sorted(out)


def evaluate_desired_state(
    *,
    tree: ModuleTree,
    graph: DependencyGraph,
    variables: Dict[str, Any],
    workspace: str,
    max_expansion: int,
    computed: Optional[ComputedLookup] = None,
) -> DesiredState:
    """Atalho funcional para `DesiredStateEvaluator(...).evaluate()`."""
    return DesiredStateEvaluator(
        tree=tree,
        graph=graph,
        variables=variables,
        workspace=workspace,
        max_expansion=max_expansion,
        computed=computed,
    ).evaluate()


__all__ = [
    "DesiredInstance",
    "DesiredState",
    "DesiredStateEvaluator",
    "evaluate_desired_state",
    "instance_address",
    "module_prefix",
]
