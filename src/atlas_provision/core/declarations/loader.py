# src/atlas_provision/core/declarations/loader.py
"""
Declaration Loader do Atlas Provision.

Este módulo transforma um ou mais documentos YAML/JSON em um `ModuleTree`.
Documentos do mesmo conjunto formam um único namespace raiz; chamadas de
módulo carregam recursivamente o diretório indicado em `source`.

Layout de documento (v1):

    variable:  {<nome>: {type, default, description}}
    locals:    {<nome>: <valor>}
    resource:  {<tipo>: {<nome>: {count | for_each, depends_on, <atributos>}}}
    module:    {<nome>: {source, count | for_each, depends_on, <inputs>}}
    output:    {<nome>: {value, description}}

Responsabilidades:
    - Ler YAML (PyYAML) e JSON rejeitando chaves duplicadas no documento
    - Validar forma dos blocos e nomes
    - Parsear todas as expressões no load (erros de sintaxe surgem cedo)
    - Detectar declarações duplicadas entre documentos
    - Resolver fontes de módulo relativas ao documento chamador e detectar
      inclusão recursiva
    - Validar inputs de módulo contra as variáveis do filho

Decisões arquiteturais:
    - Nenhum efeito colateral além de leitura de arquivos
    - Toda falha estrutural é fatal e tipada (`DeclarationSyntaxError`,
      `DuplicateDeclarationError`, `CyclicDependencyError`, erros de variável)

Limites explícitos:
    - Não resolve valores de variáveis
    - Não valida alvos de referências (responsabilidade do grafo)
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml  # PyYAML
from yaml.constructor import ConstructorError

from ..exceptions import (
    CyclicDependencyError,
    DeclarationSyntaxError,
    DuplicateDeclarationError,
    MissingVariableError,
    TypeMismatchError,
    UndeclaredVariableError,
)
from ..expressions.functions import FUNCTIONS
from ..expressions.parser import (
    ExpressionSyntaxError,
    GetAttr,
    Literal,
    Variable,
    collect_function_names,
    parse_expression,
    parse_template,
)
from ..values import ValueConversionError, convert_value, parse_type
from .model import (
    Declaration,
    ExpansionDirective,
    LocalDecl,
    ModuleCallDecl,
    ModuleTree,
    OutputDecl,
    ResourceDecl,
    VariableDecl,
)


_BLOCKS = ("variable", "locals", "resource", "module", "output")
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RESERVED_TYPES = {"var", "local", "module", "output", "count", "each", "workspace", "self"}
_SUFFIXES = {".yaml": "yaml", ".yml": "yaml", ".json": "json"}
_VARIABLE_KEYS = {"type", "default", "description"}
_OUTPUT_KEYS = {"value", "description"}
_META_KEYS = {"count", "for_each", "depends_on"}


# ---------------------------------------------------------------------------
# Leitura de documentos
# ---------------------------------------------------------------------------

class _StrictLoader(yaml.SafeLoader):
    """SafeLoader que rejeita chaves repetidas em um mesmo mapping."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            try:
                duplicate = key in seen
            except TypeError:
                continue
            if duplicate:
                raise ConstructorError(
                    "ao ler mapping", node.start_mark,
                    f"chave duplicada {key!r}", key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _json_pairs(document: str):
    def hook(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in pairs:
            if key in out:
                raise DeclarationSyntaxError(
                    message=f"chave duplicada {key!r} em {document}",
                    details={"document": document, "key": key},
                    hint="Remova ou renomeie a chave repetida",
                )
            out[key] = value
        return out
    return hook


def _read_text(document: str, text: str) -> Dict[str, Any]:
    fmt = _SUFFIXES.get(Path(document).suffix.lower(), "yaml")
    try:
        if fmt == "json":
            data = json.loads(text, object_pairs_hook=_json_pairs(document))
        else:
            data = yaml.load(text, Loader=_StrictLoader)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise DeclarationSyntaxError(
            message=f"documento malformado: {document}",
            details={"document": document, "reason": str(e)},
            hint="Corrija a sintaxe YAML/JSON do documento",
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DeclarationSyntaxError(
            message=f"raiz do documento deve ser um mapa: {document}",
            details={"document": document, "received": type(data).__name__},
        )
    return data


def _documents_in(directory: Path) -> List[Path]:
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in _SUFFIXES)


# ---------------------------------------------------------------------------
# Construção do namespace
# ---------------------------------------------------------------------------

def _syntax(message: str, document: str, **details: Any) -> DeclarationSyntaxError:
    return DeclarationSyntaxError(
        message=message,
        details={"document": document, **details},
        hint="Revise a estrutura do bloco indicado",
    )


def _check_name(name: Any, what: str, document: str) -> str:
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise _syntax(f"nome inválido para {what}: {name!r}", document, name=str(name))
    return name


def _as_mapping(value: Any, what: str, document: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _syntax(f"{what} deve ser um mapa, recebido {type(value).__name__}", document)
    return value


def _to_tree(value: Any, declaration: str, document: str) -> Any:
    """Converte um valor bruto do documento em árvore de atributos."""
    if isinstance(value, str):
        try:
            node = parse_template(value)
        except ExpressionSyntaxError as e:
            raise DeclarationSyntaxError(
                message=f"expressão malformada em {declaration}: {e}",
                details={
                    "document": document,
                    "declaration": declaration,
                    "expression": value,
                    "position": e.position,
                },
                hint="Corrija a sintaxe da expressão `${...}`",
            ) from e
        if isinstance(node, Literal):
            return node.value
        unknown = sorted(collect_function_names(node) - set(FUNCTIONS))
        if unknown:
            raise DeclarationSyntaxError(
                message=f"função desconhecida em {declaration}: {', '.join(unknown)}",
                details={"document": document, "declaration": declaration, "functions": unknown},
                hint=f"Funções disponíveis: {', '.join(sorted(FUNCTIONS))}",
            )
        return node
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise _syntax(f"chaves de atributo devem ser string em {declaration}: {k!r}", document)
            out[k] = _to_tree(v, declaration, document)
        return out
    if isinstance(value, list):
        return [_to_tree(v, declaration, document) for v in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    raise _syntax(
        f"valor não suportado em {declaration}: {type(value).__name__}",
        document,
        declaration=declaration,
    )


def _parse_depends_on(value: Any, declaration: str, document: str) -> List[Tuple[str, ...]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise _syntax(f"depends_on deve ser lista em {declaration}", document, declaration=declaration)
    out: List[Tuple[str, ...]] = []
    for item in value:
        text = item
        if isinstance(item, str) and item.startswith("${") and item.endswith("}"):
            text = item[2:-1]
        path: Optional[Tuple[str, ...]] = None
        if isinstance(text, str):
            try:
                node = parse_expression(text)
            except ExpressionSyntaxError:
                node = None
            path = _static_path(node)
        if path is None or len(path) != 2 or path[0] in ("var", "local", "count", "each", "workspace"):
            raise _syntax(
                f"depends_on de {declaration} aceita apenas `<tipo>.<nome>` ou `module.<nome>`: {item!r}",
                document,
                declaration=declaration,
            )
        out.append(path)
    return out


def _static_path(node: Any) -> Optional[Tuple[str, ...]]:
    if isinstance(node, Variable):
        return (node.name,)
    if isinstance(node, GetAttr):
        base = _static_path(node.obj)
        return None if base is None else base + (node.name,)
    return None


def _parse_directive(body: Dict[str, Any], declaration: str, document: str) -> Optional[ExpansionDirective]:
    has_count = "count" in body
    has_for_each = "for_each" in body
    if has_count and has_for_each:
        raise DeclarationSyntaxError(
            message=f"{declaration} declara `count` e `for_each` simultaneamente",
            details={"document": document, "declaration": declaration},
            hint="Use apenas uma diretiva de expansão por declaração",
        )
    if has_count:
        return ExpansionDirective("count", _to_tree(body["count"], declaration, document))
    if has_for_each:
        return ExpansionDirective("for_each", _to_tree(body["for_each"], declaration, document))
    return None


class _NamespaceBuilder:
    """Acumula declarações de vários documentos em um único `ModuleTree`."""

    def __init__(self, tree: ModuleTree, stack: Tuple[Path, ...]):
        self.tree = tree
        self.stack = stack
        self.order = 0
        self.seen: Dict[Tuple[str, str], str] = {}

    def _register(self, decl: Declaration, key: Tuple[str, str]) -> None:
        previous = self.seen.get(key)
        if previous is not None:
            where = ".".join(self.tree.path) or "<root>"
            raise DuplicateDeclarationError(
                message=f"{key[0]} {key[1]!r} declarado mais de uma vez no módulo {where}",
                details={"kind": key[0], "name": key[1], "module": where, "documents": [previous, decl.document]},
                hint="Renomeie ou remova uma das declarações",
            )
        self.seen[key] = decl.document

    def _next_order(self) -> int:
        self.order += 1
        return self.order - 1

    def add_document(self, document: str, data: Dict[str, Any], base_dir: Path) -> None:
        self.tree.documents.append(document)
        for block in data:
            if block not in _BLOCKS:
                raise _syntax(
                    f"bloco desconhecido {block!r} (esperado um de {', '.join(_BLOCKS)})",
                    document,
                    block=str(block),
                )
        for block, content in data.items():
            getattr(self, f"_add_{block}")(_as_mapping(content, f"bloco {block}", document), document, base_dir)

    # -- blocos ------------------------------------------------------------
    def _add_variable(self, content: Dict[str, Any], document: str, base_dir: Path) -> None:
        for name, body in content.items():
            _check_name(name, "variable", document)
            body = _as_mapping(body, f"variable {name}", document)
            extra = sorted(set(body) - _VARIABLE_KEYS)
            if extra:
                raise _syntax(f"chaves não suportadas em variable {name}: {extra}", document, declaration=f"var.{name}")
            try:
                type_spec = parse_type(body.get("type"))
            except ValueConversionError as e:
                raise _syntax(f"tipo inválido em variable {name}: {e}", document, declaration=f"var.{name}") from e
            default = body.get("default")
            if "default" in body:
                try:
                    default = convert_value(default, type_spec)
                except ValueConversionError as e:
                    raise TypeMismatchError(
                        message=f"default de var.{name} não satisfaz o tipo {type_spec}: {e}",
                        details={"variable": name, "source": "default", "type": str(type_spec), "document": document},
                        hint="Ajuste o default ou o tipo declarado",
                    ) from e
            decl = VariableDecl(
                name=name,
                document=document,
                order=self._next_order(),
                type_spec=type_spec,
                default=default,
                has_default="default" in body,
                description=body.get("description"),
            )
            self._register(decl, ("variable", name))
            self.tree.variables[name] = decl

    def _add_locals(self, content: Dict[str, Any], document: str, base_dir: Path) -> None:
        for name, value in content.items():
            _check_name(name, "local", document)
            decl = LocalDecl(
                name=name,
                document=document,
                order=self._next_order(),
                value=_to_tree(value, f"local.{name}", document),
            )
            self._register(decl, ("local", name))
            self.tree.locals[name] = decl

    def _add_resource(self, content: Dict[str, Any], document: str, base_dir: Path) -> None:
        for rtype, by_name in content.items():
            _check_name(rtype, "tipo de resource", document)
            if rtype in _RESERVED_TYPES:
                raise _syntax(f"tipo de resource reservado: {rtype!r}", document)
            for name, body in _as_mapping(by_name, f"resource {rtype}", document).items():
                _check_name(name, "resource", document)
                local_id = f"{rtype}.{name}"
                body = _as_mapping(body, f"resource {local_id}", document)
                attributes = {
                    k: _to_tree(v, local_id, document) for k, v in body.items() if k not in _META_KEYS
                }
                for k in attributes:
                    if not isinstance(k, str):
                        raise _syntax(f"atributo inválido em {local_id}: {k!r}", document)
                decl = ResourceDecl(
                    name=name,
                    document=document,
                    order=self._next_order(),
                    resource_type=rtype,
                    attributes=attributes,
                    directive=_parse_directive(body, local_id, document),
                    depends_on=_parse_depends_on(body.get("depends_on"), local_id, document),
                )
                self._register(decl, ("resource", local_id))
                self.tree.resources[local_id] = decl

    def _add_module(self, content: Dict[str, Any], document: str, base_dir: Path) -> None:
        for name, body in content.items():
            _check_name(name, "module", document)
            local_id = f"module.{name}"
            body = _as_mapping(body, local_id, document)
            source = body.get("source")
            if not isinstance(source, str) or not source.strip():
                raise _syntax(f"{local_id} exige `source` (diretório)", document, declaration=local_id)
            decl = ModuleCallDecl(
                name=name,
                document=document,
                order=self._next_order(),
                source=source,
                inputs={
                    k: _to_tree(v, local_id, document)
                    for k, v in body.items()
                    if k not in _META_KEYS and k != "source"
                },
                directive=_parse_directive(body, local_id, document),
                depends_on=_parse_depends_on(body.get("depends_on"), local_id, document),
            )
            self._register(decl, ("module", name))
            decl.tree = _load_module_source(decl, base_dir, self.tree.path, self.stack)
            _check_module_inputs(decl)
            self.tree.modules[name] = decl

    def _add_output(self, content: Dict[str, Any], document: str, base_dir: Path) -> None:
        for name, body in content.items():
            _check_name(name, "output", document)
            body = _as_mapping(body, f"output {name}", document)
            extra = sorted(set(body) - _OUTPUT_KEYS)
            if extra:
                raise _syntax(f"chaves não suportadas em output {name}: {extra}", document, declaration=f"output.{name}")
            if "value" not in body:
                raise _syntax(f"output {name} exige `value`", document, declaration=f"output.{name}")
            decl = OutputDecl(
                name=name,
                document=document,
                order=self._next_order(),
                value=_to_tree(body["value"], f"output.{name}", document),
                description=body.get("description"),
            )
            self._register(decl, ("output", name))
            self.tree.outputs[name] = decl


def _load_module_source(
    decl: ModuleCallDecl,
    base_dir: Path,
    parent_path: Tuple[str, ...],
    stack: Tuple[Path, ...],
) -> ModuleTree:
    source_dir = (base_dir / decl.source).resolve()
    if source_dir in stack:
        chain = [str(p) for p in stack[stack.index(source_dir):]] + [str(source_dir)]
        raise CyclicDependencyError(
            message=f"módulo {decl.name!r} inclui a si mesmo transitivamente",
            details={"declaration": decl.local_id, "cycle": chain},
            hint="Remova a chamada recursiva de módulo",
        )
    if not source_dir.is_dir():
        raise _syntax(
            f"source de {decl.local_id} não é um diretório: {decl.source}",
            decl.document,
            declaration=decl.local_id,
            source=decl.source,
        )
    files = _documents_in(source_dir)
    tree = ModuleTree(path=parent_path + (decl.name,), source_dir=source_dir)
    builder = _NamespaceBuilder(tree, stack + (source_dir,))
    for path in files:
        builder.add_document(str(path), _read_text(str(path), path.read_text(encoding="utf-8")), source_dir)
    return tree


def _check_module_inputs(decl: ModuleCallDecl) -> None:
    child = decl.tree
    for name in decl.inputs:
        if name not in child.variables:
            raise UndeclaredVariableError(
                message=f"{decl.local_id} recebe input {name!r} não declarado no módulo",
                details={"declaration": decl.local_id, "variable": name, "source": decl.source},
                hint="Declare a variável no módulo filho ou remova o input",
            )
    for name, var in child.variables.items():
        if var.required and name not in decl.inputs:
            raise MissingVariableError(
                message=f"{decl.local_id} não informa a variável obrigatória {name!r}",
                details={"declaration": decl.local_id, "variable": name, "source": decl.source},
                hint="Informe o input na chamada do módulo ou declare um default",
            )


# ---------------------------------------------------------------------------
# API pública
# ---------------------------------------------------------------------------

def parse_declarations(
    documents: Mapping[str, str],
    *,
    base_dir: Optional[Union[str, Path]] = None,
) -> ModuleTree:
    """
    Constrói o namespace raiz a partir de documentos em memória.

    Args:
        documents: Mapa `nome do documento → texto`. A extensão do nome define
            o formato (`.json` → JSON; demais → YAML).
        base_dir: Diretório usado para resolver `source` de módulos
            (padrão: diretório corrente).

    Returns:
        ModuleTree: Namespace raiz.
    """
    root_dir = Path(base_dir).resolve() if base_dir is not None else Path.cwd().resolve()
    tree = ModuleTree(path=(), source_dir=root_dir if base_dir is not None else None)
    builder = _NamespaceBuilder(tree, (root_dir,))
    for name, text in documents.items():
        builder.add_document(name, _read_text(name, text), root_dir)
    return tree


def load_declarations(paths: Sequence[Union[str, Path]]) -> ModuleTree:
    """
    Carrega documentos do disco em um único namespace raiz.

    Cada item pode ser um arquivo (.yaml, .yml, .json) ou um diretório (todos
    os documentos suportados, em ordem de nome). Fontes de módulo são
    resolvidas relativamente ao documento que as declara.

    Raises:
        DeclarationSyntaxError: Documento ausente, malformado ou inválido.
        DuplicateDeclarationError: Mesma declaração em dois documentos.
        CyclicDependencyError: Módulo que inclui a si mesmo.
        UndeclaredVariableError / MissingVariableError: Inputs de módulo inválidos.
    """
    files: List[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(_documents_in(path))
        elif path.is_file():
            if path.suffix.lower() not in _SUFFIXES:
                raise _syntax(f"extensão não suportada: {path.suffix}", str(path))
            files.append(path)
        else:
            raise _syntax(f"documento não encontrado: {path}", str(path))

    dirs = tuple(dict.fromkeys(p.parent.resolve() for p in files))
    tree = ModuleTree(path=(), source_dir=dirs[0] if len(dirs) == 1 else None)
    builder = _NamespaceBuilder(tree, dirs)
    for path in files:
        builder.add_document(str(path), _read_text(str(path), path.read_text(encoding="utf-8")), path.parent.resolve())
    return tree
