# tests/core/graph/test_builder.py
"""
Testes do Dependency Graph Builder.

Os testes asseguram que:
- referências em atributos, diretivas e `depends_on` viram arestas
- a ordem topológica é determinística (empates pela ordem de declaração)
- referência a declaração inexistente é `UnknownReferenceError`
- ciclos são `CyclicDependencyError` com o caminho completo
- `count.index` / `each.*` fora de contexto são rejeitados
- declarações de módulo filho dependem da chamada do módulo

Limites explícitos:
    - Não avalia expressões
"""
from pathlib import Path

import pytest

try:
    from atlas_provision.core.declarations import parse_declarations
    from atlas_provision.core.exceptions import CyclicDependencyError, UnknownReferenceError
    from atlas_provision.core.graph import build_graph, qualify, resource_nodes
except Exception as e:  # noqa: BLE001
    build_graph = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/atlas_provision/core/graph/builder.py. Import error: {_IMPORT_ERR}")


def _graph(doc, **kwargs):
    return build_graph(parse_declarations({"main.yaml": doc}, **kwargs))


DOC = """\
variable:
  region:
    default: us-east-1
locals:
  name: "app-${var.region}"
resource:
  net_subnet:
    b:
      vpc: "${net_vpc.main.id}"
  net_vpc:
    main:
      name: "${local.name}"
  null_resource:
    after:
      depends_on: [net_subnet.b]
output:
  vpc_id:
    value: "${net_vpc.main.id}"
"""


def test_edges_from_references_and_depends_on():
    _require_imports()
    g = _graph(DOC)
    assert g.dependencies["local.name"] == {"var.region"}
    assert g.dependencies["net_vpc.main"] == {"local.name"}
    assert g.dependencies["net_subnet.b"] == {"net_vpc.main"}
    assert g.dependencies["null_resource.after"] == {"net_subnet.b"}
    assert g.dependencies["output.vpc_id"] == {"net_vpc.main"}
    assert g.dependents["net_vpc.main"] == {"net_subnet.b", "output.vpc_id"}


def test_topological_order_is_deterministic():
    """
    Dependências vêm antes; empates seguem a ordem de declaração.
    """
    _require_imports()
    g = _graph(DOC)
    assert g.order == [
        "var.region",
        "local.name",
        "net_vpc.main",
        "net_subnet.b",
        "null_resource.after",
        "output.vpc_id",
    ]
    assert g.position("net_vpc.main") < g.position("net_subnet.b")
    assert [n.id for n in resource_nodes(g)] == ["net_vpc.main", "net_subnet.b", "null_resource.after"]


def test_resource_dependencies_cross_non_resource_nodes():
    _require_imports()
    doc = (
        "resource:\n"
        "  a_thing:\n"
        "    one: {}\n"
        "    two:\n"
        "      ref: \"${local.x}\"\n"
        "locals:\n"
        "  x: \"${a_thing.one.id}\"\n"
    )
    g = _graph(doc)
    assert g.resource_dependencies("a_thing.two") == {"a_thing.one"}


@pytest.mark.parametrize(
    "doc, missing",
    [
        ("locals:\n  a: \"${var.nope}\"\n", "var.nope"),
        ("locals:\n  a: \"${local.nope}\"\n", "local.nope"),
        ("locals:\n  a: \"${aws_x.nope.id}\"\n", "aws_x.nope"),
        ("locals:\n  a: \"${module.nope.out}\"\n", "module.nope"),
        ("resource:\n  a_b:\n    c:\n      depends_on: [a_b.d]\n", "a_b.d"),
    ],
)
def test_unknown_reference(doc, missing):
    _require_imports()
    with pytest.raises(UnknownReferenceError) as exc:
        _graph(doc)
    assert exc.value.details["reference"] == missing


def test_count_index_outside_count_is_rejected():
    _require_imports()
    with pytest.raises(UnknownReferenceError):
        _graph("resource:\n  a_b:\n    c:\n      n: \"${count.index}\"\n")


def test_each_outside_for_each_is_rejected():
    _require_imports()
    with pytest.raises(UnknownReferenceError):
        _graph("resource:\n  a_b:\n    c:\n      count: 1\n      n: \"${each.key}\"\n")


def test_directive_cannot_reference_itself_meta():
    _require_imports()
    with pytest.raises(UnknownReferenceError):
        _graph("resource:\n  a_b:\n    c:\n      count: \"${count.index}\"\n")


def test_cycle_is_reported_with_path():
    """
    Verifica que o ciclo é detectado e o caminho completo vai em `details`.
    """
    _require_imports()
    doc = (
        "locals:\n"
        "  a: \"${local.b}\"\n"
        "  b: \"${local.c}\"\n"
        "  c: \"${local.a}\"\n"
    )
    with pytest.raises(CyclicDependencyError) as exc:
        _graph(doc)
    assert exc.value.details["cycle"] == ["local.a", "local.b", "local.c", "local.a"]


def test_self_reference_is_cycle():
    _require_imports()
    with pytest.raises(CyclicDependencyError):
        _graph("resource:\n  a_b:\n    c:\n      n: \"${a_b.c.id}\"\n")


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_module_nodes_are_qualified_and_depend_on_call(tmp_path: Path):
    _require_imports()
    _write(
        tmp_path / "net" / "main.yaml",
        "variable:\n  cidr:\n    default: 10.0.0.0/16\n"
        "resource:\n  net_vpc:\n    this:\n      cidr: \"${var.cidr}\"\n"
        "output:\n  id:\n    value: \"${net_vpc.this.id}\"\n",
    )
    doc = (
        "module:\n  net:\n    source: ./net\n"
        "resource:\n  app_server:\n    web:\n      vpc: \"${module.net.id}\"\n"
        "  app_dns:\n    rec:\n      depends_on: [module.net]\n"
    )
    g = _graph(doc, base_dir=tmp_path)

    assert qualify(("net",), "net_vpc.this") == "module.net.net_vpc.this"
    assert "module.net.net_vpc.this" in g.nodes
    assert "module.net" in g.dependencies["module.net.var.cidr"]
    assert "module.net" in g.dependencies["module.net.net_vpc.this"]
    assert g.dependencies["app_server.web"] == {"module.net.output.id"}
    assert g.dependencies["app_dns.rec"] == {"module.net", "module.net.net_vpc.this"}
    assert g.resource_dependencies("app_server.web") == {"module.net.net_vpc.this"}
    assert g.position("module.net") < g.position("module.net.net_vpc.this") < g.position("app_server.web")


def test_unknown_module_output(tmp_path: Path):
    _require_imports()
    _write(tmp_path / "m" / "main.yaml", "output:\n  a:\n    value: 1\n")
    with pytest.raises(UnknownReferenceError):
        _graph("locals:\n  x: \"${module.m.b}\"\nmodule:\n  m:\n    source: ./m\n", base_dir=tmp_path)
