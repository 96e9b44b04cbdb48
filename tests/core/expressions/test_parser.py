# tests/core/expressions/test_parser.py
"""
Testes do parser de expressões `${...}`.

Os testes asseguram que:
- um texto que é exatamente `${expr}` produz o nó da expressão (valor bruto)
- texto misto produz `Template`
- `$${` escapa interpolação
- referências estáticas são coletadas com o caminho máximo
- nomes ligados por comprehension não são referências
- erros de sintaxe levantam `ExpressionSyntaxError` com posição

Limites explícitos:
    - Não valida avaliação (ver test_evaluator.py)
"""
import pytest

try:
    from atlas_provision.core.expressions.parser import (
        Binary,
        Call,
        ExpressionSyntaxError,
        GetAttr,
        Literal,
        Template,
        collect_function_names,
        collect_references,
        parse_expression,
        parse_template,
    )
except Exception as e:  # noqa: BLE001
    parse_expression = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing src/atlas_provision/core/expressions/parser.py. Import error: {_IMPORT_ERR}")


def _refs(text):
    return [str(r) for r in collect_references(parse_template(text))]


def test_plain_string_is_literal():
    _require_imports()
    node = parse_template("hello")
    assert isinstance(node, Literal)
    assert node.value == "hello"


def test_single_interpolation_yields_raw_expression():
    """
    `"${var.n}"` não vira template: o resultado preserva o tipo do valor.
    """
    _require_imports()
    node = parse_template("${var.n}")
    assert isinstance(node, GetAttr)
    assert node.name == "n"


def test_mixed_text_yields_template():
    _require_imports()
    node = parse_template("web-${count.index}")
    assert isinstance(node, Template)
    assert isinstance(node.parts[0], Literal)
    assert node.parts[0].value == "web-"


def test_escaped_interpolation_is_literal():
    _require_imports()
    node = parse_template("$${not.a.ref}")
    assert isinstance(node, Literal)
    assert node.value == "${not.a.ref}"


def test_operator_precedence():
    _require_imports()
    node = parse_expression("1 + 2 * 3")
    assert isinstance(node, Binary)
    assert node.op == "+"
    assert isinstance(node.right, Binary)
    assert node.right.op == "*"


def test_hyphen_is_subtraction():
    _require_imports()
    node = parse_expression("a-b")
    assert isinstance(node, Binary)
    assert node.op == "-"


def test_function_call_with_expansion():
    _require_imports()
    node = parse_expression("concat(var.a, var.lists...)")
    assert isinstance(node, Call)
    assert node.name == "concat"
    assert node.expand_final is True


def test_collect_references_static_paths():
    _require_imports()
    refs = _refs("${aws_instance.web.id}-${var.region}-${module.net.vpc_id}")
    assert refs == ["aws_instance.web.id", "var.region", "module.net.vpc_id"]


def test_references_stop_at_index_and_splat():
    _require_imports()
    assert _refs("${aws_instance.web[0].id}") == ["aws_instance.web"]
    assert _refs("${aws_instance.web[*].id}") == ["aws_instance.web"]


def test_comprehension_bound_names_are_not_references():
    _require_imports()
    refs = _refs("${[for s in var.subnets : upper(s.name) if s.public]}")
    assert refs == ["var.subnets"]


def test_references_inside_nested_string_template():
    _require_imports()
    refs = _refs('${format("%s", "x-${local.suffix}")}')
    assert refs == ["local.suffix"]


def test_collect_function_names():
    _require_imports()
    names = collect_function_names(parse_expression("join(\",\", toset(keys(var.m)))"))
    assert names == {"join", "toset", "keys"}


@pytest.mark.parametrize(
    "text",
    [
        "${}",
        "${1 +}",
        "${var.a ? 1}",
        "${[1, 2}",
        "${foo(1 2)}",
        "${a # b}",
    ],
)
def test_syntax_errors(text):
    """
    Verifica que textos malformados são rejeitados com `ExpressionSyntaxError`.
    """
    _require_imports()
    with pytest.raises(ExpressionSyntaxError):
        parse_template(text)


def test_syntax_error_carries_position():
    _require_imports()
    with pytest.raises(ExpressionSyntaxError) as exc:
        parse_expression("1 + + )")
    assert exc.value.position is not None
    assert exc.value.source == "1 + + )"
