import pytest

from hivemind.errors import MalformedOutputError, ProviderError
from hivemind.structured_output import parse_structured_output, require_structured_output


def test_fenced_block_with_prose_around_it():
    text = 'Claro!\n```json\n{"a": 1}\n```\nObrigado'
    parsed = parse_structured_output(text)
    assert parsed.ok
    assert parsed.data == {"a": 1}
    assert parsed.strategy == "fenced"


def test_unlabelled_fence():
    parsed = parse_structured_output('```\n{"b": true}\n```')
    assert parsed.data == {"b": True}


def test_bare_braces_inside_prose():
    parsed = parse_structured_output('Resposta: {"a": [1, 2]} fim')
    assert parsed.data == {"a": [1, 2]}
    assert parsed.strategy == "braces"


def test_trailing_comma_repaired_once():
    parsed = parse_structured_output('{"a": 1, "b": [1, 2,],}')
    assert parsed.data == {"a": 1, "b": [1, 2]}
    assert parsed.strategy == "braces+repaired"


def test_non_object_and_empty_inputs():
    assert parse_structured_output("[1, 2]").error == "no JSON object found"
    assert parse_structured_output("").error == "empty response"
    assert parse_structured_output(None).error == "empty response"
    assert parse_structured_output("{not json}").error == "JSON object could not be decoded"


def test_require_raises_malformed_output_with_raw_text():
    with pytest.raises(MalformedOutputError) as exc:
        require_structured_output("no json here")
    assert exc.value.raw == "no json here"
    assert isinstance(exc.value, ProviderError)
