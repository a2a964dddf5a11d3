"""Tests for the curl template compiler, substitution and response extraction."""
import base64
import json

import pytest

from core.errors import TemplateCompileError
from routing.curl import (
    PLACEHOLDERS,
    compile_invocation,
    compile_template,
    extract_path,
    find_placeholders,
    render,
    substitute,
)

OPENAI_STYLE = """curl https://api.example.com/v1/chat/completions \\
  -H "Authorization: Bearer sk-test" \\
  -H 'Content-Type: application/json' \\
  -d '{"model": "m", "messages": [{"role": "system", "content": "{{SYSTEM_PROMPT}}"},
       {"role": "user", "content": "{{USER_MESSAGE}}"}]}'"""


def test_compile_openai_style_invocation():
    compiled = compile_invocation(OPENAI_STYLE)
    assert compiled.method == "POST"
    assert compiled.url == "https://api.example.com/v1/chat/completions"
    assert compiled.headers["Authorization"] == "Bearer sk-test"
    assert compiled.headers["Content-Type"] == "application/json"
    assert compiled.body["messages"][1]["content"] == "{{USER_MESSAGE}}"


def test_explicit_method_and_url_flag():
    compiled = compile_invocation("curl -X put --url=https://h.example/x -d '{\"a\": 1}'")
    assert compiled.method == "PUT"
    assert compiled.url == "https://h.example/x"
    assert compiled.body == {"a": 1}


def test_content_type_defaults_to_json_when_body_present():
    compiled = compile_invocation("curl https://h.example -d '{\"q\": \"{{TEXT}}\"}'")
    assert compiled.headers == {"Content-Type": "application/json"}


def test_user_flag_becomes_basic_auth():
    compiled = compile_invocation("curl -u alice:secret https://h.example -d '{}'")
    expected = base64.b64encode(b"alice:secret").decode("ascii")
    assert compiled.headers["Authorization"] == f"Basic {expected}"


def test_boolean_switches_and_ignored_flags_are_skipped():
    compiled = compile_invocation("curl -s -L --compressed -m 30 https://h.example -d '{}'")
    assert compiled.url == "https://h.example"


@pytest.mark.parametrize("raw, message", [
    ("", "empty"),
    ("wget https://h.example", "must start with 'curl'"),
    ("curl -H 'Accept: */*'", "no URL"),
    ("curl ftp://h.example", "http(s)"),
    ("curl https://h.example -d '{not json'", "not valid JSON"),
    ("curl https://h.example -H", "expects a value"),
    ("curl https://h.example -H 'NoColon'", "Name: value"),
    ("curl https://h.example 'unterminated", "tokenize"),
    ("curl https://a.example https://b.example", "Unexpected argument"),
])
def test_invalid_invocations_fail_compilation(raw, message):
    with pytest.raises(TemplateCompileError) as exc_info:
        compile_invocation(raw)
    assert message in str(exc_info.value)


def test_compile_template_validates_id_and_trims_fields():
    template = compile_template(" my-llm ", "", OPENAI_STYLE, response_path="  ")
    assert template.id == "my-llm"
    assert template.display_name == "my-llm"
    assert template.response_path is None

    with pytest.raises(TemplateCompileError):
        compile_template("  ", "Name", OPENAI_STYLE)


def test_every_placeholder_is_resolved_everywhere():
    body = {name.lower(): "{{%s}}" % name for name in PLACEHOLDERS}
    body["nested"] = [{"deep": "prefix {{TEXT}} suffix"}, 7, None]
    raw = (
        "curl 'https://h.example/{{CONTEXT}}?q={{PROMPT}}' "
        "-H 'X-System: {{SYSTEM_PROMPT}}' -H 'X-Image: {{IMAGE_BASE64}}' "
        f"-d '{json.dumps(body)}'"
    )
    compiled = compile_invocation(raw)
    assert set(find_placeholders(compiled)) == set(PLACEHOLDERS)

    variables = {name: f"value-{name}" for name in PLACEHOLDERS}
    rendered = render(compiled, variables)

    assert find_placeholders(rendered) == []
    assert rendered.url == "https://h.example/value-CONTEXT?q=value-PROMPT"
    assert rendered.headers["X-System"] == "value-SYSTEM_PROMPT"
    assert rendered.body["nested"] == [{"deep": "prefix value-TEXT suffix"}, 7, None]


def test_substitution_keeps_body_valid_json_with_quotes():
    rendered = substitute({"content": "{{TEXT}}"}, {"TEXT": 'He said "hi"\nthen left'})
    assert json.loads(json.dumps(rendered)) == {"content": 'He said "hi"\nthen left'}


def test_unknown_placeholders_are_left_alone():
    assert substitute("{{ TEXT }} and {{OTHER}}", {"TEXT": "x"}) == "x and {{OTHER}}"


def test_extract_default_path():
    payload = {"choices": [{"message": {"content": "Paris"}}]}
    assert extract_path(payload) == "Paris"


@pytest.mark.parametrize("path", ["content[0].text", "content.0.text"])
def test_extract_custom_path_forms(path):
    payload = {"content": [{"type": "text", "text": "Berlin"}]}
    assert extract_path(payload, path) == "Berlin"


def test_extract_unresolved_path_stringifies_payload():
    payload = {"result": "Rome"}
    assert extract_path(payload) == json.dumps(payload)


def test_extract_non_string_value_is_serialized():
    assert extract_path({"data": {"answer": 42}}, "data.answer") == "42"


def test_extract_empty_string_stays_empty():
    assert extract_path({"choices": [{"message": {"content": ""}}]}) == ""
