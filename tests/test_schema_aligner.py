from app.agent.dedup import invocation_hash
from app.agent.schema_aligner import align_arguments, alias_candidates, normalize_arguments
from app.core.errors import SchemaValidationError

SCHEMA = {
    "type": "object",
    "properties": {"question": {"type": "string"}, "limit": {"type": "integer"}},
    "required": ["question"],
}


def test_missing_required_field_takes_over_alias_key():
    result = align_arguments(SCHEMA, {"query": "oauth2 scopes", "limit": 3})

    assert result.ok
    assert result.args == {"question": "oauth2 scopes", "limit": 3}


def test_alias_lookup_follows_fixed_order():
    assert alias_candidates("question") == ["question", "query", "input", "prompt", "text", "value"]

    result = align_arguments(SCHEMA, {"text": "later", "prompt": "first"})

    assert result.args == {"question": "first"}


def test_empty_required_value_is_replaced_by_alias():
    result = align_arguments(SCHEMA, {"question": "   ", "input": "token refresh"})

    assert result.args == {"question": "token refresh"}


def test_undeclared_keys_are_dropped_unless_additional_properties_allowed():
    args = {"question": "q", "debug": True}

    assert align_arguments(SCHEMA, args).args == {"question": "q"}
    assert align_arguments({**SCHEMA, "additionalProperties": True}, args).args == args
    assert align_arguments({"required": []}, args).args == args


def test_unresolved_required_field_is_reported():
    result = align_arguments(SCHEMA, {"limit": 2})

    assert not result.ok
    assert result.issues == ["Missing required field: question"]
    assert str(SchemaValidationError(result.issues)) == "Invalid tool arguments: Missing required field: question"


def test_normalize_arguments_coerces_planner_output():
    assert normalize_arguments(None) == {}
    assert normalize_arguments('{"query": "sso"}') == {"query": "sso"}
    assert normalize_arguments("plain words") == {"input": "plain words"}
    assert normalize_arguments("[1, 2]") == {"input": "[1, 2]"}
    assert normalize_arguments(42) == {"value": 42}


def test_invocation_hash_ignores_key_order():
    first = invocation_hash("search", {"b": 1, "a": "x"})
    second = invocation_hash("search", {"a": "x", "b": 1})

    assert first == second == 'search::{"a":"x","b":1}'
    assert invocation_hash("other", {"a": "x", "b": 1}) != first
