"""Standard-schema bridge: issue mapping and form/field integration."""

import asyncio
from types import SimpleNamespace

import pytest

from formcore import FieldApi, FormApi, FormValidators
from formcore.standard_schema import (
    StandardSchemaValidator,
    is_standard_schema,
    issue_path,
)
from formcore.types import StandardSchemaAsyncError, ValidatorProps


def make_schema(check):
    """Schema object whose ``~standard.validate`` reports ``check(value)`` issues."""
    schema = SimpleNamespace()
    setattr(
        schema,
        "~standard",
        SimpleNamespace(validate=lambda value: {"issues": check(value)}),
    )
    return schema


def make_async_schema(check):
    async def validate(value):
        return {"issues": check(value)}

    schema = SimpleNamespace()
    setattr(schema, "~standard", SimpleNamespace(validate=validate))
    return schema


def required_name(values):
    if values.get("name"):
        return []
    return [{"message": "required", "path": ["name"]}]


def field_props(value):
    return ValidatorProps(value=value, form_api=None, validation_source="field")


@pytest.mark.unit
@pytest.mark.validation
class TestBridge:
    def test_recognizes_attribute_and_mapping_schemas(self):
        assert is_standard_schema(make_schema(lambda value: []))
        assert is_standard_schema({"~standard": SimpleNamespace(validate=None)})
        assert not is_standard_schema(lambda value: None)
        assert not is_standard_schema(None)

    def test_issue_path_joins_keys_and_indices(self):
        assert issue_path(["items", 0, "name"]) == "items[0].name"
        assert issue_path([{"key": "a"}, {"key": 1}]) == "a[1]"
        assert issue_path([]) == ""
        assert issue_path(None) == ""

    def test_field_source_yields_messages(self):
        schema = make_schema(lambda value: [{"message": "too short"}, {"message": "no digits"}])

        result = StandardSchemaValidator().validate(field_props("ab"), schema)

        assert result == ["too short", "no digits"]

    def test_form_source_groups_issues_by_path(self):
        schema = make_schema(
            lambda value: [
                {"message": "required", "path": ["name"]},
                {"message": "bad item", "path": ["items", 1]},
                {"message": "form is bad"},
            ]
        )
        props = ValidatorProps(value={}, form_api=None, validation_source="form")

        result = StandardSchemaValidator().validate(props, schema)

        assert result == {
            "form": ["form is bad"],
            "fields": {"name": ["required"], "items[1]": ["bad item"]},
        }

    def test_no_issues_is_no_error(self):
        schema = make_schema(lambda value: [])

        assert StandardSchemaValidator().validate(field_props("ok"), schema) is None

    def test_async_schema_on_sync_path_raises(self):
        schema = make_async_schema(lambda value: [])

        with pytest.raises(StandardSchemaAsyncError):
            StandardSchemaValidator().validate(field_props("x"), schema)

        # Still a TypeError for callers that catch that
        assert issubclass(StandardSchemaAsyncError, TypeError)

    def test_async_schema_on_async_path(self):
        schema = make_async_schema(lambda value: [{"message": "taken"}])

        result = asyncio.run(
            StandardSchemaValidator().validate_async(field_props("bob"), schema)
        )

        assert result == ["taken"]


@pytest.mark.integration
@pytest.mark.validation
def test_form_schema_errors_land_on_fields():
    """A form-level schema routes its issues to the matching field"""
    form = FormApi(
        default_values={"name": ""},
        validators=FormValidators(on_change=make_schema(required_name)),
    )
    form.mount()
    field = FieldApi(form, "name")
    field.mount()

    field.set_value("")
    assert form.get_field_meta("name").errors == ["required"]
    assert form.state.is_valid is False

    field.set_value("Ann")
    assert form.get_field_meta("name").errors == []
    assert form.state.is_valid is True


@pytest.mark.integration
@pytest.mark.validation
def test_field_schema_validator():
    """Field validators can be schemas too"""
    form = FormApi(default_values={"code": ""})
    form.mount()
    schema = make_schema(lambda value: [] if len(value) == 4 else [{"message": "4 digits"}])
    field = FieldApi(form, "code", validators={"on_change": schema})
    field.mount()

    assert field.set_value("12") == ["4 digits"]
    assert field.set_value("1234") == []
