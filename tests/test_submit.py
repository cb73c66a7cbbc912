"""Submission lifecycle: gating, validation, callbacks and failure handling."""

import asyncio

import pytest

from formcore import FieldApi, FormApi, FormValidators

from helpers import min_length


def make_form(values, submitted, invalid, **options):
    form = FormApi(
        default_values=values,
        on_submit=lambda values, form: submitted.append(values),
        on_submit_invalid=lambda values, form: invalid.append(values),
        **options,
    )
    form.mount()
    return form


@pytest.fixture
def submitted():
    return []


@pytest.fixture
def invalid():
    return []


@pytest.mark.form
class TestHandleSubmit:
    def test_valid_form_submits(self, submitted, invalid):
        form = make_form({"name": "Ann"}, submitted, invalid)
        FieldApi(form, "name", validators={"on_change": min_length(3)}).mount()

        asyncio.run(form.handle_submit())

        assert submitted == [{"name": "Ann"}]
        assert invalid == []
        state = form.state
        assert state.is_submitted is True
        assert state.is_submitting is False
        assert state.submission_attempts == 1

    def test_invalid_after_validation(self, submitted, invalid):
        form = make_form({"name": "a"}, submitted, invalid)
        field = FieldApi(form, "name", validators={"on_change": min_length(3)})
        field.mount()
        assert form.state.can_submit is True

        asyncio.run(form.handle_submit())

        assert submitted == []
        assert invalid == [{"name": "a"}]
        # Submitting validates untouched fields too
        assert field.get_meta().is_touched is True
        assert field.get_meta().errors == ["min length 3"]
        assert form.state.is_submitting is False
        assert form.state.is_submitted is False

    def test_blocked_by_mount_error(self, submitted, invalid):
        form = make_form({"name": ""}, submitted, invalid)
        FieldApi(
            form,
            "name",
            validators={"on_mount": lambda value, field: "required" if not value else None},
        ).mount()
        assert form.state.can_submit is False

        asyncio.run(form.handle_submit())

        assert submitted == []
        assert invalid == [{"name": ""}]
        assert form.state.submission_attempts == 1
        assert form.state.is_submitting is False

    def test_attempts_count_every_submit(self, submitted, invalid):
        form = make_form({"name": "Ann"}, submitted, invalid)

        asyncio.run(form.handle_submit())
        asyncio.run(form.handle_submit())

        assert form.state.submission_attempts == 2
        assert len(submitted) == 2

    def test_submit_validator_without_fields(self, submitted, invalid):
        async def server_check(values, form, signal):
            return "rejected"

        form = make_form(
            {"name": "Ann"},
            submitted,
            invalid,
            validators=FormValidators(on_submit_async=server_check),
        )

        asyncio.run(form.handle_submit())

        assert submitted == []
        assert invalid == [{"name": "Ann"}]
        assert form.state.error_map["onSubmit"] == ["rejected"]
        assert form.state.errors == ["rejected"]

    def test_form_submit_validator(self, submitted, invalid):
        form = make_form(
            {"name": ""},
            submitted,
            invalid,
            validators=FormValidators(
                on_submit=lambda values, form: None if values["name"] else "name required"
            ),
        )

        asyncio.run(form.handle_submit())

        assert invalid == [{"name": ""}]
        assert form.state.errors == ["name required"]


@pytest.mark.form
class TestSubmitCallbacks:
    def test_async_on_submit_is_awaited(self):
        done = []

        async def on_submit(values, form):
            await asyncio.sleep(0)
            assert form.state.is_submitting is True
            done.append(values)

        form = FormApi(default_values={"name": "Ann"}, on_submit=on_submit)

        asyncio.run(form.handle_submit())

        assert done == [{"name": "Ann"}]
        assert form.state.is_submitted is True

    def test_on_submit_exception_resets_submitting(self):
        def on_submit(values, form):
            raise RuntimeError("server unavailable")

        form = FormApi(default_values={"name": "Ann"}, on_submit=on_submit)

        with pytest.raises(RuntimeError, match="server unavailable"):
            asyncio.run(form.handle_submit())

        assert form.state.is_submitting is False
        assert form.state.is_submitted is False

    def test_field_submit_listeners_run_before_on_submit(self):
        order = []
        form = FormApi(
            default_values={"name": "Ann"},
            on_submit=lambda values, form: order.append("form"),
        )
        FieldApi(
            form,
            "name",
            listeners={"on_submit": lambda value, field: order.append(("field", value))},
        ).mount()

        asyncio.run(form.handle_submit())

        assert order == [("field", "Ann"), "form"]

    def test_async_submit_listeners_finish_before_on_submit(self):
        order = []

        async def on_submit_listener(value, field):
            await asyncio.sleep(0.01)
            order.append(("field", value))

        form = FormApi(
            default_values={"name": "Ann"},
            on_submit=lambda values, form: order.append("form"),
        )
        FieldApi(form, "name", listeners={"on_submit": on_submit_listener}).mount()

        asyncio.run(form.handle_submit())

        assert order == [("field", "Ann"), "form"]
        assert form.state.is_submitted is True
