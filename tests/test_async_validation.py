"""
Async validation: debounce, supersession, error capture and the interplay
between sync and async validators.

Every scenario runs inside ``asyncio.run`` so validation tasks have a loop.
"""

import asyncio
import inspect

import pytest

from formcore import INVALID_FORM_VALUES, FieldApi, FormApi, FormError, FormValidators

from helpers import min_length


def run(scenario):
    return asyncio.run(scenario())


@pytest.mark.validation
class TestFormAsync:
    def test_debounced_validation_is_superseded(self):
        calls = []
        seen_validating = []

        async def username_taken(values, form, signal):
            calls.append(values["username"])
            seen_validating.append(form.state.is_form_validating)
            return "taken"

        form = FormApi(
            default_values={"username": ""},
            validators=FormValidators(
                on_change_async=username_taken, on_change_async_debounce_ms=20
            ),
        )
        form.mount()

        async def scenario():
            form.set_field_value("username", "al")
            first = asyncio.ensure_future(form.validate_async("change"))
            await asyncio.sleep(0.005)
            form.set_field_value("username", "bob")
            second = asyncio.ensure_future(form.validate_async("change"))
            return await asyncio.gather(first, second)

        results = run(scenario)

        assert results == [{}, {}]
        assert calls == ["bob"]
        assert seen_validating == [True]
        assert form.state.error_map["onChange"] == ["taken"]
        assert form.state.errors == ["taken"]
        assert form.state.is_form_validating is False

    def test_fields_result_returned_and_written(self):
        async def name_taken(values, form, signal):
            return {"fields": {"name": "taken"}}

        form = FormApi(
            default_values={"name": "bob"},
            validators=FormValidators(on_change_async=name_taken),
        )
        form.mount()
        FieldApi(form, "name").mount()

        async def scenario():
            result = form.validate("change")
            assert inspect.isawaitable(result)
            return await result

        assert run(scenario) == {"name": {"onChange": ["taken"]}}
        assert form.get_field_meta("name").error_map["onChange"] == ["taken"]
        assert form.state.is_valid is False

    def test_exception_clears_form_validating(self):
        async def broken(values, form, signal):
            raise ConnectionError("backend down")

        form = FormApi(
            default_values={"name": ""},
            validators=FormValidators(on_change_async=broken),
        )
        form.mount()

        async def scenario():
            return await form.validate("change")

        assert run(scenario) == {}
        assert form.state.is_form_validating is False
        assert form.state.is_validating is False
        assert form.state.errors == [INVALID_FORM_VALUES]

    def test_sync_failure_skips_async(self):
        calls = []

        async def never(values, form, signal):
            calls.append(values)

        form = FormApi(
            default_values={"name": ""},
            validators=FormValidators(
                on_change=lambda values, form: "required",
                on_change_async=never,
            ),
        )

        assert form.validate("change") == {}
        assert calls == []
        assert form.state.errors == ["required"]

    def test_form_async_errors_reach_the_field(self):
        async def name_taken(values, form, signal):
            return {"fields": {"name": "taken" if values["name"] == "bob" else None}}

        form = FormApi(
            default_values={"name": ""},
            validators=FormValidators(on_change_async=name_taken),
        )
        form.mount()
        field = FieldApi(form, "name")
        field.mount()

        async def scenario():
            return [await field.set_value("bob"), await field.set_value("ann")]

        assert run(scenario) == [["taken"], []]


@pytest.mark.field
@pytest.mark.validation
class TestFieldAsync:
    def test_debounce_runs_only_the_latest_value(self, form):
        seen = []

        async def check(value, field, signal):
            seen.append(value)
            return f"error for {value}"

        field = FieldApi(
            form,
            "name",
            validators={"on_change_async": check, "on_change_async_debounce_ms": 30},
        )
        field.mount()

        async def scenario():
            first = field.set_value("a")
            await asyncio.sleep(0.005)
            second = field.set_value("ab")
            return await asyncio.gather(first, second)

        results = run(scenario)

        assert seen == ["ab"]
        assert results[1] == ["error for ab"]
        assert field.get_meta().errors == ["error for ab"]
        assert field.get_meta().is_validating is False

    def test_exception_becomes_generic_error(self, form):
        async def broken(value, field, signal):
            raise ValueError("backend down")

        field = FieldApi(form, "name", validators={"on_change_async": broken})
        field.mount()

        async def scenario():
            return await field.set_value("x")

        assert run(scenario) == [INVALID_FORM_VALUES]
        assert form.state.is_valid is False

    def test_sync_error_short_circuits(self, form):
        calls = []

        async def check(value, field, signal):
            calls.append(value)

        field = FieldApi(
            form,
            "name",
            validators={"on_change": min_length(3), "on_change_async": check},
        )
        field.mount()

        result = field.set_value("a")

        assert result == ["min length 3"]
        assert calls == []

    def test_async_always_runs_after_sync_error(self, form):
        calls = []

        async def check(value, field, signal):
            calls.append(value)
            return "async says no"

        field = FieldApi(
            form,
            "name",
            validators={"on_change": min_length(3), "on_change_async": check},
            async_always=True,
        )
        field.mount()

        async def scenario():
            result = field.set_value("a")
            assert inspect.isawaitable(result)
            return await result

        # Sync and async change validators share the onChange slot
        assert run(scenario) == ["async says no"]
        assert calls == ["a"]

    def test_started_validator_still_writes(self, form):
        """Supersession only cancels validators that have not started yet"""
        started = []
        delays = {"a": 0.01, "ab": 0.03}

        async def check(value, field, signal):
            started.append(value)
            await asyncio.sleep(delays[value])
            return f"bad {value}"

        field = FieldApi(form, "name", validators={"on_change_async": check})
        field.mount()

        async def scenario():
            first = field.set_value("a")
            await asyncio.sleep(0.005)
            second = field.set_value("ab")
            return await asyncio.gather(first, second)

        results = run(scenario)

        assert started == ["a", "ab"]
        assert results == [["bad a"], ["bad ab"]]
        assert field.get_meta().error_map["onChange"] == ["bad ab"]

    def test_validator_sees_abort_signal(self, form):
        signals = []

        async def check(value, field, signal):
            signals.append(signal)
            await asyncio.sleep(0.02)

        field = FieldApi(form, "name", validators={"on_change_async": check})
        field.mount()

        async def scenario():
            first = field.set_value("a")
            await asyncio.sleep(0.005)
            second = field.set_value("ab")
            await asyncio.gather(first, second)

        run(scenario)

        assert [signal.aborted for signal in signals] == [True, False]

    def test_async_validation_needs_a_running_loop(self, form):
        async def check(value, field, signal):
            return None

        field = FieldApi(form, "name", validators={"on_change_async": check})
        field.mount()

        with pytest.raises(FormError, match="running event loop"):
            field.set_value("x")

        assert field.get_meta().is_validating is False
        assert form.state.is_validating is False
