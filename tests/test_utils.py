"""Path helper and maybe-awaitable helper tests."""

import asyncio
import inspect

import pytest

from formcore import FormError
from formcore.utils import (
    array_item_path,
    delete_by,
    flatten_errors,
    functional_update,
    gather_errors,
    get_by,
    make_path_array,
    schedule,
    set_by,
)


@pytest.mark.unit
class TestPaths:
    def test_make_path_array_splits_dots_and_brackets(self):
        assert make_path_array("items[2].name") == ["items", 2, "name"]
        assert make_path_array("a.b") == ["a", "b"]
        assert make_path_array("grid[0][1]") == ["grid", 0, 1]
        assert make_path_array(3) == [3]

    def test_array_item_path(self):
        assert array_item_path("items", 4) == "items[4]"

    def test_get_by_reads_nested_values(self):
        values = {"items": [{"name": "x"}], "user": {"age": 3}}

        assert get_by(values, "items[0].name") == "x"
        assert get_by(values, "user.age") == 3

    def test_get_by_missing_segments_yield_none(self):
        values = {"items": [1]}

        assert get_by(values, "items[5]") is None
        assert get_by(values, "user.name") is None
        assert get_by(None, "anything") is None

    def test_set_by_copies_only_the_updated_path(self):
        original = {"a": {"b": 1}, "c": {"d": 2}}

        updated = set_by(original, "a.b", 5)

        assert updated == {"a": {"b": 5}, "c": {"d": 2}}
        assert original["a"]["b"] == 1
        assert updated["c"] is original["c"]

    def test_set_by_creates_lists_for_index_segments(self):
        assert set_by({}, "items[1]", "x") == {"items": [None, "x"]}

    def test_set_by_applies_updater_functions(self):
        assert set_by({"n": 1}, "n", lambda prev: prev + 1) == {"n": 2}

    def test_set_by_accepts_dotted_numeric_keys_into_lists(self):
        assert set_by([1, 2, 3], "0", 9) == [9, 2, 3]

    def test_delete_by_removes_keys_and_list_items(self):
        assert delete_by({"a": 1, "b": 2}, "a") == {"b": 2}
        assert delete_by({"items": [1, 2, 3]}, "items[0]") == {"items": [2, 3]}

    def test_delete_by_ignores_missing_paths(self):
        values = {"items": [1, 2]}

        assert delete_by(values, "items[5]") == {"items": [1, 2]}
        assert delete_by(values, "other.name") is values

    def test_functional_update(self):
        assert functional_update(lambda prev: prev * 2, 3) == 6
        assert functional_update("new", "old") == "new"


@pytest.mark.unit
class TestErrorHelpers:
    def test_flatten_errors_drops_none_and_splices_lists(self):
        assert flatten_errors([None, ["a", "b"], "c"]) == ["a", "b", "c"]

    def test_gather_errors_stays_sync_without_awaitables(self):
        assert gather_errors([["a"], [], ["b"]]) == ["a", "b"]

    def test_gather_errors_returns_task_for_pending_results(self):
        async def later():
            return ["b"]

        async def main():
            result = gather_errors([["a"], later()])
            assert inspect.isawaitable(result)
            return await result

        assert asyncio.run(main()) == ["a", "b"]

    def test_schedule_needs_a_running_loop(self):
        async def work():
            return 1

        with pytest.raises(FormError, match="running event loop"):
            schedule(work())

        async def main():
            return await schedule(work())

        assert asyncio.run(main()) == 1
