"""
Shared pytest fixtures and helpers for FormCore tests.
"""

import pytest

from formcore import FieldApi, FormApi
from formcore.store import _reset_graph

from helpers import min_length


@pytest.fixture(autouse=True)
def reset_graph():
    """Start each test with an empty propagation graph."""
    _reset_graph()


@pytest.fixture
def form():
    """A mounted form with a single empty ``name`` value."""
    form = FormApi(default_values={"name": ""})
    form.mount()
    return form


@pytest.fixture
def name_field(form):
    """A mounted ``name`` field requiring at least three characters."""
    field = FieldApi(form, "name", validators={"on_change": min_length(3)})
    field.mount()
    return field
