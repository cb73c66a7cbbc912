"""
Bridge for schema objects that follow the standard-schema convention.

A schema is recognized by a ``"~standard"`` attribute (or mapping key) whose
value exposes ``validate(value)``. That call returns a result carrying
``issues``; each issue has a ``message`` and an optional ``path``. The result
may be awaitable for async schemas.

Field validation turns issues into a list of messages. Form validation groups
them by field path, so ``{"path": ["items", 0, "name"]}`` lands on
``"items[0].name"``.
"""

import inspect
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional

from .types import StandardSchemaAsyncError, ValidatorProps

STANDARD_KEY = "~standard"


def _standard_props(schema: Any) -> Any:
    if isinstance(schema, Mapping):
        return schema.get(STANDARD_KEY)
    return getattr(schema, STANDARD_KEY, None)


def is_standard_schema(validate: Any) -> bool:
    return validate is not None and _standard_props(validate) is not None


def _read(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _segment(part: Any) -> Any:
    # Path parts are either bare keys or {"key": ...} segments
    if isinstance(part, (str, int)):
        return part
    return _read(part, "key")


def issue_path(path: Optional[List[Any]]) -> str:
    """Join issue path segments into a field path string."""
    result = ""
    for part in path or []:
        key = _segment(part)
        if isinstance(key, int):
            result += f"[{key}]"
        else:
            result = f"{result}.{key}" if result else str(key)
    return result


def _transform_issues(validation_source: str, issues: List[Any]) -> Any:
    if not issues:
        return None

    if validation_source == "field":
        return [_read(issue, "message") for issue in issues]

    fields: Dict[str, List[Any]] = defaultdict(list)
    form_errors: List[Any] = []
    for issue in issues:
        path = issue_path(_read(issue, "path"))
        if path:
            fields[path].append(_read(issue, "message"))
        else:
            form_errors.append(_read(issue, "message"))

    return {"form": form_errors or None, "fields": dict(fields)}


class StandardSchemaValidator:
    """Adapter-shaped object: ``validate`` and ``validate_async``."""

    def validate(self, props: ValidatorProps, schema: Any) -> Any:
        result = _standard_props(schema).validate(props.value)
        if inspect.isawaitable(result):
            close = getattr(result, "close", None)
            if close is not None:
                close()
            raise StandardSchemaAsyncError(
                "async function passed to sync validator"
            )
        return _transform_issues(props.validation_source, _read(result, "issues"))

    async def validate_async(self, props: ValidatorProps, schema: Any) -> Any:
        result = _standard_props(schema).validate(props.value)
        if inspect.isawaitable(result):
            result = await result
        return _transform_issues(props.validation_source, _read(result, "issues"))


def standard_schema_validator() -> StandardSchemaValidator:
    return StandardSchemaValidator()


__all__ = [
    "STANDARD_KEY",
    "is_standard_schema",
    "issue_path",
    "StandardSchemaValidator",
    "standard_schema_validator",
]
