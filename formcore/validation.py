"""
Validation plumbing shared by forms and fields.

- Validator selection: which configured validators run for a given cause.
- Validator dispatch: a validator is a plain function, a standard schema, or
  something the configured adapter understands. The kind is resolved once per
  call by ``resolve_validator_kind``.
- Error normalization: raw validator results become error lists, and whole
  form results are split into form-level and per-field errors.
- Debounce and cancellation: each async validation owns an
  ``AbortController``; starting a newer validation for the same key aborts the
  older one, which then resolves to ``SUPERSEDED`` if it has not started yet.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from .standard_schema import is_standard_schema, standard_schema_validator
from .types import (
    INVALID_FORM_VALUES,
    FormValidationResult,
    NormalizedFormError,
    ValidatorProps,
    get_error_map_key,
)

# ============================================================================
# CANCELLATION
# ============================================================================


class AbortSignal:
    """Read side of an ``AbortController``; validators may poll ``aborted``."""

    def __init__(self):
        self._aborted = False
        self._event: Optional[asyncio.Event] = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    def _abort(self) -> None:
        self._aborted = True
        if self._event is not None:
            self._event.set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait until aborted or ``timeout`` seconds pass; returns ``aborted``."""
        if self._aborted:
            return True
        if self._event is None:
            self._event = asyncio.Event()
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self._aborted

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self._aborted})"


class AbortController:
    def __init__(self):
        self.signal = AbortSignal()

    def abort(self) -> None:
        self.signal._abort()


class _Superseded:
    """Sentinel for an async validation cancelled before it started."""

    def __repr__(self):
        return "SUPERSEDED"

    def __bool__(self):
        return False


SUPERSEDED = _Superseded()


async def run_debounced(
    signal: AbortSignal,
    debounce_ms: float,
    call: Callable[[], Any],
) -> Any:
    """
    Run ``call`` after ``debounce_ms``, unless ``signal`` is aborted first.

    Returns ``SUPERSEDED`` when aborted before ``call`` started. Exceptions from
    ``call`` are returned as the raw error value rather than raised.
    """
    if debounce_ms and debounce_ms > 0:
        if await signal.wait(debounce_ms / 1000.0):
            return SUPERSEDED
    else:
        # Yield once so a validation started in the same tick can supersede us
        await asyncio.sleep(0)
        if signal.aborted:
            return SUPERSEDED

    try:
        result = call()
        if inspect.isawaitable(result):
            result = await result
        return result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logging.debug(f"Async validator raised, using it as the error: {e!r}")
        return e


# ============================================================================
# VALIDATOR SELECTION
# ============================================================================


@dataclass(frozen=True)
class ValidatorEntry:
    cause: str
    validate: Any
    debounce_ms: float = 0

    @property
    def error_map_key(self) -> str:
        return get_error_map_key(self.cause)


def _clear_server_error(value: Any, form_api: Any) -> None:
    return None


def get_sync_validator_array(cause: str, validators: Any) -> List[ValidatorEntry]:
    on_change = getattr(validators, "on_change", None)
    on_blur = getattr(validators, "on_blur", None)
    on_submit = getattr(validators, "on_submit", None)
    on_mount = getattr(validators, "on_mount", None)

    change = ValidatorEntry("change", on_change)
    blur = ValidatorEntry("blur", on_blur)
    submit = ValidatorEntry("submit", on_submit)
    mount = ValidatorEntry("mount", on_mount)
    # Always runs so stale server errors get cleared
    server = ValidatorEntry("server", _clear_server_error)

    if cause == "mount":
        return [mount]
    if cause == "submit":
        return [change, blur, submit, server]
    if cause == "server":
        return [server]
    if cause == "blur":
        return [blur, server]
    return [change, server]


def get_async_validator_array(
    cause: str, validators: Any, async_debounce_ms: Optional[float] = None
) -> List[ValidatorEntry]:
    default_debounce_ms = async_debounce_ms or 0

    def debounce(value: Optional[float]) -> float:
        return default_debounce_ms if value is None else value

    change = ValidatorEntry(
        "change",
        getattr(validators, "on_change_async", None),
        debounce(getattr(validators, "on_change_async_debounce_ms", None)),
    )
    blur = ValidatorEntry(
        "blur",
        getattr(validators, "on_blur_async", None),
        debounce(getattr(validators, "on_blur_async_debounce_ms", None)),
    )
    submit = ValidatorEntry("submit", getattr(validators, "on_submit_async", None), 0)

    if cause == "submit":
        return [
            ValidatorEntry(change.cause, change.validate, 0),
            ValidatorEntry(blur.cause, blur.validate, 0),
            submit,
        ]
    if cause == "blur":
        return [blur]
    if cause == "change":
        return [change]
    return []


def has_validators(entries: List[ValidatorEntry]) -> bool:
    return any(entry.validate is not None for entry in entries)


# ============================================================================
# VALIDATOR DISPATCH
# ============================================================================


class ValidatorKind(Enum):
    FUNCTION = "function"
    STANDARD_SCHEMA = "standard_schema"
    ADAPTER = "adapter"


def resolve_validator_kind(
    validate: Any, adapter: Optional[Callable[[], Any]]
) -> ValidatorKind:
    schema = is_standard_schema(validate)
    if adapter is not None and (schema or not callable(validate)):
        return ValidatorKind.ADAPTER
    if schema:
        return ValidatorKind.STANDARD_SCHEMA
    if not callable(validate):
        raise TypeError(
            f"Validator must be a function or a standard schema, got {type(validate).__name__}"
        )
    return ValidatorKind.FUNCTION


def run_validator(
    validate: Any,
    props: ValidatorProps,
    is_async: bool,
    adapter: Optional[Callable[[], Any]] = None,
) -> Any:
    """
    Invoke one validator and return its raw result.

    Plain functions are called as ``fn(value, api)`` or, for async validators,
    ``fn(value, api, signal)``, where ``api`` is the field handle for field
    validation and the form otherwise. The result may be awaitable when
    ``is_async`` is set.
    """
    kind = resolve_validator_kind(validate, adapter)

    if kind is ValidatorKind.ADAPTER:
        bridge = adapter()
        if is_async:
            return bridge.validate_async(props, validate)
        return bridge.validate(props, validate)

    if kind is ValidatorKind.STANDARD_SCHEMA:
        bridge = standard_schema_validator()
        if is_async:
            return bridge.validate_async(props, validate)
        return bridge.validate(props, validate)

    api = props.field_api if props.validation_source == "field" else props.form_api
    if is_async:
        return validate(props.value, api, props.signal)
    return validate(props.value, api)


# ============================================================================
# NORMALIZATION
# ============================================================================


def is_form_validation_result(error: Any) -> bool:
    return isinstance(error, FormValidationResult) or (
        isinstance(error, Mapping) and "fields" in error
    )


def normalize_form_error(raw_error: Any) -> NormalizedFormError:
    """
    Split a raw validator result into form-level and per-field errors.

    - falsy: no error
    - string: single-element list
    - list/tuple: list as-is
    - ``FormValidationResult`` or ``{"fields": ..., "form": ...}``: per-field
      errors normalized recursively, form error taken from ``form``
    - anything else: ``[INVALID_FORM_VALUES]``
    """
    if not raw_error:
        return NormalizedFormError(form_error=None)

    if is_form_validation_result(raw_error):
        if isinstance(raw_error, Mapping):
            raw_fields = raw_error.get("fields") or {}
            raw_form = raw_error.get("form")
        else:
            raw_fields = raw_error.fields or {}
            raw_form = raw_error.form

        field_errors: Dict[str, Optional[List[Any]]] = {
            field: normalize_field_error(error) for field, error in raw_fields.items()
        }
        return NormalizedFormError(
            form_error=normalize_form_error(raw_form).form_error,
            field_errors=field_errors,
        )

    if isinstance(raw_error, (list, tuple)):
        return NormalizedFormError(form_error=list(raw_error))

    if not isinstance(raw_error, str):
        return NormalizedFormError(form_error=[INVALID_FORM_VALUES])

    return NormalizedFormError(form_error=[raw_error])


def normalize_field_error(raw_error: Any) -> Optional[List[Any]]:
    return normalize_form_error(raw_error).form_error


__all__ = [
    "AbortSignal",
    "AbortController",
    "SUPERSEDED",
    "run_debounced",
    "ValidatorEntry",
    "get_sync_validator_array",
    "get_async_validator_array",
    "has_validators",
    "ValidatorKind",
    "resolve_validator_kind",
    "run_validator",
    "is_form_validation_result",
    "normalize_form_error",
    "normalize_field_error",
]
