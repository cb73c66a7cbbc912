"""
Form types: validation causes, state records, options and exceptions.

State records are frozen dataclasses. Every update produces a new record that
shares unchanged sub-structures with the previous one, so identity checks
(``is``) are a valid way to detect change.
"""

from dataclasses import dataclass, field, fields
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
)

if TYPE_CHECKING:
    from .field_api import FieldApi
    from .form_api import FormApi
    from .validation import AbortController, AbortSignal


# ============================================================================
# EXCEPTIONS
# ============================================================================


class FormError(Exception):
    """Base class for errors raised by the form engine."""

    pass


class CircularDependencyError(FormError):
    """Raised when a derived node reads itself while recomputing."""

    pass


class StandardSchemaAsyncError(FormError, TypeError):
    """Raised when an async schema is used on a synchronous validation path."""

    pass


# ============================================================================
# CAUSES
# ============================================================================

ValidationCause = Literal["mount", "change", "blur", "submit", "server"]
ErrorMapKey = Literal["onMount", "onChange", "onBlur", "onSubmit", "onServer"]
ValidationSource = Literal["form", "field"]

CAUSE_TO_ERROR_MAP_KEY: Dict[str, str] = {
    "mount": "onMount",
    "change": "onChange",
    "blur": "onBlur",
    "submit": "onSubmit",
    "server": "onServer",
}

ERROR_MAP_KEY_TO_CAUSE: Dict[str, str] = {
    key: cause for cause, key in CAUSE_TO_ERROR_MAP_KEY.items()
}

ERROR_MAP_KEYS = tuple(CAUSE_TO_ERROR_MAP_KEY.values())

# Placeholder error for validator results that cannot be normalized
INVALID_FORM_VALUES = "Invalid Form Values"


def get_error_map_key(cause: str) -> str:
    """Map a validation cause to its error-map key; unknown causes are ``change``."""
    return CAUSE_TO_ERROR_MAP_KEY.get(cause, "onChange")


def get_cause(error_map_key: str) -> str:
    return ERROR_MAP_KEY_TO_CAUSE[error_map_key]


# ============================================================================
# VALIDATION RESULTS
# ============================================================================


@dataclass(frozen=True)
class FormValidationResult:
    """Whole-form validator result: per-field errors plus a form-level error."""

    fields: Mapping[str, Any] = field(default_factory=dict)
    form: Any = None


@dataclass(frozen=True)
class NormalizedFormError:
    form_error: Optional[List[Any]] = None
    field_errors: Optional[Dict[str, Optional[List[Any]]]] = None


@dataclass(frozen=True)
class ValidatorProps:
    """Arguments handed to adapters and schema bridges."""

    value: Any
    form_api: "FormApi"
    validation_source: str = "form"
    signal: Optional["AbortSignal"] = None
    field_api: Optional["FieldApi"] = None


# ============================================================================
# STATE RECORDS
# ============================================================================


@dataclass(frozen=True)
class ValidationMeta:
    """Cancellation handle for the newest async validation of one key."""

    last_abort_controller: "AbortController"


def default_validation_meta_map() -> Dict[str, Optional[ValidationMeta]]:
    return {key: None for key in ERROR_MAP_KEYS}


@dataclass(frozen=True)
class FieldMetaBase:
    is_touched: bool = False
    is_blurred: bool = False
    is_dirty: bool = False
    error_map: Mapping[str, Any] = field(default_factory=dict)
    is_validating: bool = False


@dataclass(frozen=True)
class FieldMeta(FieldMetaBase):
    errors: List[Any] = field(default_factory=list)
    is_pristine: bool = True


@dataclass
class FieldInfo:
    """Engine-side bookkeeping for one field path."""

    instance: Optional["FieldApi"] = None
    validation_meta_map: Dict[str, Optional[ValidationMeta]] = field(
        default_factory=default_validation_meta_map
    )


@dataclass(frozen=True)
class BaseFormState:
    values: Any = None
    error_map: Mapping[str, Any] = field(default_factory=dict)
    field_meta_base: Mapping[str, FieldMetaBase] = field(default_factory=dict)
    is_submitting: bool = False
    is_submitted: bool = False
    is_form_validating: bool = False
    submission_attempts: int = 0
    validation_meta_map: Dict[str, Optional[ValidationMeta]] = field(
        default_factory=default_validation_meta_map
    )


@dataclass(frozen=True)
class FormState(BaseFormState):
    field_meta: Mapping[str, FieldMeta] = field(default_factory=dict)
    errors: List[Any] = field(default_factory=list)
    is_fields_validating: bool = False
    is_fields_valid: bool = True
    is_form_valid: bool = True
    is_valid: bool = True
    is_validating: bool = False
    can_submit: bool = True
    is_touched: bool = False
    is_blurred: bool = False
    is_dirty: bool = False
    is_pristine: bool = True


BASE_FORM_STATE_FIELDS = tuple(f.name for f in fields(BaseFormState))


def get_default_form_state(
    default_state: Optional[Mapping[str, Any]] = None,
) -> BaseFormState:
    """Build a base state, taking only base-state keys from ``default_state``."""
    default_state = default_state or {}
    overrides = {
        name: default_state[name]
        for name in BASE_FORM_STATE_FIELDS
        if default_state.get(name) is not None
    }
    overrides.setdefault("values", {})
    if "field_meta_base" in overrides:
        overrides["field_meta_base"] = {
            path: as_field_meta_base(meta)
            for path, meta in overrides["field_meta_base"].items()
        }
    return BaseFormState(**overrides)


def as_field_meta_base(meta: Any) -> FieldMetaBase:
    """Strip derived keys from a meta record, accepting mappings too."""
    if isinstance(meta, Mapping):
        return FieldMetaBase(
            **{
                f.name: meta[f.name]
                for f in fields(FieldMetaBase)
                if f.name in meta
            }
        )
    if type(meta) is FieldMetaBase:
        return meta
    return FieldMetaBase(
        is_touched=meta.is_touched,
        is_blurred=meta.is_blurred,
        is_dirty=meta.is_dirty,
        error_map=meta.error_map,
        is_validating=meta.is_validating,
    )


# ============================================================================
# OPTIONS
# ============================================================================


@dataclass
class FormValidators:
    on_mount: Any = None
    on_change: Any = None
    on_change_async: Any = None
    on_change_async_debounce_ms: Optional[float] = None
    on_blur: Any = None
    on_blur_async: Any = None
    on_blur_async_debounce_ms: Optional[float] = None
    on_submit: Any = None
    on_submit_async: Any = None


@dataclass
class FieldValidators(FormValidators):
    pass


@dataclass
class FieldListeners:
    on_change: Optional[Callable[[Any, "FieldApi"], Any]] = None
    on_blur: Optional[Callable[[Any, "FieldApi"], Any]] = None
    on_submit: Optional[Callable[[Any, "FieldApi"], Any]] = None


@dataclass
class FormTransform:
    """Post-processing hook re-run only when ``deps`` changes."""

    fn: Callable[[Any], Any]
    deps: Sequence[Any] = ()


@dataclass
class FormOptions:
    default_values: Any = None
    default_state: Optional[Mapping[str, Any]] = None
    async_always: bool = False
    async_debounce_ms: Optional[float] = None
    validator_adapter: Optional[Callable[[], Any]] = None
    validators: Optional[FormValidators] = None
    on_submit: Optional[Callable[[Any, "FormApi"], Any]] = None
    on_submit_invalid: Optional[Callable[[Any, "FormApi"], Any]] = None
    transform: Optional[FormTransform] = None

    def __post_init__(self):
        if isinstance(self.validators, Mapping):
            self.validators = FormValidators(**self.validators)


__all__ = [
    "FormError",
    "CircularDependencyError",
    "StandardSchemaAsyncError",
    "ValidationCause",
    "ErrorMapKey",
    "ValidationSource",
    "CAUSE_TO_ERROR_MAP_KEY",
    "ERROR_MAP_KEY_TO_CAUSE",
    "ERROR_MAP_KEYS",
    "INVALID_FORM_VALUES",
    "get_error_map_key",
    "get_cause",
    "FormValidationResult",
    "NormalizedFormError",
    "ValidatorProps",
    "ValidationMeta",
    "FieldMetaBase",
    "FieldMeta",
    "FieldInfo",
    "BaseFormState",
    "FormState",
    "get_default_form_state",
    "as_field_meta_base",
    "FormValidators",
    "FieldValidators",
    "FieldListeners",
    "FormTransform",
    "FormOptions",
]
