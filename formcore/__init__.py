"""
FormCore - Reactive Form State Engine

Form values, field metadata and validation results held in a reactive store,
with derived validity and submission state recomputed only where inputs
changed.
"""

# Reactive primitives
from .store import Change, Derived, Store, batch, values_equal

# Form and field handles
from .field_api import FieldApi
from .form_api import FormApi

# Types, options and exceptions
from .types import (
    INVALID_FORM_VALUES,
    BaseFormState,
    CircularDependencyError,
    FieldInfo,
    FieldListeners,
    FieldMeta,
    FieldMetaBase,
    FieldValidators,
    FormError,
    FormOptions,
    FormState,
    FormTransform,
    FormValidationResult,
    FormValidators,
    StandardSchemaAsyncError,
    ValidationMeta,
    ValidatorProps,
    get_default_form_state,
    get_error_map_key,
)

# Validation plumbing
from .standard_schema import is_standard_schema, standard_schema_validator
from .validation import (
    SUPERSEDED,
    AbortController,
    AbortSignal,
    normalize_form_error,
)

# Path helpers
from .utils import delete_by, get_by, make_path_array, set_by

__all__ = [
    # Reactive primitives
    "Store",
    "Derived",
    "Change",
    "batch",
    "values_equal",
    # Handles
    "FormApi",
    "FieldApi",
    # State records
    "BaseFormState",
    "FormState",
    "FieldMetaBase",
    "FieldMeta",
    "FieldInfo",
    "ValidationMeta",
    "get_default_form_state",
    # Options
    "FormOptions",
    "FormValidators",
    "FieldValidators",
    "FieldListeners",
    "FormTransform",
    # Validation
    "FormValidationResult",
    "ValidatorProps",
    "INVALID_FORM_VALUES",
    "get_error_map_key",
    "normalize_form_error",
    "is_standard_schema",
    "standard_schema_validator",
    "AbortController",
    "AbortSignal",
    "SUPERSEDED",
    # Path helpers
    "make_path_array",
    "get_by",
    "set_by",
    "delete_by",
    # Exceptions
    "FormError",
    "CircularDependencyError",
    "StandardSchemaAsyncError",
]
