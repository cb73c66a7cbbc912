"""
FormCore FormApi - The Form State Engine
========================================

``FormApi`` owns one form: its values, per-field metadata, validation results
and submission lifecycle. Everything observable about the form is a pure
function of a single base record held in a ``Store``:

    base_store (BaseFormState)
        │
        ├── field_meta_derived   path → FieldMeta (errors flattened per field)
        │
        └── store                FormState (validity, can_submit, errors, ...)

Both derived nodes hand back previously computed objects when their inputs
did not change, so ``form.state.errors is previous.errors`` is a reliable
"nothing to re-render" check.

Validation
----------

Validators are configured per cause (mount, change, blur, submit) in sync
and async variants. ``validate(cause)`` runs the sync validators first and
only moves on to the async ones when nothing failed (or ``async_always`` is
set). The result is either a plain mapping or an ``asyncio`` task:

```python
result = form.validate("change")
if inspect.isawaitable(result):
    result = await result
```

Array fields
------------

``push_field_value``, ``insert_field_value``, ``replace_field_value``,
``remove_field_value``, ``swap_field_values`` and ``move_field_values``
update the list and then re-validate every registered field whose index
changed meaning. Each returns the cascade's errors, or an awaitable of them
when async validators are involved.

Basic Usage
-----------

```python
from formcore import FormApi, FieldApi

form = FormApi(default_values={"name": ""})
form.mount()

name = FieldApi(form, "name", validators={
    "on_change": lambda value, field: "too short" if len(value) < 3 else None,
})
name.mount()

name.set_value("ab")
form.state.can_submit   # False
name.set_value("abc")
form.state.can_submit   # True
```
"""

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from .store import Derived, Store, batch, values_equal
from .types import (
    BASE_FORM_STATE_FIELDS,
    BaseFormState,
    FieldInfo,
    FieldMeta,
    FieldMetaBase,
    FormOptions,
    FormState,
    NormalizedFormError,
    ValidationMeta,
    ValidatorProps,
    as_field_meta_base,
    get_default_form_state,
)
from .utils import (
    array_item_path,
    call_listener,
    delete_by,
    flatten_errors,
    functional_update,
    gather_errors,
    get_by,
    schedule,
    set_by,
    settle,
)
from .validation import (
    SUPERSEDED,
    AbortController,
    ValidatorEntry,
    get_async_validator_array,
    get_sync_validator_array,
    has_validators,
    is_form_validation_result,
    normalize_form_error,
    run_debounced,
    run_validator,
)

FieldsErrorMap = Dict[str, Dict[str, Any]]


def _base_fields(state: BaseFormState) -> Dict[str, Any]:
    return {name: getattr(state, name) for name in BASE_FORM_STATE_FIELDS}


def _mark_touched(prev: Optional[FieldMetaBase]) -> FieldMetaBase:
    return replace(prev or FieldMetaBase(), is_touched=True)


def _is_path_or_child(path: str, prefix: str) -> bool:
    """``items[1].name`` is inside ``items[1]``; ``items[10]`` is not."""
    if path == prefix:
        return True
    return path.startswith(prefix) and path[len(prefix)] in ".["


def _form_level_errors(value: Any) -> List[Any]:
    """Errors a single error-map entry contributes to ``FormState.errors``."""
    if isinstance(value, NormalizedFormError):
        return list(value.form_error or [])
    if is_form_validation_result(value):
        return list(normalize_form_error(value).form_error or [])
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class _TransformView:
    """What a ``FormTransform`` sees: the form, with ``state`` swapped in."""

    def __init__(self, form: "FormApi", state: FormState):
        self._form = form
        self.state = state

    def __getattr__(self, name: str) -> Any:
        return getattr(self._form, name)


class FormApi:
    """
    A form: values, field metadata, validation and submission.

    Args:
        options: A ``FormOptions`` (or a mapping of its fields).
        **kwargs: ``FormOptions`` fields, applied on top of ``options``.

    Attributes:
        base_store: The writable base record.
        field_meta_derived: Per-field derived metadata.
        store: The derived form state; ``form.state`` reads it.
        field_info: Registered fields by path, with their async bookkeeping.
        options: The current options.
    """

    def __init__(self, options: Optional[FormOptions] = None, **kwargs: Any):
        if isinstance(options, Mapping):
            options = FormOptions(**options)
        if options is None:
            options = FormOptions(**kwargs)
        elif kwargs:
            options = replace(options, **kwargs)

        # update() below diffs against these
        self.options = FormOptions()
        self.field_info: Dict[str, FieldInfo] = {}
        self.prev_transform_deps: Tuple[Any, ...] = ()
        self._pending_form_validations = 0
        self._listener_tasks: Set["asyncio.Task[Any]"] = set()

        default_state = dict(options.default_state or {})
        default_state["values"] = (
            options.default_values
            if options.default_values is not None
            else default_state.get("values")
        )
        self.base_store: Store[BaseFormState] = Store(
            get_default_form_state(default_state)
        )
        self.field_meta_derived: Derived[Dict[str, FieldMeta]] = Derived(
            [self.base_store], self._derive_field_meta
        )
        self.store: Derived[FormState] = Derived(
            [self.base_store, self.field_meta_derived], self._derive_form_state
        )

        self.update(options)

    @property
    def state(self) -> FormState:
        return self.store.state

    # ========================================================================
    # DERIVATION
    # ========================================================================

    def _derive_field_meta(
        self,
        prev_dep_vals: Optional[List[Any]],
        curr_dep_vals: List[Any],
        prev_val: Optional[Dict[str, FieldMeta]],
    ) -> Dict[str, FieldMeta]:
        prev_base: Optional[BaseFormState] = prev_dep_vals[0] if prev_dep_vals else None
        curr_base: BaseFormState = curr_dep_vals[0]

        if (
            prev_val is not None
            and prev_base is not None
            and curr_base.field_meta_base is prev_base.field_meta_base
        ):
            return prev_val

        field_meta: Dict[str, FieldMeta] = {}
        for name, curr_meta in curr_base.field_meta_base.items():
            prev_meta = prev_base.field_meta_base.get(name) if prev_base else None
            prev_field = prev_val.get(name) if prev_val else None

            if prev_field is not None and prev_meta is curr_meta:
                field_meta[name] = prev_field
                continue

            if (
                prev_field is None
                or prev_meta is None
                or curr_meta.error_map is not prev_meta.error_map
            ):
                errors = flatten_errors(curr_meta.error_map.values())
            else:
                errors = prev_field.errors

            field_meta[name] = FieldMeta(
                is_touched=curr_meta.is_touched,
                is_blurred=curr_meta.is_blurred,
                is_dirty=curr_meta.is_dirty,
                error_map=curr_meta.error_map,
                is_validating=curr_meta.is_validating,
                errors=errors,
                is_pristine=not curr_meta.is_dirty,
            )

        return field_meta

    def _derive_form_state(
        self,
        prev_dep_vals: Optional[List[Any]],
        curr_dep_vals: List[Any],
        prev_val: Optional[FormState],
    ) -> FormState:
        prev_base: Optional[BaseFormState] = prev_dep_vals[0] if prev_dep_vals else None
        curr_base: BaseFormState = curr_dep_vals[0]
        field_meta: Dict[str, FieldMeta] = curr_dep_vals[1]

        metas = list(curr_base.field_meta_base.values())
        is_fields_validating = any(meta.is_validating for meta in metas)
        is_fields_valid = not any(
            any(error for error in meta.error_map.values()) for meta in metas
        )
        is_touched = any(meta.is_touched for meta in metas)
        is_blurred = any(meta.is_blurred for meta in metas)
        is_dirty = any(meta.is_dirty for meta in metas)

        has_on_mount_error = bool(curr_base.error_map.get("onMount")) or any(
            meta.error_map.get("onMount") for meta in metas
        )

        error_map = curr_base.error_map
        if is_touched and error_map.get("onMount"):
            if (
                prev_val is not None
                and prev_base is not None
                and prev_base.error_map is error_map
                and "onMount" not in prev_val.error_map
            ):
                # Already dropped on an earlier cycle
                error_map = prev_val.error_map
            else:
                error_map = {
                    key: value for key, value in error_map.items() if key != "onMount"
                }

        if prev_val is not None and error_map is prev_val.error_map:
            errors = prev_val.errors
        else:
            errors = []
            for value in error_map.values():
                if value is None:
                    continue
                errors.extend(_form_level_errors(value))

        is_form_valid = len(errors) == 0
        is_valid = is_fields_valid and is_form_valid
        is_validating = is_fields_validating or curr_base.is_form_validating
        can_submit = (
            curr_base.submission_attempts == 0
            and not is_touched
            and not has_on_mount_error
        ) or (not is_validating and not curr_base.is_submitting and is_valid)

        state_fields = _base_fields(curr_base)
        state_fields["error_map"] = error_map
        state = FormState(
            **state_fields,
            field_meta=field_meta,
            errors=errors,
            is_fields_validating=is_fields_validating,
            is_fields_valid=is_fields_valid,
            is_form_valid=is_form_valid,
            is_valid=is_valid,
            is_validating=is_validating,
            can_submit=can_submit,
            is_touched=is_touched,
            is_blurred=is_blurred,
            is_dirty=is_dirty,
            is_pristine=not is_dirty,
        )

        transform = self.options.transform
        deps = tuple(transform.deps) if transform is not None else ()
        if self._transform_deps_changed(deps):
            if transform is not None:
                logging.debug(f"Re-running form transform, deps={deps!r}")
                view = _TransformView(self, state)
                result = transform.fn(view)
                if result is None:
                    state = view.state
                else:
                    state = getattr(result, "state", result)
            self.prev_transform_deps = deps

        return state

    def _transform_deps_changed(self, deps: Tuple[Any, ...]) -> bool:
        prev = self.prev_transform_deps
        if len(deps) != len(prev):
            return True
        return any(not values_equal(a, b) for a, b in zip(deps, prev))

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def mount(self) -> Callable[[], None]:
        """
        Attach the derived nodes to the graph and run the form's mount
        validator. Returns a cleanup function.
        """
        cleanup_field_meta = self.field_meta_derived.mount()
        cleanup_store = self.store.mount()

        def cleanup() -> None:
            cleanup_field_meta()
            cleanup_store()

        validators = self.options.validators
        if validators is not None and validators.on_mount is not None:
            self.validate_sync("mount")

        return cleanup

    def update(self, options: Optional[FormOptions]) -> None:
        """
        Replace the options. New default values/state are applied only while
        the form has not been touched.
        """
        if options is None:
            return
        if isinstance(options, Mapping):
            options = FormOptions(**options)

        old_options = self.options
        # Derivation reads options, so they go first
        self.options = options

        with batch():
            is_touched = self.state.is_touched
            should_update_values = (
                options.default_values is not None
                and options.default_values is not old_options.default_values
                and not is_touched
            )
            should_update_state = (
                options.default_state is not old_options.default_state
                and not is_touched
            )

            def apply(prev: BaseFormState) -> BaseFormState:
                merged = _base_fields(prev)
                if should_update_state and options.default_state:
                    merged.update(options.default_state)
                if should_update_values:
                    merged["values"] = options.default_values
                return get_default_form_state(merged)

            self.base_store.set_state(apply)

    def reset(self, values: Any = None, keep_default_values: bool = False) -> None:
        """
        Reset values and metadata to the defaults.

        If ``values`` is given the form resets to it, and it becomes the new
        default unless ``keep_default_values`` is set.
        """
        if values is not None and not keep_default_values:
            self.options = replace(self.options, default_values=values)

        default_state = dict(self.options.default_state or {})
        field_meta_base: Dict[str, Any] = {
            name: FieldMetaBase() for name in self.state.field_meta
        }
        field_meta_base.update(default_state.get("field_meta_base") or {})

        meta_maps = [self.base_store.state.validation_meta_map]
        meta_maps.extend(info.validation_meta_map for info in self.field_info.values())
        for meta_map in meta_maps:
            for key, meta in meta_map.items():
                if meta is not None:
                    meta.last_abort_controller.abort()
                    meta_map[key] = None

        if values is None:
            values = self.options.default_values
        if values is None:
            values = default_state.get("values")

        default_state["values"] = values
        default_state["field_meta_base"] = field_meta_base
        self.base_store.set_state(lambda prev: get_default_form_state(default_state))

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def _validator_props(self, signal: Any = None) -> ValidatorProps:
        return ValidatorProps(
            value=self.state.values,
            form_api=self,
            validation_source="form",
            signal=signal,
        )

    def _write_field_error(self, field: str, key: str, error: Any) -> None:
        meta = self.base_store.state.field_meta_base.get(field)
        if meta is None or values_equal(meta.error_map.get(key), error):
            return
        self.set_field_meta(
            field,
            lambda prev: replace(prev, error_map={**prev.error_map, key: error}),
        )

    def _write_form_error(self, key: str, error: Any) -> None:
        if values_equal(self.base_store.state.error_map.get(key), error):
            return
        self.base_store.set_state(
            lambda prev: replace(prev, error_map={**prev.error_map, key: error})
        )

    def validate_sync(self, cause: str) -> Tuple[bool, FieldsErrorMap]:
        """
        Run the sync form validators for ``cause``, in order, in one batch.

        Returns ``(has_errored, fields_error_map)`` where the map holds the
        per-field errors keyed by path, then by error-map key.
        """
        entries = get_sync_validator_array(cause, self.options.validators)
        has_errored = False
        fields_error_map: FieldsErrorMap = {}

        with batch():
            for entry in entries:
                if entry.validate is None:
                    continue

                raw_error = run_validator(
                    entry.validate,
                    self._validator_props(),
                    is_async=False,
                    adapter=self.options.validator_adapter,
                )
                normalized = normalize_form_error(raw_error)
                key = entry.error_map_key

                field_errors = normalized.field_errors or {}
                for field, field_error in field_errors.items():
                    fields_error_map.setdefault(field, {})[key] = field_error
                    self._write_field_error(field, key, field_error)

                self._write_form_error(key, normalized.form_error)

                if normalized.form_error or any(field_errors.values()):
                    has_errored = True

        # A submit error must not outlive a successful non-submit validation
        if (
            cause != "submit"
            and not has_errored
            and self.base_store.state.error_map.get("onSubmit")
        ):
            self.base_store.set_state(
                lambda prev: replace(
                    prev, error_map={**prev.error_map, "onSubmit": None}
                )
            )

        return has_errored, fields_error_map

    async def _run_async_entry(
        self,
        entry: ValidatorEntry,
        controller: AbortController,
        meta_map: Dict[str, Optional[ValidationMeta]],
    ) -> Optional[Tuple[str, Dict[str, Any]]]:
        key = entry.error_map_key
        raw_error = await run_debounced(
            controller.signal,
            entry.debounce_ms,
            lambda: run_validator(
                entry.validate,
                self._validator_props(controller.signal),
                is_async=True,
                adapter=self.options.validator_adapter,
            ),
        )

        current = meta_map.get(key)
        if current is not None and current.last_abort_controller is controller:
            meta_map[key] = None

        if raw_error is SUPERSEDED:
            logging.debug(f"Form {key} validation superseded")
            return None

        normalized = normalize_form_error(raw_error)
        field_errors = normalized.field_errors or {}
        with batch():
            for field, field_error in field_errors.items():
                self._write_field_error(field, key, field_error)
            self._write_form_error(key, normalized.form_error)

        if not field_errors:
            return None
        return key, field_errors

    def _start_async(self, cause: str) -> "asyncio.Task[FieldsErrorMap]":
        # Handles are registered before the task first runs
        entries = [
            entry
            for entry in get_async_validator_array(
                cause, self.options.validators, self.options.async_debounce_ms
            )
            if entry.validate is not None
        ]

        meta_map = self.base_store.state.validation_meta_map
        tasks = []
        for entry in entries:
            key = entry.error_map_key
            previous = meta_map.get(key)
            if previous is not None:
                previous.last_abort_controller.abort()
            controller = AbortController()
            meta_map[key] = ValidationMeta(last_abort_controller=controller)
            tasks.append(
                schedule(self._run_async_entry(entry, controller, meta_map))
            )

        if not self.base_store.state.is_form_validating:
            self.base_store.set_state(
                lambda prev: replace(prev, is_form_validating=True)
            )
        self._pending_form_validations += 1

        return schedule(self._settle_async(tasks))

    async def _settle_async(self, tasks: List[Any]) -> FieldsErrorMap:
        try:
            results = await asyncio.gather(*tasks) if tasks else []
        finally:
            self._pending_form_validations -= 1
            # Overlapping validations keep the flag until the last one settles
            if self._pending_form_validations == 0:
                self.base_store.set_state(
                    lambda prev: replace(prev, is_form_validating=False)
                    if prev.is_form_validating
                    else prev
                )

        fields_error_map: FieldsErrorMap = {}
        for result in results:
            if result is None:
                continue
            key, field_errors = result
            for field, field_error in field_errors.items():
                fields_error_map.setdefault(field, {})[key] = field_error
        return fields_error_map

    async def validate_async(self, cause: str) -> FieldsErrorMap:
        """
        Run the async form validators for ``cause`` concurrently.

        Each validator supersedes any earlier in-flight one for the same
        error-map key. Errors are written as each validator settles; the
        aggregated per-field errors are returned once all have settled.
        """
        return await self._start_async(cause)

    def has_async_validators(self, cause: str) -> bool:
        return has_validators(
            get_async_validator_array(
                cause, self.options.validators, self.options.async_debounce_ms
            )
        )

    def validate(self, cause: str) -> Any:
        """
        Sync validation first; async only if that passed or ``async_always``.

        Returns the per-field error map, or a task resolving to it. Scheduling
        that task needs a running event loop.
        """
        has_errored, fields_error_map = self.validate_sync(cause)

        if has_errored and not self.options.async_always:
            return fields_error_map
        if not self.has_async_validators(cause):
            return fields_error_map

        return self._start_async(cause)

    def validate_all_fields(self, cause: str) -> Any:
        """
        Validate every registered field, marking untouched ones touched.

        Returns the flat list of field errors, or a task resolving to it.
        Without registered fields the form validators run on their own.
        """
        instances = [
            info.instance for info in self.field_info.values() if info.instance is not None
        ]

        if not instances:
            result = self.validate(cause)
            if not inspect.isawaitable(result):
                return []

            async def settled() -> List[Any]:
                await result
                return []

            return schedule(settled())

        with batch():
            for instance in instances:
                meta = self.base_store.state.field_meta_base.get(instance.name)
                if meta is None or not meta.is_touched:
                    instance.set_meta(_mark_touched)

        return gather_errors([instance.validate(cause) for instance in instances])

    def validate_field(self, field: str, cause: str) -> Any:
        info = self.field_info.get(field)
        instance = info.instance if info is not None else None
        if instance is None:
            return []

        meta = self.base_store.state.field_meta_base.get(field)
        if meta is None or not meta.is_touched:
            instance.set_meta(_mark_touched)

        return instance.validate(cause)

    def validate_array_fields_starting_from(
        self, field: str, index: int, cause: str
    ) -> Any:
        """Validate registered fields at ``field[index]`` and every later index."""
        current = self.get_field_value(field)
        last_index = max(len(current) - 1, 0) if isinstance(current, list) else 0

        prefixes = [array_item_path(field, index)]
        prefixes.extend(
            array_item_path(field, i) for i in range(index + 1, last_index + 1)
        )

        fields_to_validate = [
            path
            for path in self.field_info
            if any(_is_path_or_child(path, prefix) for prefix in prefixes)
        ]
        return gather_errors(
            [self.validate_field(path, cause) for path in fields_to_validate]
        )

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    def run_listener(self, listener: Callable[..., Any], *args: Any) -> Any:
        """
        Call a field listener. A coroutine listener runs as a task the form
        keeps until it finishes; the task is returned, otherwise ``None``.
        """
        task = call_listener(listener, *args)
        if task is not None:
            self._listener_tasks.add(task)
            task.add_done_callback(self._listener_done)
        return task

    def _listener_done(self, task: "asyncio.Task[Any]") -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logging.error(f"Error in async field listener: {error!r}")

    async def _submit_invalid(self) -> None:
        if self.options.on_submit_invalid is not None:
            await settle(self.options.on_submit_invalid(self.state.values, self))

    def _done_submitting(self) -> None:
        self.base_store.set_state(lambda prev: replace(prev, is_submitting=False))

    async def handle_submit(self) -> None:
        """
        Validate everything for ``submit`` and call ``on_submit`` if valid.

        Invalid forms call ``on_submit_invalid`` instead. Exceptions from
        ``on_submit`` propagate after ``is_submitting`` is reset.
        """
        self.base_store.set_state(
            lambda prev: replace(
                prev,
                is_submitted=False,
                submission_attempts=prev.submission_attempts + 1,
            )
        )

        if not self.state.can_submit:
            logging.debug("Submit blocked: form cannot submit")
            await self._submit_invalid()
            return

        self.base_store.set_state(lambda prev: replace(prev, is_submitting=True))

        try:
            await settle(self.validate_all_fields("submit"))
        except Exception:
            self._done_submitting()
            raise

        if not self.state.is_valid:
            self._done_submitting()
            logging.debug("Submit blocked: validation failed")
            await self._submit_invalid()
            return

        try:
            listener_tasks = []
            with batch():
                for info in list(self.field_info.values()):
                    instance = info.instance
                    if instance is None or instance.listeners.on_submit is None:
                        continue
                    task = self.run_listener(
                        instance.listeners.on_submit, instance.value, instance
                    )
                    if task is not None:
                        listener_tasks.append(task)

            # Failures are logged by _listener_done
            if listener_tasks:
                await asyncio.gather(*listener_tasks, return_exceptions=True)

            if self.options.on_submit is not None:
                await settle(self.options.on_submit(self.state.values, self))

            with batch():
                self.base_store.set_state(
                    lambda prev: replace(prev, is_submitted=True)
                )
                self._done_submitting()
        except Exception:
            self._done_submitting()
            raise

    # ========================================================================
    # FIELD ACCESS
    # ========================================================================

    def get_field_value(self, field: str) -> Any:
        return get_by(self.state.values, field)

    def get_field_meta(self, field: str) -> Optional[FieldMeta]:
        return self.state.field_meta.get(field)

    def get_field_info(self, field: str) -> FieldInfo:
        """Return the registry entry for ``field``, creating it if absent."""
        info = self.field_info.get(field)
        if info is None:
            info = self.field_info[field] = FieldInfo()
        return info

    def set_field_meta(
        self,
        field: str,
        updater: Callable[[Optional[FieldMetaBase]], Any],
    ) -> None:
        """
        Update the raw meta of ``field``. ``updater`` receives the previous
        meta (``None`` if the field has none yet); mappings are accepted as
        the result.
        """
        self.base_store.set_state(
            lambda prev: replace(
                prev,
                field_meta_base={
                    **prev.field_meta_base,
                    field: as_field_meta_base(
                        functional_update(updater, prev.field_meta_base.get(field))
                    ),
                },
            )
        )

    def set_error_map(self, error_map: Mapping[str, Any]) -> None:
        """Merge ``error_map`` into the form's error map."""
        self.base_store.set_state(
            lambda prev: replace(prev, error_map={**prev.error_map, **error_map})
        )

    # ========================================================================
    # MUTATION
    # ========================================================================

    def set_field_value(
        self, field: str, updater: Any, dont_update_meta: bool = False
    ) -> None:
        """
        Set the value at ``field`` (a value or an updater function).

        Unless ``dont_update_meta`` is set the field is also marked touched
        and dirty and its mount error is cleared, in the same batch.
        """
        with batch():
            if not dont_update_meta:
                self.set_field_meta(
                    field,
                    lambda prev: replace(
                        prev or FieldMetaBase(),
                        is_touched=True,
                        is_dirty=True,
                        error_map={
                            **(prev.error_map if prev is not None else {}),
                            "onMount": None,
                        },
                    ),
                )

            self.base_store.set_state(
                lambda prev: replace(prev, values=set_by(prev.values, field, updater))
            )

    def delete_field(self, field: str) -> None:
        """Remove the value, raw meta and registration of ``field``."""
        self.base_store.set_state(
            lambda prev: replace(
                prev,
                values=delete_by(prev.values, field),
                field_meta_base={
                    path: meta
                    for path, meta in prev.field_meta_base.items()
                    if path != field
                },
            )
        )
        self.field_info.pop(field, None)

    def push_field_value(
        self, field: str, value: Any, dont_update_meta: bool = False
    ) -> Any:
        self.set_field_value(
            field,
            lambda prev: [*(prev if isinstance(prev, list) else []), value],
            dont_update_meta,
        )
        return self.validate_field(field, "change")

    def insert_field_value(
        self, field: str, index: int, value: Any, dont_update_meta: bool = False
    ) -> Any:
        def insert(prev: Any) -> List[Any]:
            items = list(prev or [])
            return [*items[:index], value, *items[index:]]

        self.set_field_value(field, insert, dont_update_meta)
        return self.validate_field(field, "change")

    def replace_field_value(
        self, field: str, index: int, value: Any, dont_update_meta: bool = False
    ) -> Any:
        self.set_field_value(
            field,
            lambda prev: [value if i == index else item for i, item in enumerate(prev or [])],
            dont_update_meta,
        )
        return gather_errors(
            [
                self.validate_field(field, "change"),
                self.validate_array_fields_starting_from(field, index, "change"),
            ]
        )

    def remove_field_value(
        self, field: str, index: int, dont_update_meta: bool = False
    ) -> Any:
        """
        Remove ``field[index]``. Registered fields under the old last index
        are deleted, then the shifted tail is re-validated.
        """
        current = self.get_field_value(field)
        last_index = max(len(current) - 1, 0) if isinstance(current, list) else None

        self.set_field_value(
            field,
            lambda prev: [item for i, item in enumerate(prev or []) if i != index],
            dont_update_meta,
        )

        if last_index is not None:
            start = array_item_path(field, last_index)
            for path in [p for p in self.field_info if _is_path_or_child(p, start)]:
                self.delete_field(path)

        return gather_errors(
            [
                self.validate_field(field, "change"),
                self.validate_array_fields_starting_from(field, index, "change"),
            ]
        )

    def swap_field_values(
        self, field: str, index1: int, index2: int, dont_update_meta: bool = False
    ) -> Any:
        def swap(prev: Any) -> List[Any]:
            items = list(prev)
            items[index1], items[index2] = items[index2], items[index1]
            return items

        self.set_field_value(field, swap, dont_update_meta)
        return gather_errors(
            [
                self.validate_field(field, "change"),
                self.validate_field(array_item_path(field, index1), "change"),
                self.validate_field(array_item_path(field, index2), "change"),
            ]
        )

    def move_field_values(
        self, field: str, index1: int, index2: int, dont_update_meta: bool = False
    ) -> Any:
        def move(prev: Any) -> List[Any]:
            items = list(prev)
            items.insert(index2, items.pop(index1))
            return items

        self.set_field_value(field, move, dont_update_meta)
        return gather_errors(
            [
                self.validate_field(field, "change"),
                self.validate_field(array_item_path(field, index1), "change"),
                self.validate_field(array_item_path(field, index2), "change"),
            ]
        )

    def __repr__(self) -> str:
        return f"FormApi(fields={list(self.field_info)!r})"


__all__ = ["FormApi"]
