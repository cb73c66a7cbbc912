"""
Field handle bound to one path of a ``FormApi``.

A field owns its own validators and listeners. Its values and metadata live
in the form; the handle only reads and writes them through the form's API.
Validation combines both layers: the form's validators run first and may
report errors for this field, then the field's own validators run. For a
given cause the field's own error wins over the form's.
"""

import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from .store import batch, values_equal
from .types import (
    FieldListeners,
    FieldMeta,
    FieldMetaBase,
    FieldValidators,
    ValidationMeta,
    ValidatorProps,
    as_field_meta_base,
)
from .utils import schedule, settle
from .validation import (
    SUPERSEDED,
    AbortController,
    ValidatorEntry,
    get_async_validator_array,
    get_sync_validator_array,
    normalize_field_error,
    run_debounced,
    run_validator,
)

if TYPE_CHECKING:
    from .form_api import FormApi


class FieldApi:
    """
    Args:
        form: The owning form.
        name: Field path, e.g. ``"items[0].name"``.
        validators: ``FieldValidators`` or a mapping of its fields.
        default_value: Written to the form on mount if the path is empty.
        default_meta: Initial raw meta, used on mount if the form has none.
        async_always: Run async validators even when sync ones failed.
            Defaults to the form's setting.
        async_debounce_ms: Default debounce for async validators. Defaults to
            the form's setting.
        listeners: ``FieldListeners`` or a mapping of its fields.
    """

    def __init__(
        self,
        form: "FormApi",
        name: str,
        validators: Any = None,
        default_value: Any = None,
        default_meta: Any = None,
        async_always: Optional[bool] = None,
        async_debounce_ms: Optional[float] = None,
        listeners: Any = None,
    ):
        if isinstance(validators, Mapping):
            validators = FieldValidators(**validators)
        if isinstance(listeners, Mapping):
            listeners = FieldListeners(**listeners)

        self.form = form
        self.name = name
        self.validators: Optional[FieldValidators] = validators
        self.default_value = default_value
        self.default_meta = default_meta
        self.async_always = async_always
        self.async_debounce_ms = async_debounce_ms
        self.listeners: FieldListeners = listeners or FieldListeners()
        self._pending_validations = 0

    @property
    def value(self) -> Any:
        return self.form.get_field_value(self.name)

    def get_meta(self) -> Optional[FieldMeta]:
        return self.form.get_field_meta(self.name)

    def set_meta(self, updater: Callable[[Optional[FieldMetaBase]], Any]) -> None:
        self.form.set_field_meta(self.name, updater)

    def _base_meta(self) -> FieldMetaBase:
        return self.form.base_store.state.field_meta_base.get(self.name) or FieldMetaBase()

    def _async_always(self) -> bool:
        if self.async_always is not None:
            return self.async_always
        return self.form.options.async_always

    def _async_debounce_ms(self) -> Optional[float]:
        if self.async_debounce_ms is not None:
            return self.async_debounce_ms
        return self.form.options.async_debounce_ms

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def mount(self) -> Callable[[], None]:
        """Register with the form and seed value and meta. Returns unmount."""
        info = self.form.get_field_info(self.name)
        info.instance = self

        with batch():
            if self.default_value is not None and self.value is None:
                self.form.set_field_value(
                    self.name, self.default_value, dont_update_meta=True
                )
            if self.name not in self.form.base_store.state.field_meta_base:
                default_meta = self.default_meta
                self.set_meta(
                    lambda prev: as_field_meta_base(default_meta)
                    if default_meta is not None
                    else FieldMetaBase()
                )

        on_mount = self.validators.on_mount if self.validators is not None else None
        if on_mount is not None:
            error = normalize_field_error(
                run_validator(
                    on_mount,
                    self._validator_props(),
                    is_async=False,
                    adapter=self.form.options.validator_adapter,
                )
            )
            if error:
                self.set_meta(
                    lambda prev: replace(
                        prev, error_map={**prev.error_map, "onMount": error}
                    )
                )

        def unmount() -> None:
            if info.instance is self:
                info.instance = None

        return unmount

    # ========================================================================
    # INTERACTION
    # ========================================================================

    def set_value(self, updater: Any, dont_update_meta: bool = False) -> Any:
        """Write the value, notify ``on_change`` and validate for ``change``."""
        self.form.set_field_value(self.name, updater, dont_update_meta=dont_update_meta)
        if self.listeners.on_change is not None:
            self.form.run_listener(self.listeners.on_change, self.value, self)
        return self.validate("change")

    def handle_change(self, value: Any) -> Any:
        return self.set_value(lambda prev: value)

    def handle_blur(self) -> Any:
        meta = self._base_meta()
        if not meta.is_touched or not meta.is_blurred:
            self.set_meta(
                lambda prev: replace(
                    prev or FieldMetaBase(), is_touched=True, is_blurred=True
                )
            )
        if self.listeners.on_blur is not None:
            self.form.run_listener(self.listeners.on_blur, self.value, self)
        return self.validate("blur")

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def _validator_props(self, signal: Any = None) -> ValidatorProps:
        return ValidatorProps(
            value=self.value,
            form_api=self.form,
            validation_source="field",
            signal=signal,
            field_api=self,
        )

    def _write_error(self, key: str, error: Any) -> None:
        if values_equal(self._base_meta().error_map.get(key), error):
            return

        def write(prev: Optional[FieldMetaBase]) -> FieldMetaBase:
            prev = prev or FieldMetaBase()
            return replace(prev, error_map={**prev.error_map, key: error})

        self.set_meta(write)

    def validate_sync(self, cause: str, errors_from_form: Mapping[str, Any]) -> bool:
        """
        Run this field's sync validators for ``cause``.

        ``errors_from_form`` holds what the form validators reported for this
        field, by error-map key; it fills in wherever the field has no error
        of its own. Returns whether anything errored.
        """
        has_errored = False

        with batch():
            for entry in get_sync_validator_array(cause, self.validators):
                field_error = None
                if entry.validate is not None:
                    field_error = normalize_field_error(
                        run_validator(
                            entry.validate,
                            self._validator_props(),
                            is_async=False,
                            adapter=self.form.options.validator_adapter,
                        )
                    )

                error = field_error or errors_from_form.get(entry.error_map_key)
                self._write_error(entry.error_map_key, error)
                if error:
                    has_errored = True

        if cause != "submit" and not has_errored and self._base_meta().error_map.get("onSubmit"):
            self._write_error("onSubmit", None)

        return has_errored

    def _async_entries(self, cause: str) -> List[ValidatorEntry]:
        return [
            entry
            for entry in get_async_validator_array(
                cause, self.validators, self._async_debounce_ms()
            )
            if entry.validate is not None
        ]

    def _abort_pending(self, cause: str) -> None:
        meta_map = self.form.get_field_info(self.name).validation_meta_map
        for entry in get_async_validator_array(cause, self.validators):
            meta = meta_map.get(entry.error_map_key)
            if meta is not None:
                meta.last_abort_controller.abort()
                meta_map[entry.error_map_key] = None

    async def _run_async_entry(
        self,
        entry: ValidatorEntry,
        controller: AbortController,
        meta_map: Dict[str, Optional[ValidationMeta]],
        form_result: Any,
    ) -> None:
        key = entry.error_map_key
        raw_error = await run_debounced(
            controller.signal,
            entry.debounce_ms,
            lambda: run_validator(
                entry.validate,
                self._validator_props(controller.signal),
                is_async=True,
                adapter=self.form.options.validator_adapter,
            ),
        )

        current = meta_map.get(key)
        if current is not None and current.last_abort_controller is controller:
            meta_map[key] = None

        if raw_error is SUPERSEDED:
            logging.debug(f"Field {self.name!r} {key} validation superseded")
            return

        field_error = normalize_field_error(raw_error)
        form_errors = await settle(form_result) if form_result is not None else {}
        error = field_error or (form_errors.get(self.name) or {}).get(key)
        self._write_error(key, error)

    def _start_async(
        self, cause: str, form_result: Any = None
    ) -> "asyncio.Task[List[Any]]":
        # Handles are registered before the task first runs
        entries = self._async_entries(cause)
        meta_map = self.form.get_field_info(self.name).validation_meta_map
        tasks = []
        for entry in entries:
            key = entry.error_map_key
            previous = meta_map.get(key)
            if previous is not None:
                previous.last_abort_controller.abort()
            controller = AbortController()
            meta_map[key] = ValidationMeta(last_abort_controller=controller)
            tasks.append(
                schedule(
                    self._run_async_entry(entry, controller, meta_map, form_result)
                )
            )

        if entries:
            self._pending_validations += 1
            if not self._base_meta().is_validating:
                self.set_meta(
                    lambda prev: replace(prev or FieldMetaBase(), is_validating=True)
                )

        return schedule(self._settle_async(bool(entries), tasks, form_result))

    async def _settle_async(
        self, has_entries: bool, tasks: List[Any], form_result: Any
    ) -> List[Any]:
        try:
            if form_result is not None:
                await settle(form_result)
            if tasks:
                await asyncio.gather(*tasks)
        finally:
            if has_entries:
                self._pending_validations -= 1
            if (
                has_entries
                and self._pending_validations == 0
                and self.name in self.form.base_store.state.field_meta_base
            ):
                self.set_meta(
                    lambda prev: replace(prev, is_validating=False)
                    if prev.is_validating
                    else prev
                )

        meta = self.get_meta()
        return meta.errors if meta is not None else []

    async def validate_async(self, cause: str, form_result: Any = None) -> List[Any]:
        """
        Run this field's async validators for ``cause``, superseding any
        earlier in-flight validation for the same key. ``form_result`` is the
        pending form-level validation, if any. Returns the field's errors once
        everything settled.
        """
        return await self._start_async(cause, form_result)

    def validate(self, cause: str) -> Any:
        """
        Validate this field for ``cause``, form validators included.

        Untouched fields are skipped. Returns the field's errors, or a task
        resolving to them when async validation is pending. Scheduling that
        task needs a running event loop.
        """
        if not self._base_meta().is_touched:
            return []

        _, fields_error_map = self.form.validate_sync(cause)
        has_errored = self.validate_sync(cause, fields_error_map.get(self.name) or {})

        if has_errored and not self._async_always():
            self._abort_pending(cause)
            meta = self.get_meta()
            return meta.errors if meta is not None else []

        form_result = None
        if self.form.has_async_validators(cause):
            form_result = self.form._start_async(cause)

        if form_result is None and not self._async_entries(cause):
            meta = self.get_meta()
            return meta.errors if meta is not None else []

        return self._start_async(cause, form_result)

    def __repr__(self) -> str:
        return f"FieldApi({self.name!r})"


__all__ = ["FieldApi"]
