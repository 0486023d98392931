"""
Binding Provider

Authoritative item -> BindingConfig registry. Listeners (the runtime) are
notified when the whole set is replaced or when a single item changes.
"""

from typing import Protocol

from buspoll.common.config import (
    REFRESH_NEVER,
    BindingDefinition,
    BindingType,
    ControlType,
)
from buspoll.common.exceptions import ConfigError
from buspoll.common.logging_setup import get_service_logger

from .bindings import (
    BindingConfig,
    ClearCacheControl,
    ControlProperty,
    ReadableProperty,
    RefreshControl,
    WritableProperty,
    converter_for,
)

logger = get_service_logger("binding.provider")


class BindingChangeListener(Protocol):
    def all_bindings_changed(self, provider: "BindingProvider") -> None:
        ...

    def binding_changed(self, provider: "BindingProvider", item_name: str) -> None:
        ...


class BindingProvider:
    """
    Holds exactly one BindingConfig per item.

    Re-registering an item replaces its config; configs are never merged.
    """

    def __init__(self, bindings: dict[str, BindingConfig] | None = None):
        self._bindings: dict[str, BindingConfig] = dict(bindings or {})
        self._listeners: list[BindingChangeListener] = []

    def add_listener(self, listener: BindingChangeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: BindingChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def get_binding_config(self, item_name: str) -> BindingConfig | None:
        return self._bindings.get(item_name)

    def get_binding_configs(self) -> dict[str, BindingConfig]:
        return dict(self._bindings)

    def item_names(self) -> list[str]:
        return list(self._bindings)

    def set_bindings(self, bindings: dict[str, BindingConfig]) -> None:
        """Replace the whole binding set"""
        self._bindings = dict(bindings)
        logger.info(f"Binding set replaced ({len(self._bindings)} items)")
        for listener in list(self._listeners):
            listener.all_bindings_changed(self)

    def set_binding(self, item_name: str, config: BindingConfig) -> None:
        """Add or replace one item's binding"""
        self._bindings[item_name] = config
        self._notify_changed(item_name)

    def remove_binding(self, item_name: str) -> None:
        if self._bindings.pop(item_name, None) is not None:
            self._notify_changed(item_name)

    def _notify_changed(self, item_name: str) -> None:
        for listener in list(self._listeners):
            listener.binding_changed(self, item_name)

    @classmethod
    def from_definitions(cls, definitions: list[BindingDefinition]) -> "BindingProvider":
        return cls(load_binding_configs(definitions))


# ----------------------------------------------------------------------
# Validation and loading
# ----------------------------------------------------------------------

class BindingValidator:
    """Validates binding definitions before they are turned into configs"""

    def validate(self, definitions: list[BindingDefinition]) -> tuple[bool, list[str]]:
        """
        Validate binding definitions.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors: list[str] = []
        seen: set[str] = set()
        item_names = {d.item for d in definitions}

        for definition in definitions:
            if definition.item in seen:
                errors.append(f"Duplicate binding for item '{definition.item}'")
            seen.add(definition.item)

            if definition.type in (BindingType.READABLE, BindingType.WRITABLE):
                errors.extend(self._validate_property(definition))
            elif definition.type == BindingType.CONTROL:
                errors.extend(self._validate_control(definition, item_names))

        is_valid = len(errors) == 0

        if not is_valid:
            logger.warning(
                f"Binding validation failed: {len(errors)} errors",
                extra={"errors": errors},
            )
        else:
            logger.debug("Binding validation passed")

        return is_valid, errors

    def _validate_property(self, definition: BindingDefinition) -> list[str]:
        errors = []
        if not definition.path:
            errors.append(f"{definition.item}: missing device property path")
        if definition.refresh < REFRESH_NEVER:
            errors.append(
                f"{definition.item}: refresh must be -1 (never), 0 (once) or positive"
            )
        if definition.control is not None:
            errors.append(f"{definition.item}: 'control' only applies to control bindings")
        return errors

    def _validate_control(
        self,
        definition: BindingDefinition,
        item_names: set[str],
    ) -> list[str]:
        errors = []
        if definition.control is None:
            errors.append(f"{definition.item}: control binding needs a 'control' type")
        for target in definition.targets:
            if target not in item_names:
                errors.append(f"{definition.item}: unknown target item '{target}'")
        return errors


def build_binding_config(definition: BindingDefinition) -> BindingConfig:
    """Turn one validated definition into its BindingConfig variant"""
    if definition.type == BindingType.CONTROL:
        if definition.control == ControlType.REFRESH:
            control = RefreshControl(targets=list(definition.targets))
        else:
            control = ClearCacheControl(targets=list(definition.targets))
        return ControlProperty(control=control)

    variant = WritableProperty if definition.type == BindingType.WRITABLE else ReadableProperty
    return variant(
        path=definition.path,
        refresh=definition.refresh,
        ignore_read_errors=definition.ignore_read_errors,
        converter=converter_for(definition.converter),
    )


def load_binding_configs(definitions: list[BindingDefinition]) -> dict[str, BindingConfig]:
    """
    Validate and build configs for all definitions.

    Raises:
        ConfigError: listing every validation problem
    """
    is_valid, errors = BindingValidator().validate(definitions)
    if not is_valid:
        raise ConfigError("; ".join(errors))

    return {d.item: build_binding_config(d) for d in definitions}
