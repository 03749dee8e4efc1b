from __future__ import annotations

"""Component descriptors attached to clarification questions so chat clients can render quick replies."""

from typing import Any

_UNSET = object()


def build_number_input(
    field_id: str,
    label: str,
    min_value: float | None = None,
    unit: str | None = None,
    step: float | None = None,
    *,
    binding: str | None = None,
    default: Any = _UNSET,
) -> dict[str, Any]:
    """
    Build a descriptor for a numeric amount input.
    """

    constraints: dict[str, Any] = {}
    if min_value is not None:
        constraints["minimum"] = min_value
    if unit is not None:
        constraints["unit"] = unit
    if step is not None:
        constraints["step"] = step
    if default is not _UNSET:
        constraints["default"] = default

    component: dict[str, Any] = {
        "field_id": field_id,
        "component": "number_input",
        "label": label,
    }
    if constraints:
        component["constraints"] = constraints
    if binding:
        component["binding"] = binding
    return component


def build_dropdown(
    field_id: str,
    label: str,
    options: list[dict[str, str]],
    *,
    binding: str | None = None,
    default: Any = _UNSET,
) -> dict[str, Any]:
    """
    Build a descriptor for a dropdown; options are `{"value", "label"}` pairs in display order.
    """

    component: dict[str, Any] = {
        "field_id": field_id,
        "component": "dropdown",
        "label": label,
        "options": [dict(option) for option in options],
    }
    if default is not _UNSET:
        component["constraints"] = {"default": default}
    if binding:
        component["binding"] = binding
    return component


def build_date_input(
    field_id: str,
    label: str,
    *,
    max_value: str | None = None,
    binding: str | None = None,
    default: Any = _UNSET,
) -> dict[str, Any]:
    component: dict[str, Any] = {
        "field_id": field_id,
        "component": "date_input",
        "label": label,
    }
    constraints: dict[str, Any] = {}
    if max_value is not None:
        constraints["maximum"] = max_value
    if default is not _UNSET:
        constraints["default"] = default
    if constraints:
        component["constraints"] = constraints
    if binding:
        component["binding"] = binding
    return component
