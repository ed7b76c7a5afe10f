"""Per-recipe parameter schemas and lenient form-field coercion.

Form fields arrive as strings. Optional fields that are missing or do not
parse fall back to their documented default; only required geometry
(width/height) is a hard error.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from PIL import ImageColor

from exceptions import InvalidParameterError
from utils.geometry import LengthUnit, parse_unit, to_pixels

TRANSPARENT = (0, 0, 0, 0)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


class ParamKind(str, Enum):
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    ENUM = "enum"
    COLOR = "color"
    STR = "str"
    LENGTH = "length"  # geometry: number in px/mm/cm/in, normalized to pixels


@dataclass(frozen=True)
class ParamSpec:
    """One entry of a recipe's parameter schema."""

    name: str
    kind: ParamKind
    default: Any = None
    required: bool = False
    choices: tuple[str, ...] = ()
    min_value: float | None = None
    max_value: float | None = None
    aliases: tuple[str, ...] = ()
    # LENGTH only: fixed unit for the recipe; None reads the request's "unit" field
    unit: LengthUnit | None = None


@dataclass
class TransformParams:
    """Validated parameters handed to a recipe.

    Geometry fields are stored in pixels; the caller's original number is
    kept in ``raw_lengths`` for filenames and diagnostics.
    """

    values: dict[str, Any] = field(default_factory=dict)
    raw_lengths: dict[str, float] = field(default_factory=dict)
    dpi: int = 300
    unit: LengthUnit = LengthUnit.PX

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self.values


def dpi_spec(default: int = 300) -> ParamSpec:
    return ParamSpec("dpi", ParamKind.INT, default=default, min_value=1, max_value=2400)


def unit_spec(default: str = "px") -> ParamSpec:
    return ParamSpec("unit", ParamKind.ENUM, default=default, choices=("px", "mm", "cm", "in"))


def validate_params(
    schema: tuple[ParamSpec, ...],
    raw: Mapping[str, Any],
    default_dpi: int = 300,
) -> TransformParams:
    """Coerce raw form fields against a recipe schema.

    Raises:
        InvalidParameterError: If a required field is missing or non-numeric.
    """
    params = TransformParams(dpi=default_dpi)

    by_name = {spec.name: spec for spec in schema}
    if "dpi" in by_name:
        params.dpi = int(_coerce(by_name["dpi"], _lookup(by_name["dpi"], raw)))
    elif raw.get("dpi") is not None:
        params.dpi = int(_coerce(dpi_spec(default_dpi), raw.get("dpi")))

    if "unit" in by_name:
        unit_value = _coerce(by_name["unit"], _lookup(by_name["unit"], raw))
        params.unit = parse_unit(unit_value) or LengthUnit.PX

    for spec in schema:
        value = _lookup(spec, raw)
        if spec.kind == ParamKind.LENGTH:
            _resolve_length(spec, value, params)
            continue
        params.values[spec.name] = _coerce(spec, value)

    params.values.setdefault("dpi", params.dpi)
    return params


def _lookup(spec: ParamSpec, raw: Mapping[str, Any]) -> Any:
    for key in (spec.name, *spec.aliases):
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _resolve_length(spec: ParamSpec, value: Any, params: TransformParams) -> None:
    number = _parse_float(value)
    if number is None or number <= 0:
        if spec.required:
            if value is None:
                raise InvalidParameterError(
                    f"Missing required parameter '{spec.name}'", parameter=spec.name
                )
            raise InvalidParameterError(
                f"Parameter '{spec.name}' must be a positive number, got '{value}'",
                parameter=spec.name,
            )
        if spec.default is None:
            params.values[spec.name] = None
            return
        number = float(spec.default)

    unit = spec.unit or params.unit
    params.raw_lengths[spec.name] = number
    params.values[spec.name] = max(1, to_pixels(number, unit, params.dpi))


def _coerce(spec: ParamSpec, value: Any) -> Any:
    if value is None:
        if spec.kind == ParamKind.COLOR and spec.default is not None:
            return parse_color(spec.default)
        return spec.default

    if spec.kind == ParamKind.INT:
        number = _parse_float(value)
        if number is None:
            return spec.default
        return int(round(_clamp(spec, number)))

    if spec.kind == ParamKind.FLOAT:
        number = _parse_float(value)
        if number is None:
            return spec.default
        return _clamp(spec, number)

    if spec.kind == ParamKind.BOOL:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        return spec.default

    if spec.kind == ParamKind.ENUM:
        text = str(value).strip().lower()
        return text if text in spec.choices else spec.default

    if spec.kind == ParamKind.COLOR:
        parsed = parse_color(value)
        if parsed is None:
            return parse_color(spec.default) if spec.default is not None else None
        return parsed

    return str(value)


def parse_color(value: Any) -> tuple[int, ...] | None:
    """Parse a CSS-style color ("white", "#FFF", "rgb(1,2,3)") into an RGB/RGBA tuple."""
    if isinstance(value, tuple):
        return value
    text = str(value).strip()
    if text.lower() == "transparent":
        return TRANSPARENT
    try:
        return ImageColor.getrgb(text)
    except ValueError:
        return None


def _parse_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _clamp(spec: ParamSpec, number: float) -> float:
    if spec.min_value is not None and number < spec.min_value:
        number = spec.min_value
    if spec.max_value is not None and number > spec.max_value:
        number = spec.max_value
    return number
