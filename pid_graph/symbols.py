"""
P&ID Graph — Symbol Templates
===============================
One template per symbol kind: the fixed port layout (offsets from the
owner's position) and the SVG primitives used to draw it.

The same table feeds the graph engine (port instantiation) and the SVG
exporter (shapes), so a type that has no dedicated entry falls back to the
same default variant in both places:

  Equipment   → VESSEL port layout, generic 60×60 rectangle
  Fitting     → VALVE port layout,  generic 20×20 rectangle
  Instrument  → INDICATOR port layout, instrument bubble
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .ontology import (
    Point2D, EquipmentType, FittingType, InstrumentType,
    NozzleType, InstrumentConnectionType,
)


@dataclass(frozen=True)
class PortSpec:
    """Port slot on a symbol; `kind` is a NozzleType or InstrumentConnectionType label."""
    offset: Point2D
    name: str
    kind: Optional[str] = None


@dataclass(frozen=True)
class Shape:
    """Single SVG primitive in symbol-local coordinates."""
    element: str  # rect, circle, path
    geometry: tuple = ()  # ((attr, value), ...)
    filled: bool = True
    stroke_width: Optional[float] = None  # None → exporter default


@dataclass(frozen=True)
class SymbolTemplate:
    kind: str
    ports: tuple[PortSpec, ...] = ()
    shapes: tuple[Shape, ...] = ()
    label_y: float = -60.0
    label_size: int = 12


def _rect(x, y, w, h, rx=None) -> Shape:
    geometry = [("x", x), ("y", y), ("width", w), ("height", h)]
    if rx is not None:
        geometry.append(("rx", rx))
    return Shape("rect", tuple(geometry))


def _circle(r, cx=0, cy=0) -> Shape:
    return Shape("circle", (("cx", cx), ("cy", cy), ("r", r)))


def _path(d, filled=False, stroke_width=None) -> Shape:
    return Shape("path", (("d", d),), filled=filled, stroke_width=stroke_width)


def _ports(*specs) -> tuple[PortSpec, ...]:
    return tuple(PortSpec(Point2D(x, y), name, kind) for x, y, name, kind in specs)


# ── Equipment ──────────────────────────────────────────────────

_VESSEL_PORTS = _ports(
    (0, -50, "top", NozzleType.INLET.value),
    (0, 50, "bottom", NozzleType.OUTLET.value),
    (-30, 0, "left", NozzleType.UTILITY.value),
    (30, 0, "right", NozzleType.UTILITY.value),
)

_VESSEL_SHAPES = (_rect(-30, -50, 60, 100, rx=5),)

EQUIPMENT_TEMPLATES: dict[EquipmentType, SymbolTemplate] = {
    EquipmentType.VESSEL: SymbolTemplate("VESSEL", _VESSEL_PORTS, _VESSEL_SHAPES),
    EquipmentType.TANK: SymbolTemplate("TANK", _VESSEL_PORTS, _VESSEL_SHAPES),
    EquipmentType.PUMP: SymbolTemplate(
        "PUMP",
        _ports(
            (-25, 0, "suction", NozzleType.INLET.value),
            (25, 0, "discharge", NozzleType.OUTLET.value),
        ),
        (_circle(25), _path("M-15,-15 L15,15 M-15,15 L15,-15")),
    ),
    EquipmentType.HEAT_EXCHANGER: SymbolTemplate(
        "HEAT_EXCHANGER",
        _ports(
            (-40, -10, "shell in", NozzleType.INLET.value),
            (40, -10, "shell out", NozzleType.OUTLET.value),
            (-40, 10, "tube in", NozzleType.INLET.value),
            (40, 10, "tube out", NozzleType.OUTLET.value),
        ),
        (_rect(-40, -20, 80, 40),
         _path("M-40,-10 L40,-10 M-40,0 L40,0 M-40,10 L40,10", stroke_width=1)),
    ),
    EquipmentType.COLUMN: SymbolTemplate(
        "COLUMN",
        _ports(
            (0, -75, "top", NozzleType.OUTLET.value),
            (0, 75, "bottom", NozzleType.OUTLET.value),
            (-25, -25, "feed upper", NozzleType.INLET.value),
            (-25, 25, "feed lower", NozzleType.INLET.value),
            (25, -50, "side draw upper", NozzleType.OUTLET.value),
            (25, 0, "side draw middle", NozzleType.OUTLET.value),
            (25, 50, "side draw lower", NozzleType.OUTLET.value),
        ),
        (_rect(-25, -75, 50, 150, rx=5),),
    ),
}

DEFAULT_EQUIPMENT_TEMPLATE = SymbolTemplate("DEFAULT", _VESSEL_PORTS, (_rect(-30, -30, 60, 60),))


# ── Piping fittings ────────────────────────────────────────────

_INLINE_PORTS = _ports((-15, 0, "inlet", None), (15, 0, "outlet", None))

FITTING_TEMPLATES: dict[FittingType, SymbolTemplate] = {
    FittingType.VALVE: SymbolTemplate(
        "VALVE", _INLINE_PORTS,
        (_circle(10), _path("M-15,0 L15,0 M0,-15 L0,15")),
    ),
    FittingType.CHECK_VALVE: SymbolTemplate(
        "CHECK_VALVE", _INLINE_PORTS,
        (_path("M-15,0 L15,0 M0,-10 L10,0 L0,10 Z", filled=True),),
    ),
    FittingType.CONTROL_VALVE: SymbolTemplate(
        "CONTROL_VALVE", _INLINE_PORTS,
        (_path("M-15,0 L15,0"),
         _path("M-10,-10 L10,10 M-10,10 L10,-10"),
         _path("M0,-20 L-7,-30 L7,-30 Z", filled=True, stroke_width=1)),
    ),
}

DEFAULT_FITTING_TEMPLATE = SymbolTemplate("DEFAULT", _INLINE_PORTS, (_rect(-10, -10, 20, 20),))


# ── Instruments ────────────────────────────────────────────────

_BUBBLE = (_circle(15),)

INSTRUMENT_TEMPLATES: dict[InstrumentType, SymbolTemplate] = {
    InstrumentType.INDICATOR: SymbolTemplate(
        "INDICATOR",
        _ports((0, 15, "process", InstrumentConnectionType.PROCESS.value)),
        _BUBBLE, label_y=5, label_size=10,
    ),
    InstrumentType.TRANSMITTER: SymbolTemplate(
        "TRANSMITTER",
        _ports(
            (0, 15, "process", InstrumentConnectionType.PROCESS.value),
            (15, 0, "signal", InstrumentConnectionType.SIGNAL_OUTPUT.value),
        ),
        _BUBBLE, label_y=5, label_size=10,
    ),
    InstrumentType.CONTROLLER: SymbolTemplate(
        "CONTROLLER",
        _ports(
            (-15, 0, "input", InstrumentConnectionType.SIGNAL_INPUT.value),
            (15, 0, "output", InstrumentConnectionType.SIGNAL_OUTPUT.value),
        ),
        _BUBBLE, label_y=5, label_size=10,
    ),
}

DEFAULT_INSTRUMENT_TEMPLATE = SymbolTemplate(
    "DEFAULT", INSTRUMENT_TEMPLATES[InstrumentType.INDICATOR].ports,
    _BUBBLE, label_y=5, label_size=10,
)


# ── Resolution ─────────────────────────────────────────────────

def equipment_template(equipment_type) -> SymbolTemplate:
    return EQUIPMENT_TEMPLATES.get(EquipmentType.parse(equipment_type), DEFAULT_EQUIPMENT_TEMPLATE)


def fitting_template(fitting_type) -> SymbolTemplate:
    return FITTING_TEMPLATES.get(FittingType.parse(fitting_type), DEFAULT_FITTING_TEMPLATE)


def instrument_template(instrument_type) -> SymbolTemplate:
    return INSTRUMENT_TEMPLATES.get(InstrumentType.parse(instrument_type), DEFAULT_INSTRUMENT_TEMPLATE)
