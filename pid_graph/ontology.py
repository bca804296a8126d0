"""
P&ID Graph — Ontology & Schema
================================
Data model for a piping-and-instrumentation diagram, aligned with the
DEXPI (Proteus) interchange vocabulary.

ENTITY HIERARCHY:
  Document → Equipment → Nozzle
           → PipingNetwork → PipingLine, PipingFitting → ConnectionPoint, LineSegment
           → Instrument → InstrumentConnectionPoint, SignalLine
           → ProcessConnection

PORTS:
  Nozzle, ConnectionPoint and InstrumentConnectionPoint are the only things
  a LineSegment or SignalLine may attach to. A port stores its ABSOLUTE
  position; the offset from its owner is fixed when the owner is created.

Every entity carries the common identity contract: id, optional name,
description and tag, plus an ordered list of typed properties.
"""

from __future__ import annotations
import uuid
from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Union

from loguru import logger


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  ENUMERATIONS — Controlled Vocabularies
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class DexpiEnum(str, Enum):
    """Base for DEXPI vocabularies. Every vocabulary has an OTHER member."""

    @classmethod
    def parse(cls, text) -> "DexpiEnum":
        """Map a literal label onto a member; unknown labels become OTHER."""
        if isinstance(text, cls):
            return text
        if isinstance(text, Enum):
            text = text.value
        label = str(text or "").strip().upper()
        try:
            return cls(label)
        except ValueError:
            logger.warning(f"Unknown {cls.__name__} label {text!r}, using OTHER")
            return cls.OTHER


class EquipmentType(DexpiEnum):
    VESSEL = "VESSEL"
    COLUMN = "COLUMN"
    TANK = "TANK"
    PUMP = "PUMP"
    COMPRESSOR = "COMPRESSOR"
    HEAT_EXCHANGER = "HEAT_EXCHANGER"
    MIXER = "MIXER"
    REACTOR = "REACTOR"
    FILTER = "FILTER"
    FURNACE = "FURNACE"
    PACKAGE_UNIT = "PACKAGE_UNIT"
    OTHER = "OTHER"


class NozzleType(DexpiEnum):
    INLET = "INLET"
    OUTLET = "OUTLET"
    VENT = "VENT"
    DRAIN = "DRAIN"
    UTILITY = "UTILITY"
    INSTRUMENT = "INSTRUMENT"
    MANWAY = "MANWAY"
    OTHER = "OTHER"


class FittingType(DexpiEnum):
    VALVE = "VALVE"
    CHECK_VALVE = "CHECK_VALVE"
    CONTROL_VALVE = "CONTROL_VALVE"
    RELIEF_VALVE = "RELIEF_VALVE"
    ELBOW = "ELBOW"
    TEE = "TEE"
    REDUCER = "REDUCER"
    FLANGE = "FLANGE"
    BLIND_FLANGE = "BLIND_FLANGE"
    SPECTACLE_BLIND = "SPECTACLE_BLIND"
    STRAINER = "STRAINER"
    ORIFICE_PLATE = "ORIFICE_PLATE"
    OTHER = "OTHER"


class InstrumentType(DexpiEnum):
    INDICATOR = "INDICATOR"
    TRANSMITTER = "TRANSMITTER"
    CONTROLLER = "CONTROLLER"
    SWITCH = "SWITCH"
    GAUGE = "GAUGE"
    ANALYZER = "ANALYZER"
    SENSOR = "SENSOR"
    CONTROL_VALVE = "CONTROL_VALVE"
    SOLENOID_VALVE = "SOLENOID_VALVE"
    LOGIC_ELEMENT = "LOGIC_ELEMENT"
    OTHER = "OTHER"


class InstrumentConnectionType(DexpiEnum):
    PROCESS = "PROCESS"
    SIGNAL_INPUT = "SIGNAL_INPUT"
    SIGNAL_OUTPUT = "SIGNAL_OUTPUT"
    POWER = "POWER"
    OTHER = "OTHER"


class SignalType(DexpiEnum):
    ELECTRICAL = "ELECTRICAL"
    PNEUMATIC = "PNEUMATIC"
    HYDRAULIC = "HYDRAULIC"
    CAPILLARY = "CAPILLARY"
    ELECTROMAGNETIC = "ELECTROMAGNETIC"
    DIGITAL_DATA = "DIGITAL_DATA"
    OTHER = "OTHER"


class ProcessConnectionType(DexpiEnum):
    MATERIAL_FLOW = "MATERIAL_FLOW"
    ENERGY_FLOW = "ENERGY_FLOW"
    INFORMATION_FLOW = "INFORMATION_FLOW"
    OTHER = "OTHER"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  ENTITY MODELS — Diagram Nodes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

PropertyValue = Union[str, int, float, bool]


def _uid() -> str:
    return uuid.uuid4().hex[:12]


def create_id() -> str:
    """Fresh entity id, unique within any realistic document."""
    return f"dexpi-{_uid()}"


@dataclass(frozen=True)
class Point2D:
    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point2D) -> Point2D:
        return Point2D(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point2D) -> Point2D:
        return Point2D(self.x - other.x, self.y - other.y)


ORIGIN = Point2D(0.0, 0.0)


@dataclass
class DexpiProperty:
    """Typed name/value pair attached to any element."""
    name: str
    value: PropertyValue
    unit: Optional[str] = None
    source: Optional[str] = None


@dataclass(frozen=True)
class GraphicStyle:
    """Per-symbol drawing overrides; unset fields use the exporter defaults."""
    stroke_color: Optional[str] = None
    stroke_width: Optional[float] = None
    fill_color: Optional[str] = None
    opacity: Optional[float] = None


@dataclass
class DexpiElement:
    """Base element carrying the common identity contract."""
    id: str = field(default_factory=create_id)
    name: Optional[str] = None
    description: Optional[str] = None
    tag: Optional[str] = None
    properties: list[DexpiProperty] = field(default_factory=list)


# ── Equipment ──────────────────────────────────────────────────

@dataclass
class Nozzle(DexpiElement):
    """Connection port on an equipment item."""
    equipment_id: str = ""
    position: Point2D = ORIGIN
    nozzle_type: NozzleType = NozzleType.OTHER
    nominal_diameter: Optional[str] = None
    nominal_pressure: Optional[str] = None
    orientation: Optional[float] = None


@dataclass
class Equipment(DexpiElement):
    type: EquipmentType = EquipmentType.OTHER
    position: Optional[Point2D] = None
    rotation: Optional[float] = None
    service_description: Optional[str] = None
    equipment_class: Optional[str] = None
    style: Optional[GraphicStyle] = None
    nozzles: list[Nozzle] = field(default_factory=list)


# ── Piping ─────────────────────────────────────────────────────

@dataclass
class ConnectionPoint(DexpiElement):
    """Connection port on a piping fitting."""
    fitting_id: str = ""
    position: Point2D = ORIGIN
    orientation: Optional[float] = None
    connected_to: Optional[str] = None


@dataclass
class PipingFitting(DexpiElement):
    fitting_type: FittingType = FittingType.OTHER
    position: Optional[Point2D] = None
    rotation: Optional[float] = None
    nominal_diameter: Optional[str] = None
    nominal_pressure: Optional[str] = None
    material: Optional[str] = None
    style: Optional[GraphicStyle] = None
    connection_points: list[ConnectionPoint] = field(default_factory=list)


@dataclass
class LineSegment(DexpiElement):
    """Straight piece of pipe between two points, optionally anchored to ports."""
    start_point: Point2D = ORIGIN
    end_point: Point2D = ORIGIN
    line_id: str = ""
    start_connected_to: Optional[str] = None
    end_connected_to: Optional[str] = None
    style: Optional[GraphicStyle] = None


@dataclass
class PipingLine(DexpiElement):
    line_number: Optional[str] = None
    service: Optional[str] = None
    fluid_code: Optional[str] = None
    nominal_diameter: Optional[str] = None
    nominal_pressure: Optional[str] = None
    material: Optional[str] = None
    insulation: Optional[str] = None
    segments: list[str] = field(default_factory=list)  # LineSegment ids


@dataclass
class PipingNetwork(DexpiElement):
    lines: list[PipingLine] = field(default_factory=list)
    fittings: list[PipingFitting] = field(default_factory=list)
    line_segments: list[LineSegment] = field(default_factory=list)


# ── Instrumentation ────────────────────────────────────────────

@dataclass
class InstrumentConnectionPoint(DexpiElement):
    """Process or signal port on an instrument."""
    instrument_id: str = ""
    position: Point2D = ORIGIN
    connection_type: InstrumentConnectionType = InstrumentConnectionType.OTHER
    connected_to: Optional[str] = None


@dataclass
class SignalLine(DexpiElement):
    signal_type: SignalType = SignalType.OTHER
    start_point: Point2D = ORIGIN
    end_point: Point2D = ORIGIN
    start_connected_to: str = ""
    end_connected_to: str = ""
    style: Optional[GraphicStyle] = None


@dataclass
class Instrument(DexpiElement):
    instrument_type: InstrumentType = InstrumentType.OTHER
    position: Optional[Point2D] = None
    rotation: Optional[float] = None
    tag_number: Optional[str] = None
    function: Optional[str] = None
    loop_number: Optional[str] = None
    failure_action: Optional[str] = None
    style: Optional[GraphicStyle] = None
    connection_points: list[InstrumentConnectionPoint] = field(default_factory=list)
    signal_lines: list[SignalLine] = field(default_factory=list)


# ── Process Connection (logical, no geometry) ──────────────────

@dataclass
class ProcessConnection(DexpiElement):
    source_id: str = ""
    target_id: str = ""
    connection_type: ProcessConnectionType = ProcessConnectionType.MATERIAL_FLOW


# ── Document (root aggregate) ──────────────────────────────────

@dataclass
class Document(DexpiElement):
    plant_name: Optional[str] = None
    project_name: Optional[str] = None
    document_number: Optional[str] = None
    revision_number: Optional[str] = None
    created_by: Optional[str] = None
    created_date: Optional[datetime] = None
    modified_by: Optional[str] = None
    modified_date: Optional[datetime] = None
    equipment: list[Equipment] = field(default_factory=list)
    piping_networks: list[PipingNetwork] = field(default_factory=list)
    instruments: list[Instrument] = field(default_factory=list)
    process_connections: list[ProcessConnection] = field(default_factory=list)


Entity = Union[Equipment, PipingFitting, Instrument]
Port = Union[Nozzle, ConnectionPoint, InstrumentConnectionPoint]


def create_empty_document(name: str = "New P&ID") -> Document:
    """Start a fresh, empty diagram stamped with the creation time."""
    return Document(name=name, created_date=datetime.now(timezone.utc))
