"""
DEXPI Codec — Encoder
=======================
Document → DEXPI Proteus XML.

Optional fields that are unset produce no element at all, and empty
collections produce no container. Element order follows in-memory order.
"""

from __future__ import annotations
from datetime import datetime
from typing import Optional

from loguru import logger
from lxml import etree

from pid_graph.ontology import (
    Document, DexpiElement, DexpiProperty, Equipment, Nozzle, PipingNetwork,
    PipingLine, PipingFitting, ConnectionPoint, LineSegment, Instrument,
    InstrumentConnectionPoint, SignalLine, ProcessConnection, Point2D,
)
from .config import (
    CodecConfig, DexpiEncodeError, DEXPI_NS, GML_NS, XSI_NS, NSMAP, format_number,
)


def _q(tag: str) -> str:
    return f"{{{DEXPI_NS}}}{tag}"


def _text(parent, tag: str, value) -> None:
    """Append `<tag>value</tag>` unless value is None or empty."""
    if value is None or value == "":
        return
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = format_number(value)
    elif isinstance(value, datetime):
        value = value.isoformat()
    etree.SubElement(parent, _q(tag)).text = str(value)


def _point(parent, tag: str, point: Optional[Point2D]) -> None:
    if point is None:
        return
    holder = etree.SubElement(parent, _q(tag))
    gml_point = etree.SubElement(holder, f"{{{GML_NS}}}Point")
    etree.SubElement(gml_point, f"{{{GML_NS}}}pos").text = \
        f"{format_number(point.x)} {format_number(point.y)}"


def _property_value(value) -> str:
    # bool first: it is a subclass of int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        return value
    raise TypeError(f"Property value of type {type(value).__name__} is not serializable")


def _properties(parent, properties: list[DexpiProperty]) -> None:
    if not properties:
        return
    container = etree.SubElement(parent, _q("Properties"))
    for prop in properties:
        el = etree.SubElement(container, _q("Property"))
        etree.SubElement(el, _q("Name")).text = prop.name
        etree.SubElement(el, _q("Value")).text = _property_value(prop.value)
        _text(el, "Unit", prop.unit)
        _text(el, "Source", prop.source)


def _common(el, element: DexpiElement) -> None:
    _text(el, "Id", element.id)
    _text(el, "Name", element.name)
    _text(el, "Description", element.description)
    _text(el, "Tag", element.tag)
    _properties(el, element.properties)


def _collection(parent, tag: str, child_tag: str, items: list, append) -> None:
    if not items:
        return
    container = etree.SubElement(parent, _q(tag))
    for item in items:
        append(etree.SubElement(container, _q(child_tag)), item)


# ── Equipment ──────────────────────────────────────────────────

def _nozzle(el, nozzle: Nozzle) -> None:
    _common(el, nozzle)
    _text(el, "NozzleType", nozzle.nozzle_type.value)
    _text(el, "NominalDiameter", nozzle.nominal_diameter)
    _text(el, "NominalPressure", nozzle.nominal_pressure)
    _point(el, "Position", nozzle.position)
    _text(el, "Orientation", nozzle.orientation)


def _equipment(el, equipment: Equipment) -> None:
    _common(el, equipment)
    _text(el, "EquipmentType", equipment.type.value)
    _text(el, "ServiceDescription", equipment.service_description)
    _text(el, "EquipmentClass", equipment.equipment_class)
    _point(el, "Position", equipment.position)
    _text(el, "Rotation", equipment.rotation)
    _collection(el, "Nozzles", "Nozzle", equipment.nozzles, _nozzle)


# ── Piping ─────────────────────────────────────────────────────

def _line(el, line: PipingLine) -> None:
    _common(el, line)
    _text(el, "LineNumber", line.line_number)
    _text(el, "Service", line.service)
    _text(el, "FluidCode", line.fluid_code)
    _text(el, "NominalDiameter", line.nominal_diameter)
    _text(el, "NominalPressure", line.nominal_pressure)
    _text(el, "Material", line.material)
    _text(el, "Insulation", line.insulation)
    if line.segments:
        refs = etree.SubElement(el, _q("SegmentReferences"))
        for seg_id in line.segments:
            etree.SubElement(refs, _q("SegmentReference")).text = seg_id


def _connection_point(el, point: ConnectionPoint) -> None:
    _common(el, point)
    _point(el, "Position", point.position)
    _text(el, "Orientation", point.orientation)
    _text(el, "ConnectedTo", point.connected_to)


def _fitting(el, fitting: PipingFitting) -> None:
    _common(el, fitting)
    _text(el, "FittingType", fitting.fitting_type.value)
    _text(el, "NominalDiameter", fitting.nominal_diameter)
    _text(el, "NominalPressure", fitting.nominal_pressure)
    _text(el, "Material", fitting.material)
    _point(el, "Position", fitting.position)
    _text(el, "Rotation", fitting.rotation)
    _collection(el, "ConnectionPoints", "ConnectionPoint", fitting.connection_points, _connection_point)


def _segment(el, segment: LineSegment) -> None:
    _common(el, segment)
    _text(el, "LineId", segment.line_id)
    _point(el, "StartPoint", segment.start_point)
    _point(el, "EndPoint", segment.end_point)
    _text(el, "StartConnectedTo", segment.start_connected_to)
    _text(el, "EndConnectedTo", segment.end_connected_to)


def _network(el, network: PipingNetwork) -> None:
    _common(el, network)
    _collection(el, "PipingLines", "PipingLine", network.lines, _line)
    _collection(el, "PipingFittings", "PipingFitting", network.fittings, _fitting)
    _collection(el, "LineSegments", "LineSegment", network.line_segments, _segment)


# ── Instrumentation ────────────────────────────────────────────

def _instrument_point(el, point: InstrumentConnectionPoint) -> None:
    _common(el, point)
    _text(el, "ConnectionType", point.connection_type.value)
    _point(el, "Position", point.position)
    _text(el, "ConnectedTo", point.connected_to)


def _signal(el, signal: SignalLine) -> None:
    _common(el, signal)
    _text(el, "SignalType", signal.signal_type.value)
    _point(el, "StartPoint", signal.start_point)
    _point(el, "EndPoint", signal.end_point)
    _text(el, "StartConnectedTo", signal.start_connected_to)
    _text(el, "EndConnectedTo", signal.end_connected_to)


def _instrument(el, instrument: Instrument) -> None:
    _common(el, instrument)
    _text(el, "InstrumentType", instrument.instrument_type.value)
    _text(el, "TagNumber", instrument.tag_number)
    _text(el, "Function", instrument.function)
    _text(el, "LoopNumber", instrument.loop_number)
    _text(el, "FailureAction", instrument.failure_action)
    _point(el, "Position", instrument.position)
    _text(el, "Rotation", instrument.rotation)
    _collection(el, "ConnectionPoints", "ConnectionPoint", instrument.connection_points, _instrument_point)
    _collection(el, "SignalLines", "SignalLine", instrument.signal_lines, _signal)


def _process_connection(el, conn: ProcessConnection) -> None:
    _common(el, conn)
    _text(el, "SourceId", conn.source_id)
    _text(el, "TargetId", conn.target_id)
    _text(el, "ConnectionType", conn.connection_type.value)


# ── Document ───────────────────────────────────────────────────

def build_tree(document: Document, config: Optional[CodecConfig] = None) -> etree._Element:
    """Build the `dexpi:PlantModel` element tree for a Document."""
    config = config or CodecConfig()
    root = etree.Element(_q("PlantModel"), nsmap=NSMAP)
    root.set(f"{{{XSI_NS}}}schemaLocation", config.schema_location)

    _text(root, "Id", document.id)
    _text(root, "Name", document.name)
    _text(root, "Description", document.description)
    _text(root, "Tag", document.tag)
    _text(root, "DocumentNumber", document.document_number)
    _text(root, "RevisionNumber", document.revision_number)
    _text(root, "PlantName", document.plant_name)
    _text(root, "ProjectName", document.project_name)

    info = etree.SubElement(root, _q("CreationInfo"))
    _text(info, "Author", document.created_by)
    _text(info, "CreationDate", document.created_date)
    _text(info, "LastModifiedBy", document.modified_by)
    _text(info, "LastModifiedDate", document.modified_date)
    if not len(info):
        root.remove(info)

    _properties(root, document.properties)

    _collection(root, "EquipmentCollection", "Equipment", document.equipment, _equipment)
    _collection(root, "PipingNetworkCollection", "PipingNetwork", document.piping_networks, _network)
    _collection(root, "InstrumentCollection", "Instrument", document.instruments, _instrument)
    _collection(root, "ProcessConnectionCollection", "ProcessConnection",
                document.process_connections, _process_connection)
    return root


def encode_to_xml(document: Document, config: Optional[CodecConfig] = None) -> str:
    """Serialize a Document to DEXPI XML text."""
    config = config or CodecConfig()
    try:
        root = build_tree(document, config)
        payload = etree.tostring(
            root,
            pretty_print=config.pretty_print,
            xml_declaration=config.xml_declaration,
            encoding=config.encoding,
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise DexpiEncodeError(f"Failed to serialize DEXPI document: {e}") from e

    logger.info(f"Encoded document {document.id}: {len(document.equipment)} equipment, "
                f"{len(document.piping_networks)} networks, {len(document.instruments)} instruments")
    return payload.decode(config.encoding)
