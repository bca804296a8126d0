"""
DEXPI Codec — Decoder
=======================
DEXPI Proteus XML → Document.

Tolerant reader:
  - absent optional elements stay None
  - LineSegment / SignalLine / port positions default to the origin
  - unknown enum labels map to OTHER
  - Property values are type-inferred: true/false → bool, numeric → int/float,
    anything else stays a string ("100" comes back as the number 100)

Elements with no Id get a fresh one. Under the default "repair" policy the
decoder then re-anchors references that pointed at the lost id by matching
endpoint coordinates to a unique port. Under "reject" a missing Id is an error.

Malformed XML aborts the whole decode with DexpiDecodeError.
"""

from __future__ import annotations
import re
from datetime import datetime
from typing import Optional, Union

from loguru import logger
from lxml import etree

from pid_graph.ontology import (
    Document, DexpiProperty, Equipment, Nozzle, PipingNetwork, PipingLine,
    PipingFitting, ConnectionPoint, LineSegment, Instrument,
    InstrumentConnectionPoint, SignalLine, ProcessConnection, Point2D, ORIGIN,
    EquipmentType, NozzleType, FittingType, InstrumentType,
    InstrumentConnectionType, SignalType, ProcessConnectionType, create_id,
)
from pid_graph.index import DiagramIndex
from .config import (
    CodecConfig, DexpiDecodeError, DEXPI_NS, GML_NS, MISSING_ID_REJECT,
)

_INT_RE = re.compile(r"^\s*[+-]?\d+\s*$")
_FLOAT_RE = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?\s*$|^\s*[+-]?Infinity\s*$")
_DECLARATION_RE = re.compile(r"^\ufeff?\s*<\?xml[^>]*\?>")


def _q(tag: str) -> str:
    return f"{{{DEXPI_NS}}}{tag}"


def infer_value(text: str) -> Union[str, int, float, bool]:
    """Type a Property value by trial: boolean, then number, then string."""
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_RE.match(text):
        try:
            return int(text)
        except ValueError:
            # past the interpreter's int digit limit
            return text
    if _FLOAT_RE.match(text):
        return float(text)
    return text


class _Reader:
    """Per-call decoding state."""

    def __init__(self, config: CodecConfig):
        self.config = config
        self.generated_ids: list[str] = []

    # ── Primitive lookups (direct children only) ─────

    def text(self, el, tag: str) -> Optional[str]:
        child = el.find(_q(tag))
        if child is None or not child.text:
            return None
        return child.text

    def number(self, el, tag: str) -> Optional[float]:
        raw = self.text(el, tag)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"Ignoring non-numeric {tag} {raw!r}")
            return None

    def date(self, el, tag: str) -> Optional[datetime]:
        raw = self.text(el, tag)
        if raw is None:
            return None
        raw = raw.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning(f"Ignoring unparseable {tag} {raw!r}")
            return None

    def point(self, el, tag: str) -> Optional[Point2D]:
        holder = el.find(_q(tag))
        if holder is None:
            return None
        pos = holder.find(f"{{{GML_NS}}}Point/{{{GML_NS}}}pos")
        if pos is None or not pos.text:
            return None
        parts = pos.text.split()
        try:
            return Point2D(float(parts[0]), float(parts[1]))
        except (IndexError, ValueError):
            logger.warning(f"Ignoring malformed {tag} coordinates {pos.text!r}")
            return None

    def element_id(self, el, kind: str) -> str:
        value = self.text(el, "Id")
        if value is not None:
            return value
        if self.config.missing_id_policy == MISSING_ID_REJECT:
            raise DexpiDecodeError(f"{kind} element has no Id")
        value = create_id()
        self.generated_ids.append(value)
        logger.warning(f"{kind} element has no Id, assigned {value}")
        return value

    def properties(self, el) -> list[DexpiProperty]:
        container = el.find(_q("Properties"))
        if container is None:
            return []
        props = []
        for prop_el in container.findall(_q("Property")):
            name, value = self.text(prop_el, "Name"), self.text(prop_el, "Value")
            if name is None or value is None:
                continue
            props.append(DexpiProperty(
                name=name, value=infer_value(value),
                unit=self.text(prop_el, "Unit"), source=self.text(prop_el, "Source"),
            ))
        return props

    def common(self, el, kind: str) -> dict:
        return dict(
            id=self.element_id(el, kind),
            name=self.text(el, "Name"),
            description=self.text(el, "Description"),
            tag=self.text(el, "Tag"),
            properties=self.properties(el),
        )

    def children(self, el, container: str, tag: str) -> list:
        holder = el.find(_q(container))
        return [] if holder is None else holder.findall(_q(tag))

    # ── Equipment ────────────────────────────────────

    def equipment(self, el) -> Equipment:
        fields = self.common(el, "Equipment")
        return Equipment(
            **fields,
            type=EquipmentType.parse(self.text(el, "EquipmentType")),
            service_description=self.text(el, "ServiceDescription"),
            equipment_class=self.text(el, "EquipmentClass"),
            position=self.point(el, "Position"),
            rotation=self.number(el, "Rotation"),
            nozzles=[self.nozzle(n, fields["id"]) for n in self.children(el, "Nozzles", "Nozzle")],
        )

    def nozzle(self, el, equipment_id: str) -> Nozzle:
        return Nozzle(
            **self.common(el, "Nozzle"),
            equipment_id=equipment_id,
            nozzle_type=NozzleType.parse(self.text(el, "NozzleType")),
            nominal_diameter=self.text(el, "NominalDiameter"),
            nominal_pressure=self.text(el, "NominalPressure"),
            position=self.point(el, "Position") or ORIGIN,
            orientation=self.number(el, "Orientation"),
        )

    # ── Piping ───────────────────────────────────────

    def network(self, el) -> PipingNetwork:
        return PipingNetwork(
            **self.common(el, "PipingNetwork"),
            lines=[self.line(x) for x in self.children(el, "PipingLines", "PipingLine")],
            fittings=[self.fitting(x) for x in self.children(el, "PipingFittings", "PipingFitting")],
            line_segments=[self.segment(x) for x in self.children(el, "LineSegments", "LineSegment")],
        )

    def line(self, el) -> PipingLine:
        return PipingLine(
            **self.common(el, "PipingLine"),
            line_number=self.text(el, "LineNumber"),
            service=self.text(el, "Service"),
            fluid_code=self.text(el, "FluidCode"),
            nominal_diameter=self.text(el, "NominalDiameter"),
            nominal_pressure=self.text(el, "NominalPressure"),
            material=self.text(el, "Material"),
            insulation=self.text(el, "Insulation"),
            segments=[ref.text for ref in self.children(el, "SegmentReferences", "SegmentReference")
                      if ref.text],
        )

    def fitting(self, el) -> PipingFitting:
        fields = self.common(el, "PipingFitting")
        return PipingFitting(
            **fields,
            fitting_type=FittingType.parse(self.text(el, "FittingType")),
            nominal_diameter=self.text(el, "NominalDiameter"),
            nominal_pressure=self.text(el, "NominalPressure"),
            material=self.text(el, "Material"),
            position=self.point(el, "Position"),
            rotation=self.number(el, "Rotation"),
            connection_points=[
                ConnectionPoint(
                    **self.common(cp, "ConnectionPoint"),
                    fitting_id=fields["id"],
                    position=self.point(cp, "Position") or ORIGIN,
                    orientation=self.number(cp, "Orientation"),
                    connected_to=self.text(cp, "ConnectedTo"),
                )
                for cp in self.children(el, "ConnectionPoints", "ConnectionPoint")
            ],
        )

    def segment(self, el) -> LineSegment:
        return LineSegment(
            **self.common(el, "LineSegment"),
            line_id=self.text(el, "LineId") or "",
            start_point=self.point(el, "StartPoint") or ORIGIN,
            end_point=self.point(el, "EndPoint") or ORIGIN,
            start_connected_to=self.text(el, "StartConnectedTo"),
            end_connected_to=self.text(el, "EndConnectedTo"),
        )

    # ── Instrumentation ──────────────────────────────

    def instrument(self, el) -> Instrument:
        fields = self.common(el, "Instrument")
        return Instrument(
            **fields,
            instrument_type=InstrumentType.parse(self.text(el, "InstrumentType")),
            tag_number=self.text(el, "TagNumber"),
            function=self.text(el, "Function"),
            loop_number=self.text(el, "LoopNumber"),
            failure_action=self.text(el, "FailureAction"),
            position=self.point(el, "Position"),
            rotation=self.number(el, "Rotation"),
            connection_points=[
                InstrumentConnectionPoint(
                    **self.common(cp, "ConnectionPoint"),
                    instrument_id=fields["id"],
                    connection_type=InstrumentConnectionType.parse(self.text(cp, "ConnectionType")),
                    position=self.point(cp, "Position") or ORIGIN,
                    connected_to=self.text(cp, "ConnectedTo"),
                )
                for cp in self.children(el, "ConnectionPoints", "ConnectionPoint")
            ],
            signal_lines=[self.signal(s) for s in self.children(el, "SignalLines", "SignalLine")],
        )

    def signal(self, el) -> SignalLine:
        return SignalLine(
            **self.common(el, "SignalLine"),
            signal_type=SignalType.parse(self.text(el, "SignalType")),
            start_point=self.point(el, "StartPoint") or ORIGIN,
            end_point=self.point(el, "EndPoint") or ORIGIN,
            start_connected_to=self.text(el, "StartConnectedTo") or "",
            end_connected_to=self.text(el, "EndConnectedTo") or "",
        )

    def process_connection(self, el) -> ProcessConnection:
        return ProcessConnection(
            **self.common(el, "ProcessConnection"),
            source_id=self.text(el, "SourceId") or "",
            target_id=self.text(el, "TargetId") or "",
            connection_type=ProcessConnectionType.parse(self.text(el, "ConnectionType")),
        )

    # ── Document ─────────────────────────────────────

    def document(self, root) -> Document:
        doc_id = self.text(root, "Id")
        if doc_id is None:
            # older files carry no document Id; nothing references it
            doc_id = create_id()
        info = root.find(_q("CreationInfo"))
        if info is None:
            info = etree.Element(_q("CreationInfo"))
        return Document(
            id=doc_id,
            name=self.text(root, "Name"),
            description=self.text(root, "Description"),
            tag=self.text(root, "Tag"),
            properties=self.properties(root),
            document_number=self.text(root, "DocumentNumber"),
            revision_number=self.text(root, "RevisionNumber"),
            plant_name=self.text(root, "PlantName"),
            project_name=self.text(root, "ProjectName"),
            created_by=self.text(info, "Author"),
            created_date=self.date(info, "CreationDate"),
            modified_by=self.text(info, "LastModifiedBy"),
            modified_date=self.date(info, "LastModifiedDate"),
            equipment=[self.equipment(e) for e in self.children(root, "EquipmentCollection", "Equipment")],
            piping_networks=[self.network(n) for n in
                             self.children(root, "PipingNetworkCollection", "PipingNetwork")],
            instruments=[self.instrument(i) for i in
                         self.children(root, "InstrumentCollection", "Instrument")],
            process_connections=[self.process_connection(c) for c in
                                 self.children(root, "ProcessConnectionCollection", "ProcessConnection")],
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  REFERENCE REPAIR — after ids had to be generated
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _repair_references(document: Document, tolerance: float) -> None:
    """
    Re-anchor references that no longer resolve.

    Works in place on a freshly decoded Document. A dangling port reference
    is moved to the single port sitting exactly at the referencing endpoint;
    with zero or several candidates it is cleared (LineSegment) or the whole
    SignalLine is dropped, since signal lines must be connected at both ends.
    """
    index = DiagramIndex(document)

    def resolve(ref: Optional[str], point: Point2D) -> Optional[str]:
        if not ref or ref in index.ports:
            return ref
        matches = index.ports_at(point, tolerance)
        if len(matches) == 1:
            logger.warning(f"Re-anchored reference {ref} → {matches[0].id} by position")
            return matches[0].id
        logger.warning(f"Dropping unresolved reference {ref} ({len(matches)} candidate ports)")
        return None

    for network in document.piping_networks:
        for seg in network.line_segments:
            seg.start_connected_to = resolve(seg.start_connected_to, seg.start_point)
            seg.end_connected_to = resolve(seg.end_connected_to, seg.end_point)
        for fitting in network.fittings:
            for cp in fitting.connection_points:
                cp.connected_to = resolve(cp.connected_to, cp.position)

        segment_ids = {s.id for s in network.line_segments}
        listed = set()
        for line in network.lines:
            kept = [sid for sid in line.segments if sid in segment_ids]
            if len(kept) != len(line.segments):
                logger.warning(f"Line {line.id}: dropped {len(line.segments) - len(kept)} dangling segment reference(s)")
            line.segments = kept
            listed.update(kept)
        lines_by_id = {line.id: line for line in network.lines}
        for seg in network.line_segments:
            if seg.id not in listed and seg.line_id in lines_by_id:
                lines_by_id[seg.line_id].segments.append(seg.id)
                logger.warning(f"Re-attached segment {seg.id} to line {seg.line_id}")

    for inst in document.instruments:
        for cp in inst.connection_points:
            cp.connected_to = resolve(cp.connected_to, cp.position)
        kept = []
        for sig in inst.signal_lines:
            start = resolve(sig.start_connected_to, sig.start_point)
            end = resolve(sig.end_connected_to, sig.end_point)
            if start and end:
                sig.start_connected_to, sig.end_connected_to = start, end
                kept.append(sig)
            else:
                logger.warning(f"Dropped signal line {sig.id}: endpoint not attached to a port")
        inst.signal_lines = kept


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  ENTRY POINT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def decode_from_xml(text: Union[str, bytes], config: Optional[CodecConfig] = None) -> Document:
    """Parse DEXPI XML text into a Document, or raise DexpiDecodeError."""
    config = config or CodecConfig()
    if isinstance(text, str):
        # already decoded: the declared encoding no longer applies
        data = _DECLARATION_RE.sub("", text, count=1).encode("utf-8")
    else:
        data = text
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)

    try:
        root = etree.fromstring(data, parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        raise DexpiDecodeError(f"XML parsing error: {e}") from e

    if root.tag != _q("PlantModel"):
        raise DexpiDecodeError(f"Failed to parse DEXPI XML: unexpected root element {root.tag}")

    reader = _Reader(config)
    try:
        document = reader.document(root)
    except DexpiDecodeError:
        raise
    except (ValueError, TypeError) as e:
        raise DexpiDecodeError(f"Failed to parse DEXPI XML: {e}") from e

    if reader.generated_ids:
        logger.warning(f"Generated {len(reader.generated_ids)} missing id(s), repairing references")
        _repair_references(document, config.position_tolerance)

    logger.info(f"Decoded document {document.id}: {len(document.equipment)} equipment, "
                f"{len(document.piping_networks)} networks, {len(document.instruments)} instruments")
    return document
