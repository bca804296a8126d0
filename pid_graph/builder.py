"""
P&ID Graph — Integrity Engine
===============================
Edit operations over a Document. Every operation is a pure transformation:
it returns a new Document and never touches the one it was given. Branches
an edit does not reach are shared between the old and new snapshot.

OPERATIONS:
  add_equipment / add_fitting / add_instrument   place a symbol with its ports
  connect                                        pipe between two ports
  connect_signal                                 signal line between instrument ports
  add_process_connection                         logical flow edge between entities
  move_entity                                    rigid translation, attached ends follow
  delete_entity                                  cascading delete

Ids that do not resolve make the call a no-op: the input Document comes back
unchanged (same object) and nothing is raised.

DiagramSession wraps the single document being edited with a version number
for optimistic concurrency.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Callable, Optional

from loguru import logger

from .ontology import (
    Document, Equipment, Nozzle, PipingNetwork, PipingLine, PipingFitting,
    ConnectionPoint, LineSegment, Instrument, InstrumentConnectionPoint,
    SignalLine, ProcessConnection, Point2D, ORIGIN,
    EquipmentType, FittingType, InstrumentType, NozzleType,
    InstrumentConnectionType, SignalType, ProcessConnectionType,
    create_id, create_empty_document,
)
from .symbols import equipment_template, fitting_template, instrument_template
from .index import DiagramIndex

DEFAULT_NETWORK_NAME = "Default Network"
DEFAULT_LINE_NAME = "Default Line"


def _as_point(value) -> Point2D:
    if isinstance(value, Point2D):
        return value
    if isinstance(value, dict):
        return Point2D(float(value["x"]), float(value["y"]))
    x, y = value
    return Point2D(float(x), float(y))


def _rebuild(items: list, fn: Callable) -> list:
    """Map `fn` over items; hand back the original list if nothing changed."""
    out = [fn(item) for item in items]
    if all(new is old for new, old in zip(out, items)):
        return items
    return out


_RESERVED_FIELDS = {"id", "position"}


def _check_fields(operation: str, fields: dict, *owned: str) -> None:
    """Fields the operation sets itself cannot be passed through **fields."""
    clash = sorted(set(fields) & (_RESERVED_FIELDS | set(owned)))
    if clash:
        raise TypeError(f"{operation}() sets {', '.join(clash)} itself; got it as a field")


def _default_network(networks: list[PipingNetwork]) -> tuple[list[PipingNetwork], int]:
    for i, network in enumerate(networks):
        if network.name == DEFAULT_NETWORK_NAME:
            return list(networks), i
    logger.debug(f"Creating '{DEFAULT_NETWORK_NAME}'")
    return [*networks, PipingNetwork(name=DEFAULT_NETWORK_NAME)], len(networks)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  PLACEMENT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def add_equipment(document: Document, equipment_type, position, **fields) -> tuple[Document, str]:
    """Place an equipment symbol; nozzles come from its template."""
    _check_fields("add_equipment", fields, "type", "nozzles")
    eq_type = EquipmentType.parse(equipment_type)
    template = equipment_template(eq_type)
    position = _as_point(position)
    equipment_id = create_id()

    nozzles = [
        Nozzle(name=port.name, equipment_id=equipment_id,
               position=position + port.offset,
               nozzle_type=NozzleType.parse(port.kind))
        for port in template.ports
    ]
    equipment = Equipment(id=equipment_id, type=eq_type, position=position,
                          nozzles=nozzles, **fields)
    logger.debug(f"Added {eq_type.value} {equipment_id} at ({position.x}, {position.y})")
    return replace(document, equipment=[*document.equipment, equipment]), equipment_id


def add_fitting(document: Document, fitting_type, position, **fields) -> tuple[Document, str]:
    """Place a piping fitting in the default network."""
    _check_fields("add_fitting", fields, "fitting_type", "connection_points")
    f_type = FittingType.parse(fitting_type)
    template = fitting_template(f_type)
    position = _as_point(position)
    fitting_id = create_id()

    points = [
        ConnectionPoint(name=port.name, fitting_id=fitting_id,
                        position=position + port.offset)
        for port in template.ports
    ]
    fitting = PipingFitting(id=fitting_id, fitting_type=f_type, position=position,
                            connection_points=points, **fields)

    networks, i = _default_network(document.piping_networks)
    networks[i] = replace(networks[i], fittings=[*networks[i].fittings, fitting])
    logger.debug(f"Added {f_type.value} {fitting_id} at ({position.x}, {position.y})")
    return replace(document, piping_networks=networks), fitting_id


def add_instrument(document: Document, instrument_type, position, **fields) -> tuple[Document, str]:
    _check_fields("add_instrument", fields, "instrument_type", "connection_points", "signal_lines")
    i_type = InstrumentType.parse(instrument_type)
    template = instrument_template(i_type)
    position = _as_point(position)
    instrument_id = create_id()

    points = [
        InstrumentConnectionPoint(name=port.name, instrument_id=instrument_id,
                                  position=position + port.offset,
                                  connection_type=InstrumentConnectionType.parse(port.kind))
        for port in template.ports
    ]
    instrument = Instrument(id=instrument_id, instrument_type=i_type, position=position,
                            connection_points=points, **fields)
    logger.debug(f"Added {i_type.value} {instrument_id} at ({position.x}, {position.y})")
    return replace(document, instruments=[*document.instruments, instrument]), instrument_id


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  CONNECTIONS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def connect(document: Document, port_a: str, port_b: str) -> Document:
    """
    Draw a pipe between two ports.

    The segment goes into "Default Line" of "Default Network", both created
    on first use. Calling twice with the same ports yields two segments.
    """
    if port_a == port_b:
        logger.debug(f"Ignoring self-connection on port {port_a}")
        return document
    index = DiagramIndex(document)
    start, end = index.ports.get(port_a), index.ports.get(port_b)
    if start is None or end is None:
        logger.debug(f"Ignoring connect({port_a}, {port_b}): unknown port")
        return document

    networks, ni = _default_network(document.piping_networks)
    network = networks[ni]
    lines = list(network.lines)
    li = next((k for k, line in enumerate(lines) if line.name == DEFAULT_LINE_NAME), None)
    if li is None:
        lines.append(PipingLine(name=DEFAULT_LINE_NAME))
        li = len(lines) - 1

    segment = LineSegment(start_point=start.position, end_point=end.position,
                          line_id=lines[li].id,
                          start_connected_to=port_a, end_connected_to=port_b)
    lines[li] = replace(lines[li], segments=[*lines[li].segments, segment.id])
    networks[ni] = replace(network, lines=lines,
                           line_segments=[*network.line_segments, segment])
    logger.debug(f"Connected {port_a} → {port_b} with segment {segment.id}")
    return replace(document, piping_networks=networks)


def connect_signal(document: Document, port_a: str, port_b: str,
                   signal_type=SignalType.ELECTRICAL) -> Document:
    """Signal line between two instrument ports, owned by the instrument of `port_a`."""
    if port_a == port_b:
        return document
    index = DiagramIndex(document)
    owner = index.owner_of(port_a)
    if owner not in index.instruments or index.owner_of(port_b) not in index.instruments:
        logger.debug(f"Ignoring connect_signal({port_a}, {port_b}): not instrument ports")
        return document

    signal = SignalLine(signal_type=SignalType.parse(signal_type),
                        start_point=index.ports[port_a].position,
                        end_point=index.ports[port_b].position,
                        start_connected_to=port_a, end_connected_to=port_b)
    instruments = [
        replace(inst, signal_lines=[*inst.signal_lines, signal]) if inst.id == owner else inst
        for inst in document.instruments
    ]
    logger.debug(f"Signal {signal.id} {port_a} → {port_b}")
    return replace(document, instruments=instruments)


def add_process_connection(document: Document, source_id: str, target_id: str,
                           connection_type=ProcessConnectionType.MATERIAL_FLOW
                           ) -> tuple[Document, Optional[str]]:
    index = DiagramIndex(document)
    if index.entity(source_id) is None or index.entity(target_id) is None:
        logger.debug(f"Ignoring process connection {source_id} → {target_id}: unknown entity")
        return document, None
    conn = ProcessConnection(source_id=source_id, target_id=target_id,
                             connection_type=ProcessConnectionType.parse(connection_type))
    return replace(document, process_connections=[*document.process_connections, conn]), conn.id


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  MOVE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def move_entity(document: Document, entity_id: str, new_position) -> Document:
    """
    Rigid translation of an entity, its ports and every attached line end.

    Offsets are taken against the position held before the call (origin if
    unset). Rotation is left alone.
    """
    index = DiagramIndex(document)
    entity = index.entity(entity_id)
    if entity is None:
        logger.debug(f"Ignoring move of unknown entity {entity_id}")
        return document

    new = _as_point(new_position)
    old = entity.position or ORIGIN
    port_ids = index.port_ids_of(entity_id)
    attached = index.attached_to(port_ids)

    def shift(point: Point2D) -> Point2D:
        return new + (point - old)

    if isinstance(entity, Equipment):
        moved = replace(entity, position=new, nozzles=[
            replace(n, position=shift(n.position)) for n in entity.nozzles])
    else:
        moved = replace(entity, position=new, connection_points=[
            replace(p, position=shift(p.position)) for p in entity.connection_points])

    def follow(line):
        if line.id not in attached:
            return line
        changes = {}
        if line.start_connected_to in port_ids:
            changes["start_point"] = shift(line.start_point)
        if line.end_connected_to in port_ids:
            changes["end_point"] = shift(line.end_point)
        return replace(line, **changes) if changes else line

    def swap(item):
        return moved if item.id == entity_id else item

    def update_network(network):
        fittings = _rebuild(network.fittings, swap)
        segments = _rebuild(network.line_segments, follow)
        if fittings is network.fittings and segments is network.line_segments:
            return network
        return replace(network, fittings=fittings, line_segments=segments)

    def update_instrument(inst):
        base = swap(inst)
        signals = _rebuild(base.signal_lines, follow)
        return base if signals is base.signal_lines else replace(base, signal_lines=signals)

    logger.debug(f"Moved {entity_id} ({old.x}, {old.y}) → ({new.x}, {new.y}), "
                 f"{len(attached)} attached line(s)")
    return replace(
        document,
        equipment=_rebuild(document.equipment, swap),
        piping_networks=_rebuild(document.piping_networks, update_network),
        instruments=_rebuild(document.instruments, update_instrument),
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  DELETE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _without_lines(document: Document, doomed: set[str]) -> Document:
    """Drop segments/signal lines by id, along with their line memberships."""
    if not doomed:
        return document

    def prune_line(line):
        kept = [sid for sid in line.segments if sid not in doomed]
        return line if len(kept) == len(line.segments) else replace(line, segments=kept)

    def prune_network(network):
        segments = [s for s in network.line_segments if s.id not in doomed]
        lines = _rebuild(network.lines, prune_line)
        if len(segments) == len(network.line_segments) and lines is network.lines:
            return network
        return replace(network, lines=lines, line_segments=segments)

    def prune_instrument(inst):
        signals = [s for s in inst.signal_lines if s.id not in doomed]
        return inst if len(signals) == len(inst.signal_lines) else replace(inst, signal_lines=signals)

    return replace(
        document,
        piping_networks=_rebuild(document.piping_networks, prune_network),
        instruments=_rebuild(document.instruments, prune_instrument),
    )


def _release_ports(document: Document, gone: set[str]) -> Document:
    """Clear `connected_to` on surviving ports that pointed at removed ports."""
    def release(port):
        return replace(port, connected_to=None) if port.connected_to in gone else port

    def update_fitting(fitting):
        points = _rebuild(fitting.connection_points, release)
        return fitting if points is fitting.connection_points else replace(fitting, connection_points=points)

    def update_network(network):
        fittings = _rebuild(network.fittings, update_fitting)
        return network if fittings is network.fittings else replace(network, fittings=fittings)

    def update_instrument(inst):
        points = _rebuild(inst.connection_points, release)
        return inst if points is inst.connection_points else replace(inst, connection_points=points)

    return replace(
        document,
        piping_networks=_rebuild(document.piping_networks, update_network),
        instruments=_rebuild(document.instruments, update_instrument),
    )


def delete_entity(document: Document, entity_id: str) -> Document:
    """
    Cascading delete.

    For Equipment, PipingFitting and Instrument: removes the entity, its
    ports, every segment/signal line attached to those ports (with their
    line memberships) and every process connection naming the entity.
    A LineSegment, SignalLine or ProcessConnection id removes just that item.
    """
    index = DiagramIndex(document)

    if entity_id in index.segments or entity_id in index.signal_lines:
        logger.debug(f"Deleted line {entity_id}")
        return _without_lines(document, {entity_id})

    if entity_id in index.process_connections:
        logger.debug(f"Deleted process connection {entity_id}")
        return replace(document, process_connections=[
            c for c in document.process_connections if c.id != entity_id])

    if index.entity(entity_id) is None:
        logger.debug(f"Ignoring delete of unknown id {entity_id}")
        return document

    port_ids = index.port_ids_of(entity_id)
    doomed = index.attached_to(port_ids)
    doc = _without_lines(document, doomed)

    def drop_fitting(network):
        fittings = [f for f in network.fittings if f.id != entity_id]
        return network if len(fittings) == len(network.fittings) else replace(network, fittings=fittings)

    doc = replace(
        doc,
        equipment=[e for e in doc.equipment if e.id != entity_id],
        piping_networks=_rebuild(doc.piping_networks, drop_fitting),
        instruments=[i for i in doc.instruments if i.id != entity_id],
        process_connections=[c for c in doc.process_connections
                             if entity_id not in (c.source_id, c.target_id)],
    )
    doc = _release_ports(doc, port_ids)
    logger.debug(f"Deleted {entity_id} with {len(port_ids)} port(s) and {len(doomed)} attached line(s)")
    return doc


def validate_document(document: Document) -> list[str]:
    return DiagramIndex(document).check_integrity()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  SESSION — versioned holder for the document being edited
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class VersionConflictError(RuntimeError):
    """Raised when an edit is based on a stale document version."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Document version conflict: edit based on v{expected}, current is v{actual}")
        self.expected = expected
        self.actual = actual


class DiagramSession:
    """
    Holds the one Document being edited plus a version counter.

    `apply` runs an engine operation against the current snapshot. Callers
    that read `version` before deciding on an edit pass it back as
    `expected_version`; a mismatch raises VersionConflictError and leaves the
    document untouched. The version only advances when the document changed.
    """

    def __init__(self, document: Optional[Document] = None, name: str = "New P&ID"):
        self.document = document if document is not None else create_empty_document(name)
        self.version = 0

    def apply(self, operation: Callable, *args, expected_version: Optional[int] = None, **kwargs):
        """Run `operation(document, *args, **kwargs)` and return its result."""
        if expected_version is not None and expected_version != self.version:
            raise VersionConflictError(expected_version, self.version)
        result = operation(self.document, *args, **kwargs)
        document = result[0] if isinstance(result, tuple) else result
        if document is not self.document:
            self.document = document
            self.version += 1
        return result

    def index(self) -> DiagramIndex:
        return DiagramIndex(self.document)
