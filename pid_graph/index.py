"""
P&ID Graph — Per-Document Index
=================================
Lookup tables over a single Document snapshot:

  entity id  → Equipment / PipingFitting / Instrument
  port id    → port, and port id → owning entity id
  port id    → LineSegments / SignalLines attached to it

The index is rebuilt from the snapshot it describes and never shared across
documents, so it can't drift from the data it indexes.
"""

from __future__ import annotations
import math
from collections import defaultdict
from typing import Optional

from .ontology import (
    Document, Equipment, PipingFitting, Instrument, LineSegment, SignalLine,
    ProcessConnection, PipingNetwork, Point2D, Entity, Port,
)


class DiagramIndex:
    """Id-keyed view of one Document."""

    def __init__(self, document: Document):
        self.document = document

        # Entity stores (id → entity)
        self.equipment: dict[str, Equipment] = {}
        self.fittings: dict[str, PipingFitting] = {}
        self.instruments: dict[str, Instrument] = {}
        self.segments: dict[str, LineSegment] = {}
        self.signal_lines: dict[str, SignalLine] = {}
        self.process_connections: dict[str, ProcessConnection] = {}
        self.ports: dict[str, Port] = {}

        self._port_owner: dict[str, str] = {}  # port id → entity id
        self._segment_network: dict[str, str] = {}  # segment id → network id
        self._signal_owner: dict[str, str] = {}  # signal line id → instrument id
        self._attached: dict[str, list] = defaultdict(list)  # port id → [segment/signal ids]
        self._seen: dict[str, int] = defaultdict(int)

        self._build()

    def _build(self):
        doc = self.document
        self._count(doc.id)
        for eq in doc.equipment:
            self._register_entity(eq, self.equipment, eq.nozzles)
        for network in doc.piping_networks:
            self._count(network.id)
            for line in network.lines:
                self._count(line.id)
            for fitting in network.fittings:
                self._register_entity(fitting, self.fittings, fitting.connection_points)
            for seg in network.line_segments:
                self._count(seg.id)
                self.segments[seg.id] = seg
                self._segment_network[seg.id] = network.id
                self._attach(seg.id, seg.start_connected_to, seg.end_connected_to)
        for inst in doc.instruments:
            self._register_entity(inst, self.instruments, inst.connection_points)
            for sig in inst.signal_lines:
                self._count(sig.id)
                self.signal_lines[sig.id] = sig
                self._signal_owner[sig.id] = inst.id
                self._attach(sig.id, sig.start_connected_to, sig.end_connected_to)
        for conn in doc.process_connections:
            self._count(conn.id)
            self.process_connections[conn.id] = conn

    def _register_entity(self, entity, store: dict, ports: list):
        self._count(entity.id)
        store[entity.id] = entity
        for port in ports:
            self._count(port.id)
            self.ports[port.id] = port
            self._port_owner[port.id] = entity.id

    def _attach(self, line_id: str, *port_ids):
        for port_id in port_ids:
            if port_id and line_id not in self._attached[port_id]:
                self._attached[port_id].append(line_id)

    def _count(self, element_id: str):
        self._seen[element_id] += 1

    # ── Queries ──────────────────────────────────────

    def entity(self, entity_id: str) -> Optional[Entity]:
        return (self.equipment.get(entity_id)
                or self.fittings.get(entity_id)
                or self.instruments.get(entity_id))

    def owner_of(self, port_id: str) -> Optional[str]:
        return self._port_owner.get(port_id)

    def port_ids_of(self, entity_id: str) -> set[str]:
        entity = self.entity(entity_id)
        if entity is None:
            return set()
        return {p.id for p in _ports_of(entity)}

    def attached_to(self, port_ids) -> set[str]:
        """Ids of every LineSegment and SignalLine touching any of `port_ids`."""
        found = set()
        for port_id in port_ids:
            found.update(self._attached.get(port_id, ()))
        return found

    def network_of_segment(self, segment_id: str) -> Optional[str]:
        return self._segment_network.get(segment_id)

    def instrument_of_signal(self, signal_id: str) -> Optional[str]:
        return self._signal_owner.get(signal_id)

    def ports_at(self, point: Point2D, tolerance: float = 1e-9) -> list[Port]:
        return [p for p in self.ports.values()
                if math.isclose(p.position.x, point.x, abs_tol=tolerance)
                and math.isclose(p.position.y, point.y, abs_tol=tolerance)]

    def duplicate_ids(self) -> list[str]:
        return sorted(eid for eid, n in self._seen.items() if n > 1)

    # ── Integrity ────────────────────────────────────

    def check_integrity(self, tolerance: float = 1e-9) -> list[str]:
        """Human-readable list of broken invariants; empty when the document is consistent."""
        problems = [f"duplicate id {eid}" for eid in self.duplicate_ids()]

        def check_end(kind, line_id, port_id, point):
            if not port_id:
                return
            port = self.ports.get(port_id)
            if port is None:
                problems.append(f"{kind} {line_id} references missing port {port_id}")
            elif not (math.isclose(port.position.x, point.x, abs_tol=tolerance)
                      and math.isclose(port.position.y, point.y, abs_tol=tolerance)):
                problems.append(f"{kind} {line_id} endpoint is detached from port {port_id}")

        for seg in self.segments.values():
            check_end("segment", seg.id, seg.start_connected_to, seg.start_point)
            check_end("segment", seg.id, seg.end_connected_to, seg.end_point)
        for sig in self.signal_lines.values():
            check_end("signal line", sig.id, sig.start_connected_to, sig.start_point)
            check_end("signal line", sig.id, sig.end_connected_to, sig.end_point)

        for network in self.document.piping_networks:
            problems.extend(_membership_problems(network))
        return problems

    def stats(self) -> dict:
        return {
            "equipment": len(self.equipment),
            "piping_networks": len(self.document.piping_networks),
            "piping_lines": sum(len(n.lines) for n in self.document.piping_networks),
            "fittings": len(self.fittings),
            "line_segments": len(self.segments),
            "instruments": len(self.instruments),
            "signal_lines": len(self.signal_lines),
            "process_connections": len(self.process_connections),
            "ports": len(self.ports),
            "total_entities": sum([
                len(self.equipment), len(self.fittings), len(self.instruments),
                len(self.segments), len(self.signal_lines),
                len(self.process_connections),
            ]),
        }


def _ports_of(entity) -> list:
    if isinstance(entity, Equipment):
        return entity.nozzles
    return entity.connection_points


def _membership_problems(network: PipingNetwork) -> list[str]:
    problems = []
    segment_ids = {s.id for s in network.line_segments}
    members: dict[str, int] = defaultdict(int)
    for line in network.lines:
        for seg_id in line.segments:
            members[seg_id] += 1
            if seg_id not in segment_ids:
                problems.append(f"line {line.id} lists missing segment {seg_id}")
    for seg_id in segment_ids:
        if members.get(seg_id, 0) != 1:
            problems.append(f"segment {seg_id} belongs to {members.get(seg_id, 0)} lines in network {network.id}")
    return problems
