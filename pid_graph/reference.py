"""
P&ID Graph — Reference Diagram
================================
Builds a small but complete feed-preheat train through the public engine
operations only. Used by the CLI demo and as a realistic test fixture.

  T-101 ──► P-101 ──► FV-101 ──► E-101 ──► C-101
                        ▲
            FT-101 ─► FIC-101 (flow loop 101)
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional

from loguru import logger

from .ontology import (
    Document, DexpiProperty, EquipmentType, FittingType, InstrumentType,
    SignalType, ProcessConnectionType, create_empty_document,
)
from .builder import (
    DiagramSession, add_equipment, add_fitting, add_instrument, connect,
    connect_signal, add_process_connection,
)
from .index import DiagramIndex


class ReferenceDiagramBuilder:
    """Populates a DiagramSession with the reference preheat train."""

    def __init__(self, session: Optional[DiagramSession] = None):
        self.session = session or DiagramSession(create_empty_document("Feed Preheat Train"))
        self.ids: dict[str, str] = {}  # tag → entity id

    def build(self) -> Document:
        logger.info("Building reference P&ID...")
        self._set_header()
        self._build_equipment()
        self._build_fittings()
        self._build_instruments()
        self._build_piping()
        self._build_signals()
        self._build_process_connections()

        stats = self.session.index().stats()
        logger.info(f"Reference P&ID built: {stats['total_entities']} entities, {stats['ports']} ports")
        return self.session.document

    def _port(self, tag: str, port_name: str) -> str:
        index = DiagramIndex(self.session.document)
        entity = index.entity(self.ids[tag])
        ports = entity.nozzles if hasattr(entity, "nozzles") else entity.connection_points
        return next(p.id for p in ports if p.name == port_name)

    # ── Header ──────────────────────────────────────

    def _set_header(self):
        self.session.apply(lambda doc: replace(
            doc,
            description="Crude feed from storage, pumped and preheated into the stabiliser",
            document_number="PID-100-001",
            revision_number="B",
            plant_name="Gas Processing Plant",
            project_name="Area 100 Revamp",
            created_by="process.engineering",
        ))

    # ── Equipment ───────────────────────────────────

    def _build_equipment(self):
        definitions = [
            ("T-101", EquipmentType.TANK, (100, 300), "Crude Feed Tank",
             [DexpiProperty("DesignPressure", 0.5, "barg"), DexpiProperty("Volume", 250, "m3")]),
            ("P-101", EquipmentType.PUMP, (250, 420), "Feed Pump",
             [DexpiProperty("RatedFlow", 120.5, "m3/h"), DexpiProperty("Spared", True)]),
            ("E-101", EquipmentType.HEAT_EXCHANGER, (550, 420), "Feed/Bottoms Exchanger",
             [DexpiProperty("Duty", 2.4, "MW")]),
            ("C-101", EquipmentType.COLUMN, (800, 300), "Stabiliser Column",
             [DexpiProperty("Trays", 24)]),
        ]
        for tag, eq_type, position, service, props in definitions:
            self.ids[tag] = self.session.apply(
                add_equipment, eq_type, position,
                tag=tag, name=service, service_description=service, properties=props,
            )[1]

    def _build_fittings(self):
        self.ids["FV-101"] = self.session.apply(
            add_fitting, FittingType.CONTROL_VALVE, (400, 420),
            tag="FV-101", nominal_diameter="DN100", nominal_pressure="PN40", material="CS",
        )[1]

    def _build_instruments(self):
        self.ids["FT-101"] = self.session.apply(
            add_instrument, InstrumentType.TRANSMITTER, (330, 340),
            tag_number="FT-101", function="Flow transmitter", loop_number="101",
        )[1]
        self.ids["FIC-101"] = self.session.apply(
            add_instrument, InstrumentType.CONTROLLER, (400, 300),
            tag_number="FIC-101", function="Flow controller", loop_number="101",
            failure_action="FC",
        )[1]

    # ── Connections ─────────────────────────────────

    def _build_piping(self):
        runs = [
            (("T-101", "bottom"), ("P-101", "suction")),
            (("P-101", "discharge"), ("FV-101", "inlet")),
            (("FV-101", "outlet"), ("E-101", "shell in")),
            (("E-101", "shell out"), ("C-101", "feed lower")),
        ]
        for (src_tag, src_port), (dst_tag, dst_port) in runs:
            self.session.apply(connect, self._port(src_tag, src_port), self._port(dst_tag, dst_port))

    def _build_signals(self):
        self.session.apply(connect_signal, self._port("FT-101", "signal"),
                           self._port("FIC-101", "input"), SignalType.ELECTRICAL)

    def _build_process_connections(self):
        for src, dst in [("T-101", "P-101"), ("P-101", "E-101"), ("E-101", "C-101")]:
            self.session.apply(add_process_connection, self.ids[src], self.ids[dst],
                               ProcessConnectionType.MATERIAL_FLOW)
        self.session.apply(add_process_connection, self.ids["FIC-101"], self.ids["FV-101"],
                           ProcessConnectionType.INFORMATION_FLOW)


def build_reference_diagram() -> Document:
    return ReferenceDiagramBuilder().build()
