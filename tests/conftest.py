"""Shared fixtures for the P&ID graph and DEXPI codec tests."""

import pytest

from pid_graph.ontology import EquipmentType, create_empty_document
from pid_graph.builder import add_equipment, connect
from pid_graph.reference import build_reference_diagram


@pytest.fixture
def empty_document():
    return create_empty_document("P1")


@pytest.fixture
def pump_and_vessel(empty_document):
    """PUMP at (100,100) piped from its discharge to the VESSEL top at (300,100)."""
    doc, pump_id = add_equipment(empty_document, EquipmentType.PUMP, (100, 100))
    doc, vessel_id = add_equipment(doc, EquipmentType.VESSEL, (300, 100))
    pump, vessel = doc.equipment
    doc = connect(doc, pump.nozzles[1].id, vessel.nozzles[0].id)
    return doc, pump_id, vessel_id


@pytest.fixture
def reference_document():
    return build_reference_diagram()


def all_segments(document):
    return [seg for network in document.piping_networks for seg in network.line_segments]


def all_signal_lines(document):
    return [sig for inst in document.instruments for sig in inst.signal_lines]
