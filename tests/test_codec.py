"""Tests for the DEXPI XML encoder and decoder."""

import math
import sys
from datetime import datetime, timezone

import pytest
from lxml import etree

from pid_graph.ontology import (
    DexpiProperty, Document, EquipmentType, FittingType, InstrumentType,
    Point2D, SignalType, create_empty_document,
)
from pid_graph.builder import (
    add_equipment, add_fitting, add_instrument, connect, connect_signal, move_entity,
)
from pid_graph.index import DiagramIndex
from dexpi_codec.config import (
    CodecConfig, DexpiDecodeError, DexpiEncodeError, DEXPI_NS, GML_NS, XSI_NS, format_number,
)
from dexpi_codec.encoder import encode_to_xml
from dexpi_codec.decoder import decode_from_xml, infer_value

from conftest import all_segments, all_signal_lines

NS = {"d": DEXPI_NS, "gml": GML_NS}


def parse(xml: str):
    return etree.fromstring(xml.encode("utf-8"))


def wrap(body: str) -> str:
    return (f'<dexpi:PlantModel xmlns:dexpi="{DEXPI_NS}" xmlns:gml="{GML_NS}">'
            f'{body}</dexpi:PlantModel>')


def pos(x, y) -> str:
    return f"<dexpi:Position><gml:Point><gml:pos>{x} {y}</gml:pos></gml:Point></dexpi:Position>"


class TestEncoder:
    """Tests for encode_to_xml."""

    def test_root_and_namespaces(self, empty_document):
        root = parse(encode_to_xml(empty_document))
        assert root.tag == f"{{{DEXPI_NS}}}PlantModel"
        assert root.nsmap["dexpi"] == DEXPI_NS
        assert root.nsmap["xsi"] == XSI_NS
        assert root.nsmap["gml"] == GML_NS
        assert root.get(f"{{{XSI_NS}}}schemaLocation").startswith(DEXPI_NS)

    def test_empty_collections_are_omitted(self, empty_document):
        root = parse(encode_to_xml(empty_document))
        for tag in ("EquipmentCollection", "PipingNetworkCollection",
                    "InstrumentCollection", "ProcessConnectionCollection", "Properties"):
            assert root.find(f"d:{tag}", NS) is None

    def test_absent_optional_fields_produce_no_element(self, empty_document):
        doc, _ = add_equipment(empty_document, EquipmentType.PUMP, (0, 0))
        equipment = parse(encode_to_xml(doc)).find("d:EquipmentCollection/d:Equipment", NS)
        for tag in ("Description", "Tag", "ServiceDescription", "EquipmentClass", "Rotation"):
            assert equipment.find(f"d:{tag}", NS) is None
        assert parse(encode_to_xml(doc)).find("d:DocumentNumber", NS) is None

    def test_geometry_encoding(self, empty_document):
        doc, _ = add_equipment(empty_document, EquipmentType.PUMP, (100, 0.1 + 0.2))
        root = parse(encode_to_xml(doc))
        (text,) = root.xpath("d:EquipmentCollection/d:Equipment/d:Position/gml:Point/gml:pos/text()",
                             namespaces=NS)
        assert text == "100 0.30000000000000004"

    def test_collection_order_and_labels(self, pump_and_vessel):
        doc, pump_id, vessel_id = pump_and_vessel
        root = parse(encode_to_xml(doc))
        ids = root.xpath("d:EquipmentCollection/d:Equipment/d:Id/text()", namespaces=NS)
        types = root.xpath("d:EquipmentCollection/d:Equipment/d:EquipmentType/text()", namespaces=NS)
        assert ids == [pump_id, vessel_id]
        assert types == ["PUMP", "VESSEL"]
        assert len(root.xpath("//*[local-name()='Nozzle']")) == 6
        assert len(root.xpath("//*[local-name()='LineSegment']")) == 1
        assert len(root.xpath("//*[local-name()='SegmentReference']")) == 1

    def test_property_values(self, empty_document):
        doc = Document(id="doc-1", properties=[
            DexpiProperty("active", True),
            DexpiProperty("count", 3),
            DexpiProperty("ratio", 2.5, unit="-", source="calc"),
            DexpiProperty("label", "abc"),
        ])
        root = parse(encode_to_xml(doc))
        values = root.xpath("d:Properties/d:Property/d:Value/text()", namespaces=NS)
        assert values == ["true", "3", "2.5", "abc"]
        assert root.xpath("d:Properties/d:Property[3]/d:Unit/text()", namespaces=NS) == ["-"]

    def test_creation_info(self):
        doc = Document(id="d", created_by="me",
                       created_date=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
        root = parse(encode_to_xml(doc))
        assert root.xpath("d:CreationInfo/d:Author/text()", namespaces=NS) == ["me"]
        assert root.xpath("d:CreationInfo/d:CreationDate/text()", namespaces=NS) == [
            "2024-05-01T12:00:00+00:00"]
        assert root.find("d:CreationInfo/d:LastModifiedBy", NS) is None

    def test_creation_info_omitted_when_empty(self):
        root = parse(encode_to_xml(Document(id="d")))
        assert root.find("d:CreationInfo", NS) is None

    def test_non_serializable_property_raises(self):
        doc = Document(id="d", properties=[DexpiProperty("bad", [1, 2])])
        with pytest.raises(DexpiEncodeError, match="Failed to serialize") as info:
            encode_to_xml(doc)
        assert isinstance(info.value.__cause__, TypeError)

    def test_compact_output(self, empty_document):
        xml = encode_to_xml(empty_document, CodecConfig(pretty_print=False, xml_declaration=False))
        assert not xml.startswith("<?xml")
        assert "\n" not in xml.strip()


class TestFormatNumber:
    @pytest.mark.parametrize("value, expected", [
        (100, "100"), (100.0, "100"), (-0.5, "-0.5"), (1e-7, "1e-07"),
        (math.inf, "Infinity"), (-math.inf, "-Infinity"), (math.nan, "NaN"),
    ])
    def test_formats(self, value, expected):
        assert format_number(value) == expected


class TestValueInference:
    @pytest.mark.parametrize("text, expected", [
        ("true", True), ("FALSE", False), ("True", True),
        ("100", 100), ("-3", -3), ("2.5", 2.5), ("1e3", 1000.0),
        ("Infinity", math.inf), ("abc", "abc"), ("12abc", "12abc"), ("NaN", "NaN"),
    ])
    def test_infer(self, text, expected):
        result = infer_value(text)
        assert result == expected
        assert type(result) is type(expected)

    @pytest.mark.skipif(not getattr(sys, "get_int_max_str_digits", lambda: 0)(),
                        reason="interpreter has no int digit limit")
    def test_overlong_integer_stays_string(self):
        text = "7" * (sys.get_int_max_str_digits() + 1)
        assert infer_value(text) == text


class TestDecoder:
    """Tests for decode_from_xml tolerant defaults and failures."""

    def test_malformed_xml_raises(self):
        with pytest.raises(DexpiDecodeError, match="XML parsing error"):
            decode_from_xml("<dexpi:PlantModel><unclosed></dexpi:PlantModel>")

    def test_empty_input_raises(self):
        with pytest.raises(DexpiDecodeError):
            decode_from_xml("")

    def test_wrong_root_raises(self):
        with pytest.raises(DexpiDecodeError, match="unexpected root"):
            decode_from_xml("<svg/>")

    def test_accepts_bytes_with_declaration(self, pump_and_vessel):
        doc, _, _ = pump_and_vessel
        xml = encode_to_xml(doc)
        assert xml.startswith("<?xml")
        assert len(decode_from_xml(xml.encode("utf-8")).equipment) == 2
        assert len(decode_from_xml(xml).equipment) == 2

    def test_missing_positions(self):
        xml = wrap(
            "<dexpi:EquipmentCollection><dexpi:Equipment><dexpi:Id>e1</dexpi:Id>"
            "<dexpi:EquipmentType>PUMP</dexpi:EquipmentType></dexpi:Equipment></dexpi:EquipmentCollection>"
            "<dexpi:PipingNetworkCollection><dexpi:PipingNetwork><dexpi:Id>n1</dexpi:Id>"
            "<dexpi:PipingFittings><dexpi:PipingFitting><dexpi:Id>f1</dexpi:Id>"
            "<dexpi:FittingType>VALVE</dexpi:FittingType></dexpi:PipingFitting></dexpi:PipingFittings>"
            "<dexpi:LineSegments><dexpi:LineSegment><dexpi:Id>s1</dexpi:Id>"
            "<dexpi:LineId>l1</dexpi:LineId></dexpi:LineSegment></dexpi:LineSegments>"
            "</dexpi:PipingNetwork></dexpi:PipingNetworkCollection>"
            "<dexpi:InstrumentCollection><dexpi:Instrument><dexpi:Id>i1</dexpi:Id>"
            "<dexpi:ConnectionPoints><dexpi:ConnectionPoint><dexpi:Id>i1-p</dexpi:Id>"
            "</dexpi:ConnectionPoint></dexpi:ConnectionPoints>"
            "<dexpi:SignalLines><dexpi:SignalLine><dexpi:Id>sig1</dexpi:Id>"
            "</dexpi:SignalLine></dexpi:SignalLines>"
            "</dexpi:Instrument></dexpi:InstrumentCollection>"
        )
        doc = decode_from_xml(xml)
        assert doc.equipment[0].position is None
        segment = doc.piping_networks[0].line_segments[0]
        assert segment.start_point == Point2D(0, 0)
        assert segment.end_point == Point2D(0, 0)
        assert segment.start_connected_to is None
        assert doc.piping_networks[0].fittings[0].position is None
        instrument = doc.instruments[0]
        assert instrument.position is None
        assert instrument.connection_points[0].position == Point2D(0, 0)
        signal = instrument.signal_lines[0]
        assert signal.start_point == Point2D(0, 0)
        assert signal.end_point == Point2D(0, 0)

    def test_unknown_enum_label_becomes_other(self):
        xml = wrap(
            "<dexpi:EquipmentCollection><dexpi:Equipment><dexpi:Id>e1</dexpi:Id>"
            "<dexpi:EquipmentType>TELEPORTER</dexpi:EquipmentType></dexpi:Equipment>"
            "</dexpi:EquipmentCollection>"
        )
        assert decode_from_xml(xml).equipment[0].type is EquipmentType.OTHER

    def test_nested_name_does_not_leak_to_parent(self):
        xml = wrap(
            "<dexpi:Id>doc</dexpi:Id>"
            "<dexpi:EquipmentCollection><dexpi:Equipment><dexpi:Id>e1</dexpi:Id>"
            "<dexpi:EquipmentType>PUMP</dexpi:EquipmentType>"
            "<dexpi:Nozzles><dexpi:Nozzle><dexpi:Id>n1</dexpi:Id><dexpi:Name>suction</dexpi:Name>"
            "</dexpi:Nozzle></dexpi:Nozzles></dexpi:Equipment></dexpi:EquipmentCollection>"
        )
        doc = decode_from_xml(xml)
        assert doc.name is None
        assert doc.equipment[0].name is None
        assert doc.equipment[0].nozzles[0].name == "suction"
        assert doc.equipment[0].nozzles[0].equipment_id == "e1"

    def test_properties_missing_value_are_skipped(self):
        xml = wrap(
            "<dexpi:Id>doc</dexpi:Id><dexpi:Properties>"
            "<dexpi:Property><dexpi:Name>a</dexpi:Name></dexpi:Property>"
            "<dexpi:Property><dexpi:Value>1</dexpi:Value></dexpi:Property>"
            "<dexpi:Property><dexpi:Name>b</dexpi:Name><dexpi:Value>2</dexpi:Value></dexpi:Property>"
            "</dexpi:Properties>"
        )
        assert decode_from_xml(xml).properties == [DexpiProperty("b", 2)]

    def test_bad_date_is_ignored(self):
        xml = wrap(
            "<dexpi:Id>doc</dexpi:Id><dexpi:CreationInfo>"
            "<dexpi:CreationDate>yesterday</dexpi:CreationDate>"
            "<dexpi:LastModifiedDate>2024-01-02T03:04:05.000Z</dexpi:LastModifiedDate>"
            "</dexpi:CreationInfo>"
        )
        doc = decode_from_xml(xml)
        assert doc.created_date is None
        assert doc.modified_date == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_document_without_id_gets_one(self):
        doc = decode_from_xml(wrap("<dexpi:Name>Legacy</dexpi:Name>"),
                              CodecConfig(missing_id_policy="reject"))
        assert doc.id
        assert doc.name == "Legacy"


class TestRoundTrip:
    def test_counts_ids_and_connectivity(self, reference_document):
        decoded = decode_from_xml(encode_to_xml(reference_document))
        assert DiagramIndex(decoded).stats() == DiagramIndex(reference_document).stats()
        assert [e.id for e in decoded.equipment] == [e.id for e in reference_document.equipment]
        assert [i.id for i in decoded.instruments] == [i.id for i in reference_document.instruments]
        assert [c.id for c in decoded.process_connections] == [
            c.id for c in reference_document.process_connections]

        def links(doc):
            return [(s.id, s.start_connected_to, s.end_connected_to) for s in all_segments(doc)]

        assert links(decoded) == links(reference_document)
        assert [(s.id, s.start_connected_to, s.end_connected_to) for s in all_signal_lines(decoded)] == [
            (s.id, s.start_connected_to, s.end_connected_to) for s in all_signal_lines(reference_document)]
        assert DiagramIndex(decoded).check_integrity() == []

    def test_reference_document_is_equal_after_round_trip(self, reference_document):
        assert decode_from_xml(encode_to_xml(reference_document)) == reference_document

    def test_moved_geometry_survives(self, pump_and_vessel):
        doc, pump_id, _ = pump_and_vessel
        doc = move_entity(doc, pump_id, (150.25, 149.75))
        decoded = decode_from_xml(encode_to_xml(doc))
        assert decoded.equipment[0].nozzles == doc.equipment[0].nozzles
        assert all_segments(decoded) == all_segments(doc)

    def test_property_value_fidelity(self, empty_document):
        doc, _ = add_equipment(empty_document, EquipmentType.VESSEL, (0, 0), properties=[
            DexpiProperty("active", True),
            DexpiProperty("tag", "100"),
        ])
        props = decode_from_xml(encode_to_xml(doc)).equipment[0].properties
        assert props[0].value is True
        # numeric-looking strings come back as numbers
        assert props[1].value == 100
        assert isinstance(props[1].value, int)

    def test_empty_string_property_is_dropped(self, empty_document):
        doc, _ = add_equipment(empty_document, EquipmentType.VESSEL, (0, 0),
                               properties=[DexpiProperty("note", "")])
        assert decode_from_xml(encode_to_xml(doc)).equipment[0].properties == []

    @pytest.mark.skipif(not getattr(sys, "get_int_max_str_digits", lambda: 0)(),
                        reason="interpreter has no int digit limit")
    def test_overlong_numeric_property_does_not_abort_decode(self, empty_document):
        digits = "1" * (sys.get_int_max_str_digits() + 1)
        doc, _ = add_equipment(empty_document, EquipmentType.VESSEL, (0, 0),
                               tag="V-1", properties=[DexpiProperty("serial", digits)])
        decoded = decode_from_xml(encode_to_xml(doc))
        assert decoded.equipment[0].tag == "V-1"
        assert decoded.equipment[0].properties[0].value == digits

    @pytest.mark.parametrize("encoding", ["ISO-8859-1", "UTF-16"])
    def test_non_utf8_encoding(self, empty_document, encoding):
        doc, _ = add_equipment(empty_document, EquipmentType.PUMP, (0, 0),
                               name="Pümpe", description="Förderpumpe Ø 50")
        xml = encode_to_xml(doc, CodecConfig(encoding=encoding))
        assert encoding in xml.splitlines()[0].upper()
        for payload in (xml, xml.encode(encoding)):
            decoded = decode_from_xml(payload)
            assert decoded.equipment[0].name == "Pümpe"
            assert decoded.equipment[0].description == "Förderpumpe Ø 50"

    def test_all_entity_kinds(self, empty_document):
        doc, _ = add_fitting(empty_document, FittingType.CONTROL_VALVE, (10, 10), material="SS316")
        doc, ft = add_instrument(doc, InstrumentType.TRANSMITTER, (0, 50), tag_number="FT-1")
        doc, fic = add_instrument(doc, InstrumentType.CONTROLLER, (60, 50), failure_action="FO")
        doc = connect_signal(doc, doc.instruments[0].connection_points[1].id,
                             doc.instruments[1].connection_points[0].id, SignalType.DIGITAL_DATA)
        decoded = decode_from_xml(encode_to_xml(doc))
        assert decoded.piping_networks == doc.piping_networks
        assert decoded.instruments == doc.instruments


class TestMissingIdPolicy:
    """Elements without an Id: repaired by position, or rejected."""

    XML = wrap(
        "<dexpi:Id>doc</dexpi:Id>"
        "<dexpi:EquipmentCollection>"
        "<dexpi:Equipment><dexpi:Id>pump</dexpi:Id><dexpi:EquipmentType>PUMP</dexpi:EquipmentType>"
        + pos(100, 100) +
        "<dexpi:Nozzles>"
        "<dexpi:Nozzle><dexpi:Id>suction</dexpi:Id>" + pos(75, 100) + "</dexpi:Nozzle>"
        # discharge nozzle lost its Id
        "<dexpi:Nozzle><dexpi:Name>discharge</dexpi:Name>" + pos(125, 100) + "</dexpi:Nozzle>"
        "</dexpi:Nozzles></dexpi:Equipment>"
        "<dexpi:Equipment><dexpi:Id>vessel</dexpi:Id><dexpi:EquipmentType>VESSEL</dexpi:EquipmentType>"
        + pos(300, 100) +
        "<dexpi:Nozzles><dexpi:Nozzle><dexpi:Id>top</dexpi:Id>" + pos(300, 50) + "</dexpi:Nozzle>"
        "</dexpi:Nozzles></dexpi:Equipment>"
        "</dexpi:EquipmentCollection>"
        "<dexpi:PipingNetworkCollection><dexpi:PipingNetwork><dexpi:Id>net</dexpi:Id>"
        "<dexpi:PipingLines><dexpi:PipingLine><dexpi:Id>line</dexpi:Id>"
        "<dexpi:SegmentReferences><dexpi:SegmentReference>seg-old</dexpi:SegmentReference>"
        "</dexpi:SegmentReferences></dexpi:PipingLine></dexpi:PipingLines>"
        "<dexpi:LineSegments>"
        # segment lost its Id as well
        "<dexpi:LineSegment><dexpi:LineId>line</dexpi:LineId>"
        "<dexpi:StartPoint><gml:Point><gml:pos>125 100</gml:pos></gml:Point></dexpi:StartPoint>"
        "<dexpi:EndPoint><gml:Point><gml:pos>300 50</gml:pos></gml:Point></dexpi:EndPoint>"
        "<dexpi:StartConnectedTo>discharge-old</dexpi:StartConnectedTo>"
        "<dexpi:EndConnectedTo>top</dexpi:EndConnectedTo>"
        "</dexpi:LineSegment>"
        "<dexpi:LineSegment><dexpi:Id>floating</dexpi:Id><dexpi:LineId>line</dexpi:LineId>"
        "<dexpi:StartPoint><gml:Point><gml:pos>0 0</gml:pos></gml:Point></dexpi:StartPoint>"
        "<dexpi:EndPoint><gml:Point><gml:pos>1 1</gml:pos></gml:Point></dexpi:EndPoint>"
        "<dexpi:StartConnectedTo>gone</dexpi:StartConnectedTo>"
        "</dexpi:LineSegment>"
        "</dexpi:LineSegments></dexpi:PipingNetwork></dexpi:PipingNetworkCollection>"
    )

    def test_repair_reanchors_by_position(self):
        doc = decode_from_xml(self.XML)
        discharge = doc.equipment[0].nozzles[1]
        assert discharge.id.startswith("dexpi-")
        network = doc.piping_networks[0]
        repaired, floating = network.line_segments
        assert repaired.id.startswith("dexpi-")
        assert repaired.start_connected_to == discharge.id
        assert repaired.end_connected_to == "top"
        assert floating.start_connected_to is None
        # dangling reference dropped, both segments listed on their line
        assert network.lines[0].segments == [repaired.id, "floating"]
        assert DiagramIndex(doc).check_integrity() == []

    def test_reject_policy(self):
        with pytest.raises(DexpiDecodeError, match="Nozzle element has no Id"):
            decode_from_xml(self.XML, CodecConfig(missing_id_policy="reject"))

    def test_unknown_policy_is_a_config_error(self):
        with pytest.raises(ValueError):
            CodecConfig(missing_id_policy="guess")

    def test_unresolvable_signal_line_is_dropped(self):
        xml = wrap(
            "<dexpi:Id>doc</dexpi:Id><dexpi:InstrumentCollection>"
            "<dexpi:Instrument><dexpi:Id>i1</dexpi:Id><dexpi:InstrumentType>TRANSMITTER</dexpi:InstrumentType>"
            "<dexpi:ConnectionPoints><dexpi:ConnectionPoint><dexpi:ConnectionType>SIGNAL_OUTPUT"
            "</dexpi:ConnectionType>" + pos(15, 0) + "</dexpi:ConnectionPoint></dexpi:ConnectionPoints>"
            "<dexpi:SignalLines><dexpi:SignalLine><dexpi:Id>sig</dexpi:Id>"
            "<dexpi:SignalType>ELECTRICAL</dexpi:SignalType>"
            "<dexpi:StartPoint><gml:Point><gml:pos>15 0</gml:pos></gml:Point></dexpi:StartPoint>"
            "<dexpi:EndPoint><gml:Point><gml:pos>99 99</gml:pos></gml:Point></dexpi:EndPoint>"
            "<dexpi:StartConnectedTo>lost</dexpi:StartConnectedTo>"
            "<dexpi:EndConnectedTo>elsewhere</dexpi:EndConnectedTo>"
            "</dexpi:SignalLine></dexpi:SignalLines></dexpi:Instrument>"
            "</dexpi:InstrumentCollection>"
        )
        doc = decode_from_xml(xml)
        assert doc.instruments[0].signal_lines == []
