"""Tests for the command-line runner."""

from lxml import etree

import main
from dexpi_codec.decoder import decode_from_xml


class TestCli:
    def test_demo_writes_xml_and_svg(self, tmp_path):
        assert main.main(["demo", "--output", str(tmp_path), "--name", "plant"]) == 0
        xml_file = tmp_path / "plant.dexpi.xml"
        svg_file = tmp_path / "plant.svg"
        assert xml_file.exists()
        assert svg_file.exists()
        assert len(decode_from_xml(xml_file.read_bytes()).equipment) == 4
        assert etree.parse(str(svg_file)).getroot().get("viewBox") == "0 0 1000 800"

    def test_convert_roundtrip_and_stats(self, tmp_path):
        main.main(["demo", "--output", str(tmp_path), "--name", "plant"])
        source = tmp_path / "plant.dexpi.xml"
        target = tmp_path / "out.svg"
        assert main.main(["--width", "640", "convert", str(source), "--svg", str(target)]) == 0
        assert etree.parse(str(target)).getroot().get("width") == "640"
        assert main.main(["roundtrip", str(source)]) == 0
        assert main.main(["stats", str(source)]) == 0

    def test_malformed_input_returns_error_status(self, tmp_path):
        bad = tmp_path / "bad.xml"
        bad.write_text("<not-closed>", encoding="utf-8")
        assert main.main(["stats", str(bad)]) == 2

    def test_missing_file_returns_error_status(self, tmp_path):
        assert main.main(["stats", str(tmp_path / "nope.xml")]) == 2
