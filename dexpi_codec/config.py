"""
DEXPI Codec — Configuration, Namespaces & Errors
==================================================
Shared settings for the XML codec and the SVG exporter.
"""

from __future__ import annotations
import math
from dataclasses import dataclass


# ── Namespaces ─────────────────────────────────────────────────

DEXPI_NS = "http://www.dexpi.org/proteus/1.0"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
GML_NS = "http://www.opengis.net/gml/3.2"
SVG_NS = "http://www.w3.org/2000/svg"

NSMAP = {"dexpi": DEXPI_NS, "xsi": XSI_NS, "gml": GML_NS}

SCHEMA_LOCATION = f"{DEXPI_NS} {DEXPI_NS}/DEXPI.xsd"

MISSING_ID_REPAIR = "repair"
MISSING_ID_REJECT = "reject"


# ── Errors ─────────────────────────────────────────────────────

class DexpiCodecError(Exception):
    """Base class for codec failures."""


class DexpiDecodeError(DexpiCodecError):
    """Input could not be turned into a Document (malformed XML, rejected content)."""


class DexpiEncodeError(DexpiCodecError):
    """Document could not be serialized; the cause is chained."""


# ── Configuration ──────────────────────────────────────────────

@dataclass
class CodecConfig:
    """Controls XML encoding and decoding behaviour."""
    pretty_print: bool = True
    xml_declaration: bool = True
    encoding: str = "UTF-8"
    schema_location: str = SCHEMA_LOCATION
    missing_id_policy: str = MISSING_ID_REPAIR  # repair | reject
    position_tolerance: float = 1e-9  # port matching when repairing references

    def __post_init__(self):
        if self.missing_id_policy not in (MISSING_ID_REPAIR, MISSING_ID_REJECT):
            raise ValueError(f"Unknown missing_id_policy {self.missing_id_policy!r}")


@dataclass
class SvgExportConfig:
    """Canvas and stroke defaults for the static SVG export."""
    width: int = 1000
    height: int = 800
    stroke_color: str = "#000000"
    fill_color: str = "#FFFFFF"
    stroke_width: float = 2
    signal_stroke_color: str = "#0000FF"
    signal_stroke_width: float = 1
    signal_dasharray: str = "5,3"
    font_family: str = "Arial"
    fitting_port_color: str = "#00FF00"
    instrument_port_color: str = "#0000FF"
    pretty_print: bool = True


def format_number(value) -> str:
    """Plain numeric text: integral floats lose their '.0', others keep full precision."""
    if isinstance(value, bool):
        raise TypeError(f"Expected a number, got bool {value!r}")
    if isinstance(value, int):
        return str(value)
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)
