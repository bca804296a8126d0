"""
DEXPI Codec — Static SVG Export
=================================
One-way Document → SVG scene for viewing and printing.

Z-ORDER (bottom to top):
  piping networks (segments, then fittings) → equipment → instruments → signal lines

Symbols are drawn from pid_graph.symbols, so a type without a dedicated
template gets the same default variant it got when it was placed. The canvas
size is fixed by SvgExportConfig rather than fitted to the content.
"""

from __future__ import annotations
from typing import Optional

from loguru import logger
from lxml import etree

from pid_graph.ontology import (
    Document, Equipment, PipingFitting, Instrument, LineSegment, SignalLine, GraphicStyle, ORIGIN,
)
from pid_graph.symbols import (
    SymbolTemplate, equipment_template, fitting_template, instrument_template,
)
from .config import SvgExportConfig, DexpiEncodeError, SVG_NS, format_number


def _svg(parent, tag: str, **attrs):
    """SubElement with attribute names given python-style (stroke_width → stroke-width)."""
    el = etree.SubElement(parent, f"{{{SVG_NS}}}{tag}")
    for key, value in attrs.items():
        if value is None:
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = format_number(value)
        el.set(key.replace("_", "-"), str(value))
    return el


def _first(value, default):
    return default if value is None else value


class SvgExporter:
    """Renders a Document into an SVG element tree."""

    def __init__(self, config: Optional[SvgExportConfig] = None):
        self.config = config or SvgExportConfig()

    # ── Symbols ──────────────────────────────────────

    def _draw_template(self, group, template: SymbolTemplate, style: Optional[GraphicStyle]):
        cfg = self.config
        style = style or GraphicStyle()
        stroke = style.stroke_color or cfg.stroke_color
        stroke_width = _first(style.stroke_width, cfg.stroke_width)
        fill = style.fill_color or cfg.fill_color
        for shape in template.shapes:
            el = _svg(group, shape.element, **dict(shape.geometry))
            el.set("stroke", stroke)
            # thin detail strokes (exchanger tubes, actuator) keep their own width
            el.set("stroke-width", format_number(_first(shape.stroke_width, stroke_width)))
            el.set("fill", fill if shape.filled else "none")
        if style.opacity is not None:
            group.set("opacity", format_number(style.opacity))

    def _entity_group(self, parent, prefix: str, kind_attr: str, entity, kind: str):
        position = entity.position or ORIGIN
        rotation = entity.rotation or 0
        group = _svg(parent, "g", id=f"{prefix}-{entity.id}", **{"class": f"{prefix} {kind.lower()}"})
        group.set("data-dexpi-id", entity.id)
        group.set(kind_attr, kind)
        group.set("transform", f"translate({format_number(position.x)},{format_number(position.y)}) "
                               f"rotate({format_number(rotation)})")
        return group, position

    def _label(self, group, text: str, template: SymbolTemplate):
        label = _svg(group, "text", x=0, y=template.label_y, text_anchor="middle",
                     font_family=self.config.font_family, font_size=template.label_size)
        label.text = text

    def equipment(self, parent, equipment: Equipment):
        template = equipment_template(equipment.type)
        group, position = self._entity_group(parent, "equipment", "data-equipment-type",
                                             equipment, equipment.type.value)
        if equipment.tag:
            group.set("data-tag", equipment.tag)
        self._draw_template(group, template, equipment.style)
        if equipment.tag:
            self._label(group, equipment.tag, template)
        for nozzle in equipment.nozzles:
            holder = _svg(group, "g", id=f"nozzle-{nozzle.id}", **{"class": "nozzle"})
            holder.set("data-dexpi-id", nozzle.id)
            _svg(holder, "circle",
                 cx=nozzle.position.x - position.x, cy=nozzle.position.y - position.y, r=5,
                 stroke=self.config.stroke_color, stroke_width=1, fill=self.config.fill_color)

    def fitting(self, parent, fitting: PipingFitting):
        template = fitting_template(fitting.fitting_type)
        group, position = self._entity_group(parent, "fitting", "data-fitting-type",
                                             fitting, fitting.fitting_type.value)
        if fitting.tag:
            group.set("data-tag", fitting.tag)
        self._draw_template(group, template, fitting.style)
        for point in fitting.connection_points:
            marker = _svg(group, "circle",
                          cx=point.position.x - position.x, cy=point.position.y - position.y, r=3,
                          stroke=self.config.stroke_color, stroke_width=1,
                          fill=self.config.fitting_port_color)
            marker.set("data-connection-id", point.id)

    def instrument(self, parent, instrument: Instrument):
        template = instrument_template(instrument.instrument_type)
        group, position = self._entity_group(parent, "instrument", "data-instrument-type",
                                             instrument, instrument.instrument_type.value)
        if instrument.tag_number:
            group.set("data-tag-number", instrument.tag_number)
        self._draw_template(group, template, instrument.style)
        if instrument.tag_number:
            self._label(group, instrument.tag_number, template)
        for point in instrument.connection_points:
            marker = _svg(group, "circle",
                          cx=point.position.x - position.x, cy=point.position.y - position.y, r=3,
                          stroke=self.config.stroke_color, stroke_width=1,
                          fill=self.config.instrument_port_color)
            marker.set("data-connection-id", point.id)
            marker.set("data-connection-type", point.connection_type.value)

    # ── Lines ────────────────────────────────────────

    def segment(self, parent, segment: LineSegment):
        style = segment.style or GraphicStyle()
        line = _svg(parent, "line", id=f"segment-{segment.id}",
                    x1=segment.start_point.x, y1=segment.start_point.y,
                    x2=segment.end_point.x, y2=segment.end_point.y,
                    stroke=style.stroke_color or self.config.stroke_color,
                    stroke_width=_first(style.stroke_width, self.config.stroke_width),
                    opacity=style.opacity)
        line.set("data-dexpi-id", segment.id)
        if segment.line_id:
            line.set("data-line-id", segment.line_id)

    def signal(self, parent, signal: SignalLine):
        style = signal.style or GraphicStyle()
        line = _svg(parent, "line", id=f"signal-{signal.id}",
                    x1=signal.start_point.x, y1=signal.start_point.y,
                    x2=signal.end_point.x, y2=signal.end_point.y,
                    stroke=style.stroke_color or self.config.signal_stroke_color,
                    stroke_width=_first(style.stroke_width, self.config.signal_stroke_width),
                    stroke_dasharray=self.config.signal_dasharray,
                    opacity=style.opacity)
        line.set("data-dexpi-id", signal.id)
        line.set("data-signal-type", signal.signal_type.value)

    # ── Document ─────────────────────────────────────

    def build(self, document: Document):
        cfg = self.config
        root = etree.Element(f"{{{SVG_NS}}}svg", nsmap={None: SVG_NS})
        root.set("version", "1.1")
        root.set("width", str(cfg.width))
        root.set("height", str(cfg.height))
        root.set("viewBox", f"0 0 {cfg.width} {cfg.height}")
        root.set("data-dexpi-id", document.id)
        if document.document_number:
            root.set("data-document-number", document.document_number)
        if document.revision_number:
            root.set("data-revision", document.revision_number)

        _svg(root, "title").text = document.name or "P&ID Diagram"
        _svg(root, "desc").text = document.description or "Generated from DEXPI model"
        _svg(root, "defs")
        layer = _svg(root, "g", id="main-layer")

        for network in document.piping_networks:
            group = _svg(layer, "g", id=f"network-{network.id}", **{"class": "piping-network"})
            for segment in network.line_segments:
                self.segment(group, segment)
            for fitting in network.fittings:
                self.fitting(group, fitting)
        for equipment in document.equipment:
            self.equipment(layer, equipment)
        for instrument in document.instruments:
            self.instrument(layer, instrument)
        for instrument in document.instruments:
            for signal in instrument.signal_lines:
                self.signal(layer, signal)
        return root


def export_svg(document: Document, config: Optional[SvgExportConfig] = None) -> str:
    """Render a Document as a standalone SVG string."""
    exporter = SvgExporter(config)
    try:
        root = exporter.build(document)
    except (TypeError, ValueError, AttributeError) as e:
        raise DexpiEncodeError(f"Failed to convert DEXPI document to SVG: {e}") from e
    logger.info(f"Exported SVG for document {document.id}")
    return etree.tostring(root, pretty_print=exporter.config.pretty_print,
                          xml_declaration=True, encoding="UTF-8").decode("UTF-8")
