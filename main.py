#!/usr/bin/env python3
"""
P&ID DEXPI Toolkit — CLI Runner
=================================
Build a reference diagram, convert DEXPI XML to SVG, check round trips.

Usage:
  # Reference diagram → DEXPI XML + SVG
  python main.py demo --output ./output

  # DEXPI XML → SVG
  python main.py convert plant.xml --svg plant.svg

  # Decode, re-encode, compare structure
  python main.py roundtrip plant.xml

  # Entity counts and integrity report
  python main.py stats plant.xml
"""

import sys
import time
import argparse
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from loguru import logger

from pid_graph.index import DiagramIndex
from pid_graph.reference import build_reference_diagram
from dexpi_codec.config import CodecConfig, SvgExportConfig, DexpiCodecError
from dexpi_codec.encoder import encode_to_xml
from dexpi_codec.decoder import decode_from_xml
from dexpi_codec.svg_exporter import export_svg

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"


def configure_logging(verbose: bool = False):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format=LOG_FORMAT)


def connectivity(document) -> set:
    """(segment id, start port, end port) triples across all networks."""
    return {
        (seg.id, seg.start_connected_to, seg.end_connected_to)
        for network in document.piping_networks
        for seg in network.line_segments
    }


def log_stats(document):
    index = DiagramIndex(document)
    stats = index.stats()
    logger.info("Diagram Statistics:")
    logger.info(f"  Equipment:            {stats['equipment']}")
    logger.info(f"  Piping Networks:      {stats['piping_networks']}")
    logger.info(f"  Piping Lines:         {stats['piping_lines']}")
    logger.info(f"  Fittings:             {stats['fittings']}")
    logger.info(f"  Line Segments:        {stats['line_segments']}")
    logger.info(f"  Instruments:          {stats['instruments']}")
    logger.info(f"  Signal Lines:         {stats['signal_lines']}")
    logger.info(f"  Process Connections:  {stats['process_connections']}")
    logger.info(f"  Ports:                {stats['ports']}")
    logger.info(f"  ─────────────────────────")
    logger.info(f"  TOTAL ENTITIES:       {stats['total_entities']}")
    problems = index.check_integrity()
    for problem in problems:
        logger.warning(f"  integrity: {problem}")
    return problems


def cmd_demo(args, codec_config, svg_config) -> int:
    output_path = Path(args.output)
    output_path.mkdir(parents=True, exist_ok=True)

    document = build_reference_diagram()
    log_stats(document)

    stem = args.name
    xml_file = output_path / f"{stem}.dexpi.xml"
    svg_file = output_path / f"{stem}.svg"
    xml_file.write_text(encode_to_xml(document, codec_config), encoding="utf-8")
    svg_file.write_text(export_svg(document, svg_config), encoding="utf-8")
    logger.info(f"Wrote {xml_file}")
    logger.info(f"Wrote {svg_file}")
    return 0


def cmd_convert(args, codec_config, svg_config) -> int:
    source = Path(args.input)
    document = decode_from_xml(source.read_bytes(), codec_config)
    target = Path(args.svg) if args.svg else source.with_suffix(".svg")
    target.write_text(export_svg(document, svg_config), encoding="utf-8")
    logger.info(f"Wrote {target}")
    return 0


def cmd_roundtrip(args, codec_config, svg_config) -> int:
    original = decode_from_xml(Path(args.input).read_bytes(), codec_config)
    again = decode_from_xml(encode_to_xml(original, codec_config), codec_config)

    before, after = DiagramIndex(original).stats(), DiagramIndex(again).stats()
    same_counts = before == after
    same_links = connectivity(original) == connectivity(again)
    logger.info(f"  Counts preserved:       {same_counts}")
    logger.info(f"  Connectivity preserved: {same_links}")
    return 0 if same_counts and same_links else 1


def cmd_stats(args, codec_config, svg_config) -> int:
    document = decode_from_xml(Path(args.input).read_bytes(), codec_config)
    return 1 if log_stats(document) else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="P&ID DEXPI Toolkit: graph model, DEXPI XML codec, SVG export",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py demo --output ./output          # Reference diagram
  python main.py convert plant.xml               # XML → plant.svg
  python main.py roundtrip plant.xml --reject-missing-ids
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")
    parser.add_argument("--reject-missing-ids", action="store_true",
                        help="Fail on elements without an Id instead of repairing references")
    parser.add_argument("--compact", action="store_true",
                        help="Write XML/SVG without indentation")
    parser.add_argument("--width", type=int, default=1000,
                        help="SVG canvas width, resizes the viewBox too (default: 1000)")
    parser.add_argument("--height", type=int, default=800,
                        help="SVG canvas height, resizes the viewBox too (default: 800)")

    sub = parser.add_subparsers(dest="command", required=True)

    demo = sub.add_parser("demo", help="Build the reference diagram and export it")
    demo.add_argument("--output", "-o", type=str, default="./output",
                      help="Output directory (default: ./output)")
    demo.add_argument("--name", type=str, default="reference_pid",
                      help="Base file name (default: reference_pid)")
    demo.set_defaults(handler=cmd_demo)

    convert = sub.add_parser("convert", help="Render a DEXPI XML file as SVG")
    convert.add_argument("input", help="DEXPI XML file")
    convert.add_argument("--svg", type=str, default=None,
                         help="SVG output path (default: input with .svg suffix)")
    convert.set_defaults(handler=cmd_convert)

    roundtrip = sub.add_parser("roundtrip", help="Decode → encode → decode and compare")
    roundtrip.add_argument("input", help="DEXPI XML file")
    roundtrip.set_defaults(handler=cmd_roundtrip)

    stats = sub.add_parser("stats", help="Entity counts and integrity problems")
    stats.add_argument("input", help="DEXPI XML file")
    stats.set_defaults(handler=cmd_stats)

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    codec_config = CodecConfig(
        pretty_print=not args.compact,
        missing_id_policy="reject" if args.reject_missing_ids else "repair",
    )
    svg_config = SvgExportConfig(width=args.width, height=args.height,
                                 pretty_print=not args.compact)

    start_time = time.time()
    try:
        status = args.handler(args, codec_config, svg_config)
    except DexpiCodecError as e:
        logger.error(str(e))
        return 2
    except OSError as e:
        logger.error(f"I/O error: {e}")
        return 2
    logger.info(f"Completed '{args.command}' in {time.time() - start_time:.2f}s")
    return status


if __name__ == "__main__":
    sys.exit(main())
