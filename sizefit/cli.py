from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .batch import compress_and_save, iter_sources, load_inputs, summarize
from .errors import UnsupportedFormatError
from .report import build_report, save_report_csv, save_report_json
from .settings import CompressSettings
from .units import SizeParseError, format_size, parse_size


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="sizefit",
        description="Compress images and PDFs to fit a target file size",
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    sub = p.add_subparsers(dest="command", required=True)

    comp = sub.add_parser("compress", help="Compress files/folders to a target size")
    comp.add_argument("inputs", nargs="+", help="Images, PDFs and/or folders to process")

    # Output
    comp.add_argument("--out", required=True, help="Output directory")
    comp.add_argument("--overwrite", action="store_true", help="Overwrite output files if they exist")
    comp.add_argument("--name", default=None, help="Base name for outputs (default: input file name)")
    comp.add_argument("--no-recursive", action="store_true", help="Do not scan folders recursively")
    comp.add_argument("--no-report", action="store_true", help="Skip report.json / report.csv")
    comp.add_argument("--quiet", action="store_true", help="Do not print progress")

    # Budget
    comp.add_argument("--target", default="0", help='Target size, e.g. "500KB" or "2MB" (0 = no limit)')
    comp.add_argument(
        "--per-file",
        action="store_true",
        help="Every output gets the full target (default: target is shared by all outputs)",
    )

    # Format
    comp.add_argument("--format", default="jpg", help="Output format: jpg or pdf (default: jpg)")
    comp.add_argument("--separate", action="store_true", help="PDF: one document per page instead of one merged file")

    # Search mode
    mode = comp.add_mutually_exclusive_group()
    mode.add_argument("--aggressive", action="store_true", help="Smallest size, may pixelate (default)")
    mode.add_argument("--smooth", action="store_true", help="Keep resolution, lower quality first")

    # Decoding
    comp.add_argument("--max-dim", type=int, default=4096, help="Working size bound in pixels (default 4096)")

    return p


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _print_progress(fraction: float, message: str) -> None:
    print(f"[{fraction * 100:5.1f}%] {message}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "compress":
        try:
            target_size = parse_size(args.target)
        except SizeParseError as exc:
            parser.error(str(exc))

        out_dir = Path(args.out)

        settings = CompressSettings(
            output_dir=out_dir,
            target_format=args.format,
            overwrite=bool(args.overwrite),
            custom_name=args.name,
            target_size=target_size,
            total_size_mode=not bool(args.per_file),
            high_quality_mode=not bool(args.smooth),
            merge_mode=not bool(args.separate),
            max_width=args.max_dim,
            max_height=args.max_dim,
        )

        paths = list(iter_sources(
            [Path(p) for p in args.inputs],
            recursive=not bool(args.no_recursive),
            exclude_dir=out_dir,
        ))
        inputs = load_inputs(paths)

        try:
            artifacts = compress_and_save(
                inputs,
                settings,
                on_progress=None if args.quiet else _print_progress,
            )
        except UnsupportedFormatError as exc:
            print(f"{exc}. Try --format jpg or --format pdf.", file=sys.stderr)
            return 2

        summary = summarize(inputs, artifacts)

        print("\n=== Results ===")
        for a in artifacts:
            flag = "  (best effort)" if a.best_effort else ""
            print(f"  {a.file_name}: {format_size(a.size_bytes)}{flag}")

        print("\n=== Batch Summary ===")
        print("Inputs     :", summary.total_inputs)
        print("Written    :", summary.artifacts)
        print("Best effort:", summary.best_effort)
        print(f"Saved      : {format_size(summary.saved_bytes)} ({summary.saved_percent:.1f}%)")

        if summary.best_effort:
            print("\nSome outputs could not meet the target without losing quality or resolution.")

        if not args.no_report:
            report = build_report(artifacts, summary, target_size=target_size)

            json_path = out_dir / "report.json"
            save_report_json(report, json_path)

            csv_path = out_dir / "report.csv"
            save_report_csv(report, csv_path)

            print("\nReport written:", json_path)
            print("CSV written   :", csv_path)

        if inputs and not artifacts:
            return 1
        return 0

    parser.print_help()
    return 2
