"""Command-line interface for receipt extraction and CSV export.

Provides subcommands for extracting a single receipt to JSON and for
processing folders of receipt photos into a CSV summary.
"""

import argparse
import csv
import json
import sys
import time
from pathlib import Path

from receipt_ocr.ocr.image_source import RawImage
from receipt_ocr.ocr.receipt_processor import OcrResult, ReceiptProcessor
from receipt_ocr.utils.config import load_config
from receipt_ocr.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif", "*.webp", "*.bmp")
_CSV_COLUMNS = [
    "filename",
    "status",
    "amount",
    "date",
    "merchant",
    "overall_confidence",
    "rotation",
    "degraded",
    "processing_time_s",
    "error_kind",
    "error",
]


def _find_receipts(input_dir: Path) -> list[Path]:
    """Find all supported image files in a directory.

    Args:
        input_dir: Directory to scan for receipt photos.

    Returns:
        Sorted list of image file paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _run(processor: ReceiptProcessor, image: RawImage, enhanced: bool, multi_pass: bool) -> OcrResult:
    if enhanced:
        return processor.process_receipt_enhanced(image, use_multi_pass=multi_pass)
    return processor.process_receipt(image)


def process_folder(
    input_dir: Path,
    output_csv: Path,
    enhanced: bool = False,
    verbose: bool = False,
) -> dict[str, int]:
    """Process all receipts in a folder and export results to CSV.

    Args:
        input_dir: Directory containing receipt photos.
        output_csv: Path for the output CSV file.
        enhanced: Whether to use the enhanced multi-pass pipeline.
        verbose: Whether to print per-file progress.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    files = _find_receipts(input_dir)
    if not files:
        logger.warning("No receipts found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d receipts to process", len(files))

    rows: list[dict[str, object]] = []
    successful = 0

    with ReceiptProcessor(load_config()) as processor:
        for i, file_path in enumerate(files, 1):
            if verbose:
                print(f"Processing [{i}/{len(files)}]: {file_path.name}")

            start_time = time.time()
            try:
                image = RawImage.from_path(file_path)
            except OSError as exc:
                logger.error("Failed to read %s: %s", file_path.name, exc)
                rows.append({"filename": file_path.name, "status": "failed", "error": str(exc)})
                continue

            result = _run(processor, image, enhanced, multi_pass=True)
            row = _result_row(file_path.name, result)
            row["processing_time_s"] = round(time.time() - start_time, 2)
            rows.append(row)
            if result.success:
                successful += 1

    _write_csv(rows, output_csv)
    logger.info("Results written to %s", output_csv)

    summary = {"total": len(files), "successful": successful, "failed": len(files) - successful}
    _print_summary(summary, output_csv)
    return summary


def _result_row(filename: str, result: OcrResult) -> dict[str, object]:
    data = result.to_dict()
    return {
        "filename": filename,
        "status": "success" if result.success else "failed",
        "amount": data["amount"],
        "date": data["date"],
        "merchant": data["merchant"],
        "overall_confidence": round(result.confidence.overall, 3),
        "rotation": result.rotation,
        "degraded": result.degraded,
        "error_kind": data["error_kind"],
        "error": result.error,
    }


def _write_csv(rows: list[dict[str, object]], output_path: Path) -> None:
    """Write extraction results to a CSV file.

    Args:
        rows: List of result dictionaries.
        output_path: Path for the output CSV file.
    """
    if not rows:
        return

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=_CSV_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


def _print_summary(summary: dict[str, int], output_csv: Path) -> None:
    """Print batch processing summary to stdout.

    Args:
        summary: Counts of total, successful, and failed receipts.
        output_csv: Path to the output CSV.
    """
    print(f"\n{'=' * 50}")
    print("Batch Processing Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output_csv}")


def extract_single(
    file_path: Path,
    enhanced: bool = False,
    multi_pass: bool = True,
) -> dict[str, object]:
    """Process a single receipt and return its result as a dictionary.

    Args:
        file_path: Path to the receipt photo.
        enhanced: Whether to use the enhanced pipeline.
        multi_pass: Whether the enhanced pipeline may retry rotations.

    Returns:
        Dictionary with the filename and the serialised ``OcrResult``.
    """
    with ReceiptProcessor(load_config()) as processor:
        result = _run(processor, RawImage.from_path(file_path), enhanced, multi_pass)
    return {"filename": file_path.name, **result.to_dict()}


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Receipt OCR field extractor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    batch_parser = subparsers.add_parser("batch", help="Process a folder of receipts")
    batch_parser.add_argument("input_dir", type=Path, help="Input directory with receipt photos")
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output CSV file (default: results.csv)",
    )
    batch_parser.add_argument(
        "--enhanced", action="store_true", help="Use the enhanced multi-pass pipeline"
    )
    batch_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    single_parser = subparsers.add_parser("extract", help="Process a single receipt")
    single_parser.add_argument("file", type=Path, help="Receipt photo to process")
    single_parser.add_argument(
        "--enhanced", action="store_true", help="Use the enhanced pipeline"
    )
    single_parser.add_argument(
        "--no-multi-pass",
        action="store_true",
        help="Disable rotated retry passes in enhanced mode",
    )
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    args = parser.parse_args(argv)

    setup_logging()

    if args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        process_folder(args.input_dir, args.output, args.enhanced, args.verbose)
    elif args.command == "extract":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        result = extract_single(args.file, args.enhanced, not args.no_multi_pass)
        output_str = json.dumps(result, indent=2)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str)
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
