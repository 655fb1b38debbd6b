"""Pipeline CLI commands."""

import json
import logging
from pathlib import Path
from typing import Optional

from partscan.config import Settings
from partscan.processing.errors import ConfigurationError
from partscan.processing.models import CompatibilityEntry, GenerateRequest, UploadedImage, VehicleContext
from partscan.processing.pipeline import ListingPipeline


logger = logging.getLogger(__name__)


def load_images(paths: list[str]) -> list[UploadedImage]:
    """Read image files from disk.

    Raises:
        OSError: If a file cannot be read.
    """
    images = []
    for raw_path in paths:
        path = Path(raw_path)
        images.append(UploadedImage(filename=path.name, data=path.read_bytes()))
    return images


def load_compatibility(path: Optional[str]) -> list[CompatibilityEntry]:
    if not path:
        return []
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, list):
        raise ValueError("Compatibility file must contain a JSON list")
    return [CompatibilityEntry.from_dict(entry) for entry in payload]


def write_result(result: dict, output_path: Optional[str]) -> None:
    """Write a result dict as JSON to a file, or print it."""
    text = json.dumps(result, indent=2, ensure_ascii=False)
    if not output_path:
        print(text)
        return
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    print(f"Result written to {path}")


def _build_pipeline() -> Optional[ListingPipeline]:
    try:
        return ListingPipeline(Settings.from_env())
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        return None


def cmd_ocr(args):
    """Run OCR only and print the result."""
    try:
        images = load_images(args.images)
    except OSError as e:
        print(f"Failed to read image: {e}")
        return 1

    pipeline = _build_pipeline()
    if pipeline is None:
        return 1

    with pipeline:
        result = pipeline.recognize(images)

    write_result(result.to_dict(), args.output)
    return 0


def cmd_generate(args):
    """Run OCR, part-number resolution and listing generation."""
    try:
        images = load_images(args.images)
    except OSError as e:
        print(f"Failed to read image: {e}")
        return 1

    try:
        compatibility = load_compatibility(args.compatibility)
    except (OSError, ValueError) as e:
        print(f"Failed to read compatibility: {e}")
        return 1

    vehicle = None
    if any([args.year, args.make, args.model, args.vin]):
        vehicle = VehicleContext(make=args.make, model=args.model, year=args.year, vin=args.vin)

    request = GenerateRequest(
        images=images,
        part_number=args.part_number,
        vehicle=vehicle,
        compatibility=compatibility,
        existing_title=args.title,
        existing_description=args.description,
    )

    pipeline = _build_pipeline()
    if pipeline is None:
        return 1

    logger.info(f"Generating listing from {len(images)} image(s)...")
    with pipeline:
        result = pipeline.generate(request)

    if not result.suggestion.used_real_backend:
        logger.info("Listing text came from the mock generator")
    write_result(result.to_dict(), args.output)
    return 0


def setup_generate_commands(subparsers):
    """Setup pipeline subcommands."""
    ocr_parser = subparsers.add_parser("ocr", help="Extract text from part photos")
    ocr_parser.add_argument("images", nargs="+", help="Image files")
    ocr_parser.add_argument("--output", help="Write JSON result to this file instead of stdout")
    ocr_parser.set_defaults(func=cmd_ocr)

    generate_parser = subparsers.add_parser("generate", help="Generate listing suggestions from part photos")
    generate_parser.add_argument("images", nargs="*", help="Image files")
    generate_parser.add_argument("--part-number", help="Known part number (skips detection)")
    generate_parser.add_argument("--year", help="Vehicle year")
    generate_parser.add_argument("--make", help="Vehicle make")
    generate_parser.add_argument("--model", help="Vehicle model")
    generate_parser.add_argument("--vin", help="Vehicle VIN")
    generate_parser.add_argument("--compatibility", help="JSON file with existing compatibility entries")
    generate_parser.add_argument("--title", help="Existing title to refine")
    generate_parser.add_argument("--description", help="Existing description to refine")
    generate_parser.add_argument("--output", help="Write JSON result to this file instead of stdout")
    generate_parser.set_defaults(func=cmd_generate)
