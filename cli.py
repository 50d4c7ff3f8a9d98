#!/usr/bin/env python
"""
Command-line interface for tileseam

Usage:
    python cli.py discover --lat 41.45 --lon -88.30 --snapshot tiles.geojson --output building.json
    python cli.py merge --lat 41.45 --lon -88.30 --input fragments.geojson --output building.geojson
    python cli.py batch --input locations.csv --snapshot tiles.geojson --output ./buildings/
"""

import os
import sys
import json
import csv
import time
import argparse
import math
from datetime import datetime

from loguru import logger

from tileseam.config import get_config, validate_config
from tileseam.discovery import CascadingDiscoveryController, RendererHandle, SnapshotRenderer, load_snapshot
from tileseam.exceptions import TileseamError
from tileseam.geometry import LngLat
from tileseam.merge import ClusterMergeEngine, MergeGuards
from tileseam.models import DiscoveryReport, InputLocation, building_feature


def setup_logging(verbose: bool = False):
    """Configure logging"""
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
        level=level
    )


def valid_coordinates(lat: float, lon: float) -> bool:
    """Finite latitude/longitude within WGS84 range"""
    return math.isfinite(lat) and math.isfinite(lon) and abs(lat) <= 90 and abs(lon) <= 180


def run_discovery(controller: CascadingDiscoveryController, lat: float, lon: float) -> DiscoveryReport:
    """Run one discovery and wrap the outcome in a report"""
    start_time = time.time()
    location = InputLocation(lat=lat, lng=lon)

    try:
        found = controller.discover(LngLat(lon, lat))
    except TileseamError as e:
        elapsed = round(time.time() - start_time, 2)
        logger.error(f"Discovery failed after {elapsed}s: {e}")
        return DiscoveryReport(success=False, elapsed_s=elapsed, input=location, error=str(e))

    elapsed = round(time.time() - start_time, 2)
    return DiscoveryReport(
        success=True,
        elapsed_s=elapsed,
        input=location,
        zoom=found.zoom,
        validated=found.validated,
        passes=found.passes,
        fragment_count=found.result.fragment_count,
        geojson=building_feature(found.to_feature())
    )


def save_json(data, output_path: str):
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    logger.info(f"Saved: {output_path}")


def cmd_discover(args):
    """Discover the building at a single location"""
    setup_logging(args.verbose)
    validate_config(get_config())

    if not valid_coordinates(args.lat, args.lon):
        logger.error(f"Invalid coordinates: ({args.lat}, {args.lon})")
        return 1

    try:
        features = load_snapshot(args.snapshot)
    except TileseamError as e:
        logger.error(str(e))
        return 1

    with RendererHandle(lambda: SnapshotRenderer(features)) as handle:
        controller = CascadingDiscoveryController(handle)
        report = run_discovery(controller, args.lat, args.lon)

    output_path = args.output or f"building_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    save_json(report.model_dump(), output_path)

    if not report.success:
        return 1

    logger.info(f"✓ Building found at z{report.zoom} (validated: {report.validated})")
    if args.summary:
        summary = {
            "zoom": report.zoom,
            "validated": report.validated,
            "passes": report.passes,
            "fragments": report.fragment_count,
            "vertices": len(report.geojson.geometry.coordinates[0]),
            "elapsed_s": report.elapsed_s
        }
        print(json.dumps(summary, indent=2))

    return 0


def cmd_merge(args):
    """Merge fragments from a GeoJSON file around a location"""
    setup_logging(args.verbose)
    validate_config(get_config())

    if not valid_coordinates(args.lat, args.lon):
        logger.error(f"Invalid coordinates: ({args.lat}, {args.lon})")
        return 1

    try:
        features = load_snapshot(args.input)
    except TileseamError as e:
        logger.error(str(e))
        return 1

    engine = ClusterMergeEngine()
    guards = engine.default_guards()
    guards = MergeGuards(
        area_multiplier=args.area_multiplier or guards.area_multiplier,
        max_distance_km=args.max_distance_km or guards.max_distance_km
    )

    result = engine.merge(features, LngLat(args.lon, args.lat), guards)
    if result is None:
        logger.error(f"No features in {args.input}")
        return 1
    if result.degenerate:
        logger.warning("No polygon fragments found - writing first feature unchanged")

    feature = result.to_feature()
    if args.output:
        save_json(feature, args.output)
    else:
        print(json.dumps(feature, indent=2))
    return 0


def cmd_batch(args):
    """Discover buildings for multiple locations from CSV"""
    setup_logging(args.verbose)
    validate_config(get_config())

    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        return 1

    # Read locations from CSV
    locations = []
    with open(args.input, "r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for row in reader:
            try:
                lat = float(row["lat"])
                lon = float(row["lon"])
                if not valid_coordinates(lat, lon):
                    raise ValueError(f"coordinates out of range: ({lat}, {lon})")
                locations.append({"name": row.get("name", ""), "lat": lat, "lon": lon})
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid row: {e}")

    if not locations:
        logger.error("No valid locations found in CSV")
        return 1

    try:
        features = load_snapshot(args.snapshot)
    except TileseamError as e:
        logger.error(str(e))
        return 1

    logger.info(f"Processing {len(locations)} locations...")
    os.makedirs(args.output, exist_ok=True)

    success = 0
    failed = 0
    delay = args.delay if args.delay is not None else get_config().batch_delay_s

    # One renderer for the whole batch
    with RendererHandle(lambda: SnapshotRenderer(features)) as handle:
        controller = CascadingDiscoveryController(handle)

        for i, loc in enumerate(locations, 1):
            name = loc.get("name") or f"building_{i:03d}"
            logger.info(f"[{i}/{len(locations)}] {name}: ({loc['lat']}, {loc['lon']})")

            try:
                report = run_discovery(controller, loc["lat"], loc["lon"])
            except KeyboardInterrupt:
                logger.warning(f"Aborted at {i}/{len(locations)}")
                break
            except Exception as e:
                logger.error(f"  ✗ Failed: {e}")
                failed += 1
                continue

            filename = f"{name.replace(' ', '_').lower()}.json"
            save_json(report.model_dump(), os.path.join(args.output, filename))

            if report.success:
                logger.info(f"  ✓ {filename} (z{report.zoom}, validated: {report.validated})")
                success += 1
            else:
                logger.error(f"  ✗ Failed: {report.error}")
                failed += 1

            if i < len(locations) and delay > 0:
                time.sleep(delay)

    logger.info(f"\nComplete: {success} succeeded, {failed} failed")
    return 0 if failed == 0 else 1


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Building boundary reconstruction from vector-tile fragments",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Discover a building from a tile snapshot:
    python cli.py discover --lat 41.45 --lon -88.30 --snapshot tiles.geojson --output building.json

  Merge fragments directly:
    python cli.py merge --lat 41.45 --lon -88.30 --input fragments.geojson

  Batch discover from CSV:
    python cli.py batch --input locations.csv --snapshot tiles.geojson --output ./buildings/
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Discover command
    discover_parser = subparsers.add_parser("discover", help="Discover the building at a location")
    discover_parser.add_argument("--lat", type=float, required=True, help="Latitude")
    discover_parser.add_argument("--lon", type=float, required=True, help="Longitude")
    discover_parser.add_argument("--snapshot", required=True, help="GeoJSON FeatureCollection of tile fragments")
    discover_parser.add_argument("--output", "-o", help="Output report JSON file")
    discover_parser.add_argument("--summary", "-s", action="store_true", help="Print summary to stdout")
    discover_parser.set_defaults(func=cmd_discover)

    # Merge command
    merge_parser = subparsers.add_parser("merge", help="Merge fragments around a location")
    merge_parser.add_argument("--lat", type=float, required=True, help="Latitude")
    merge_parser.add_argument("--lon", type=float, required=True, help="Longitude")
    merge_parser.add_argument("--input", "-i", required=True, help="GeoJSON FeatureCollection of fragments")
    merge_parser.add_argument("--output", "-o", help="Output GeoJSON file (prints if not specified)")
    merge_parser.add_argument("--area-multiplier", type=float, help="Max cluster area as a multiple of the seed area")
    merge_parser.add_argument("--max-distance-km", type=float, help="Max seed-to-fragment centroid distance (km)")
    merge_parser.set_defaults(func=cmd_merge)

    # Batch command
    batch_parser = subparsers.add_parser("batch", help="Batch discover from CSV file")
    batch_parser.add_argument("--input", "-i", required=True, help="Input CSV file (columns: name,lat,lon)")
    batch_parser.add_argument("--snapshot", required=True, help="GeoJSON FeatureCollection of tile fragments")
    batch_parser.add_argument("--output", "-o", default="output", help="Output directory")
    batch_parser.add_argument("--delay", type=float, help="Delay between runs (seconds)")
    batch_parser.set_defaults(func=cmd_batch)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
