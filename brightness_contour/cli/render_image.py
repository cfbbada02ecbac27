from __future__ import annotations
import os
import sys
import asyncio
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

# Load environment variables first
load_dotenv()

from ..models.errors import BackendUnavailable, InvalidImageDimensions
from ..models.opencv_backend import OpenCVBackend
from ..models.settings import DisplayOptions, IMAGE_FILTER_PRESETS, LAYER_ORDER, SessionSettings
from ..repositories.settings_repository import SettingsRepository
from ..services.image_service import ImageService, EXPORT_FORMATS
from ..services.image_filter_service import ImageFilterService
from ..pipeline.analysis_session import AnalysisSession

logger = logging.getLogger("brightness_contour.cli")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s',
        datefmt='%H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brightness-contour",
        description="Render brightness contours, Canny edges and frequency layers over images.",
    )
    parser.add_argument("inputs", nargs="+", type=Path, help="Image files to process")
    parser.add_argument("-o", "--out-dir", type=Path, default=Path("output"), help="Export folder")
    parser.add_argument("--settings", type=Path, default=None,
                        help="Settings JSON (defaults to SETTINGS_PATH)")
    parser.add_argument("--layers", default=None,
                        help=f"Comma separated layers to enable, from: {', '.join(LAYER_ORDER)}")
    parser.add_argument("--grayscale", action="store_true", help="Convert image layers to luminance")
    parser.add_argument("--auto-thresholds", action="store_true", help="Pick Canny thresholds with Otsu")
    parser.add_argument("--filter-preset", default=None,
                        help=f"Image filter preset for the filtered layers, from: {', '.join(IMAGE_FILTER_PRESETS)}")
    parser.add_argument("--format", choices=EXPORT_FORMATS, default="png")
    parser.add_argument("--quality", type=int, default=None, help="JPEG quality, 10-100")
    parser.add_argument("--metadata", action="store_true", help="Write a JSON sidecar per export")
    parser.add_argument("--no-opencv", action="store_true",
                        help="Run without the OpenCV backend (pixel algorithms only)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def resolve_settings(args: argparse.Namespace) -> SessionSettings:
    settings = SettingsRepository(args.settings).load()
    display = settings.display
    if args.layers:
        names = [name.strip() for name in args.layers.split(",") if name.strip()]
        display = display.with_layers(*names)
    if args.grayscale:
        display = DisplayOptions(layers=display.layers, grayscale_mode=True)
    settings.display = display
    if args.auto_thresholds:
        settings.canny.threshold_mode = "auto"
    if args.filter_preset:
        settings.image_filter = ImageFilterService.preset(args.filter_preset)
    return settings


async def process_file(path: Path, settings: SessionSettings, backend: OpenCVBackend | None,
                       image_service: ImageService, args: argparse.Namespace) -> Path:
    image = image_service.load(path)
    session = AnalysisSession(image, settings, backend)
    await session.refresh()
    rendered = session.render()
    exported = image_service.export(rendered, args.out_dir, settings.display,
                                    fmt=args.format, quality=args.quality)
    if args.metadata:
        image_service.write_metadata(exported, image, settings)
    if session.edge_stats is not None:
        stats = session.edge_stats
        logger.info(f"{path.name}: {stats.processed_edge_count} edge pixels after processing")
    return exported


async def run(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
    except ValueError as err:
        logger.error(str(err))
        return 2

    backend = None if args.no_opencv else OpenCVBackend()
    image_service = ImageService()
    failures = 0

    for path in tqdm(args.inputs, desc="Rendering", unit="image", disable=len(args.inputs) < 2):
        try:
            exported = await process_file(path, settings, backend, image_service, args)
            logger.info(f"{path.name} → {exported}")
        except (FileNotFoundError, InvalidImageDimensions, BackendUnavailable, ValueError, OSError) as err:
            failures += 1
            logger.error(f"{path}: {err}")

    if failures:
        logger.error(f"{failures}/{len(args.inputs)} inputs failed")
        return 1
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
