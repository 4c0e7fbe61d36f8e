#!/usr/bin/env python3
"""
ALV Watermark CLI - watermark every photo of a folder and export them as a zip
(images-alv.zip) or as individual JPEG files.
"""

import asyncio
from pathlib import Path
from typing import List, Optional

import typer

from app_config import AppSettings, read_asset, require_asset
from app_logging import setup_logger
from export_coordinator import DirectorySaver, ExportCoordinator, FailurePolicy
from image_registry import ImageRegistry, RawFile, is_image_file
from watermark_compositor import DecodeError, WatermarkConfig, WatermarkMode

app = typer.Typer(add_completion=False)


def collect_image_files(
    input_path: Path, recursive: bool = False, exclude: Optional[Path] = None
) -> List[RawFile]:
    """Read every image file of ``input_path`` (sorted by name), skipping ``exclude``."""
    pattern_iter = input_path.rglob("*") if recursive else input_path.iterdir()
    excluded = exclude.resolve() if exclude is not None else None
    files = []
    for file in sorted(pattern_iter):
        if not file.is_file():
            continue
        if excluded is not None and excluded in file.resolve().parents:
            continue
        if not is_image_file(file):
            continue
        files.append(RawFile.from_path(file))
    return files


@app.command()
def main(
    image_directory: Path = typer.Argument(
        ..., help="Directory containing the photos to watermark"
    ),
    mode: Optional[WatermarkMode] = typer.Option(
        None, "--mode", "-m", help="Watermark placement: tiled, centered or corner"
    ),
    logo: Optional[Path] = typer.Option(
        None, "--logo", "-l", help="Watermark image (defaults to ALV_WATERMARK_LOGO)"
    ),
    center_logo: Optional[Path] = typer.Option(
        None, "--center-logo", help="Separate watermark image for the centered mode"
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Output directory (default: <dir>/<dir>_watermark)"
    ),
    individual: bool = typer.Option(
        False, "--individual", "-i", help="Write one JPEG per photo instead of a zip"
    ),
    failure_policy: Optional[FailurePolicy] = typer.Option(
        None, "--failure-policy", help="skip failed photos or abort the whole batch"
    ),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Include subfolders"),
):
    """
    Watermark the photos of a folder.

    Every image in IMAGE_DIRECTORY gets the logo overlaid with the chosen placement
    and is saved as JPEG, either bundled in images-alv.zip or one file per photo.
    """
    setup_logger()
    settings = AppSettings.from_env()

    if not image_directory.exists():
        typer.echo(f"Error: Directory '{image_directory}' does not exist.", err=True)
        raise typer.Exit(1)
    if not image_directory.is_dir():
        typer.echo(f"Error: '{image_directory}' is not a directory.", err=True)
        raise typer.Exit(1)

    try:
        logo_bytes = require_asset(logo or settings.logo_path)
        center_bytes = require_asset(center_logo) if center_logo else None
    except DecodeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    config = WatermarkConfig(
        mode=mode or settings.mode,
        logo=logo_bytes,
        centered_logo=center_bytes or read_asset(settings.center_logo_path),
    )

    output_dir = output or image_directory / f"{image_directory.name}_watermark"
    saver = DirectorySaver(output_dir)

    with ImageRegistry(settings.noise_tokens) as registry:
        files = collect_image_files(image_directory, recursive, exclude=saver.output_dir)
        registry.add_images(files)
        if registry.is_empty:
            typer.echo(f"No image files found in '{image_directory}'.", err=True)
            raise typer.Exit(1)

        typer.echo(f"Found {len(registry)} image(s) to process...")
        typer.echo(f"Output directory: {output_dir}")

        coordinator = ExportCoordinator(
            registry,
            config,
            saver,
            failure_policy=failure_policy or settings.failure_policy,
            exclusive=settings.exclusive_exports,
        )
        if individual:
            results = [
                asyncio.run(coordinator.export_one(entry.id)) for entry in registry.snapshot()
            ]
        else:
            results = [asyncio.run(coordinator.export_all())]

        processed = sum(len(r.exported) for r in results if r)
        failed = [f for r in results if r for f in r.failed]
        names = {entry.id: entry.filename for entry in registry}
        for entry_id, reason in failed:
            typer.echo(f"  ❌ {names.get(entry_id, entry_id)}: {reason}", err=True)

    # Summary
    typer.echo("\n" + "=" * 50)
    typer.echo("Processing complete!")
    typer.echo(f"Successfully processed: {processed} images")
    typer.echo(f"Failed: {len(failed)} images")
    for path in saver.paths:
        typer.echo(f"  ✅ {path}")
    if not saver.paths:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
