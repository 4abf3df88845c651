"""
Archive handling: zip extraction and shapefile -> GeoJSON conversion.

Shapefiles are converted with GDAL's ``ogr2ogr`` command-line tool, which has
to be on PATH. GeoJSON payloads are read directly.
"""

import json
import subprocess
import zipfile
from pathlib import Path
from typing import Any, Optional

from loguru import logger


ZIP_MAGIC = b"PK\x03\x04"
GEOJSON_SUFFIXES = (".geojson", ".json")


class ConversionError(Exception):
    """A downloaded payload could not be turned into a GeoJSON FeatureCollection."""
    pass


def is_zip(path: Path) -> bool:
    with open(path, "rb") as f:
        return f.read(4) == ZIP_MAGIC


def extract_zip(archive: Path, dest_dir: Optional[Path] = None) -> Path:
    """Extract an archive next to itself (``<archive stem>/``) and return the directory."""
    archive = Path(archive)
    dest_dir = Path(dest_dir or archive.with_suffix(""))
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(dest_dir)
    except zipfile.BadZipFile as e:
        raise ConversionError(f"{archive.name} is not a readable zip archive: {e}") from e
    except OSError as e:
        raise ConversionError(f"Could not extract {archive.name}: {e}") from e
    logger.debug(f"Extracted {archive.name} -> {dest_dir}")
    return dest_dir


def find_member(directory: Path, name: Optional[str] = None) -> Optional[Path]:
    """
    Locate the dataset file inside an extracted archive.

    Args:
        directory: Extraction directory
        name: Exact file name to look for (e.g. a Geofabrik layer)

    Returns:
        The first shapefile, else the first GeoJSON file, or None
    """
    candidates = sorted(p for p in Path(directory).rglob("*") if p.is_file())
    if name:
        return next((p for p in candidates if p.name == name), None)
    for p in candidates:
        if p.suffix.lower() == ".shp":
            return p
    for p in candidates:
        if p.suffix.lower() in GEOJSON_SUFFIXES:
            return p
    return None


def convert_shapefile(shp_path: Path, where: Optional[str] = None) -> Path:
    """Convert a shapefile to RFC 7946 GeoJSON beside it.

    Args:
        shp_path: Input ``.shp`` file
        where: Optional OGR SQL attribute filter

    Returns:
        Path of the ``.geojson`` output

    Raises:
        ConversionError: If ogr2ogr is missing, exits non-zero or writes nothing
    """
    shp_path = Path(shp_path)
    out_path = shp_path.with_suffix(".geojson")
    if out_path.exists():
        out_path.unlink()

    cmd = ["ogr2ogr", "-f", "GeoJSON", str(out_path), str(shp_path), "-lco", "RFC7946=YES"]
    if where:
        cmd += ["-where", where]

    logger.info(f"Converting {shp_path.name} with ogr2ogr")
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise ConversionError("ogr2ogr not found - install GDAL to convert shapefiles") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()[:500]
        raise ConversionError(f"ogr2ogr failed for {shp_path.name} (exit {e.returncode}): {stderr}") from e

    if not out_path.exists():
        raise ConversionError(f"ogr2ogr produced no output for {shp_path.name}")
    return out_path


def read_geojson(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConversionError(f"{Path(path).name} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConversionError(f"{Path(path).name} is not a GeoJSON object")
    if data.get("type") == "Feature":
        data = {"type": "FeatureCollection", "features": [data]}
    if data.get("type") != "FeatureCollection":
        raise ConversionError(f"{Path(path).name} is not a GeoJSON FeatureCollection")
    return data


def load_feature_collection(
    path: Path,
    member: Optional[str] = None,
    where: Optional[str] = None,
) -> dict[str, Any]:
    """
    Materialize a downloaded dataset as a GeoJSON FeatureCollection dict.

    Zip archives are extracted and their dataset file located; shapefiles go
    through ogr2ogr; GeoJSON is parsed as-is.
    """
    path = Path(path)
    if is_zip(path):
        target = find_member(extract_zip(path), member)
        if target is None:
            raise ConversionError(f"No {member or 'shapefile or GeoJSON'} in {path.name}")
    else:
        target = path

    if target.suffix.lower() == ".shp":
        target = convert_shapefile(target, where=where)

    data = read_geojson(target)
    logger.info(f"Loaded {len(data.get('features', [])):,} features from {target.name}")
    return data
