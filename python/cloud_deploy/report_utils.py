"""
Utility functions for saving distribution reports.
"""
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from tabulate import tabulate

from cloud_deploy.logging_utils import get_logger, sanitize_mapping

logger = get_logger(__name__)


def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def add_timestamp_to_path(path: str, timestamp: Optional[str] = None) -> str:
    """
    Add a timestamp to a file path before the extension.

    Args:
        path: Original file path (e.g., 'reports/distribution.json')
        timestamp: Optional timestamp string (defaults to current time)

    Returns:
        Path with timestamp inserted (e.g., 'reports/distribution-2026-01-15-14-30-00.json')
    """
    if timestamp is None:
        timestamp = get_timestamp_suffix()

    p = Path(path)
    return str(p.parent / f"{p.stem}-{timestamp}{p.suffix}")


def save_json(path: str, data: Any, timestamp: bool = False) -> str:
    """
    Write JSON data to a file with indentation.

    Mappings are passed through sanitize_mapping so credentials never reach disk;
    the image_uris map is written unchanged.

    Args:
        path: Path to save the JSON file
        data: Data to save
        timestamp: If True, add timestamp to filename

    Returns:
        Path to the saved file
    """
    p = Path(path)
    if timestamp:
        p = Path(add_timestamp_to_path(str(p)))

    p.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(data, dict):
        image_uris = data.get("image_uris")
        data = sanitize_mapping(data)
        # Registry -> URI pairs carry no credentials and must match the .txt table exactly
        if isinstance(image_uris, dict):
            data["image_uris"] = dict(image_uris)

    with open(p, 'w') as f:
        json.dump(data, f, indent=2, default=str)
    logger.info(f"Saved JSON to {p}")
    return str(p)


def render_distribution_table(report: Dict[str, Any]) -> str:
    """Render the registry -> image URI map of a distribution report as a grid table."""
    rows = [[registry_url, image_uri] for registry_url, image_uri in report.get("image_uris", {}).items()]
    if not rows:
        rows = [[f"({target.get('provider')}) {target.get('region')}/{target.get('repository')}", "-"]
                for target in report.get("targets", [])]
    return tabulate(rows, headers=["Registry", "Image URI"], tablefmt="grid")


def save_table_and_json(base_path: str, table_str: str, json_obj: Dict[str, Any], timestamp: bool = True) -> str:
    """
    Write a table string to <base>.txt and JSON object to <base>.json.

    Args:
        base_path: Base path for the reports (without extension)
        table_str: Table content to write
        json_obj: JSON object to write
        timestamp: If True, add timestamp to filenames (default: True)

    Returns:
        Path to the saved JSON file
    """
    base = Path(base_path)
    if timestamp:
        base = base.parent / f"{base.name}-{get_timestamp_suffix()}"

    base.parent.mkdir(parents=True, exist_ok=True)

    with open(f"{base}.txt", "w") as f:
        f.write(table_str)

    json_path = save_json(f"{base}.json", json_obj, timestamp=False)

    logger.info(f"Saved reports to {base}.txt and {base}.json")
    return json_path
