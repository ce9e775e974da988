"""
Local persistence: the whole dataset (section title -> school years) as one
JSON blob stored under a fixed key.

Missing or corrupt storage reads as an empty mapping. Write failures are
logged and swallowed; the in-memory state stays authoritative.
"""

import os
from pathlib import Path
from typing import Optional, Union

from pydantic import TypeAdapter

from logger import get_logger
from schemas import SectionData

logger = get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", ".gradebook")
STORAGE_KEY = os.getenv("DATABASE_NAME", "school-management-data-v2")

_sections = TypeAdapter(SectionData)


def serialize(data: SectionData) -> str:
    return _sections.dump_json(data, by_alias=True).decode("utf-8")


def deserialize(blob: Union[str, bytes]) -> SectionData:
    return _sections.validate_json(blob)


class JsonStore:
    """One JSON file, <directory>/<key>.json, holding the whole mapping."""

    def __init__(self, directory: Optional[Union[str, Path]] = None, key: str = STORAGE_KEY):
        self.path = Path(directory or DATABASE_URL) / f"{key}.json"

    def load(self) -> SectionData:
        if not self.path.exists():
            return {}
        try:
            return deserialize(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Could not load school data from {self.path}: {e}")
            return {}

    def save(self, data: SectionData) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            tmp_path.write_text(serialize(data), encoding="utf-8")
            tmp_path.replace(self.path)
            return True
        except OSError as e:
            logger.error(f"Could not save school data to {self.path}: {e}")
            return False


db = JsonStore()
