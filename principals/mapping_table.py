# =============================================================================
# principals/mapping_table.py - User mapping file (source -> target overrides)
# =============================================================================

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from principals.models import MappingEntry
from utils.csv_utils import CSVHandler

logger = logging.getLogger(__name__)

# A first row is only treated as a header when it matches one of these pairs
HEADER_MARKERS = {
    ("source", "target"),
    ("sourceuser", "targetuser"),
    ("from", "to"),
    ("onpremises", "online"),
}


def _is_header(fields: List[str]) -> bool:
    if len(fields) != 2:
        return False
    normalized = tuple(f.strip().lower().replace(" ", "") for f in fields)
    return normalized in HEADER_MARKERS


def load_user_mapping_file(path: str) -> List[MappingEntry]:
    """Load a two-column user mapping file.

    Each data row is ``source,target``. Blank lines and rows starting with
    ``#`` are ignored, a recognised header row is skipped, and malformed rows
    (wrong column count, empty source or target) are skipped with a warning.
    When a source appears more than once the last row wins.

    Raises:
        FileNotFoundError: the path does not exist
    """
    if not Path(path).is_file():
        logger.error(f"User mapping file {path} not found")
        raise FileNotFoundError(f"User mapping file {path} not found")

    entries: Dict[str, MappingEntry] = {}
    first_data_row = True

    for line_number, fields in CSVHandler.read_rows(path):
        if not fields or all(not f.strip() for f in fields):
            continue
        if fields[0].lstrip().startswith('#'):
            continue

        if first_data_row:
            first_data_row = False
            if _is_header(fields):
                logger.debug(f"Skipping header row in {path}")
                continue

        if len(fields) != 2:
            logger.warning(f"Skipping line {line_number} in {path}: expected 2 columns, found {len(fields)}")
            continue

        source, target = fields[0].strip(), fields[1].strip()
        if not source or not target:
            logger.warning(f"Skipping line {line_number} in {path}: empty source or target")
            continue

        key = source.casefold()
        if key in entries:
            logger.warning(
                f"Duplicate mapping for '{source}' on line {line_number}, "
                f"replacing '{entries[key].target}' with '{target}'"
            )
            # re-insert so the entry order follows the winning row
            del entries[key]
        entries[key] = MappingEntry(source=source, target=target)

    logger.info(f"Loaded {len(entries)} user mappings from {path}")
    return list(entries.values())


class MappingTable:
    """Read-only, case-insensitive lookup over user mapping entries"""

    def __init__(self, entries: Optional[List[MappingEntry]] = None):
        self._entries: Tuple[MappingEntry, ...] = tuple(entries or ())
        self._by_source: Dict[str, MappingEntry] = {
            entry.source.casefold(): entry for entry in self._entries
        }

    @classmethod
    def load(cls, path: str) -> "MappingTable":
        return cls(load_user_mapping_file(path))

    @property
    def entries(self) -> Tuple[MappingEntry, ...]:
        return self._entries

    def lookup(self, source: str) -> Optional[MappingEntry]:
        if not source:
            return None
        return self._by_source.get(source.strip().casefold())

    def __len__(self) -> int:
        return len(self._by_source)

    def __iter__(self) -> Iterator[MappingEntry]:
        return iter(self._entries)

    def __contains__(self, source: object) -> bool:
        return isinstance(source, str) and self.lookup(source) is not None
