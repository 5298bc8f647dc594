"""Wind farm BM Unit mapping."""

import json
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Union

import structlog

logger = structlog.get_logger()


class BmuMapping:
    """
    The set of wind farm BM Units we track, with their lead party names.

    Loaded once by the driver and handed to the ingestion service.
    """

    def __init__(self, lead_parties: Mapping[str, Optional[str]]):
        self._lead_parties: Dict[str, Optional[str]] = dict(lead_parties)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "BmuMapping":
        """
        Load a JSON list of ``{"elexonBmUnit": ..., "leadPartyName": ...}`` objects.
        """
        with open(path, "r", encoding="utf-8") as f:
            entries = json.load(f)

        if not isinstance(entries, list):
            raise ValueError(f"BMU mapping {path} must be a JSON list")

        lead_parties: Dict[str, Optional[str]] = {}
        for entry in entries:
            bm_unit = entry.get("elexonBmUnit") if isinstance(entry, dict) else None
            if not bm_unit:
                raise ValueError(f"BMU mapping entry without elexonBmUnit: {entry!r}")
            lead_parties[bm_unit] = entry.get("leadPartyName")

        logger.info("Loaded BMU mapping", path=str(path), bm_units=len(lead_parties))
        return cls(lead_parties)

    @classmethod
    def from_units(cls, bm_units: Iterable[str]) -> "BmuMapping":
        """Mapping without lead party names."""
        return cls({unit: None for unit in bm_units})

    def __contains__(self, bm_unit: str) -> bool:
        return bm_unit in self._lead_parties

    def __len__(self) -> int:
        return len(self._lead_parties)

    def lead_party(self, bm_unit: str) -> Optional[str]:
        return self._lead_parties.get(bm_unit)
