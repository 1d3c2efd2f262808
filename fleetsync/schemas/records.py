"""Inspection history schemas and the wire-to-record transform"""

import math
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


# Fixed leading columns shared by every inspection sheet
BASE_HEADERS = [
    'id', 'timestamp', 'truckNo', 'trailerNo', 'inspectedBy', 'driverName',
    'location', 'odometer', 'rate', 'remarks', 'inspectorSignature',
    'driverSignature', 'photoFront', 'photoLS', 'photoRS', 'photoBack',
    'photoDamage', 'jobCard',
]

VALIDATION_SHEET = "Validation_Data"

# General keeps the rating in its base column; the other sheets carry it one to the right
GENERAL_SHEET = "General"
GENERAL_RATE_COLUMN = 8
MODULE_RATE_COLUMN = 9


def rate_column(sheet: str) -> int:
    """Index of the rating cell in a row of ``sheet``."""
    return GENERAL_RATE_COLUMN if sheet == GENERAL_SHEET else MODULE_RATE_COLUMN


def parse_rating(value: Any) -> Optional[float]:
    """Return a numeric rating, or None for blank, boolean, non-numeric or NaN cells."""
    if value is None or isinstance(value, bool) or str(value).strip() == "":
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(rate):
        return None
    return rate


class InspectionModule(str, Enum):
    """Logical resources the history cache is scoped by"""

    GENERAL = "general"
    PETROLEUM = "petroleum"
    PETROLEUM_V2 = "petroleum_v2"
    ACID = "acid"

    @property
    def sheet(self) -> str:
        return MODULE_SHEETS[self]


MODULE_SHEETS: Dict[InspectionModule, str] = {
    InspectionModule.GENERAL: GENERAL_SHEET,
    InspectionModule.PETROLEUM: "Petroleum",
    InspectionModule.PETROLEUM_V2: "Petroleum_V2",
    InspectionModule.ACID: "Acid",
}


class InspectionRecord(BaseModel):
    """One inspection row, base columns by name and checklist columns in order"""

    id: Any = None
    timestamp: Any = None
    truckNo: Any = None
    trailerNo: Any = None
    inspectedBy: Any = None
    driverName: Any = None
    location: Any = None
    odometer: Any = None
    rate: Any = None
    remarks: Any = None
    inspectorSignature: Any = None
    driverSignature: Any = None
    photoFront: Any = None
    photoLS: Any = None
    photoRS: Any = None
    photoBack: Any = None
    photoDamage: Any = None
    jobCard: Any = None
    checklist: List[Any] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: List[Any], sheet: str = GENERAL_SHEET) -> "InspectionRecord":
        values = {
            header: row[index] if index < len(row) else None
            for index, header in enumerate(BASE_HEADERS)
        }
        index = rate_column(sheet)
        values["rate"] = row[index] if index < len(row) else None
        return cls(**values, checklist=list(row[len(BASE_HEADERS):]))


class ValidationLists(BaseModel):
    """Enumerations used for input validation elsewhere in the client"""

    trucks: List[Any] = Field(default_factory=list)
    trailers: List[Any] = Field(default_factory=list)
    drivers: List[Any] = Field(default_factory=list)
    inspectors: List[Any] = Field(default_factory=list)
    locations: List[Any] = Field(default_factory=list)
    positions: List[Any] = Field(default_factory=list)

    @classmethod
    def from_document(cls, section: Mapping[str, Any]) -> "ValidationLists":
        return cls(
            trucks=section.get("Truck_Reg_No") or [],
            trailers=section.get("Trailer_Reg_No") or [],
            drivers=section.get("Driver_Name") or [],
            inspectors=section.get("Inspector_Name") or [],
            locations=section.get("Location") or [],
            positions=section.get("Position") or [],
        )


class CacheEntry(BaseModel):
    """Cached history for one (module, identity) pair"""

    scope_key: str
    fetched_at: float
    payload: List[InspectionRecord] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class HistoryStats(BaseModel):
    """Summary numbers shown above the history list"""

    total: int = 0
    pass_rate: int = 0


def parse_history(document: Mapping[str, Any], module: InspectionModule) -> List[InspectionRecord]:
    """
    Convert a module's row-set into records, newest first.

    The first row is a header and is skipped. A missing or non-list row-set
    yields an empty history.
    """
    rows = document.get(module.sheet)
    if not isinstance(rows, list) or len(rows) <= 1:
        return []
    records = [
        InspectionRecord.from_row(row, module.sheet)
        for row in rows[1:]
        if isinstance(row, list)
    ]
    records.reverse()
    return records


def parse_validation_lists(document: Mapping[str, Any]) -> Optional[ValidationLists]:
    """Return the validation side-channel, or None if absent."""
    section = document.get(VALIDATION_SHEET)
    if not section:
        return None
    return ValidationLists.from_document(section)


def history_stats(records: List[InspectionRecord]) -> HistoryStats:
    """Count records and the share rated 4 or better."""
    if not records:
        return HistoryStats()
    total = len(records)
    good = 0
    for record in records:
        rate = parse_rating(record.rate)
        if rate is not None and rate >= 4:
            good += 1
    return HistoryStats(total=total, pass_rate=round(good / total * 100))
