"""
Serial number decoder for portable buildings.

Six-token form:  P5-MS-507320-0612-101725-NM3   (trailing R on the plant code = repo)
Five-token form: 5-MS-462975-0612-090224R       (older tags, R on the date = repo)

Tokens:
  P5      series prefix
  MS      building type code (see BUILDING_TYPES)
  507320  unit serial, six digits, opaque
  0612    width/length in feet (06 x 12)
  101725  date built, MMDDYY
  NM3     plant code

Decoding is pure: the same string always yields the same result and a
malformed string yields `DecodedAttributes(valid=False)` rather than an
exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

BUILDING_TYPES: Dict[str, str] = {
    "MS": "Mini Shed",
    "ES": "Econo Shed",
    "LB": "Lofted Barn",
    "LBC": "Lofted Barn Cabin",
    "SLB": "Side Lofted Barn",
    "UB": "Utility Building",
    "UXS": "Utility Building",
    "UX": "Utility Shed",
    "US": "Urban Shed",
    "UR": "Urban Shed",
    "CB": "Cabin",
    "C": "Cabin",
    "DS": "Dormer Shed",
    "G": "Garage",
    "GR": "Garage",
    "GSX": "Garden Shed",
    "SH": "Storage Shed",
    "B": "Barn",
    "PB": "Porch Barn",
    "LP": "Lofted Porch",
    "CPLBC": "Corner Porch Lofted Barn Cabin",
}

REPO_MARKER = "R"


@dataclass(frozen=True)
class DecodedAttributes:
    valid: bool
    type_code: Optional[str] = None
    type_name: Optional[str] = None
    unit_serial: Optional[str] = None
    width: Optional[int] = None
    length: Optional[int] = None
    date_built: Optional[date] = None
    plant_code: Optional[str] = None
    status: Optional[str] = None

    @property
    def size_display(self) -> Optional[str]:
        if not self.valid:
            return None
        return f"{self.width}x{self.length}"

    @property
    def date_display(self) -> Optional[str]:
        if not self.valid:
            return None
        return self.date_built.strftime("%m/%d/%y")

    @property
    def is_repo(self) -> bool:
        return self.status == "repo"

    @property
    def title(self) -> Optional[str]:
        if not self.valid:
            return None
        return f"{self.size_display} {self.type_name}"

    def as_dict(self) -> Dict[str, Any]:
        if not self.valid:
            return {"valid": False}
        return {
            "valid": True,
            "type": {"code": self.type_code, "name": self.type_name},
            "size": {
                "width": self.width,
                "length": self.length,
                "display": self.size_display,
            },
            "dateBuilt": {"display": self.date_display},
            "status": self.status,
        }


INVALID = DecodedAttributes(valid=False)


def _is_digits(token: str, length: int) -> bool:
    return len(token) == length and token.isascii() and token.isdigit()


def _is_alnum(token: str) -> bool:
    return bool(token) and token.isascii() and token.isalnum()


def _parse_build_date(token: str) -> Optional[date]:
    if not _is_digits(token, 6):
        return None
    month, day, year = int(token[0:2]), int(token[2:4]), int(token[4:6])
    try:
        return date(2000 + year, month, day)
    except ValueError:
        return None


def decode(raw: Any) -> DecodedAttributes:
    if not isinstance(raw, str):
        return INVALID
    parts = raw.strip().split("-")

    if len(parts) == 6:
        series, type_code, unit_serial, size_code, date_code, plant_token = parts
        if not _is_alnum(plant_token):
            return INVALID
        is_repo = plant_token.endswith(REPO_MARKER)
        plant_code = plant_token[:-1] if is_repo else plant_token
        if not plant_code:
            return INVALID
    elif len(parts) == 5:
        series, type_code, unit_serial, size_code, date_code = parts
        is_repo = date_code.endswith(REPO_MARKER)
        if is_repo:
            date_code = date_code[:-1]
        plant_code = ""
    else:
        return INVALID

    if not _is_alnum(series):
        return INVALID
    type_name = BUILDING_TYPES.get(type_code)
    if type_name is None:
        return INVALID
    if not _is_digits(unit_serial, 6):
        return INVALID
    if not _is_digits(size_code, 4):
        return INVALID
    built = _parse_build_date(date_code)
    if built is None:
        return INVALID

    return DecodedAttributes(
        valid=True,
        type_code=type_code,
        type_name=type_name,
        unit_serial=unit_serial,
        width=int(size_code[0:2]),
        length=int(size_code[2:4]),
        date_built=built,
        plant_code=plant_code,
        status="repo" if is_repo else "new",
    )


def is_valid_serial(raw: Any) -> bool:
    return decode(raw).valid
