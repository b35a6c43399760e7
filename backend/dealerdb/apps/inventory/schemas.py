from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class DecodeRequest(BaseModel):
    serial: str


class BuildingRead(BaseModel):
    serial_number: str
    title: Optional[str] = None
    decoded: Dict[str, Any]
    is_repo: bool = False
    price: Optional[float] = None
    location: Optional[str] = None
    lot_name: Optional[str] = None
    status: str
    hidden: bool = False
    lot_location: Optional[str] = None
    version: int = 0


class OverrideRead(BaseModel):
    serial: str
    status: Optional[str] = None
    effective_status: str
    hidden: Optional[bool] = None
    lot_location: Optional[str] = None
    version: int

    class Config:
        from_attributes = True


class OverridePatch(BaseModel):
    status: Optional[Literal["available", "pending", "sold"]] = None
    hidden: Optional[bool] = None
    lot_location: Optional[str] = Field(default=None, alias="lotLocation")
    expected_version: Optional[int] = Field(default=None, ge=0)

    class Config:
        populate_by_name = True
        extra = "forbid"

    def fields(self) -> Dict[str, Any]:
        """Only the fields the caller actually sent; an explicit null clears the field."""
        return self.model_dump(exclude_unset=True, exclude={"expected_version"})


class LotCreate(BaseModel):
    name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LotCredentialsUpdate(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LotRead(BaseModel):
    name: str
    username: str
    last_sync: Optional[datetime] = None
    building_count: int = 0

    class Config:
        from_attributes = True


class LotRemoved(BaseModel):
    name: str
    overrides_removed: int


class SyncRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class SyncResultRead(BaseModel):
    lot_name: str
    imported: int
    skipped: int
    errors: List[str] = []

    class Config:
        from_attributes = True


class SyncAllRead(BaseModel):
    results: Dict[str, SyncResultRead] = {}
    errors: Dict[str, str] = {}


class ImportRequest(BaseModel):
    records: List[Dict[str, Any]]
    lot_name: Optional[str] = None


class ImportResultRead(BaseModel):
    imported: int
    skipped: int
    warnings: List[str] = []

    class Config:
        from_attributes = True


class ImageList(BaseModel):
    serial: str
    images: List[str]


class MainImageRequest(BaseModel):
    url: str


class ReorderRequest(BaseModel):
    url: str
    target_index: int
