# bloodwork/schemas/reports.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from bloodwork.schemas.extraction import ExtractedBiomarkerRow


class LabReportCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_iso: str = Field(..., alias="dateISO", pattern=r"^\d{4}-\d{2}-\d{2}")
    title: Optional[str] = Field(None, max_length=255)
    biomarkers: Dict[str, float] = Field(default_factory=dict)
    additional_biomarkers: List[ExtractedBiomarkerRow] = Field(default_factory=list, alias="additionalBiomarkers")
    notes: Optional[str] = None
    raw_text: Optional[str] = Field(None, alias="rawText")


class LabReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    date_iso: str = Field(..., alias="dateISO")
    title: Optional[str] = None
    biomarkers: Dict[str, float] = Field(default_factory=dict)
    additional_biomarkers: List[ExtractedBiomarkerRow] = Field(default_factory=list, alias="additionalBiomarkers")
    notes: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")


class CoreBiomarkersOut(BaseModel):
    id: str
    biomarkers: Dict[str, float]
