# bloodwork/schemas/extraction.py
import math
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExtractedBiomarkerRow(BaseModel):
    """One biomarker recovered from a lab report."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, description="Canonical or cleaned test name.")
    value: float = Field(..., description="Numeric result; always finite.")
    mapped_key: Optional[str] = Field(
        None,
        alias="mappedKey",
        description="Core biomarker key; absent for extra/unmapped markers.",
    )
    unit: Optional[str] = None
    reference_range: Optional[str] = Field(None, alias="referenceRange")
    status: Optional[str] = None

    @field_validator("value")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("value must be a finite number")
        return value


class ExtractionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    all_biomarkers: List[ExtractedBiomarkerRow] = Field(default_factory=list, alias="allBiomarkers")
    warnings: List[str] = Field(default_factory=list)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class TextExtractionRequest(BaseModel):
    text: str = Field(..., max_length=200_000, description="Plain or OCR text of a lab report.")
    use_ai: bool = Field(True, description="Try AI-assisted extraction before the rule-based parser.")


class ExtractionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    all_biomarkers: List[ExtractedBiomarkerRow] = Field(default_factory=list, alias="allBiomarkers")
    warnings: List[str] = Field(default_factory=list)
    source: str = Field("rules", description="'ai' or 'rules'.")
    file_name: Optional[str] = Field(None, alias="fileName")
    file_type: Optional[str] = Field(None, alias="fileType")
