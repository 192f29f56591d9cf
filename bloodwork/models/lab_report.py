# bloodwork/models/lab_report.py
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON as SA_JSON

from bloodwork.db.session import Base


class LabReport(Base):
    __tablename__ = "lab_reports"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    date_iso: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Core values keyed by core biomarker key (totalChol, ldl, ...).
    biomarkers: Mapped[dict] = mapped_column(SA_JSON, nullable=False, default=dict)
    # Extracted rows as serialized ExtractedBiomarkerRow payloads.
    additional_biomarkers: Mapped[list] = mapped_column(SA_JSON, nullable=False, default=list)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
