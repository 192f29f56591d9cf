# bloodwork/routes/report_routes.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from bloodwork.db.session import get_db
from bloodwork.models.lab_report import LabReport
from bloodwork.schemas.reports import CoreBiomarkersOut, LabReportCreate, LabReportOut
from bloodwork.services.biomarker_mapping import resolve_core_biomarkers

router = APIRouter(prefix="/api/reports", tags=["reports"])
logger = logging.getLogger("bloodwork")


def _get_or_404(db: Session, report_id: str) -> LabReport:
    item = db.query(LabReport).filter(LabReport.id == report_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Lab report not found")
    return item


@router.get("", response_model=List[LabReportOut], response_model_exclude_none=True)
def list_reports(db: Session = Depends(get_db)):
    return (
        db.query(LabReport)
        .order_by(LabReport.date_iso.desc(), LabReport.created_at.desc())
        .all()
    )


@router.post(
    "",
    response_model=LabReportOut,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def create_report(payload: LabReportCreate, db: Session = Depends(get_db)):
    rows = [row.model_dump(by_alias=True, exclude_none=True) for row in payload.additional_biomarkers]

    item = LabReport(
        date_iso=payload.date_iso,
        title=payload.title,
        biomarkers=dict(payload.biomarkers),
        additional_biomarkers=rows,
        notes=payload.notes,
        raw_text=payload.raw_text,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    logger.info({"function": "create_report", "report_id": item.id, "rows": len(rows)})
    return item


@router.get("/{report_id}", response_model=LabReportOut, response_model_exclude_none=True)
def get_report(report_id: str, db: Session = Depends(get_db)):
    return _get_or_404(db, report_id)


@router.get("/{report_id}/core", response_model=CoreBiomarkersOut)
def get_core_biomarkers(report_id: str, db: Session = Depends(get_db)):
    """Core values with gaps filled from mapped extracted rows."""
    item = _get_or_404(db, report_id)
    merged = resolve_core_biomarkers(item.biomarkers or {}, item.additional_biomarkers or [])
    return {"id": item.id, "biomarkers": merged}


@router.delete("/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_report(report_id: str, db: Session = Depends(get_db)):
    item = _get_or_404(db, report_id)
    db.delete(item)
    db.commit()
    return None
