from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from ..db import engine
from ..errors import NotFound, ValidationFailed
from ..models import MONTHS, ElectricityReading, User, utcnow
from ..policy import require_action
from ..resources import paginated, reading_resource
from ..schemas import END_UNIT_MESSAGE, ReadingCreate, ReadingUpdate

router = APIRouter(prefix="/api/electricity-readings", tags=["electricity-readings"])

manage_readings = require_action("manage_readings")


def _sort_key(reading: ElectricityReading):
    month_index = MONTHS.index(reading.month) if reading.month in MONTHS else -1
    return reading.year, month_index


def _render(session: Session, reading: ElectricityReading):
    recorder = session.get(User, reading.recorded_by) if reading.recorded_by else None
    return reading_resource(reading, recorder)


def _ensure_unique(session: Session, month: str, year: int, exclude_id: Optional[int] = None):
    stmt = select(ElectricityReading).where(
        ElectricityReading.month == month, ElectricityReading.year == year
    )
    existing = session.exec(stmt).first()
    if existing and existing.id != exclude_id:
        message = f"A reading for {month} {year} already exists."
        raise ValidationFailed(message, {"month": [message]})


def get_reading_or_404(session: Session, reading_id: int) -> ElectricityReading:
    reading = session.get(ElectricityReading, reading_id)
    if not reading:
        raise NotFound("Electricity reading not found")
    return reading


@router.get("")
def list_readings(
    month: Optional[str] = None,
    year: Optional[int] = None,
    paginate: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    current_user: User = Depends(manage_readings),
):
    with Session(engine) as session:
        stmt = select(ElectricityReading)
        if month:
            stmt = stmt.where(ElectricityReading.month == month)
        if year:
            stmt = stmt.where(ElectricityReading.year == year)
        readings = sorted(session.exec(stmt).all(), key=_sort_key, reverse=True)
        if not paginate:
            return {"data": [_render(session, r) for r in readings]}
        window = readings[(page - 1) * per_page : page * per_page]
        return paginated([_render(session, r) for r in window], page, per_page, len(readings))


@router.get("/by-month-year")
def reading_by_month_year(
    month: str = Query(..., min_length=1),
    year: int = Query(..., ge=2000),
    current_user: User = Depends(manage_readings),
):
    if month not in MONTHS:
        raise ValidationFailed("Unknown month.", {"month": ["Unknown month."]})
    with Session(engine) as session:
        reading = session.exec(
            select(ElectricityReading).where(
                ElectricityReading.month == month, ElectricityReading.year == year
            )
        ).first()
        return {"data": _render(session, reading) if reading else None}


@router.get("/{reading_id}")
def show_reading(reading_id: int, current_user: User = Depends(manage_readings)):
    with Session(engine) as session:
        return {"data": _render(session, get_reading_or_404(session, reading_id))}


@router.post("", status_code=201)
def store_reading(payload: ReadingCreate, current_user: User = Depends(manage_readings)):
    with Session(engine) as session:
        _ensure_unique(session, payload.month, payload.year)
        reading = ElectricityReading(
            month=payload.month,
            year=payload.year,
            start_unit=payload.start_unit,
            end_unit=payload.end_unit,
            recorded_by=current_user.id,
        )
        session.add(reading)
        session.commit()
        session.refresh(reading)
        return {"data": _render(session, reading)}


@router.api_route("/{reading_id}", methods=["PUT", "PATCH"])
def edit_reading(
    reading_id: int,
    payload: ReadingUpdate,
    current_user: User = Depends(manage_readings),
):
    changes = payload.model_dump(exclude_unset=True)
    with Session(engine) as session:
        reading = get_reading_or_404(session, reading_id)
        for field in ("month", "year", "start_unit"):
            if changes.get(field) is None:
                changes.pop(field, None)

        start = changes.get("start_unit", reading.start_unit)
        end = changes.get("end_unit", reading.end_unit)
        if end is not None and start is not None and end < start:
            raise ValidationFailed(END_UNIT_MESSAGE, {"end_unit": [END_UNIT_MESSAGE]})
        _ensure_unique(
            session,
            changes.get("month", reading.month),
            changes.get("year", reading.year),
            exclude_id=reading.id,
        )

        for field, value in changes.items():
            setattr(reading, field, value)
        reading.updated_at = utcnow()
        session.add(reading)
        session.commit()
        session.refresh(reading)
        return {"data": _render(session, reading)}


@router.delete("/{reading_id}")
def destroy_reading(reading_id: int, current_user: User = Depends(manage_readings)):
    with Session(engine) as session:
        session.delete(get_reading_or_404(session, reading_id))
        session.commit()
    return {"message": "Electricity reading deleted."}
