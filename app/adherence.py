import calendar
import math
import re
from datetime import date, datetime
from typing import Iterable

from app.models import Medication, MedicationLog

FREQUENCIES = {
    "daily": "Once daily",
    "twice_daily": "Twice daily",
    "weekly": "Weekly",
    "as_needed": "As needed",
}
DEFAULT_TIMES = ["08:00"]
STREAK_WINDOW_DAYS = 7

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def normalize_time(value) -> str | None:
    match = _TIME_RE.match(str(value or "").strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def normalize_times(values) -> list[str]:
    if isinstance(values, str):
        values = [part for part in values.split(",")]
    normalized = []
    for value in values or []:
        time_value = normalize_time(value)
        if time_value and time_value not in normalized:
            normalized.append(time_value)
    return normalized


def normalize_frequency(value) -> str:
    key = str(value or "").strip().lower()
    return key if key in FREQUENCIES else "daily"


def build_daily_schedule(
    medications: Iterable[Medication],
    logs: Iterable[MedicationLog],
    day: date,
) -> list[dict]:
    """One entry per (medication, scheduled time), ordered by time.

    A dose counts as taken only when a log for the same medication, time and
    day says so.
    """
    by_key = {(log.medication_id, log.scheduled_time): log for log in logs if log.day == day}
    entries = []
    for med in medications:
        if not med.is_active_on(day):
            continue
        for time_value in med.times or []:
            log = by_key.get((med.id, time_value))
            entries.append(
                {
                    "medication_id": med.id,
                    "med_name": med.display_name(),
                    "dosage": med.dosage or med.strength or "",
                    "scheduled_time": time_value,
                    "day": day.isoformat(),
                    "taken": bool(log and log.taken),
                    "taken_at": log.taken_at.isoformat() if log and log.taken_at else None,
                    "log_id": log.id if log else None,
                }
            )
    entries.sort(key=lambda entry: (entry["scheduled_time"], entry["med_name"]))
    return entries


def adherence_stats(entries: list[dict], *, now: datetime | None = None, day: date | None = None) -> dict:
    now = now or datetime.now()
    day = day or now.date()
    total = len(entries)
    taken = sum(1 for entry in entries if entry["taken"])

    next_dose = None
    if day >= now.date():
        cutoff = now.strftime("%H:%M") if day == now.date() else "00:00"
        next_dose = next(
            (e for e in entries if not e["taken"] and e["scheduled_time"] >= cutoff),
            None,
        )

    return {
        "taken": taken,
        "total": total,
        "pending": total - taken,
        "progress_pct": round(taken / total * 100, 1) if total else 0,
        "streak": math.floor(taken / max(total, 1) * STREAK_WINDOW_DAYS),
        "next_dose": next_dose,
    }


def toggle_dose(log: MedicationLog | None, *, medication: Medication, day: date, scheduled_time: str, user_id: int):
    """Return the log for a dose after flipping it; a missing log becomes a taken one."""
    now = datetime.utcnow()
    if log is None:
        return MedicationLog(
            user_id=user_id,
            medication_id=medication.id,
            day=day,
            scheduled_time=scheduled_time,
            med_name=medication.display_name(),
            dosage=medication.dosage or medication.strength,
            taken=True,
            taken_at=now,
        )
    log.taken = not log.taken
    log.taken_at = now if log.taken else None
    return log


def month_grid(year: int, month: int) -> list[int | None]:
    """Day numbers of a month with leading blanks for a Sunday-first week."""
    first_weekday, days_in_month = calendar.monthrange(year, month)
    leading = (first_weekday + 1) % 7
    return [None] * leading + list(range(1, days_in_month + 1))


def calendar_for_month(
    medications: list[Medication],
    logs: list[MedicationLog],
    year: int,
    month: int,
) -> dict:
    logs_by_day: dict[date, list[MedicationLog]] = {}
    for log in logs:
        logs_by_day.setdefault(log.day, []).append(log)

    cells = []
    for day_number in month_grid(year, month):
        if day_number is None:
            cells.append(None)
            continue
        current = date(year, month, day_number)
        doses = build_daily_schedule(medications, logs_by_day.get(current, []), current)
        cells.append({"day": day_number, "date": current.isoformat(), "doses": doses})

    return {
        "year": year,
        "month": month,
        "month_name": calendar.month_name[month],
        "weekdays": ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"],
        "cells": cells,
    }


def calendar_events(medication: Medication, *, today: date | None = None) -> list[dict]:
    start_day = medication.start_date or today or date.today()
    title = f"{medication.display_name()} - {medication.dosage or medication.strength or ''}".rstrip(" -")
    return [
        {
            "title": title,
            "start": f"{start_day.isoformat()}T{time_value}",
            "end": f"{start_day.isoformat()}T{time_value}",
            "description": medication.notes or "",
        }
        for time_value in medication.times or []
    ]
