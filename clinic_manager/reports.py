"""Monthly financial report: appointment lines folded into per-patient totals."""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .money import ZERO, format_currency, to_cents

PORTUGUESE_MONTH_NAMES: Tuple[str, ...] = (
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
)


@dataclass(frozen=True)
class ReportLine:
    id: str
    date: date
    patient_name: str
    value: Decimal

    @property
    def formatted_value(self) -> str:
        return format_currency(self.value)


@dataclass
class PatientTotal:
    patient_name: str
    total_value: Decimal = ZERO
    appointments: List[ReportLine] = field(default_factory=list)

    @property
    def formatted_total(self) -> str:
        return format_currency(self.total_value)


@dataclass
class FinancialReport:
    start_date: date
    end_date: date
    patient_totals: List[PatientTotal]
    total_value: Decimal

    @property
    def formatted_total(self) -> str:
        return format_currency(self.total_value)


def month_window(reference: date) -> Tuple[date, date]:
    """Return the first and last day (inclusive) of ``reference``'s month."""
    last_day = calendar.monthrange(reference.year, reference.month)[1]
    return reference.replace(day=1), reference.replace(day=last_day)


def parse_month(value: Optional[str], today: date) -> date:
    """Parse a ``YYYY-MM`` month selector; ``None`` means the month of ``today``."""
    if not value:
        return today
    try:
        year_text, month_text = value.strip().split("-", 1)
        return date(int(year_text), int(month_text), 1)
    except ValueError:
        raise ValueError(f"Mês inválido: {value!r} (use AAAA-MM)") from None


def month_label(reference: date) -> str:
    """Return e.g. ``outubro-2026`` for use in export filenames."""
    return f"{PORTUGUESE_MONTH_NAMES[reference.month - 1]}-{reference.year}"


def flatten_appointments(records: Iterable[Mapping[str, Any]]) -> List[ReportLine]:
    """Turn joined appointment records into report lines, skipping orphans.

    A record is an orphan when its embedded patient is missing or has no name.
    """
    lines: List[ReportLine] = []
    for record in records:
        patient = record.get("patient")
        if not patient or not patient.get("name"):
            continue
        appointment_date = record["date"]
        if isinstance(appointment_date, str):
            appointment_date = date.fromisoformat(appointment_date)
        lines.append(
            ReportLine(
                id=record["id"],
                date=appointment_date,
                patient_name=patient["name"],
                value=to_cents(record.get("value")),
            )
        )
    return lines


def aggregate_by_patient(lines: Iterable[ReportLine]) -> Tuple[List[PatientTotal], Decimal]:
    """Group lines by patient name in first-appearance order.

    Patients sharing a display name end up in the same group. Returns the groups
    and the grand total; both are exact sums of cent-rounded values.
    """
    totals: Dict[str, PatientTotal] = {}
    for line in lines:
        group = totals.get(line.patient_name)
        if group is None:
            group = totals[line.patient_name] = PatientTotal(patient_name=line.patient_name)
        group.appointments.append(line)
        group.total_value += to_cents(line.value)
    patient_totals = list(totals.values())
    grand_total = sum((group.total_value for group in patient_totals), ZERO)
    return patient_totals, grand_total


def build_financial_report(
    records: Iterable[Mapping[str, Any]],
    start_date: date,
    end_date: date,
) -> FinancialReport:
    lines = [line for line in flatten_appointments(records) if start_date <= line.date <= end_date]
    patient_totals, grand_total = aggregate_by_patient(lines)
    return FinancialReport(
        start_date=start_date,
        end_date=end_date,
        patient_totals=patient_totals,
        total_value=grand_total,
    )
