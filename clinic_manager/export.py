"""Spreadsheet export for the monthly financial report."""
from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font

from .money import format_currency, format_day
from .reports import FinancialReport, month_label

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SHEET_TITLE = "Relatório Financeiro"
HEADERS = ("Paciente", "Data", "Valor")
COLUMN_WIDTHS = {"A": 30, "B": 15, "C": 15}


def export_filename(reference: date) -> str:
    return f"relatorio-financeiro-{month_label(reference)}.xlsx"


def report_rows(report: FinancialReport) -> List[Sequence[str]]:
    """Return the sheet body: appointment rows, per-patient totals, grand total."""
    rows: List[Sequence[str]] = []
    for patient in report.patient_totals:
        for line in patient.appointments:
            rows.append((line.patient_name, format_day(line.date), format_currency(line.value)))
    for patient in report.patient_totals:
        rows.append((f"Total {patient.patient_name}:", "", format_currency(patient.total_value)))
    rows.append(("Total Geral:", "", format_currency(report.total_value)))
    return rows


def build_workbook(report: FinancialReport) -> Workbook:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = SHEET_TITLE
    sheet.append(HEADERS)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for row in report_rows(report):
        sheet.append(list(row))
    for column, width in COLUMN_WIDTHS.items():
        sheet.column_dimensions[column].width = width
    return workbook


def export_report(report: FinancialReport) -> bytes:
    """Serialize the report as an .xlsx document."""
    buffer = BytesIO()
    build_workbook(report).save(buffer)
    return buffer.getvalue()
