import sys
from datetime import date
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from clinic_manager import database
from clinic_manager.app import create_app
from clinic_manager.export import (
    HEADERS,
    SHEET_TITLE,
    XLSX_MEDIA_TYPE,
    export_filename,
    export_report,
    report_rows,
)
from clinic_manager.reports import FinancialReport, ReportLine, aggregate_by_patient


def _sample_report() -> FinancialReport:
    lines = [
        ReportLine(id="1", date=date(2026, 10, 2), patient_name="Ana", value=Decimal("100.00")),
        ReportLine(id="2", date=date(2026, 10, 3), patient_name="Bruno", value=Decimal("75.25")),
        ReportLine(id="3", date=date(2026, 10, 4), patient_name="Ana", value=Decimal("50.50")),
    ]
    groups, total = aggregate_by_patient(lines)
    return FinancialReport(
        start_date=date(2026, 10, 1),
        end_date=date(2026, 10, 31),
        patient_totals=groups,
        total_value=total,
    )


def test_report_rows_layout():
    assert report_rows(_sample_report()) == [
        ("Ana", "02/10/2026", "R$ 100.00"),
        ("Ana", "04/10/2026", "R$ 50.50"),
        ("Bruno", "03/10/2026", "R$ 75.25"),
        ("Total Ana:", "", "R$ 150.50"),
        ("Total Bruno:", "", "R$ 75.25"),
        ("Total Geral:", "", "R$ 225.75"),
    ]


def test_export_produces_a_readable_workbook():
    workbook = load_workbook(BytesIO(export_report(_sample_report())))
    sheet = workbook.active

    assert sheet.title == SHEET_TITLE
    rows = [tuple(cell if cell is not None else "" for cell in row) for row in sheet.iter_rows(values_only=True)]
    assert rows[0] == HEADERS
    assert rows[-1] == ("Total Geral:", "", "R$ 225.75")
    assert len(rows) == 7
    assert sheet["A1"].font.bold
    assert sheet.column_dimensions["A"].width == 30
    assert sheet.column_dimensions["C"].width == 15


def test_export_of_an_empty_month():
    report = FinancialReport(
        start_date=date(2026, 2, 1),
        end_date=date(2026, 2, 28),
        patient_totals=[],
        total_value=Decimal("0.00"),
    )
    assert report_rows(report) == [("Total Geral:", "", "R$ 0.00")]


def test_export_filename_uses_portuguese_month():
    assert export_filename(date(2026, 10, 1)) == "relatorio-financeiro-outubro-2026.xlsx"
    assert export_filename(date(2027, 3, 1)) == "relatorio-financeiro-março-2027.xlsx"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    """Provide an authenticated TestClient backed by an isolated database."""
    db_path = tmp_path / "test.db"
    monkeypatch.setattr(database, "DB_PATH", db_path)
    app = create_app()
    with TestClient(app) as test_client:
        test_client.post("/auth/sign-up", json={"email": "doctor@example.com", "password": "secret123"})
        login = test_client.post("/auth/sign-in", json={"email": "doctor@example.com", "password": "secret123"})
        assert login.status_code == 200
        yield test_client


def test_export_endpoint_serves_xlsx(client: TestClient):
    patient = client.post("/patients", json={"name": "Ana", "phone": "11987654321", "email": "ana@example.com"})
    client.post(
        "/appointments",
        json={"patient_id": patient.json()["id"], "date": "2026-03-10", "time": "09:00", "value": "120.00"},
    )

    response = client.get("/reports/financial/export", params={"month": "2026-03"})
    assert response.status_code == 200
    assert response.headers["content-type"] == XLSX_MEDIA_TYPE
    disposition = response.headers["content-disposition"]
    assert 'filename="relatorio-financeiro-marco-2026.xlsx"' in disposition
    assert quote("relatorio-financeiro-março-2026.xlsx") in disposition

    sheet = load_workbook(BytesIO(response.content)).active
    values = [row for row in sheet.iter_rows(values_only=True)]
    assert values[1] == ("Ana", "10/03/2026", "R$ 120.00")
    assert values[-1][0] == "Total Geral:"
    assert values[-1][2] == "R$ 120.00"
