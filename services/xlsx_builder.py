# services/xlsx_builder.py
from __future__ import annotations
import io
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from services.csv_builder import SUMMARY_LABELS

BILL_COLUMNS = [
    ("id", "ID", None),
    ("filename", "Arquivo", None),
    ("bill_date", "Data da Conta", "DD/MM/YYYY"),
    ("total_amount", "Total a Pagar (R$)", "#,##0.00"),
    ("energy_consumption", "Consumo (kWh)", "#,##0.00"),
    ("corrected_amount", "Valor Corrigido SELIC (R$)", "#,##0.00"),
    ("extraction_status", "Status", None),
    ("error_message", "Erro", None),
]

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(start_color="E0E0E0", end_color="E0E0E0", fill_type="solid")


def _cell_value(v: Any) -> Any:
    # openpyxl has no Decimal cell type
    if isinstance(v, Decimal):
        return float(v)
    if isinstance(v, datetime) and v.tzinfo is not None:
        return v.replace(tzinfo=None)
    return v


def build_report_xlsx(report: dict) -> bytes:
    """Two sheets: 'Contas' with one row per bill and 'Resumo' with the batch totals."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Contas"

    for col, (_, label, _) in enumerate(BILL_COLUMNS, start=1):
        c = ws.cell(row=1, column=col, value=label)
        c.font = HEADER_FONT
        c.fill = HEADER_FILL

    for row, bill in enumerate(report["bills"], start=2):
        for col, (key, _, fmt) in enumerate(BILL_COLUMNS, start=1):
            c = ws.cell(row=row, column=col, value=_cell_value(bill.get(key)))
            if fmt and isinstance(c.value, (int, float, date)):
                c.number_format = fmt

    for col, (key, label, _) in enumerate(BILL_COLUMNS, start=1):
        widest = max([len(label)] + [len(str(b.get(key) or "")) for b in report["bills"]])
        ws.column_dimensions[get_column_letter(col)].width = min(widest + 2, 60)
    ws.freeze_panes = "A2"

    summary = wb.create_sheet("Resumo")
    for row, (key, label) in enumerate(SUMMARY_LABELS, start=1):
        summary.cell(row=row, column=1, value=label).font = HEADER_FONT
        c = summary.cell(row=row, column=2, value=_cell_value(report["summary"].get(key)))
        if isinstance(c.value, float):
            c.number_format = "#,##0.00"
    summary.column_dimensions["A"].width = 28
    summary.column_dimensions["B"].width = 18

    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()
