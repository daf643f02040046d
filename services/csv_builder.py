# services/csv_builder.py
from __future__ import annotations
from typing import Any
import csv, io, os, datetime, decimal

import services.config as config
import yaml  # pip install pyyaml

def _get_attr_path(root: Any, path: str):
    cur = root
    for part in path.split("."):
        if cur is None:
            return None
        if isinstance(cur, dict):
            cur = cur.get(part)
        else:
            cur = getattr(cur, part, None)
    return cur

def _fmt_value(val: Any, col_cfg: dict) -> Any:
    if val is None:
        return col_cfg.get("default", "")
    # date formatting
    if "date_format" in col_cfg:
        if isinstance(val, (datetime.datetime, datetime.date)):
            return val.strftime(col_cfg["date_format"])
        try:
            dt = datetime.datetime.fromisoformat(str(val).replace("Z", ""))
            return dt.strftime(col_cfg["date_format"])
        except ValueError:
            return str(val)

    # booleans before numbers: bool is an int subclass
    if isinstance(val, bool):
        return "true" if val else "false"

    # numeric rounding
    if isinstance(val, (int, float, decimal.Decimal)):
        x = decimal.Decimal(str(val))
        if "round" in col_cfg:
            q = decimal.Decimal(10) ** (-int(col_cfg["round"]))
            x = x.quantize(q, rounding=decimal.ROUND_HALF_UP)
        # keep as plain string to avoid locale issues
        return format(x, "f")

    return str(val)

DEFAULT_MAP = {
    "delimiter": ",",
    "quotechar": '"',
    "columns": [
        {"name": "ID", "source": "bill.id"},
        {"name": "Arquivo", "source": "bill.filename"},
        {"name": "Data da Conta", "source": "bill.bill_date", "date_format": "%d/%m/%Y"},
        {"name": "Total a Pagar (R$)", "source": "bill.total_amount", "round": 2},
        {"name": "Consumo (kWh)", "source": "bill.energy_consumption", "round": 2},
        {"name": "Valor Corrigido SELIC (R$)", "source": "bill.corrected_amount", "round": 2},
        {"name": "Status", "source": "bill.extraction_status"},
        {"name": "Erro", "source": "bill.error_message"},
    ],
    "summary": True,
}

SUMMARY_LABELS = [
    ("total_bills", "Total de contas"),
    ("successful_extractions", "Extrações com sucesso"),
    ("failed_extractions", "Extrações com erro"),
    ("total_original_amount", "Total original (R$)"),
    ("total_corrected_amount", "Total corrigido (R$)"),
    ("total_energy_consumption", "Consumo total (kWh)"),
]

def _load_map() -> dict:
    path = config.REPORT_CSV_MAP_FILE
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or DEFAULT_MAP
    return DEFAULT_MAP

def build_report_csv(report: dict, cfg: dict | None = None) -> bytes:
    """
    Render the {bills, summary} report as CSV: one row per bill, then an
    optional summary block separated by a blank row.
    """
    cfg = cfg or _load_map()
    cols = cfg.get("columns", DEFAULT_MAP["columns"])

    out = io.StringIO(newline="")
    writer = csv.writer(out, delimiter=cfg.get("delimiter", ","), quotechar=cfg.get("quotechar", '"'))
    writer.writerow([c["name"] for c in cols])

    for bill in report["bills"]:
        row = []
        for c in cols:
            src = c.get("source", "")
            if src.startswith("bill."):
                val = _get_attr_path(bill, src[len("bill."):])
            elif src:
                val = _get_attr_path({"bill": bill, "summary": report["summary"]}, src)
            else:
                val = None
            row.append(_fmt_value(val, c))
        writer.writerow(row)

    if cfg.get("summary", True):
        writer.writerow([])
        for key, label in SUMMARY_LABELS:
            writer.writerow([label, _fmt_value(report["summary"].get(key), {"round": 2} if "amount" in key or "consumption" in key else {})])

    # BOM so spreadsheet apps pick up UTF-8 accents
    return out.getvalue().encode("utf-8-sig")
