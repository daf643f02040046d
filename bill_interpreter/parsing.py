# bill_interpreter/parsing.py
from __future__ import annotations
import re
import unicodedata
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

DATE_RE = r"(\d{1,2}[./-]\d{1,2}[./-]\d{2,4})"
NUM_RE = r"(\d{1,3}(?:\.\d{3})+(?:,\d+)?|\d+(?:[.,]\d+)?)"

TOTAL_PATTERNS = [
    r"total\s+a\s+pagar\s*[:\-]?\s*(?:r\$)?\s*" + NUM_RE,
    r"valor\s+a\s+pagar\s*[:\-]?\s*(?:r\$)?\s*" + NUM_RE,
    r"total\s+da\s+fatura\s*[:\-]?\s*(?:r\$)?\s*" + NUM_RE,
]
CONSUMPTION_PATTERNS = [
    r"consumo\s+de\s+energia(?:\s+em\s+kwh)?\s*[:\-]?\s*" + NUM_RE + r"\s*(?:kwh)?",
    r"consumo(?:\s+faturado|\s+ativo|\s+total)?\s*[:\-]?\s*" + NUM_RE + r"\s*kwh",
    NUM_RE + r"\s*kwh",
]
DATE_PATTERNS = [
    r"data\s+de\s+emissao\s*[:\-]?\s*" + DATE_RE,
    r"emissao\s*[:\-]?\s*" + DATE_RE,
    r"data\s+da\s+leitura\s*[:\-]?\s*" + DATE_RE,
    r"vencimento\s*[:\-]?\s*" + DATE_RE,
]
REFERENCE_RE = r"(?:referencia|mes\s+de\s+referencia|ref)\s*[:\-]?\s*(\d{1,2})\s*/\s*(\d{4})"


def normalize_text(s: Optional[str]) -> str:
    """Lowercase, strip accents and collapse whitespace, so patterns stay ASCII."""
    if not s:
        return ""
    s = unicodedata.normalize("NFKD", str(s).lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", s).strip()


def parse_amount(x) -> Optional[Decimal]:
    """
    Parse numbers as printed on bills: '1.234,56', '123,45', '123.45', 'R$ 98,76'.
    Returns None when nothing numeric is left.
    """
    if x in (None, "", "-", "NaN"):
        return None
    s = re.sub(r"\s+", "", str(x))
    s = re.sub(r"[^0-9,.\-]", "", s)
    if not s or s in (",", ".", "-"):
        return None
    if "," in s and "." in s:
        s = s.replace(".", "").replace(",", ".")
    elif "," in s:
        s = s.replace(",", ".")
    elif re.fullmatch(r"-?\d{1,3}(?:\.\d{3})+", s):
        # thousands separators only: 1.234 -> 1234
        s = s.replace(".", "")
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def parse_bill_date(s: Optional[str]) -> Optional[date]:
    if not s:
        return None
    s = s.strip()
    m = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})", s)
    if m:
        yy, mm, dd = (int(p) for p in m.groups())
    else:
        parts = [p for p in re.split(r"[./-]", s) if p]
        if len(parts) == 2:
            mm, yy = int(parts[0]), int(parts[1])
            dd = 1
        elif len(parts) == 3:
            dd, mm = int(parts[0]), int(parts[1])
            yy = int("20" + parts[2]) if len(parts[2]) == 2 else int(parts[2])
        else:
            return None
    try:
        return date(yy, mm, dd)
    except ValueError:
        return None


def _first(patterns: list[str], text: str) -> Optional[str]:
    for pat in patterns:
        m = re.search(pat, text)
        if m:
            return m.group(1)
    return None


def find_total_amount(text: str) -> Optional[Decimal]:
    return parse_amount(_first(TOTAL_PATTERNS, normalize_text(text)))


def find_consumption(text: str) -> Optional[Decimal]:
    return parse_amount(_first(CONSUMPTION_PATTERNS, normalize_text(text)))


def find_bill_date(text: str) -> Optional[date]:
    t = normalize_text(text)
    d = parse_bill_date(_first(DATE_PATTERNS, t))
    if d:
        return d
    m = re.search(REFERENCE_RE, t)
    if m:
        d = parse_bill_date(f"{m.group(1)}/{m.group(2)}")
        if d:
            return d
    m = re.search(DATE_RE, t)
    return parse_bill_date(m.group(1)) if m else None
