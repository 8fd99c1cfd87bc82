"""Reference Data Service - military pay tables and school ratings by ZIP.

Env vars:
  PAY_TABLES_PATH   - JSON file with pay tables. Required in deployment: no pay table
                      file ships with the app, so the default data/militaryPayTables.json
                      only works if one is placed there. Without it /pay-tables answers 500.
  TEA_TAPR_CSV_URL  - public CSV of campus ratings (columns: zip, campus/school, district, rating)
"""
import csv
import io
import json
import os
import re
from typing import Dict, List, Optional

import requests

DEFAULT_PAY_TABLES_PATH = os.path.join("data", "militaryPayTables.json")
RATING_NOTE = (
    "Ratings reflect the most recent TEA Accountability release available "
    "in the TAPR dataset you configured."
)


class ReferenceDataError(Exception):
    pass


def _find_column(header: List[str], pattern: str) -> Optional[int]:
    regex = re.compile(pattern, re.IGNORECASE)
    for idx, name in enumerate(header):
        if regex.search(name or ""):
            return idx
    return None


def _cell(row: List[str], idx: Optional[int]) -> str:
    if idx is None or idx >= len(row):
        return ""
    return (row[idx] or "").strip()


def parse_campuses(text: str, zip_code: str) -> List[Dict]:
    reader = csv.reader(io.StringIO(text))
    header = next(reader, None)
    if not header:
        return []
    idx_zip = _find_column(header, r"zip")
    idx_name = _find_column(header, r"campus|school")
    idx_district = _find_column(header, r"district")
    idx_rating = _find_column(header, r"rating|score|acct")
    if idx_zip is None:
        return []
    campuses = []
    for row in reader:
        if not row:
            continue
        if re.sub(r"[^0-9]", "", _cell(row, idx_zip)) != zip_code:
            continue
        campuses.append({
            "name": _cell(row, idx_name),
            "district": _cell(row, idx_district),
            "rating": _cell(row, idx_rating),
        })
    return campuses


class ReferenceService:
    def __init__(self, pay_tables_path: Optional[str] = None, schools_csv_url: Optional[str] = None):
        self.pay_tables_path = pay_tables_path or os.getenv("PAY_TABLES_PATH") or DEFAULT_PAY_TABLES_PATH
        self.schools_csv_url = schools_csv_url if schools_csv_url is not None else os.getenv("TEA_TAPR_CSV_URL", "")

    def load_pay_tables(self) -> Dict:
        try:
            with open(self.pay_tables_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ReferenceDataError("Unable to load military pay tables.") from e
        if not isinstance(data, dict):
            raise ReferenceDataError("Unable to load military pay tables.")
        return data

    def schools_by_zip(self, zip_code: str) -> Dict:
        result = {"zip": zip_code, "campuses": [], "ratingNote": RATING_NOTE}
        if not self.schools_csv_url:
            result["source"] = "Upload TEA_TAPR_CSV_URL (public CSV) for live results."
            return result
        try:
            response = requests.get(self.schools_csv_url, timeout=20)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ReferenceDataError("Unable to fetch school ratings.") from e
        result["campuses"] = parse_campuses(response.text, zip_code)
        result["source"] = self.schools_csv_url
        return result
