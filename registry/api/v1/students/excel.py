"""Roster spreadsheets: parse an uploaded .xlsx into raw import rows, and build the upload template."""

import io
from typing import Dict, List, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.datavalidation import DataValidation

from registry.core.academic_calendar import GRADE_ORDER
from registry.core.enums import Gender

from .schemas import RawRow

STUDENTS_SHEET_NAME = "Students"
GRADES_SHEET_NAME = "Grades"
TEMPLATE_HEADERS = ("id_number", "last_name", "first_name", "grade", "stream", "gender", "track")

# Accepted header spellings per column, compared after _norm_header.
HEADER_ALIASES: Dict[str, tuple] = {
    "id_number": ("id_number", "idnumber", "id", "ת.ז", "ת.ז.", "תז", "תעודת_זהות", "מספר_זהות"),
    "last_name": ("last_name", "lastname", "surname", "family_name", "שם_משפחה"),
    "first_name": ("first_name", "firstname", "given_name", "שם_פרטי"),
    "grade": ("grade", "class", "שכבה", "כיתה"),
    "stream": ("stream", "class_number", "מקבילה", "מספר_כיתה"),
    "gender": ("gender", "sex", "מין", "מגדר"),
    "track": ("track", "major", "מגמה"),
}
REQUIRED_COLUMNS = ("id_number", "last_name", "first_name")


def _norm_header(value) -> str:
    return (str(value).strip().lower() if value is not None else "").replace(" ", "_")


def _cell_str(row: tuple, col: Optional[int]) -> str:
    if col is None or col >= len(row):
        return ""
    v = row[col]
    if v is None:
        return ""
    # Numeric cells (ID numbers, stream) come back as floats from some spreadsheet tools.
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    return str(v).strip()


def _resolve_columns(header_row: tuple) -> Dict[str, Optional[int]]:
    headers = [_norm_header(c) for c in header_row]
    columns: Dict[str, Optional[int]] = {}
    for column, aliases in HEADER_ALIASES.items():
        columns[column] = next((i for i, h in enumerate(headers) if h in aliases), None)
    missing = [c for c in REQUIRED_COLUMNS if columns[c] is None]
    if missing:
        raise ValueError(f"Missing required column(s): {', '.join(missing)}. Found: {headers}")
    return columns


def parse_roster_workbook(content: bytes, max_rows: int) -> List[RawRow]:
    """
    Parse the first sheet into RawRow objects. First row = headers (English or Hebrew names).
    Empty rows are skipped; everything else is passed through untouched for reconciliation.
    Raises ValueError on an unreadable file, a missing required column or too many rows.
    """
    if not content:
        raise ValueError("File is empty")
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ValueError(f"Invalid Excel file: {e}") from e

    try:
        ws = wb.active
        if ws is None:
            raise ValueError("Excel file has no active sheet")
        rows_iter = ws.iter_rows(values_only=True)
        header_row = next(rows_iter, None)
        if not header_row:
            raise ValueError("Excel file has no header row")
        columns = _resolve_columns(header_row)

        rows: List[RawRow] = []
        for row_num, row in enumerate(rows_iter, start=2):
            if not row or all(c is None or (isinstance(c, str) and not c.strip()) for c in row):
                continue
            if len(rows) >= max_rows:
                raise ValueError(f"Maximum {max_rows} data rows allowed")
            rows.append(
                RawRow(
                    id_number=_cell_str(row, columns["id_number"]),
                    last_name=_cell_str(row, columns["last_name"]),
                    first_name=_cell_str(row, columns["first_name"]),
                    grade=_cell_str(row, columns["grade"]),
                    stream=_cell_str(row, columns["stream"]),
                    gender=_cell_str(row, columns["gender"]),
                    track=_cell_str(row, columns["track"]),
                    row_number=row_num,
                )
            )
        return rows
    finally:
        wb.close()


def build_roster_template(max_rows: int) -> bytes:
    """Excel template: Students sheet with grade and gender dropdowns, Grades sheet listing the ordinals."""
    wb = Workbook()
    ws_students = wb.active
    ws_students.title = STUDENTS_SHEET_NAME
    ws_students.append(list(TEMPLATE_HEADERS))

    ws_grades = wb.create_sheet(GRADES_SHEET_NAME)
    ws_grades.append(["grade"])
    for grade in GRADE_ORDER:
        ws_grades.append([grade])

    grade_col = chr(ord("A") + TEMPLATE_HEADERS.index("grade"))
    dv_grade = DataValidation(
        type="list",
        formula1=f"'{GRADES_SHEET_NAME}'!$A$2:$A${1 + len(GRADE_ORDER)}",
        allow_blank=True,
    )
    dv_grade.error = "Select a value from the Grade dropdown"
    ws_students.add_data_validation(dv_grade)
    dv_grade.add(f"{grade_col}2:{grade_col}{max_rows + 1}")

    gender_col = chr(ord("A") + TEMPLATE_HEADERS.index("gender"))
    dv_gender = DataValidation(
        type="list",
        formula1='"' + ",".join(g.value for g in Gender) + '"',
        allow_blank=False,
    )
    dv_gender.error = "Select a value from the Gender dropdown"
    ws_students.add_data_validation(dv_gender)
    dv_gender.add(f"{gender_col}2:{gender_col}{max_rows + 1}")

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()
