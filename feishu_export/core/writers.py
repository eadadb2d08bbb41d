"""CSV and XLSX writers for exported tables.

Both writers build the complete file next to its destination and move it
into place at the end, so an interrupted export never leaves a partial file.
"""

import csv
import os
import tempfile
from collections.abc import Callable, Iterable
from pathlib import Path

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils import get_column_letter, quote_sheetname
from openpyxl.worksheet.datavalidation import DataValidation

from .fields import FieldDescriptor


# Last row covered by select dropdowns (Excel's row limit)
XLSX_MAX_ROW = 1048576
# Excel rejects inline list validations longer than this
INLINE_LIST_LIMIT = 255
OPTIONS_SHEET = "_options"
SHEET_TITLE_LIMIT = 31


def _replace_atomically(path: Path, write: Callable[[Path], None]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=path.suffix, dir=path.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        write(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_csv(path: Path, catalog: list[FieldDescriptor], rows: Iterable[list[str]]) -> None:
    """Write a UTF-8 CSV with a byte order mark so spreadsheet apps detect the encoding."""

    def write(tmp_path: Path) -> None:
        with open(tmp_path, "w", encoding="utf-8-sig", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([field.name for field in catalog])
            writer.writerows(rows)

    _replace_atomically(Path(path), write)


def _sheet_title(name: str) -> str:
    title = "".join("_" if c in '[]:*?/\\' else c for c in name).strip("'")
    return title[:SHEET_TITLE_LIMIT] or "Sheet1"


def _clean(value: str) -> str:
    return ILLEGAL_CHARACTERS_RE.sub("", value)


def _put_text(ws, row: int, column: int, value: str) -> None:
    # openpyxl turns strings starting with "=" into formulas
    cell = ws.cell(row=row, column=column, value=_clean(value))
    cell.data_type = "s"


def _inline_list(options: list[str]) -> str | None:
    """Quoted list formula, or None when options cannot be inlined."""
    if any("," in o or '"' in o for o in options):
        return None
    formula = '"' + ",".join(options) + '"'
    return formula if len(formula) <= INLINE_LIST_LIMIT else None


def write_xlsx(
    path: Path,
    catalog: list[FieldDescriptor],
    rows: Iterable[list[str]],
    sheet_title: str = "Sheet1",
) -> None:
    """Write an XLSX workbook with dropdown validations on select columns.

    Options that do not fit an inline list formula are placed on a hidden
    sheet and referenced by range.
    """

    def write(tmp_path: Path) -> None:
        wb = Workbook()
        ws = wb.active
        ws.title = _sheet_title(sheet_title)
        for column, field in enumerate(catalog, start=1):
            _put_text(ws, 1, column, field.name)
        for row_index, row in enumerate(rows, start=2):
            for column, value in enumerate(row, start=1):
                _put_text(ws, row_index, column, value)

        options_ws = None
        for index, field in enumerate(catalog, start=1):
            options = [_clean(o) for o in field.option_names()] if field.is_select else []
            if not options:
                continue

            formula = _inline_list(options)
            if formula is None:
                if options_ws is None:
                    options_ws = wb.create_sheet(OPTIONS_SHEET)
                    options_ws.sheet_state = "hidden"
                column = get_column_letter(index)
                for row_index, option in enumerate(options, start=1):
                    _put_text(options_ws, row_index, index, option)
                formula = f"{quote_sheetname(OPTIONS_SHEET)}!${column}$1:${column}${len(options)}"

            validation = DataValidation(type="list", formula1=formula, allow_blank=True)
            validation.showErrorMessage = False
            ws.add_data_validation(validation)
            column = get_column_letter(index)
            validation.add(f"{column}2:{column}{XLSX_MAX_ROW}")

        wb.save(tmp_path)

    _replace_atomically(Path(path), write)
