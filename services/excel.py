import os
import openpyxl
import pandas as pd
from io import BytesIO, StringIO
import logging
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from services.exceptions import UploadValidationError


# Configure logging
logger = logging.getLogger(__name__)

CURRENCY_FORMAT = '"$"#,##0.00'
SPREADSHEET_EXTENSIONS = (".xlsx", ".xlsm")
CSV_EXTENSIONS = (".csv",)


class OpenPyXLFileHandler:
    """
    A file handler class that abstracts operations for reading and writing Excel files using openpyxl.
    """

    def __init__(self, workbook=None):
        """
        Initialize the file handler with an existing workbook.
        """
        self.workbook = workbook

    @classmethod
    def from_file_like(cls, file, data_only=True):
        """
        Initialize the file handler with a file-like object.

        Args:
            file: A file-like object (e.g., from `request.files`).
            data_only (bool): Whether to read the values instead of formulas.

        Returns:
            OpenPyXLFileHandler: An initialized file handler.
        """
        try:
            workbook = openpyxl.load_workbook(BytesIO(file.read()), data_only=data_only)
        except Exception as e:
            raise UploadValidationError(f"Could not read the workbook: {e}")
        return cls(workbook=workbook)

    @classmethod
    def from_sheets_data(cls, sheets_data, sheets_header_data):
        """
        Initialize the file handler with sheets data.

        Args:
            sheets_data (dict): Dictionary where keys are sheet names, and values are lists of rows.
            sheets_header_data (dict): Dictionary with:
                - `headers`: Column headers, either one list shared by all sheets or a dict per sheet name.
                - `header_row`: Row index where headers should appear.
                - `currency_columns`: Optional header names to format as currency.

        Returns:
            OpenPyXLFileHandler: An initialized file handler.
        """
        handler = cls()
        handler._create_excel_file(sheets_data, sheets_header_data)
        return handler

    def get_sheet_names(self):
        """
        Get the names of all sheets in the workbook.

        :return: List of sheet names
        :rtype: list[str]
        """
        if self.workbook is None:
            raise ValueError("Workbook is not loaded.")
        return self.workbook.sheetnames

    def get_sheet(self, sheet_name):
        """
        Get a specific sheet by name.

        :param sheet_name: Name of the sheet
        :type sheet_name: str
        :return: The sheet object
        :rtype: openpyxl.worksheet.worksheet.Worksheet
        """
        if self.workbook is None:
            raise ValueError("Workbook is not loaded.")
        if sheet_name not in self.workbook.sheetnames:
            raise UploadValidationError(f"Sheet '{sheet_name}' not found in the workbook.")
        return self.workbook[sheet_name]

    def get_headers(self, sheet, header_row):
        """
        Get headers from a specific row in a sheet.

        :param sheet: The sheet object
        :type sheet: openpyxl.worksheet.worksheet.Worksheet
        :param header_row: The row number containing headers
        :type header_row: int
        :return: List of headers
        :rtype: list[str]
        """
        return [sheet.cell(row=header_row, column=col).value for col in range(1, sheet.max_column + 1)]

    def get_rows(self, sheet, start_row):
        """
        Get all rows starting from a specific row.

        :param sheet: The sheet object
        :type sheet: openpyxl.worksheet.worksheet.Worksheet
        :param start_row: The starting row number
        :type start_row: int
        :return: List of rows, where each row is a list of cell values
        :rtype: list[list]
        """
        return [list(row) for row in sheet.iter_rows(min_row=start_row, values_only=True)]

    def read_sheets(self, header_row: int = 1):
        """
        Read every sheet into a (headers, rows) pair.

        Blank rows are kept so that row positions still line up with the spreadsheet;
        callers skip them.

        :return: {sheet_name: (headers, rows)}
        :rtype: dict[str, tuple[list, list[list]]]
        """
        if self.workbook is None:
            raise ValueError("Workbook is not loaded.")

        sheets = {}
        for sheet_name in self.get_sheet_names():
            sheet = self.get_sheet(sheet_name)
            headers = self.get_headers(sheet, header_row)
            rows = self.get_rows(sheet, header_row + 1)
            sheets[sheet_name] = (headers, rows)
            logger.debug(f"Read sheet '{sheet_name}': {len(headers)} columns, {len(rows)} rows")
        return sheets

    def read_sheet_to_dict(self, header_row: int = 1):
        """
        Read all sheets in the workbook into dictionaries keyed by header.

        :param header_row: Row number holding the headers, for every sheet.
        :type header_row: int
        :return: A dictionary where keys are sheet names, and values are lists of row dictionaries
        :rtype: dict[str, list[dict]]
        """
        all_data = {}
        for sheet_name, (headers, rows) in self.read_sheets(header_row).items():
            all_data[sheet_name] = [dict(zip(headers, row)) for row in rows if any(row)]
        return all_data

    def _create_excel_file(self, sheets_data, sheets_header_data):
        """
        Internal method to create a new Excel workbook with multiple sheets.

        Args:
            sheets_data (dict): Dictionary where keys are sheet names, and values are lists of rows.
            sheets_header_data (dict): Contains:
                - `headers`: List of column headers, or a dict of header lists per sheet.
                - `header_row`: Row index for headers (default is 1).
                - `currency_columns`: Header names whose cells get the currency number format.

        Modifies:
            self.workbook: Sets this attribute to the newly created workbook.
        """
        self.workbook = openpyxl.Workbook()

        headers_config = sheets_header_data["headers"]
        header_row = sheets_header_data.get("header_row", 1)
        currency_columns = set(sheets_header_data.get("currency_columns", []))

        for idx, (sheet_name, rows) in enumerate(sheets_data.items(), start=1):
            # Add a new sheet or use the default active sheet
            if idx == 1:
                sheet = self.workbook.active
                sheet.title = sheet_name
            else:
                sheet = self.workbook.create_sheet(title=sheet_name)

            headers = headers_config.get(sheet_name, []) if isinstance(headers_config, dict) else headers_config

            # Write headers
            for col_num, header in enumerate(headers, start=1):
                cell = sheet.cell(row=header_row, column=col_num, value=header)
                cell.font = Font(bold=True)

            currency_idx = {i for i, header in enumerate(headers, start=1) if header in currency_columns}

            # Write data starting below the header row
            data_start_row = header_row + 1
            for row_idx, row in enumerate(rows, start=data_start_row):
                for col_idx, value in enumerate(row, start=1):
                    cell = sheet.cell(row=row_idx, column=col_idx, value=value)
                    if col_idx in currency_idx and isinstance(value, (int, float)):
                        cell.number_format = CURRENCY_FORMAT

            self.autosize_columns(sheet, headers, rows)

    @staticmethod
    def autosize_columns(sheet, headers, rows, min_width=10, max_width=50):
        """Set each column's width from its longest rendered value."""
        for col_idx, header in enumerate(headers, start=1):
            lengths = [len(str(header or ""))]
            lengths.extend(
                len(str(row[col_idx - 1]))
                for row in rows
                if len(row) >= col_idx and row[col_idx - 1] is not None
            )
            width = min(max(max(lengths) + 2, min_width), max_width)
            sheet.column_dimensions[get_column_letter(col_idx)].width = width

    def to_bytes(self):
        """Serialize the workbook into an in-memory .xlsx payload."""
        if self.workbook is None:
            raise ValueError("No workbook is loaded or created to save.")
        output = BytesIO()
        self.workbook.save(output)
        output.seek(0)
        return output

    def get_column_by_header(self, sheet_name, header_name, header_row=1):
        """
        Get all values in a column by its header text.

        Args:
            sheet_name (str): The name of the sheet to search in.
            header_name (str): The header text of the column.
            header_row (int): The row number containing the headers. Defaults to 1.

        Returns:
            list: A list of values from the specified column (excluding the header).

        Raises:
            ValueError: If the header is not found.
        """
        sheet = self.get_sheet(sheet_name)
        headers = self.get_headers(sheet, header_row)

        if header_name not in headers:
            raise ValueError(f"Header '{header_name}' not found in sheet '{sheet_name}'.")
        column_index = headers.index(header_name) + 1  # 1-based index

        return [
            sheet.cell(row=row, column=column_index).value
            for row in range(header_row + 1, sheet.max_row + 1)
        ]


def read_csv_sheet(file, sheet_name="Sheet1"):
    """
    Read a CSV upload into the same {sheet: (headers, rows)} shape as read_sheets.

    Every cell comes back as text; empty cells become None.
    """
    if isinstance(file, (bytes, bytearray)):
        buffer = StringIO(file.decode("utf-8-sig"))
    elif hasattr(file, "read"):
        raw = file.read()
        buffer = StringIO(raw.decode("utf-8-sig") if isinstance(raw, bytes) else raw)
    else:
        buffer = file

    try:
        df = pd.read_csv(buffer, header=None, dtype=str, keep_default_na=False, skip_blank_lines=False)
    except pd.errors.EmptyDataError:
        return {sheet_name: ([], [])}
    except pd.errors.ParserError as e:
        raise UploadValidationError(f"Could not parse the CSV file: {e}")

    values = [[None if pd.isna(cell) or cell == "" else cell for cell in row] for row in df.values.tolist()]
    if not values:
        return {sheet_name: ([], [])}
    return {sheet_name: (values[0], values[1:])}


def read_uploaded_sheets(file, filename):
    """
    Read an uploaded spreadsheet (.xlsx or .csv) into {sheet: (headers, rows)}.

    :raises UploadValidationError: for unsupported extensions or unreadable files.
    """
    extension = os.path.splitext(filename or "")[1].lower()
    if extension in SPREADSHEET_EXTENSIONS:
        return OpenPyXLFileHandler.from_file_like(file).read_sheets()
    if extension in CSV_EXTENSIONS:
        sheet_name = os.path.splitext(os.path.basename(filename))[0] or "Sheet1"
        return read_csv_sheet(file, sheet_name=sheet_name)
    raise UploadValidationError(f"Unsupported file type '{extension or filename}'. Upload an .xlsx or .csv file.")
