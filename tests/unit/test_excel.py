import io
import unittest
from services.excel import (
    CURRENCY_FORMAT,
    OpenPyXLFileHandler,
    read_csv_sheet,
    read_uploaded_sheets,
)
from services.exceptions import UploadValidationError
from test_helpers import create_mock_excel


class TestCreateExcelFile(unittest.TestCase):
    def setUp(self):
        # Set up mock data for the test
        self.sheets_data = {
            "Services": [["Drain clean", 99.5], ["Leak fix", 120]],
            "Materials": [["Pipe", 7]],
        }
        self.sheets_header_data = {
            "headers": {"Services": ["Name", "Price"], "Materials": ["Name", "Cost"]},
            "header_row": 2,
            "currency_columns": ["Price"],
        }

    def test_create_excel_file(self):
        file_handler = OpenPyXLFileHandler.from_sheets_data(self.sheets_data, self.sheets_header_data)

        self.assertEqual(file_handler.get_sheet_names(), ["Services", "Materials"])

        services = file_handler.workbook["Services"]
        self.assertEqual(services.cell(row=2, column=1).value, "Name")
        self.assertTrue(services.cell(row=2, column=1).font.bold)
        self.assertEqual(services.cell(row=3, column=1).value, "Drain clean")
        self.assertEqual(services.cell(row=3, column=2).number_format, CURRENCY_FORMAT)
        self.assertEqual(services.cell(row=4, column=2).value, 120)

        materials = file_handler.workbook["Materials"]
        self.assertEqual(materials.cell(row=2, column=2).value, "Cost")
        self.assertNotEqual(materials.cell(row=3, column=2).number_format, CURRENCY_FORMAT)

    def test_shared_header_list(self):
        file_handler = OpenPyXLFileHandler.from_sheets_data(
            {"A": [[1]], "B": [[2]]}, {"headers": ["Value"], "header_row": 1}
        )
        self.assertEqual(file_handler.get_column_by_header("B", "Value"), [2])


class TestReadSheets(unittest.TestCase):
    def setUp(self):
        self.upload = create_mock_excel({
            "Categories": [["Category ID", "Category 1"], ["1", "Plumbing"], [None, None], ["2", "Electrical"]],
            "Services": [["Name", "Price"], ["Drain clean", 99]],
        })

    def test_read_sheets_keeps_blank_rows(self):
        sheets = OpenPyXLFileHandler.from_file_like(self.upload).read_sheets()

        headers, rows = sheets["Categories"]
        self.assertEqual(headers, ["Category ID", "Category 1"])
        self.assertEqual(rows, [["1", "Plumbing"], [None, None], ["2", "Electrical"]])
        self.assertEqual(sheets["Services"][1], [["Drain clean", 99]])

    def test_read_sheet_to_dict_skips_blank_rows(self):
        data = OpenPyXLFileHandler.from_file_like(self.upload).read_sheet_to_dict()
        self.assertEqual(len(data["Categories"]), 2)
        self.assertEqual(data["Services"][0], {"Name": "Drain clean", "Price": 99})

    def test_missing_sheet(self):
        handler = OpenPyXLFileHandler.from_file_like(self.upload)
        with self.assertRaises(UploadValidationError):
            handler.get_sheet("Nope")

    def test_unreadable_workbook(self):
        with self.assertRaises(UploadValidationError):
            OpenPyXLFileHandler.from_file_like(io.BytesIO(b"not a workbook"))

    def test_to_bytes_round_trip(self):
        handler = OpenPyXLFileHandler.from_file_like(self.upload)
        reloaded = OpenPyXLFileHandler.from_file_like(handler.to_bytes())
        self.assertEqual(reloaded.get_sheet_names(), ["Categories", "Services"])


class TestReadUploads(unittest.TestCase):
    def test_read_csv_sheet(self):
        data = b"\xef\xbb\xbfName,Price\nDrain clean,99\n,\nLeak fix,\n"
        sheets = read_csv_sheet(io.BytesIO(data), sheet_name="Services")

        headers, rows = sheets["Services"]
        self.assertEqual(headers, ["Name", "Price"])
        self.assertEqual(rows[0], ["Drain clean", "99"])
        self.assertEqual(rows[1], [None, None])
        self.assertEqual(rows[2], ["Leak fix", None])

    def test_empty_csv(self):
        self.assertEqual(read_csv_sheet(b""), {"Sheet1": ([], [])})

    def test_dispatch_by_extension(self):
        sheets = read_uploaded_sheets(io.BytesIO(b"Name\nPipe\n"), "materials.csv")
        self.assertEqual(list(sheets), ["materials"])

        sheets = read_uploaded_sheets(create_mock_excel({"Services": [["Name"], ["A"]]}), "book.xlsx")
        self.assertEqual(list(sheets), ["Services"])

    def test_unsupported_extension(self):
        with self.assertRaises(UploadValidationError):
            read_uploaded_sheets(io.BytesIO(b""), "notes.txt")


if __name__ == "__main__":
    unittest.main()
