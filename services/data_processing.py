import re
import math
from services.database import DatabaseManager
import logging


# Configure logging
logger = logging.getLogger(__name__)

TRUTHY_VALUES = ("yes", "true", "1", "y")


def safe_float(value):
    """Safely convert a value to float, defaulting to 0.0 for empty or unusable values."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    try:
        result = float(value) if value else 0.0  # Default to 0.0 for empty strings / None
    except (ValueError, TypeError):
        return 0.0  # Return 0.0 if conversion fails
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result


def non_negative(value):
    """Like safe_float, but negative amounts are treated as 0 so totals stay well-defined."""
    return max(safe_float(value), 0.0)


def to_bool(value, default=False):
    """
    Normalise spreadsheet booleans ("Yes", "TRUE", 1, "1", True) to bool.

    Blank cells keep the default.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text == "":
        return default
    return text in TRUTHY_VALUES


def clean_value(value):
    """
    Clean up the value by handling double quotes, leading equal signs, control characters, and formatting appropriately.

    :param value: raw cell value
    :return: the cleaned value; non-strings are returned untouched
    """
    if isinstance(value, str):
        # Remove control characters (including BOM)
        value = re.sub(r'[\x00-\x1F\x7F-\x9F\uFEFF]', '', value)
        # Remove leading equal sign and any double quotes
        value = value.lstrip('=')  # Remove leading equal sign
        value = value.replace('"', '').strip()  # Remove double quotes
        return value
    return value


def cell_text(value):
    """Render a raw cell as trimmed text; None becomes ''. Whole floats lose their '.0'."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def is_blank_row(row):
    """True when every cell of the row is None or whitespace."""
    return all(cell_text(cell) == "" for cell in (row or []))


def update_table_history(db_manager: DatabaseManager, table_name: str):
    query = '''
            INSERT INTO upload_history (table_name, last_upload)
            VALUES (?, CURRENT_TIMESTAMP)
            ON CONFLICT(table_name)
            DO UPDATE SET last_upload = CURRENT_TIMESTAMP;
        '''
    db_manager.execute_query(query, (table_name,), True)


def get_last_upload_time(db_manager: DatabaseManager, table_name: str):
    query = '''
            SELECT last_upload
            FROM upload_history
            WHERE table_name = ?;
        '''
    cursor = db_manager.execute_query(query, (table_name,))
    result = cursor.fetchone()
    return result[0] if result else None
