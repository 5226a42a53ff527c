import time
import random
import string


def generate_unique_id():
    # Use a timestamp as the base for uniqueness
    timestamp = int(time.time() * 1000)  # Milliseconds since epoch
    timestamp_base36 = base36_encode(timestamp)

    # Add a random string to ensure uniqueness
    random_part = ''.join(random.choices(string.ascii_letters + string.digits, k=6))

    return f"{timestamp_base36}{random_part}".upper()


def base36_encode(num):
    """Encodes a number in base-36."""
    if not isinstance(num, int):
        raise TypeError("number must be an integer")
    if num < 0:
        raise ValueError("number must be non-negative")

    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    result = ""
    while num > 0:
        num, remainder = divmod(num, 36)
        result = digits[remainder] + result
    return result or "0"


def new_document_id(prefix=""):
    """Unique id for a document created from the admin side (e.g. 'rule_...')."""
    unique = generate_unique_id()
    return f"{prefix}_{unique}" if prefix else unique
