import datetime
import random
import string

import pandas as pd

from habit_monster.exceptions import ValidationError

DATE_FORMAT = "%Y-%m-%d"

FRIEND_CODE_ALPHABET = string.ascii_uppercase + string.digits
FRIEND_CODE_LENGTH = 5


def normalize_date(value):
    """
    Return the canonical YYYY-MM-DD form of a calendar date.
    Accepts date/datetime objects, pandas Timestamps or strings in YYYY-MM-DD form.
    """
    if isinstance(value, (pd.Timestamp, datetime.datetime)):
        value = value.date()
    if isinstance(value, datetime.date):
        return value.strftime(DATE_FORMAT)

    if not isinstance(value, str) or not value.strip():
        raise ValidationError("A date in YYYY-MM-DD format is required")
    try:
        parsed = pd.to_datetime(value.strip(), format=DATE_FORMAT)
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid date: {value}")
    return parsed.strftime(DATE_FORMAT)


def generate_friend_code():
    """Draw one candidate friend code. Uniqueness is checked by the caller."""
    return "".join(random.choice(FRIEND_CODE_ALPHABET) for _ in range(FRIEND_CODE_LENGTH))


def is_valid_friend_code(code):
    return (
        isinstance(code, str)
        and len(code) == FRIEND_CODE_LENGTH
        and all(c in FRIEND_CODE_ALPHABET for c in code)
    )


def battle_end(start_date, duration_days):
    return start_date + datetime.timedelta(days=duration_days)
