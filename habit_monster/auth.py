import os

import bcrypt
from dotenv import load_dotenv

load_dotenv()

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))
BCRYPT_PREFIX = "$2"


def hash_password(password):
    """Return a bcrypt hash of `password` as a string."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode(), salt).decode()


def is_hashed(stored):
    return bool(stored) and stored.startswith(BCRYPT_PREFIX)


def check_password(password, stored):
    """
    Returns `True` if `password` matches the stored bcrypt hash.
    Values that are not bcrypt hashes never match here; see `is_legacy_match`.
    """
    if not password or not is_hashed(stored):
        return False
    try:
        return bcrypt.checkpw(password.encode(), stored.encode())
    except ValueError:
        return False


def is_legacy_match(password, stored):
    """Accounts created before hashing stored the password in plain text."""
    return bool(password) and not is_hashed(stored) and stored == password
