"""
Account password hashing.

Hashes are Argon2id strings; the cost parameters come from the environment so
tests can run with cheap hashes. Hashes made with older parameters are
replaced on the next successful login.
"""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from fleetcore.src.constants import (
    PASSWORD_MEMORY_COST,
    PASSWORD_PARALLELISM,
    PASSWORD_TIME_COST,
)

hasher = PasswordHasher(
    time_cost=PASSWORD_TIME_COST,
    memory_cost=PASSWORD_MEMORY_COST,
    parallelism=PASSWORD_PARALLELISM,
)


def makePassword(password: str) -> str:
    return hasher.hash(password)


def checkPassword(password: str, hashed: str) -> bool:
    try:
        return hasher.verify(hashed, password)
    except (VerificationError, InvalidHashError):
        return False


def verifyAccount(account, password: str) -> bool:
    """
    Check `password` against the account's stored hash.

    On success the hash is rebuilt in place if its parameters are outdated;
    the caller's session persists the new value.
    """
    if account is None or not checkPassword(password, account.password):
        return False
    if hasher.check_needs_rehash(account.password):
        account.password = makePassword(password)
    return True
