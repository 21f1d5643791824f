"""
TemporaryPasswordService - generation and hashing of temporary credentials
"""

import secrets
import string
from datetime import datetime, timedelta
from typing import Optional
from utils.datetime_utils import utc_now

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
SPECIAL = '!@#$%^&*'
ALPHABET = UPPERCASE + LOWERCASE + DIGITS + SPECIAL

MIN_LENGTH = 8


class TemporaryPasswordService:
    """
    Generates temporary passwords with one character from each class and
    hashes them with the application's bcrypt instance.
    """

    def __init__(self, bcrypt, length: int = MIN_LENGTH, ttl_hours: int = 24):
        """
        Args:
            bcrypt: Flask-Bcrypt instance (salted, so hashing is non-deterministic)
            length: Password length, never below MIN_LENGTH
            ttl_hours: Lifetime of a generated credential
        """
        self.bcrypt = bcrypt
        self.length = max(length, MIN_LENGTH)
        self.ttl_hours = ttl_hours
        self._random = secrets.SystemRandom()

    def generate(self) -> str:
        chars = [
            self._random.choice(UPPERCASE),
            self._random.choice(LOWERCASE),
            self._random.choice(DIGITS),
            self._random.choice(SPECIAL),
        ]
        chars.extend(self._random.choice(ALPHABET) for _ in range(self.length - len(chars)))
        self._random.shuffle(chars)
        return ''.join(chars)

    def hash(self, password: str) -> str:
        hashed = self.bcrypt.generate_password_hash(password)
        return hashed.decode('utf-8') if isinstance(hashed, bytes) else hashed

    def verify(self, password: Optional[str], password_hash: Optional[str]) -> bool:
        if not password or not password_hash:
            return False
        try:
            return self.bcrypt.check_password_hash(password_hash, password)
        except ValueError:
            # Malformed stored hash
            return False

    def new_expiry(self, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) + timedelta(hours=self.ttl_hours)
