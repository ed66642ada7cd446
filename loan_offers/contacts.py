"""
Contact Resolution

Offers are addressed to a phone number. Resolving that number to a registered
user is best effort: an unknown number leaves the offer addressed by phone
until the recipient signs in and claims it.
"""

import re
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .logging_config import get_logger


COUNTRY_CODE = "+91"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """
    Normalize an Indian mobile number to +91XXXXXXXXXX

    Accepts 10 digits, 91 + 10 digits, 091 + 10 digits and any punctuation
    around them.

    Raises:
        ValueError: If the number cannot be normalized
    """
    if not phone or not isinstance(phone, str):
        raise ValueError("Invalid phone number provided")

    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 10:
        return f"{COUNTRY_CODE}{digits}"
    if len(digits) == 12 and digits.startswith("91"):
        return f"+{digits}"
    if len(digits) == 13 and digits.startswith("091"):
        return f"+{digits[1:]}"

    raise ValueError(f"Invalid Indian phone number format: {phone}")


def is_valid_mobile(phone: str) -> bool:
    """Indian mobile numbers are 10 digits starting with 6-9"""
    try:
        normalized = normalize_phone(phone)
    except ValueError:
        return False
    return re.fullmatch(r"[6-9]\d{9}", normalized[len(COUNTRY_CODE):]) is not None


class ContactResolver(ABC):
    """Maps a phone number to a registered user"""

    @abstractmethod
    def resolve(self, phone: str) -> Optional[str]:
        """Return the user_id registered with this normalized phone, if any"""
        pass


class DirectoryContactResolver(ContactResolver):
    """In-memory phone directory"""

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self._lock = threading.RLock()
        self._directory: Dict[str, str] = {}
        self.logger = get_logger("loan_offers.contacts")
        for phone, user_id in (entries or {}).items():
            self.register(phone, user_id)

    def register(self, phone: str, user_id: str) -> None:
        with self._lock:
            self._directory[normalize_phone(phone)] = user_id

    def resolve(self, phone: str) -> Optional[str]:
        with self._lock:
            user_id = self._directory.get(normalize_phone(phone))
        if user_id is None:
            self.logger.debug(f"No registered user for {phone}")
        return user_id
