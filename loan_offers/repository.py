"""
Offer Repository

Persistence port used by the offer service. Offers and payments are versioned
records: every save names the version it was derived from and fails with
VersionConflict when the stored record has moved on.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .errors import NotFound
from .models import Offer, Payment
from .storage import StorageInterface


class OfferRepository(ABC):
    """Load and save offers and payments"""

    @abstractmethod
    def load_offer(self, offer_id: str) -> Offer:
        """Load an offer, raising NotFound if it does not exist"""
        pass

    @abstractmethod
    def save_offer(self, offer: Offer, expected_version: Optional[int]) -> Offer:
        """
        Persist an offer

        Args:
            offer: Offer to write
            expected_version: Version the offer was derived from, or None for
                a new offer

        Returns:
            The offer carrying its new version

        Raises:
            VersionConflict: If the stored version differs
        """
        pass

    @abstractmethod
    def load_payments(self, offer_id: str) -> List[Payment]:
        """All payments for an offer, oldest first"""
        pass

    @abstractmethod
    def load_payment(self, payment_id: str) -> Payment:
        """Load a payment, raising NotFound if it does not exist"""
        pass

    @abstractmethod
    def save_payment(self, payment: Payment, expected_version: Optional[int]) -> Payment:
        """Persist a payment with the same versioning rules as save_offer"""
        pass

    @abstractmethod
    def find_offers_for_user(self, user_id: str, phone: Optional[str] = None) -> List[Offer]:
        """Offers the user proposed, received, or that await their phone number"""
        pass


class StorageOfferRepository(OfferRepository):
    """OfferRepository backed by a StorageInterface"""

    OFFERS_TABLE = "offers"
    PAYMENTS_TABLE = "payments"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def load_offer(self, offer_id: str) -> Offer:
        data = self.storage.load(self.OFFERS_TABLE, offer_id)
        if data is None:
            raise NotFound(f"Offer {offer_id} not found")
        return Offer.from_dict(data)

    def save_offer(self, offer: Offer, expected_version: Optional[int]) -> Offer:
        version = self.storage.compare_and_swap(
            self.OFFERS_TABLE, offer.id, offer.to_dict(), expected_version
        )
        return offer.with_changes(version=version)

    def load_payments(self, offer_id: str) -> List[Payment]:
        records = self.storage.find(self.PAYMENTS_TABLE, {'offer_id': offer_id})
        payments = [Payment.from_dict(record) for record in records]
        payments.sort(key=lambda p: (p.created_at, p.id))
        return payments

    def load_payment(self, payment_id: str) -> Payment:
        data = self.storage.load(self.PAYMENTS_TABLE, payment_id)
        if data is None:
            raise NotFound(f"Payment {payment_id} not found")
        return Payment.from_dict(data)

    def save_payment(self, payment: Payment, expected_version: Optional[int]) -> Payment:
        version = self.storage.compare_and_swap(
            self.PAYMENTS_TABLE, payment.id, payment.to_dict(), expected_version
        )
        return payment.with_changes(version=version)

    def find_offers_for_user(self, user_id: str, phone: Optional[str] = None) -> List[Offer]:
        offers = {}
        for field in ('from_user_id', 'to_user_id'):
            for record in self.storage.find(self.OFFERS_TABLE, {field: user_id}):
                offers[record['id']] = record

        if phone:
            # Offers sent to this phone before the recipient was resolved
            for record in self.storage.find(self.OFFERS_TABLE, {'to_user_phone': phone, 'to_user_id': None}):
                if record['from_user_id'] != user_id:
                    offers[record['id']] = record

        result = [Offer.from_dict(record) for record in offers.values()]
        result.sort(key=lambda o: o.created_at, reverse=True)
        return result
