# storage_rental/infrastructure/repositories/account_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from storage_rental.domain.identity import UserRole
from storage_rental.infrastructure.db.models import (
    LenderProfile,
    RenterProfile,
    StorageLocation,
    User,
)


class AccountRepository:
    """Users, their role profiles, and the storage locations lenders own."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def get_renter_profile(self, user_id: str) -> RenterProfile | None:
        stmt = select(RenterProfile).where(RenterProfile.user_id == user_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_lender_profile(self, user_id: str) -> LenderProfile | None:
        stmt = select(LenderProfile).where(LenderProfile.user_id == user_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_billing_customer_id(self, user: User) -> str | None:
        if user.role != UserRole.RENTER:
            return None
        profile = self.get_renter_profile(user.id)
        return profile.billing_customer_id if profile else None

    def get_payee_account_id(self, user: User) -> str | None:
        if user.role != UserRole.LENDER:
            return None
        profile = self.get_lender_profile(user.id)
        if not profile or not profile.payouts_enabled:
            return None
        return profile.payee_account_id

    def get_storage_location(self, storage_location_id: str) -> StorageLocation | None:
        return self.db.get(StorageLocation, storage_location_id)

    def lock_storage_location(self, storage_location_id: str) -> StorageLocation | None:
        """
        SELECT ... FOR UPDATE
        Serializes booking writes per storage location.
        """

        stmt = (
            select(StorageLocation)
            .where(StorageLocation.id == storage_location_id)
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_user(
        self,
        email: str,
        display_name: str,
        role: UserRole,
    ) -> User:
        user = User(email=email, display_name=display_name, role=role, is_active=True)
        self.db.add(user)
        self.db.flush()
        return user

    def upsert_renter_profile(
        self,
        user: User,
        billing_customer_id: str | None,
    ) -> RenterProfile:
        profile = self.get_renter_profile(user.id)
        if profile:
            profile.billing_customer_id = billing_customer_id
            return profile

        profile = RenterProfile(user_id=user.id, billing_customer_id=billing_customer_id)
        self.db.add(profile)
        return profile

    def upsert_lender_profile(
        self,
        user: User,
        payee_account_id: str | None,
        payouts_enabled: bool = False,
    ) -> LenderProfile:
        profile = self.get_lender_profile(user.id)
        if profile:
            profile.payee_account_id = payee_account_id
            profile.payouts_enabled = payouts_enabled
            return profile

        profile = LenderProfile(
            user_id=user.id,
            payee_account_id=payee_account_id,
            payouts_enabled=payouts_enabled,
        )
        self.db.add(profile)
        return profile

    def add_storage_location(self, lender: User, **attributes) -> StorageLocation:
        location = StorageLocation(lender_id=lender.id, **attributes)
        self.db.add(location)
        self.db.flush()
        return location
