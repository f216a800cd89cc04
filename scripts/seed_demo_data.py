from decimal import Decimal

from sqlalchemy import select

from storage_rental.domain.identity import UserRole
from storage_rental.infrastructure.db.models import Base, StorageLocation, User
from storage_rental.infrastructure.db.session import engine, get_db_session
from storage_rental.infrastructure.repositories.account_repository import AccountRepository


USER_DEFS = [
    {
        "email": "asha.renter@example.com",
        "display_name": "Asha Verma",
        "role": UserRole.RENTER,
        "billing_customer_id": "cust_demo_asha",
    },
    {
        "email": "kabir.renter@example.com",
        "display_name": "Kabir Rao",
        "role": UserRole.RENTER,
        "billing_customer_id": None,
    },
    {
        "email": "meera.lender@example.com",
        "display_name": "Meera Iyer",
        "role": UserRole.LENDER,
        "payee_account_id": "acc_demo_meera",
    },
]

LOCATION_DEFS = [
    {
        "lender_email": "meera.lender@example.com",
        "name": "Indiranagar Garage Bay",
        "description": "Covered garage bay with shutter access.",
        "storage_length": 5.0,
        "storage_width": 3.0,
        "storage_height": 2.5,
        "price": Decimal("450.00"),
    },
    {
        "lender_email": "meera.lender@example.com",
        "name": "Koramangala Store Room",
        "description": "Ground floor room, dry and lockable.",
        "storage_length": 3.0,
        "storage_width": 2.5,
        "storage_height": 2.8,
        "price": Decimal("300.00"),
    },
]


def seed_users(db) -> dict[str, User]:
    accounts = AccountRepository(db)
    users = {}

    for item in USER_DEFS:
        user = db.execute(
            select(User).where(User.email == item["email"])
        ).scalar_one_or_none()
        if not user:
            user = accounts.add_user(
                email=item["email"],
                display_name=item["display_name"],
                role=item["role"],
            )

        if user.role == UserRole.RENTER:
            accounts.upsert_renter_profile(user, item.get("billing_customer_id"))
        else:
            accounts.upsert_lender_profile(
                user,
                item.get("payee_account_id"),
                payouts_enabled=bool(item.get("payee_account_id")),
            )
        users[user.email] = user

    return users


def seed_storage_locations(db, users: dict[str, User]) -> None:
    accounts = AccountRepository(db)

    for item in LOCATION_DEFS:
        lender = users[item["lender_email"]]
        existing = db.execute(
            select(StorageLocation)
            .where(StorageLocation.lender_id == lender.id)
            .where(StorageLocation.name == item["name"])
        ).scalar_one_or_none()
        attributes = {key: value for key, value in item.items() if key != "lender_email"}

        if existing:
            for key, value in attributes.items():
                setattr(existing, key, value)
        else:
            accounts.add_storage_location(lender, **attributes)


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        users = seed_users(db)
        seed_storage_locations(db, users)
    print("Demo users and storage locations seeded.")


if __name__ == "__main__":
    main()
