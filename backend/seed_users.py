"""
Database seeding script for demo accounts.

Creates an ADMIN, a merchant with a company and a small catalog, and a
customer with a funded wallet. Identity lives with the external provider,
so the script prints development bearer tokens instead of passwords.

Run after the API has started once (tables are created on startup):

    python -m backend.seed_users
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from backend.app.core.jwt import create_access_token
from backend.app.db.session import AsyncSessionLocal
from backend.app.models.company import Company
from backend.app.models.enums import UserRole
from backend.app.models.product import Product
from backend.app.models.user import User


def dev_token(user: User) -> str:
    return create_access_token(
        {"sub": user.email, "user_id": user.id, "role": user.role.value},
        expires_delta=timedelta(days=7),
    )


async def seed_users():
    """
    Seed demo accounts.

    Creates:
    - 1 ADMIN user
    - 1 merchant owning "Demo Traders" with three products
    - 1 customer holding E 1000.00
    """
    async with AsyncSessionLocal() as db:
        print("🌱 Starting demo seeding...")

        result = await db.execute(select(User).where(User.email == "admin@payflow.sz"))
        if result.scalar_one_or_none():
            print("ℹ️  Demo accounts already exist, skipping seeding")
            return

        admin = User(
            email="admin@payflow.sz",
            first_name="Platform",
            last_name="Admin",
            role=UserRole.ADMIN,
            wallet_balance=Decimal("0.00"),
        )
        merchant = User(
            email="merchant@payflow.sz",
            first_name="Thandi",
            last_name="Dlamini",
            business_name="Demo Traders",
            phone="+26876000001",
            wallet_balance=Decimal("0.00"),
        )
        customer = User(
            email="customer@payflow.sz",
            first_name="Sipho",
            last_name="Nkosi",
            phone="+26878000002",
            wallet_balance=Decimal("1000.00"),
        )
        db.add_all([admin, merchant, customer])
        await db.flush()

        company = Company(name="Demo Traders", owner_id=merchant.id)
        db.add(company)
        await db.flush()

        db.add_all([
            Product(company_id=company.id, name="Maize Meal 10kg", sku="MM-10", price=Decimal("95.00"), quantity=40),
            Product(company_id=company.id, name="Cooking Oil 2L", sku="CO-2", price=Decimal("57.50"), quantity=25),
            Product(company_id=company.id, name="Sugar 2kg", sku="SG-2", price=Decimal("38.00"), quantity=3,
                    low_stock_threshold=5),
        ])
        await db.commit()

        print("✅ Created ADMIN user (admin@payflow.sz)")
        print("✅ Created merchant (merchant@payflow.sz) with company 'Demo Traders' and 3 products")
        print("✅ Created customer (customer@payflow.sz) with E 1000.00")

        print("\n🎉 Demo seeding completed successfully!")
        print("\nDevelopment tokens (valid 7 days):")
        for label, user in (("ADMIN", admin), ("MERCHANT", merchant), ("CUSTOMER", customer)):
            print(f"  - {label:<9} {dev_token(user)}")


if __name__ == "__main__":
    asyncio.run(seed_users())
