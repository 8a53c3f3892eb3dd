"""
Database seeding script for a development troop.

Creates one user per role, two scouts with opening IBA deposits and a
parent linked to both, then prints bearer tokens for trying the API.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.user import User
from backend.app.models.scout import Scout
from backend.app.models.parent_scout import ParentScout
from backend.app.models.enums import UserRole
from backend.app.core.guards import Principal
from backend.app.core.jwt import issue_principal_token
from backend.app.domain.ledger.transaction_service import TransactionService
from sqlalchemy import select

# Register the remaining tables with Base.metadata
import backend.app.main  # noqa: F401


SEED_USERS = [
    ("admin@troop.test", "Alice Admin", UserRole.ADMIN),
    ("treasurer@troop.test", "Frank Treasurer", UserRole.FINANCIER),
    ("scoutmaster@troop.test", "Lena Leader", UserRole.LEADER),
    ("parent@troop.test", "Pat Parent", UserRole.PARENT),
    ("avery@troop.test", "Avery Scout", UserRole.SCOUT),
]


async def seed_troop():
    """
    Seed a small troop.
    
    Creates:
    - 1 user per role (ADMIN, FINANCIER, LEADER, PARENT, SCOUT)
    - 2 scouts, the first tied to the SCOUT login
    - IBA deposits of $150.00 and $80.00, recorded through the ledger
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    async with AsyncSessionLocal() as db:
        print("🌱 Starting troop seeding...")
        
        result = await db.execute(select(User).where(User.email == SEED_USERS[0][0]))
        if result.scalar_one_or_none():
            print("ℹ️  Troop already seeded, skipping")
            return
        
        users = {}
        for email, name, role in SEED_USERS:
            user = User(email=email, name=name, role=role, is_active=True)
            db.add(user)
            users[role] = user
        await db.flush()
        
        avery = Scout(name="Avery", user_id=users[UserRole.SCOUT].id)
        blake = Scout(name="Blake")
        db.add_all([avery, blake])
        await db.flush()
        
        parent = users[UserRole.PARENT]
        db.add_all([
            ParentScout(parent_id=parent.id, scout_id=avery.id),
            ParentScout(parent_id=parent.id, scout_id=blake.id),
        ])
        await db.commit()
        print("✅ Created users, scouts and parent links")
        
        treasurer = users[UserRole.FINANCIER]
        await TransactionService.bulk_record_iba_deposits(
            db,
            Principal(user_id=treasurer.id, role=treasurer.role, username=treasurer.email),
            [(avery.id, Decimal("150.00")), (blake.id, Decimal("80.00"))],
            "Opening IBA balances",
        )
        print("✅ Recorded opening IBA deposits")
        
        print("\n🎉 Troop seeding completed successfully!")
        print("\nDevelopment tokens:")
        for role, user in users.items():
            token = issue_principal_token(user.id, role, user.email)
            print(f"  - {role.value:<9} {user.email}: {token}")


if __name__ == "__main__":
    asyncio.run(seed_troop())
