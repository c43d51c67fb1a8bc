# app/scripts/seed_data.py
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from core.database import AsyncSessionLocal, engine
from core.security import create_access_token
from models import Base, Campaign, CampaignStatus, User

# ========== demo data ==========
DEMO_USER = {
    "email": "donor@gmail.com",
    "full_name": "Demo Donor",
    "phone": "9876543210",
}

DEMO_CAMPAIGNS = [
    {
        "title": "Education for Every Child",
        "description": "School kits and fees for children in rural Odisha",
        "organizer": "Engala Trust",
        "goal_amount": Decimal("500000.00"),
        "status": CampaignStatus.APPROVED,
    },
    {
        "title": "Clean Water Wells",
        "description": "Borewells for three villages in Marathwada",
        "organizer": "Engala Trust",
        "goal_amount": Decimal("250000.00"),
        "status": CampaignStatus.APPROVED,
    },
    {
        "title": "Flood Relief 2024",
        "description": "Relief kits for flood-affected families",
        "organizer": "Engala Trust",
        "goal_amount": Decimal("100000.00"),
        "status": CampaignStatus.CLOSED,
    },
]


async def seed():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        # 🔹 demo donor
        user = await session.scalar(select(User).where(User.email == DEMO_USER["email"]))
        if not user:
            user = User(**DEMO_USER)
            session.add(user)
            await session.flush()
            print(f"✅ User created: {user.email}")
        else:
            print("⚠️ Demo user already exists")

        # 🔹 campaigns
        for data in DEMO_CAMPAIGNS:
            exists = await session.scalar(select(Campaign.id).where(Campaign.title == data["title"]))
            if exists:
                print(f"⚠️ Campaign already exists: {data['title']}")
                continue
            session.add(Campaign(
                organizer_id=user.id,
                end_date=datetime.now(timezone.utc) + timedelta(days=90),
                **data,
            ))
            print(f"✅ Campaign created: {data['title']}")

        await session.commit()

        print("\n" + "=" * 50)
        print("Access token for the demo donor:")
        print(create_access_token(user.uuid))
        print("=" * 50)


if __name__ == "__main__":
    asyncio.run(seed())
