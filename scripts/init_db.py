"""Initialize database with a demo organization."""
import asyncio
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.database import AsyncSessionLocal, init_db
from app.models.organization import Organization
from app.models.user import User
from app.auth.api_key import create_api_key
from app.auth.jwt import get_password_hash

DEMO_PASSWORD = "DemoPassword123!"


async def init_sample_data():
    """Create tables, then a demo organization with an owner and an API key."""
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            # Create sample organization
            org = Organization(
                name="Demo Organization",
                email="demo@example.com",
                plan="starter",
                status="active"
            )
            db.add(org)
            await db.flush()

            owner = User(
                organization_id=org.id,
                email="demo@example.com",
                name="Demo Owner",
                hashed_password=get_password_hash(DEMO_PASSWORD),
                role="owner",
                is_active=True
            )
            db.add(owner)
            await db.commit()
            await db.refresh(org)

            print(f"✓ Created organization: {org.name} ({org.id})")
            print(f"✓ Created owner: {owner.email} / {DEMO_PASSWORD}")

            # Create API key
            raw_key, api_key = await create_api_key(
                db,
                organization_id=org.id,
                name="Demo API Key"
            )

            print(f"✓ Created API key: {api_key.key_prefix}...")
            print(f"\n{'='*60}")
            print(f"SAVE THIS API KEY - IT WON'T BE SHOWN AGAIN:")
            print(f"{'='*60}")
            print(f"\n{raw_key}\n")
            print(f"{'='*60}")
            print(f"\nUse it as a bearer token for API requests.")
            print(f"\nExample:")
            print(f'curl -H "Authorization: Bearer {raw_key}" http://localhost:8000/api/usage/stats')

        except Exception as e:
            print(f"Error: {e}")
            raise


if __name__ == "__main__":
    print("Initializing database with sample data...")
    asyncio.run(init_sample_data())
