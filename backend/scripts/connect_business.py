#!/usr/bin/env python3
"""
Register a business for automation and print a dashboard JWT for its owner.
Creates the user if the email is new, stores the Meta access token encrypted,
and enables automation with the default frequencies.

Run from backend/:
    python -m scripts.connect_business owner@example.com "Acme Plumbing" --meta-token EAAB... [--max-budget-cents 20000]
"""
import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


async def main(args):
    from autopilot.crypto import encrypt_token
    from autopilot.database import async_session, init_db
    from autopilot.models import AutomationConfig, Business, User
    from autopilot.services.auth_service import create_access_token
    from sqlalchemy import select

    await init_db()
    async with async_session() as db:
        email = args.email.lower()
        user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        if user is None:
            user = User(email=email, name=email.split("@")[0], is_active=True)
            db.add(user)
            await db.flush()
            print(f"Created user: {user.email}")

        business = Business(
            user_id=user.id,
            business_name=args.business_name,
            facebook_access_token=encrypt_token(args.meta_token),
        )
        db.add(business)
        await db.flush()
        db.add(AutomationConfig(
            business_id=business.id,
            enabled=True,
            max_daily_budget_cents=args.max_budget_cents,
        ))
        await db.commit()

        print(f"Business: {business.business_name} ({business.id})")
        print(f"JWT for {user.email}: {create_access_token(str(user.id), user.email)}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("email")
    parser.add_argument("business_name")
    parser.add_argument("--meta-token", default=None)
    parser.add_argument("--max-budget-cents", type=int, default=None)
    asyncio.run(main(parser.parse_args()))
