"""
Pre-Deploy and Smoke Test Script.

Validates the running environment against the configured database:
1. Admin token for an existing ADMIN user
2. Health Check
3. Ledger reconciliation (stored IBA balances vs. the transaction log)
"""

import asyncio
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient
from sqlalchemy import select

from backend.app.main import app
from backend.app.core.jwt import issue_principal_token
from backend.app.db.session import AsyncSessionLocal, engine
from backend.app.models.user import User
from backend.app.models.enums import UserRole

ADMIN_EMAIL = os.getenv("SMOKE_ADMIN_EMAIL", "admin@troop.test")


def print_step(step, msg):
    print(f"[{step}] {msg}")

def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)

def success(msg):
    print(f"✅ {msg}")


async def find_admin():
    async with AsyncSessionLocal() as db:
        result = await db.execute(
            select(User).where(User.email == ADMIN_EMAIL, User.role == UserRole.ADMIN, User.is_active.is_(True))
        )
        admin = result.scalar_one_or_none()
    # The app opens its own connections on its own event loop
    await engine.dispose()
    return admin


def main():
    print("🚀 Starting Deployment Validation...")
    
    print_step("AUTH", f"Looking up admin {ADMIN_EMAIL}...")
    admin = asyncio.run(find_admin())
    if admin is None:
        fail("No active ADMIN user found (run backend/seed_users.py first)")
    token = issue_principal_token(admin.id, admin.role, admin.email)
    headers = {"Authorization": f"Bearer {token}"}
    
    with TestClient(app) as client:
        # 1. Health Check
        print_step("PRE-DEPLOY", "Checking /health...")
        response = client.get("/health")
        if response.status_code != 200:
            fail(f"Health check failed: {response.status_code} {response.text}")
        health = response.json()
        if health.get("redis") != "up":
            print("⚠️ Redis is down; revalidation signals will be dropped")
        success(f"Health: {health}")
        
        # 2. Ledger reconciliation
        print_step("SMOKE", "Reconciling ledger...")
        res = client.get("/v1/finance/reconciliation", headers=headers)
        if res.status_code != 200:
            fail(f"Reconciliation failed: {res.status_code} {res.text}")
        report = res.json()["data"]
        if not report["balanced"]:
            fail(f"Ledger is out of balance: {report['mismatches']}")
        success(
            f"Ledger balanced (troop ${report['troop_balance']}, scouts ${report['scout_balance_total']})"
        )
    
    success("Deployment Validation Passed!")

if __name__ == "__main__":
    main()
