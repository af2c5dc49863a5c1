"""
Restart persistence check.

Starts the API, creates a delivery as the seeded STAFF user, restarts the
API and reads the delivery and its event history back. Run seed_data.py
against the same database first.
"""

import asyncio
import os
import signal
import subprocess
import sys
import time

import httpx
from sqlalchemy import select

from skymap.app.core.jwt import create_access_token
from skymap.app.db.session import AsyncSessionLocal
from skymap.app.models.business import Business
from skymap.app.models.user import User

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"
STAFF_EMAIL = "staff@skymap.co.tz"


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for _ in range(retries):
        try:
            if httpx.get(url).status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def start_server():
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "skymap.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env={**os.environ, "DB_ECHO": "True"},
    )


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


async def load_fixtures():
    async with AsyncSessionLocal() as db:
        staff = await db.scalar(select(User).where(User.email == STAFF_EMAIL))
        business = await db.scalar(select(Business).order_by(Business.id).limit(1))
    if staff is None or business is None:
        raise SystemExit("❌ Seed data missing, run skymap/seed_data.py first")
    return staff, business


def run_verification():
    staff, business = asyncio.run(load_fixtures())
    token = create_access_token({"sub": staff.email, "user_id": staff.id, "role": staff.role.value})
    headers = {"Authorization": f"Bearer {token}"}

    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server()
    try:
        if not wait_for_server():
            stdout, stderr = proc.communicate(timeout=2)
            print("Server Stdout:", stdout.decode())
            print("Server Stderr:", stderr.decode())
            raise SystemExit("Server start failed")

        print("\n--- [Step 2] Creating Delivery ---")
        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/deliveries",
            json={
                "business_id": business.id,
                "pickup_address": "Kariakoo, Dar es Salaam",
                "pickup_name": business.name,
                "pickup_phone": business.phone or "0712000000",
                "dropoff_address": "Mikocheni B",
                "dropoff_name": "Persistence Check",
                "dropoff_phone": "0765000111",
            },
            headers=headers,
        )
        if resp.status_code != 201:
            raise SystemExit(f"❌ Delivery creation failed: {resp.status_code} {resp.text}")
        delivery_id = resp.json()["id"]
        print(f"✅ Delivery {delivery_id} created")
    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)  # port release

    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc = start_server()
    try:
        if not wait_for_server():
            raise SystemExit("Server restart failed")

        print("\n--- [Step 5] Reading Delivery Back ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/deliveries/{delivery_id}", headers=headers)
        if resp.status_code != 200:
            raise SystemExit(f"❌ Delivery lost after restart: {resp.status_code} {resp.text}")
        print(f"✅ Delivery persisted (status {resp.json()['status']})")

        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/deliveries/{delivery_id}/events", headers=headers)
        if resp.status_code != 200 or not resp.json():
            raise SystemExit(f"❌ Event history missing: {resp.status_code} {resp.text}")
        print(f"✅ {len(resp.json())} event(s) persisted")
    finally:
        print("\n--- [Step 6] Stopping Server ---")
        stop_server(proc)


if __name__ == "__main__":
    run_verification()
