# scripts/create_staff_user.py

import os
import sys

# --- Ensure project root is on PYTHONPATH ---
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(ROOT)

from zefit.auth_service import create_staff_user
from zefit.init_db import init_db
from zefit.models.base import get_session


def run(email: str, password: str):
    init_db()
    with get_session() as session:
        user = create_staff_user(session, email=email, password=password)
        print("Created staff user ID:", user.user_id)


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("usage: python scripts/create_staff_user.py EMAIL PASSWORD")
        sys.exit(1)
    run(sys.argv[1], sys.argv[2])
