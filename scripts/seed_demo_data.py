# scripts/seed_demo_data.py

import os
import sys

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(ROOT)

from zefit import settings
from zefit.demo_data import DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD, seed_demo_data


def run():
    settings.configure_logging()
    seed_demo_data()
    print("Demo data ready:")
    print(f"  Staff login: {DEMO_ADMIN_EMAIL} / {DEMO_ADMIN_PASSWORD}")
    print("  6 clients, 2 trainers, this week's trainings and 2 posts")


if __name__ == "__main__":
    run()
