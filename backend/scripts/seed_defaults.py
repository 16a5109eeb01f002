"""
Seed system permissions, system roles and the admin account.
Run after migrations: python scripts/seed_defaults.py

Safe to run repeatedly; existing rows are left untouched.
"""

import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from authcore.config import settings
from authcore.core.database import SessionLocal
from authcore.services.bootstrap import SYSTEM_PERMISSIONS, SYSTEM_ROLES, seed_defaults


def main():
    db = SessionLocal()
    try:
        seed_defaults(db)
    except Exception as e:
        print(f"Seeding failed: {e}")
        sys.exit(1)
    finally:
        db.close()

    print(f"Seeded {len(SYSTEM_PERMISSIONS)} permissions and {len(SYSTEM_ROLES)} roles.")
    print(f"Admin account: {settings.ADMIN_EMAIL}")


if __name__ == "__main__":
    main()
