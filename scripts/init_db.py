#!/usr/bin/env python3
"""
Create the Store A tables (user_profile, planning_record, circuit_breaker_state).

Usage:
    python scripts/init_db.py
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dualstore.core.config import settings
from dualstore.db import create_db_and_tables
from dualstore.models import *  # noqa: F401,F403 - registers every table with SQLModel

if __name__ == "__main__":
    print(f"Creating tables in {settings.DATABASE_URL.split('@')[-1]}...")
    try:
        create_db_and_tables()
        print("Tables created successfully!")
    except Exception as e:
        print(f"Error creating tables: {e}")
        sys.exit(1)
