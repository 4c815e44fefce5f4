#!/usr/bin/env python
"""Initialize the ScamAtlas database."""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

load_dotenv()


def main():
    """Create the database tables."""
    print("Initializing ScamAtlas database...")

    data_dir = project_root / "data"
    data_dir.mkdir(exist_ok=True)
    print(f"Data directory: {data_dir}")

    from db.database import init_db

    init_db()

    print("\nDatabase initialization complete!")
    print("\nNext steps:")
    print("  1. Copy .env.example to .env and configure your settings")
    print("  2. Crawl Reddit: python scripts/run_crawlers.py --batch 0")
    print("  3. Enrich reports: python scripts/run_crawlers.py --process")


if __name__ == "__main__":
    main()
