"""
Create a user and print its API key.

    python scripts/create_user.py --email ops@example.com --name "Ops"
"""
import argparse

from crm_enrichment.core.config import get_settings
from crm_enrichment.core.db import SessionLocal
from crm_enrichment.core.logging import configure_logging
from crm_enrichment.services.users import create_user


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a CRM enrichment API user.")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default=None)
    parser.add_argument("--api-key", default=None, help="Use this key instead of generating one")
    args = parser.parse_args()

    configure_logging(get_settings().LOG_LEVEL)
    db = SessionLocal()
    try:
        user = create_user(db, args.email, name=args.name, api_key=args.api_key)
        print(f"user_id={user.id}")
        print(f"api_key={user.api_key}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
