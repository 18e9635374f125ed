# seed.py
# Demo vendor directory. Run with: python -m rfpdesk.seed
# Replace the addresses with mailboxes you control to act as vendors.

import logging

from . import vendors
from .config import load_settings
from .logging_config import setup_logging
from .storage import Database

log = logging.getLogger(__name__)

DEMO_VENDORS = [
    {"name": "Global Tech Solutions", "email": "sales@globaltech.example"},
    {"name": "Office Pro Supplies", "email": "bids@officepro.example"},
    {"name": "Elite Electronics", "email": "quotes@elite-electronics.example"},
]


def seed(db: Database, entries=DEMO_VENDORS):
    with db.session() as s:
        for entry in entries:
            vendor = vendors.get_or_create(s, entry["name"], entry["email"])
            log.info("Vendor %s <%s> id=%s", vendor.name, vendor.email, vendor.id)


def main():
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_json)
    db = Database(settings.database_url)
    db.create_all()
    seed(db)


if __name__ == "__main__":
    main()
