#!/usr/bin/env python
"""Give every project creator an active chat membership.

Projects created before chat membership existed have creators with no
project_chat_members row. This inserts the missing rows directly, without
join announcements.

Constraints:
- Idempotent: creators that already have an active membership are skipped
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... python ../scripts/backfill_creator_memberships.py
"""

import os
import sys


def main():
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from reelroom.db.engine import create_db_engine
    from reelroom.db.session import create_session_factory
    from reelroom.logging import configure_logging
    from reelroom.services.membership import backfill_creator_memberships

    configure_logging(json_format=False)

    engine = create_db_engine(database_url)
    session_factory = create_session_factory(engine)
    db = session_factory()
    try:
        created = backfill_creator_memberships(db)
    finally:
        db.close()
        engine.dispose()

    print(f"Backfill complete: {created} creator membership(s) created")


if __name__ == "__main__":
    main()
