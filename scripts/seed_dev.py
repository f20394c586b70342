#!/usr/bin/env python
"""Seed a development database with a project to chat in.

Creates one creator profile, one project and a chat-enabled share link with
a fixed token, so the share-link flow can be exercised locally at
/shared/dev-share-token.

Constraints:
- Refuses to run in staging or prod (REELROOM_ENV check)
- Idempotent: rows with the fixture ids are left alone
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... python ../scripts/seed_dev.py
"""

import os
import sys
from uuid import UUID

FIXTURE_CREATOR_ID = UUID("00000000-0000-4000-8000-000000000001")
FIXTURE_PROJECT_ID = UUID("00000000-0000-4000-8000-000000000101")
FIXTURE_SHARE_ID = UUID("00000000-0000-4000-8000-000000000201")
FIXTURE_SHARE_TOKEN = "dev-share-token"


def main():
    # 1. Environment check (hard fail in staging/prod)
    reelroom_env = os.getenv("REELROOM_ENV", "local")
    if reelroom_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in REELROOM_ENV={reelroom_env}")
        sys.exit(1)

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from reelroom.db.engine import create_db_engine
    from reelroom.db.models import Profile, Project, ProjectShare
    from reelroom.db.session import create_session_factory
    from reelroom.services.membership import ensure_creator_membership

    engine = create_db_engine(database_url)
    db = create_session_factory(engine)()
    created = []
    try:
        fixtures = [
            Profile(id=FIXTURE_CREATOR_ID, full_name="Dev Creator", email="dev@example.com"),
            Project(id=FIXTURE_PROJECT_ID, name="Dev Review", creator_id=FIXTURE_CREATOR_ID),
            ProjectShare(
                id=FIXTURE_SHARE_ID,
                project_id=FIXTURE_PROJECT_ID,
                creator_id=FIXTURE_CREATOR_ID,
                share_token=FIXTURE_SHARE_TOKEN,
                can_chat=True,
            ),
        ]
        for row in fixtures:
            if db.get(type(row), row.id) is None:
                db.add(row)
                db.flush()
                created.append(type(row).__name__)
        db.commit()
        ensure_creator_membership(db, FIXTURE_PROJECT_ID)
    finally:
        db.close()
        engine.dispose()

    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"REELROOM_ENV: {reelroom_env}")
    print(f"Created: {', '.join(created) if created else 'nothing (already seeded)'}")
    print(f"Share link: /shared/{FIXTURE_SHARE_TOKEN}")


if __name__ == "__main__":
    main()
