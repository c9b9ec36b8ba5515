"""CLI for the shared development user.

Usage:
    python scripts/dev_user.py create
    python scripts/dev_user.py clear-blocks
"""
import sys
import argparse
import pathlib
from typing import List, Optional
# Ensure `backend/` is on sys.path so `planner` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from planner.config import settings
from planner.database import create_db_and_tables, engine
from planner import repositories, services


def create(session: Session) -> int:
    """Create the dev user unless it already exists."""
    existing = repositories.UserRepository(session).get_by_email(settings.DEV_USER_EMAIL)
    if existing:
        print(f'Dev user already exists: id={existing.id} email={existing.email}')
        return 0
    user = services.DevUserService(session).ensure()
    print(f'Dev user created: id={user.id} email={user.email}')
    return 0


def clear_blocks(session: Session) -> int:
    user = repositories.UserRepository(session).get_by_email(settings.DEV_USER_EMAIL)
    if not user:
        print('Dev user not found, nothing to clear')
        return 0
    deleted = repositories.BlockRepository(session).delete_for_user(user.id)
    print(f'Cleared {deleted} blocks for dev user {user.id}')
    return 0


COMMANDS = {'create': create, 'clear-blocks': clear_blocks}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Manage the development test user')
    parser.add_argument('command', choices=sorted(COMMANDS))
    args = parser.parse_args(argv)
    if not settings.is_development:
        print('Refusing to touch the dev user outside development (ENV=%s)' % settings.ENV)
        return 1
    create_db_and_tables()
    with Session(engine) as session:
        return COMMANDS[args.command](session)


if __name__ == '__main__':
    sys.exit(main())
