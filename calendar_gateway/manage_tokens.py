"""
Calendar token management
Usage:
    calendar-tokens create "iPhone Rabia" --permissions appointments busy_slots --expires-days 365
    calendar-tokens list
    calendar-tokens deactivate <token_id>
    calendar-tokens activate <token_id>
    calendar-tokens revoke <token_id>
"""

import argparse
import logging
import sys
from datetime import timedelta
from typing import Optional

from .domain.calendar.repository import SchedulingStore
from .domain.calendar.schemas import VALID_PERMISSIONS, TokenFields
from .exceptions import GatewayError
from .utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage calendar subscription tokens")
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Issue a new token and print its secret")
    create.add_argument("name")
    create.add_argument("--description")
    create.add_argument(
        "--permissions",
        nargs="+",
        choices=VALID_PERMISSIONS,
        default=list(VALID_PERMISSIONS),
    )
    create.add_argument("--expires-days", type=int)

    commands.add_parser("list", help="List tokens without secrets")

    for name, help_text in (
        ("activate", "Re-enable a token"),
        ("deactivate", "Disable a token without deleting it"),
        ("revoke", "Delete a token permanently"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("token_id")

    return parser


def run(args: argparse.Namespace, store: SchedulingStore) -> int:
    if args.command == "create":
        if args.expires_days is not None and args.expires_days < 1:
            logger.error("❌ --expires-days must be a positive number")
            return 2
        expires_at = utcnow() + timedelta(days=args.expires_days) if args.expires_days else None
        token, secret = store.create_token(
            TokenFields(
                name=args.name,
                description=args.description,
                permissions=args.permissions,
                expires_at=expires_at,
            )
        )
        logger.info(f"✅ Token created: {token.id}")
        logger.info(f"🔑 Secret (shown once): {secret}")
        return 0

    if args.command == "list":
        for token in store.list_tokens():
            state = "active" if token.is_active else "inactive"
            expires = token.expires_at.isoformat() if token.expires_at else "never"
            logger.info(
                f"{token.id}  {token.name}  [{', '.join(token.permissions)}]  {state}  expires={expires}"
            )
        return 0

    if args.command in ("activate", "deactivate"):
        token = store.set_token_active(args.token_id, args.command == "activate")
        if token is None:
            logger.error(f"❌ Token not found: {args.token_id}")
            return 1
        logger.info(f"✅ Token {token.id} {args.command}d")
        return 0

    if not store.delete_token(args.token_id):
        logger.error(f"❌ Token not found: {args.token_id}")
        return 1
    logger.info(f"🗑️ Token revoked: {args.token_id}")
    return 0


def main(argv: Optional[list[str]] = None, store: Optional[SchedulingStore] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = build_parser().parse_args(argv)

    if store is None:
        from .database import Base, SessionLocal, engine
        from .domain.calendar.repository import SqlSchedulingStore

        Base.metadata.create_all(bind=engine, checkfirst=True)
        store = SqlSchedulingStore(SessionLocal)

    try:
        return run(args, store)
    except GatewayError as e:
        logger.error(f"❌ {e.detail}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
