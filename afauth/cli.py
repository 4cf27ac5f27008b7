"""Operator command line: services, revoked token cleanup, key rotation, token encryption

Usage:
    afauth-admin service add <identifier> [--scopes a,b] [--description TEXT] [--inactive]
    afauth-admin service rotate|activate|deactivate|delete|show <identifier>
    afauth-admin service list [--active]
    afauth-admin cleanup-revoked-tokens [--retention DAYS] [--dry-run]
    afauth-admin key-rotation check [--all]
    afauth-admin key-rotation record <identifier> <type> [--interval DAYS] [--metadata TEXT]
    afauth-admin key-rotation init
    afauth-admin encrypt-tokens [--dry-run]
"""
import argparse
import asyncio
import sys
from typing import List, Optional

from sqlalchemy import or_, select

from afauth.config import settings
from afauth.database import AsyncSessionLocal, close_db
from afauth.errors import ServiceAlreadyExistsError, ServiceNotFoundError
from afauth.models.user import User
from afauth.services import key_rotation, service_registry
from afauth.services.token_revocation import cleanup_expired_revoked_tokens
from afauth.utils.encryption import decrypt, encrypt, is_encrypted
from afauth.utils.logger import logger


def _print_service(service) -> None:
    print(f"  Identifier:   {service.service_identifier}")
    print(f"  ID:           {service.id}")
    print(f"  Active:       {service.is_active}")
    print(f"  Scopes:       {', '.join(service.allowed_scopes or []) or '-'}")
    print(f"  Description:  {service.description or '-'}")
    print(f"  Created:      {service.created_at}")
    print(f"  Last used:    {service.last_used_at or 'never'}")
    print(f"  Key rotated:  {service.last_api_key_rotated_at or 'never'}")


def _print_api_key(api_key: str) -> None:
    print()
    print(f"  API key: {api_key}")
    print("  Store this key securely. It will not be shown again.")


# ---------------------------------------------------------------------------
# service
# ---------------------------------------------------------------------------

async def cmd_service(args: argparse.Namespace) -> int:
    async with AsyncSessionLocal() as db:
        if args.action == "list":
            services = await service_registry.list_services(db, active_only=args.active)
            if not services:
                print("No services registered.")
            for service in services:
                print(f"{service.service_identifier}\tactive={service.is_active}\tlast_used={service.last_used_at or 'never'}")
            return 0

        try:
            if args.action == "add":
                api_key = service_registry.generate_api_key()
                scopes = [scope.strip() for scope in args.scopes.split(",") if scope.strip()] if args.scopes else []
                service = await service_registry.create_service(
                    db,
                    args.identifier,
                    api_key,
                    allowed_scopes=scopes,
                    description=args.description,
                    is_active=not args.inactive,
                )
                print("Service created:")
                _print_service(service)
                _print_api_key(api_key)

            elif args.action == "rotate":
                api_key = service_registry.generate_api_key()
                service = await service_registry.rotate_service_api_key(db, args.identifier, api_key)
                print(f"API key rotated for {service.service_identifier}. The previous key no longer works.")
                _print_api_key(api_key)

            elif args.action == "activate":
                await service_registry.activate_service(db, args.identifier)
                print(f"Service {args.identifier} activated.")

            elif args.action == "deactivate":
                await service_registry.deactivate_service(db, args.identifier)
                print(f"Service {args.identifier} deactivated.")

            elif args.action == "delete":
                await service_registry.delete_service(db, args.identifier)
                print(f"Service {args.identifier} deleted.")

            elif args.action == "show":
                service = await service_registry.get_service(db, args.identifier)
                if service is None:
                    raise ServiceNotFoundError(f"Service '{args.identifier}' not found")
                _print_service(service)

        except (ServiceAlreadyExistsError, ServiceNotFoundError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    return 0


# ---------------------------------------------------------------------------
# cleanup-revoked-tokens
# ---------------------------------------------------------------------------

async def cmd_cleanup(args: argparse.Namespace) -> int:
    if args.retention < 0:
        print("Error: --retention must be zero or positive", file=sys.stderr)
        return 1

    async with AsyncSessionLocal() as db:
        count = await cleanup_expired_revoked_tokens(db, retention_days=args.retention, dry_run=args.dry_run)

    if args.dry_run:
        print(f"Dry run: {count} revoked tokens would be deleted (retention {args.retention} days).")
    else:
        print(f"Deleted {count} revoked tokens (retention {args.retention} days).")
    return 0


# ---------------------------------------------------------------------------
# key-rotation
# ---------------------------------------------------------------------------

async def cmd_key_rotation(args: argparse.Namespace) -> int:
    async with AsyncSessionLocal() as db:
        if args.action == "init":
            await key_rotation.initialize_key_rotation_tracking(db)
            print("Key rotation tracking initialized.")
            return 0

        if args.action == "record":
            try:
                record = await key_rotation.record_key_rotation(
                    db,
                    args.identifier,
                    args.key_type,
                    rotation_interval_days=args.interval,
                    metadata=args.metadata,
                )
            except ValueError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                return 1
            print(f"Rotation recorded for {record.key_identifier}; next due {record.next_rotation_due or 'never'}.")
            return 0

        statuses = await key_rotation.check_and_log_overdue_rotations(db)
        if args.all:
            statuses = await key_rotation.get_all_key_rotation_statuses(db, active_only=False)

    if not statuses:
        print("No keys tracked. Run 'afauth-admin key-rotation init' first.")
        return 0

    overdue = 0
    for status in statuses:
        if status.is_overdue:
            overdue += 1
            state = f"OVERDUE by {abs(status.days_until_due)} days"
        elif status.days_until_due is None:
            state = "no rotation policy"
        else:
            state = f"due in {status.days_until_due} days"
        print(f"{status.key_identifier}\t{status.key_type}\trotated {status.days_since_rotation} days ago\t{state}")

    return 2 if overdue else 0


# ---------------------------------------------------------------------------
# encrypt-tokens
# ---------------------------------------------------------------------------

def _encrypt_verified(value: str) -> str:
    encrypted = encrypt(value)
    if decrypt(encrypted) != value:
        raise RuntimeError("Encryption round-trip verification failed")
    return encrypted


async def cmd_encrypt_tokens(args: argparse.Namespace) -> int:
    """Encrypt GitHub tokens still stored as plaintext"""
    migrated = 0
    async with AsyncSessionLocal() as db:
        users = (await db.scalars(select(User).where(or_(
            User.github_access_token.is_not(None),
            User.github_refresh_token.is_not(None),
        )))).all()

        for user in users:
            changed = False
            if user.github_access_token and not is_encrypted(user.github_access_token):
                user.github_access_token = _encrypt_verified(user.github_access_token)
                changed = True
            if user.github_refresh_token and not is_encrypted(user.github_refresh_token):
                user.github_refresh_token = _encrypt_verified(user.github_refresh_token)
                changed = True
            if changed:
                migrated += 1

        if args.dry_run:
            await db.rollback()
        else:
            await db.commit()

    logger.info(
        f"Token encryption {'dry run' if args.dry_run else 'migration'} complete",
        extra={"count": migrated, "action": "encrypt_tokens"},
    )
    verb = "would be" if args.dry_run else "were"
    print(f"{migrated} of {len(users)} users with tokens {verb} migrated.")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="afauth-admin", description="AF Auth administration")
    sub = parser.add_subparsers(dest="command", required=True)

    service = sub.add_parser("service", help="Manage registered services")
    service_sub = service.add_subparsers(dest="action", required=True)
    add = service_sub.add_parser("add", help="Register a service and print its API key")
    add.add_argument("identifier")
    add.add_argument("--scopes", help="Comma-separated allowed scopes")
    add.add_argument("--description")
    add.add_argument("--inactive", action="store_true", help="Create the service deactivated")
    for action in ("rotate", "activate", "deactivate", "delete", "show"):
        service_sub.add_parser(action).add_argument("identifier")
    service_list = service_sub.add_parser("list")
    service_list.add_argument("--active", action="store_true", help="Only active services")
    service.set_defaults(handler=cmd_service)

    cleanup = sub.add_parser("cleanup-revoked-tokens", help="Prune revoked tokens past retention")
    cleanup.add_argument("--retention", type=int, default=settings.REVOKED_TOKEN_RETENTION_DAYS,
                         help="Days after token expiry to keep rows")
    cleanup.add_argument("--dry-run", action="store_true")
    cleanup.set_defaults(handler=cmd_cleanup)

    rotation = sub.add_parser("key-rotation", help="Track key rotation")
    rotation_sub = rotation.add_subparsers(dest="action", required=True)
    check = rotation_sub.add_parser("check", help="Report rotation status; exit 2 if any key is overdue")
    check.add_argument("--all", action="store_true", help="Include inactive keys")
    record = rotation_sub.add_parser("record", help="Record that a key was rotated now")
    record.add_argument("identifier")
    record.add_argument("key_type", choices=key_rotation.KEY_TYPES)
    record.add_argument("--interval", type=int, help="Rotation interval in days (0 = no policy)")
    record.add_argument("--metadata")
    rotation_sub.add_parser("init", help="Start tracking the standard keys")
    rotation.set_defaults(handler=cmd_key_rotation)

    encrypt_tokens = sub.add_parser("encrypt-tokens", help="Encrypt legacy plaintext GitHub tokens")
    encrypt_tokens.add_argument("--dry-run", action="store_true")
    encrypt_tokens.set_defaults(handler=cmd_encrypt_tokens)

    return parser


async def run(args: argparse.Namespace) -> int:
    try:
        return await args.handler(args)
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
