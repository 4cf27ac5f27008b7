"""Tests for the operator command line"""
import re
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from afauth.cli import build_parser
from afauth.models.revoked_token import RevokedToken
from afauth.models.user import User
from afauth.services.key_rotation import record_key_rotation
from afauth.services.service_registry import authenticate_service, get_service
from afauth.utils.encryption import decrypt, is_encrypted


async def run_cli(*argv: str) -> int:
    args = build_parser().parse_args(list(argv))
    return await args.handler(args)


async def test_service_add_prints_key_once(db, capsys):
    """Test adding a service prints a working API key"""
    assert await run_cli("service", "add", "ci-runner", "--scopes", "github:token:read, extra", "--description", "CI") == 0

    output = capsys.readouterr().out
    api_key = re.search(r"API key: ([0-9a-f]{64})", output).group(1)
    assert "will not be shown again" in output

    service = await get_service(db, "ci-runner")
    assert service.allowed_scopes == ["github:token:read", "extra"]
    assert (await authenticate_service(db, "ci-runner", api_key)).authenticated is True


async def test_service_add_duplicate(db, service, capsys):
    """Test adding an existing identifier fails"""
    assert await run_cli("service", "add", "test-service") == 1
    assert "already exists" in capsys.readouterr().err


async def test_service_rotate(db, service, capsys):
    """Test rotation prints a new key and invalidates the old one"""
    registered, old_key = service

    assert await run_cli("service", "rotate", registered.service_identifier) == 0

    new_key = re.search(r"API key: ([0-9a-f]{64})", capsys.readouterr().out).group(1)
    db.expire_all()
    assert (await authenticate_service(db, "test-service", old_key)).authenticated is False
    assert (await authenticate_service(db, "test-service", new_key)).authenticated is True


async def test_service_deactivate_and_list(db, service, capsys):
    """Test deactivation and the active filter of list"""
    assert await run_cli("service", "deactivate", "test-service") == 0
    capsys.readouterr()

    assert await run_cli("service", "list", "--active") == 0
    assert "No services registered." in capsys.readouterr().out

    assert await run_cli("service", "list") == 0
    assert "test-service\tactive=False" in capsys.readouterr().out


async def test_service_unknown(db, capsys):
    """Test commands against a missing service fail"""
    assert await run_cli("service", "show", "nobody") == 1
    assert await run_cli("service", "delete", "nobody") == 1
    assert "not found" in capsys.readouterr().err


async def test_cleanup_revoked_tokens(db, capsys):
    """Test cleanup honours retention and dry run"""
    expired = datetime.now(timezone.utc) - timedelta(days=10)
    db.add(RevokedToken(
        jti="old", user_id="u", token_issued_at=expired - timedelta(hours=1), token_expires_at=expired,
    ))
    await db.commit()

    assert await run_cli("cleanup-revoked-tokens", "--retention", "7", "--dry-run") == 0
    assert "Dry run: 1 revoked tokens would be deleted" in capsys.readouterr().out
    assert await db.scalar(select(RevokedToken.jti)) == "old"

    assert await run_cli("cleanup-revoked-tokens", "--retention", "7") == 0
    assert "Deleted 1 revoked tokens" in capsys.readouterr().out


async def test_cleanup_negative_retention(db, capsys):
    """Test negative retention is refused"""
    assert await run_cli("cleanup-revoked-tokens", "--retention", "-1") == 1


async def test_key_rotation_init_and_check(db, capsys):
    """Test init then check reports every standard key"""
    assert await run_cli("key-rotation", "init") == 0
    assert await run_cli("key-rotation", "check") == 0

    output = capsys.readouterr().out
    for key in ("jwt_signing_key", "jwt_verification_key", "github_token_encryption_key"):
        assert key in output


async def test_key_rotation_check_overdue_exit_code(db, capsys):
    """Test check exits 2 when a key is overdue"""
    record = await record_key_rotation(db, "stale_key", "other", rotation_interval_days=1)
    record.next_rotation_due = datetime.now(timezone.utc) - timedelta(days=3)
    await db.commit()

    assert await run_cli("key-rotation", "check") == 2
    assert "OVERDUE by" in capsys.readouterr().out


async def test_key_rotation_record(db, capsys):
    """Test recording a rotation from the command line"""
    assert await run_cli(
        "key-rotation", "record", "jwt_signing_key", "jwt_signing", "--interval", "90", "--metadata", "scheduled",
    ) == 0
    assert "Rotation recorded for jwt_signing_key" in capsys.readouterr().out


async def test_encrypt_tokens(db, capsys):
    """Test legacy plaintext tokens are encrypted, dry run leaves them alone"""
    db.add(User(github_user_id=1, github_access_token="gho_plain", github_refresh_token="ghr_plain"))
    await db.commit()

    assert await run_cli("encrypt-tokens", "--dry-run") == 0
    assert "1 of 1 users with tokens would be migrated." in capsys.readouterr().out
    user = await db.scalar(select(User).execution_options(populate_existing=True))
    assert user.github_access_token == "gho_plain"

    assert await run_cli("encrypt-tokens") == 0
    user = await db.scalar(select(User).execution_options(populate_existing=True))
    assert is_encrypted(user.github_access_token)
    assert decrypt(user.github_access_token) == "gho_plain"
    assert decrypt(user.github_refresh_token) == "ghr_plain"

    # Already encrypted tokens are left untouched
    assert await run_cli("encrypt-tokens") == 0
    assert "0 of 1 users with tokens were migrated." in capsys.readouterr().out
