"""Account registration and password authentication."""
import uuid
from typing import Optional

import bcrypt
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.config import get_settings
from creator_platform.core.errors import AccountExists, InvalidInput, NotFound, Unauthorized
from creator_platform.database.connection import atomic
from creator_platform.database.models import Account, utcnow

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
MAX_PASSWORD_BYTES = 72
SELF_SERVICE_ROLES = ("subscriber", "creator")


def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with bcrypt."""
    rounds = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or oversize input
        logger.warning("password_hash_unverifiable")
        return False


def normalize_email(email: str) -> str:
    """Lower-case and trim an e-mail address."""
    return email.strip().lower()


class AccountService:
    """Registers accounts and checks credentials."""

    def __init__(self, bcrypt_rounds: Optional[int] = None):
        self.bcrypt_rounds = bcrypt_rounds or get_settings().bcrypt_rounds

    @staticmethod
    def _validate(email: str, password: str) -> None:
        local, _, domain = email.partition("@")
        if not local or "." not in domain:
            raise InvalidInput("email", "must be a valid e-mail address")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInput("password", f"must be at least {MIN_PASSWORD_LENGTH} characters")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise InvalidInput("password", f"must be at most {MAX_PASSWORD_BYTES} bytes")

    async def register(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        role: str = "subscriber",
        allow_admin: bool = False,
    ) -> Account:
        """
        Create an account.

        Args:
            db: Database session
            email: Login e-mail (stored lower-cased)
            password: Plain-text password, hashed before storage
            name: Display name
            role: ``subscriber`` or ``creator``
            allow_admin: Permit ``role="admin"`` (provisioning scripts only)

        Returns:
            Account: The new account

        Raises:
            InvalidInput: On a malformed e-mail, short password or unknown role
            AccountExists: If the e-mail is already registered
        """
        email = normalize_email(email)
        self._validate(email, password)
        if role not in SELF_SERVICE_ROLES and not (allow_admin and role == "admin"):
            raise InvalidInput("role", f"cannot register as {role!r}")

        password_hash = get_password_hash(password, self.bcrypt_rounds)

        try:
            async with atomic(db):
                taken = await db.scalar(select(Account.id).where(Account.email == email))
                if taken is not None:
                    raise AccountExists(email)

                account = Account(
                    email=email,
                    name=name,
                    password_hash=password_hash,
                    role=role,
                )
                db.add(account)
                await db.flush()
        except IntegrityError as e:
            raise AccountExists(email) from e

        logger.info("account_registered", account_id=str(account.id), role=role)
        return account

    async def authenticate(
        self, db: AsyncSession, email: str, password: str
    ) -> Optional[Account]:
        """
        Verify credentials.

        Returns:
            Optional[Account]: The account, or None when the credentials are wrong

        Raises:
            Unauthorized: If the credentials match a banned account
        """
        email = normalize_email(email)
        async with atomic(db):
            account = (
                await db.execute(select(Account).where(Account.email == email))
            ).scalar_one_or_none()
            if account is None or not account.password_hash:
                logger.info("login_failed", reason="unknown_account")
                return None
            if not verify_password(password, account.password_hash):
                logger.info("login_failed", reason="bad_password", account_id=str(account.id))
                return None
            if account.is_banned:
                logger.warning("login_refused_banned", account_id=str(account.id))
                raise Unauthorized("Account is banned")

            account.last_login_at = utcnow()
            await db.flush()

        logger.info("login_succeeded", account_id=str(account.id))
        return account

    async def get(self, db: AsyncSession, account_id: uuid.UUID) -> Account:
        """Load an account by id."""
        account = (
            await db.execute(select(Account).where(Account.id == account_id))
        ).scalar_one_or_none()
        if account is None:
            raise NotFound("Account", account_id)
        return account
