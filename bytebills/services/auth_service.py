from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from bytebills.errors import BillingError, InvalidCredentials
from bytebills.models.common import TimeStamped, gen_id
from bytebills.storage.json_repo import JsonRepository

log = logging.getLogger(__name__)

PBKDF2_ROUNDS = 120_000
GENERIC_SIGN_IN_ERROR = "Something went wrong. Please try again."


class User(BaseModel):
    id: str
    email: str
    display_name: str = ""


@dataclass(frozen=True)
class Session:
    """Who is acting; passed explicitly into every service call."""
    user: User

    @property
    def user_id(self) -> str:
        return self.user.id


class AuthProvider(Protocol):
    def current_user(self) -> Optional[User]: ...

    def sign_in(self, email: str, password: str) -> User: ...

    def sign_out(self) -> None: ...


class UserAccount(TimeStamped):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    email: EmailStr
    display_name: str = ""
    password_salt: str
    password_hash: str


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ROUNDS).hex()


def sign_in_message(exc: Exception) -> str:
    """User-facing text for a failed sign-in."""
    if isinstance(exc, InvalidCredentials):
        return InvalidCredentials.user_message
    return GENERIC_SIGN_IN_ERROR


class JsonAuthProvider:
    """Local accounts kept in a JSON collection; one signed-in user at a time."""

    def __init__(self, repo: JsonRepository) -> None:
        self.repo = repo
        self._current: Optional[User] = None

    def register(self, email: str, password: str, display_name: str = "") -> User:
        email = email.strip().lower()
        if self.repo.find(lambda d: d.get("email") == email):
            raise BillingError(f"Account {email} already exists", user_message="An account with this email already exists.")
        salt = secrets.token_hex(16)
        account = UserAccount(
            email=email,
            display_name=display_name,
            password_salt=salt,
            password_hash=_hash_password(password, salt),
        )
        self.repo.add(account)
        return User(id=account.id, email=account.email, display_name=account.display_name)

    def current_user(self) -> Optional[User]:
        return self._current

    def session(self) -> Optional[Session]:
        return Session(self._current) if self._current else None

    def sign_in(self, email: str, password: str) -> User:
        email = email.strip().lower()
        rows = self.repo.find(lambda d: d.get("email") == email)
        if not rows:
            raise InvalidCredentials(f"Unknown account {email}")
        account = UserAccount(**rows[0])
        candidate = _hash_password(password, account.password_salt)
        if not hmac.compare_digest(candidate, account.password_hash):
            raise InvalidCredentials(f"Wrong password for {email}")
        self._current = User(id=account.id, email=account.email, display_name=account.display_name)
        log.info("Signed in %s", email)
        return self._current

    def sign_out(self) -> None:
        self._current = None
