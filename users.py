import logging
from typing import List, Optional

import bcrypt

from config import settings
from errors import EmailAlreadyRegistered, InvalidCredentials, UserHasLoans, UserNotFound
from models import User
from stores import Storage

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
MAX_PASSWORD_BYTES = 72
MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 100


def hash_password(password: str) -> str:
    _check_password(password)
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
        raise ValueError(f"Name must be {MIN_NAME_LENGTH} to {MAX_NAME_LENGTH} characters.")
    return name


def _check_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")


class UserService:
    """Registration, login and account administration."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def register(self, name: str, email: str, password: str) -> User:
        """Create an account. The first account ever registered becomes an administrator."""
        user = User(name=_clean_name(name), email=email, password_hash=hash_password(password))
        with self.storage.transaction() as uow:
            if uow.users.get_by_email(user.email):
                raise EmailAlreadyRegistered(user.email)
            user.is_admin = uow.users.count() == 0
            uow.users.add(user)
        logger.info(f"User {user.id} registered ({user.email}, admin={user.is_admin})")
        return user

    def authenticate(self, email: str, password: str) -> User:
        with self.storage.transaction(write=False) as uow:
            user = uow.users.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login for {email}")
            raise InvalidCredentials()
        return user

    def get_user(self, user_id: int) -> User:
        with self.storage.transaction(write=False) as uow:
            user = uow.users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def list_users(self) -> List[User]:
        with self.storage.transaction(write=False) as uow:
            return uow.users.list_all()

    def update_user(self, user_id: int, *, name: Optional[str] = None, password: Optional[str] = None) -> User:
        new_name = _clean_name(name) if name is not None else None
        new_hash = hash_password(password) if password else None
        with self.storage.transaction() as uow:
            user = uow.users.get(user_id)
            if user is None:
                raise UserNotFound(user_id)
            if new_name:
                user.name = new_name
            if new_hash:
                user.password_hash = new_hash
            uow.users.update(user)
        return user

    def delete_user(self, user_id: int) -> None:
        with self.storage.transaction() as uow:
            if uow.loans.exists_for_user(user_id):
                raise UserHasLoans(user_id)
            if not uow.users.delete(user_id):
                raise UserNotFound(user_id)
        logger.info(f"User {user_id} removed")

    def promote_to_admin(self, user_id: int) -> User:
        with self.storage.transaction() as uow:
            if not uow.users.promote_to_admin(user_id):
                raise UserNotFound(user_id)
            user = uow.users.get(user_id)
        logger.info(f"User {user_id} promoted to admin")
        return user
