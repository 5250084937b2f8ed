from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime
from typing import Optional

from school_rentals.models.rental_models import RentalState, User
from school_rentals.schemas.users import CreateUserDto
from school_rentals.services.errors import AuthenticationError, ConflictError, parse_payload


AUTH_LOGGER = logging.getLogger("school_rentals.auth")

PASSWORD_ITERATIONS = 120000


def _password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        (password or "").encode("utf-8"),
        salt.encode("utf-8"),
        PASSWORD_ITERATIONS,
    )
    return raw.hex()


def normalize_email(raw_email: str | None) -> str:
    return (raw_email or "").strip().lower()


def find_user_by_email(state: RentalState, email: str) -> Optional[User]:
    key = normalize_email(email)
    for user in state.users:
        if normalize_email(user.email) == key:
            return user
    return None


def get_user(state: RentalState, user_id: str) -> Optional[User]:
    for user in state.users:
        if user.id == user_id:
            return user
    return None


def generate_user_id(state: RentalState, prefix: str = "USR") -> str:
    max_seq = 0
    for user in state.users:
        raw = user.id.replace(f"{prefix}-", "", 1)
        if not user.id.startswith(f"{prefix}-") or not raw.isdigit():
            continue
        max_seq = max(max_seq, int(raw))
    return f"{prefix}-{max_seq + 1:03d}"


def create_user(state: RentalState, payload: CreateUserDto, now: datetime) -> User:
    if find_user_by_email(state, payload.email) is not None:
        AUTH_LOGGER.warning("Registration rejected email=%s reason=duplicate_email", normalize_email(payload.email))
        raise ConflictError(f"A user with email {payload.email} already exists.")

    salt = secrets.token_hex(16)
    user = User(
        id=generate_user_id(state),
        email=payload.email,
        name=payload.name,
        role=payload.role,
        student_id=payload.studentId,
        year=payload.year,
        created_at=now,
        password_hash=_password_hash(payload.password, salt),
        password_salt=salt,
    )
    state.users.append(user)
    AUTH_LOGGER.info("User registered id=%s role=%s", user.id, user.role)
    return user


def verify_password(user: User, password: str) -> bool:
    if not user.password_hash or not user.password_salt:
        return False
    candidate = _password_hash(password, user.password_salt)
    return hmac.compare_digest(candidate, user.password_hash)


def authenticate(state: RentalState, email: str, password: str) -> User:
    user = find_user_by_email(state, email)
    if user is None:
        AUTH_LOGGER.warning("Login failed email=%s reason=unknown_email", normalize_email(email))
        raise AuthenticationError("Invalid credentials.")
    if not verify_password(user, password):
        AUTH_LOGGER.warning("Login failed email=%s reason=invalid_password", normalize_email(email))
        raise AuthenticationError("Invalid credentials.")
    AUTH_LOGGER.info("Login success user_id=%s", user.id)
    return user


def provision_admin(state: RentalState, email: str, password: str, now: datetime) -> User:
    existing = find_user_by_email(state, email)
    if existing is not None:
        if existing.role != "admin":
            raise ConflictError(f"{email} is registered with role {existing.role}, not admin.")
        return existing
    payload = parse_payload(
        CreateUserDto,
        {"email": email, "name": "TJHS Administrator", "role": "admin", "password": password},
    )
    return create_user(state, payload, now)


def serialize_user(user: User) -> dict:
    return {
        "userID": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "studentId": user.student_id,
        "year": user.year,
        "createdAt": user.created_at,
    }
