"""Minimal account model."""

from enum import Enum

from pydantic import BaseModel


class UserRole(str, Enum):
    """Roles carried in access tokens."""

    USER = "user"
    DRIVER = "driver"
    ADMIN = "admin"


class User(BaseModel):
    """Account referenced by rides and drivers."""

    id: str
    name: str
    phone: str | None = None
    role: UserRole = UserRole.USER
