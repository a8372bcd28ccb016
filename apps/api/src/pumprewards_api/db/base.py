from enum import Enum
from typing import Type

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def enum_values(enum_cls: Type[Enum]) -> list[str]:
    """Persist enum ``value``s rather than member names."""

    return [member.value for member in enum_cls]
