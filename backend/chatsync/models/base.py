"""Declarative base and shared ORM mixins."""

from sqlalchemy import Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Root declarative class for all ORM models."""


class IdMixin:
    """Integer surrogate primary key assigned by the database."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
