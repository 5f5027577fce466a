"""Shared SQLAlchemy declarative base used by all ORM models."""

import uuid
from datetime import datetime

from sqlalchemy.orm import declarative_base

# A single Base instance is used across the project so that models can be
# registered without creating import cycles.
Base = declarative_base()


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.utcnow()


__all__ = ["Base", "generate_id", "utcnow"]
