"""SQLAlchemy ORM models for tokengate.

All models are exported from this module for convenient imports:
    from tokengate.models import User, ValidationTokenRecord

Models are organized by domain:
- user.py: User (account; password hash and email-verified flag)
- validation_token.py: ValidationTokenRecord (typed single-use secrets)
"""

from tokengate.models.base import Base, TimestampMixin
from tokengate.models.user import User
from tokengate.models.validation_token import ValidationTokenRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "ValidationTokenRecord",
]
