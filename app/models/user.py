"""
User Models

Account record of an authenticated caller. Holds the persisted diamond
balance used by the credit ledger.
"""

from typing import Optional

from sqlalchemy import Double, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class UserAccount(Base):
    __tablename__ = "user_accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # NULL means the account never spent a diamond: full balance
    diamonds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    diamonds_updated_at: Mapped[Optional[float]] = mapped_column(Double, nullable=True)
