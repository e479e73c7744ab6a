from __future__ import annotations

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hostcraft.models.base import Base, TimestampMixin


class PrivateKey(TimestampMixin, Base):
    __tablename__ = "private_keys"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    # Both columns hold vault ciphertext.
    key_data: Mapped[str] = mapped_column(Text)
    passphrase: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
