from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from capgate.database import Base

KEY_TYPE_CHALLENGE = "challenge"
KEY_TYPE_TOKEN = "token"


class CapRecord(Base):
    """
    One row per pending challenge or issued verification token.

    A redeemed challenge row is rewritten in place into its token row (new key,
    key_type and expiry), which is what makes redemption at-most-once.
    """

    __tablename__ = "cap_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    key_type: Mapped[str] = mapped_column(String(16), index=True, nullable=False)
    # JSON challenge payload; "{}" for tokens
    data: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    expires_at: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None), nullable=False
    )
