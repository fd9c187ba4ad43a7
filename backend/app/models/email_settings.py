from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class EmailSettings(Base):
    """Transactional email configuration, one row per actor.

    Rows are replaced wholesale on every save, so there is no created_at.
    """

    __tablename__ = "email_settings"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_api_key: Mapped[str] = mapped_column(
        String(255), nullable=False, default="", comment="Delivery provider API key"
    )
    from_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    from_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<EmailSettings(user_id='{self.user_id}', enabled={self.enabled})>"
