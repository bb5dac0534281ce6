from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tubechat.db import Base


class Quota(Base):
    __tablename__ = "quotas"
    __table_args__ = (
        CheckConstraint("messages_left >= 0", name="ck_quota_messages_non_negative"),
        CheckConstraint("video_hours_left >= 0", name="ck_quota_hours_non_negative"),
    )

    user_email: Mapped[str] = mapped_column(String(320), primary_key=True)
    messages_left: Mapped[int] = mapped_column(Integer, nullable=False)
    video_hours_left: Mapped[int] = mapped_column(Integer, nullable=False)
    reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Quota(user_email='{self.user_email}', "
            f"messages_left={self.messages_left}, "
            f"video_hours_left={self.video_hours_left})>"
        )
