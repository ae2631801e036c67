from __future__ import annotations
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime, text

Base = declarative_base()


class Account(Base):
    """Directory entry for a person acting in the workflow.

    Requests reference accounts weakly (by id only); editing or removing an account
    never invalidates the requests it created.
    """
    __tablename__ = 'accounts'
    ROLE_USER = 'user'
    ROLE_APPROVER = 'approver'
    ROLE_ADMIN = 'admin'
    ALL_ROLES = (ROLE_USER, ROLE_APPROVER, ROLE_ADMIN)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    department: Mapped[str] = mapped_column(String(128), nullable=False, default='')
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_USER, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, raw)
