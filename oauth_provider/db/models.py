# oauth_provider/db/models.py
from enum import StrEnum
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
)


class Base(DeclarativeBase):
    pass


class TokenState(StrEnum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    EXCHANGED = "exchanged"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Consumer(Base):
    """Aplicación cliente registrada fuera de banda."""

    __tablename__ = "oauth_consumers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    secret: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    # PEM con la clave pública RSA; sin ella no hay RSA-SHA1
    rsa_public_key: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<Consumer {self.key!r}>"


class RequestToken(Base):
    __tablename__ = "oauth_request_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    secret: Mapped[str] = mapped_column(String(64))
    consumer_id: Mapped[int] = mapped_column(ForeignKey("oauth_consumers.id"), index=True)
    consumer: Mapped[Consumer] = relationship(lazy="joined")

    state: Mapped[str] = mapped_column(String(16), default=TokenState.PENDING.value)
    can_write: Mapped[bool] = mapped_column(Boolean, default=False)
    use_limit: Mapped[int] = mapped_column(Integer, default=1)
    uses_left: Mapped[int] = mapped_column(Integer, default=1)

    callback: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    authorized_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    # epoch en segundos, como en las credenciales
    valid_until: Mapped[int] = mapped_column(Integer)

    @property
    def authorized(self) -> bool:
        return self.state in (TokenState.AUTHORIZED, TokenState.EXCHANGED)

    def __repr__(self) -> str:
        return f"<RequestToken {self.token!r} state={self.state}>"


class AccessToken(Base):
    __tablename__ = "oauth_access_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    secret: Mapped[str] = mapped_column(String(64))
    consumer_id: Mapped[int] = mapped_column(ForeignKey("oauth_consumers.id"), index=True)
    consumer: Mapped[Consumer] = relationship(lazy="joined")

    can_write: Mapped[bool] = mapped_column(Boolean, default=False)
    auth_as: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    valid_until: Mapped[int] = mapped_column(Integer)

    def __repr__(self) -> str:
        return f"<AccessToken {self.token!r} can_write={self.can_write}>"


class Nonce(Base):
    """
    Una fila por petición firmada admitida. La restricción única sobre la
    tupla completa es la que detecta el replay.
    """

    __tablename__ = "oauth_nonces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    consumer_key: Mapped[str] = mapped_column(String(255))
    token: Mapped[str] = mapped_column(String(64), default="")
    timestamp: Mapped[int] = mapped_column(Integer, index=True)
    nonce: Mapped[str] = mapped_column(String(255))

    __table_args__ = (
        UniqueConstraint("consumer_key", "token", "timestamp", "nonce", name="uq_oauth_nonce"),
    )
