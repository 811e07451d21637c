"""
Relational content model.

Votes and comments point at content through a (flavor, content_id)
pair instead of a foreign key, so karma and comment counts are aggregated
per flavor at read time rather than stored on the content rows.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from feednana.db import Base


FLAVORS = ("file", "album", "timeline", "comment", "user")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username})>"


class AnonOwnedMixin:
    """Ownership columns shared by everything that can be posted anonymously."""
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    anon_id: Mapped[str] = mapped_column(String(16), nullable=False)
    anon_text_color: Mapped[str] = mapped_column(String(32), nullable=False)
    anon_text_background: Mapped[str] = mapped_column(String(32), nullable=False)


class Album(AnonOwnedMixin, Base):
    __tablename__ = "albums"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manifesto: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    removed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    unlisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    files: Mapped[list["File"]] = relationship(back_populates="album", order_by="File.id")

    def __repr__(self):
        return f"<Album(id={self.id}, name={self.name})>"


class File(AnonOwnedMixin, Base):
    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manifesto: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    removed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    unlisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    disable_comments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    hashed_file_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    file_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    album_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("albums.id"), nullable=True, index=True)
    album: Mapped[Optional[Album]] = relationship(back_populates="files")

    def __repr__(self):
        return f"<File(id={self.id}, file_name={self.file_name}, album_id={self.album_id})>"


class Timeline(AnonOwnedMixin, Base):
    __tablename__ = "timelines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manifesto: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    removed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Comment(AnonOwnedMixin, Base):
    __tablename__ = "comments"
    __table_args__ = (Index("ix_comments_flavor_content", "flavor", "content_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    flavor: Mapped[str] = mapped_column(String(16), nullable=False)
    content_id: Mapped[int] = mapped_column(Integer, nullable=False)
    replies_to: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("comments.id"), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    removed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("user_id", "flavor", "content_id", name="uq_votes_user_content"),
        Index("ix_votes_flavor_content", "flavor", "content_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flavor: Mapped[str] = mapped_column(String(16), nullable=False)
    content_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    vote: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


CONTENT_MODELS = {
    "file": File,
    "album": Album,
    "timeline": Timeline,
    "comment": Comment,
    "user": User,
}
