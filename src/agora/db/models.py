"""ORM models for the forum schema.

Every table is created by the installation wizard (see
agora.maintenance.installation), in the dependency order of Base.metadata.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agora.db.base import Base, UTCDateTime, utcnow

# User.status
STATUS_INACTIVE = 0
STATUS_ACTIVE = 10
STATUS_BANNED = 20

# User.role
ROLE_MEMBER = 1
ROLE_MODERATOR = 9
ROLE_ADMIN = 10

# Subscription.post_seen
POST_NEW = 0
POST_SEEN = 1

# Message.sender_status / MessageReceiver.receiver_status
MESSAGE_NEW = 1
MESSAGE_READ = 10
MESSAGE_DELETED = 20

# EmailQueue.status
EMAIL_PENDING = 0
EMAIL_SENT = 1
EMAIL_GAVE_UP = 9


# ---------------------------------------------------------------------------
# Settings & content
# ---------------------------------------------------------------------------


class Config(Base):
    """Runtime forum settings (name/value pairs)."""

    __tablename__ = "agora_config"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")


class Content(Base):
    """Editable texts: terms and conditions, e-mail templates."""

    __tablename__ = "agora_content"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)


# ---------------------------------------------------------------------------
# Users & permissions
# ---------------------------------------------------------------------------


class User(Base):
    """Forum account, either local or bound to a host identity via inherited_id."""

    __tablename__ = "agora_user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    inherited_id: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auth_key: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=STATUS_INACTIVE)
    role: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=ROLE_MEMBER)
    timezone: Mapped[str] = mapped_column(String(45), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def tag(self) -> str:
        return self.username or f"Member#{self.id}"


class AuthItem(Base):
    """RBAC role (type=1) or permission (type=2)."""

    __tablename__ = "agora_auth_item"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class AuthItemChild(Base):
    __tablename__ = "agora_auth_item_child"

    parent: Mapped[str] = mapped_column(
        String(64), ForeignKey("agora_auth_item.name", ondelete="CASCADE"), primary_key=True
    )
    child: Mapped[str] = mapped_column(
        String(64), ForeignKey("agora_auth_item.name", ondelete="CASCADE"), primary_key=True
    )


class AuthAssignment(Base):
    __tablename__ = "agora_auth_assignment"

    item_name: Mapped[str] = mapped_column(
        String(64), ForeignKey("agora_auth_item.name", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Structure: categories, forums, moderators
# ---------------------------------------------------------------------------


class Category(Base):
    __tablename__ = "agora_category"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    keywords: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    forums: Mapped[list[Forum]] = relationship("Forum", back_populates="category")


class Forum(Base):
    __tablename__ = "agora_forum"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agora_category.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sub: Mapped[str | None] = mapped_column(String(255), nullable=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    keywords: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    threads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    posts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    category: Mapped[Category] = relationship("Category", back_populates="forums")


class Moderator(Base):
    __tablename__ = "agora_moderator"
    __table_args__ = (UniqueConstraint("user_id", "forum_id", name="uq_agora_moderator_user_forum"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_user.id", ondelete="CASCADE"), nullable=False)
    forum_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_forum.id", ondelete="CASCADE"), nullable=False)


# ---------------------------------------------------------------------------
# Threads & posts
# ---------------------------------------------------------------------------


class Thread(Base):
    __tablename__ = "agora_thread"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agora_category.id", ondelete="CASCADE"), nullable=False
    )
    forum_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_forum.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("agora_user.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    posts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_post_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    edited_post_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    forum: Mapped[Forum] = relationship("Forum")


class ThreadView(Base):
    """Per-user read watermark of a thread."""

    __tablename__ = "agora_thread_view"
    __table_args__ = (UniqueConstraint("user_id", "thread_id", name="uq_agora_thread_view_user_thread"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_user.id", ondelete="CASCADE"), nullable=False)
    thread_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agora_thread.id", ondelete="CASCADE"), nullable=False
    )
    new_last_seen: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    edited_last_seen: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class Post(Base):
    __tablename__ = "agora_post"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    thread_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agora_thread.id", ondelete="CASCADE"), nullable=False
    )
    forum_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_forum.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("agora_user.id", ondelete="SET NULL"), nullable=True
    )
    likes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dislikes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    thread: Mapped[Thread] = relationship("Thread")
    author: Mapped[User | None] = relationship("User")


class PostThumb(Base):
    """A single user's vote on a post: +1 or -1."""

    __tablename__ = "agora_post_thumb"
    __table_args__ = (UniqueConstraint("user_id", "post_id", name="uq_agora_post_thumb_user_post"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_user.id", ondelete="CASCADE"), nullable=False)
    post_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_post.id", ondelete="CASCADE"), nullable=False)
    thumb: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Word index
# ---------------------------------------------------------------------------


class Vocabulary(Base):
    __tablename__ = "agora_vocabulary"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    word: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class VocabularyJunction(Base):
    __tablename__ = "agora_vocabulary_junction"
    __table_args__ = (UniqueConstraint("word_id", "post_id", name="uq_agora_vocabulary_junction_word_post"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    word_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agora_vocabulary.id", ondelete="CASCADE"), nullable=False
    )
    post_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_post.id", ondelete="CASCADE"), nullable=False)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class Subscription(Base):
    __tablename__ = "agora_subscription"
    __table_args__ = (UniqueConstraint("user_id", "thread_id", name="uq_agora_subscription_user_thread"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_user.id", ondelete="CASCADE"), nullable=False)
    thread_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agora_thread.id", ondelete="CASCADE"), nullable=False
    )
    post_seen: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=POST_SEEN)

    user: Mapped[User] = relationship("User")


# ---------------------------------------------------------------------------
# Private messages
# ---------------------------------------------------------------------------


class Message(Base):
    __tablename__ = "agora_message"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("agora_user.id", ondelete="CASCADE"), nullable=False)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    replyto: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sender_status: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=MESSAGE_READ)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    receivers: Mapped[list[MessageReceiver]] = relationship(
        "MessageReceiver", back_populates="message", cascade="all, delete-orphan"
    )


class MessageReceiver(Base):
    __tablename__ = "agora_message_receiver"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agora_message.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agora_user.id", ondelete="CASCADE"), nullable=False
    )
    receiver_status: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=MESSAGE_NEW)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    message: Mapped[Message] = relationship("Message", back_populates="receivers")


# ---------------------------------------------------------------------------
# Outgoing mail
# ---------------------------------------------------------------------------


class EmailQueue(Base):
    __tablename__ = "agora_email"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=EMAIL_PENDING)
    attempt: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
