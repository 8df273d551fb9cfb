from sqlalchemy import create_engine, Column, Integer, String, DateTime, Text, ForeignKey, Boolean, BigInteger, UniqueConstraint
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tiktok_dashboard.db")

# Render generates postgres:// URLs but SQLAlchemy 2.0 requires postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# SQLite needs check_same_thread=False; PostgreSQL doesn't use connect_args
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class User(Base):
    """User account, with the linked TikTok profile summary."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100))
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    is_active = Column(Boolean, default=True)

    # Linked TikTok account (stored without the leading @)
    tiktok_username = Column(String(100))
    avatar_url = Column(String(1000))
    following = Column(BigInteger)
    fans = Column(BigInteger)
    heart = Column(BigInteger)
    video_count = Column(Integer)
    profile_updated_at = Column(DateTime)

    posts = relationship("TikTokPost", back_populates="user")
    searches = relationship("HashtagSearchResult", back_populates="user")


class FetchState(Base):
    """Per-owner provider fetch clock and kill switch."""
    __tablename__ = "fetch_state"

    owner_key = Column(String(100), primary_key=True)
    last_fetch_at_ms = Column(BigInteger, nullable=True)
    data_fetching_enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class TikTokPost(Base):
    """Account-scope cached video: one row per (user_id, video_id)."""
    __tablename__ = "tiktok_posts"
    __table_args__ = (
        UniqueConstraint("user_id", "video_id", name="uq_tiktok_posts_user_video"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    video_id = Column(String(100), nullable=False)
    text = Column(Text)
    cover_url = Column(String(2000))
    video_url = Column(String(2000))
    download_url = Column(String(2000))
    digg_count = Column(BigInteger)
    share_count = Column(BigInteger)
    play_count = Column(BigInteger)
    comment_count = Column(BigInteger)
    collect_count = Column(BigInteger)
    hashtags = Column(Text)  # JSON: ["fyp","dance"]
    tiktok_created_at = Column(DateTime)
    cached_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="posts")


class HashtagSearchResult(Base):
    """Search-scope cached video: one row per (search_term, user_id, video_id)."""
    __tablename__ = "searches"
    __table_args__ = (
        UniqueConstraint("search_term", "user_id", "video_id", name="uq_searches_term_user_video"),
    )

    id = Column(Integer, primary_key=True, index=True)
    search_term = Column(String(255), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    video_id = Column(String(100), nullable=False)
    text = Column(Text)
    cover_url = Column(String(2000))
    video_url = Column(String(2000))
    download_url = Column(String(2000))
    digg_count = Column(BigInteger)
    share_count = Column(BigInteger)
    play_count = Column(BigInteger)
    comment_count = Column(BigInteger)
    collect_count = Column(BigInteger)
    hashtags = Column(Text)  # JSON: ["fyp","dance"]
    author_name = Column(String(255))
    author_avatar_url = Column(String(2000))
    original_post_date = Column(DateTime)
    tiktok_created_at = Column(DateTime)
    cached_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="searches")


class HashtagSearch(Base):
    """Search history: when a user last ran a provider search for a term."""
    __tablename__ = "search_history"
    __table_args__ = (
        UniqueConstraint("user_id", "search_term", name="uq_search_history_user_term"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    search_term = Column(String(255), nullable=False)
    search_count = Column(Integer, default=1)
    last_searched_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)


def _run_migrations(engine):
    """Add missing columns to existing tables."""
    from sqlalchemy import inspect, text
    inspector = inspect(engine)
    migrations = [
        ("users", "video_count", "INTEGER"),
        ("users", "profile_updated_at", "TIMESTAMP"),
        ("searches", "download_url", "VARCHAR(2000)"),
        ("tiktok_posts", "download_url", "VARCHAR(2000)"),
    ]
    with engine.begin() as conn:
        for table, column, col_type in migrations:
            if table in inspector.get_table_names():
                existing = [c["name"] for c in inspector.get_columns(table)]
                if column not in existing:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))


def init_db():
    Base.metadata.create_all(bind=engine)
    _run_migrations(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
