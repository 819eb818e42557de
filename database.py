#!/usr/bin/env python3
"""
Database models and configuration for GameTrack.
Holds each user's linked platform identities, their synced game library and
the platform credentials used for live lookups.
"""

import os
from datetime import datetime, timedelta
import logging

from sqlalchemy import create_engine, Column, Integer, String, DateTime, Text, ForeignKey, Float
from sqlalchemy.orm import declarative_base, sessionmaker, relationship

logger = logging.getLogger('gametrack.database')

# Database URL - any SQLAlchemy URL; PostgreSQL in production
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///gametrack.db')

Base = declarative_base()
engine = None
SessionLocal = None


def configure(database_url: str = DATABASE_URL):
    """(Re)bind the module engine and session factory to *database_url*."""
    global engine, SessionLocal
    connect_args = {"check_same_thread": False} if database_url.startswith('sqlite') else {}
    engine = create_engine(database_url, echo=False, connect_args=connect_args)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine


configure(DATABASE_URL)


class User(Base):
    """GameTrack account with its linked platform identities."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(255), unique=True, index=True)

    steam_id = Column(String(20), nullable=True)
    steam_persona_name = Column(String(255), nullable=True)
    steam_avatar_url = Column(String(1024), nullable=True)

    psn_account_id = Column(String(64), nullable=True)
    psn_online_id = Column(String(64), nullable=True)
    psn_avatar_url = Column(String(1024), nullable=True)
    psn_trophy_level = Column(Integer, nullable=True)

    xbox_xuid = Column(String(32), nullable=True)
    xbox_gamertag = Column(String(64), nullable=True)
    xbox_avatar_url = Column(String(1024), nullable=True)
    xbox_gamerscore = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    games = relationship("UserGame", back_populates="user", cascade="all, delete-orphan")
    psn_token = relationship("PsnToken", back_populates="user", uselist=False, cascade="all, delete-orphan")
    xbox_token = relationship("XboxToken", back_populates="user", uselist=False, cascade="all, delete-orphan")


class Game(Base):
    """A game title shared by every user library entry that points at it."""
    __tablename__ = "games"

    id = Column(Integer, primary_key=True)
    title = Column(String(500), index=True)
    cover_url = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class UserGame(Base):
    """One game in a user's synced library on one platform."""
    __tablename__ = "user_games"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    game_id = Column(Integer, ForeignKey("games.id"))
    # 'Steam', 'PlayStation 5', 'Xbox One', ...
    platform = Column(String(50), index=True)
    achievements_earned = Column(Integer, nullable=True)
    achievements_total = Column(Integer, nullable=True)
    completion_percentage = Column(Float, nullable=True)  # 0-100
    playtime_hours = Column(Float, nullable=True)
    last_played = Column(DateTime, nullable=True)
    synced_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="games")
    game = relationship("Game")


class PsnToken(Base):
    """Stored PSN OAuth tokens for a user."""
    __tablename__ = "psn_tokens"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="psn_token")


class XboxToken(Base):
    """Stored OpenXBL API key for a user."""
    __tablename__ = "xbox_tokens"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True)
    api_key = Column(String(255), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="xbox_token")


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return False


def get_user(db, user_id: int):
    """Get user from database."""
    if not db or user_id is None:
        return None
    try:
        return db.query(User).filter(User.id == user_id).first()
    except Exception as e:
        logger.error(f"Error getting user: {e}")
        return None


def get_user_games_for_platform(db, user_id: int, platform_pattern: str):
    """Get a user's synced library entries for one platform family.

    Args:
        db: Database session
        user_id: User ID
        platform_pattern: SQL ``LIKE`` pattern, e.g. ``'PlayStation%'``,
            ``'Xbox%'`` or ``'Steam'``

    Returns:
        List of ``UserGame`` rows (with ``.game`` loaded) in insertion order.
    """
    if not db:
        return []
    try:
        return (
            db.query(UserGame)
            .join(Game, UserGame.game_id == Game.id)
            .filter(UserGame.user_id == user_id, UserGame.platform.like(platform_pattern))
            .order_by(UserGame.id)
            .all()
        )
    except Exception as e:
        logger.error(f"Error getting games for user {user_id}: {e}")
        return []


def get_or_create_game(db, title: str, cover_url: str = None):
    """Return the ``Game`` row for *title*, creating it when missing."""
    game = db.query(Game).filter(Game.title == title).first()
    if game:
        if cover_url and not game.cover_url:
            game.cover_url = cover_url
        return game
    game = Game(title=title, cover_url=cover_url)
    db.add(game)
    db.flush()
    return game


def add_user_game(db, user_id: int, title: str, platform: str, cover_url: str = None,
                  achievements_earned: int = None, achievements_total: int = None,
                  completion_percentage: float = None, playtime_hours: float = None):
    """Add one game to a user's synced library and commit.

    Returns:
        The new ``UserGame`` row, or None on failure.
    """
    if not db:
        return None
    try:
        game = get_or_create_game(db, title, cover_url)
        entry = UserGame(
            user_id=user_id,
            game_id=game.id,
            platform=platform,
            achievements_earned=achievements_earned,
            achievements_total=achievements_total,
            completion_percentage=completion_percentage,
            playtime_hours=playtime_hours,
        )
        db.add(entry)
        db.commit()
        return entry
    except Exception as e:
        logger.error(f"Error adding game '{title}' for user {user_id}: {e}")
        db.rollback()
        return None


def get_psn_token(db, user_id: int):
    """Get the stored PSN token row for a user (or None)."""
    if not db:
        return None
    try:
        return db.query(PsnToken).filter(PsnToken.user_id == user_id).first()
    except Exception as e:
        logger.error(f"Error getting PSN token: {e}")
        return None


def save_psn_token(db, user_id: int, access_token: str, refresh_token: str, expires_in: int):
    """Create or update a user's PSN tokens.

    Args:
        db: Database session
        user_id: User ID
        access_token: New access token
        refresh_token: Refresh token to keep for the next refresh
        expires_in: Access token lifetime in seconds
    """
    if not db:
        return None
    try:
        expires_at = datetime.utcnow() + timedelta(seconds=int(expires_in))
        token = db.query(PsnToken).filter(PsnToken.user_id == user_id).first()
        if token:
            token.access_token = access_token
            token.refresh_token = refresh_token
            token.expires_at = expires_at
        else:
            token = PsnToken(user_id=user_id, access_token=access_token,
                             refresh_token=refresh_token, expires_at=expires_at)
            db.add(token)
        db.commit()
        return token
    except Exception as e:
        logger.error(f"Error saving PSN token: {e}")
        db.rollback()
        return None


def get_xbox_api_key(db, user_id: int):
    """Get the stored OpenXBL API key for a user (or None)."""
    if not db:
        return None
    try:
        token = db.query(XboxToken).filter(XboxToken.user_id == user_id).first()
        return token.api_key if token and token.api_key else None
    except Exception as e:
        logger.error(f"Error getting Xbox API key: {e}")
        return None
