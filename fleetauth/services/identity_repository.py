# fleetauth/services/identity_repository.py
"""
Relational store access for identities and their authored content.

Owns the SQLAlchemy async engine and session factory; nothing else in the
codebase creates engines or sessions. Returns Identity / MediaSnapshot read
models, never ORM instances, so callers stay persistence-agnostic.

Every backend failure is raised as DatabaseError (retryable). "Row not found"
is not a failure: lookups return None and delete() returns False.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import delete, event, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fleetauth.core.exceptions import DatabaseError
from fleetauth.models.identity import ArticleORM, Base, Identity, IdentityORM, MediaSnapshot

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record) -> None:
    """SQLite only enforces ON DELETE CASCADE with this pragma, per connection."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class IdentityRepository:
    """
    Repository for IdentityORM and ArticleORM rows.

    Usage:
        repo = IdentityRepository("sqlite+aiosqlite:///./fleetauth.db")
        await repo.create_schema()
        identity = await repo.get(1)
        await repo.dispose()
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
        if database_url.startswith("sqlite"):
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_schema(self) -> None:
        """Create missing tables. Idempotent."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Schema creation failed: {e}", operation="create_schema")

    async def dispose(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Identity queries
    # ------------------------------------------------------------------

    async def create(self, email: str, first_name: Optional[str] = None,
                     last_name: Optional[str] = None, picture: Optional[str] = None) -> Identity:
        try:
            async with self.session_factory() as db:
                orm = IdentityORM(email=email, first_name=first_name, last_name=last_name, picture=picture)
                db.add(orm)
                await db.commit()
                return Identity.model_validate(orm)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Identity insert failed: {e}", operation="create")

    async def get(self, identity_id: int) -> Optional[Identity]:
        """Return the identity, or None if no row exists."""
        try:
            async with self.session_factory() as db:
                orm = await db.get(IdentityORM, identity_id)
                return Identity.model_validate(orm) if orm else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Identity lookup failed: {e}", operation="get")

    async def update(self, identity_id: int, values: Dict[str, Any]) -> Optional[Identity]:
        """Apply column updates and return the refreshed identity, or None if it is gone."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    update(IdentityORM).where(IdentityORM.id == identity_id).values(**values)
                )
                await db.commit()
                if result.rowcount == 0:
                    return None
                orm = await db.get(IdentityORM, identity_id, populate_existing=True)
                return Identity.model_validate(orm) if orm else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Identity update failed: {e}", operation="update")

    # ------------------------------------------------------------------
    # Authored content
    # ------------------------------------------------------------------

    async def add_article(self, author_id: int, title: str, picture: Optional[str] = None) -> int:
        try:
            async with self.session_factory() as db:
                orm = ArticleORM(author_id=author_id, title=title, picture=picture)
                db.add(orm)
                await db.commit()
                return orm.id
        except SQLAlchemyError as e:
            raise DatabaseError(f"Article insert failed: {e}", operation="add_article")

    async def count_articles(self, author_id: int) -> int:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(ArticleORM.id).where(ArticleORM.author_id == author_id))
                return len(result.all())
        except SQLAlchemyError as e:
            raise DatabaseError(f"Article count failed: {e}", operation="count_articles")

    # ------------------------------------------------------------------
    # Deletion support
    # ------------------------------------------------------------------

    async def snapshot_media(self, identity_id: int) -> MediaSnapshot:
        """Collect every blob reference the identity owns, in a single read transaction."""
        try:
            async with self.session_factory() as db:
                profile_picture = await db.scalar(
                    select(IdentityORM.picture).where(IdentityORM.id == identity_id)
                )
                result = await db.execute(
                    select(ArticleORM.picture)
                    .where(ArticleORM.author_id == identity_id, ArticleORM.picture.is_not(None))
                    .order_by(ArticleORM.id)
                )
                return MediaSnapshot(
                    identity_id=identity_id,
                    profile_picture=profile_picture,
                    article_pictures=[row[0] for row in result.all()],
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"Media snapshot failed: {e}", operation="snapshot_media")

    async def delete(self, identity_id: int) -> bool:
        """
        Delete the identity and its articles in one transaction.

        Returns False when the identity was already absent.
        """
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    await db.execute(delete(ArticleORM).where(ArticleORM.author_id == identity_id))
                    result = await db.execute(delete(IdentityORM).where(IdentityORM.id == identity_id))
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise DatabaseError(f"Identity delete failed: {e}", operation="delete")

    async def health_check(self) -> Dict[str, Any]:
        try:
            async with self.session_factory() as db:
                await db.execute(select(1))
            return {"healthy": True, "status": "connected"}
        except Exception as e:
            return {"healthy": False, "status": "error", "details": {"error": str(e)}}
