"""Word index: post bodies mapped onto a shared vocabulary.

The junction rows of a post are an exact image of the post's current token
set. Index failures raise IndexingError and must abort the enclosing save.
"""

from __future__ import annotations

import re

import structlog
from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agora.db.models import Category, Forum, Post, Vocabulary, VocabularyJunction
from agora.sanitizer import purify, strip_tags

logger = structlog.get_logger()

MIN_WORD_LENGTH = 3
MAX_WORD_LENGTH = 255

_SEPARATORS = re.compile(r"[\W_]+", re.UNICODE)


class IndexingError(RuntimeError):
    """The vocabulary or junction table could not be updated."""


def derive_words(text: str) -> set[str]:
    """Normalized, deduplicated tokens of a post body.

    >>> sorted(derive_words("Hello, world! ab abc"))
    ['abc', 'hello', 'world']
    """
    plain = strip_tags(purify(text or "")).lower()
    return {
        word
        for word in _SEPARATORS.split(plain)
        if MIN_WORD_LENGTH <= len(word) <= MAX_WORD_LENGTH
    }


class WordIndexer:
    """Keeps agora_vocabulary and agora_vocabulary_junction in sync with posts."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _add_new_words(self, words: set[str]) -> None:
        result = await self._db.execute(select(Vocabulary.word).where(Vocabulary.word.in_(words)))
        missing = words - set(result.scalars().all())
        if missing:
            await self._db.execute(insert(Vocabulary), [{"word": word} for word in sorted(missing)])

    async def _word_ids(self, words: set[str]) -> set[int]:
        result = await self._db.execute(select(Vocabulary.id).where(Vocabulary.word.in_(words)))
        return set(result.scalars().all())

    async def reconcile(self, post_id: int, words: set[str], *, created: bool) -> None:
        """Make the junction rows of `post_id` match `words`. Safe to repeat."""
        try:
            word_ids: set[int] = set()
            if words:
                await self._add_new_words(words)
                word_ids = await self._word_ids(words)

            existing: set[int] = set()
            if not created:
                result = await self._db.execute(
                    select(VocabularyJunction.word_id).where(VocabularyJunction.post_id == post_id)
                )
                existing = set(result.scalars().all())

            to_add = word_ids - existing
            if to_add:
                await self._db.execute(
                    insert(VocabularyJunction),
                    [{"word_id": word_id, "post_id": post_id} for word_id in sorted(to_add)],
                )
            stale = existing - word_ids
            if stale:
                await self._db.execute(
                    delete(VocabularyJunction).where(
                        VocabularyJunction.post_id == post_id,
                        VocabularyJunction.word_id.in_(stale),
                    )
                )
        except SQLAlchemyError as e:
            logger.exception("word_index_failed", post_id=post_id)
            raise IndexingError(str(e)) from e

        logger.debug("word_index_updated", post_id=post_id, added=len(to_add), removed=len(stale))

    async def forget(self, post_id: int) -> None:
        """Remove every junction row of a post."""
        try:
            await self._db.execute(delete(VocabularyJunction).where(VocabularyJunction.post_id == post_id))
        except SQLAlchemyError as e:
            logger.exception("word_index_failed", post_id=post_id)
            raise IndexingError(str(e)) from e

    async def search(self, query: str, *, guest: bool = True, limit: int = 100) -> list[tuple[int, int]]:
        """(post_id, thread_id) pairs whose words contain `query`, newest thread first.

        Guests only get posts of visible forums in visible categories.
        """
        term = strip_tags(purify(query or "")).strip().lower()
        if not term:
            return []

        stmt = (
            select(Post.id, Post.thread_id)
            .join(VocabularyJunction, VocabularyJunction.post_id == Post.id)
            .join(Vocabulary, Vocabulary.id == VocabularyJunction.word_id)
            .where(Vocabulary.word.like(f"%{term}%"))
        )
        if guest:
            stmt = (
                stmt.join(Forum, Forum.id == Post.forum_id)
                .join(Category, Category.id == Forum.category_id)
                .where(Forum.visible.is_(True), Category.visible.is_(True))
            )
        stmt = stmt.distinct().order_by(Post.thread_id.desc(), Post.id.asc()).limit(limit)
        result = await self._db.execute(stmt)
        return [(post_id, thread_id) for post_id, thread_id in result.all()]
