"""Deduplicating ingestion store for Reddit posts and comments.

Uniqueness is enforced by the database (``scam_reports.reddit_id`` and
``(report_id, reddit_comment_id)``), so concurrent batch jobs that race on
the same post end up with exactly one row each.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from data_models.reddit_post import RawCommentCreate, RawPostCreate
from db.database import SessionLocal
from db.models import RawCommentModel, ScamReportModel

logger = logging.getLogger(__name__)


class IngestionStore:
    """Idempotent writes of raw posts and comments."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        """Initialize the store.

        Args:
            session_factory: Session factory (defaults to SessionLocal)
        """
        self.session_factory = session_factory or SessionLocal

    @staticmethod
    def _post_model(post: RawPostCreate) -> ScamReportModel:
        return ScamReportModel(
            reddit_id=post.reddit_id,
            subreddit=post.subreddit,
            author=post.author or "deleted",
            title=post.title,
            body=post.body or "",
            url=post.url,
            permalink=post.permalink,
            created_utc=post.created_utc,
            upvotes=post.upvotes,
            num_comments=post.num_comments,
            source=post.source,
            scraped_at=datetime.utcnow(),
            is_processed=False,
            processing_attempts=0,
            processing_errors=[],
        )

    @staticmethod
    def _comment_model(report_id: str, comment: RawCommentCreate) -> RawCommentModel:
        return RawCommentModel(
            report_id=report_id,
            reddit_comment_id=comment.reddit_comment_id,
            author=comment.author or "deleted",
            body=comment.body,
            upvotes=comment.upvotes,
            created_utc=comment.created_utc,
            parent_id=comment.parent_id,
            scraped_at=datetime.utcnow(),
        )

    def upsert_post(self, post: RawPostCreate) -> bool:
        """Insert a post unless its Reddit ID is already stored.

        Existing rows are never overwritten.

        Args:
            post: Post to store

        Returns:
            True if a new row was inserted
        """
        db = self.session_factory()
        try:
            exists = (
                db.query(ScamReportModel.id)
                .filter(ScamReportModel.reddit_id == post.reddit_id)
                .first()
            )
            if exists:
                logger.debug(f"Skipping duplicate post: {post.reddit_id}")
                return False

            db.add(self._post_model(post))
            db.commit()
            return True

        except IntegrityError:
            # Another invocation inserted the same post in between
            db.rollback()
            logger.debug(f"Concurrent insert of post {post.reddit_id}, keeping existing row")
            return False

        except Exception as e:
            db.rollback()
            logger.error(f"Error saving post {post.reddit_id}: {e}")
            raise

        finally:
            db.close()

    def get_report_id(self, reddit_id: str) -> str | None:
        """Look up the stored report ID for a Reddit post ID."""
        db = self.session_factory()
        try:
            row = (
                db.query(ScamReportModel.id)
                .filter(ScamReportModel.reddit_id == reddit_id)
                .first()
            )
            return row[0] if row else None
        finally:
            db.close()

    def upsert_comment(self, comment: RawCommentCreate, parent_reddit_id: str) -> bool:
        """Insert a single comment under its parent post.

        Args:
            comment: Comment to store
            parent_reddit_id: Reddit ID of the parent post

        Returns:
            True if a new row was inserted. Comments whose parent is not
            stored are dropped and return False.
        """
        return self.upsert_comments_batch(parent_reddit_id, [comment]) == 1

    def upsert_comments_batch(
        self,
        parent_reddit_id: str,
        comments: list[RawCommentCreate],
    ) -> int:
        """Insert all new comments for one post in a single write.

        The set of already stored comment IDs is read first so the batch
        only contains new rows. If a concurrent job wins the race anyway,
        the batch is retried row by row inside savepoints.

        Args:
            parent_reddit_id: Reddit ID of the parent post
            comments: Comments fetched for that post

        Returns:
            Number of comments inserted
        """
        if not comments:
            return 0

        db = self.session_factory()
        try:
            parent = (
                db.query(ScamReportModel.id)
                .filter(ScamReportModel.reddit_id == parent_reddit_id)
                .first()
            )
            if not parent:
                logger.debug(
                    f"Dropping {len(comments)} orphaned comments for unknown post {parent_reddit_id}"
                )
                return 0
            report_id = parent[0]

            existing_ids = {
                row[0]
                for row in db.query(RawCommentModel.reddit_comment_id)
                .filter(RawCommentModel.report_id == report_id)
                .all()
            }

            new_comments: dict[str, RawCommentCreate] = {}
            for comment in comments:
                if comment.reddit_comment_id in existing_ids:
                    continue
                new_comments.setdefault(comment.reddit_comment_id, comment)

            if not new_comments:
                return 0

            try:
                db.add_all(self._comment_model(report_id, c) for c in new_comments.values())
                db.commit()
                return len(new_comments)
            except IntegrityError:
                db.rollback()
                logger.info(f"Comment batch for {parent_reddit_id} conflicted, inserting row by row")

            inserted = 0
            for comment in new_comments.values():
                try:
                    with db.begin_nested():
                        db.add(self._comment_model(report_id, comment))
                    inserted += 1
                except IntegrityError:
                    logger.debug(f"Comment {comment.reddit_comment_id} already stored")
            db.commit()
            return inserted

        except Exception as e:
            db.rollback()
            logger.error(f"Error saving comments for {parent_reddit_id}: {e}")
            raise

        finally:
            db.close()
