"""User directory adapters.

SqlUserDirectory reads the user_profile / user_embedding tables.
TimeoutUserDirectory bounds every lookup so a slow directory cannot stall
match selection.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.user_profile import UserProfile
from ..observability.logging_config import get_logger
from .errors import NotFoundError, UnavailableError
from .ports import Embedding, UserDirectoryPort, UserScoringProfile

logger = get_logger(__name__)


def profile_from_row(row: UserProfile) -> UserScoringProfile:
    """Build a scoring profile, decoding the stored embedding once."""
    embedding = None
    if row.embedding is not None:
        embedding = Embedding.from_bytes(row.embedding.vector, row.embedding.model, row.embedding.dim)

    return UserScoringProfile(
        user_id=row.user_id,
        interests=list(row.interests or []),
        languages=list(row.languages or []),
        experience_level=row.experience_level,
        industry=row.industry,
        company=row.company,
        role=row.role,
        timezone=row.timezone,
        org_id=row.org_id,
        embedding=embedding,
        segments=dict(row.segments or {}),
    )


class SqlUserDirectory(UserDirectoryPort):
    """Directory backed by the user_profile table.

    Each lookup uses its own short-lived session so it can run on a worker
    thread independently of the caller's transaction.

    Args:
        session_factory: Callable returning a new Session
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_profile(self, user_id: UUID) -> UserScoringProfile:
        session = self.session_factory()
        try:
            row = session.query(UserProfile).filter(UserProfile.user_id == user_id).first()
            if row is None:
                raise NotFoundError(f"No profile for user {user_id}")
            return profile_from_row(row)
        except SQLAlchemyError as e:
            raise UnavailableError(f"User directory query failed: {e}") from e
        finally:
            session.close()


class TimeoutUserDirectory(UserDirectoryPort):
    """Wraps another directory and fails lookups that exceed ``timeout_seconds``.

    Timeouts and unexpected failures become UnavailableError. NotFoundError
    passes through unchanged.
    """

    def __init__(self, inner: UserDirectoryPort, timeout_seconds: float = 2.0, max_workers: int = 8):
        self.inner = inner
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="user-directory")

    def get_profile(self, user_id: UUID) -> UserScoringProfile:
        future = self._executor.submit(self.inner.get_profile, user_id)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                f"User directory lookup timed out after {self.timeout_seconds}s",
                extra={"user_id": user_id},
            )
            raise UnavailableError(f"User directory did not answer for {user_id}")
        except (NotFoundError, UnavailableError):
            raise
        except Exception as e:
            logger.error("User directory lookup failed", extra={"user_id": user_id}, exc_info=True)
            raise UnavailableError(f"User directory failed for {user_id}: {e}") from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
