import json
import time
from collections.abc import Callable

from sqlalchemy import delete, func, inspect, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from capgate.exceptions import StorageError
from capgate.logging_config import get_logger
from capgate.models.cap_record import KEY_TYPE_CHALLENGE, KEY_TYPE_TOKEN, CapRecord
from capgate.storage.base import StorageAdapter

logger = get_logger(__name__)


class SqlStorage(StorageAdapter):
    """Relational storage on the ``cap_records`` table (see Alembic migrations)."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def set_challenge(self, token: str, expires_at: int, data: dict) -> bool:
        with self._session_factory() as db:
            try:
                db.add(
                    CapRecord(
                        key=token,
                        key_type=KEY_TYPE_CHALLENGE,
                        data=json.dumps(data),
                        expires_at=expires_at,
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                self._fail("set_challenge", e)
        return True

    def get_challenge(self, token: str) -> dict | None:
        with self._session_factory() as db:
            try:
                raw = db.execute(
                    select(CapRecord.data).where(
                        CapRecord.key == token,
                        CapRecord.key_type == KEY_TYPE_CHALLENGE,
                        CapRecord.expires_at > self._now(),
                    )
                ).scalar_one_or_none()
            except SQLAlchemyError as e:
                self._fail("get_challenge", e)
        return None if raw is None else json.loads(raw)

    def set_token(self, key: str, expires_at: int, challenge_token: str) -> bool:
        with self._session_factory() as db:
            try:
                result = db.execute(
                    update(CapRecord)
                    .where(
                        CapRecord.key == challenge_token,
                        CapRecord.key_type == KEY_TYPE_CHALLENGE,
                    )
                    .values(key=key, key_type=KEY_TYPE_TOKEN, data="{}", expires_at=expires_at)
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                self._fail("set_token", e)
        return result.rowcount == 1

    def get_token(self, key: str, delete: bool = False, cleanup: bool = False) -> int | None:
        with self._session_factory() as db:
            try:
                if cleanup:
                    db.execute(self._expired_rows())

                expires_at = db.execute(
                    select(CapRecord.expires_at).where(
                        CapRecord.key == key, CapRecord.key_type == KEY_TYPE_TOKEN
                    )
                ).scalar_one_or_none()

                if expires_at is not None and delete:
                    result = db.execute(self._token_rows(key))
                    # Another consumer got there first
                    if result.rowcount == 0:
                        expires_at = None

                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                self._fail("get_token", e)
        return expires_at

    def cleanup(self) -> bool:
        with self._session_factory() as db:
            try:
                result = db.execute(self._expired_rows())
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                self._fail("cleanup", e)
        if result.rowcount:
            logger.info("storage_cleanup", backend="sql", deleted=result.rowcount)
        return True

    def is_available(self) -> bool:
        try:
            with self._session_factory() as db:
                return inspect(db.get_bind()).has_table(CapRecord.__tablename__)
        except SQLAlchemyError:
            return False

    def get_stats(self) -> dict:
        with self._session_factory() as db:
            counts = dict(
                db.execute(
                    select(CapRecord.key_type, func.count()).group_by(CapRecord.key_type)
                ).all()
            )
        return {
            "challenges_count": counts.get(KEY_TYPE_CHALLENGE, 0),
            "tokens_count": counts.get(KEY_TYPE_TOKEN, 0),
        }

    def _expired_rows(self):
        return delete(CapRecord).where(CapRecord.expires_at < self._now())

    @staticmethod
    def _token_rows(key: str):
        return delete(CapRecord).where(CapRecord.key == key, CapRecord.key_type == KEY_TYPE_TOKEN)

    @staticmethod
    def _fail(operation: str, error: Exception):
        logger.error("storage_error", backend="sql", operation=operation, error=str(error))
        raise StorageError(f"SQL storage {operation} failed") from error
