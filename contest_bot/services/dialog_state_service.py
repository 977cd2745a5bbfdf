"""
Dialog state store: one persisted row per chat with an open conversation.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contest_bot.dialogs.state import DialogState
from contest_bot.errors import PersistenceError, UnknownDialogError
from contest_bot.models.models import DialogStateRecord

logger = logging.getLogger(__name__)


class DialogStateStore:
    """
    get / upsert / delete by participant id. Each call runs in its own
    session; database errors are re-raised as PersistenceError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, participant_id: str) -> Optional[DialogState]:
        """
        Stored state or None. Raises UnknownDialogError when the row exists
        but its values cannot be parsed for its dialog type.
        """
        try:
            async with self._session_factory() as session:
                record = await session.get(DialogStateRecord, participant_id)
        except SQLAlchemyError as e:
            logger.error("unable to load dialog state %s: %s", participant_id, e)
            raise PersistenceError(f"unable to load dialog state {participant_id}") from e
        except (ValueError, TypeError) as e:
            # values column holds text the JSON decoder rejects
            logger.error("unreadable dialog state %s: %s", participant_id, e)
            raise UnknownDialogError("?", "?") from e
        if record is None:
            return None
        return DialogState.from_record(record)

    async def upsert(self, state: DialogState) -> None:
        if not state.participant_id:
            raise PersistenceError("saving dialog state with empty participant_id")
        if not state.dialog_type:
            raise PersistenceError("saving dialog state with empty dialog_type")
        if not state.dialog_step:
            raise PersistenceError("saving dialog state with empty dialog_step")

        async with self._session_factory() as session:
            try:
                record = await session.get(DialogStateRecord, state.participant_id)
                if record is None:
                    record = DialogStateRecord(participant_id=state.participant_id)
                    session.add(record)
                for field, value in state.record_fields().items():
                    setattr(record, field, value)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("unable to save dialog state %s: %s", state.participant_id, e)
                raise PersistenceError(f"unable to save dialog state {state.participant_id}") from e

    async def delete(self, participant_id: str) -> None:
        """Remove the state; deleting an absent state is not an error."""
        async with self._session_factory() as session:
            try:
                await session.execute(
                    delete(DialogStateRecord).where(
                        DialogStateRecord.participant_id == participant_id
                    )
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("unable to delete dialog state %s: %s", participant_id, e)
                raise PersistenceError(f"unable to delete dialog state {participant_id}") from e
