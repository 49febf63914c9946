import asyncio
import logging
import uuid
from typing import List, Optional

from .config import settings
from .errors import GenerationError, describe
from .gateway import GenerationGateway
from .models import GenerationConfig, StudySession, TrainingUnit
from .repository import SessionRepository

logger = logging.getLogger(__name__)


class TrainingUnitBuilder:
    """Turns a passage into a persisted session of training units."""

    def __init__(self, gateway: GenerationGateway, repository: SessionRepository):
        self.gateway = gateway
        self.repository = repository

    async def generate_training_units(
        self,
        passage: str,
        store_id: Optional[str],
        user_id: str,
        config: Optional[GenerationConfig] = None,
        language: Optional[str] = None,
    ) -> List[TrainingUnit]:
        """Identifies the significant forms and builds one unit per form.

        Units are generated concurrently and all-or-nothing: if one fails the
        others are cancelled and nothing is persisted. On success every unit
        carries the new session id and the session is stored in one write.
        """
        language = language or settings.DEFAULT_LANGUAGE

        try:
            forms = await self.gateway.identify_forms(passage, store_id, config, language)
            units = await self._create_units(forms, passage, store_id, config, language)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(
                f"Failed to generate training units for {passage}: {describe(e)}"
            ) from e

        session_id = str(uuid.uuid4())
        units = [unit.attach_to(session_id) for unit in units]
        session = StudySession(id=session_id, user_id=user_id, passage=passage, units=units)
        await self.repository.create_session(session)

        logger.info(f"Created session {session_id} with {len(units)} units for {passage}")
        return units

    async def _create_units(
        self,
        forms: List[str],
        passage: str,
        store_id: Optional[str],
        config: Optional[GenerationConfig],
        language: str,
    ) -> List[TrainingUnit]:
        tasks = [
            asyncio.ensure_future(
                self.gateway.create_training_unit(form, passage, store_id, config, language)
            )
            for form in forms
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
