"""
Identity/profile gate.

'ProfileGate' runs once per sign-in: it makes sure the principal has a profile
row and decides whether onboarding (phone number capture) is still required.
The gate fails safe. When the store cannot be reached, the caller is told to
run onboarding again rather than letting a user skip it silently.
"""

import asyncio
import re

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.auth.base import Principal
from messaging_toolkit.conversation_database.data_models.profile import Profile, ProfileDatabase
from messaging_toolkit.errors import (
    ConflictError,
    InvalidPhoneNumberError,
    PhoneNumberTakenError,
    ProfileUpdateError,
    StoreError,
)
from messaging_toolkit.utils.time import get_current_timestamp

_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
_PHONE_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


class OnboardingState(BaseModel):
    """
    Outcome of resolving a principal.

    'profile' is None only when the store could not be read; 'needs_onboarding'
    is then True.
    """

    profile: Profile | None
    needs_onboarding: bool


def normalize_phone_number(phone_number: str) -> str:
    """Strip separators and check the international ('+' and 7-15 digits) format."""
    normalized = _PHONE_SEPARATORS.sub("", phone_number)
    if normalized.startswith("00"):
        normalized = "+" + normalized[2:]
    if not _PHONE_PATTERN.match(normalized):
        raise InvalidPhoneNumberError(phone_number)
    return normalized


class ProfileGate:
    def __init__(self, profile_db: ProfileDatabase) -> None:
        self.profile_db = profile_db
        self._inflight: dict[str, asyncio.Task[OnboardingState]] = {}

    async def resolve(self, principal: Principal) -> OnboardingState:
        """
        Fetch or create the principal's profile and compute its onboarding state.

        Concurrent calls for the same principal share one resolution, so a
        burst of duplicate calls issues at most one create.
        """
        task = self._inflight.get(principal.id)
        if task is None:
            task = asyncio.ensure_future(self._resolve(principal))
            self._inflight[principal.id] = task
            task.add_done_callback(lambda _: self._inflight.pop(principal.id, None))
        return await asyncio.shield(task)

    async def _resolve(self, principal: Principal) -> OnboardingState:
        try:
            profile = await self.profile_db.get_profile_by_id(principal.id)
            if profile is None:
                profile = await self._create(principal)
        except StoreError as exc:
            logger.warning(f"Profile lookup for {principal.id} failed, asking for onboarding again: {exc}")
            return OnboardingState(profile=None, needs_onboarding=True)

        return OnboardingState(profile=profile, needs_onboarding=not profile.phone_number)

    async def _create(self, principal: Principal) -> Profile:
        profile = Profile(
            id=principal.id,
            display_name=principal.display_name,
            email=principal.email,
            avatar_url=principal.avatar_url,
            online=True,
            last_seen=get_current_timestamp(),
        )
        try:
            created = await self.profile_db.create_profile(profile)
        except ConflictError:
            # Another client created it between our read and our write.
            existing = await self.profile_db.get_profile_by_id(principal.id)
            if existing is None:
                raise
            return existing
        logger.info(f"Created profile for {principal.id}")
        return created

    async def complete_onboarding(self, user_id: str, phone_number: str) -> Profile:
        normalized = normalize_phone_number(phone_number)
        try:
            profile = await self.profile_db.update_phone_number(user_id, normalized)
        except ConflictError as exc:
            raise PhoneNumberTakenError() from exc
        except StoreError as exc:
            logger.error(f"Saving phone number for {user_id} failed: {exc}")
            raise ProfileUpdateError() from exc
        logger.info(f"Onboarding completed for {user_id}")
        return profile
