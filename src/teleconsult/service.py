import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from teleconsult.errors import (
    ClientNotInvited,
    DuplicateRoom,
    InvalidInput,
    InvalidSchedule,
    NotFound,
    StorageFailure,
)
from teleconsult.models import Client, Consultation, as_utc
from teleconsult.store import ConsultationStore
from teleconsult.validation import (
    is_positive_minutes,
    normalize_email,
    normalize_room_name,
    parse_client_emails,
    validate_display_name,
    validate_host_name,
    validate_room_name,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScheduleResult:
    consultation: Consultation
    join_path: str


class ConsultationService:
    """Business rules over consultation records.

    Scheduling, roster verification, display-name assignment and time
    extension. All storage goes through the injected ``ConsultationStore``.
    """

    def __init__(self, store: ConsultationStore, now: Callable[[], datetime] = utc_now):
        self.store = store
        self.now = now

    async def schedule(
        self,
        host_name: str,
        room_name: str,
        start_at: datetime,
        end_at: datetime,
        client_emails: str,
    ) -> ScheduleResult:
        host = validate_host_name(host_name)
        if not host:
            raise InvalidInput("Host name must be at least 2 characters.")

        display_room = validate_room_name(room_name)
        if not display_room:
            raise InvalidInput(
                "Room name must be at least 3 characters and can only contain "
                "letters, numbers, underscores, and hyphens."
            )

        if start_at.tzinfo is None or end_at.tzinfo is None:
            raise InvalidInput("Start and end times must include a timezone offset.")
        if end_at <= start_at:
            raise InvalidSchedule("End time must be after start time.")

        emails = parse_client_emails(client_emails)
        if not emails:
            raise InvalidInput("Please provide a comma-separated list of valid email addresses.")

        key = normalize_room_name(display_room)
        if await self.store.find_by_room(key) is not None:
            raise DuplicateRoom(
                "Room name already exists. Please choose a unique name.",
                {"normalized_room_name": key},
            )

        consultation = Consultation(
            host_name=host,
            room_name=display_room,
            normalized_room_name=key,
            start_at=as_utc(start_at),
            end_at=as_utc(end_at),
            clients=[Client(email=e) for e in emails],
            created_at=self.now(),
        )
        created = await self.store.insert(consultation)
        logger.info(
            "Scheduled consultation %s (%s -> %s, %d clients)",
            key, created.start_at.isoformat(), created.end_at.isoformat(), len(created.clients),
        )
        return ScheduleResult(consultation=created, join_path=created.join_path)

    async def get_details(self, room_name: str) -> Consultation:
        key = normalize_room_name(room_name)
        consultation = await self.store.find_by_room(key) if key else None
        if consultation is None:
            raise NotFound("Consultation not found.", {"room": key})
        return consultation

    async def verify_client_email(self, room_name: str, email: str) -> str | None:
        """Check the roster and return the client's stored display name.

        ``None`` means a first-time participant who still has to pick a name.
        """
        consultation = await self.get_details(room_name)
        client = consultation.find_client(normalize_email(email))
        if client is None:
            raise ClientNotInvited(
                "No consultation scheduled for this email.",
                {"room": consultation.normalized_room_name},
            )
        return client.name

    async def set_client_name(self, room_name: str, email: str, name: str) -> None:
        display_name = validate_display_name(name)
        if not display_name:
            raise InvalidInput("Name must be at least 2 characters.")
        key = normalize_room_name(room_name)
        matched = await self.store.set_client_name(key, normalize_email(email), display_name) if key else False
        if not matched:
            raise NotFound("Consultation or client not found.", {"room": key})
        logger.info("Client name set in %s", key)

    async def extend(self, room_name: str, minutes: int) -> datetime:
        if not is_positive_minutes(minutes):
            raise InvalidInput("Extension must be a positive number of minutes.")
        consultation = await self.get_details(room_name)
        new_end_at = consultation.end_at + timedelta(minutes=minutes)
        applied = await self.store.set_end_at(consultation.id, new_end_at)
        if not applied:
            raise StorageFailure(
                "Failed to update consultation end time.",
                {"room": consultation.normalized_room_name},
            )
        logger.info(
            "Extended %s by %d min: %s -> %s",
            consultation.normalized_room_name, minutes,
            consultation.end_at.isoformat(), new_end_at.isoformat(),
        )
        return new_end_at
