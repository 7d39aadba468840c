from datetime import datetime, timedelta, timezone

import pytest

from teleconsult.errors import CredentialIssuanceFailure, RoomCompletionFailure
from teleconsult.lobby import LobbyMachine
from teleconsult.models import JoinCredential
from teleconsult.service import ConsultationService
from teleconsult.session import LobbySession
from teleconsult.store import InMemoryConsultationStore
from teleconsult.video import VideoRoomController

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeVideo(VideoRoomController):
    def __init__(self):
        self.issued = []
        self.completed = []
        self.fail_issue = False
        self.fail_complete = False

    async def issue_join_credential(self, room, identity):
        if self.fail_issue:
            raise CredentialIssuanceFailure("Failed to generate token: provider down")
        self.issued.append((room, identity))
        return JoinCredential(token=f"token-for-{identity}", room=room, identity=identity)

    async def complete_room(self, room):
        self.completed.append(room)
        if self.fail_complete:
            raise RoomCompletionFailure("Failed to complete room: provider down")


@pytest.fixture
def clock():
    # Five minutes into the default consultation window
    return FakeClock(T0 + timedelta(minutes=5))


@pytest.fixture
def store():
    return InMemoryConsultationStore()


@pytest.fixture
def service(store, clock):
    return ConsultationService(store, now=clock)


@pytest.fixture
def video():
    return FakeVideo()


@pytest.fixture
def schedule(service):
    """Schedule a consultation starting at T0; defaults give a 30 minute window for alice."""

    async def _schedule(
        room="Ada-Checkup",
        start=T0,
        minutes=30,
        clients="alice@example.com",
        host="Dr. Ada",
    ):
        return await service.schedule(host, room, start, start + timedelta(minutes=minutes), clients)

    return _schedule


@pytest.fixture
def make_machine(service, video, clock):
    async def _make(room="ada-checkup"):
        consultation = await service.get_details(room)
        return LobbyMachine(LobbySession(consultation=consultation), service, video, clock=clock)

    return _make
