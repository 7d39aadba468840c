"""Lobby state machine for a participant joining a consultation.

Sequences a participant through email verification, naming, the waiting
lobby and the live call, and ends the session once the consultation window
has elapsed. Everything runs on one event loop; user actions and clock ticks
are serialized by a single lock.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from teleconsult.countdown import ENDED, compute_countdown, format_clock
from teleconsult.errors import (
    ClientNotInvited,
    ConsultationError,
    InvalidInput,
    NotFound,
    StorageFailure,
)
from teleconsult.models import JoinCredential, isoformat_utc
from teleconsult.service import ConsultationService, utc_now
from teleconsult.session import LobbySession
from teleconsult.states import LobbyStage
from teleconsult.validation import normalize_email, validate_display_name, validate_email
from teleconsult.video import VideoRoomController

logger = logging.getLogger(__name__)

NOT_INVITED_MESSAGE = "No consultation scheduled for this email."
BUSY_MESSAGE = "Another request is still in progress."
ENDED_MESSAGE = "This consultation has ended."
INTERNAL_ERROR_MESSAGE = "An internal server error occurred."


@dataclass
class Outcome:
    ok: bool = True
    message: str = ""
    error: str = ""
    credential: Optional[JoinCredential] = None

    def to_public(self) -> dict:
        body = {"ok": self.ok, "message": self.message, "error": self.error}
        if self.credential is not None:
            body["token"] = self.credential.token
            body["identity"] = self.credential.identity
        return body


@dataclass
class LobbySnapshot:
    stage: LobbyStage
    phase: str
    seconds_left: int
    status_message: str
    can_join: bool
    client_name: str
    end_at: datetime

    def to_public(self) -> dict:
        return {
            "stage": self.stage.value,
            "phase": self.phase,
            "secondsLeft": self.seconds_left,
            "clock": format_clock(self.seconds_left),
            "statusMessage": self.status_message,
            "canJoin": self.can_join,
            "clientName": self.client_name,
            "endAt": isoformat_utc(self.end_at),
        }


TRANSITIONS = {
    LobbyStage.EMAIL_PROMPT: {LobbyStage.NAME_PROMPT, LobbyStage.LOBBY, LobbyStage.ENDED},
    LobbyStage.NAME_PROMPT: {LobbyStage.LOBBY, LobbyStage.ENDED},
    LobbyStage.LOBBY: {LobbyStage.IN_CALL, LobbyStage.ENDED},
    LobbyStage.IN_CALL: {LobbyStage.LOBBY, LobbyStage.ENDED},
    LobbyStage.ENDED: set(),
}


def _transition(session: LobbySession, new_stage: LobbyStage):
    if new_stage not in TRANSITIONS[session.stage]:
        raise ValueError(f"Invalid lobby transition {session.stage.value} -> {new_stage.value}")
    logger.info("[%s] %s -> %s", session.room, session.stage.value, new_stage.value)
    session.stage_history.append(session.stage)
    session.stage = new_stage


class LobbyMachine:
    def __init__(
        self,
        session: LobbySession,
        service: ConsultationService,
        video: VideoRoomController,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.service = service
        self.video = video
        self.clock = clock
        self._lock = asyncio.Lock()
        self._busy = False

    @property
    def stage(self) -> LobbyStage:
        return self.session.stage

    def valid_transitions(self, stage: LobbyStage) -> set[LobbyStage]:
        return TRANSITIONS.get(stage, set())

    # ── User actions ──

    async def _run_action(
        self,
        allowed: set[LobbyStage],
        handler: Callable[[], Awaitable[Outcome]],
    ) -> Outcome:
        # Input is disabled while a request is in flight; a second action is
        # rejected rather than queued behind the first.
        if self._busy:
            return Outcome(ok=False, error=BUSY_MESSAGE)
        self._busy = True
        try:
            async with self._lock:
                if self.session.stage.is_terminal:
                    return Outcome(ok=False, error=ENDED_MESSAGE)
                if self.session.stage not in allowed:
                    return Outcome(
                        ok=False,
                        error=f"Not available while in {self.session.stage.value}.",
                    )
                return await handler()
        finally:
            self._busy = False

    async def submit_email(self, email: str) -> Outcome:
        return await self._run_action({LobbyStage.EMAIL_PROMPT}, lambda: self._submit_email(email))

    async def submit_name(self, name: str) -> Outcome:
        return await self._run_action({LobbyStage.NAME_PROMPT}, lambda: self._submit_name(name))

    async def join(self) -> Outcome:
        return await self._run_action({LobbyStage.LOBBY}, self._join)

    async def leave(self) -> Outcome:
        return await self._run_action({LobbyStage.IN_CALL}, self._leave)

    async def extend(self, minutes: int) -> Outcome:
        return await self._run_action(
            {LobbyStage.LOBBY, LobbyStage.IN_CALL}, lambda: self._extend(minutes)
        )

    async def refresh(self) -> Outcome:
        allowed = {stage for stage in LobbyStage if not stage.is_terminal}
        return await self._run_action(allowed, self._refresh)

    # ── Handlers ──

    async def _submit_email(self, email: str) -> Outcome:
        if not validate_email(email):
            return Outcome(ok=False, error="Please enter a valid email address.")
        try:
            stored_name = await self.service.verify_client_email(self.session.room, email)
        except (NotFound, ClientNotInvited):
            return Outcome(ok=False, error=NOT_INVITED_MESSAGE)
        except StorageFailure as e:
            logger.error("[%s] email verification failed: %s", self.session.room, e.details)
            return Outcome(ok=False, error=INTERNAL_ERROR_MESSAGE)

        self.session.verified_email = normalize_email(email)
        if stored_name:
            self.session.client_name = stored_name
            _transition(self.session, LobbyStage.LOBBY)
            return Outcome(message=f"Welcome back, {stored_name}!")
        _transition(self.session, LobbyStage.NAME_PROMPT)
        return Outcome(message="Please enter your name to proceed.")

    async def _submit_name(self, name: str) -> Outcome:
        display_name = validate_display_name(name)
        if not display_name:
            return Outcome(ok=False, error="Name must be at least 2 characters.")
        try:
            await self.service.set_client_name(
                self.session.room, self.session.verified_email, display_name
            )
        except (NotFound, InvalidInput) as e:
            return Outcome(ok=False, error=e.message)
        except StorageFailure as e:
            logger.error("[%s] name update failed: %s", self.session.room, e.details)
            return Outcome(ok=False, error=INTERNAL_ERROR_MESSAGE)

        self.session.client_name = display_name
        _transition(self.session, LobbyStage.LOBBY)
        return Outcome(message=f"Welcome, {display_name}!")

    async def _join(self) -> Outcome:
        if not self.session.verified_email or not self.session.client_name:
            return Outcome(ok=False, error="User details missing.")
        countdown = compute_countdown(
            self.session.consultation.start_at, self.session.consultation.end_at, self.clock()
        )
        if not countdown.can_join:
            return Outcome(ok=False, error=countdown.message)
        try:
            credential = await self.video.issue_join_credential(
                self.session.room, self.session.client_name
            )
        except ConsultationError as e:
            logger.warning("[%s] credential issuance failed: %s", self.session.room, e.message)
            return Outcome(ok=False, error=e.message)

        self.session.credential = credential
        _transition(self.session, LobbyStage.IN_CALL)
        return Outcome(message="Joining call...", credential=credential)

    async def _leave(self) -> Outcome:
        self.session.credential = None
        _transition(self.session, LobbyStage.LOBBY)
        return Outcome(message="You have left the consultation.")

    async def _extend(self, minutes: int) -> Outcome:
        try:
            new_end_at = await self.service.extend(self.session.room, minutes)
        except (InvalidInput, NotFound) as e:
            return Outcome(ok=False, error=e.message)
        except StorageFailure as e:
            logger.error("[%s] extension failed: %s", self.session.room, e.details)
            return Outcome(ok=False, error="Could not extend time.")
        # The countdown must run against the new boundary from now on.
        await self._refresh()
        return Outcome(message=f"Consultation extended. New end time: {isoformat_utc(new_end_at)}.")

    async def _refresh(self) -> Outcome:
        try:
            self.session.consultation = await self.service.get_details(self.session.room)
        except ConsultationError as e:
            logger.warning("[%s] refresh failed: %s", self.session.room, e.message)
            return Outcome(ok=False, error=e.message)
        return Outcome()

    # ── Clock ──

    async def tick(self, now: Optional[datetime] = None) -> LobbySnapshot:
        async with self._lock:
            if not self.session.stage.is_terminal:
                await self._evaluate(now or self.clock())
            return self.snapshot()

    async def _evaluate(self, now: datetime):
        consultation = self.session.consultation
        countdown = compute_countdown(consultation.start_at, consultation.end_at, now)
        if countdown.phase == ENDED:
            # A paid extension may have landed through the webhook since the
            # last fetch; check the stored boundary once before ending.
            await self._refresh()
            consultation = self.session.consultation
            countdown = compute_countdown(consultation.start_at, consultation.end_at, now)

        self.session.phase = countdown.phase
        self.session.seconds_left = countdown.seconds
        self.session.status_message = countdown.message
        self.session.can_join = countdown.can_join

        if countdown.phase == ENDED:
            await self._end()

    async def _end(self):
        if self.session.stage == LobbyStage.IN_CALL:
            try:
                await self.video.complete_room(self.session.room)
                self.session.room_completed = True
            except ConsultationError as e:
                # Best effort: the session ends whether or not the provider agreed.
                logger.warning("[%s] room completion failed: %s", self.session.room, e.message)
            except Exception as e:
                logger.error("[%s] unexpected room completion error: %s", self.session.room, e)
        self.session.credential = None
        _transition(self.session, LobbyStage.ENDED)

    def snapshot(self) -> LobbySnapshot:
        return LobbySnapshot(
            stage=self.session.stage,
            phase=self.session.phase,
            seconds_left=self.session.seconds_left,
            status_message=self.session.status_message,
            can_join=self.session.can_join,
            client_name=self.session.client_name,
            end_at=self.session.consultation.end_at,
        )


class LobbyTicker:
    """Drives ``LobbyMachine.tick`` on a fixed interval until the session ends.

    ``stop()`` must be called on teardown so no tick (and no room completion)
    fires after the participant has gone.
    """

    def __init__(
        self,
        machine: LobbyMachine,
        on_tick: Optional[Callable[[LobbySnapshot], Awaitable[None]]] = None,
        interval: float = 1.0,
    ):
        self.machine = machine
        self.on_tick = on_tick
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def _run(self):
        while True:
            snapshot = await self.machine.tick()
            if self.on_tick is not None:
                try:
                    await self.on_tick(snapshot)
                except Exception as e:
                    logger.warning("[%s] tick listener failed, stopping ticker: %s", self.machine.session.room, e)
                    return
            if snapshot.stage.is_terminal:
                return
            await asyncio.sleep(self.interval)

    async def stop(self):
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
