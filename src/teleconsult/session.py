from dataclasses import dataclass, field
from typing import Optional

from teleconsult.models import Consultation, JoinCredential
from teleconsult.states import LobbyStage


@dataclass
class LobbySession:
    """One participant's pass through the lobby for one consultation."""

    consultation: Consultation
    stage: LobbyStage = LobbyStage.EMAIL_PROMPT

    # From email verification
    verified_email: str = ""

    # From naming (or the stored name of a returning participant)
    client_name: str = ""

    # From join
    credential: Optional[JoinCredential] = None

    # Countdown, refreshed on every tick
    phase: str = ""
    seconds_left: int = 0
    status_message: str = ""
    can_join: bool = False

    # Metadata
    room_completed: bool = False
    stage_history: list = field(default_factory=list)

    @property
    def room(self) -> str:
        return self.consultation.normalized_room_name
