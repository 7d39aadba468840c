from enum import Enum

PROMPT_STAGES = {"email_prompt", "name_prompt"}
EXTENDABLE_STAGES = {"lobby", "in_call"}
TERMINAL_STAGES = {"ended"}


class LobbyStage(Enum):
    EMAIL_PROMPT = "email_prompt"
    NAME_PROMPT = "name_prompt"
    LOBBY = "lobby"
    IN_CALL = "in_call"
    ENDED = "ended"

    @property
    def is_prompt(self) -> bool:
        return self.value in PROMPT_STAGES

    @property
    def can_extend(self) -> bool:
        return self.value in EXTENDABLE_STAGES

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STAGES
