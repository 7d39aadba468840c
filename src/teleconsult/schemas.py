"""Request bodies for the HTTP API (camelCase on the wire)."""
from pydantic import AwareDatetime, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScheduleRequest(CamelModel):
    host_name: str
    room_name: str
    start_at: AwareDatetime
    end_at: AwareDatetime
    client_emails: str


class VerifyEmailRequest(CamelModel):
    email: str


class SetClientNameRequest(CamelModel):
    email: str
    name: str


class ExtendRequest(CamelModel):
    minutes: int


class CheckoutRequest(CamelModel):
    email: str
    minutes: int


class TokenRequest(CamelModel):
    identity: str = ""
    room_name: str = ""


class CompleteRoomRequest(CamelModel):
    room_name: str = ""
