from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


@dataclass
class Client:
    email: str
    name: Optional[str] = None

    def to_document(self) -> dict:
        doc = {"email": self.email}
        if self.name is not None:
            doc["name"] = self.name
        return doc

    @classmethod
    def from_document(cls, doc: dict) -> "Client":
        return cls(email=doc["email"].strip().lower(), name=doc.get("name"))


@dataclass
class Consultation:
    host_name: str
    room_name: str
    normalized_room_name: str
    start_at: datetime
    end_at: datetime
    clients: list[Client] = field(default_factory=list)
    created_at: Optional[datetime] = None
    id: str = ""

    @property
    def join_path(self) -> str:
        return f"/consult/{self.normalized_room_name}"

    def find_client(self, email: str) -> Optional[Client]:
        """Roster lookup; ``email`` must already be normalized."""
        for client in self.clients:
            if client.email == email:
                return client
        return None

    def to_document(self) -> dict:
        """Document form for the store. ``id`` is left to the store."""
        return {
            "hostName": self.host_name,
            "roomName": self.room_name,
            "normalizedRoomName": self.normalized_room_name,
            "startAt": as_utc(self.start_at),
            "endAt": as_utc(self.end_at),
            "clients": [c.to_document() for c in self.clients],
            "createdAt": as_utc(self.created_at) if self.created_at else None,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "Consultation":
        created_at = doc.get("createdAt")
        return cls(
            id=str(doc.get("_id", "")),
            host_name=doc["hostName"],
            room_name=doc["roomName"],
            normalized_room_name=doc["normalizedRoomName"],
            start_at=as_utc(doc["startAt"]),
            end_at=as_utc(doc["endAt"]),
            clients=[Client.from_document(c) for c in doc.get("clients", [])],
            created_at=as_utc(created_at) if created_at else None,
        )

    def to_public(self) -> dict:
        """JSON-safe form returned by the HTTP API."""
        return {
            "id": self.id,
            "hostName": self.host_name,
            "roomName": self.room_name,
            "normalizedRoomName": self.normalized_room_name,
            "startAt": isoformat_utc(self.start_at),
            "endAt": isoformat_utc(self.end_at),
            "clients": [c.to_document() for c in self.clients],
            "createdAt": isoformat_utc(self.created_at) if self.created_at else None,
        }


@dataclass
class JoinCredential:
    """Opaque, time-limited admission token for one participant in one room."""

    token: str
    room: str
    identity: str
    ttl_seconds: int = 3600
