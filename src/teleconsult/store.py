"""Consultation Store Adapter.

``ConsultationStore`` is the contract the service depends on; the in-memory
implementation backs tests and local runs, the MongoDB one is used in
production. Both enforce uniqueness of the normalized room name.
"""
import copy
import logging
from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, AsyncMongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from teleconsult.errors import DuplicateRoom, StorageFailure
from teleconsult.models import Consultation, as_utc

logger = logging.getLogger(__name__)

CONSULTATIONS_COLLECTION = "consultations"
PAYMENT_EVENTS_COLLECTION = "payment_events"
DEFAULT_DB_NAME = "teleconsult"


class ConsultationStore:
    async def insert(self, consultation: Consultation) -> Consultation:
        raise NotImplementedError

    async def find_by_room(self, normalized_room_name: str) -> Consultation | None:
        raise NotImplementedError

    async def set_client_name(self, normalized_room_name: str, email: str, name: str) -> bool:
        raise NotImplementedError

    async def set_end_at(self, consultation_id: str, end_at: datetime) -> bool:
        raise NotImplementedError

    async def claim_payment_reference(self, reference: str) -> bool:
        raise NotImplementedError

    async def release_payment_reference(self, reference: str) -> None:
        raise NotImplementedError

    async def ensure_indexes(self) -> None:
        pass

    async def close(self) -> None:
        pass


class InMemoryConsultationStore(ConsultationStore):
    """Process-local store. Records are deep-copied in and out."""

    def __init__(self):
        self._by_room: dict[str, dict] = {}
        self._payment_references: set[str] = set()

    async def insert(self, consultation: Consultation) -> Consultation:
        key = consultation.normalized_room_name
        if key in self._by_room:
            raise DuplicateRoom(
                "Room name already exists. Please choose a unique name.",
                {"normalized_room_name": key},
            )
        doc = consultation.to_document()
        doc["_id"] = ObjectId()
        self._by_room[key] = copy.deepcopy(doc)
        return Consultation.from_document(doc)

    async def find_by_room(self, normalized_room_name: str) -> Consultation | None:
        doc = self._by_room.get(normalized_room_name)
        if doc is None:
            return None
        return Consultation.from_document(copy.deepcopy(doc))

    async def set_client_name(self, normalized_room_name: str, email: str, name: str) -> bool:
        doc = self._by_room.get(normalized_room_name)
        if doc is None:
            return False
        for client in doc["clients"]:
            if client["email"] == email:
                client["name"] = name
                return True
        return False

    async def set_end_at(self, consultation_id: str, end_at: datetime) -> bool:
        for doc in self._by_room.values():
            if str(doc["_id"]) == consultation_id:
                doc["endAt"] = as_utc(end_at)
                return True
        return False

    async def claim_payment_reference(self, reference: str) -> bool:
        if reference in self._payment_references:
            return False
        self._payment_references.add(reference)
        return True

    async def release_payment_reference(self, reference: str) -> None:
        self._payment_references.discard(reference)


class MongoConsultationStore(ConsultationStore):
    """MongoDB-backed store using the pymongo async client."""

    def __init__(self, database, client: AsyncMongoClient | None = None):
        self._client = client
        self._consultations = database.get_collection(CONSULTATIONS_COLLECTION)
        self._payment_events = database.get_collection(PAYMENT_EVENTS_COLLECTION)

    @classmethod
    def from_uri(cls, uri: str, db_name: str = "") -> "MongoConsultationStore":
        # tz_aware so stored instants come back as aware UTC datetimes
        client = AsyncMongoClient(uri, tz_aware=True)
        database = client.get_default_database(db_name or DEFAULT_DB_NAME)
        return cls(database, client=client)

    async def ensure_indexes(self) -> None:
        try:
            await self._consultations.create_index(
                [("normalizedRoomName", ASCENDING)],
                unique=True,
                name="normalizedRoomName_unique",
            )
        except PyMongoError as e:
            logger.error("Failed to create consultation indexes: %s", e)
            raise StorageFailure("Could not prepare the consultation store.", {"cause": str(e)}) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def insert(self, consultation: Consultation) -> Consultation:
        doc = consultation.to_document()
        try:
            result = await self._consultations.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateRoom(
                "Room name already exists. Please choose a unique name.",
                {"normalized_room_name": consultation.normalized_room_name},
            ) from e
        except PyMongoError as e:
            logger.error("insert consultation %s failed: %s", consultation.normalized_room_name, e)
            raise StorageFailure("Failed to schedule consultation in database.", {"cause": str(e)}) from e
        if not result.inserted_id:
            raise StorageFailure("Failed to schedule consultation in database.")
        doc["_id"] = result.inserted_id
        return Consultation.from_document(doc)

    async def find_by_room(self, normalized_room_name: str) -> Consultation | None:
        try:
            doc = await self._consultations.find_one({"normalizedRoomName": normalized_room_name})
        except PyMongoError as e:
            logger.error("find consultation %s failed: %s", normalized_room_name, e)
            raise StorageFailure("Failed to load consultation.", {"cause": str(e)}) from e
        if doc is None:
            return None
        return Consultation.from_document(doc)

    async def set_client_name(self, normalized_room_name: str, email: str, name: str) -> bool:
        try:
            result = await self._consultations.update_one(
                {"normalizedRoomName": normalized_room_name, "clients.email": email},
                {"$set": {"clients.$.name": name}},
            )
        except PyMongoError as e:
            logger.error("set client name in %s failed: %s", normalized_room_name, e)
            raise StorageFailure("Failed to update client name.", {"cause": str(e)}) from e
        # matched, not modified: writing the same name again is a success
        return result.matched_count > 0

    async def set_end_at(self, consultation_id: str, end_at: datetime) -> bool:
        try:
            object_id = ObjectId(consultation_id)
        except (InvalidId, TypeError):
            return False
        try:
            result = await self._consultations.update_one(
                {"_id": object_id},
                {"$set": {"endAt": as_utc(end_at)}},
            )
        except PyMongoError as e:
            logger.error("set endAt on %s failed: %s", consultation_id, e)
            raise StorageFailure("Failed to update consultation end time.", {"cause": str(e)}) from e
        return result.matched_count > 0

    async def claim_payment_reference(self, reference: str) -> bool:
        try:
            await self._payment_events.insert_one(
                {"_id": reference, "claimedAt": datetime.now(timezone.utc)}
            )
        except DuplicateKeyError:
            return False
        except PyMongoError as e:
            logger.error("claim payment reference %s failed: %s", reference, e)
            raise StorageFailure("Failed to record payment event.", {"cause": str(e)}) from e
        return True

    async def release_payment_reference(self, reference: str) -> None:
        try:
            await self._payment_events.delete_one({"_id": reference})
        except PyMongoError as e:
            logger.error("release payment reference %s failed: %s", reference, e)
