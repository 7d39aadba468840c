import asyncio
import logging

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.jwt.access_token import AccessToken
from twilio.jwt.access_token.grants import VideoGrant
from twilio.rest import Client as TwilioClient

from teleconsult.circuit_breaker import CircuitBreaker
from teleconsult.errors import CredentialIssuanceFailure, InvalidInput, RoomCompletionFailure
from teleconsult.models import JoinCredential
from teleconsult.validation import normalize_room_name

logger = logging.getLogger(__name__)

ROOM_STATUS_COMPLETED = "completed"
DEFAULT_TOKEN_TTL = 3600


class VideoRoomController:
    async def issue_join_credential(self, room: str, identity: str) -> JoinCredential:
        raise NotImplementedError

    async def complete_room(self, room: str) -> None:
        raise NotImplementedError


class TwilioVideoController(VideoRoomController):
    """Twilio Video: access tokens for participants, room completion via REST.

    Uses API key authentication (key SID + secret scoped to the account).
    The REST client is synchronous, so calls run in a worker thread.
    """

    def __init__(
        self,
        account_sid: str,
        api_key_sid: str,
        api_key_secret: str,
        token_ttl: int = DEFAULT_TOKEN_TTL,
        rest_client: TwilioClient | None = None,
    ):
        self.account_sid = account_sid
        self.api_key_sid = api_key_sid
        self.api_key_secret = api_key_secret
        self.token_ttl = token_ttl
        self._rest_client = rest_client
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=30.0,
            label="Twilio Video",
        )

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.api_key_sid and self.api_key_secret)

    def _client(self) -> TwilioClient:
        if self._rest_client is None:
            self._rest_client = TwilioClient(
                self.api_key_sid, self.api_key_secret, self.account_sid
            )
        return self._rest_client

    def _log_missing_credentials(self, purpose: str) -> None:
        logger.error(
            "Twilio credentials missing for %s: TWILIO_ACCOUNT_SID=%s "
            "TWILIO_API_KEY_SID=%s TWILIO_API_KEY_SECRET=%s",
            purpose,
            "loaded" if self.account_sid else "MISSING",
            "loaded" if self.api_key_sid else "MISSING",
            "loaded" if self.api_key_secret else "MISSING",
        )

    async def issue_join_credential(self, room: str, identity: str) -> JoinCredential:
        room_key = normalize_room_name(room)
        identity = (identity or "").strip()
        if not room_key or not identity:
            raise InvalidInput("Missing identity or roomName")
        if not self.configured:
            self._log_missing_credentials("token issuance")
            raise CredentialIssuanceFailure("Twilio credentials not configured")

        try:
            token = AccessToken(
                self.account_sid,
                self.api_key_sid,
                self.api_key_secret,
                identity=identity,
                ttl=self.token_ttl,
            )
            token.add_grant(VideoGrant(room=room_key))
            jwt = token.to_jwt()
        except Exception as e:
            logger.error("Failed to generate Twilio token for %s: %s", room_key, e)
            raise CredentialIssuanceFailure(f"Failed to generate token: {e}") from e

        if isinstance(jwt, bytes):
            jwt = jwt.decode("utf-8")
        return JoinCredential(token=jwt, room=room_key, identity=identity, ttl_seconds=self.token_ttl)

    async def complete_room(self, room: str) -> None:
        """Mark the room completed. Already-completed and unknown rooms count as done."""
        room_key = normalize_room_name(room)
        if not room_key:
            raise InvalidInput("Missing roomName")
        if not self.configured:
            self._log_missing_credentials("room completion")
            raise RoomCompletionFailure("Twilio credentials not configured")
        if not self._circuit.should_try():
            logger.warning("Twilio circuit breaker open, not completing room %s", room_key)
            raise RoomCompletionFailure("Video provider unavailable")

        try:
            await asyncio.to_thread(self._complete_room_sync, room_key)
        except TwilioRestException as e:
            if e.status == 404:
                self._circuit.record_success()
                logger.warning("Room %s not found. Assuming completed or never existed.", room_key)
                return
            self._circuit.record_failure()
            logger.error("Failed to complete Twilio room %s: %s", room_key, e)
            raise RoomCompletionFailure(f"Failed to complete room: {e.msg}") from e
        except TwilioException as e:
            self._circuit.record_failure()
            logger.error("Failed to complete Twilio room %s: %s", room_key, e)
            raise RoomCompletionFailure(f"Failed to complete room: {e}") from e
        except Exception as e:
            # transport errors (connection reset, timeouts) from the REST client
            self._circuit.record_failure()
            logger.error("Failed to reach Twilio to complete room %s: %s", room_key, e)
            raise RoomCompletionFailure("Failed to complete room: video provider unreachable") from e
        self._circuit.record_success()

    def _complete_room_sync(self, room_key: str) -> None:
        rooms = self._client().video.v1.rooms(room_key)
        instance = rooms.fetch()
        if instance.status == ROOM_STATUS_COMPLETED:
            logger.info("Room %s was already completed.", room_key)
            return
        updated = rooms.update(status=ROOM_STATUS_COMPLETED)
        logger.info("Room %s (%s) completed.", room_key, updated.sid)
