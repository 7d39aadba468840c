import base64
import json
from unittest.mock import MagicMock

import pytest
import requests
from twilio.base.exceptions import TwilioRestException

from teleconsult.errors import CredentialIssuanceFailure, InvalidInput, RoomCompletionFailure
from teleconsult.video import TwilioVideoController


def _jwt_payload(token: str) -> dict:
    payload = token.split(".")[1]
    payload += "=" * (-len(payload) % 4)
    return json.loads(base64.urlsafe_b64decode(payload))


@pytest.fixture
def rooms():
    rooms = MagicMock()
    rooms.fetch.return_value = MagicMock(status="in-progress")
    rooms.update.return_value = MagicMock(sid="RM123", status="completed")
    return rooms


@pytest.fixture
def rest_client(rooms):
    client = MagicMock()
    client.video.v1.rooms.return_value = rooms
    return client


@pytest.fixture
def controller(rest_client):
    return TwilioVideoController(
        account_sid="AC" + "0" * 32,
        api_key_sid="SK" + "0" * 32,
        api_key_secret="test-secret",
        token_ttl=1800,
        rest_client=rest_client,
    )


class TestIssueJoinCredential:
    @pytest.mark.asyncio
    async def test_token_grants_room_to_identity(self, controller):
        credential = await controller.issue_join_credential("Ada-Checkup", " Alice ")
        assert credential.room == "ada-checkup"
        assert credential.identity == "Alice"
        assert credential.ttl_seconds == 1800
        payload = _jwt_payload(credential.token)
        assert payload["grants"]["identity"] == "Alice"
        assert payload["grants"]["video"]["room"] == "ada-checkup"

    @pytest.mark.asyncio
    async def test_missing_identity(self, controller):
        with pytest.raises(InvalidInput, match="Missing identity or roomName"):
            await controller.issue_join_credential("ada-checkup", "  ")

    @pytest.mark.asyncio
    async def test_missing_room(self, controller):
        with pytest.raises(InvalidInput):
            await controller.issue_join_credential("", "Alice")

    @pytest.mark.asyncio
    async def test_not_configured(self):
        controller = TwilioVideoController(account_sid="", api_key_sid="", api_key_secret="")
        with pytest.raises(CredentialIssuanceFailure, match="not configured"):
            await controller.issue_join_credential("ada-checkup", "Alice")


class TestCompleteRoom:
    @pytest.mark.asyncio
    async def test_completes_in_progress_room(self, controller, rest_client, rooms):
        await controller.complete_room("Ada-Checkup")
        rest_client.video.v1.rooms.assert_called_with("ada-checkup")
        rooms.update.assert_called_once_with(status="completed")

    @pytest.mark.asyncio
    async def test_already_completed_is_noop(self, controller, rooms):
        rooms.fetch.return_value = MagicMock(status="completed")
        await controller.complete_room("ada-checkup")
        rooms.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_room_counts_as_completed(self, controller, rooms):
        rooms.fetch.side_effect = TwilioRestException(404, "/Rooms/ada-checkup", msg="Not found")
        await controller.complete_room("ada-checkup")
        rooms.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_error(self, controller, rooms):
        rooms.update.side_effect = TwilioRestException(500, "/Rooms/ada-checkup", msg="Upstream error")
        with pytest.raises(RoomCompletionFailure, match="Failed to complete room: Upstream error"):
            await controller.complete_room("ada-checkup")

    @pytest.mark.asyncio
    async def test_repeated_failures_fail_fast(self, controller, rooms):
        rooms.fetch.side_effect = TwilioRestException(503, "/Rooms/ada-checkup", msg="Unavailable")
        for _ in range(3):
            with pytest.raises(RoomCompletionFailure):
                await controller.complete_room("ada-checkup")
        rooms.fetch.reset_mock()
        with pytest.raises(RoomCompletionFailure, match="Video provider unavailable"):
            await controller.complete_room("ada-checkup")
        rooms.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_room(self, controller):
        with pytest.raises(InvalidInput):
            await controller.complete_room("  ")

    @pytest.mark.asyncio
    async def test_not_configured(self):
        controller = TwilioVideoController(account_sid="AC1", api_key_sid="", api_key_secret="")
        with pytest.raises(RoomCompletionFailure, match="not configured"):
            await controller.complete_room("ada-checkup")

    @pytest.mark.asyncio
    async def test_transport_error_is_completion_failure(self, controller, rooms):
        rooms.fetch.side_effect = requests.exceptions.ConnectionError("connection reset by peer")
        with pytest.raises(RoomCompletionFailure, match="video provider unreachable"):
            await controller.complete_room("ada-checkup")

    @pytest.mark.asyncio
    async def test_transport_errors_open_circuit(self, controller, rooms):
        rooms.fetch.side_effect = requests.exceptions.Timeout("read timed out")
        for _ in range(3):
            with pytest.raises(RoomCompletionFailure):
                await controller.complete_room("ada-checkup")
        with pytest.raises(RoomCompletionFailure, match="Video provider unavailable"):
            await controller.complete_room("ada-checkup")
