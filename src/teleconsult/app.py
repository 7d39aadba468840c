import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse

from teleconsult.config import Settings, load_settings, validate_config
from teleconsult.errors import (
    ClientNotInvited,
    ConsultationError,
    CredentialIssuanceFailure,
    DuplicateRoom,
    InvalidInput,
    InvalidSchedule,
    NotFound,
    PaymentError,
    RoomCompletionFailure,
    StorageFailure,
)
from teleconsult.lobby import NOT_INVITED_MESSAGE, LobbyMachine, LobbyTicker, Outcome
from teleconsult.models import isoformat_utc
from teleconsult.payments import (
    EXTENSION_OFFERS,
    PaymentWebhookHandler,
    PaystackClient,
    find_offer,
    verify_signature,
)
from teleconsult.schemas import (
    CheckoutRequest,
    CompleteRoomRequest,
    ExtendRequest,
    ScheduleRequest,
    SetClientNameRequest,
    TokenRequest,
    VerifyEmailRequest,
)
from teleconsult.service import ConsultationService
from teleconsult.session import LobbySession
from teleconsult.store import MongoConsultationStore
from teleconsult.video import TwilioVideoController, VideoRoomController

load_dotenv()

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "An internal server error occurred."

ERROR_STATUS = {
    InvalidInput: 400,
    InvalidSchedule: 400,
    DuplicateRoom: 409,
    NotFound: 404,
    ClientNotInvited: 404,
    CredentialIssuanceFailure: 502,
    RoomCompletionFailure: 502,
    PaymentError: 502,
    StorageFailure: 500,
}


@dataclass
class Dependencies:
    service: ConsultationService
    video: VideoRoomController
    webhook_handler: PaymentWebhookHandler
    settings: Settings
    paystack: PaystackClient | None = None


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_dependencies(settings: Settings) -> Dependencies:
    store = MongoConsultationStore.from_uri(settings.mongo_uri, settings.mongo_db_name)
    service = ConsultationService(store)
    video = TwilioVideoController(
        account_sid=settings.twilio_account_sid,
        api_key_sid=settings.twilio_api_key_sid,
        api_key_secret=settings.twilio_api_key_secret,
        token_ttl=settings.twilio_token_ttl,
    )
    paystack = PaystackClient(settings.paystack_secret_key) if settings.paystack_secret_key else None
    return Dependencies(
        service=service,
        video=video,
        webhook_handler=PaymentWebhookHandler(service),
        settings=settings,
        paystack=paystack,
    )


def _status_for(exc: ConsultationError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


async def _dispatch_lobby_action(machine: LobbyMachine, message: dict) -> Outcome:
    action = message.get("action")
    if action == "submit_email":
        return await machine.submit_email(str(message.get("email", "")))
    if action == "submit_name":
        return await machine.submit_name(str(message.get("name", "")))
    if action == "join":
        return await machine.join()
    if action == "leave":
        return await machine.leave()
    if action == "extend":
        return await machine.extend(message.get("minutes"))
    if action == "refresh":
        return await machine.refresh()
    return Outcome(ok=False, error=f"Unknown action: {action}")


def create_app(deps: Dependencies | None = None) -> FastAPI:
    """Build the API. Without ``deps`` everything is wired from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = deps is None
        if owned:
            validate_config()
            settings = load_settings()
            configure_logging(settings.log_level)
            app.state.deps = build_dependencies(settings)
            await app.state.deps.service.store.ensure_indexes()
            logger.info("Teleconsult started")
        yield
        if owned:
            await app.state.deps.service.store.close()
            if app.state.deps.paystack is not None:
                await app.state.deps.paystack.close()

    app = FastAPI(title="Teleconsult", lifespan=lifespan)
    if deps is not None:
        app.state.deps = deps

    @app.exception_handler(ConsultationError)
    async def consultation_error_handler(request: Request, exc: ConsultationError):
        status = _status_for(exc)
        message = exc.message
        if status == 500:
            logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.message, exc.details)
            message = INTERNAL_ERROR_MESSAGE
        return JSONResponse({"success": False, "error": message}, status_code=status)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("%s %s failed unexpectedly: %s", request.method, request.url.path, exc)
        return JSONResponse({"success": False, "error": INTERNAL_ERROR_MESSAGE}, status_code=500)

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/api/consultations", status_code=201)
    async def schedule_consultation(body: ScheduleRequest, request: Request):
        result = await request.app.state.deps.service.schedule(
            host_name=body.host_name,
            room_name=body.room_name,
            start_at=body.start_at,
            end_at=body.end_at,
            client_emails=body.client_emails,
        )
        return {
            "success": True,
            "consultation": result.consultation.to_public(),
            "joinPath": result.join_path,
        }

    @app.get("/api/consultations/{room_name}")
    async def get_consultation(room_name: str, request: Request):
        consultation = await request.app.state.deps.service.get_details(room_name)
        return consultation.to_public()

    @app.post("/api/consultations/{room_name}/verify")
    async def verify_client(room_name: str, body: VerifyEmailRequest, request: Request):
        try:
            client_name = await request.app.state.deps.service.verify_client_email(room_name, body.email)
        except (NotFound, ClientNotInvited):
            # one answer for both, so callers cannot probe rooms against emails
            return JSONResponse({"success": False, "error": NOT_INVITED_MESSAGE}, status_code=404)
        return {"success": True, "clientName": client_name}

    @app.post("/api/consultations/{room_name}/clients/name")
    async def set_client_name(room_name: str, body: SetClientNameRequest, request: Request):
        await request.app.state.deps.service.set_client_name(room_name, body.email, body.name)
        return {"success": True}

    @app.post("/api/consultations/{room_name}/extend")
    async def extend_consultation(room_name: str, body: ExtendRequest, request: Request):
        new_end_at = await request.app.state.deps.service.extend(room_name, body.minutes)
        return {"success": True, "newEndAt": isoformat_utc(new_end_at)}

    @app.get("/api/extension-offers")
    async def extension_offers():
        return [offer.to_public() for offer in EXTENSION_OFFERS]

    @app.post("/api/consultations/{room_name}/checkout")
    async def checkout_extension(room_name: str, body: CheckoutRequest, request: Request):
        deps = request.app.state.deps
        if deps.paystack is None:
            logger.error("Checkout requested but PAYSTACK_SECRET_KEY is not configured")
            raise PaymentError("Payments are not available.")
        offer = find_offer(body.minutes)
        if offer is None:
            raise InvalidInput("Please select an extension duration.")
        service = deps.service
        consultation = await service.get_details(room_name)
        await service.verify_client_email(room_name, body.email)
        callback_url = ""
        if deps.settings.public_base_url:
            callback_url = deps.settings.public_base_url + consultation.join_path
        data = await deps.paystack.initialize_transaction(
            email=body.email.strip().lower(),
            amount_minor=offer.amount_minor,
            currency=offer.currency,
            metadata={
                "roomName": consultation.normalized_room_name,
                "minutesToExtend": offer.minutes,
                "clientEmail": body.email.strip().lower(),
            },
            callback_url=callback_url,
        )
        return {
            "success": True,
            "authorizationUrl": data.get("authorization_url", ""),
            "reference": data.get("reference", ""),
        }

    @app.post("/api/token")
    async def issue_token(body: TokenRequest, request: Request):
        credential = await request.app.state.deps.video.issue_join_credential(body.room_name, body.identity)
        return {"token": credential.token}

    @app.post("/api/twilio/room/complete")
    async def complete_room(body: CompleteRoomRequest, request: Request):
        await request.app.state.deps.video.complete_room(body.room_name)
        return {"success": True, "message": f"Room {body.room_name.strip().lower()} completed."}

    @app.post("/api/paystack/webhook")
    async def paystack_webhook(request: Request):
        deps = request.app.state.deps
        raw_body = await request.body()
        secret = deps.settings.paystack_secret_key
        if not secret:
            logger.error("Paystack secret key not configured.")
            return JSONResponse({"error": "Internal server error"}, status_code=500)
        if not verify_signature(raw_body, request.headers.get("x-paystack-signature"), secret):
            logger.warning("Rejected Paystack webhook with invalid signature")
            return JSONResponse({"error": "Invalid signature"}, status_code=401)
        try:
            event = json.loads(raw_body)
        except ValueError:
            logger.error("Paystack webhook body is not JSON")
            return JSONResponse({"error": "Webhook processing failed"}, status_code=400)
        if not isinstance(event, dict):
            return JSONResponse({"error": "Webhook processing failed"}, status_code=400)
        await deps.webhook_handler.handle(event)
        return {"received": True}

    @app.websocket("/ws/consult/{room_name}")
    async def lobby_websocket(websocket: WebSocket, room_name: str):
        deps = websocket.app.state.deps
        await websocket.accept()
        try:
            consultation = await deps.service.get_details(room_name)
        except ConsultationError as e:
            await websocket.send_json({"type": "error", "error": e.message})
            await websocket.close(code=4404)
            return

        machine = LobbyMachine(LobbySession(consultation=consultation), deps.service, deps.video)

        async def push_tick(snapshot):
            await websocket.send_json({"type": "tick", **snapshot.to_public()})

        ticker = LobbyTicker(machine, on_tick=push_tick, interval=deps.settings.lobby_tick_seconds)
        ticker.start()
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    message = None
                if not isinstance(message, dict):
                    await websocket.send_json({"type": "error", "error": "Messages must be JSON objects."})
                    continue
                outcome = await _dispatch_lobby_action(machine, message)
                await websocket.send_json({
                    "type": "outcome",
                    "action": message.get("action"),
                    "stage": machine.stage.value,
                    **outcome.to_public(),
                })
        except WebSocketDisconnect:
            logger.info("[%s] lobby socket closed", consultation.normalized_room_name)
        finally:
            await ticker.stop()

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("teleconsult.app:app", host="0.0.0.0", port=port, reload=True)
