"""
Realtime Tracking WebSocket.

One connection per client at /v1/ws/tracking?token=<jwt>.

Client events:
- join_vehicle   {vehicleId}         -> catch-up, then live receive_location
                 (data may also be the bare vehicle id)
- leave_vehicle  {vehicleId}
- send_location  {data: {...}}       -> location_ack (broadcast skips the sender)

Failures are answered with an "error" event carrying the REST error envelope;
the connection stays open. A viewer that falls behind receives
subscription_dropped {vehicleId, reason} and should join again.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from fleet_backend.app.core.dependencies import resolve_principal
from fleet_backend.app.core.exceptions import (
    AppException, AuthenticationError, InsufficientPermissionsError,
    ResourceNotFoundError, SubscriptionDroppedError, TrackingValidationError
)
from fleet_backend.app.domain.tracking.components import TrackingComponents
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.schemas.location import MAX_ID, LocationUpdate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime Tracking"])


class WebSocketObserver:
    """Hub observer writing JSON frames to one WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.observer_id = uuid.uuid4().hex
        # Hub sender tasks and direct replies share the socket
        self._send_lock = asyncio.Lock()

    async def send(self, message: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json(message)


class TrackingChannel:
    """
    Event dispatcher for one authenticated connection.

    Args:
        tracking: Tracking pipeline
        principal: Decoded token payload of the connected user
        observer: Outbound side of the connection
    """

    def __init__(self, tracking: TrackingComponents, principal: dict, observer):
        self.tracking = tracking
        self.principal = principal
        self.observer = observer

    async def handle(self, message: Any) -> None:
        """Dispatch one client message; AppExceptions become error events."""
        event = message.get("event") if isinstance(message, dict) else None
        try:
            if event == "join_vehicle":
                await self.join_vehicle(self._vehicle_id(message))
            elif event == "leave_vehicle":
                self.leave_vehicle(self._vehicle_id(message))
            elif event == "send_location":
                await self.send_location(message.get("data"))
            else:
                raise TrackingValidationError(
                    f"Unknown event: {event}",
                    error_code="ERR_VALIDATION_EVENT"
                )
        except AppException as e:
            await self.send_error(e, event)

    async def join_vehicle(self, vehicle_id: int) -> None:
        """Subscribe to a vehicle topic; returns after the catch-up was sent."""
        vehicle = await self.tracking.directory.get_vehicle(vehicle_id)
        if vehicle is None:
            raise ResourceNotFoundError("Vehicle", vehicle_id)

        if not await self._may_view(vehicle):
            raise InsufficientPermissionsError(
                "You do not have permission to track this vehicle",
                details={"vehicle_id": vehicle_id}
            )

        subscription = await self.tracking.hub.subscribe(vehicle_id, self.observer)
        if not subscription.active:
            raise SubscriptionDroppedError(vehicle_id, subscription.drop_reason or "")
        logger.info("Observer %s joined vehicle %s", self.observer.observer_id, vehicle_id)

    def leave_vehicle(self, vehicle_id: int) -> None:
        self.tracking.hub.unsubscribe_vehicle(vehicle_id, self.observer.observer_id)

    async def send_location(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise TrackingValidationError("send_location requires a data object")
        try:
            report = LocationUpdate.model_validate(data)
        except ValidationError as e:
            raise TrackingValidationError(
                "Invalid location report",
                details={"errors": [
                    {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                    for err in e.errors()
                ]}
            )

        ack = await self.tracking.ingest.report(self.principal, report, origin=self.observer.observer_id)
        await self.observer.send({"event": "location_ack", "data": ack.to_payload()})

    async def send_error(self, exc: AppException, event: Optional[str] = None) -> None:
        await self.observer.send({"event": "error", "source": event, "data": exc.to_envelope()})

    def close(self) -> int:
        """Reap every subscription of this connection."""
        return self.tracking.hub.drop_observer(self.observer.observer_id)

    async def _may_view(self, vehicle) -> bool:
        role = self.principal.get("role")
        if role == UserRole.ADMIN.value:
            return True
        if role == UserRole.FLEET_OWNER.value:
            return vehicle.owner_id == self.principal.get("user_id")
        if role == UserRole.DRIVER.value:
            driver = await self.tracking.directory.get_driver_by_user(self.principal.get("user_id"))
            return driver is not None and driver.assigned_vehicle_id == vehicle.id
        return False

    @staticmethod
    def _vehicle_id(message: dict) -> int:
        data = message.get("data")
        if isinstance(data, dict):
            raw = data.get("vehicleId")
        elif data is not None and not isinstance(data, bool):
            raw = data
        else:
            raw = message.get("vehicleId")
        try:
            vehicle_id = int(raw)
        except (TypeError, ValueError, OverflowError):
            vehicle_id = None
        if vehicle_id is None or not 0 < vehicle_id <= MAX_ID:
            raise TrackingValidationError(
                "A valid vehicleId is required",
                details={"vehicleId": raw},
                error_code="ERR_VALIDATION_REQUIRED"
            )
        return vehicle_id


@router.websocket("/ws/tracking")
async def tracking_socket(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Live tracking channel.

    The token is checked before the handshake completes; an invalid token
    closes the socket with policy violation.
    """
    tracking: TrackingComponents = websocket.app.state.tracking

    try:
        if not token:
            raise AuthenticationError("Missing token")
        async with tracking.session_factory() as db:
            principal = await resolve_principal(token, db)
    except AppException as e:
        logger.info("Rejected tracking socket: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    observer = WebSocketObserver(websocket)
    channel = TrackingChannel(tracking, principal, observer)
    logger.info("Tracking socket %s opened by user %s", observer.observer_id, principal.get("user_id"))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await channel.send_error(TrackingValidationError(
                    "Message is not valid JSON",
                    error_code="ERR_VALIDATION_JSON"
                ))
                continue
            await channel.handle(message)
    except WebSocketDisconnect:
        pass
    finally:
        dropped = channel.close()
        logger.info("Tracking socket %s closed (%d subscriptions reaped)", observer.observer_id, dropped)
