"""WebSocket server streaming station events to dashboards.

Each client becomes a hub subscriber.  On connect it receives::

    {"type": "history", "events": [...]}      # replay backlog, oldest first

followed by one JSON object per live event.  Clients may send control
messages::

    {"type": "ping"}                          → {"type": "pong"}
    {"type": "status"}                        → {"type": "status", "data": {...}}
    {"type": "episodes"}                      → {"type": "episodes", "data": [...]}
    {"type": "alarm", "state": "on"|"off"}    → {"type": "ack", ...}
    {"type": "simulate"}                      → {"type": "ack", ...}
    {"type": "reset_peak"}                    → {"type": "ack", ...}

Rejected requests are answered with ``{"type": "error", "message": ...}``
to that client only.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Optional

import orjson
import websockets
import websockets.exceptions

from seismic_bridge.codec import encode_message, episode_to_dict, event_to_dict
from seismic_bridge.config import ServerConfig
from seismic_bridge.hub import Subscription
from seismic_bridge.models import AlarmStatus
from seismic_bridge.station import InvalidCommand, Station

logger = logging.getLogger(__name__)


class SubscriberServer:
    """Serve the station's live feed over WebSocket.

    Parameters
    ----------
    station:
        The running station.
    config:
        Bind address and port.
    """

    def __init__(self, station: Station, config: ServerConfig) -> None:
        self._station = station
        self._host = config.host
        self._port = config.port

    async def serve(self, shutdown: asyncio.Event) -> None:
        """Accept clients until *shutdown* is set."""
        async with websockets.serve(self._handle, self._host, self._port):
            logger.info("WebSocket server listening on ws://%s:%d", self._host, self._port)
            await shutdown.wait()
        logger.info("WebSocket server stopped")

    async def handle_client_message(self, raw: str | bytes) -> Optional[dict[str, Any]]:
        """Execute one client request and return the reply, if any."""
        try:
            message = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("Invalid JSON received from WebSocket client")
            return {"type": "error", "message": "invalid JSON"}
        if not isinstance(message, dict):
            return {"type": "error", "message": "expected a JSON object"}

        msg_type = message.get("type")
        station = self._station
        try:
            if msg_type == "ping":
                return {"type": "pong"}
            if msg_type == "status":
                return {"type": "status", "data": station.snapshot()}
            if msg_type == "episodes":
                return {
                    "type": "episodes",
                    "data": [episode_to_dict(e) for e in station.alarm.episodes()],
                }
            if msg_type == "alarm":
                try:
                    status = AlarmStatus(message.get("state"))
                except ValueError:
                    return {"type": "error", "message": "alarm state must be 'on' or 'off'"}
                await station.request_alarm(status)
                return {"type": "ack", "request": "alarm", "status": station.alarm.status.value}
            if msg_type == "simulate":
                station.simulate_event()
                return {"type": "ack", "request": "simulate", "intensity": station.alarm.intensity}
            if msg_type == "reset_peak":
                station.reset_peak()
                return {"type": "ack", "request": "reset_peak"}
        except InvalidCommand as exc:
            return {"type": "error", "message": str(exc)}

        logger.warning("Unknown WebSocket message type: %s", msg_type)
        return {"type": "error", "message": f"unknown message type: {msg_type}"}

    # ── per-connection ──────────────────────────────────────────────

    async def _handle(self, websocket) -> None:
        client = "%s:%s" % websocket.remote_address[:2] if websocket.remote_address else ""
        sub, backlog = self._station.hub.subscribe(name=client)
        pump: Optional[asyncio.Task] = None
        try:
            await websocket.send(encode_message({
                "type": "history",
                "events": [event_to_dict(e) for e in backlog],
            }))
            pump = asyncio.create_task(self._pump(websocket, sub))

            async for raw in websocket:
                reply = await self.handle_client_message(raw)
                if reply is not None:
                    await websocket.send(encode_message(reply))
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._station.hub.unsubscribe(sub.id)
            if pump is not None:
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump

    async def _pump(self, websocket, sub: Subscription) -> None:
        """Forward live events from *sub* to the client."""
        try:
            async for event in sub:
                await websocket.send(encode_message(event_to_dict(event)))
        except websockets.exceptions.ConnectionClosed:
            logger.debug("Client %s went away", sub.name)
