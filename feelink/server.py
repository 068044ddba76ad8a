"""
WebSocket front end for the conversation orchestrator.

Clients send JSON messages dispatched by ``type``; session events and
announcements are broadcast to every connected client. Microphone audio
can be streamed in as base64-encoded 16-bit PCM ``audio_chunk`` messages.
"""

import asyncio
import base64
import binascii
import json
from typing import Any, Dict, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed
from loguru import logger

from .announcer import CallbackAnnouncer
from .gateway import DEFAULT_QUESTION, BackendGateway
from .host import SessionHost
from .router import NotificationRouter
from .transcription import TranscriptionProvider


class WebSocketSessionServer:
    """
    WebSocket server driving one ``SessionHost``.
    """

    def __init__(self,
                 gateway: BackendGateway,
                 provider: TranscriptionProvider,
                 engine: Optional[Any] = None,
                 host: str = "localhost",
                 port: int = 8765,
                 reply_timeout: float = 10.0,
                 min_conversation_id_length: int = 5):
        """
        Initialize WebSocket server.

        Args:
            gateway (BackendGateway): Backend client
            provider (TranscriptionProvider): Voice capture adapter
            engine (Optional[Any]): Streaming engine receiving
                ``audio_chunk`` messages; audio messages are rejected if None
            host (str): Server host
            port (int): Server port
            reply_timeout (float): Timeout for notification replies
            min_conversation_id_length (int): Reply action id length threshold
        """
        self.host = host
        self.port = port
        self.gateway = gateway
        self.engine = engine
        self.clients: Set[Any] = set()

        self.announcer = CallbackAnnouncer(self.broadcast)
        self.sessions = SessionHost(
            gateway,
            self.announcer,
            provider,
            on_event=self.broadcast,
            reply_timeout=reply_timeout,
        )
        self.router = NotificationRouter(self.sessions, min_conversation_id_length)

        logger.info(f"WebSocket server initialized on {host}:{port}")

    def broadcast(self, event: Dict[str, Any]) -> None:
        """Send an event to every connected client without waiting."""
        if not self.clients:
            return
        websockets.broadcast(self.clients, json.dumps(event, ensure_ascii=False))

    async def handle_client(self, websocket, path: Optional[str] = None):
        """Handle WebSocket client connection."""
        client_id = f"{websocket.remote_address[0]}:{websocket.remote_address[1]}"
        self.clients.add(websocket)
        logger.info(f"Client connected: {client_id}")

        try:
            async for message in websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    await websocket.send(json.dumps({"error": "Invalid JSON message"}))
                    continue

                if not isinstance(data, dict):
                    await websocket.send(json.dumps({"error": "Message must be a JSON object"}))
                    continue

                try:
                    response = await self.process_message(data)
                except Exception as e:
                    logger.error(f"Error processing message from {client_id}: {e}")
                    await websocket.send(json.dumps({"error": str(e)}, ensure_ascii=False))
                    continue

                if response:
                    await websocket.send(json.dumps(response, ensure_ascii=False))

        except ConnectionClosed:
            logger.info(f"Client disconnected: {client_id}")
        finally:
            self.clients.discard(websocket)
            logger.info(f"Client removed: {client_id}")

    @staticmethod
    def _decode_base64(data: Dict[str, Any], key: str) -> Optional[bytes]:
        encoded = data.get(key)
        if not isinstance(encoded, str) or not encoded:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            return None

    async def process_message(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Process incoming WebSocket message."""
        message_type = data.get("type")
        session = self.sessions.current

        if message_type == "notification":
            payload = data.get("payload")
            if not isinstance(payload, dict):
                return {"error": "Notification payload must be an object"}
            route = await self.router.route(
                payload,
                action_identifier=data.get("action_identifier"),
                user_text=data.get("user_text"),
            )
            return {"type": "notification_routed", "route": type(route).__name__}

        elif message_type == "open_conversation":
            conversation_id = data.get("conversation_id")
            if not isinstance(conversation_id, str) or not conversation_id:
                return {"error": "conversation_id is required"}
            session = self.sessions.open_conversation(conversation_id)
            return {"type": "session_opened", "session": session.snapshot()}

        elif message_type == "open_analysis":
            analysis_id = data.get("analysis_id")
            if not isinstance(analysis_id, str) or not analysis_id:
                return {"error": "analysis_id is required"}
            session = await self.sessions.open_analysis(analysis_id)
            return {"type": "session_opened", "session": session.snapshot()}

        elif message_type == "analyze_screenshot":
            image_bytes = self._decode_base64(data, "image_data")
            if image_bytes is None:
                return {"error": "image_data must be base64 encoded"}
            question = data.get("question") or DEFAULT_QUESTION
            session = await self.sessions.analyze_screenshot(image_bytes, question)
            return {"type": "session_opened", "session": session.snapshot()}

        elif message_type in ("start_listening", "stop_listening", "cancel_listening"):
            if session is None:
                return {"error": "No active session"}
            if message_type == "start_listening":
                accepted = session.start_listening()
            elif message_type == "stop_listening":
                session.stop_listening()
                accepted = True
            else:
                accepted = session.cancel_listening()
            return {"type": f"{message_type}_response", "accepted": accepted,
                    "state": session.state.value}

        elif message_type == "dismiss":
            self.sessions.dismiss()
            return {"type": "dismiss_response", "status": "dismissed"}

        elif message_type == "audio_chunk":
            if self.engine is None:
                return {"error": "Audio streaming is not enabled"}
            pcm = self._decode_base64(data, "audio_data")
            if pcm is None:
                return {"error": "No audio data provided"}
            self.engine.feed(pcm)
            return None

        elif message_type == "end_of_audio":
            if self.engine is None:
                return {"error": "Audio streaming is not enabled"}
            self.engine.end_of_audio()
            return None

        elif message_type == "register_device":
            installation_id = data.get("installation_id")
            device_token = data.get("device_token")
            if not isinstance(installation_id, str) or not isinstance(device_token, str):
                return {"error": "installation_id and device_token are required"}
            success = await self.gateway.register_device(installation_id, device_token)
            return {"type": "register_device_response", "success": success}

        elif message_type == "get_state":
            return {"type": "state_snapshot", **self.sessions.snapshot()}

        else:
            return {"error": f"Unknown message type: {message_type}"}

    async def start_server(self):
        """Start the WebSocket server."""
        logger.info(f"Starting WebSocket server on {self.host}:{self.port}")

        try:
            async with websockets.serve(self.handle_client, self.host, self.port):
                logger.info("WebSocket server started successfully")
                await asyncio.Future()  # Run forever
        finally:
            self.sessions.dismiss()
            await self.gateway.close()

    def run_server(self):
        """Run the WebSocket server in the current thread."""
        asyncio.run(self.start_server())
