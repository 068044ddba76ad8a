"""
HTTP client for the Feelink analysis backend.

Every operation is a single request: no retries and no caching. Callers
decide what to do with the ``ApiError`` subclasses raised on failure.
"""

import json
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

import httpx
from loguru import logger

from .errors import (
    ApiError,
    DecodeFailedError,
    InvalidRequestError,
    NoDataError,
    ServerRejectedError,
    TransportError,
)
from .models import AnalysisResult, ChatResponse

DEFAULT_QUESTION = "이 이미지에 대해 자세히 설명해줘"
DEFAULT_DEVICE_TAGS = ("ios", "feelink_user", "screenshot_app")


class BackendGateway:
    """
    Stateless request/response client for the analysis backend.

    The underlying ``httpx.AsyncClient`` is created lazily and reused until
    ``close()`` is called.
    """

    def __init__(self,
                 base_url: str,
                 timeout: float = 15.0,
                 app_name: str = "FeelinkApp_screenshot",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the gateway.

        Args:
            base_url (str): Backend base URL, e.g. ``https://api.example.com``
            timeout (float): Default per-request timeout in seconds
            app_name (str): Tag sent with chat turns
            transport (Optional[httpx.AsyncBaseTransport]): Custom transport,
                mainly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.app_name = app_name
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(f"BackendGateway initialized: {self.base_url} (timeout={timeout}s)")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _send(self, method: str, path: str,
                    timeout: Optional[float] = None, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            return await self._get_client().request(
                method, url, timeout=timeout if timeout is not None else self.timeout, **kwargs
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidRequestError(f"Invalid request URL {url}: {e}") from e
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed: {e!r}")
            raise TransportError(f"{method} {path} failed: {e}", cause=e) from e

    @staticmethod
    def _decode_json(response: httpx.Response) -> Any:
        if response.status_code != 200:
            logger.error(f"{response.request.method} {response.request.url.path} "
                         f"returned HTTP {response.status_code}")
            raise ServerRejectedError(response.status_code, response.text[:500])
        if not response.content:
            raise NoDataError("Server returned an empty body")
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeFailedError(f"Response is not valid JSON: {e}") from e

    @staticmethod
    def _text_fields(**fields: str) -> Dict[str, Any]:
        # (None, value) tuples keep plain text fields in a multipart body
        return {name: (None, value) for name, value in fields.items()}

    async def submit_analysis(self, image_bytes: bytes,
                              question: str = DEFAULT_QUESTION) -> str:
        """
        Upload a screenshot with a question and return the backend's answer.

        Args:
            image_bytes (bytes): JPEG image data
            question (str): Question about the image

        Returns:
            str: Answer text

        Raises:
            ApiError: On any request, status or decode failure
        """
        files = {"image_file": ("screenshot.jpg", image_bytes, "image/jpeg")}
        files.update(self._text_fields(user_question=question))

        response = await self._send("POST", "/continue_test", files=files)
        data = self._decode_json(response)
        answer = data.get("answer") if isinstance(data, dict) else None
        if not isinstance(answer, str):
            raise DecodeFailedError("Analysis response has no answer field")

        logger.info(f"Analysis answer received: '{answer[:100]}'")
        return answer

    async def continue_chat(self, message: str, conversation_id: str,
                            timeout: Optional[float] = None) -> ChatResponse:
        """
        Continue a server-side conversation with a text message.

        Args:
            message (str): User question
            conversation_id (str): Conversation to continue
            timeout (Optional[float]): Override for the default timeout

        Returns:
            ChatResponse: Decoded reply
        """
        if not conversation_id:
            raise InvalidRequestError("conversation_id must not be empty")

        logger.debug(f"continue_chat conversation_id='{conversation_id}' message='{message}'")
        files = self._text_fields(user_question=message, conversation_id=conversation_id)

        response = await self._send("POST", "/continue_test", timeout=timeout, files=files)
        return self._decode_chat(response, default_conversation_id=conversation_id)

    async def send_chat_turn(self, message: str, analysis_id: str,
                             image_bytes: Optional[bytes] = None) -> ChatResponse:
        """
        Ask a follow-up question about an analysis.

        Args:
            message (str): User question
            analysis_id (str): Analysis the question refers to
            image_bytes (Optional[bytes]): Screenshot to attach

        Returns:
            ChatResponse: Decoded reply
        """
        if not analysis_id:
            raise InvalidRequestError("analysis_id must not be empty")

        files: Dict[str, Any] = {}
        if image_bytes is not None:
            files["image_file"] = ("chat_image.jpg", image_bytes, "image/jpeg")
        files.update(self._text_fields(
            user_question=message,
            analysis_id=analysis_id,
            app_name=self.app_name,
        ))

        response = await self._send("POST", "/test", files=files)
        return self._decode_chat(response)

    def _decode_chat(self, response: httpx.Response,
                     default_conversation_id: Optional[str] = None) -> ChatResponse:
        data = self._decode_json(response)
        try:
            chat = ChatResponse.from_dict(data, default_conversation_id=default_conversation_id)
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeFailedError(f"Unexpected chat response shape: {e!r}") from e

        logger.info(f"Chat response received for {chat.conversation_id}: '{chat.message[:100]}'")
        return chat

    async def fetch_analysis(self, analysis_id: str) -> AnalysisResult:
        """
        Fetch a stored analysis result by id.

        Args:
            analysis_id (str): Analysis identifier

        Returns:
            AnalysisResult: Decoded result
        """
        if not analysis_id:
            raise InvalidRequestError("analysis_id must not be empty")

        response = await self._send("GET", f"/feelink/analysis/{quote(analysis_id, safe='')}")
        data = self._decode_json(response)
        try:
            result = AnalysisResult.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeFailedError(f"Unexpected analysis shape: {e!r}") from e

        logger.info(f"Analysis {result.id} loaded ({len(result.objects)} objects)")
        return result

    async def register_device(self, installation_id: str, device_token: str,
                              platform: str = "apns",
                              tags: Iterable[str] = DEFAULT_DEVICE_TAGS) -> bool:
        """
        Register a push token with the backend.

        Failures are logged and reported through the return value only.

        Returns:
            bool: True if the backend answered 200
        """
        form = {
            "installation_id": installation_id,
            "platform": platform,
            "device_token": device_token,
            "tags": ",".join(tags),
        }
        logger.info(f"Registering device {installation_id} ({platform})")

        try:
            response = await self._send("POST", "/register_device", data=form)
        except ApiError as e:
            logger.error(f"register_device failed: {e}")
            return False

        if response.status_code != 200:
            logger.warning(f"register_device returned HTTP {response.status_code}: {response.text[:200]}")
            return False

        logger.info("Device registration complete")
        return True
