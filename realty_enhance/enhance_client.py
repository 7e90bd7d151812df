"""
HTTP client for the remote enhancement endpoint
Uploads one photo per call and reports the enhanced image URL together with
the caller's server-side credit balance
"""
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, Protocol, Union, TYPE_CHECKING
from dataclasses import dataclass

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .cancellation import CancellationToken, run_cancellable
from .config import get_config, EnhanceAPIConfig

if TYPE_CHECKING:
    from .queue_controller import EnhancementSettings
    from .records import ImageRecord

logger = logging.getLogger(__name__)

DEFAULT_ERROR = "Enhancement failed"

# Magic bytes accepted for downloaded results
IMAGE_SIGNATURES = [
    b'\xff\xd8\xff',  # JPEG
    b'\x89PNG',        # PNG
    b'GIF87a',         # GIF
    b'GIF89a',         # GIF
    b'RIFF',           # WEBP (starts with RIFF)
    b'BM',             # BMP
    b'II*\x00',        # TIFF (little-endian)
    b'MM\x00*',        # TIFF (big-endian)
]


class EnhanceError(Exception):
    """Remote enhancement failed; the message is shown next to the photo"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotAuthenticatedError(EnhanceError):
    """The session is missing or expired (HTTP 401)"""


class OutOfCreditsError(EnhanceError):
    """The server-side balance is exhausted (HTTP 402)"""


class RateLimitedError(EnhanceError):
    """Too many requests (HTTP 429)"""

    def __init__(self, message: str, status_code: Optional[int] = 429, retry_after: Optional[int] = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


@dataclass
class EnhanceResult:
    """Outcome of one successful remote enhancement"""
    url: str
    remaining_credits: int


class Enhancer(Protocol):
    """Anything that can enhance one record while observing a cancellation token"""

    async def enhance(
        self,
        record: "ImageRecord",
        settings: "EnhancementSettings",
        token: CancellationToken,
    ) -> EnhanceResult:
        ...


# Wire models

class EnhanceResponse(BaseModel):
    """Success body of the enhance endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    enhanced_image_url: str = Field(alias="enhancedImageUrl", min_length=1)
    remaining_credits: int = Field(alias="remainingCredits")
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error body shared by the site's API routes"""
    model_config = ConfigDict(populate_by_name=True)

    error: Optional[str] = None
    require_login: bool = Field(False, alias="requireLogin")
    no_credits: bool = Field(False, alias="noCredits")
    retry_after: Optional[int] = Field(None, alias="retryAfter")


class CreditStatus(BaseModel):
    """Body of the credits endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    credits: int = 0
    logged_in: bool = Field(False, alias="loggedIn")


class EnhanceClient:
    """Async client for the enhance and credits endpoints"""

    def __init__(
        self,
        config: Optional[EnhanceAPIConfig] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Args:
            config: Endpoint configuration. Defaults to the global config.
            client: Pre-built httpx client (its base settings are used as-is)
        """
        self.config = config or get_config().api
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout,
                cookies=self.config.cookies,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "EnhanceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def enhance(
        self,
        record: "ImageRecord",
        settings: "EnhancementSettings",
        token: CancellationToken,
    ) -> EnhanceResult:
        """Upload ``record`` and return the enhanced image URL and new balance"""
        return await run_cancellable(self._post_enhance(record, settings), token)

    async def _post_enhance(self, record: "ImageRecord", settings: "EnhancementSettings") -> EnhanceResult:
        files = {"image": (record.filename, record.source_bytes, record.content_type)}
        data = {
            "preset": settings.preset,
            "options": json.dumps(settings.options_payload()),
        }

        logger.debug(f"POST {self.config.enhance_url} | {record.filename} ({record.size_kb}KB) preset={settings.preset}")
        try:
            response = await self.client.post(self.config.enhance_url, files=files, data=data)
        except httpx.HTTPError as e:
            raise EnhanceError(f"Network error: {e}") from e

        body = self._json(response)
        if response.is_error:
            raise self._error_for(response.status_code, body)

        try:
            parsed = EnhanceResponse.model_validate(body)
        except ValidationError as e:
            logger.debug(f"Unexpected enhance response: {body}")
            raise EnhanceError("Unexpected response from the enhancement service", response.status_code) from e

        return EnhanceResult(url=parsed.enhanced_image_url, remaining_credits=parsed.remaining_credits)

    async def fetch_credits(self) -> CreditStatus:
        """Read the current balance for the session"""
        try:
            response = await self.client.get(self.config.credits_url)
        except httpx.HTTPError as e:
            raise EnhanceError(f"Network error: {e}") from e

        body = self._json(response)
        if response.is_error:
            raise self._error_for(response.status_code, body)
        try:
            return CreditStatus.model_validate(body)
        except ValidationError as e:
            raise EnhanceError("Unexpected response from the credits endpoint", response.status_code) from e

    async def download(self, url: str, dest: Union[str, Path]) -> Path:
        """Fetch an enhanced image and write it to ``dest`` after validating it"""
        dest = Path(dest)
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise EnhanceError(f"Failed to download {url}: {e}") from e

        content_type = response.headers.get('content-type', '').lower()
        if content_type and not content_type.startswith('image/'):
            raise EnhanceError(f"URL did not return an image. Content-Type: {content_type}")

        content = response.content
        if not is_image_bytes(content):
            raise EnhanceError(f"Invalid image data from {url}")

        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
        logger.info(f"Saved {dest.name} ({len(content)/1024:.1f}KB)")
        return dest

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _error_for(status_code: int, body: Dict[str, Any]) -> EnhanceError:
        try:
            err = ErrorResponse.model_validate(body)
        except ValidationError:
            err = ErrorResponse()
        message = err.error or DEFAULT_ERROR

        if status_code == 401 or err.require_login:
            return NotAuthenticatedError(message, status_code)
        if status_code == 402 or err.no_credits:
            return OutOfCreditsError(message, status_code)
        if status_code == 429:
            return RateLimitedError(message, status_code, retry_after=err.retry_after)
        return EnhanceError(message, status_code)


def is_image_bytes(content: bytes) -> bool:
    """Check magic bytes of an image payload"""
    if len(content) < 4:
        return False
    head = content[:20]
    # AVIF magic bytes are at offset 4-12
    if b'ftypavif' in head or b'ftypavis' in head:
        return True
    return any(head.startswith(sig) for sig in IMAGE_SIGNATURES)
