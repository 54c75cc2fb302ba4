"""Client for the off-chain image and metadata store."""

import aiohttp
import msgspec
import structlog

from tokenmarket.core.config import settings
from tokenmarket.core.logging import Logger
from tokenmarket.exceptions import UploadError
from tokenmarket.ledger.types import Trait

logger: Logger = structlog.get_logger()

UPLOAD_IMAGE_PATH = "/uploadImage"
UPLOAD_METADATA_PATH = "/uploadMetadata"


class MetadataDocument(msgspec.Struct, frozen=True):
    """Metadata document referenced on-chain by the asset's metadata URI"""

    name: str
    description: str
    image: str
    attributes: tuple[Trait, ...] = ()


class UploadResponse(msgspec.Struct, frozen=True):
    uri: str


_encoder = msgspec.json.Encoder()
_response_decoder = msgspec.json.Decoder(UploadResponse)


class MetadataClient:
    """
    Uploads images and metadata documents, returning their public URIs.

    Every failure (network, non-2xx status, malformed body) raises UploadError.
    No retries are attempted.
    """

    __slots__ = ("_base_url", "_timeout", "_session")

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = (base_url or settings.METADATA_URL).rstrip("/")
        self._timeout = aiohttp.ClientTimeout(
            total=timeout if timeout is not None else settings.REQUEST_TIMEOUT
        )
        self._session = session

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def upload_image(
        self,
        data: bytes,
        filename: str = "image.png",
        content_type: str = "application/octet-stream",
    ) -> str:
        if not data:
            raise UploadError("Image is empty")

        form = aiohttp.FormData()
        form.add_field("image", data, filename=filename, content_type=content_type)

        uri = await self._post(UPLOAD_IMAGE_PATH, data=form)
        logger.info(f"Image uploaded: {uri}")
        return uri

    async def upload_metadata(self, document: MetadataDocument) -> str:
        uri = await self._post(
            UPLOAD_METADATA_PATH,
            data=_encoder.encode(document),
            headers={"Content-Type": "application/json"},
        )
        logger.info(f"Metadata uploaded: {uri}")
        return uri

    async def _post(self, path: str, **kwargs) -> str:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

        url = f"{self._base_url}{path}"

        try:
            async with self._session.post(url, **kwargs) as response:
                body = await response.read()
                if response.status >= 400:
                    raise UploadError(
                        f"{path} failed with status {response.status}: "
                        f"{body[:200].decode(errors='replace')}"
                    )

        except (aiohttp.ClientError, TimeoutError) as e:
            raise UploadError(f"{path} request failed: {e}") from e

        try:
            return _response_decoder.decode(body).uri
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            raise UploadError(f"{path} returned an unexpected body: {e}") from e
