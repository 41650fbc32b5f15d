"""
QR Code Service

Decodes membership QR codes uploaded to the verification channel and reads
the contact card they point to on qr1.be.
"""

import asyncio
import io
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx
import structlog
from PIL import Image, ImageEnhance, ImageOps, UnidentifiedImageError

from core.config import Settings
from core.exceptions import QRCodeError, TransientFetchError
from core.retry import raise_for_transient, retry_async

logger = structlog.get_logger(__name__)

# Original size first, then larger and smaller
DECODE_SCALES = (1.0, 1.5, 0.5)

QR1BE_HOST = "qr1.be"

_NAME_RE = re.compile(r"<(?:strong|h1|h2|div)[^>]*>([^<]+)</(?:strong|h1|h2|div)>")
_PHONE_RE = re.compile(r"(?:tel:|Phone:|phone:)[^\d]*(\d[\d\s-]{8,})")
_EMAIL_RE = re.compile(r"([a-zA-Z0-9._+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")


@dataclass(frozen=True)
class ContactInfo:
    """Contact details published on a qr1.be card."""

    email: str
    name: Optional[str] = None
    phone: Optional[str] = None


def decode_qr_image(image_bytes: bytes) -> str:
    """
    Decode the first QR code in an image.

    The image is converted to greyscale, normalised and given a little extra
    contrast, then tried at each of DECODE_SCALES.

    Raises:
        QRCodeError: the image is unreadable or holds no QR code
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise QRCodeError("Could not open the image. Please upload a PNG or JPG file.") from e

    prepared = ImageOps.autocontrast(ImageOps.grayscale(image))
    prepared = ImageEnhance.Contrast(prepared).enhance(1.2)

    # pyzbar loads the native zbar library on import
    from pyzbar.pyzbar import ZBarSymbol
    from pyzbar.pyzbar import decode as zbar_decode

    for scale in DECODE_SCALES:
        candidate = prepared
        if scale != 1.0:
            width, height = prepared.size
            candidate = prepared.resize((max(1, int(width * scale)), max(1, int(height * scale))))
        results = zbar_decode(candidate, symbols=[ZBarSymbol.QRCODE])
        for result in results:
            data = result.data.decode("utf-8", errors="replace").strip()
            if data:
                return data
        logger.debug("qr_decode_attempt_failed", scale=scale)

    raise QRCodeError(
        "Could not locate QR code in image. Please ensure the QR code is clearly visible."
    )


def parse_contact_page(html: str) -> Optional[ContactInfo]:
    """Extract name, phone and email from a qr1.be card. Returns None without an email."""
    email_match = _EMAIL_RE.search(html)
    if not email_match:
        return None

    name_match = _NAME_RE.search(html)
    phone_match = _PHONE_RE.search(html)
    return ContactInfo(
        email=email_match.group(1).strip(),
        name=name_match.group(1).strip() if name_match else None,
        phone=re.sub(r"\D", "", phone_match.group(1)) if phone_match else None,
    )


def is_qr1be_url(data: str) -> bool:
    return QR1BE_HOST in data


class QRService:
    """Downloads QR images and resolves them to contact information."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http_client = http_client
        self.settings = settings
        self._sleep = sleep

    async def _get(self, url: str) -> httpx.Response:
        async def _send() -> httpx.Response:
            try:
                response = await self.http_client.get(
                    url,
                    headers={"User-Agent": self.settings.smallstreet_headers["User-Agent"]},
                    timeout=self.settings.HTTP_TIMEOUT_SECONDS,
                    follow_redirects=True,
                )
            except httpx.TransportError as e:
                raise TransientFetchError(f"GET {url} failed: {e}") from e
            raise_for_transient(response)
            return response

        return await retry_async(
            _send,
            attempts=self.settings.HTTP_MAX_ATTEMPTS,
            initial_delay=self.settings.HTTP_BACKOFF_SECONDS,
            operation="qr_fetch",
            sleep=self._sleep,
        )

    async def read_qr_code(self, image_url: str) -> str:
        """Download an attachment and decode its QR code."""
        response = await self._get(image_url)
        if response.is_error:
            raise QRCodeError("Could not download the image. Please try again.")
        # Decoding is CPU bound; keep it off the event loop
        return await asyncio.to_thread(decode_qr_image, response.content)

    async def fetch_contact_info(self, url: str) -> Optional[ContactInfo]:
        """Fetch a qr1.be card and parse its contact details."""
        response = await self._get(url)
        if response.is_error:
            logger.warning("contact_page_fetch_failed", url=url, status=response.status_code)
            return None
        return parse_contact_page(response.text)
