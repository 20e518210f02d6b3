"""Image normalization.

Every source image becomes a ``TARGET_SIZE`` square WebP on a white canvas,
cached on disk under a filename derived from the product name and image
position. Cached files are reused without touching the network.

Fetching is asynchronous and bounded by a semaphore shared across all images
of a batch. Failed downloads are retried with linear backoff; the backoff
sleep happens outside the semaphore so other images keep moving.
"""

import asyncio
import hashlib
import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, Hashable, List, Optional, Sequence, Tuple, Union

import requests
from PIL import Image, UnidentifiedImageError

from catalog_import.config import (
    HEADERS,
    IMAGE_BASE_URL,
    IMAGE_CACHE_DIR,
    IMAGE_CONCURRENCY,
    MAX_FETCH_RETRIES,
    REQUEST_TIMEOUT,
    RETRY_DELAY_SECONDS,
    TARGET_SIZE,
    WEBP_QUALITY,
)
from catalog_import.logging_config import get_logger, log_import_event
from catalog_import.models import ImageArtifact, ImageFailure
from catalog_import.shutdown import shutdown_requested
from catalog_import.text_utils import image_stem
from catalog_import.url_validation import (
    URLValidationError,
    resolve_image_ref,
    validate_image_url,
)

__all__ = [
    "ImageFetchError",
    "ImageDecodeError",
    "FetchResult",
    "NormalizeOutcome",
    "HttpImageFetcher",
    "ImageNormalizer",
    "create_session",
    "encode_square",
    "content_hash",
]

logger = get_logger("images")

Fetcher = Callable[[str], bytes]
Sleeper = Callable[[float], Awaitable[None]]


class ImageFetchError(Exception):
    """Raised when an image could not be downloaded after all retries."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ImageDecodeError(Exception):
    """Raised when source bytes are not a readable image."""
    pass


@dataclass
class FetchResult:
    """Outcome of a bounded retry loop."""

    success: bool
    content: bytes = b""
    attempts: int = 0
    error: Optional[str] = None


@dataclass
class NormalizeOutcome:
    """Artifacts (in source order) and per-image failures for one product."""

    artifacts: List[ImageArtifact] = field(default_factory=list)
    failures: List[ImageFailure] = field(default_factory=list)


def create_session() -> requests.Session:
    """Create a requests Session for image downloads."""
    session = requests.Session()
    session.headers.update(HEADERS)
    session.headers.setdefault("Accept", "image/*,*/*;q=0.8")
    return session


class HttpImageFetcher:
    """Blocking downloader; the normalizer runs it in worker threads."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = REQUEST_TIMEOUT):
        self.session = session or create_session()
        self.timeout = timeout

    def __call__(self, url: str) -> bytes:
        resp = self.session.get(url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.content


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _flatten(img: Image.Image) -> Image.Image:
    """Convert to RGB, compositing any transparency onto white."""
    if img.mode == "P":
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])  # alpha channel as mask
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def encode_square(data: bytes, target_size: int = TARGET_SIZE, quality: int = WEBP_QUALITY) -> bytes:
    """Shrink an image to fit ``target_size``, center it on a white square, encode WebP.

    Images smaller than the target are never enlarged.

    Raises:
        ImageDecodeError: If ``data`` cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            img = _flatten(src)
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Cannot decode image: {e}") from e

    width, height = img.size
    scale = min(1.0, target_size / max(width, height))
    if scale < 1.0:
        new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
        img = img.resize(new_size, Image.Resampling.LANCZOS)

    canvas = Image.new("RGB", (target_size, target_size), (255, 255, 255))
    offset = ((target_size - img.width) // 2, (target_size - img.height) // 2)
    canvas.paste(img, offset)

    out = io.BytesIO()
    canvas.save(out, format="WEBP", quality=quality, method=6)
    return out.getvalue()


def _write_atomic(path: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class ImageNormalizer:
    """Fetches, squares, encodes and caches product images.

    Args:
        cache_dir: Directory holding processed images
        fetcher: Callable returning raw bytes for a URL; raises
            ``requests.RequestException`` on network failure
        target_size: Output edge length in pixels
        quality: WebP quality (0-100)
        max_retries: Retries after the first failed download
        retry_delay: Backoff unit in seconds; retry ``n`` waits ``n * retry_delay``
        concurrency: Maximum downloads in flight
        base_url: Host used to resolve relative image references
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        cache_dir: Union[str, Path] = IMAGE_CACHE_DIR,
        fetcher: Optional[Fetcher] = None,
        target_size: int = TARGET_SIZE,
        quality: int = WEBP_QUALITY,
        max_retries: int = MAX_FETCH_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        concurrency: int = IMAGE_CONCURRENCY,
        base_url: str = IMAGE_BASE_URL,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.fetcher = fetcher or HttpImageFetcher()
        self.target_size = target_size
        self.quality = quality
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.concurrency = max(1, concurrency)
        self.base_url = base_url
        self._sleep = sleep

    def cache_path(self, product_name: str, index: int, cache_key: Optional[str] = None) -> Path:
        """Deterministic cache location for image ``index`` of a product.

        Files are named after the product name alone, so two products sharing
        a name share cached images. Callers that can tell such products apart
        pass ``cache_key`` (e.g. the barcode), which is added to the stem.
        """
        stem = image_stem(product_name)
        if cache_key:
            stem = f"{stem}-{image_stem(cache_key)}"
        return self.cache_dir / f"{stem}-{index + 1}.webp"

    def _artifact(self, path: Path, data: bytes, ref: str, from_cache: bool) -> ImageArtifact:
        return ImageArtifact(
            content_hash=content_hash(data),
            local_path=str(path),
            width=self.target_size,
            height=self.target_size,
            source_ref=ref,
            from_cache=from_cache,
        )

    async def fetch_with_retry(self, url: str, semaphore: asyncio.Semaphore) -> FetchResult:
        """Download ``url``, retrying network failures with linear backoff."""
        attempts = 0
        last_error: Optional[str] = None

        for attempt in range(1, self.max_retries + 2):
            attempts = attempt
            async with semaphore:
                try:
                    content = await asyncio.to_thread(self.fetcher, url)
                    return FetchResult(success=True, content=content, attempts=attempt)
                except requests.RequestException as e:
                    last_error = str(e) or e.__class__.__name__

            if attempt > self.max_retries or shutdown_requested():
                break
            delay = attempt * self.retry_delay
            logger.warning(
                f"Fetch failed for {url}: {last_error}; retrying in {delay:.1f}s "
                f"(attempt {attempt}/{self.max_retries + 1})"
            )
            await self._sleep(delay)

        return FetchResult(success=False, attempts=attempts, error=last_error)

    async def fetch_and_encode_async(
        self,
        ref: str,
        product_name: str,
        index: int = 0,
        semaphore: Optional[asyncio.Semaphore] = None,
        cache_key: Optional[str] = None,
    ) -> ImageArtifact:
        """Produce one artifact, from cache when possible.

        Raises:
            URLValidationError: If ``ref`` does not resolve to a safe URL
            ImageFetchError: If the download failed after all retries
            ImageDecodeError: If the downloaded bytes are not an image
        """
        path = self.cache_path(product_name, index, cache_key)
        if path.exists():
            data = await asyncio.to_thread(path.read_bytes)
            return self._artifact(path, data, ref, from_cache=True)

        url = validate_image_url(resolve_image_ref(ref, self.base_url))
        result = await self.fetch_with_retry(url, semaphore or asyncio.Semaphore(self.concurrency))
        if not result.success:
            raise ImageFetchError(
                f"Failed to fetch {url} after {result.attempts} attempts: {result.error}",
                attempts=result.attempts,
            )

        encoded = await asyncio.to_thread(encode_square, result.content, self.target_size, self.quality)
        await asyncio.to_thread(_write_atomic, path, encoded)
        return self._artifact(path, encoded, ref, from_cache=False)

    def fetch_and_encode(self, ref: str, product_name: Optional[str] = None, index: int = 0) -> ImageArtifact:
        """Blocking form of :meth:`fetch_and_encode_async`.

        Without a product name the cache key falls back to the reference itself.
        """
        return asyncio.run(self.fetch_and_encode_async(ref, product_name or ref, index))

    async def _normalize_one(
        self,
        ref: str,
        name: str,
        index: int,
        semaphore: asyncio.Semaphore,
        cache_key: Optional[str] = None,
    ) -> Union[ImageArtifact, ImageFailure]:
        kind, attempts = "invalid", 0
        try:
            return await self.fetch_and_encode_async(ref, name, index, semaphore, cache_key)
        except URLValidationError as e:
            message = str(e)
        except ImageFetchError as e:
            kind, message, attempts = "fetch", str(e), e.attempts
        except ImageDecodeError as e:
            kind, message = "decode", str(e)
        except OSError as e:
            kind, message = "cache", f"cache I/O failed: {e}"

        log_import_event(
            "image_failed",
            {
                "message": f"Image {index + 1} for '{name}' failed ({kind}): {message}",
                "product": name,
                "ref": ref,
                "kind": kind,
            },
            level=logging.WARNING,
            logger_name="images",
        )
        return ImageFailure(ref=ref, index=index, kind=kind, message=message, attempts=attempts)

    async def normalize_async(
        self,
        refs: Sequence[str],
        product_name: str,
        semaphore: Optional[asyncio.Semaphore] = None,
        cache_key: Optional[str] = None,
    ) -> NormalizeOutcome:
        """Process all images of one product concurrently, keeping source order."""
        semaphore = semaphore or asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(*(
            self._normalize_one(ref, product_name, index, semaphore, cache_key)
            for index, ref in enumerate(refs)
        ))
        outcome = NormalizeOutcome()
        for item in results:
            if isinstance(item, ImageArtifact):
                outcome.artifacts.append(item)
            else:
                outcome.failures.append(item)
        return outcome

    async def normalize_many(
        self,
        jobs: Sequence[Tuple[Hashable, Sequence[str], str]],
        key_in_filename: bool = False,
    ) -> Dict[Hashable, NormalizeOutcome]:
        """Normalize images for many products under one concurrency limit.

        Args:
            jobs: ``(key, refs, product_name)`` triples
            key_in_filename: Add each job key to its cache filenames

        Returns:
            Outcome per job key
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(*(
            self.normalize_async(refs, name, semaphore, str(key) if key_in_filename else None)
            for key, refs, name in jobs
        ))
        return {key: outcome for (key, _refs, _name), outcome in zip(jobs, outcomes)}

    def normalize_detailed(
        self, refs: Sequence[str], product_name: str, cache_key: Optional[str] = None
    ) -> NormalizeOutcome:
        return asyncio.run(self.normalize_async(refs, product_name, cache_key=cache_key))

    def normalize(
        self, refs: Sequence[str], product_name: str, cache_key: Optional[str] = None
    ) -> List[ImageArtifact]:
        """Artifacts for every image that could be processed, in source order."""
        outcome = self.normalize_detailed(refs, product_name, cache_key)
        if refs and not outcome.artifacts:
            logger.warning(f"No usable images for '{product_name}' ({len(refs)} tried)")
        return outcome.artifacts
