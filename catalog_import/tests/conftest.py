"""Shared fixtures for importer tests."""

import io
import threading
import time
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest
import requests
from PIL import Image

from catalog_import.models import Dimensions, ProductAttributes, ProductRecord


def make_record(
    sku: str = "SKU-1",
    name: str = "Test Product",
    barcode: Optional[str] = None,
    price: str = "10.00",
    manufacturer: str = "ACME",
    type_code: str = "LUBE",
    categories: Tuple[str, ...] = (),
    images: Tuple[str, ...] = (),
    color: Optional[str] = None,
    size: Optional[str] = None,
    active: bool = True,
    description: str = "",
) -> ProductRecord:
    """Build a ProductRecord with sensible defaults."""
    return ProductRecord(
        sku=sku,
        barcode=barcode if barcode is not None else f"BC-{sku}",
        name=name,
        description=description,
        wholesale_price=Decimal(price),
        stock_quantity=5,
        active=active,
        dimensions=Dimensions(),
        attributes=ProductAttributes(color=color, size=size),
        manufacturer_code=manufacturer,
        manufacturer_name=manufacturer.title(),
        type_code=type_code,
        category_codes=tuple(categories),
        images=tuple(images),
    )


def image_bytes(
    width: int,
    height: int,
    color: Tuple[int, ...] = (255, 0, 0),
    mode: str = "RGB",
    fmt: str = "PNG",
) -> bytes:
    """Encode a solid-colour test image."""
    img = Image.new(mode, (width, height), color)
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


class FakeFetcher:
    """Stands in for the HTTP fetcher.

    ``responses`` maps URL to bytes, or to a list consumed one per call where
    an Exception entry is raised instead of returned. Unknown URLs get
    ``default`` (or a ConnectionError when no default is set).
    """

    def __init__(
        self,
        responses: Optional[Dict[str, object]] = None,
        default: Optional[bytes] = None,
        delay: float = 0.0,
    ):
        self.responses = dict(responses or {})
        self.default = default
        self.delay = delay
        self.calls = 0
        self.urls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def __call__(self, url: str) -> bytes:
        with self._lock:
            self.calls += 1
            self.urls.append(url)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            response = self.responses.get(url, self.default)
            if isinstance(response, list):
                response = response.pop(0) if response else self.default
        try:
            if self.delay:
                time.sleep(self.delay)
            if response is None:
                raise requests.ConnectionError(f"no route to {url}")
            if isinstance(response, Exception):
                raise response
            return response
        finally:
            with self._lock:
                self.in_flight -= 1


class RecordingSleep:
    """Async sleep replacement that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def red_png() -> bytes:
    return image_bytes(200, 100)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(autouse=True)
def reset_shutdown():
    """Keep a shutdown requested by one test from leaking into others."""
    from catalog_import.shutdown import get_shutdown_handler

    get_shutdown_handler().reset()
    yield
    get_shutdown_handler().reset()
