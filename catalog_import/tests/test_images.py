"""Tests for image fetching, squaring and caching."""

import asyncio
import io

import pytest
import requests
from PIL import Image

from conftest import FakeFetcher, RecordingSleep, image_bytes

from catalog_import.images import (
    ImageDecodeError,
    ImageFetchError,
    ImageNormalizer,
    encode_square,
)
from catalog_import.url_validation import (
    URLValidationError,
    is_safe_image_ref,
    resolve_image_ref,
    validate_image_url,
)

BASE = "https://img.example.com"


def open_webp(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def close_to(pixel, expected, tolerance=12):
    return all(abs(a - b) <= tolerance for a, b in zip(pixel, expected))


@pytest.fixture
def make_normalizer(tmp_path, recording_sleep):
    def factory(fetcher, **kwargs):
        kwargs.setdefault("base_url", BASE)
        kwargs.setdefault("sleep", recording_sleep)
        kwargs.setdefault("retry_delay", 1.0)
        kwargs.setdefault("max_retries", 3)
        return ImageNormalizer(cache_dir=tmp_path / "cache", fetcher=fetcher, **kwargs)
    return factory


class TestEncodeSquare:
    """Squaring and WebP encoding."""

    def test_output_is_square_webp(self, red_png):
        img = open_webp(encode_square(red_png))

        assert img.format == "WEBP"
        assert img.size == (650, 650)

    def test_small_images_are_not_enlarged(self):
        img = open_webp(encode_square(image_bytes(200, 100))).convert("RGB")

        # 200x100 centered: x 225..425, y 275..375
        assert close_to(img.getpixel((325, 325)), (255, 0, 0))
        assert close_to(img.getpixel((325, 260)), (255, 255, 255))
        assert close_to(img.getpixel((210, 325)), (255, 255, 255))

    def test_large_images_shrink_and_center(self):
        img = open_webp(encode_square(image_bytes(1300, 650, color=(0, 0, 255)))).convert("RGB")

        # Scaled to 650x325, offset 162 from the top
        assert close_to(img.getpixel((325, 325)), (0, 0, 255))
        assert close_to(img.getpixel((5, 325)), (0, 0, 255))
        assert close_to(img.getpixel((325, 20)), (255, 255, 255))
        assert close_to(img.getpixel((325, 630)), (255, 255, 255))

    def test_transparency_becomes_white(self):
        data = image_bytes(100, 100, color=(0, 0, 0, 0), mode="RGBA")
        img = open_webp(encode_square(data)).convert("RGB")

        assert close_to(img.getpixel((325, 325)), (255, 255, 255))

    def test_palette_images(self):
        data = image_bytes(50, 50, color=3, mode="P", fmt="GIF")
        assert open_webp(encode_square(data)).size == (650, 650)

    def test_custom_size(self, red_png):
        assert open_webp(encode_square(red_png, target_size=100)).size == (100, 100)

    def test_garbage_raises_decode_error(self):
        with pytest.raises(ImageDecodeError):
            encode_square(b"definitely not an image")


class TestImageNormalizer:
    """Fetch, retry, cache and order behaviour."""

    def test_processes_and_caches(self, make_normalizer, red_png, tmp_path):
        fetcher = FakeFetcher(default=red_png)
        normalizer = make_normalizer(fetcher)

        artifacts = normalizer.normalize([f"{BASE}/a.jpg"], "Foo Bar 8oz")

        assert len(artifacts) == 1
        artifact = artifacts[0]
        assert artifact.local_path.endswith("foo-bar-8oz-1.webp")
        assert (artifact.width, artifact.height) == (650, 650)
        assert not artifact.from_cache
        assert open_webp((tmp_path / "cache" / "foo-bar-8oz-1.webp").read_bytes()).size == (650, 650)

    def test_cache_hit_skips_network(self, make_normalizer, red_png):
        first = make_normalizer(FakeFetcher(default=red_png))
        original = first.normalize([f"{BASE}/a.jpg"], "Foo Bar")[0]

        offline = FakeFetcher()
        cached = make_normalizer(offline).normalize([f"{BASE}/a.jpg"], "Foo Bar")[0]

        assert offline.calls == 0
        assert cached.from_cache
        assert cached.content_hash == original.content_hash
        assert cached.local_path == original.local_path

    def test_retries_with_linear_backoff(self, make_normalizer, red_png, recording_sleep):
        url = f"{BASE}/flaky.jpg"
        fetcher = FakeFetcher({url: [
            requests.ConnectionError("reset"),
            requests.Timeout("slow"),
            red_png,
        ]})
        normalizer = make_normalizer(fetcher)

        artifacts = normalizer.normalize([url], "Flaky")

        assert len(artifacts) == 1
        assert fetcher.calls == 3
        assert recording_sleep.delays == [1.0, 2.0]

    def test_retries_exhausted(self, make_normalizer, recording_sleep):
        fetcher = FakeFetcher()
        normalizer = make_normalizer(fetcher)

        outcome = normalizer.normalize_detailed([f"{BASE}/gone.jpg"], "Gone")

        assert outcome.artifacts == []
        assert fetcher.calls == 4
        assert recording_sleep.delays == [1.0, 2.0, 3.0]
        failure = outcome.failures[0]
        assert failure.kind == "fetch"
        assert failure.attempts == 4

    def test_fetch_and_encode_raises_after_retries(self, make_normalizer):
        normalizer = make_normalizer(FakeFetcher(), max_retries=1)

        with pytest.raises(ImageFetchError) as excinfo:
            normalizer.fetch_and_encode(f"{BASE}/gone.jpg", "Gone")

        assert excinfo.value.attempts == 2

    def test_decode_errors_are_not_retried(self, make_normalizer, recording_sleep):
        fetcher = FakeFetcher(default=b"<html>not found</html>")
        normalizer = make_normalizer(fetcher)

        outcome = normalizer.normalize_detailed([f"{BASE}/a.jpg"], "Broken")

        assert fetcher.calls == 1
        assert recording_sleep.delays == []
        assert outcome.failures[0].kind == "decode"

    def test_partial_success_keeps_source_order(self, make_normalizer, red_png):
        refs = [f"{BASE}/1.jpg", f"{BASE}/2.jpg", f"{BASE}/3.jpg"]
        fetcher = FakeFetcher({refs[0]: red_png, refs[2]: image_bytes(80, 80, (0, 255, 0))})
        normalizer = make_normalizer(fetcher, max_retries=0)

        outcome = normalizer.normalize_detailed(refs, "Three Images")

        assert [a.source_ref for a in outcome.artifacts] == [refs[0], refs[2]]
        assert [a.local_path[-7:] for a in outcome.artifacts] == ["-1.webp", "-3.webp"]
        assert [(f.index, f.kind) for f in outcome.failures] == [(1, "fetch")]

    def test_relative_refs_resolve_against_image_host(self, make_normalizer, red_png):
        fetcher = FakeFetcher(default=red_png)
        normalizer = make_normalizer(fetcher)

        normalizer.normalize(["/images/foo.jpg"], "Relative")

        assert fetcher.urls == [f"{BASE}/images/foo.jpg"]

    def test_unsafe_ref_never_fetched(self, make_normalizer, red_png):
        fetcher = FakeFetcher(default=red_png)
        normalizer = make_normalizer(fetcher)

        outcome = normalizer.normalize_detailed(["javascript:alert(1)"], "Unsafe")

        assert fetcher.calls == 0
        assert outcome.failures[0].kind == "invalid"

    def test_malformed_ref_is_a_per_image_failure(self, make_normalizer, red_png):
        fetcher = FakeFetcher(default=red_png)
        normalizer = make_normalizer(fetcher)

        outcome = normalizer.normalize_detailed(["http://[broken/img.jpg", f"{BASE}/ok.jpg"], "Foo Bar")

        assert fetcher.urls == [f"{BASE}/ok.jpg"]
        assert [a.source_ref for a in outcome.artifacts] == [f"{BASE}/ok.jpg"]
        assert [(f.index, f.kind) for f in outcome.failures] == [(0, "invalid")]

    def test_cache_io_error_is_a_per_image_failure(self, make_normalizer, red_png, tmp_path):
        normalizer = make_normalizer(FakeFetcher(default=red_png))
        (tmp_path / "cache" / "foo-bar-1.webp").mkdir()

        outcome = normalizer.normalize_detailed([f"{BASE}/a.jpg", f"{BASE}/b.jpg"], "Foo Bar")

        assert [a.local_path for a in outcome.artifacts] == [str(tmp_path / "cache" / "foo-bar-2.webp")]
        assert len(outcome.failures) == 1
        assert (outcome.failures[0].index, outcome.failures[0].kind) == (0, "cache")

    def test_cache_key_separates_same_named_products(self, make_normalizer, red_png):
        fetcher = FakeFetcher(default=red_png)
        normalizer = make_normalizer(fetcher)

        first = normalizer.normalize([f"{BASE}/a.jpg"], "Foo Bar", cache_key="111")[0]
        second = normalizer.normalize([f"{BASE}/b.jpg"], "Foo Bar", cache_key="222")[0]

        assert first.local_path.endswith("foo-bar-111-1.webp")
        assert second.local_path.endswith("foo-bar-222-1.webp")
        assert not second.from_cache
        assert fetcher.calls == 2

    def test_concurrency_is_bounded(self, make_normalizer, red_png):
        fetcher = FakeFetcher(default=red_png, delay=0.05)
        normalizer = make_normalizer(fetcher, concurrency=2)
        jobs = [
            (i, [f"{BASE}/{i}-{n}.jpg" for n in range(3)], f"Product {i}")
            for i in range(3)
        ]

        outcomes = asyncio.run(normalizer.normalize_many(jobs))

        assert fetcher.calls == 9
        assert fetcher.max_in_flight <= 2
        assert sorted(outcomes) == [0, 1, 2]
        assert all(len(o.artifacts) == 3 for o in outcomes.values())


class TestUrlValidation:

    @pytest.mark.parametrize("ref,expected", [
        ("https://cdn.example.com/a.jpg", "https://cdn.example.com/a.jpg"),
        ("//cdn.example.com/a.jpg", "https://cdn.example.com/a.jpg"),
        ("/images/a.jpg", f"{BASE}/images/a.jpg"),
        ("images/a.jpg", f"{BASE}/images/a.jpg"),
        ("  /images/a.jpg\n", f"{BASE}/images/a.jpg"),
    ])
    def test_resolve(self, ref, expected):
        assert resolve_image_ref(ref, BASE) == expected

    def test_empty_ref_rejected(self):
        with pytest.raises(URLValidationError):
            resolve_image_ref("   ", BASE)

    def test_unparseable_ref_rejected(self):
        with pytest.raises(URLValidationError):
            resolve_image_ref("http://[broken/img.jpg", BASE)
        assert not is_safe_image_ref("http://[broken/img.jpg", BASE)

    @pytest.mark.parametrize("url", [
        "javascript:alert(1)",
        "data:image/png;base64,AAAA",
        "ftp://example.com/a.jpg",
        "https:///a.jpg",
        "https://example.com/../../etc/passwd",
    ])
    def test_rejected(self, url):
        with pytest.raises(URLValidationError):
            validate_image_url(url)

    def test_allowed_domains(self):
        with pytest.raises(URLValidationError):
            validate_image_url("https://evil.example.net/a.jpg", {"img.example.com"})
        assert validate_image_url(f"{BASE}/a.jpg", {"img.example.com"})

    def test_is_safe_image_ref(self):
        assert is_safe_image_ref("/a.jpg", BASE)
        assert not is_safe_image_ref("javascript:alert(1)", BASE)
