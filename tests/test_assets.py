"""Derived-asset package tests.

Tests focus on:
- Base image sanity checks (missing, too small, undecodable)
- Exact pixel sizes of size variants and icons
- Icon extraction falling back to the base image on timeout
- Per-asset upload failures not failing the package
- The ZIP archive layout and manifest
"""

import io
import json
import zipfile

import pytest
from PIL import Image

from brandforge.pipelines import package
from brandforge.pipelines.package import (
    AssetKind,
    DerivedAssetPipeline,
    base_image_digest,
    safe_name,
)
from brandforge.services.exceptions import AssetFetchError
from conftest import FakeStorage, FakeSynthesizer, no_sleep, png_bytes

BASE_URL = "memory://logos/base.png"


@pytest.fixture(autouse=True)
def small_size_matrix(monkeypatch):
    """Keep the size matrix small so each build stays fast."""
    monkeypatch.setattr(package, "SIZE_MATRIX", {"favicon": (16, 32), "web": (192,)})


@pytest.fixture
def base_storage() -> FakeStorage:
    storage = FakeStorage()
    storage.objects[BASE_URL] = png_bytes(256, 256)
    return storage


def builder(storage, synthesizer, settings, **overrides) -> DerivedAssetPipeline:
    return DerivedAssetPipeline(
        storage=storage,
        synthesizer=synthesizer,
        settings=settings.model_copy(update=overrides),
        sleep=no_sleep,
    )


def pixel_size(data: bytes) -> tuple[int, int]:
    return Image.open(io.BytesIO(data)).size


def test_safe_name_and_digest():
    assert safe_name("Acme Co.") == "Acme_Co"
    assert safe_name("***") == "logo"
    assert base_image_digest(BASE_URL) == base_image_digest(BASE_URL)
    assert len(base_image_digest(BASE_URL)) == 32
    assert base_image_digest(BASE_URL) != base_image_digest("memory://logos/other.png")


@pytest.mark.asyncio
async def test_fetch_rejects_missing_small_and_undecodable_images(settings):
    storage = FakeStorage()
    storage.objects["memory://tiny.png"] = png_bytes(4, 4, color=(0, 0, 0, 255))
    storage.objects["memory://junk.bin"] = b"x" * 4096
    pipeline = builder(storage, FakeSynthesizer(), settings)

    with pytest.raises(AssetFetchError, match="Could not fetch"):
        await pipeline.fetch("memory://missing.png")
    with pytest.raises(AssetFetchError, match="too small"):
        await pipeline.fetch("memory://tiny.png")
    with pytest.raises(AssetFetchError, match="decodable"):
        await pipeline.fetch("memory://junk.bin")


@pytest.mark.asyncio
async def test_fetch_rejects_oversized_image(base_storage, settings):
    pipeline = builder(base_storage, FakeSynthesizer(), settings, asset_max_bytes=2048)

    with pytest.raises(AssetFetchError, match="too large"):
        await pipeline.fetch(BASE_URL)


@pytest.mark.asyncio
async def test_size_variants_have_exact_pixel_sizes(base_storage, settings):
    pipeline = builder(base_storage, FakeSynthesizer(), settings)

    descriptor = await pipeline.build(BASE_URL, "Acme")

    variants = descriptor.by_kind(AssetKind.SIZE_VARIANT)
    assert [asset.name for asset in variants] == [
        "Size_Variants/favicon/Acme_16x16.png",
        "Size_Variants/favicon/Acme_32x32.png",
        "Size_Variants/web/Acme_192x192.png",
    ]
    for asset in variants:
        assert asset.fallback is False
        assert asset.source_image_ref == BASE_URL
        assert pixel_size(base_storage.objects[asset.storage_url]) == (asset.size, asset.size)

    icons = {asset.name: asset for asset in descriptor.by_kind(AssetKind.ICON)}
    favicon = icons["Specialized_Icons/favicon.png"]
    assert pixel_size(base_storage.objects[favicon.storage_url]) == (64, 64)
    assert descriptor.icon_source == "ai"
    assert descriptor.errors == []


@pytest.mark.asyncio
async def test_icon_extraction_timeout_falls_back_to_base_image(base_storage, settings):
    """A slow icon call is abandoned; icons are resized copies of the base image."""
    slow = FakeSynthesizer(delay=5)
    pipeline = builder(base_storage, slow, settings, icon_timeout_seconds=0.05)

    descriptor = await pipeline.build(BASE_URL, "Acme")

    assert descriptor.icon_source == "fallback"
    assert "icon: timeout" in descriptor.errors
    assert len(slow.calls) == 1
    icons = descriptor.by_kind(AssetKind.ICON)
    assert len(icons) == len(package.ICON_TARGETS)
    assert all(icon.fallback for icon in icons)
    app_icon = next(i for i in icons if i.name == "Specialized_Icons/app_icon.png")
    assert pixel_size(base_storage.objects[app_icon.storage_url]) == (512, 512)
    assert descriptor.archive_url is not None


@pytest.mark.asyncio
async def test_failed_asset_upload_does_not_fail_package(base_storage, settings):
    base_storage.fail_keys.append("Acme_192x192")
    pipeline = builder(base_storage, FakeSynthesizer(), settings)

    descriptor = await pipeline.build(BASE_URL, "Acme")

    web = next(a for a in descriptor.assets if a.name.endswith("Acme_192x192.png"))
    assert web.storage_url is None
    assert any("Acme_192x192" in error for error in descriptor.errors)
    assert descriptor.archive_url is not None


@pytest.mark.asyncio
async def test_archive_contains_manifest_readme_and_every_asset(base_storage, settings):
    pipeline = builder(base_storage, FakeSynthesizer(), settings)

    descriptor = await pipeline.build(BASE_URL, "Acme Co")

    digest = base_image_digest(BASE_URL)
    assert descriptor.archive_url == (
        f"memory://packages/{digest}/Acme_Co_Complete_Logo_Package.zip"
    )
    archive = zipfile.ZipFile(io.BytesIO(base_storage.objects[descriptor.archive_url]))
    names = set(archive.namelist())

    assert {"manifest.json", "README.txt"} <= names
    assert "Main_Logo/logo_transparent.png" in names
    assert {
        "Color_Variants/logo_transparent.png",
        "Color_Variants/logo_dark_on_white.png",
        "Color_Variants/logo_white_on_black.png",
    } <= names
    assert "Size_Variants/web/Acme_Co_192x192.png" in names
    assert "Specialized_Icons/print_icon.png" in names

    manifest = json.loads(archive.read("manifest.json"))
    assert manifest["display_name"] == "Acme Co"
    assert manifest["source_image_url"] == BASE_URL
    assert manifest["icon_source"] == "ai"
    assert manifest["vector_formats"] == {"svg": None, "pdf": None, "eps": None}
    manifest_paths = {entry["path"] for entry in manifest["files"]}
    assert manifest_paths == names - {"manifest.json", "README.txt"}

    assert "Acme Co" in archive.read("README.txt").decode("utf-8")
    assert descriptor.by_kind(AssetKind.ARCHIVE)[0].storage_url == descriptor.archive_url


@pytest.mark.asyncio
async def test_package_output_depends_only_on_inputs(base_storage, settings):
    """Two builds of the same base image produce the same file set and keys."""
    pipeline = builder(base_storage, FakeSynthesizer(), settings)

    first = await pipeline.build(BASE_URL, "Acme")
    second = await pipeline.build(BASE_URL, "Acme")

    assert [(a.name, a.storage_url) for a in first.assets] == [
        (a.name, a.storage_url) for a in second.assets
    ]
