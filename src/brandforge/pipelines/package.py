"""Derived-asset package: everything a brand needs from one delivered logo.

``DerivedAssetPipeline.build`` turns a base image into size variants, colour
variants and platform icons, uploads them, and bundles them into a ZIP archive
with a manifest. Every asset is independently fallible: a failed resize ships
the unmodified base image under the expected filename, and a failed icon
extraction falls back to resized copies of the base image.

``PackagePipeline`` runs that build as a queued job and settles it once per
base image.
"""

import asyncio
import hashlib
import io
import json
import re
import zipfile
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

import structlog

from brandforge.core.config import Settings
from brandforge.jobs.payloads import JobType, PackageJob
from brandforge.pipelines.base import Pipeline
from brandforge.pipelines.context import Deliverable, PipelineContext, PipelineState, Unit
from brandforge.pipelines.prompts import build_icon_prompt
from brandforge.services import imaging
from brandforge.services.exceptions import AssetFetchError, ServiceError
from brandforge.services.messaging import Button, OutgoingMessage
from brandforge.services.retry import DEFAULT_POLICY, RetryPolicy, with_retry
from brandforge.services.storage import ObjectStorage
from brandforge.services.synthesis.base import Synthesizer

logger = structlog.get_logger(__name__)

SIZE_MATRIX: dict[str, tuple[int, ...]] = {
    "favicon": (16, 32, 48, 64),
    "web": (192, 512),
    "social": (400, 800, 1080),
    "print": (1000, 2000, 3000),
}

# target → (archive filename, pixel size)
ICON_TARGETS: dict[str, tuple[str, int]] = {
    "favicon": ("favicon.png", 64),
    "app": ("app_icon.png", 512),
    "social": ("social_media_icon.png", 400),
    "print": ("print_icon.png", 1000),
}

WHITE_ON_BLACK = (255, 255, 255)
DARK_ON_WHITE = (20, 20, 20)

VECTOR_FORMATS = ("svg", "pdf", "eps")

README_TEMPLATE = """Complete Logo Package for {display_name}

Contents:
- Main Logo: High-quality transparent PNG
- Color Variants: Transparent, dark-on-white and white-on-black versions
- Size Variants: Pre-sized for favicon, web, social media, and print
- Specialized Icons: Icon-only versions optimized for different platforms

File Organization:
- Main_Logo/: Original high-quality transparent PNG
- Color_Variants/: Versions for light and dark backgrounds
- Size_Variants/: Pre-sized for different platforms
- Specialized_Icons/: Icon-only versions for specific use cases
- manifest.json: Machine-readable list of every file

Usage Tips:
- Use the main logo for most applications (works on any background)
- Use the white-on-black variant on dark backgrounds
- Use appropriate sizes for your platform
- All images are PNGs; vector formats (SVG, PDF, EPS) are not included
"""


class AssetKind(str, Enum):
    MAIN = "main"
    SIZE_VARIANT = "size_variant"
    COLOR_VARIANT = "color_variant"
    ICON = "icon"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class DerivedAsset:
    """One file of the package.

    Attributes:
        kind: Asset category
        name: Archive path (e.g. "Size_Variants/web/Acme_192x192.png")
        source_image_ref: URL of the base image it was derived from
        storage_url: Public URL, None if the upload failed
        size: Pixel size for square assets
        fallback: True if the unmodified base image (or a base resize) stands in
    """

    kind: AssetKind
    name: str
    source_image_ref: str
    storage_url: str | None = None
    size: int | None = None
    fallback: bool = False


@dataclass
class PackageDescriptor:
    display_name: str
    source_image_url: str
    assets: list[DerivedAsset] = field(default_factory=list)
    archive_url: str | None = None
    icon_source: str = "ai"
    errors: list[str] = field(default_factory=list)

    def by_kind(self, kind: AssetKind) -> list[DerivedAsset]:
        return [asset for asset in self.assets if asset.kind is kind]


def safe_name(display_name: str) -> str:
    name = re.sub(r"[^A-Za-z0-9_-]+", "_", display_name).strip("_")
    return name or "logo"


def base_image_digest(base_image_url: str) -> str:
    """Stable identifier of a base image, used for storage keys and settlement."""
    return hashlib.sha256(base_image_url.encode("utf-8")).hexdigest()[:32]


def build_archive(files: list[tuple[str, bytes]], manifest: dict, readme: str) -> bytes:
    """Write the package ZIP in memory."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("manifest.json", json.dumps(manifest, indent=2))
        archive.writestr("README.txt", readme)
        for path, data in files:
            archive.writestr(path, data)
    return buffer.getvalue()


class DerivedAssetPipeline:
    """Builds the asset package for a base image.

    Output depends only on the base image and the display name.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        synthesizer: Synthesizer,
        settings: Settings,
        policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.storage = storage
        self.synthesizer = synthesizer
        self.settings = settings
        self.policy = policy
        self.sleep = sleep

    async def build(self, base_image_url: str, display_name: str) -> PackageDescriptor:
        """Produce, upload and archive every derived asset.

        Args:
            base_image_url: URL of the delivered logo
            display_name: Brand name used in filenames and the README

        Returns:
            PackageDescriptor with every asset, the archive URL and per-asset errors

        Raises:
            AssetFetchError: The base image is unreachable, too small, too large or undecodable
            ServiceError: The archive itself could not be uploaded
        """
        log = logger.bind(source_image_url=base_image_url, display_name=display_name)
        log.info("package.build.started")

        base = await self.fetch(base_image_url)
        name = safe_name(display_name)
        digest = base_image_digest(base_image_url)
        descriptor = PackageDescriptor(display_name=display_name, source_image_url=base_image_url)

        # (asset, bytes) pairs, in archive order
        files: list[tuple[DerivedAsset, bytes]] = []

        def add(
            kind: AssetKind, path: str, data: bytes, size: int | None = None, fallback=False
        ) -> None:
            asset = DerivedAsset(
                kind=kind, name=path, source_image_ref=base_image_url, size=size, fallback=fallback
            )
            files.append((asset, data))

        transparent, stripped = await self._derive(
            descriptor, "color:transparent", imaging.remove_background, base
        )
        add(AssetKind.MAIN, "Main_Logo/logo_transparent.png", transparent, fallback=not stripped)
        add(
            AssetKind.COLOR_VARIANT,
            "Color_Variants/logo_transparent.png",
            transparent,
            fallback=not stripped,
        )
        for path, background, foreground in (
            ("Color_Variants/logo_dark_on_white.png", imaging.WHITE, DARK_ON_WHITE),
            ("Color_Variants/logo_white_on_black.png", imaging.BLACK, WHITE_ON_BLACK),
        ):
            data, ok = await self._derive(
                descriptor,
                f"color:{path}",
                imaging.on_background,
                transparent,
                background,
                foreground,
            )
            add(AssetKind.COLOR_VARIANT, path, data, fallback=not ok)

        for tier, sizes in SIZE_MATRIX.items():
            for size in sizes:
                data, ok = await self._resize(descriptor, f"size:{tier}:{size}", base, size)
                add(
                    AssetKind.SIZE_VARIANT,
                    f"Size_Variants/{tier}/{name}_{size}x{size}.png",
                    data,
                    size=size,
                    fallback=not ok,
                )

        icon_base = await self.extract_icon(base, display_name, descriptor)
        for target, (filename, size) in ICON_TARGETS.items():
            data, ok = await self._resize(descriptor, f"icon:{target}", icon_base, size)
            add(
                AssetKind.ICON,
                f"Specialized_Icons/{filename}",
                data,
                size=size,
                fallback=descriptor.icon_source == "fallback" or not ok,
            )

        for asset, data in files:
            key = f"packages/{digest}/{asset.name}"
            url = await self._upload(descriptor, data, key, "image/png")
            descriptor.assets.append(replace(asset, storage_url=url))

        manifest = self.manifest(descriptor)
        archive = await asyncio.to_thread(
            build_archive,
            [(asset.name, data) for asset, data in files],
            manifest,
            README_TEMPLATE.format(display_name=display_name),
        )
        archive_key = f"packages/{digest}/{name}_Complete_Logo_Package.zip"
        result = await with_retry(
            lambda: self.storage.upload(archive, archive_key, "application/zip"),
            policy=self.policy,
            sleep=self.sleep,
            operation_name="package.archive.upload",
        )
        if not result.success:
            log.error("package.archive.upload_failed", error_type=type(result.error).__name__)
            raise result.error or ServiceError("Archive upload failed")

        descriptor.archive_url = result.data
        descriptor.assets.append(
            DerivedAsset(
                kind=AssetKind.ARCHIVE,
                name=archive_key.rsplit("/", 1)[-1],
                source_image_ref=base_image_url,
                storage_url=result.data,
            )
        )

        log.info(
            "package.build.completed",
            assets=len(descriptor.assets),
            fallbacks=sum(1 for asset in descriptor.assets if asset.fallback),
            icon_source=descriptor.icon_source,
            errors=len(descriptor.errors),
        )
        return descriptor

    async def fetch(self, url: str) -> bytes:
        """Download the base image and sanity-check it.

        Raises:
            AssetFetchError: On timeout, download failure, size bounds or undecodable bytes
        """
        try:
            data = await asyncio.wait_for(
                self.storage.download(url), timeout=self.settings.asset_fetch_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise AssetFetchError(f"Timed out fetching base image {url}") from e
        except ServiceError as e:
            raise AssetFetchError(f"Could not fetch base image {url}: {e}") from e

        if len(data) < self.settings.asset_min_bytes:
            raise AssetFetchError(f"Base image too small ({len(data)} bytes)")
        if len(data) > self.settings.asset_max_bytes:
            raise AssetFetchError(f"Base image too large ({len(data)} bytes)")

        try:
            await asyncio.to_thread(imaging.image_size, data)
        except ValueError as e:
            raise AssetFetchError(f"Base image is not a decodable image: {e}") from e
        return data

    async def extract_icon(
        self, base: bytes, display_name: str, descriptor: PackageDescriptor
    ) -> bytes:
        """One AI icon-extraction call; the base image stands in on any failure."""
        try:
            images = await asyncio.wait_for(
                self.synthesizer.synthesize(build_icon_prompt(display_name), {"image": base}),
                timeout=self.settings.icon_timeout_seconds,
            )
            if not images:
                raise ValueError("Icon extraction returned no images")
            await asyncio.to_thread(imaging.image_size, images[0])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = "timeout" if isinstance(e, asyncio.TimeoutError) else type(e).__name__
            logger.warning(
                "package.icon.fallback",
                source_image_url=descriptor.source_image_url,
                reason=reason,
                error_message=str(e),
            )
            descriptor.icon_source = "fallback"
            descriptor.errors.append(f"icon: {reason}")
            return base

        descriptor.icon_source = "ai"
        return images[0]

    async def _resize(
        self, descriptor: PackageDescriptor, label: str, source: bytes, size: int
    ) -> tuple[bytes, bool]:
        try:
            data = await asyncio.wait_for(
                asyncio.to_thread(imaging.resize, source, size),
                timeout=self.settings.asset_resize_timeout_seconds,
            )
        except (asyncio.TimeoutError, ValueError, OSError) as e:
            logger.warning("package.resize.fallback", label=label, error_type=type(e).__name__)
            descriptor.errors.append(f"{label}: {type(e).__name__}")
            return source, False
        return data, True

    async def _derive(self, descriptor: PackageDescriptor, label: str, func, source: bytes, *args):
        try:
            return await asyncio.to_thread(func, source, *args), True
        except (ValueError, OSError) as e:
            logger.warning("package.variant.fallback", label=label, error_type=type(e).__name__)
            descriptor.errors.append(f"{label}: {type(e).__name__}")
            return source, False

    async def _upload(
        self, descriptor: PackageDescriptor, data: bytes, key: str, content_type: str
    ) -> str | None:
        result = await with_retry(
            lambda: self.storage.upload(data, key, content_type),
            policy=self.policy,
            sleep=self.sleep,
            operation_name="package.asset.upload",
        )
        if result.success:
            return result.data
        descriptor.errors.append(f"upload:{key}: {type(result.error).__name__}")
        return None

    @staticmethod
    def manifest(descriptor: PackageDescriptor) -> dict:
        return {
            "display_name": descriptor.display_name,
            "source_image_url": descriptor.source_image_url,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "icon_source": descriptor.icon_source,
            "files": [
                {
                    "path": asset.name,
                    "kind": asset.kind.value,
                    "size": asset.size,
                    "fallback": asset.fallback,
                    "url": asset.storage_url,
                }
                for asset in descriptor.assets
            ],
            # Raster only; vector formats are listed so consumers can tell they are absent
            "vector_formats": {fmt: None for fmt in VECTOR_FORMATS},
            "errors": list(descriptor.errors),
        }


class PackagePipeline(Pipeline):
    """Runs the derived-asset build as a job. Settles once per base image."""

    job_type = JobType.PACKAGE
    unit_noun = "logo package"

    def builder(self) -> DerivedAssetPipeline:
        return DerivedAssetPipeline(
            storage=self.deps.storage,
            synthesizer=self.deps.synthesizer,
            settings=self.deps.settings,
            policy=self.deps.io_policy,
            sleep=self.deps.sleep,
        )

    async def generate(self, ctx: PipelineContext) -> PipelineContext:
        job: PackageJob = ctx.job  # type: ignore[assignment]
        unit = Unit(index=0, prompt=build_icon_prompt(job.display_name), cost=job.cost)
        ctx = ctx.advance(PipelineState.SYNTHESIZING, units=(unit,))

        descriptor = await self.builder().build(job.base_image_url, job.display_name)

        ctx = ctx.advance(PipelineState.PROCESSING).advance(
            PipelineState.STORING, extras={**ctx.extras, "package": descriptor}
        )
        unit = replace(
            unit,
            deliverables=(
                Deliverable(
                    name="archive",
                    url=descriptor.archive_url or "",
                    content_type="application/zip",
                ),
            ),
        )
        unit = await self.deliver_unit(ctx, unit, 0)
        return ctx.with_units([unit])

    def settlement_key(self, job: PackageJob) -> str:  # type: ignore[override]
        return f"package:{base_image_digest(job.base_image_url)}"

    def record_metadata(self, job: PackageJob, unit: Unit) -> dict:  # type: ignore[override]
        return {"base_image_url": job.base_image_url, "display_name": job.display_name}

    def result_message(self, ctx: PipelineContext, unit: Unit, cost: int) -> OutgoingMessage:
        descriptor: PackageDescriptor = ctx.extras["package"]
        lines = [f"Your complete logo package for {descriptor.display_name} is ready!"]
        lines.append(
            f"{len(descriptor.by_kind(AssetKind.SIZE_VARIANT))} sizes, "
            f"{len(descriptor.by_kind(AssetKind.COLOR_VARIANT))} colour variants and "
            f"{len(descriptor.by_kind(AssetKind.ICON))} platform icons."
        )
        if descriptor.icon_source == "fallback":
            lines.append("The icons were made from your full logo.")
        return OutgoingMessage(
            text="\n".join(lines),
            document_url=unit.deliverables[0].url,
            buttons=(Button(label="🆕 New logo", action="new_logo"),),
        )
