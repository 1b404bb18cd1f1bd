from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Sequence

from .config import DEFAULT_CACHE_TAR_DIR, InvocationConfig
from .errors import SpawnFailure
from .options import build_options
from .runner import SessionRunner

LOGGER = logging.getLogger("harness.artifacts")

CACHED_IMAGES: Sequence[str] = (
    "quay.io/libpod/alpine:latest",
    "quay.io/libpod/busybox:latest",
    "quay.io/libpod/alpine_labels:latest",
    "quay.io/libpod/alpine_healthcheck:latest",
    "docker.io/library/redis:alpine",
    "registry.fedoraproject.org/fedora-minimal:latest",
)


def cache_file_for(image: str, *, cache_dir: Path = DEFAULT_CACHE_TAR_DIR) -> Path:
    name = image.rsplit("/", 1)[-1].replace(":", "-")
    return cache_dir / f"{name}.tar"


@dataclass
class ArtifactRestore:
    image: str
    cache_file: Path
    exit_code: int | None
    skipped_reason: str | None = None

    @property
    def restored(self) -> bool:
        return self.skipped_reason is None and self.exit_code == 0


@dataclass
class SeedReport:
    restored: List[str] = field(default_factory=list)
    skipped: List[ArtifactRestore] = field(default_factory=list)

    def summary(self) -> str:
        return f"restored {len(self.restored)} image(s), skipped {len(self.skipped)}"


class ArtifactCacheLoader:
    """Load cached image tarballs into a store with one-shot ``load`` calls.

    Every restore is best effort: a missing tarball or a failed load is
    recorded and logged, never raised. Tests that need the image fail later
    with their own error.
    """

    def __init__(
        self,
        config: InvocationConfig,
        *,
        images: Sequence[str] = CACHED_IMAGES,
        cache_dir: Path = DEFAULT_CACHE_TAR_DIR,
        runner_factory=SessionRunner,
    ) -> None:
        self.config = config
        self.images = tuple(images)
        self.cache_dir = cache_dir
        self._runner_factory = runner_factory

    def cache_file_for(self, image: str) -> Path:
        return cache_file_for(image, cache_dir=self.cache_dir)

    def _load(self, image: str, config: InvocationConfig) -> ArtifactRestore:
        LOGGER.info("Restoring %s...", image)
        destination = self.cache_file_for(image)
        argv = build_options(config, ["load", "-q", "-i", str(destination)])
        runner = self._runner_factory(config)
        try:
            session = runner.run(argv)
        except SpawnFailure as exc:
            LOGGER.warning("Skipping restore of %s: %s", image, exc)
            return ArtifactRestore(image, destination, exc.exit_code, skipped_reason=str(exc))
        exit_code, timed_out = session.wait_with_default_timeout()
        if timed_out:
            return ArtifactRestore(image, destination, None, skipped_reason="load timed out")
        if exit_code != 0:
            reason = "cache file missing" if not destination.exists() else f"load exited {exit_code}"
            LOGGER.info("Restore of %s did not succeed: %s", image, reason)
            return ArtifactRestore(image, destination, exit_code, skipped_reason=reason)
        return ArtifactRestore(image, destination, exit_code)

    def restore(self, image: str) -> ArtifactRestore:
        """Restore ``image`` into the shared image cache store."""
        return self._load(image, self.config.with_root(self.config.image_cache_dir))

    def restore_to_store(self, image: str) -> ArtifactRestore:
        """Restore ``image`` into this instance's own storage root."""
        return self._load(image, self.config)

    def seed_all(self, images: Iterable[str] | None = None) -> SeedReport:
        report = SeedReport()
        for image in images if images is not None else self.images:
            outcome = self.restore_to_store(image)
            if outcome.restored:
                report.restored.append(image)
            else:
                report.skipped.append(outcome)
        LOGGER.info("Seeding images: %s", report.summary())
        for skipped in report.skipped:
            LOGGER.info("  - %s (%s)", skipped.image, skipped.skipped_reason)
        return report
