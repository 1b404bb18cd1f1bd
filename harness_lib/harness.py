from __future__ import annotations

import logging
from pathlib import Path
from typing import IO, Any, Sequence

from .artifacts import CACHED_IMAGES, ArtifactCacheLoader, ArtifactRestore, SeedReport
from .config import InvocationConfig
from .options import build_options, remote_args
from .registries import default_registries_env, reset_registries_env, write_registries_config
from .runner import SessionHandle, SessionRunner
from .service import ServiceHandle, ServiceLifecycleManager, ShutdownReport

LOGGER = logging.getLogger("harness.remote")


class RemoteHarness:
    """One test instance: its own config, socket, service and client calls."""

    def __init__(
        self,
        config: InvocationConfig,
        *,
        manager: ServiceLifecycleManager | None = None,
        runner_factory=SessionRunner,
        images: Sequence[str] = CACHED_IMAGES,
    ) -> None:
        self.config = config
        self._runner_factory = runner_factory
        self.manager = manager or ServiceLifecycleManager(config, runner=runner_factory(config))
        self.images = tuple(images)

    @classmethod
    def create(cls, temp_dir: Path, *, start: bool = False, **config_overrides: Any) -> "RemoteHarness":
        config = InvocationConfig.from_env(Path(temp_dir), **config_overrides)
        harness = cls(config)
        LOGGER.info("Harness in %s using %s", temp_dir, config.socket_address)
        if start:
            harness.start_service()
        return harness

    def __enter__(self) -> "RemoteHarness":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop_service()

    @property
    def socket_address(self) -> str:
        return self.config.socket_address

    def _runner(self) -> SessionRunner:
        return self._runner_factory(self.config)

    # client calls -------------------------------------------------------------
    def podman(self, args: Sequence[str]) -> SessionHandle:
        return self._runner().run(remote_args(self.config, args))

    def podman_extra_files(self, args: Sequence[str], extra_files: Sequence[IO]) -> SessionHandle:
        return self._runner().run(remote_args(self.config, args), extra_files=extra_files)

    def podman_no_cache(self, args: Sequence[str]) -> SessionHandle:
        # remote calls never seed the image cache, so this is podman() by another name
        return self.podman(args)

    def podman_no_events(self, args: Sequence[str]) -> SessionHandle:
        """Local call with the full global options; used for caching and uncaching images."""
        return self._runner().run(build_options(self.config, args))

    # service ------------------------------------------------------------------
    def start_service(self) -> ServiceHandle:
        return self.manager.start()

    def stop_service(self) -> ShutdownReport:
        return self.manager.stop()

    # artifacts ----------------------------------------------------------------
    def _loader(self) -> ArtifactCacheLoader:
        return ArtifactCacheLoader(self.config, images=self.images, runner_factory=self._runner_factory)

    def restore_artifact_to_cache(self, image: str) -> ArtifactRestore:
        return self._loader().restore(image)

    def restore_artifact(self, image: str) -> ArtifactRestore:
        return self._loader().restore_to_store(image)

    def seed_images(self) -> SeedReport:
        return self._loader().seed_all()

    # registries ---------------------------------------------------------------
    def set_default_registries_config(self) -> None:
        self.config = self.config.with_env(default_registries_env())

    def set_registries_config(self, content: bytes) -> Path:
        if self.config.temp_dir is None:
            raise ValueError("set_registries_config requires a config with temp_dir")
        env = write_registries_config(self.config.temp_dir, content)
        self.config = self.config.with_env(env)
        return Path(next(iter(env.values())))

    def reset_registries_config(self) -> None:
        self.config = self.config.with_env(reset_registries_env())
