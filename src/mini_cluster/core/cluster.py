"""
Local multi-process cluster for integration tests.

A MiniCluster writes everything under one working directory and runs, in
order: a coordination service, a one-shot initializer, N workers and a
coordinator. Each child runs through ``mini_cluster.bootstrap`` under the
current interpreter, with stdout and stderr captured to ``logs/``.

Lifecycle:

- ``MiniCluster(config)`` validates the directory, creates the layout and
  writes the configuration. No process is started.
- ``start()`` may be called once. A failure part way leaves the already
  launched processes running; call ``stop()`` to clean them up.
- ``stop()`` terminates every child. If it is never called, it runs at
  interpreter exit.

Known weak points: the coordination service gets a fixed settling delay
rather than a readiness check unless ``readiness_probe`` is enabled, and the
wait for the initializer has no timeout.
"""

import subprocess  # nosec B404
import threading
import time
from pathlib import Path

from ..config.loader import ClusterConfig
from ..config.site import ConfigMaterializer, MaterializedConfig
from ..utils.log_capture import LogWriter, get_flush_scheduler
from ..utils.logging import (
    IllegalStateError,
    InitializationError,
    LogContext,
    audit_log,
    get_logger,
)
from ..utils.ports import get_random_free_port, wait_for_port
from ..utils.process import ManagedProcess, ProcessLauncher
from .cleanup import CleanupRegistry, get_cleanup_registry
from .enums import ClusterState, ProcessRole
from .layout import ClusterLayout, default_library_source


class MiniCluster:
    """Boots and tears down a local coordination service, coordinator and workers."""

    def __init__(
        self,
        config: ClusterConfig,
        cleanup_registry: CleanupRegistry | None = None,
    ) -> None:
        """Prepare the working directory and configuration files.

        Args:
            config: Cluster configuration
            cleanup_registry: Registry for the exit hook, global by default

        Raises:
            ConfigError: If the directory is a file or is not empty
        """
        self._logger = get_logger(__name__, LogContext.ORCHESTRATOR)
        self._logger.set_cluster(config.instance_name)

        self._layout = ClusterLayout(Path(config.directory))
        self._layout.validate()

        if config.coordination_port == 0:
            config = config.model_copy(
                update={"coordination_port": get_random_free_port()}
            )
        self._config = config

        self._layout.create()
        self._layout.seed_library(config.library_source or default_library_source())
        self._materialized = ConfigMaterializer(config, self._layout).materialize()

        self._launcher = ProcessLauncher(
            home_dir=self._layout.root,
            conf_dir=self._layout.conf_dir,
            log_dir=self._layout.log_dir,
            max_memory=config.max_memory,
            extra_python_path=config.extra_python_path,
            flush_scheduler=get_flush_scheduler(config.flush_interval),
        )
        self._cleanup_registry = cleanup_registry or get_cleanup_registry()

        self._state = ClusterState.CREATED
        self._start_attempted = False

        self._coordination_service: ManagedProcess | None = None
        self._coordinator: ManagedProcess | None = None
        self._workers: list[ManagedProcess] = []
        self._processes: list[ManagedProcess] = []

        self._log_writers: list[LogWriter] = []
        self._log_writers_lock = threading.Lock()

        self._logger.info(
            "Cluster created",
            directory=str(self._layout.root),
            coordination_port=config.coordination_port,
            num_workers=config.num_workers,
        )

    @classmethod
    def from_directory(
        cls, directory: Path | str, instance_name: str, root_password: str
    ) -> "MiniCluster":
        """Create a cluster with default settings in ``directory``."""
        return cls(
            ClusterConfig(
                directory=Path(directory),
                instance_name=instance_name,
                root_password=root_password,
            )
        )

    @property
    def instance_name(self) -> str:
        return self._config.instance_name

    @property
    def log_dir(self) -> Path:
        return self._layout.log_dir

    @property
    def conf_dir(self) -> Path:
        return self._layout.conf_dir

    @property
    def config(self) -> ClusterConfig:
        """Effective configuration, including any allocated coordination port."""
        return self._config

    @property
    def layout(self) -> ClusterLayout:
        return self._layout

    @property
    def materialized_config(self) -> MaterializedConfig:
        return self._materialized

    @property
    def state(self) -> ClusterState:
        return self._state

    @property
    def processes(self) -> tuple[ManagedProcess, ...]:
        """Every launched process, initializer included, in launch order."""
        return tuple(self._processes)

    @property
    def coordination_service(self) -> ManagedProcess | None:
        return self._coordination_service

    @property
    def coordinator(self) -> ManagedProcess | None:
        return self._coordinator

    @property
    def workers(self) -> tuple[ManagedProcess, ...]:
        return tuple(self._workers)

    @audit_log("cluster_start")
    def start(self) -> None:
        """Start the coordination service, initializer, workers and coordinator.

        Raises:
            IllegalStateError: If start() was already called
            LaunchError: If a process cannot be spawned
            InitializationError: If the initializer exits non-zero
        """
        if self._state is not ClusterState.CREATED or self._start_attempted:
            raise IllegalStateError(
                "Already started", context={"state": self._state.value}
            )
        self._start_attempted = True

        self._cleanup_registry.register(id(self), self._stop_at_exit)

        config = self._config
        self._coordination_service = self._launch(
            ProcessRole.COORDINATION_SERVICE,
            config.coordination_service_target,
            [str(self._materialized.coordination_file.absolute())],
        )

        # Give the coordination service a moment before initializing against it
        time.sleep(config.settle_delay)
        if config.readiness_probe:
            wait_for_port(
                "localhost", config.coordination_port, timeout=config.readiness_timeout
            )

        initializer = self._launch(
            ProcessRole.INITIALIZER,
            config.initializer_target,
            [
                "--instance-name",
                config.instance_name,
                "--password",
                config.root_password,
            ],
        )
        exit_code = initializer.wait()
        if exit_code != 0:
            self._logger.error(
                "Initializer failed", exit_code=exit_code, pid=initializer.pid
            )
            raise InitializationError(
                exit_code, context={"instance_name": config.instance_name}
            )

        for _ in range(config.num_workers):
            self._workers.append(self._launch(ProcessRole.WORKER, config.worker_target))

        self._coordinator = self._launch(
            ProcessRole.COORDINATOR, config.coordinator_target
        )

        self._state = ClusterState.STARTED
        self._logger.info(
            "Cluster started",
            coordination_port=config.coordination_port,
            workers=len(self._workers),
        )

    @audit_log("cluster_stop")
    def stop(self) -> None:
        """Terminate all cluster processes and flush their logs.

        Safe to call before start() or after a failed start(). Output still
        in flight may reach the log files after this returns.
        """
        if self._state is ClusterState.STOPPED:
            return

        self._cleanup_registry.unregister(id(self))

        ordered = [self._coordination_service, self._coordinator, *self._workers]
        ordered += [p for p in self._processes if p not in ordered]
        to_stop = [process for process in ordered if process is not None]

        for process in to_stop:
            process.terminate()

        deadline = time.monotonic() + self._config.shutdown_timeout
        for process in to_stop:
            self._reap(process, max(0.0, deadline - time.monotonic()))

        with self._log_writers_lock:
            writers = list(self._log_writers)
        for writer in writers:
            try:
                writer.flush()
            except (OSError, ValueError) as e:
                self._logger.error(
                    "Failed to flush log writer",
                    exception=e,
                    log_file=str(writer.log_file),
                )

        self._state = ClusterState.STOPPED
        self._logger.info("Cluster stopped", processes=len(to_stop))

    def __enter__(self) -> "MiniCluster":
        try:
            self.start()
        except BaseException:
            self.stop()
            raise
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _launch(
        self, role: ProcessRole, target: str, args: list[str] | None = None
    ) -> ManagedProcess:
        process = self._launcher.launch(role, target, args or [])
        self._processes.append(process)
        with self._log_writers_lock:
            self._log_writers.extend(process.log_writers)
        return process

    def _reap(self, process: ManagedProcess, timeout: float) -> None:
        try:
            process.wait(timeout)
        except subprocess.TimeoutExpired:
            self._logger.warning(
                "Process did not exit after terminate, killing",
                role=process.role.value,
                pid=process.pid,
            )
            process.kill()
            process.wait()

    def _stop_at_exit(self) -> None:
        self._logger.warning("Cluster was not stopped explicitly, stopping at exit")
        self.stop()
