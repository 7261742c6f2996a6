"""Launching and handling of cluster child processes."""

import os
import subprocess  # nosec B404
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import psutil

from ..core.enums import ProcessRole
from .log_capture import FlushScheduler, LogWriter, get_flush_scheduler
from .logging import LaunchError, LogContext, get_logger

logger = get_logger(__name__, LogContext.LAUNCHER)

BOOTSTRAP_MODULE = "mini_cluster.bootstrap"

# Set on every child
HOME_ENV = "MINI_CLUSTER_HOME"
LOG_DIR_ENV = "MINI_CLUSTER_LOG_DIR"

# Passed through from our own environment when present
FORWARDED_ENV = ("HADOOP_PREFIX", "HADOOP_HOME", "ZOOKEEPER_HOME")


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to spawn one child process.

    ``environment`` is the overlay applied on top of the inherited
    environment of the orchestrating process.
    """

    executable: str
    arguments: tuple[str, ...]
    environment: dict[str, str]
    working_directory: Path

    @property
    def command(self) -> list[str]:
        return [self.executable, *self.arguments]


@dataclass
class ProcessStats:
    """Point-in-time resource usage of a managed process."""

    pid: int
    running: bool
    cpu_percent: float = 0.0
    memory_mb: float = 0.0


@dataclass
class ManagedProcess:
    """A spawned cluster process and the writers capturing its output."""

    role: ProcessRole
    popen: subprocess.Popen
    spec: LaunchSpec
    log_writers: tuple[LogWriter, ...] = field(default_factory=tuple)

    @property
    def pid(self) -> int:
        return self.popen.pid

    @property
    def returncode(self) -> int | None:
        return self.popen.poll()

    def is_running(self) -> bool:
        return self.popen.poll() is None

    def wait(self, timeout: float | None = None) -> int:
        """Block until the process exits and return its exit status."""
        return self.popen.wait(timeout)

    def terminate(self) -> None:
        """Send the termination signal if the process is still alive."""
        if self.popen.poll() is None:
            try:
                self.popen.terminate()
            except ProcessLookupError:
                pass

    def kill(self) -> None:
        if self.popen.poll() is None:
            try:
                self.popen.kill()
            except ProcessLookupError:
                pass

    def stats(self) -> ProcessStats:
        """Sample CPU and memory usage of the process.

        Returns:
            ProcessStats; ``running`` is False once the process is gone
        """
        if not self.is_running():
            return ProcessStats(pid=self.pid, running=False)

        try:
            proc = psutil.Process(self.pid)
            return ProcessStats(
                pid=self.pid,
                running=proc.is_running(),
                cpu_percent=proc.cpu_percent(interval=None),
                memory_mb=proc.memory_info().rss / 1024 / 1024,
            )
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return ProcessStats(pid=self.pid, running=False)


class ProcessLauncher:
    """Builds launch specs for cluster roles and spawns them."""

    def __init__(
        self,
        home_dir: Path,
        conf_dir: Path,
        log_dir: Path,
        max_memory: str | None = None,
        extra_python_path: Sequence[str] = (),
        flush_scheduler: FlushScheduler | None = None,
        parent_environment: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the launcher.

        Args:
            home_dir: Cluster root directory, also the child working directory
            conf_dir: Directory put first on the child's import path
            log_dir: Directory receiving the captured output files
            max_memory: Address-space limit handed to the bootstrap, e.g. "512M"
            extra_python_path: Entries placed after conf_dir on the import path
            flush_scheduler: Scheduler the log writers register with
            parent_environment: Environment to forward variables from
        """
        self.home_dir = home_dir
        self.conf_dir = conf_dir
        self.log_dir = log_dir
        self.max_memory = max_memory
        self.extra_python_path = list(extra_python_path)
        self.flush_scheduler = (
            get_flush_scheduler() if flush_scheduler is None else flush_scheduler
        )
        self.parent_environment = (
            os.environ if parent_environment is None else parent_environment
        )

    def python_path(self) -> str:
        """Import path for children: conf dir, extras, then our own sys.path."""
        entries = [str(self.conf_dir.absolute()), *self.extra_python_path]
        for entry in sys.path:
            if entry and entry not in entries:
                entries.append(entry)
        return os.pathsep.join(entries)

    def build_launch_spec(self, target: str, args: Sequence[str] = ()) -> LaunchSpec:
        """Build the launch spec running ``target`` under the bootstrap module.

        Raises:
            LaunchError: If the interpreter executable cannot be located
        """
        executable = sys.executable
        if not executable or not Path(executable).exists():
            raise LaunchError(
                "Cannot locate the Python interpreter executable",
                context={"executable": executable},
            )

        arguments = ["-m", BOOTSTRAP_MODULE]
        if self.max_memory:
            arguments += ["--max-memory", self.max_memory]
        arguments.append(target)
        arguments.extend(args)

        environment = {
            "PYTHONPATH": self.python_path(),
            HOME_ENV: str(self.home_dir.absolute()),
            LOG_DIR_ENV: str(self.log_dir.absolute()),
        }
        for name in FORWARDED_ENV:
            value = self.parent_environment.get(name)
            if value is not None:
                environment[name] = value

        return LaunchSpec(
            executable=executable,
            arguments=tuple(arguments),
            environment=environment,
            working_directory=self.home_dir,
        )

    def launch(
        self, role: ProcessRole, target: str, args: Sequence[str] = ()
    ) -> ManagedProcess:
        """Spawn a process for ``role`` and start capturing its output.

        Raises:
            LaunchError: If the process could not be spawned or its log
                files could not be opened
        """
        spec = self.build_launch_spec(target, args)

        logger.info(
            "Launching cluster process",
            role=role.value,
            target=target,
            arguments=list(args),
        )

        popen = self.spawn(spec)

        writers = []
        try:
            for stream, suffix in ((popen.stderr, "err"), (popen.stdout, "out")):
                writers.append(
                    LogWriter(stream, self.log_dir / f"{role.value}_{popen.pid}.{suffix}")
                )
        except OSError as e:
            # Nothing owns the child yet
            for writer in writers:
                writer.close()
            popen.kill()
            popen.wait()
            for stream in (popen.stdout, popen.stderr):
                stream.close()
            logger.error(
                "Failed to open process log files",
                role=role.value,
                pid=popen.pid,
                error=str(e),
            )
            raise LaunchError(
                f"Failed to open log files for {role.value}: {e}",
                context={"role": role.value, "log_dir": str(self.log_dir)},
            ) from e

        for writer in writers:
            self.flush_scheduler.register(writer)
            writer.start()

        logger.info("Cluster process launched", role=role.value, pid=popen.pid)

        return ManagedProcess(
            role=role, popen=popen, spec=spec, log_writers=tuple(writers)
        )

    def spawn(self, spec: LaunchSpec) -> subprocess.Popen:
        """Start the OS process described by ``spec``.

        Returns:
            Started subprocess.Popen object with piped stdout/stderr
        """
        env = dict(self.parent_environment)
        env.update(spec.environment)

        logger.debug(
            "Starting subprocess",
            command=spec.command,
            working_directory=str(spec.working_directory),
        )

        try:
            return subprocess.Popen(  # nosec B603
                spec.command,
                cwd=spec.working_directory,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            logger.error("Failed to spawn process", command=spec.command, error=str(e))
            raise LaunchError(
                f"Failed to spawn {spec.command[0]}: {e}",
                context={"command": spec.command},
            ) from e
