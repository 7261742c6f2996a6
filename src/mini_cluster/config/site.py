"""Materialization of the configuration files read by cluster processes.

Two artifacts are produced under ``conf/``:

- ``cluster-site.xml``: ordered ``<property>`` entries for the coordinator and
  worker programs. A built-in default is written only when the key is absent
  from the user's site overrides; the overrides follow verbatim.
- ``coordination.cfg``: a java-properties file for the coordination service.

Ports allocated here are only probably free: nothing holds them between
allocation and the moment a child process binds them.
"""

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from xml.sax.saxutils import escape

from ..core.layout import ClusterLayout
from ..utils.logging import LogContext, get_logger, log_performance
from ..utils.ports import get_random_free_port
from ..utils.process import HOME_ENV
from .loader import ClusterConfig
from .properties import (
    CLIENT_PORT,
    DATA_DIR,
    INIT_LIMIT,
    MAX_CLIENT_CONNECTIONS,
    SYNC_LIMIT,
    TICK_TIME,
    SiteProperty,
)

logger = get_logger(__name__, LogContext.CONFIG)

SITE_FILE_NAME = "cluster-site.xml"
COORDINATION_FILE_NAME = "coordination.cfg"

INSTANCE_SECRET = "DONTTELL"

CLASSPATH_PATTERNS = (
    (HOME_ENV, ("lib/.*.jar", "lib/ext/.*.jar")),
    ("ZOOKEEPER_HOME", ("zookeeper[^.].*.jar",)),
    ("HADOOP_HOME", ("[^.].*.jar", "lib/[^.].*.jar")),
    (
        "HADOOP_PREFIX",
        (
            "share/hadoop/common/.*.jar",
            "share/hadoop/common/lib/.*.jar",
            "share/hadoop/hdfs/.*.jar",
            "share/hadoop/mapreduce/.*.jar",
        ),
    ),
)


def build_classpaths(environ: Mapping[str, str]) -> str:
    """Library path patterns of the external server distribution.

    Patterns under a location that is not set in ``environ`` are left out.
    """
    patterns = []
    for variable, suffixes in CLASSPATH_PATTERNS:
        root = environ.get(variable)
        if root:
            patterns.extend(f"{root}/{suffix}" for suffix in suffixes)
    return ",".join(patterns)


def build_site_entries(
    config: ClusterConfig,
    layout: ClusterLayout,
    environ: Mapping[str, str] | None = None,
    allocate_port: Callable[[], int] = get_random_free_port,
) -> list[tuple[str, str]]:
    """Ordered site entries: defaults not overridden, then every override."""
    environ = os.environ if environ is None else environ
    overrides = config.site_config
    entries: list[tuple[str, str]] = []

    def default(key: SiteProperty, value: Callable[[], str] | str) -> None:
        # Values are computed lazily so overridden ports are never allocated
        if key.value not in overrides:
            entries.append((key.value, value() if callable(value) else value))

    default(SiteProperty.STORAGE_URI, "file:///")
    default(SiteProperty.STORAGE_DIR, str(layout.data_dir.absolute()))
    default(SiteProperty.COORDINATION_HOSTS, f"localhost:{config.coordination_port}")
    default(SiteProperty.INSTANCE_SECRET, INSTANCE_SECRET)
    default(SiteProperty.COORDINATOR_CLIENT_PORT, lambda: str(allocate_port()))
    default(SiteProperty.WORKER_CLIENT_PORT, lambda: str(allocate_port()))
    default(SiteProperty.WORKER_PORT_SEARCH, "true")
    default(SiteProperty.WAL_DIR, str(layout.wal_dir.absolute()))
    default(SiteProperty.WORKER_DATA_CACHE_SIZE, "10M")
    default(SiteProperty.WORKER_INDEX_CACHE_SIZE, "10M")
    default(SiteProperty.WORKER_MAX_MEMORY, "50M")
    default(SiteProperty.WORKER_WAL_MAX_SIZE, "100M")
    default(SiteProperty.WORKER_NATIVE_MAPS, "false")
    default(SiteProperty.TRACE_TOKEN_PASSWORD, config.root_password)
    default(SiteProperty.TRACE_PORT, lambda: str(allocate_port()))
    # Small memory footprint, so check for major compactions more often
    default(SiteProperty.WORKER_COMPACTION_DELAY, "3")
    default(SiteProperty.CLASSPATHS, lambda: build_classpaths(environ))
    default(SiteProperty.DYNAMIC_CLASSPATHS, str(layout.lib_dir.absolute()))

    entries.extend((key, str(value)) for key, value in overrides.items())
    return entries


def render_site_xml(entries: list[tuple[str, str]]) -> str:
    lines = ["<configuration>"]
    for key, value in entries:
        lines.append(
            f"<property><name>{escape(key)}</name><value>{escape(value)}</value></property>"
        )
    lines.append("</configuration>")
    return "\n".join(lines) + "\n"


def build_coordination_properties(
    config: ClusterConfig, layout: ClusterLayout
) -> dict[str, str]:
    properties = {
        TICK_TIME: "1000",
        INIT_LIMIT: "10",
        SYNC_LIMIT: "5",
        CLIENT_PORT: str(config.coordination_port),
        MAX_CLIENT_CONNECTIONS: "100",
        DATA_DIR: str(layout.coordination_data_dir.absolute()),
    }
    if config.coordination_config:
        properties.update(
            (key, str(value)) for key, value in config.coordination_config.items()
        )
    return properties


def escape_property(text: str, is_key: bool = False) -> str:
    """Escape text the way java.util.Properties.store does."""
    out = []
    for index, char in enumerate(text):
        if char == "\\":
            out.append("\\\\")
        elif char == " ":
            out.append("\\ " if is_key or index == 0 else " ")
        elif char == "\t":
            out.append("\\t")
        elif char == "\n":
            out.append("\\n")
        elif char == "\r":
            out.append("\\r")
        elif char == "\f":
            out.append("\\f")
        elif char in "=:#!":
            out.append("\\" + char)
        else:
            out.append(char)
    return "".join(out)


def render_properties(
    properties: Mapping[str, str], timestamp: datetime | None = None
) -> str:
    timestamp = timestamp or datetime.now()
    if timestamp.tzinfo is None:
        # Local time
        timestamp = timestamp.astimezone()
    lines = [f"#{timestamp.strftime('%a %b %d %H:%M:%S %Z %Y')}"]
    for key, value in properties.items():
        lines.append(f"{escape_property(key, is_key=True)}={escape_property(value)}")
    return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class MaterializedConfig:
    """Locations and contents of the generated configuration files."""

    site_file: Path
    coordination_file: Path
    site_entries: tuple[tuple[str, str], ...]
    coordination_properties: dict[str, str]

    def site_value(self, key: str) -> str | None:
        for entry_key, value in self.site_entries:
            if entry_key == key:
                return value
        return None


class ConfigMaterializer:
    """Writes the site and coordination service configuration of a cluster."""

    def __init__(
        self,
        config: ClusterConfig,
        layout: ClusterLayout,
        environ: Mapping[str, str] | None = None,
        allocate_port: Callable[[], int] = get_random_free_port,
    ) -> None:
        self.config = config
        self.layout = layout
        self.environ = os.environ if environ is None else environ
        self.allocate_port = allocate_port

    @log_performance(LogContext.CONFIG)
    def materialize(self) -> MaterializedConfig:
        """Generate both files under the layout's ``conf/`` directory."""
        site_entries = build_site_entries(
            self.config, self.layout, self.environ, self.allocate_port
        )
        site_file = self.layout.conf_dir / SITE_FILE_NAME
        site_file.write_text(render_site_xml(site_entries), encoding="utf-8")

        properties = build_coordination_properties(self.config, self.layout)
        coordination_file = self.layout.conf_dir / COORDINATION_FILE_NAME
        coordination_file.write_text(render_properties(properties), encoding="utf-8")

        logger.info(
            "Materialized cluster configuration",
            site_file=str(site_file),
            coordination_file=str(coordination_file),
            site_entries=len(site_entries),
        )

        return MaterializedConfig(
            site_file=site_file,
            coordination_file=coordination_file,
            site_entries=tuple(site_entries),
            coordination_properties=properties,
        )
