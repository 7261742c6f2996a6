"""Site configuration keys understood by the coordinator and worker programs."""

from enum import Enum


class SiteProperty(str, Enum):
    STORAGE_URI = "instance.dfs.uri"
    STORAGE_DIR = "instance.dfs.dir"
    COORDINATION_HOSTS = "instance.zookeeper.host"
    INSTANCE_SECRET = "instance.secret"
    COORDINATOR_CLIENT_PORT = "master.port.client"
    WORKER_CLIENT_PORT = "tserver.port.client"
    WORKER_PORT_SEARCH = "tserver.port.search"
    WAL_DIR = "logger.dir.walog"
    WORKER_DATA_CACHE_SIZE = "tserver.cache.data.size"
    WORKER_INDEX_CACHE_SIZE = "tserver.cache.index.size"
    WORKER_MAX_MEMORY = "tserver.memory.maps.max"
    WORKER_WAL_MAX_SIZE = "tserver.walog.max.size"
    WORKER_NATIVE_MAPS = "tserver.memory.maps.native.enabled"
    TRACE_TOKEN_PASSWORD = "trace.token.property.password"
    TRACE_PORT = "trace.port.client"
    WORKER_COMPACTION_DELAY = "tserver.compaction.major.delay"
    CLASSPATHS = "general.classpaths"
    DYNAMIC_CLASSPATHS = "general.dynamic.classpaths"


# Keys of the coordination service properties file
TICK_TIME = "tickTime"
INIT_LIMIT = "initLimit"
SYNC_LIMIT = "syncLimit"
CLIENT_PORT = "clientPort"
MAX_CLIENT_CONNECTIONS = "maxClientCnxns"
DATA_DIR = "dataDir"
