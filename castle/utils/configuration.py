"""Orchestration run configuration."""

import os
import pathlib as pl

LAUNCH_PATH = pl.Path.cwd()

CLUSTER_FILE_NAME = "cluster.conf"
CLUSTER_LOCK_SUFFIX = ".lock"
NODE_LOG_SUFFIX = ".clog"

# Working directory with the cluster descriptor and per-node logs
WORKING_DIR = pl.Path(os.environ.get("CASTLE_WORKING_DIR") or LAUNCH_PATH).expanduser().resolve()

# Number of actions that can run concurrently
WORKERS = int(os.environ.get("CASTLE_WORKERS") or 4)
if WORKERS < 1:
    msg = f"Invalid CASTLE_WORKERS '{WORKERS}': must be >= 1"
    raise RuntimeError(msg)

# Used also for the per-node logs, see `Environment.create_castle_log`
DEBUG = bool(os.environ.get("CASTLE_DEBUG"))

DOCKER_BIN = os.environ.get("CASTLE_DOCKER_BIN") or "docker"

# Seconds to wait for a single uplink shutdown when unwinding shutdown hooks
SHUTDOWN_TIMEOUT = float(os.environ.get("CASTLE_SHUTDOWN_TIMEOUT") or 300)
if SHUTDOWN_TIMEOUT <= 0:
    msg = f"Invalid CASTLE_SHUTDOWN_TIMEOUT '{SHUTDOWN_TIMEOUT}': must be > 0"
    raise RuntimeError(msg)

# Seconds to wait for `docker inspect`; liveness probes must not hang on a stuck daemon
DOCKER_INSPECT_TIMEOUT = float(os.environ.get("CASTLE_DOCKER_INSPECT_TIMEOUT") or 30)
if DOCKER_INSPECT_TIMEOUT <= 0:
    msg = f"Invalid CASTLE_DOCKER_INSPECT_TIMEOUT '{DOCKER_INSPECT_TIMEOUT}': must be > 0"
    raise RuntimeError(msg)

FRAMEWORK_LOG_NAME = "castle.log"
