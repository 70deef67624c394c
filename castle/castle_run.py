#!/usr/bin/env python3
"""Bring up or tear down the Docker nodes of a cluster described in the working directory.

For settings it uses the `CASTLE_*` env variables, see `castle.utils.configuration`.
"""

import argparse
import logging
import sys

from castle.orchestration import cluster as cluster_mod
from castle.orchestration import docker_actions
from castle.orchestration import errors
from castle.orchestration import scheduler
from castle.utils import castle_log
from castle.utils import configuration

LOGGER = logging.getLogger(__name__)

EXIT_GRAPH_ERROR = 2

CATALOGS = {
    "up": docker_actions.init_catalog,
    "down": docker_actions.destroy_catalog,
}


def get_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(description=__doc__.split("\n", maxsplit=1)[0])
    parser.add_argument(
        "-w",
        "--working-dir",
        default=str(configuration.WORKING_DIR),
        help="Directory with the cluster descriptor and node logs (default: %(default)s)",
    )
    parser.add_argument(
        "-j",
        "--workers",
        type=int,
        default=configuration.WORKERS,
        help="Number of actions that can run concurrently (default: %(default)s)",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Print debug messages of the cluster log.",
    )
    parser.add_argument(
        "command",
        choices=sorted(CATALOGS),
        help="What to do with the cluster.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(format="%(levelname)s:%(message)s", level=logging.INFO)
    args = get_args(argv)

    env = cluster_mod.Environment(args.working_dir)
    if not env.cluster_output_path.exists():
        LOGGER.error(f"Cluster descriptor '{env.cluster_output_path}' doesn't exist.")
        return 1

    cluster_log = castle_log.CastleLog.from_stdout(
        "cluster", enable_debug=args.debug or configuration.DEBUG
    )
    try:
        cluster = cluster_mod.Cluster.from_descriptor(env, cluster_log=cluster_log)
    except Exception:
        LOGGER.exception(f"Cannot load cluster descriptor '{env.cluster_output_path}'")
        cluster_log.close()
        return 1

    with cluster:
        catalog = CATALOGS[args.command](cluster)
        try:
            with cluster.shutdown_hooks.scope() as outcome:
                report = scheduler.run_actions(cluster, catalog, max_workers=args.workers)
                outcome.return_code = report.return_code
        except errors.GraphError:
            LOGGER.exception("Invalid action graph")
            return EXIT_GRAPH_ERROR
        except Exception:
            LOGGER.exception("Failure")
            return 1

        cluster.cluster_log.info(f"*** Finished {args.command}:\n{report.summary()}")
        return int(report.return_code)


if __name__ == "__main__":
    sys.exit(main())
