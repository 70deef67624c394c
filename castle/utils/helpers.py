import json
import logging
import os
import pathlib as pl
import subprocess
import tempfile

import castle.utils.types as ttypes

LOGGER = logging.getLogger(__name__)


def run_command(
    cmd: list[str],
    *,
    ignore_fail: bool = False,
    timeout: float | None = None,
) -> bytes:
    """Run command and return its stdout.

    Raise `RuntimeError` when the command exits with non-zero code, unless `ignore_fail` is set.
    """
    cmd_str = " ".join(cmd)
    LOGGER.debug("Running `%s`", cmd_str)

    try:
        proc = subprocess.run(cmd, capture_output=True, timeout=timeout, check=False)
    except subprocess.TimeoutExpired as exc:
        msg = f"Command `{cmd_str}` didn't finish in {timeout} seconds."
        raise RuntimeError(msg) from exc

    if not ignore_fail and proc.returncode != 0:
        err_dec = proc.stderr.decode() or proc.stdout.decode()
        msg = f"An error occurred while running `{cmd_str}`: {err_dec}"
        raise RuntimeError(msg)

    return proc.stdout


def write_json(*, out_file: ttypes.FileType, content: dict) -> pl.Path:
    """Write dictionary content to JSON file.

    The file is replaced atomically, so readers never see partially written content.
    """
    out_path = pl.Path(out_file).expanduser()
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=out_path.parent, prefix=f".{out_path.name}.", delete=False
    ) as out_fp:
        out_fp.write(json.dumps(content, indent=4))
        tmp_name = out_fp.name
    os.replace(tmp_name, out_path)
    return out_path


def read_json(in_file: ttypes.FileType) -> dict:
    """Read JSON file content."""
    with open(pl.Path(in_file).expanduser(), encoding="utf-8") as in_fp:
        content: dict = json.load(in_fp)
    return content
