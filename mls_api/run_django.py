import subprocess
import sys
from importlib.util import find_spec
from pathlib import Path
from collections.abc import Sequence


def _manage_script() -> str:
    spec = find_spec("mls_sync.manage")
    if spec is None or spec.origin is None:
        raise RuntimeError("Could not locate mls_sync.manage")
    return str(Path(spec.origin).resolve())


def _run_manage(args: Sequence[str]) -> int:
    completed = subprocess.run([sys.executable, _manage_script(), *args])
    return completed.returncode


def _migrate_then(args: Sequence[str]) -> int:
    exit_code = migrate()
    if exit_code != 0:
        return exit_code

    return _run_manage(args)


def runserver() -> int:
    return _migrate_then(["runserver"])


def makemigrations() -> int:
    return _run_manage(["makemigrations", "mls_data"])


def migrate() -> int:
    return _run_manage(["migrate"])


def sync_mls() -> int:
    return _migrate_then(["sync_mls", *sys.argv[1:]])


def run_scheduler() -> int:
    return _migrate_then(["run_mls_scheduler", *sys.argv[1:]])
