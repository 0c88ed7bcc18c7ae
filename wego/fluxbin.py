"""Installing the flux binary and reading the logs of its controllers."""

from __future__ import annotations

import os
import shlex
import shutil

from wego import fluxops
from wego.commands import run_command


def get_flux_bin_path() -> str:
    """Return the directory that holds the flux binary."""
    return os.path.dirname(fluxops.flux_path())


def get_flux_exe_path() -> str:
    """Return the path of the flux binary of the configured version."""
    return fluxops.flux_path()


def setup_flux_bin(binary: bytes) -> None:
    """Write the flux binary unless one of this version is already in place."""
    exe_path = get_flux_exe_path()
    bin_path = get_flux_bin_path()
    if os.path.exists(exe_path):
        return
    # Binaries of other versions are cleared out.
    if os.path.isdir(bin_path) and not os.path.islink(bin_path):
        shutil.rmtree(bin_path)
    elif os.path.lexists(bin_path):
        os.remove(bin_path)
    os.makedirs(bin_path, mode=0o755, exist_ok=True)
    with open(exe_path, "wb") as exe:
        exe.write(binary)
    os.chmod(exe_path, 0o755)


def get_latest_status_all_namespaces() -> list[str]:
    """Return the last flux log line for each controller."""
    exe_path = get_flux_exe_path()
    logs = run_command(f"{shlex.quote(exe_path)} logs --all-namespaces")
    return last_log_for_namespaces(logs)


def last_log_for_namespaces(logs: bytes | str | None) -> list[str]:
    """Keep the last line for each value of the third space-separated field."""
    if not logs:
        return []
    text = logs.decode("utf-8", errors="replace") if isinstance(logs, bytes) else logs
    latest: dict[str, str] = {}
    for line in text.split("\n"):
        fields = line.split(" ")
        if len(fields) < 3:
            continue
        latest[fields[2]] = line
    return list(latest.values())