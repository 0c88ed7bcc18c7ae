"""Reporting the state of an application deployed through flux."""

from __future__ import annotations

import re
import subprocess
from typing import Any

import yaml

from wego import fluxops
from wego.commands import CommandError, run_command_separating_streams
from wego.params import AddParams


def app_status(params: AddParams) -> None:
    """Print the last deployment time and the flux resources of an application."""
    try:
        deployment_type = get_deployment_type(params.namespace, params.name)
    except Exception as exc:
        raise RuntimeError(f"error getting deployment type [{exc}]") from exc

    try:
        latest = get_latest_successful_deployment_time(
            params.namespace, params.name, deployment_type
        )
    except Exception as exc:
        raise RuntimeError(f"error on latest deployment time [{exc}]") from exc
    print(f"Latest successful deployment time: {latest}")

    try:
        output = fluxops.get_all_resources_status(params.name)
    except Exception as exc:
        raise RuntimeError(f"error getting flux app resources status [{exc}]") from exc
    print(output.decode("utf-8", errors="replace"))


def _conditions(document: Any) -> list[Any]:
    if not isinstance(document, dict):
        return []
    status = document.get("status")
    if not isinstance(status, dict):
        return []
    conditions = status.get("conditions")
    return conditions if isinstance(conditions, list) else []


def get_latest_successful_deployment_time(
    namespace: str, app_name: str, deployment_type: str
) -> str:
    """Return the last transition time of the application's first condition."""
    command = (
        "kubectl \\\n"
        f"\t\t\t-n {namespace} \\\n"
        f"\t\t\tget {deployment_type}/{app_name} -oyaml"
    )
    try:
        stdout, _ = run_command_separating_streams(command)
    except CommandError as exc:
        stderr = exc.stderr.decode("utf-8", errors="replace")
        raise RuntimeError(f"error getting resource info [{exc} {stderr}]") from exc
    except (OSError, subprocess.SubprocessError) as exc:
        raise RuntimeError(f"error getting resource info [{exc} ]") from exc

    try:
        document = yaml.load(stdout, Loader=yaml.BaseLoader)
    except yaml.YAMLError as exc:
        raise RuntimeError(f"error unmarshalling yaml output [{exc}]") from exc

    conditions = _conditions(document)
    if not conditions:
        text = stdout.decode("utf-8", errors="replace")
        raise RuntimeError(f"error getting latest deployment time [{text}]")
    first = conditions[0]
    if not isinstance(first, dict):
        return ""
    return str(first.get("lastTransitionTime", ""))


def get_deployment_type(namespace: str, app_name: str) -> str:
    """Return 'kustomization' or 'helmrelease' for the named application."""
    try:
        stdout = fluxops.get_all_resources(namespace)
    except Exception as exc:
        if "exit status 1" not in str(exc):
            raise
        stdout = b""

    text = stdout.decode("utf-8", errors="replace")
    pattern = re.compile(rf"(kustomization|helmrelease)/{re.escape(app_name)}", re.MULTILINE)
    matches = pattern.findall(text)
    if len(matches) != 1:
        raise RuntimeError(
            f"error trying to get the deployment type of the app. raw output => {text}"
        )
    return matches[0]