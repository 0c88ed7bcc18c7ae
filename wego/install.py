"""Installing the GitOps runtime into a cluster."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from wego import fluxops
from wego.commands import CommandError, run_command_silently, run_command_with_input

_APP_CRD_PATH = Path(__file__).with_name("manifests") / "app-crd.yaml"


class FluxAlreadyInstalledError(RuntimeError):
    """The cluster already runs flux, which installation does not support."""

    def __init__(self) -> None:
        super().__init__(
            "Weave GitOps does not yet support installation onto a cluster that is "
            "using Flux.\nPlease uninstall flux before proceeding:\n  $ flux uninstall"
        )


@dataclass
class InstallParams:
    """Options for an installation; app_crd defaults to the packaged manifest."""

    namespace: str = "wego-system"
    dry_run: bool = False
    app_crd: bytes | None = None


def _app_crd(params: InstallParams) -> bytes:
    if params.app_crd is not None:
        return params.app_crd
    try:
        return _APP_CRD_PATH.read_bytes()
    except OSError as exc:
        raise RuntimeError(f"could not read the application CRD manifest: {exc}") from exc


def install(params: InstallParams) -> None:
    """Install flux and the application CRD, or print them on a dry run."""
    try:
        present = check_flux_present()
    except (OSError, subprocess.SubprocessError) as exc:
        raise RuntimeError(f"could not verify flux presence in the cluster: {exc}") from exc
    if present:
        raise FluxAlreadyInstalledError()

    app_crd = _app_crd(params)

    try:
        manifests = fluxops.install(params.namespace, params.dry_run)
    except Exception as exc:
        raise RuntimeError(f"error on install {exc}") from exc

    if params.dry_run:
        print(manifests.decode("utf-8", errors="replace"), end="")
        print(app_crd.decode("utf-8", errors="replace"))
        return

    kubectl_apply = f"kubectl apply --namespace={params.namespace} -f -"
    try:
        run_command_with_input(kubectl_apply, app_crd)
    except (CommandError, OSError) as exc:
        raise RuntimeError(f"could not apply wego manifests: {exc}") from exc


def check_flux_present() -> bool:
    """Tell whether the flux-system namespace exists in the cluster."""
    try:
        run_command_silently("kubectl get namespace flux-system")
    except CommandError as exc:
        if b"not found" in exc.output:
            return False
    return True