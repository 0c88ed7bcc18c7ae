"""The wego command line."""

from __future__ import annotations

import argparse
import logging
import shlex
import subprocess
import sys
from pathlib import Path

from wego import fluxbin, fluxops
from wego.add import (
    AddDependencies,
    ClusterInfo,
    ClusterStatus,
    DeployKeyUploader,
    GitClient,
    add,
)
from wego.commands import CommandError, run_command_silently
from wego.install import FluxAlreadyInstalledError, InstallParams, install
from wego.params import AddParams, DeploymentType
from wego.status import app_status

VERSION = "v0.0.0"
GIT_COMMIT = ""
BRANCH = ""
BUILD_TIME = ""

DEFAULT_NAMESPACE = "wego-system"
_APP_CRD_NAME = "apps.wego.weave.works"

_INSTALL_DESCRIPTION = """The install command deploys Wego in the specified namespace.
If a previous version is installed, then an in-place upgrade will be performed."""
_INSTALL_EXAMPLE = """Examples:
  # Install wego in the wego-system namespace
  wego install"""

logger = logging.getLogger("wego")


class _KubectlCluster(ClusterInfo):
    """Inspects the cluster of the current kubectl context."""

    def get_cluster_status(self) -> ClusterStatus:
        try:
            run_command_silently(f"kubectl get crd {_APP_CRD_NAME}")
        except CommandError as exc:
            if b"not found" not in exc.output:
                return ClusterStatus.UNKNOWN
        except OSError:
            return ClusterStatus.UNKNOWN
        else:
            return ClusterStatus.WEGO_INSTALLED

        try:
            run_command_silently("kubectl get namespace flux-system")
        except CommandError as exc:
            if b"not found" in exc.output:
                return ClusterStatus.UNMODIFIED
            return ClusterStatus.UNKNOWN
        except OSError:
            return ClusterStatus.UNKNOWN
        return ClusterStatus.FLUX_INSTALLED


class _HubDeployKeys(DeployKeyUploader):
    """Registers deploy keys through the hub command line tool."""

    def upload_deploy_key(self, owner: str, repo_name: str, deploy_key: bytes) -> None:
        command = [
            "hub",
            "api",
            f"repos/{owner}/{repo_name}/keys",
            "-f",
            f"title=wego-{repo_name}",
            "-f",
            f"key={deploy_key.decode('utf-8', errors='replace')}",
            "-F",
            "read_only=false",
        ]
        completed = subprocess.run(command, capture_output=True)
        if completed.returncode != 0:
            raise CommandError(
                shlex.join(command), completed.returncode, completed.stdout, completed.stderr
            )


def version_text() -> str:
    """Return the version report printed by 'wego version'."""
    lines = [
        f"Current Version: {VERSION}",
        f"GitCommit: {GIT_COMMIT}",
        f"BuildTime: {BUILD_TIME}",
        f"Branch: {BRANCH}",
        f"Flux Version: {fluxops.FLUX_VERSION}",
    ]
    return "\n".join(lines) + "\n"


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for every wego command except flux passthrough."""
    parser = argparse.ArgumentParser(prog="wego", description="Weave GitOps")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--namespace", default=DEFAULT_NAMESPACE, help="gitops runtime namespace"
    )
    commands = parser.add_subparsers(dest="command", metavar="command")

    install_parser = commands.add_parser(
        "install",
        help="Install or upgrade Wego",
        description=_INSTALL_DESCRIPTION,
        epilog=_INSTALL_EXAMPLE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    install_parser.add_argument(
        "-n",
        "--namespace",
        dest="install_namespace",
        default=DEFAULT_NAMESPACE,
        help="the namespace scope for this operation",
    )
    install_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="outputs all the manifests that would be installed",
    )
    install_parser.add_argument(
        "--app-crd",
        default=None,
        help="file holding the application CRD manifest (defaults to the packaged one)",
    )
    install_parser.set_defaults(handler=_run_install)

    version_parser = commands.add_parser("version", help="Display wego version")
    version_parser.set_defaults(handler=_run_version)

    commands.add_parser(
        "flux",
        help="Use flux commands",
        description="Run flux with the given commands and flags; 'flux status' shows "
        "the last known status of flux namespaces.",
        epilog="Example: wego flux install -h",
    )

    app_parser = commands.add_parser("app", help="Manage applications")
    app_commands = app_parser.add_subparsers(
        dest="app_command", metavar="subcommand", required=True
    )

    status_parser = app_commands.add_parser(
        "status", help="Get status of an app", epilog="Example: wego app status podinfo"
    )
    status_parser.add_argument("app_name", help="name of the application")
    status_parser.set_defaults(handler=_run_app_status)

    add_parser = app_commands.add_parser(
        "add",
        help="Add a workload repository to a wego cluster",
        description="Associates an additional application in a git repository with a "
        "wego cluster so that its contents may be managed via GitOps",
        epilog="Example: wego add .",
    )
    add_parser.add_argument("directory", nargs="?", help="repository directory")
    add_parser.add_argument("--owner", default="", help="Owner of remote git repository")
    add_parser.add_argument("--name", default="", help="Name of remote git repository")
    add_parser.add_argument("--url", default="", help="URL of remote repository")
    add_parser.add_argument(
        "--path", default="./", help="Path of files within git repository"
    )
    add_parser.add_argument(
        "--branch", default="main", help="Branch to watch within git repository"
    )
    add_parser.add_argument(
        "--deployment-type",
        default=DeploymentType.KUSTOMIZE.value,
        help="deployment type [kustomize, helm]",
    )
    add_parser.add_argument("--chart", default="", help="Specify chart for helm source")
    add_parser.add_argument(
        "--app-config-url",
        default="",
        help="URL of external repository (if any) which will hold automation "
        "manifests; NONE to store only in the cluster",
    )
    add_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="If set, 'wego add' will not make any changes to the system; it will "
        "just display the actions that would have been taken",
    )
    add_parser.set_defaults(handler=_run_app_add)

    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="time=%(asctime)s level=%(levelname)s msg=%(message)s",
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def _split_flux_args(argv: list[str]) -> tuple[list[str], list[str]]:
    """Separate what follows a 'flux' command so flux sees it untouched."""
    index = 0
    while index < len(argv):
        token = argv[index]
        if token == "--namespace":
            index += 2
            continue
        if token.startswith("-"):
            index += 1
            continue
        if token == "flux":
            return argv[: index + 1], argv[index + 1 :]
        break
    return argv, []


def _run_install(args: argparse.Namespace) -> int:
    app_crd = None
    if args.app_crd:
        try:
            app_crd = Path(args.app_crd).read_bytes()
        except OSError as exc:
            print(f"failed to install wego: {exc}", file=sys.stderr)
            return 1
    params = InstallParams(
        namespace=args.install_namespace, dry_run=args.dry_run, app_crd=app_crd
    )
    try:
        install(params)
    except FluxAlreadyInstalledError as exc:
        print(exc)
        return 1
    except Exception as exc:
        print(f"failed to install wego: {exc}", file=sys.stderr)
        return 1
    return 0


def _run_version(args: argparse.Namespace) -> int:
    sys.stdout.write(version_text())
    return 0


def _run_app_status(args: argparse.Namespace) -> int:
    params = AddParams(namespace=args.namespace, name=args.app_name)
    try:
        app_status(params)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


def _run_app_add(args: argparse.Namespace) -> int:
    params = AddParams(
        owner=args.owner,
        name=args.name,
        url=args.url,
        path=args.path,
        branch=args.branch,
        deployment_type=args.deployment_type,
        chart=args.chart,
        app_config_url=args.app_config_url,
        namespace=args.namespace,
        dry_run=args.dry_run,
    )
    deps = AddDependencies(
        git_client=GitClient(), cluster=_KubectlCluster(), deploy_keys=_HubDeployKeys()
    )
    positional = [args.directory] if args.directory else []
    try:
        add(positional, params, deps)
    except Exception as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


def _run_flux_status() -> int:
    try:
        statuses = fluxbin.get_latest_status_all_namespaces()
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Status: [{' '.join(statuses)}]")
    return 0


def _run_flux(flux_args: list[str]) -> int:
    if flux_args[:1] == ["status"]:
        return _run_flux_status()
    try:
        exe_path = fluxbin.get_flux_exe_path()
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    try:
        completed = subprocess.run(
            [exe_path, *flux_args], stdout=subprocess.PIPE, stderr=subprocess.STDOUT
        )
        output = completed.stdout or b""
    except OSError:
        output = b""
    sys.stdout.write(output.decode("utf-8", errors="replace"))
    sys.stdout.flush()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run wego with the given arguments and return its exit status."""
    arguments = list(sys.argv[1:] if argv is None else argv)
    head, flux_args = _split_flux_args(arguments)
    parser = build_parser()
    args = parser.parse_args(head)
    _configure_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "flux":
        return _run_flux(flux_args)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())