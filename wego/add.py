"""Adding an application to a cluster managed through GitOps."""

from __future__ import annotations

import abc
import enum
import os
import posixpath
import re
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from wego import fluxops
from wego.commands import CommandError, run_command_separating_streams, run_command_with_input
from wego.params import AddParams, ConfigType, DeploymentType, SourceType

APP_YAML_TEMPLATE = """apiVersion: wego.weave.works/v1alpha1
kind: Application
metadata:
  name: {name}
spec:
  path: {path}
  url: {url}
"""

COMMIT_AUTHOR_NAME = "Weave Gitops"
COMMIT_AUTHOR_EMAIL = "weave-gitops@example.com"
COMMIT_MESSAGE = "Add App manifests"

_DEPLOY_KEY_PREFIX = "✚ deploy key: ".encode()
_SCP_URL = re.compile(r"^([^/@:\s]+@[^/:\s]+):(.*)$")


class ClusterStatus(str, enum.Enum):
    """What is installed in the cluster."""

    UNKNOWN = "Unknown"
    UNMODIFIED = "Unmodified"
    FLUX_INSTALLED = "FluxInstalled"
    WEGO_INSTALLED = "WeGOInstalled"

    def __str__(self) -> str:
        return self.value


class NoStagedFilesError(Exception):
    """A commit was requested but there was nothing to commit."""

    def __init__(self) -> None:
        super().__init__("no staged files")


class GitClient:
    """Works on a git repository through the git command line."""

    def __init__(self, directory: str | None = None) -> None:
        self.directory = directory

    def _repo(self) -> str:
        if self.directory is None:
            raise RuntimeError("no repository is open")
        return self.directory

    @staticmethod
    def _git(*args: str, cwd: str | None = None) -> str:
        command = ["git", *args]
        completed = subprocess.run(command, cwd=cwd, capture_output=True)
        if completed.returncode != 0:
            raise CommandError(
                shlex.join(command), completed.returncode, completed.stdout, completed.stderr
            )
        return completed.stdout.decode("utf-8", errors="replace")

    def remote_urls(self, directory: str, remote: str) -> list[str]:
        """Open the repository in directory and return the URLs of a remote."""
        try:
            output = self._git("remote", "get-url", "--all", remote, cwd=directory)
        except (CommandError, OSError) as exc:
            raise RuntimeError(f"failed to open repository: {directory}: {exc}") from exc
        self.directory = directory
        return [line.strip() for line in output.splitlines() if line.strip()]

    def clone(self, directory: str, url: str, branch: str) -> None:
        """Clone a branch of url into directory and work on the clone."""
        self._git("clone", "--branch", branch, url, directory)
        self.directory = directory

    def write(self, path: str, data: bytes) -> None:
        """Write a file, relative to the repository root."""
        full_path = os.path.join(self._repo(), path)
        os.makedirs(os.path.dirname(full_path) or ".", exist_ok=True)
        with open(full_path, "wb") as handle:
            handle.write(data)

    def commit(
        self,
        message: str,
        author_name: str,
        author_email: str,
        filters: Iterable[Callable[[str], bool]] = (),
    ) -> str:
        """Commit the changed files accepted by every filter; return the new head."""
        repo = self._repo()
        checks = list(filters)
        status = self._git("status", "--porcelain", "--untracked-files=all", cwd=repo)
        changed = []
        for line in status.splitlines():
            name = line[3:]
            if " -> " in name:
                name = name.split(" -> ", 1)[1]
            name = name.strip('"')
            if all(check(name) for check in checks):
                changed.append(name)
        if not changed:
            raise NoStagedFilesError()
        self._git("add", "--", *changed, cwd=repo)
        self._git(
            "-c", f"user.name={author_name}",
            "-c", f"user.email={author_email}",
            "commit", "-m", message, "--", *changed,
            cwd=repo,
        )
        return self._git("rev-parse", "HEAD", cwd=repo).strip()

    def push(self) -> None:
        """Push the current branch to its upstream."""
        self._git("push", cwd=self._repo())


class DeployKeyUploader(abc.ABC):
    """Registers a deploy key with the git hosting service."""

    @abc.abstractmethod
    def upload_deploy_key(self, owner: str, repo_name: str, deploy_key: bytes) -> None:
        """Add deploy_key to the repository owner/repo_name."""


class ClusterInfo(abc.ABC):
    """Access to the cluster that applications are added to."""

    @abc.abstractmethod
    def get_cluster_status(self) -> ClusterStatus:
        """Return what is installed in the cluster."""

    def get_cluster_name(self) -> str:
        """Return the name of the current kubectl context."""
        stdout, _ = run_command_separating_streams("kubectl config current-context")
        return stdout.decode("utf-8", errors="replace").strip()

    def apply_manifest(self, namespace: str, manifest: bytes) -> None:
        """Apply a manifest to the cluster in the given namespace."""
        run_command_with_input(f"kubectl apply --namespace={namespace} -f -", manifest)


@dataclass
class AddDependencies:
    """The collaborators an application addition works through."""

    git_client: GitClient
    cluster: ClusterInfo
    deploy_keys: DeployKeyUploader


def _wrap(exc: BaseException, message: str) -> RuntimeError:
    return RuntimeError(f"{message}: {exc}")


def _base(path: str) -> str:
    if path == "":
        return "."
    stripped = path.rstrip("/")
    if stripped == "":
        return "/"
    return posixpath.basename(stripped)


def _join(*parts: str) -> str:
    kept = [part for part in parts if part]
    if not kept:
        return ""
    return posixpath.normpath(posixpath.join(*kept))


def _call_flux_quietly(command: str) -> bytes:
    if isinstance(fluxops.get_flux_handler(), fluxops.DefaultFluxHandler):
        with fluxops.flux_handler_override(fluxops.QuietFluxHandler()):
            return fluxops.call_flux(command)
    return fluxops.call_flux(command)


def sanitize_path(path: str) -> str:
    """Turn a repository path into something usable inside a name."""
    trimmed = path.removesuffix("/")
    return trimmed.replace("/", "-").replace(".", "dot")


def generate_app_name(dir_or_url: str, path: str) -> str:
    """Derive an application name from a directory or URL and the path inside it."""
    base = _base(dir_or_url).replace("_", "-")
    if path != "./":
        return f"{base}-{sanitize_path(path)}"
    return base


def url_to_repo_name(url: str) -> str:
    """Return the repository name at the end of a URL."""
    return _base(url).replace("_", "-")


def get_owner_from_url(url: str) -> str:
    """Return the path segment before the repository name."""
    parts = url.split("/")
    if len(parts) < 2:
        raise ValueError(f"could not get owner from url {url}")
    return parts[-2]


class AppAdder:
    """Sets up GitOps automation for one application."""

    def __init__(self, params: AddParams, deps: AddDependencies) -> None:
        self.params = params
        self.deps = deps

    def run(self) -> None:
        """Add the application as its parameters describe."""
        print("Updating parameters from environment... ", end="")
        try:
            self._update_parameters()
        except Exception as exc:
            raise _wrap(exc, "could not update parameters") from exc
        print("done\n")
        print("Checking cluster status... ", end="")
        status = self.deps.cluster.get_cluster_status()
        print(f"{status}\n")

        if status == ClusterStatus.UNMODIFIED:
            raise RuntimeError("WeGO not installed... exiting")
        if status == ClusterStatus.UNKNOWN:
            raise RuntimeError("WeGO can not determine cluster status... exiting")

        config = self.params.config_type
        if config == ConfigType.NONE:
            self._add_with_no_config_repo()
        elif config == ConfigType.USER_REPO:
            self._add_with_config_in_user_repo()
        else:
            self._add_with_config_in_external_repo()

    def _update_parameters(self) -> None:
        params = self.params
        params.source_type = SourceType.GIT.value
        if params.chart:
            params.source_type = SourceType.HELM.value
            params.deployment_type = DeploymentType.HELM.value

        if not params.name:
            if params.url:
                params.name = generate_app_name(params.url.removesuffix(".git"), params.path)
            else:
                params.name = generate_app_name(os.path.abspath(params.dir), params.path)

        if not params.url and not params.dry_run:
            urls = self.deps.git_client.remote_urls(params.dir, "origin")
            if not urls:
                raise RuntimeError(f"remote config in {params.dir} does not have an url")
            params.url = urls[0]

        match = _SCP_URL.match(params.url)
        if match:
            params.url = f"ssh://{match.group(1)}/{match.group(2)}"

        print(f"using URL: '{params.url}' of origin from git config...\n")

    def _add_with_no_config_repo(self) -> None:
        user_source_name = self._user_repo_name()
        try:
            user_repo_source = self.generate_source(
                user_source_name, self.params.url, SourceType.GIT
            )
        except Exception as exc:
            raise _wrap(exc, "could not set up GitOps for user repository") from exc
        app_yaml = self.generate_app_yaml()
        try:
            application_goat = self.generate_application_goat(user_source_name)
        except Exception as exc:
            raise _wrap(
                exc, f"could not create GitOps automation for '{self.params.name}'"
            ) from exc
        self._apply_to_cluster(user_repo_source, app_yaml, application_goat)

    def _add_with_config_in_user_repo(self) -> None:
        user_source_name = self._user_repo_name()
        user_repo_source = self.generate_source(user_source_name, self.params.url, SourceType.GIT)
        target_kustomize = self._generate_target_kustomize(user_source_name, ".wego")
        app_kustomize = self._generate_app_kustomize(user_source_name, ".wego")
        self._apply_to_cluster(user_repo_source, target_kustomize, app_kustomize)
        app_yaml = self.generate_app_yaml()
        try:
            application_goat = self.generate_application_goat(user_source_name)
        except Exception as exc:
            raise _wrap(
                exc, f"could not create GitOps automation for '{self.params.name}'"
            ) from exc
        self._write_app_yaml(".wego", app_yaml)
        self._write_goats(".wego", application_goat)
        self._commit_and_push(lambda name: name.startswith(".wego"))

    def _add_with_config_in_external_repo(self) -> None:
        goat_source_name = url_to_repo_name(self.params.app_config_url.removesuffix(".git"))
        temp_dir = self._clone_to_temp_dir()
        try:
            goat_repo_source = self.generate_source(
                goat_source_name, self.params.app_config_url, SourceType.GIT
            )
            goat_target = self._generate_target_kustomize(goat_source_name, ".")
            goat_app = self._generate_app_kustomize(goat_source_name, ".")
            self._apply_to_cluster(goat_repo_source, goat_target, goat_app)

            user_source_name = self._user_repo_name()
            user_repo_source = self.generate_source(
                user_source_name, self.params.url, self.params.source_type
            )
            user_target = self._generate_target_kustomize(user_source_name, ".")
            user_app = self._generate_app_kustomize(user_source_name, ".")
            app_yaml = self.generate_app_yaml()
            try:
                application_goat = self.generate_application_goat(user_source_name)
            except Exception as exc:
                raise _wrap(
                    exc, f"could not create GitOps automation for '{self.params.name}'"
                ) from exc
            self._write_app_yaml(".", app_yaml)
            self._write_goats("", user_repo_source, user_target, user_app, application_goat)
            self._commit_and_push()
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def _user_repo_name(self) -> str:
        return url_to_repo_name(self.params.url.removesuffix(".git"))

    def generate_source(self, repo_name: str, repo_url: str, source_type: str) -> bytes:
        """Create the flux source for a repository, setting up its deploy key."""
        params = self.params
        secret_name = repo_name
        if source_type == SourceType.GIT:
            command = (
                f'create secret git "{secret_name}" \\\n'
                f'            --url="{repo_url}" \\\n'
                f'            --namespace="{params.namespace}"'
            )
            if params.dry_run:
                print(command)
            else:
                try:
                    output = _call_flux_quietly(command)
                except Exception as exc:
                    raise _wrap(exc, "could not create git secret") from exc
                owner = get_owner_from_url(repo_url)
                body = output.removeprefix(_DEPLOY_KEY_PREFIX)
                if not body:
                    text = output.decode("utf-8", errors="replace")
                    raise RuntimeError(f"no deploy key found [{text}]")
                deploy_key = body.split(b"\n")[0]
                try:
                    self.deps.deploy_keys.upload_deploy_key(owner, repo_name, deploy_key)
                except Exception as exc:
                    raise _wrap(exc, "error uploading deploy key") from exc
            command = (
                f'create source git "{repo_name}" \\\n'
                f'            --url="{repo_url}" \\\n'
                f'            --branch="{params.branch}" \\\n'
                f'            --secret-ref="{secret_name}" \\\n'
                f"            --interval=30s \\\n"
                f"            --export \\\n"
                f'            --namespace="{params.namespace}"'
            )
            try:
                return fluxops.call_flux(command)
            except Exception as exc:
                raise _wrap(exc, "could not create git source") from exc
        if source_type == SourceType.HELM:
            return self.generate_source_manifest_helm()
        raise ValueError(f"unknown source type: {source_type}")

    def generate_source_manifest_helm(self) -> bytes:
        """Create the flux Helm repository source for the application."""
        params = self.params
        command = (
            f"create source helm {params.name} \\\n"
            f'            --url="{params.url}" \\\n'
            f"            --interval=30s \\\n"
            f"            --export \\\n"
            f"            --namespace={params.namespace} "
        )
        try:
            return fluxops.call_flux(command)
        except Exception as exc:
            raise _wrap(exc, "could not create git source") from exc

    def generate_kustomize_manifest(self, kust_name: str, source_name: str, path: str) -> bytes:
        """Create a flux kustomization for a path within a source."""
        command = (
            f'create kustomization "{kust_name}" \\\n'
            f'                --path="{path}" \\\n'
            f'                --source="{source_name}" \\\n'
            f"                --prune=true \\\n"
            f"                --validation=client \\\n"
            f"                --interval=1m \\\n"
            f"                --export \\\n"
            f"                --namespace={self.params.namespace}"
        )
        try:
            manifest = fluxops.call_flux(command)
        except Exception as exc:
            raise _wrap(exc, "could not create kustomization manifest") from exc
        return manifest.replace(b"path: ./wego", b"path: .wego")

    def generate_helm_manifest_git(self, helm_name: str, source_name: str, path: str) -> bytes:
        """Create a flux Helm release for a chart kept in a git source."""
        command = (
            f"create helmrelease {helm_name} \\\n"
            f'            --source="GitRepository/{source_name}" \\\n'
            f'            --chart="{path}" \\\n'
            f"            --interval=1m \\\n"
            f"            --export \\\n"
            f"            --namespace={self.params.namespace}"
        )
        try:
            manifest = fluxops.call_flux(command)
        except Exception as exc:
            raise _wrap(exc, "could not create helm manifest") from exc
        return manifest.replace(b"path: ./wego", b"path: .wego")

    def generate_helm_manifest_helm(self, helm_name: str, chart: str) -> bytes:
        """Create a flux Helm release for a chart in a Helm repository."""
        command = (
            f"create helmrelease {helm_name} \\\n"
            f'            --source="HelmRepository/{helm_name}" \\\n'
            f'            --chart="{chart}" \\\n'
            f"            --interval=5m \\\n"
            f"            --export \\\n"
            f"            --namespace={self.params.namespace}"
        )
        return fluxops.call_flux(command)

    def generate_app_yaml(self) -> bytes:
        """Return the Application resource describing the application."""
        params = self.params
        return APP_YAML_TEMPLATE.format(
            name=params.name, path=params.path, url=params.url
        ).encode("utf-8")

    def generate_application_goat(self, source_name: str) -> bytes:
        """Create the kustomization or Helm release that deploys the application."""
        params = self.params
        if params.deployment_type == DeploymentType.KUSTOMIZE:
            return self.generate_kustomize_manifest(params.name, source_name, params.path)
        if params.deployment_type == DeploymentType.HELM:
            if params.source_type == SourceType.HELM:
                return self.generate_helm_manifest_helm(params.name, params.chart)
            if params.source_type == SourceType.GIT:
                return self.generate_helm_manifest_git(params.name, source_name, params.path)
            raise ValueError(f"Invalid source type: {params.source_type}")
        raise ValueError(f"Invalid deployment type: {params.deployment_type}")

    def _generate_target_kustomize(self, source_name: str, base_path: str) -> bytes:
        cluster_name = self.deps.cluster.get_cluster_name()
        return self.generate_kustomize_manifest(
            f"{cluster_name}-{source_name}",
            source_name,
            _join(base_path, "targets", cluster_name),
        )

    def _generate_app_kustomize(self, source_name: str, base_path: str) -> bytes:
        return self.generate_kustomize_manifest(
            self.params.name, source_name, _join(base_path, "apps", self.params.name)
        )

    def _apply_to_cluster(self, *manifests: bytes) -> None:
        if self.params.dry_run:
            print("Applying:\n")
            for manifest in manifests:
                print(manifest.decode("utf-8", errors="replace"))
            return
        for manifest in manifests:
            try:
                self.deps.cluster.apply_manifest(self.params.namespace, manifest)
            except Exception as exc:
                text = manifest.decode("utf-8", errors="replace")
                raise _wrap(exc, f"could not apply manifest: {text}") from exc

    def _write_app_yaml(self, base_path: str, app_yaml: bytes) -> None:
        path = _join(base_path, "apps", self.params.name, "app.yaml")
        if self.params.dry_run:
            print(f"Writing app.yaml to '{path}'")
            return
        self.deps.git_client.write(path, app_yaml)

    def _write_goats(self, base_path: str, *manifests: bytes) -> None:
        cluster_name = self.deps.cluster.get_cluster_name()
        name = self.params.name
        path = _join(base_path, "targets", cluster_name, name, f"{name}-gitops-runtime.yaml")
        if self.params.dry_run:
            print(f"Writing GitOps Automation to '{path}'")
            return
        self.deps.git_client.write(path, b"".join(manifests))

    def _commit_and_push(self, *filters: Callable[[str], bool]) -> None:
        print("Commiting and pushing wego resources for application...")
        if self.params.dry_run:
            return
        git = self.deps.git_client
        try:
            git.commit(COMMIT_MESSAGE, COMMIT_AUTHOR_NAME, COMMIT_AUTHOR_EMAIL, filters)
        except NoStagedFilesError:
            print("App manifests are up to date")
            return
        except Exception as exc:
            raise _wrap(exc, "failed to commit sync manifests") from exc
        print("Pushing app manifests to repository")
        try:
            git.push()
        except Exception as exc:
            raise _wrap(exc, "failed to push manifests") from exc

    def _clone_to_temp_dir(self) -> str:
        try:
            git_dir = tempfile.mkdtemp(prefix="git-")
        except OSError as exc:
            raise _wrap(exc, "TempDir") from exc
        if self.params.dry_run:
            print(f"Cloning '{self.params.app_config_url}' to temporary directory")
            return git_dir
        try:
            self.deps.git_client.clone(git_dir, self.params.app_config_url, self.params.branch)
        except BaseException:
            shutil.rmtree(git_dir, ignore_errors=True)
            raise
        return git_dir


def add(args: list[str], params: AddParams, deps: AddDependencies) -> None:
    """Add an application given by --url or by a directory in args."""
    params = replace(params)
    if not params.url:
        if not args:
            raise ValueError("no app --url or app location specified")
        params.dir = args[0]
    AppAdder(params, deps).run()