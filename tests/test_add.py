import os

import pytest

from wego import fluxops
from wego.add import (
    AddDependencies,
    AppAdder,
    ClusterInfo,
    ClusterStatus,
    DeployKeyUploader,
    GitClient,
    NoStagedFilesError,
    add,
    generate_app_name,
    get_owner_from_url,
    sanitize_path,
    url_to_repo_name,
)
from wego.params import AddParams, DeploymentType, SourceType

DEPLOY_OUTPUT = (
    "✚ deploy key: ssh-rsa ID==\n\n"
    "► secret 'secret name' created in 'wego-system' namespace"
).encode()


class RecordingFlux(fluxops.FluxHandler):
    def __init__(self, responder):
        self.calls = []
        self.responder = responder

    def handle(self, args):
        self.calls.append(args)
        return self.responder(args)


def fail_flux(args):
    command = args[: args.index(" ")]
    if command.startswith("install") or command.startswith("add"):
        raise RuntimeError("failed")
    return DEPLOY_OUTPUT


class FakeCluster(ClusterInfo):
    def __init__(self, status=ClusterStatus.FLUX_INSTALLED):
        self.status = status
        self.applied = []

    def get_cluster_status(self):
        return self.status

    def get_cluster_name(self):
        return "test"

    def apply_manifest(self, namespace, manifest):
        self.applied.append((namespace, manifest))


class FakeUploader(DeployKeyUploader):
    def __init__(self):
        self.uploads = []

    def upload_deploy_key(self, owner, repo_name, deploy_key):
        self.uploads.append((owner, repo_name, deploy_key))


class IgnoreGit(GitClient):
    def __init__(self, urls=("ssh://git@example.com/auser/arepo",), staged=True):
        super().__init__()
        self.urls = list(urls)
        self.staged = staged
        self.writes = {}
        self.commits = []
        self.pushes = 0
        self.clones = []

    def remote_urls(self, directory, remote):
        return self.urls

    def clone(self, directory, url, branch):
        self.clones.append((directory, url, branch))

    def write(self, path, data):
        self.writes[path] = data

    def commit(self, message, author_name, author_email, filters=()):
        self.commits.append((message, list(filters)))
        if not self.staged:
            raise NoStagedFilesError()
        return ""

    def push(self):
        self.pushes += 1


class FailGit(GitClient):
    def remote_urls(self, directory, remote):
        raise AssertionError("remote_urls")

    def clone(self, directory, url, branch):
        raise AssertionError("clone")

    def write(self, path, data):
        raise AssertionError("write")

    def commit(self, message, author_name, author_email, filters=()):
        raise AssertionError("commit")

    def push(self):
        raise AssertionError("push")


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    app_dir = tmp_path / "my_app"
    app_dir.mkdir()
    monkeypatch.chdir(app_dir)
    return app_dir


def make_deps(git=None, cluster=None):
    return AddDependencies(
        git_client=git or IgnoreGit(), cluster=cluster or FakeCluster(), deploy_keys=FakeUploader()
    )


def test_helm_manifest_from_git():
    expected = (
        "create helmrelease simple-name-dot-my-chart \\\n"
        '            --source="GitRepository/source-name" \\\n'
        '            --chart="./my-chart" \\\n'
        "            --interval=1m \\\n"
        "            --export \\\n"
        "            --namespace=wego-system"
    )
    flux = RecordingFlux(lambda args: b"foo")
    adder = AppAdder(AddParams(namespace="wego-system"), make_deps())
    with fluxops.flux_handler_override(flux):
        result = adder.generate_helm_manifest_git(
            "simple-name-dot-my-chart", "source-name", "./my-chart"
        )
    assert result == b"foo"
    assert flux.calls == [expected]


def test_source_manifest():
    expected_first_call = (
        'create secret git "sname" \\\n'
        '            --url="ssh://git@example.com/auser/arepo" \\\n'
        '            --namespace="aNamespace"'
    )
    expected_second_call = (
        'create source git "sname" \\\n'
        '            --url="ssh://git@example.com/auser/arepo" \\\n'
        '            --branch="aBranch" \\\n'
        '            --secret-ref="sname" \\\n'
        "            --interval=30s \\\n"
        "            --export \\\n"
        '            --namespace="aNamespace"'
    )

    def respond(args):
        return DEPLOY_OUTPUT if args.startswith("create secret") else b"bar"

    flux = RecordingFlux(respond)
    deps = make_deps()
    adder = AppAdder(AddParams(namespace="aNamespace", branch="aBranch"), deps)
    with fluxops.flux_handler_override(flux):
        result = adder.generate_source("sname", "ssh://git@example.com/auser/arepo", "git")
    assert result == b"bar"
    assert flux.calls == [expected_first_call, expected_second_call]
    assert deps.deploy_keys.uploads == [("auser", "sname", b"ssh-rsa ID==")]


def test_helm_manifest_from_helm():
    expected = (
        "create helmrelease simple-name \\\n"
        '            --source="HelmRepository/simple-name" \\\n'
        '            --chart="testchart" \\\n'
        "            --interval=5m \\\n"
        "            --export \\\n"
        "            --namespace=wego-system"
    )
    flux = RecordingFlux(lambda args: b"foo")
    adder = AppAdder(AddParams(namespace="wego-system"), make_deps())
    with fluxops.flux_handler_override(flux):
        assert adder.generate_helm_manifest_helm("simple-name", "testchart") == b"foo"
    assert flux.calls == [expected]


def test_helm_source_from_helm():
    expected = (
        "create source helm test \\\n"
        '            --url="https://github.io/testrepo" \\\n'
        "            --interval=30s \\\n"
        "            --export \\\n"
        "            --namespace=wego-system "
    )
    flux = RecordingFlux(lambda args: b"foo")
    params = AddParams(
        name="test", url="https://github.io/testrepo", namespace="wego-system", chart="testChart"
    )
    adder = AppAdder(params, make_deps())
    with fluxops.flux_handler_override(flux):
        assert adder.generate_source_manifest_helm() == b"foo"
    assert flux.calls == [expected]


def test_kustomize_manifest_rewrites_wego_path():
    flux = RecordingFlux(lambda args: b"spec:\n  path: ./wego/apps\n")
    adder = AppAdder(AddParams(namespace="ns"), make_deps())
    with fluxops.flux_handler_override(flux):
        result = adder.generate_kustomize_manifest("k", "s", "./wego/apps")
    assert result == b"spec:\n  path: .wego/apps\n"
    assert '--path="./wego/apps"' in flux.calls[0]
    assert flux.calls[0].endswith("--namespace=ns")


def test_source_without_deploy_key_fails():
    flux = RecordingFlux(lambda args: b"")
    adder = AppAdder(AddParams(), make_deps())
    with fluxops.flux_handler_override(flux):
        with pytest.raises(RuntimeError, match="no deploy key found"):
            adder.generate_source("r", "ssh://git@example.com/o/r", SourceType.GIT)


def test_unknown_source_type():
    adder = AppAdder(AddParams(), make_deps())
    with pytest.raises(ValueError, match="unknown source type: bogus"):
        adder.generate_source("r", "u/r", "bogus")


def test_invalid_deployment_type():
    adder = AppAdder(AddParams(deployment_type="other"), make_deps())
    with pytest.raises(ValueError, match="Invalid deployment type: other"):
        adder.generate_application_goat("src")


def test_invalid_source_type_for_helm():
    params = AddParams(deployment_type=DeploymentType.HELM.value, source_type="svn")
    with pytest.raises(ValueError, match="Invalid source type: svn"):
        AppAdder(params, make_deps()).generate_application_goat("src")


def test_app_yaml():
    params = AddParams(name="app", path="./deploy", url="ssh://git@example.com/o/r.git")
    assert AppAdder(params, make_deps()).generate_app_yaml() == (
        b"apiVersion: wego.weave.works/v1alpha1\n"
        b"kind: Application\n"
        b"metadata:\n"
        b"  name: app\n"
        b"spec:\n"
        b"  path: ./deploy\n"
        b"  url: ssh://git@example.com/o/r.git\n"
    )


@pytest.mark.parametrize(
    "path, expected",
    [("./my-chart", "dot-my-chart"), ("a/b/", "a-b"), ("x.y", "xdoty")],
)
def test_sanitize_path(path, expected):
    assert sanitize_path(path) == expected


def test_generate_app_name():
    assert generate_app_name("/home/u/my_repo", "./") == "my-repo"
    assert generate_app_name("ssh://git@example.com/o/quux", "./foo") == "quux-dot-foo"


def test_url_to_repo_name_and_owner():
    assert url_to_repo_name("ssh://git@example.com/aUser/a_repo") == "a-repo"
    assert get_owner_from_url("ssh://git@example.com/aUser/aRepo") == "aUser"
    with pytest.raises(ValueError, match="could not get owner"):
        get_owner_from_url("norepo")


def test_add_requires_url_or_location():
    with pytest.raises(ValueError, match="no app --url or app location specified"):
        add([], AddParams(), make_deps())


@pytest.mark.parametrize(
    "status, message",
    [
        (ClusterStatus.UNMODIFIED, "WeGO not installed... exiting"),
        (ClusterStatus.UNKNOWN, "WeGO can not determine cluster status... exiting"),
    ],
)
def test_add_refuses_unprepared_cluster(workdir, status, message):
    deps = make_deps(cluster=FakeCluster(status))
    with fluxops.flux_handler_override(RecordingFlux(fail_flux)):
        with pytest.raises(RuntimeError) as info:
            add(["."], AddParams(dry_run=True), deps)
    assert str(info.value) == message


def test_remote_without_url(workdir):
    deps = make_deps(git=IgnoreGit(urls=()))
    with pytest.raises(RuntimeError, match="does not have an url"):
        add(["."], AddParams(), deps)


@pytest.mark.parametrize(
    "url, app_config_url",
    [
        ("ssh://git@example.com/foobar/quux.git", ""),
        ("", ""),
        ("", "none"),
        ("", "ssh://git@example.com/aUser/aRepo"),
    ],
)
def test_dry_run_leaves_everything_unchanged(workdir, capsys, url, app_config_url):
    flux = RecordingFlux(fail_flux)
    cluster = FakeCluster()
    deps = make_deps(git=FailGit(), cluster=cluster)
    params = AddParams(
        url=url, app_config_url=app_config_url, path="./foo" if not url else "./", dry_run=True
    )
    with fluxops.flux_handler_override(flux):
        add(["."], params, deps)
    out = capsys.readouterr().out
    assert cluster.applied == []
    assert deps.deploy_keys.uploads == []
    assert not any(call.startswith("create secret") for call in flux.calls)
    assert "Applying:" in out
    assert "Checking cluster status... FluxInstalled" in out


def test_wet_run_with_config_in_user_repo(workdir):
    flux = RecordingFlux(fail_flux)
    git = IgnoreGit()
    cluster = FakeCluster()
    deps = make_deps(git=git, cluster=cluster)
    params = AddParams(url="ssh://git@example.com/foobar/quux.git")
    with fluxops.flux_handler_override(flux):
        add(["."], params, deps)
    assert [ns for ns, _ in cluster.applied] == ["wego-system"] * 3
    assert deps.deploy_keys.uploads == [("foobar", "quux", b"ssh-rsa ID==")]
    assert sorted(git.writes) == [
        ".wego/apps/quux/app.yaml",
        ".wego/targets/test/quux/quux-gitops-runtime.yaml",
    ]
    assert git.writes[".wego/apps/quux/app.yaml"].endswith(
        b"  url: ssh://git@example.com/foobar/quux.git\n"
    )
    message, filters = git.commits[0]
    assert message == "Add App manifests"
    assert filters[0](".wego/apps/quux/app.yaml") is True
    assert filters[0]("README.md") is False
    assert git.pushes == 1
    assert params.name == ""


def test_wet_run_uses_remote_url_and_directory_name(workdir):
    flux = RecordingFlux(fail_flux)
    git = IgnoreGit()
    deps = make_deps(git=git)
    with fluxops.flux_handler_override(flux):
        add(["."], AddParams(path="./foo"), deps)
    assert ".wego/apps/my-app-dot-foo/app.yaml" in git.writes
    assert any('--url="ssh://git@example.com/auser/arepo"' in call for call in flux.calls)


def test_wet_run_without_config_repo(workdir):
    git = IgnoreGit()
    cluster = FakeCluster()
    deps = make_deps(git=git, cluster=cluster)
    with fluxops.flux_handler_override(RecordingFlux(fail_flux)):
        add(["."], AddParams(path="./foo", app_config_url="none"), deps)
    assert len(cluster.applied) == 3
    assert b"name: my-app-dot-foo" in cluster.applied[1][1]
    assert git.writes == {}
    assert git.commits == []


def test_wet_run_with_external_config_repo(workdir):
    git = IgnoreGit()
    cluster = FakeCluster()
    deps = make_deps(git=git, cluster=cluster)
    params = AddParams(path="./foo", app_config_url="ssh://git@example.com/aUser/aRepo")
    with fluxops.flux_handler_override(RecordingFlux(fail_flux)):
        add(["."], params, deps)
    clone_dir, clone_url, branch = git.clones[0]
    assert (clone_url, branch) == ("ssh://git@example.com/aUser/aRepo", "main")
    assert not os.path.exists(clone_dir)
    assert sorted(git.writes) == [
        "apps/my-app-dot-foo/app.yaml",
        "targets/test/my-app-dot-foo/my-app-dot-foo-gitops-runtime.yaml",
    ]
    assert len(cluster.applied) == 3
    assert git.pushes == 1


def test_up_to_date_manifests_are_not_pushed(workdir, capsys):
    git = IgnoreGit(staged=False)
    deps = make_deps(git=git)
    with fluxops.flux_handler_override(RecordingFlux(fail_flux)):
        add(["."], AddParams(url="ssh://git@example.com/foobar/quux.git"), deps)
    assert git.pushes == 0
    assert "App manifests are up to date" in capsys.readouterr().out


def test_scp_style_url_is_converted(workdir, capsys):
    flux = RecordingFlux(fail_flux)
    params = AddParams(url="git@example.com:auser/arepo.git", dry_run=True, app_config_url="NONE")
    with fluxops.flux_handler_override(flux):
        add(["."], params, make_deps(git=FailGit()))
    assert "using URL: 'ssh://git@example.com/auser/arepo.git'" in capsys.readouterr().out
    assert any('--url="ssh://git@example.com/auser/arepo.git"' in c for c in flux.calls)


def test_chart_selects_helm_release(workdir):
    flux = RecordingFlux(fail_flux)
    params = AddParams(
        url="ssh://git@example.com/o/charts.git", chart="mychart", dry_run=True,
        app_config_url="NONE",
    )
    with fluxops.flux_handler_override(flux):
        add(["."], params, make_deps(git=FailGit()))
    releases = [c for c in flux.calls if c.startswith("create helmrelease")]
    assert len(releases) == 1
    assert '--source="HelmRepository/charts"' in releases[0]
    assert '--chart="mychart"' in releases[0]


def test_commit_failure_is_reported(workdir):
    class BrokenGit(IgnoreGit):
        def commit(self, message, author_name, author_email, filters=()):
            raise OSError("disk full")

    deps = make_deps(git=BrokenGit())
    with fluxops.flux_handler_override(RecordingFlux(fail_flux)):
        with pytest.raises(RuntimeError, match="failed to commit sync manifests: disk full"):
            add(["."], AddParams(url="ssh://git@example.com/o/r.git"), deps)