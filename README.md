# wego

`wego` sets up GitOps automation for applications on a Kubernetes cluster.
It drives a Flux executable to create sources, kustomizations and Helm
releases, applies them with `kubectl`, and keeps the generated manifests in a
git repository so that the cluster follows what is committed.

## Requirements

- Python 3.10 or later
- `kubectl` configured for the target cluster
- `git`
- A Flux executable at `~/.wego/bin/flux-<version>`, where `<version>` is
  taken from the `WEGO_FLUX_VERSION` environment variable (`undefined` when
  it is not set)
- The `hub` command line tool, used to register deploy keys when an
  application is added

## Installation

```console
pip install .
```

For running the tests:

```console
pip install ".[test]"
pytest
```

## Usage

Global options, given before the command:

- `--namespace` — the GitOps runtime namespace used by `app add` and
  `app status` (default `wego-system`)
- `-v`, `--verbose` — log at debug level

Running `wego` with no command prints the help text.

### Install the runtime

```console
wego install
wego install --namespace my-namespace
wego install --dry-run
wego install --app-crd path/to/app-crd.yaml
```

`install` has its own `-n`/`--namespace` option (default `wego-system`).
It refuses to run when the cluster already has a `flux-system` namespace.
Otherwise it installs Flux with the image reflector and image automation
controllers and applies the application CRD with `kubectl apply`. With
`--dry-run` the Flux manifests and the CRD are printed instead.

The CRD manifest is read from `--app-crd`, or else from
`manifests/app-crd.yaml` inside the installed package; if neither is
available, `install` fails with an error.

### Add an application

```console
wego app add .
wego app add --url ssh://git@example.com/owner/repo.git --path ./deploy
wego app add . --deployment-type helm --path ./chart
wego app add . --app-config-url NONE
wego app add . --dry-run
```

| Option | Default | Meaning |
| --- | --- | --- |
| `--name` | derived from the repository and path | application name |
| `--url` | first URL of the `origin` remote of the directory | URL of the application repository |
| `--path` | `./` | path of the manifests within the repository |
| `--branch` | `main` | branch to follow |
| `--deployment-type` | `kustomize` | `kustomize` or `helm` |
| `--chart` | | Helm chart; switches to a Helm repository source and Helm deployment |
| `--app-config-url` | | repository for the automation manifests; `NONE` keeps them only in the cluster |
| `--owner` | | owner of the remote repository |
| `--dry-run` | off | print what would be done without changing anything |

URLs of the form `user@host:path` are rewritten to `ssh://user@host/path`.

Before anything is created the cluster is inspected: if the
`apps.wego.weave.works` CRD is missing and there is no `flux-system`
namespace, or the state cannot be determined, `add` stops with an error.

Where the automation manifests go depends on `--app-config-url`:

- empty (the default): the source and kustomizations are applied to the
  cluster, and `app.yaml` and the deployment manifest are written under
  `.wego/` in the application repository, committed and pushed;
- `NONE`: the source, `app.yaml` and the deployment manifest are applied
  straight to the cluster;
- a URL: that repository is cloned to a temporary directory, its own source
  and kustomizations are applied, and the application's manifests are
  written into it, committed and pushed.

For git sources a Flux git secret is created and its deploy key is
registered with `hub api repos/<owner>/<repo>/keys`.

### Application status

```console
wego app status podinfo
```

Prints the time of the latest successful deployment followed by the Flux
status of all the application's resources.

### Run Flux directly

```console
wego flux get all -A
wego flux status
```

Anything after `flux` is passed unchanged to the Flux executable, and its
combined output is printed. `wego flux status` prints the latest log line of
each Flux controller.

### Version

```console
wego version
```

### Web UI

```console
wego-ui
wego-ui --port 8080 --assets-dir path/to/dist
```

Serves the web interface on port 9001 by default, from the `dist` directory
inside the package unless `--assets-dir` is given. Paths with a file
extension are served as static files; every other path returns `index.html`
so that the client-side router can take over. `/health/` answers with 200
and `/api/` with `{"ok":true}`.

## Library use

The command implementations are plain functions:

```python
from wego.install import InstallParams, install
from wego.status import app_status
from wego.params import AddParams

install(InstallParams(namespace="wego-system", dry_run=True))
app_status(AddParams(name="podinfo", namespace="wego-system"))
```

Calls to Flux go through a replaceable handler, a subclass of
`wego.fluxops.FluxHandler` with a `handle(args)` method:

```python
from wego import fluxops

class EchoHandler(fluxops.FluxHandler):
    def handle(self, args):
        return args.encode()

with fluxops.flux_handler_override(EchoHandler()):
    print(fluxops.install("wego-system", True))
```

`wego.fluxbin.setup_flux_bin(binary)` writes a Flux executable to the
expected location, clearing out binaries of other versions.

## What it does not do

- It ships no Flux executable; one must be placed under `~/.wego/bin`
  (for example with `setup_flux_bin`) before the commands that call Flux
  will work.
- It does not build the web interface; `wego-ui` only serves files that are
  already in the asset directory.
- It does not check for newer releases of itself.