"""Calls to the flux tool through a replaceable handler."""

from __future__ import annotations

import abc
import contextlib
import os
import shlex
from collections.abc import Iterator

import yaml

from wego.commands import run_command, run_command_silently

FLUX_VERSION = os.environ.get("WEGO_FLUX_VERSION", "undefined")


class FluxHandler(abc.ABC):
    """Something that runs flux with an argument string."""

    @abc.abstractmethod
    def handle(self, args: str) -> bytes:
        """Run flux with the given arguments and return its output."""


class DefaultFluxHandler(FluxHandler):
    """Runs the flux binary, echoing its output."""

    def handle(self, args: str) -> bytes:
        return run_command(f"{shlex.quote(flux_path())} {args}")


class QuietFluxHandler(FluxHandler):
    """Runs the flux binary without echoing its output."""

    def handle(self, args: str) -> bytes:
        return run_command_silently(f"{shlex.quote(flux_path())} {args}")


class _HandlerSlot:
    """Holds the handler currently in force."""

    __slots__ = ("current",)

    def __init__(self, handler: FluxHandler) -> None:
        self.current = handler


_slot = _HandlerSlot(DefaultFluxHandler())


def set_flux_handler(handler: FluxHandler) -> None:
    """Make the given handler the one that runs flux."""
    if not callable(getattr(handler, "handle", None)):
        raise TypeError(f"flux handler must have a handle method, got {handler!r}")
    _slot.current = handler


def get_flux_handler() -> FluxHandler:
    """Return the handler currently in force."""
    return _slot.current


@contextlib.contextmanager
def flux_handler_override(handler: FluxHandler) -> Iterator[FluxHandler]:
    """Put a handler in force for the duration of a block."""
    original = _slot.current
    set_flux_handler(handler)
    try:
        yield handler
    finally:
        _slot.current = original


@contextlib.contextmanager
def _quietly() -> Iterator[None]:
    # Only the default handler is swapped; a custom handler stays in force.
    if isinstance(_slot.current, DefaultFluxHandler):
        with flux_handler_override(QuietFluxHandler()):
            yield
    else:
        yield


def _home_dir() -> str:
    name = "USERPROFILE" if os.name == "nt" else "HOME"
    home = os.environ.get(name)
    if not home:
        raise RuntimeError(f"${name} is not defined")
    return home


def flux_path() -> str:
    """Return where the flux binary of the configured version lives."""
    return os.path.join(_home_dir(), ".wego", "bin", f"flux-{FLUX_VERSION}")


def call_flux(*args: str) -> bytes:
    """Run flux with the arguments joined by spaces."""
    return _slot.current.handle(" ".join(args))


def install(namespace: str, export: bool) -> bytes:
    """Install flux into a namespace, or only print the manifests when exporting."""
    args = [
        "install",
        f"--namespace={namespace}",
        "--components-extra=image-reflector-controller,image-automation-controller",
    ]
    if export:
        args.append("--export")
    return call_flux(*args)


def quiet_install(namespace: str) -> bytes:
    """Install flux into a namespace."""
    return install(namespace, False)


def get_all_resources_status(app_name: str) -> bytes:
    """Return the flux status of every resource of an application."""
    with _quietly():
        return call_flux("get", "all", "-A", app_name)


def get_all_resources(namespace: str) -> bytes:
    """Return every flux resource in a namespace."""
    with _quietly():
        return call_flux("get", "all", "-n", namespace)


def get_owner_from_env() -> str:
    """Return the owner for new repositories from GITHUB_ORG or hub credentials."""
    if "GITHUB_ORG" in os.environ:
        return os.environ["GITHUB_ORG"]
    return get_user_from_hub_credentials()


def get_user_from_hub_credentials() -> str:
    """Return the github.com user named in ~/.config/hub."""
    path = os.path.join(_home_dir(), ".config", "hub")
    with open(path, encoding="utf-8") as config:
        data = yaml.safe_load(config)
    try:
        user = data["github.com"][0]["user"]
    except (TypeError, KeyError, IndexError) as exc:
        raise ValueError(f"no github.com user in {path}") from exc
    if not isinstance(user, str):
        raise ValueError(f"no github.com user in {path}")
    return user