"""Running shell commands and collecting what they print."""

from __future__ import annotations

import subprocess
import sys


class CommandError(Exception):
    """A shell command finished with a non-zero exit status."""

    def __init__(
        self,
        command: str,
        returncode: int,
        output: bytes = b"",
        stderr: bytes = b"",
    ) -> None:
        super().__init__(f"exit status {returncode}")
        self.command = command
        self.returncode = returncode
        self.output = output
        self.stderr = stderr


def _echo(data: bytes) -> None:
    if data:
        sys.stdout.write(data.decode("utf-8", errors="replace"))
        sys.stdout.flush()


def _run_combined(command: str, input_bytes: bytes | None = None) -> bytes:
    completed = subprocess.run(
        command,
        shell=True,
        input=input_bytes,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )
    if completed.returncode != 0:
        raise CommandError(command, completed.returncode, output=completed.stdout)
    return completed.stdout


def run_command(command: str) -> bytes:
    """Run a shell command, echo its combined output and return it."""
    try:
        output = _run_combined(command)
    except CommandError as exc:
        _echo(exc.output)
        raise
    _echo(output)
    return output


def run_command_silently(command: str) -> bytes:
    """Run a shell command and return its combined output without echoing it."""
    return _run_combined(command)


def run_command_separating_streams(command: str) -> tuple[bytes, bytes]:
    """Run a shell command and return its standard output and error apart."""
    completed = subprocess.run(
        command,
        shell=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    if completed.returncode != 0:
        raise CommandError(
            command,
            completed.returncode,
            output=completed.stdout,
            stderr=completed.stderr,
        )
    return completed.stdout, completed.stderr


def run_command_with_input(command: str, input_text: str | bytes) -> None:
    """Run a shell command with the given text on its standard input."""
    data = input_text.encode("utf-8") if isinstance(input_text, str) else input_text
    try:
        output = _run_combined(command, data)
    except CommandError as exc:
        _echo(exc.output)
        raise
    _echo(output)