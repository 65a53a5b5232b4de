"""Failure context collection.

Runs the wrapped command, then gathers what the analysis needs: cwd,
recent shell history and a few environment facts. Collection is read-only
and best-effort: anything that fails or is too slow becomes None.
"""

import asyncio
import os
import platform
import subprocess
import time

from protocol import (
    CONTEXT_TIMEOUT, HISTORY_LIMIT, PROBE_TIMEOUT,
    ContextCollectionError, EnvironmentInfo, ExecutionResult, FailureContext,
)

# Environment field -> version command
PROBES = {
    "python": ["python3", "--version"],
    "node": ["node", "--version"],
    "docker": ["docker", "--version"],
    "git": ["git", "--version"],
}


# --- Wrapped command ---

def run_command(command):
    """Run the user's command once, capturing output. Never raises for exit codes."""
    start = time.monotonic()
    proc = subprocess.run(command, shell=True, capture_output=True, text=True)
    return ExecutionResult(
        command=command,
        exit_code=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        duration=time.monotonic() - start,
    )


# --- Shell history ---

def _history_file():
    histfile = os.environ.get("HISTFILE")
    if histfile:
        return histfile
    if "zsh" in os.environ.get("SHELL", ""):
        return os.path.expanduser("~/.zsh_history")
    return os.path.expanduser("~/.bash_history")


def read_history(limit=HISTORY_LIMIT, histfile=None):
    """Last `limit` commands from the shell history file, oldest first.

    ai-run's own invocations are skipped. Missing or unreadable history
    gives an empty list.
    """
    path = histfile or _history_file()
    try:
        with open(path, "rb") as f:
            # Read last few KB (history can be huge)
            f.seek(0, 2)
            size = f.tell()
            f.seek(max(0, size - 8192))
            data = f.read().decode("utf-8", errors="replace")
    except OSError:
        return []

    commands = []
    for line in reversed(data.strip().splitlines()):
        line = line.strip()
        # zsh extended history: ": timestamp:0;command"
        if line.startswith(":") and ";" in line:
            line = line.split(";", 1)[1].strip()
        if not line or line == "ai-run" or line.startswith("ai-run "):
            continue
        commands.append(line)
        if len(commands) >= limit:
            break
    commands.reverse()
    return commands


# --- Environment probes ---

def static_environment():
    """Facts that need no subprocess: OS and login shell."""
    shell = os.environ.get("SHELL")
    return EnvironmentInfo(
        os=f"{platform.system()} {platform.release()}".strip() or None,
        shell=os.path.basename(shell) if shell else None,
    )


async def run_probe(argv, timeout=PROBE_TIMEOUT):
    """Run one version probe; first line of its output.

    Raises ContextCollectionError when the tool is missing, fails, or is
    slower than timeout. The child is killed if it is still running when
    we give up (including on cancellation).
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ContextCollectionError(f"{argv[0]}: {e}") from e

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout)
    except asyncio.TimeoutError:
        raise ContextCollectionError(f"{argv[0]}: no answer within {timeout}s") from None
    finally:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()

    if proc.returncode != 0:
        raise ContextCollectionError(f"{argv[0]}: exit {proc.returncode}")
    lines = (out or err).decode("utf-8", errors="replace").strip().splitlines()
    if not lines:
        raise ContextCollectionError(f"{argv[0]}: no output")
    return lines[0].strip()


async def _probe_or_none(argv, timeout):
    try:
        return await run_probe(argv, timeout)
    except ContextCollectionError:
        return None


async def collect_environment(probes=None, probe_timeout=PROBE_TIMEOUT,
                              overall_timeout=CONTEXT_TIMEOUT):
    """Run all probes concurrently. Returns EnvironmentInfo within overall_timeout.

    Each probe has its own timeout so one slow tool cannot stall the rest;
    probes still running at the overall cap are cancelled and reported as None.
    """
    probes = PROBES if probes is None else probes
    tasks = {
        name: asyncio.ensure_future(_probe_or_none(argv, probe_timeout))
        for name, argv in probes.items()
    }
    done = set()
    if tasks:
        done, pending = await asyncio.wait(tasks.values(), timeout=overall_timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    versions = {name: task.result() for name, task in tasks.items() if task in done}
    base = static_environment()
    return EnvironmentInfo(
        os=base.os,
        shell=base.shell,
        python=versions.get("python"),
        node=versions.get("node"),
        docker=versions.get("docker"),
        git=versions.get("git"),
    )


def build_context(result, environment=None, history=None, cwd=None):
    """Snapshot of a failed run. Only meaningful for a failed ExecutionResult."""
    return FailureContext(
        command=result.command,
        exit_code=result.exit_code,
        stderr=result.stderr,
        cwd=cwd or os.getcwd(),
        history=tuple(history or ()),
        environment=environment or EnvironmentInfo(),
    )
