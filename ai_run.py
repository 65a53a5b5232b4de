#!/usr/bin/env python3
"""ai-run -- run a command; if it fails, suggest fixes you can approve.

Usage:
    ai-run <command> [args...]          Run command; on failure, diagnose and offer fixes
    ai-run init                         Create a .ai-run.py config for this project

Options:
    ai-run --no-ai <command>            Pattern matching only, no LLM call
    ai-run --dry-run <command>          Show fixes without prompting
    ai-run --learn <command>            Explain why each fix was suggested

Config:
    ~/.ai-run/config.py                 Global config (Python)
    .ai-run.py                          Project config (overrides global)

    Config vars: ai_enabled, ai_confidence_threshold, max_fixes, learning_mode,
                 model, api_url, ai_timeout, patterns_file, redact

Nothing runs without your say-so: pick a fix by number or press Enter to skip.
Exit code is the original command's, or the fix's if you ran one.
"""

import asyncio
import dataclasses
import os
import shlex
import sys

sys.path.insert(0, os.path.dirname(os.path.realpath(__file__)))

from ai import adapter_from_config
from config import generate_config, load_config
from confirm import ConfirmationMachine
from context import build_context, collect_environment, read_history, run_command, static_environment
from matcher import match
from merger import merge
from patterns import load_pattern_table
from protocol import ConfigError, UserInputError
from ranker import rank
from term import C_BOLD, C_CYAN, C_DIM, C_RED, C_RESET, status

EXIT_USAGE = 1
EXIT_INTERRUPTED = 130


# --- Pipeline ---

async def triage(result, cfg, table, adapter=None, history=(), probes=None):
    """Failed ExecutionResult -> (FailureContext, Analysis, ranked fixes).

    The AI call and the environment probes run concurrently; the AI sees
    the static environment facts, the matcher sees the full context.
    """
    ai_task = None
    if adapter is not None:
        early = build_context(result, environment=static_environment(), history=history)
        ai_task = asyncio.ensure_future(adapter.analyze(early))

    environment = await collect_environment(probes)
    context = build_context(result, environment=environment, history=history)
    heuristic = match(context, table)

    ai_result = await ai_task if ai_task is not None else None
    analysis = merge(heuristic, ai_result, threshold=cfg.ai_confidence_threshold)
    return context, analysis, rank(analysis, cfg.max_fixes)


# --- Output ---

def render_analysis(analysis, learning_mode=False):
    print(file=sys.stderr)
    status(f"{C_CYAN}◆{C_RESET}", f"{C_BOLD}{analysis.root_cause}{C_RESET}")
    status(" ", f"{C_DIM}{analysis.error_type.value}, {analysis.confidence.value} confidence"
                f" ({analysis.analysis_method.value}){C_RESET}")
    if learning_mode and analysis.reasoning:
        status(" ", f"{C_DIM}{analysis.reasoning}{C_RESET}")


# --- CLI ---

def parse_args(argv):
    """Split argv into (flags, command). Raises UserInputError.

    A single argument is taken as a shell command line as-is; several are
    quoted back into one so each keeps its word boundaries.
    """
    flags = {"no_ai": False, "dry_run": False, "learn": False}
    rest = list(argv)
    while rest and rest[0].startswith("--"):
        a = rest.pop(0)
        if a == "--no-ai":
            flags["no_ai"] = True
        elif a == "--dry-run":
            flags["dry_run"] = True
        elif a == "--learn":
            flags["learn"] = True
        elif a == "--":
            break
        else:
            raise UserInputError(f"unknown option: {a}")
    if not rest:
        raise UserInputError("no command given")
    if len(rest) == 1:
        return flags, rest[0]
    return flags, shlex.join(rest)


def run(command, cfg, dry_run=False):
    """Run command; on failure, triage and confirm. Returns the process exit code."""
    status(f"{C_DIM}▸{C_RESET}", f"{C_BOLD}{command}{C_RESET}")
    result = None
    try:
        result = run_command(command)
        if result.stdout:
            sys.stdout.write(result.stdout)
            sys.stdout.flush()
        if result.stderr:
            sys.stderr.write(result.stderr)
        if not result.failed:
            return 0
        status(f"{C_RED}✗{C_RESET}", f"Exited {result.exit_code}")

        table = load_pattern_table(cfg.patterns_file)
        adapter = adapter_from_config(cfg)
        if adapter is not None:
            status(f"{C_DIM}○{C_RESET}", f"{C_DIM}Asking {cfg.model}...{C_RESET}")
        _, analysis, fixes = asyncio.run(
            triage(result, cfg, table, adapter=adapter, history=read_history()))

        render_analysis(analysis, cfg.learning_mode)
        machine = ConfirmationMachine(fixes, result.exit_code, learning_mode=cfg.learning_mode)
        return machine.run(dry_run=dry_run)
    except KeyboardInterrupt:
        print(file=sys.stderr)
        return result.exit_code if result is not None else EXIT_INTERRUPTED
    except Exception as e:
        # Top boundary: report, keep the original failure's exit code
        status(f"{C_RED}!{C_RESET}", f"internal error: {e}")
        return (result.exit_code if result is not None else 0) or 1


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    if argv and argv[0] in ("-h", "--help"):
        print(__doc__.strip())
        return 0

    if argv == ["init"]:
        try:
            path = generate_config()
        except ConfigError as e:
            status(f"{C_RED}!{C_RESET}", str(e))
            return EXIT_USAGE
        print(f"Created {path}")
        return 0

    try:
        flags, command = parse_args(argv)
    except UserInputError as e:
        print(f"ai-run: {e}\n", file=sys.stderr)
        print(__doc__.strip(), file=sys.stderr)
        return EXIT_USAGE

    cfg = load_config()

    if flags["no_ai"]:
        cfg = dataclasses.replace(cfg, ai_enabled=False)
    if flags["learn"]:
        cfg = dataclasses.replace(cfg, learning_mode=True)

    return run(command, cfg, dry_run=flags["dry_run"])


if __name__ == "__main__":
    sys.exit(main())
