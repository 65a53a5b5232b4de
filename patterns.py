"""Pattern table: failure-matching rules.

Rules are plain data in the pattern-file schema:

    {"id": "...", "error_type": "permission_denied", "regex": "...",
     "confidence": 0.9, "explanation": "...",
     "fixes": [{"command": "...", "explanation": "...", "risk": "low"}]}

The built-in rules below and any user pattern file go through the same
validation. Declaration order is the tie-break order, so user rules come
first and the table is a tuple: loaded once, never mutated.
"""

import json
import re

from matcher import template_fields
from protocol import ErrorType, FixTemplate, PatternError, PatternRule, RiskLevel
from term import warn

BUILTIN_RULES = [
    # --- Permission ---
    {
        "id": "script-not-executable",
        "error_type": "permission_denied",
        "regex": r"^\S*sh: (?:line \d+: |\d+: )?(?P<target_file>[^\s:]+): Permission denied",
        "confidence": 0.95,
        "explanation": "The script is not marked executable.",
        "fixes": [
            {"command": "chmod +x {target_file}", "explanation": "Mark the script executable", "risk": "low"},
            {"command": "bash {target_file}", "explanation": "Run the script through bash directly", "risk": "low"},
        ],
    },
    {
        "id": "zsh-permission-denied",
        "error_type": "permission_denied",
        "regex": r"^zsh: permission denied: (?P<target_file>\S+)",
        "confidence": 0.95,
        "explanation": "The script is not marked executable.",
        "fixes": [
            {"command": "chmod +x {target_file}", "explanation": "Mark the script executable", "risk": "low"},
        ],
    },
    {
        "id": "docker-socket-denied",
        "error_type": "permission_denied",
        "regex": r"permission denied while trying to connect to the Docker daemon socket",
        "confidence": 0.9,
        "explanation": "Your user cannot access the Docker daemon socket.",
        "fixes": [
            {"command": "sudo usermod -aG docker $USER", "explanation": "Add yourself to the docker group (log out and back in afterwards)", "risk": "medium"},
            {"command": "sudo {original_command}", "explanation": "Run this once with root privileges", "risk": "medium"},
        ],
    },
    {
        "id": "npm-eacces",
        "error_type": "permission_denied",
        "regex": r"npm ERR! code EACCES",
        "confidence": 0.85,
        "explanation": "npm tried to write to a directory owned by root.",
        "fixes": [
            {"command": "npm config set prefix ~/.npm-global", "explanation": "Install global packages under your home directory", "risk": "low"},
        ],
    },
    {
        "id": "permission-denied",
        "error_type": "permission_denied",
        "regex": r"(?i)permission denied|operation not permitted|EACCES",
        "confidence": 0.8,
        "explanation": "The command lacks permission for a file or resource.",
        "fixes": [
            {"command": "sudo {original_command}", "explanation": "Retry with root privileges", "risk": "medium"},
        ],
    },
    {
        "id": "exit-126",
        "error_type": "permission_denied",
        "regex": r"exit status 126$",
        "confidence": 0.6,
        "explanation": "Exit status 126: the command was found but could not be executed.",
        "fixes": [
            {"command": "ls -l {target_file}", "explanation": "Inspect the file's permissions", "risk": "low"},
        ],
    },
    # --- Command not found ---
    {
        "id": "command-not-found",
        "error_type": "command_not_found",
        "regex": r"^\S*sh: (?:line \d+: |\d+: )?(?P<missing>[\w.+-]+): (?:command )?not found",
        "confidence": 0.9,
        "explanation": "The program is not installed or not on PATH.",
        "fixes": [
            {"command": "command -v {missing}", "explanation": "Check whether it is on PATH under this name", "risk": "low"},
            {"command": "sudo apt-get install -y {missing}", "explanation": "Install it with the system package manager", "risk": "medium"},
        ],
    },
    {
        "id": "zsh-command-not-found",
        "error_type": "command_not_found",
        "regex": r"^zsh: command not found: (?P<missing>[\w.+-]+)",
        "confidence": 0.9,
        "explanation": "The program is not installed or not on PATH.",
        "fixes": [
            {"command": "sudo apt-get install -y {missing}", "explanation": "Install it with the system package manager", "risk": "medium"},
        ],
    },
    {
        "id": "exit-127",
        "error_type": "command_not_found",
        "regex": r"exit status 127$",
        "confidence": 0.6,
        "explanation": "Exit status 127: the shell could not find the command.",
        "fixes": [
            {"command": "command -v {command_name}", "explanation": "Check whether it is on PATH", "risk": "low"},
        ],
    },
    # --- Missing dependency ---
    {
        "id": "python-module-not-found",
        "error_type": "missing_dependency",
        "regex": r"(?:ModuleNotFoundError|ImportError): No module named '(?P<module>[\w]+)",
        "confidence": 0.9,
        "explanation": "A Python module is not installed in the active environment.",
        "fixes": [
            {"command": "python3 -m pip install {module}", "explanation": "Install the module with pip", "risk": "low"},
            {"command": "python3 -m pip install --user {module}", "explanation": "Install the module for your user only", "risk": "low"},
        ],
    },
    {
        "id": "pip-externally-managed",
        "error_type": "configuration_error",
        "regex": r"error: externally-managed-environment",
        "confidence": 0.9,
        "explanation": "The system Python refuses pip installs outside a virtual environment.",
        "fixes": [
            {"command": "python3 -m venv .venv && . .venv/bin/activate && {original_command}", "explanation": "Create a virtual environment and retry inside it", "risk": "low"},
        ],
    },
    {
        "id": "node-module-not-found",
        "error_type": "missing_dependency",
        "regex": r"Cannot find module '(?P<module>[@\w][\w./@-]*)'",
        "confidence": 0.85,
        "explanation": "A Node.js package is not installed.",
        "fixes": [
            {"command": "npm install", "explanation": "Install the project's declared dependencies", "risk": "low"},
            {"command": "npm install {module}", "explanation": "Install the missing package", "risk": "low"},
        ],
    },
    {
        "id": "shared-library-missing",
        "error_type": "missing_dependency",
        "regex": r"error while loading shared libraries: (?P<library>[\w.+-]+)",
        "confidence": 0.8,
        "explanation": "A shared library the program links against is missing.",
        "fixes": [
            {"command": "ldd $(command -v {command_name})", "explanation": "List the libraries the program needs", "risk": "low"},
        ],
    },
    # --- Syntax errors ---
    {
        "id": "python-syntax-error",
        "error_type": "syntax_error",
        "regex": r"File \"(?P<target_file>[^\"]+)\", line (?P<line>\d+)[\s\S]*?(?:SyntaxError|IndentationError|TabError):",
        "confidence": 0.9,
        "explanation": "The Python source does not parse.",
        "fixes": [
            {"command": "python3 -m py_compile {target_file}", "explanation": "Show the exact parse error location", "risk": "low"},
        ],
    },
    {
        "id": "shell-syntax-error",
        "error_type": "syntax_error",
        "regex": r"syntax error near unexpected token|unexpected EOF while looking for matching|Syntax error:",
        "confidence": 0.8,
        "explanation": "The shell could not parse the command line or script.",
        "fixes": [
            {"command": "bash -n {target_file}", "explanation": "Check the script for syntax errors without running it", "risk": "low"},
        ],
    },
    # --- Files ---
    {
        "id": "no-such-file",
        "error_type": "file_not_found",
        "regex": r"(?P<target_file>[^\s:'\"]+)'?: No such file or directory",
        "confidence": 0.75,
        "explanation": "A file or directory the command needs does not exist.",
        "fixes": [
            {"command": "ls -la", "explanation": "List the current directory to check the name", "risk": "low"},
        ],
    },
    {
        "id": "not-a-git-repo",
        "error_type": "configuration_error",
        "regex": r"fatal: not a git repository",
        "confidence": 0.9,
        "explanation": "The current directory is not inside a git repository.",
        "fixes": [
            {"command": "git init", "explanation": "Create a new repository here", "risk": "low"},
        ],
    },
    {
        "id": "git-identity-unknown",
        "error_type": "configuration_error",
        "regex": r"Please tell me who you are|Author identity unknown",
        "confidence": 0.9,
        "explanation": "git has no user name or email configured.",
        "fixes": [
            {"command": "git config --global user.email \"you@example.com\" && git config --global user.name \"Your Name\"", "explanation": "Set your git identity (edit the values first)", "risk": "low"},
        ],
    },
    {
        "id": "git-unrelated-histories",
        "error_type": "configuration_error",
        "regex": r"refusing to merge unrelated histories",
        "confidence": 0.85,
        "explanation": "The branches being merged share no common commit.",
        "fixes": [
            {"command": "{original_command} --allow-unrelated-histories", "explanation": "Allow merging unrelated histories", "risk": "medium"},
        ],
    },
    {
        "id": "address-in-use",
        "error_type": "configuration_error",
        "regex": r"(?i)address already in use|port is already allocated|EADDRINUSE",
        "confidence": 0.85,
        "explanation": "Another process is already listening on the port.",
        "fixes": [
            {"command": "ss -ltnp", "explanation": "Show which processes are listening", "risk": "low"},
        ],
    },
    # --- Network ---
    {
        "id": "dns-failure",
        "error_type": "network_error",
        "regex": r"(?i)could not resolve host|temporary failure in name resolution|name or service not known|getaddrinfo",
        "confidence": 0.85,
        "explanation": "A hostname could not be resolved.",
        "fixes": [
            {"command": "cat /etc/resolv.conf", "explanation": "Check which DNS servers are configured", "risk": "low"},
        ],
    },
    {
        "id": "connection-failure",
        "error_type": "network_error",
        "regex": r"(?i)connection refused|connection timed out|network is unreachable|ECONNREFUSED|ETIMEDOUT",
        "confidence": 0.8,
        "explanation": "The remote service could not be reached.",
        "fixes": [
            {"command": "{original_command}", "explanation": "Retry the command (the failure may be transient)", "risk": "low"},
        ],
    },
]


def _compile_fix(raw, rule_id):
    if not isinstance(raw, dict):
        raise PatternError(f"rule '{rule_id}': each fix must be an object")
    command = raw.get("command")
    if not isinstance(command, str) or not command.strip():
        raise PatternError(f"rule '{rule_id}': fix command must be a non-empty string")
    try:
        template_fields(command)
    except ValueError as e:
        raise PatternError(f"rule '{rule_id}': bad placeholder in {command!r}: {e}") from e
    explanation = raw.get("explanation") or ""
    if not isinstance(explanation, str):
        raise PatternError(f"rule '{rule_id}': fix explanation must be a string")
    try:
        risk = RiskLevel.parse(raw.get("risk", "low"))
    except ValueError as e:
        raise PatternError(f"rule '{rule_id}': {e}") from e
    return FixTemplate(command.strip(), explanation.strip(), risk)


def compile_rule(raw):
    """Validate one raw rule dict into a PatternRule. Raises PatternError."""
    if not isinstance(raw, dict):
        raise PatternError(f"rule must be an object, got {type(raw).__name__}")

    rule_id = raw.get("id")
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise PatternError("rule is missing an 'id'")
    rule_id = rule_id.strip()

    try:
        error_type = ErrorType.parse(raw.get("error_type"))
    except ValueError as e:
        raise PatternError(f"rule '{rule_id}': {e}") from e

    source = raw.get("regex")
    if not isinstance(source, str) or not source:
        raise PatternError(f"rule '{rule_id}': regex must be a non-empty string")
    try:
        regex = re.compile(source, re.MULTILINE)
    except re.error as e:
        raise PatternError(f"rule '{rule_id}': bad regex: {e}") from e

    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise PatternError(f"rule '{rule_id}': confidence must be a number")
    if not 0.0 < confidence <= 1.0:
        raise PatternError(f"rule '{rule_id}': confidence must be in (0, 1], got {confidence}")

    fixes = raw.get("fixes", [])
    if not isinstance(fixes, list):
        raise PatternError(f"rule '{rule_id}': fixes must be a list")

    explanation = raw.get("explanation") or ""
    if not isinstance(explanation, str):
        raise PatternError(f"rule '{rule_id}': explanation must be a string")

    return PatternRule(
        id=rule_id,
        error_type=error_type,
        regex=regex,
        base_confidence=float(confidence),
        fix_templates=tuple(_compile_fix(f, rule_id) for f in fixes),
        explanation=explanation.strip(),
    )


def compile_rules(raw_rules, source="patterns"):
    """Compile a list of raw rules, skipping (and warning about) invalid ones."""
    rules = []
    for i, raw in enumerate(raw_rules):
        try:
            rules.append(compile_rule(raw))
        except PatternError as e:
            warn(f"{source}: skipping rule #{i + 1}: {e}")
    return rules


def load_pattern_file(path):
    """Read a JSON pattern file. Unreadable or malformed files yield no rules."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        warn(f"pattern file not found: {path}")
        return []
    except (OSError, ValueError) as e:
        warn(f"could not read pattern file {path}: {e}")
        return []
    if not isinstance(data, list):
        warn(f"pattern file {path} must contain a JSON list of rules")
        return []
    return compile_rules(data, source=path)


def load_pattern_table(patterns_file=None):
    """Build the process-wide pattern table: user rules first, then built-ins.

    Rules with a duplicate id are dropped (first declaration wins).
    """
    rules = []
    if patterns_file:
        rules.extend(load_pattern_file(patterns_file))
    rules.extend(compile_rules(BUILTIN_RULES, source="built-in patterns"))

    table = []
    seen = set()
    for rule in rules:
        if rule.id in seen:
            warn(f"skipping rule '{rule.id}': duplicate id")
            continue
        seen.add(rule.id)
        table.append(rule)
    return tuple(table)
