"""Risk classifier: escalate fixes whose final command text looks destructive.

Classification runs on the substituted command, so anything interpolated
from stderr or the original command is scanned too. It only escalates:
a fix declared Medium stays Medium whatever the text says.
"""

import re

from protocol import RiskLevel


def _word(token):
    """Match token as a whole shell word (not inside pseudo, --format, sudoers...)."""
    return rf"(?<![\w-]){token}(?![\w-])"


# (name, pattern) -- names show up in fix reasoning
DANGER_PATTERNS = [
    ("sudo", _word("sudo")),
    ("su", _word("su") + r"(?=\s|$)"),
    ("doas", _word("doas")),
    ("rm -rf", _word("rm") + r"\s+(?:\S+\s+)*?-[a-z]*[rf]"),
    ("dd", _word("dd") + r"\s"),
    ("mkfs", r"(?<![\w-])mkfs(?:\.\w+)?(?![\w-])"),
    ("format", _word("format")),
    ("fdisk", _word("(?:fdisk|parted|wipefs)")),
    ("shred", _word("shred")),
    ("chmod -R", _word("chmod") + r"\s+(?:\S+\s+)*?-[a-z]*R"),
    ("chown -R", _word("chown") + r"\s+(?:\S+\s+)*?-[a-z]*R"),
    ("chmod 777", _word("chmod") + r"\s+(?:-\S+\s+)*0?777\b"),
    ("redirect", r">(?!&[0-9-])"),
    ("block device", r"/dev/(?:sd|nvme|hd|mmcblk|disk)"),
    ("git reset --hard", r"\bgit\s+reset\s+--hard\b"),
    ("git clean", r"\bgit\s+clean\s+(?:\S+\s+)*?-[a-z]*f"),
    ("git push --force", r"\bgit\s+push\b.*\s(?:--force\b|-f\b)"),
    ("kill", _word("(?:kill|killall|pkill)")),
    ("shutdown", _word("(?:shutdown|reboot|halt|poweroff)")),
    ("truncate", _word("truncate")),
    ("pipe to shell", r"\|\s*(?:sudo\s+)?(?:ba|z|da)?sh\b"),
    ("fork bomb", r":\(\)\s*\{"),
]

# Case-insensitive: "SUDO" and "Rm -Rf" count too
_COMPILED = [(name, re.compile(pattern, re.IGNORECASE)) for name, pattern in DANGER_PATTERNS]


def danger_signals(command):
    """Names of every danger pattern found in command, in table order."""
    return [name for name, rx in _COMPILED if rx.search(command)]


def classify(command, declared_risk):
    """Effective risk: declared risk, raised to Medium if any danger pattern matches."""
    declared = RiskLevel.parse(declared_risk)
    if danger_signals(command):
        return max(declared, RiskLevel.MEDIUM, key=lambda r: r.rank)
    return declared
