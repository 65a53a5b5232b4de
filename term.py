"""Terminal output: colors and one-line status messages on stderr."""

import sys

C_RESET = "\033[0m"
C_RED = "\033[31m"
C_GREEN = "\033[32m"
C_YELLOW = "\033[33m"
C_BLUE = "\033[34m"
C_CYAN = "\033[36m"
C_DIM = "\033[2m"
C_BOLD = "\033[1m"
C_ITALIC = "\033[3m"

if not sys.stderr.isatty():
    C_RESET = C_RED = C_GREEN = C_YELLOW = C_BLUE = C_CYAN = C_DIM = C_BOLD = C_ITALIC = ""


def status(icon, msg):
    print(f"  {icon}  {msg}", file=sys.stderr)


def warn(msg):
    status(f"{C_YELLOW}!{C_RESET}", f"{C_YELLOW}{msg}{C_RESET}")
