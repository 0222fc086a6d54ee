"""Console output shared by every hey-omarchy tool."""

import sys


# ── Nerd Font icons ──────────────────────────────────────────────────────────

class I:
    ROCKET   = "\uf135"
    CHECK    = "\uf058"   # check-circle
    OK       = "\uf00c"   # check
    WARN     = "\uf071"   # exclamation-triangle
    ERROR    = "\uf057"   # times-circle
    EYE      = "\uf06e"   # eye (dry-run)
    SKIP     = "\uf04e"   # forward
    UNDO     = "\uf0e2"   # rotate-left
    PACKAGE  = "\uf187"   # archive
    COGS     = "\uf085"   # cogs
    WRENCH   = "\uf0ad"   # wrench
    GLOBE    = "\uf0ac"   # globe
    DOWNLOAD = "\uf019"   # download
    TOGGLE   = "\uf205"   # toggle-on
    BAN      = "\uf05e"   # ban (disable)
    SIGNAL   = "\uf012"   # signal (wwan)
    RECYCLE  = "\uf1b8"   # recycle (reset)
    FINGER   = "\uf577"   # fingerprint
    SHIELD   = "\uf132"   # shield (pam)
    DESKTOP  = "\uf108"   # desktop (display)
    CUBES    = "\uf1b3"   # cubes (3d)
    TRASH    = "\uf1f8"   # trash


# ── ANSI helpers ─────────────────────────────────────────────────────────────

class C:
    BOLD   = "\033[1m"
    DIM    = "\033[2m"
    GREEN  = "\033[32m"
    YELLOW = "\033[33m"
    RED    = "\033[31m"
    CYAN   = "\033[36m"
    RESET  = "\033[0m"

# TTY check runs once at import time against the real stdout.
if not sys.stdout.isatty():
    C.BOLD = C.DIM = C.GREEN = C.YELLOW = C.RED = ""
    C.CYAN = C.RESET = ""


def banner(title: str) -> None:
    print(f"\n{C.BOLD}{C.CYAN}{'─' * 60}")
    print(f"  {title}")
    print(f"{'─' * 60}{C.RESET}")


def section(icon: str, title: str, step: int, total: int) -> None:
    tag = f"{C.DIM}[{step}/{total}]{C.RESET}"
    print(f"\n{C.BOLD}{C.CYAN}{icon}  {title}  {tag}{C.RESET}")


def info(msg: str) -> None:
    print(f"  {C.GREEN}{I.OK}{C.RESET}  {msg}")


def warn(msg: str) -> None:
    print(f"  {C.YELLOW}{I.WARN}{C.RESET}  {msg}")


def error(msg: str) -> None:
    print(f"  {C.RED}{I.ERROR}{C.RESET}  {msg}", file=sys.stderr)


def skip(msg: str) -> None:
    print(f"  {C.DIM}{I.SKIP}  {msg}{C.RESET}")


def dry(msg: str) -> None:
    print(f"  {C.YELLOW}{I.EYE}  [DRY RUN]{C.RESET} {msg}")


def note(lines) -> None:
    """Print a dimmed free-form block (hints, next steps)."""
    print()
    for line in lines:
        print(f"  {C.DIM}{line}{C.RESET}" if line else "")
