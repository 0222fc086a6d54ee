"""Command execution and file mutation on the local host.

Every tool goes through a ``Host`` so that sudo, --dry-run, --quiet and
timeouts behave the same everywhere.
"""

import os
import shutil
import subprocess
import sys
import tempfile
import time
from datetime import datetime
from pathlib import Path

from heyomarchy import ui

MASK = "******"

# timeout(1): grace before SIGKILL, and its exit status on expiry
WATCHDOG_KILL_AFTER = 5
WATCHDOG_EXPIRED = 124

SYSFS_TIMEOUT_SECS = 10


def fail(msg: str, code: int = 1) -> None:
    """Print *msg* as an error and exit."""
    ui.error(msg)
    sys.exit(code)


def guarded(action, *args) -> None:
    """Run *action*; a failed required command or ^C becomes exit 1."""
    try:
        action(*args)
    except subprocess.CalledProcessError as exc:
        fail(f"Command failed (exit {exc.returncode}): "
             f"{' '.join(str(c) for c in exc.cmd)}")
    except subprocess.TimeoutExpired as exc:
        fail(f"Command timed out after {exc.timeout}s: "
             f"{' '.join(str(c) for c in exc.cmd)}")
    except FileNotFoundError as exc:
        fail(f"Command not found: {exc.filename or exc}")
    except KeyboardInterrupt:
        print()
        fail("Aborted.")


def timestamp() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S")


def have(tool: str) -> bool:
    return shutil.which(tool) is not None


def require(tool: str, msg: str) -> None:
    """Exit 1 with *msg* unless *tool* is on PATH."""
    if not have(tool):
        fail(msg)


class Host:
    """Runs commands and writes files, escalating through sudo when needed.

    When the current user is root, ``sudo=True`` commands run as-is and file
    writes happen in-process.  Otherwise they are prefixed with ``sudo`` and
    files are staged in a temp file and copied into place with
    ``install -m MODE``.
    """

    def __init__(self, dry_run: bool = False, quiet: bool = False,
                 verbose: bool = False, use_sudo=None, sleep=time.sleep):
        self.dry_run = dry_run
        self.quiet = quiet
        self.verbose = verbose
        self.sleep = sleep
        if use_sudo is None:
            use_sudo = os.geteuid() != 0
        if use_sudo and not dry_run and not have("sudo"):
            fail("This needs root (or sudo).")
        self.sudo = ["sudo"] if use_sudo else []

    @property
    def is_root(self) -> bool:
        return not self.sudo

    def _argv(self, cmd, sudo: bool) -> list:
        return (self.sudo if sudo else []) + [str(c) for c in cmd]

    def _watchdog(self, argv: list, timeout):
        """Wrap *argv* in timeout(1) when a limit is set and it is available.

        Returns the argv to execute and the limit for ``subprocess.run``.
        sudo relays SIGTERM to its child but cannot relay SIGKILL, which is
        what ``subprocess.run`` sends on expiry; the wrapper sends SIGTERM
        first and ``subprocess.run`` only keeps a looser backstop.
        """
        if not timeout:
            return argv, None
        if have("timeout"):
            wrapped = ["timeout", "-k", str(WATCHDOG_KILL_AFTER), f"{timeout}s"]
            return wrapped + argv, timeout + 2 * WATCHDOG_KILL_AFTER
        return argv, timeout

    # ── commands ──────────────────────────────────────────────────────────

    def run_cmd(self, cmd, check=True, capture=False, sudo=False, timeout=None,
                secret=()):
        """Execute *cmd*, or print it if --dry-run.

        With --quiet the "Running:" echo is suppressed; warnings and errors
        still print.  [DRY RUN] lines are never suppressed.  With
        ``check=False`` a non-zero exit, a timeout or a missing executable
        only warns and the (possibly ``None``) result is returned.

        Arguments equal to one of the *secret* values are masked in every
        echo, warning and raised ``CalledProcessError``.
        """
        argv, limit = self._watchdog(self._argv(cmd, sudo), timeout)
        hidden = {str(s) for s in secret if s}
        shown = [MASK if a in hidden else a for a in argv]
        pretty = " ".join(shown)
        if self.dry_run:
            ui.dry(pretty)
            return None
        if not self.quiet:
            ui.info(f"Running: {pretty}")
        try:
            result = subprocess.run(
                argv, capture_output=capture, text=capture, timeout=limit,
            )
        except subprocess.TimeoutExpired:
            if check:
                raise
            ui.warn(f"  ↳ timed out after {timeout}s: {pretty}")
            return None
        except FileNotFoundError:
            if check:
                raise
            ui.warn(f"  ↳ not found: {pretty}")
            return None
        if result.returncode != 0:
            if check:
                raise subprocess.CalledProcessError(
                    result.returncode, shown, result.stdout, result.stderr)
            if argv[0] == "timeout" and result.returncode == WATCHDOG_EXPIRED:
                ui.warn(f"  ↳ timed out after {timeout}s: {pretty}")
            else:
                ui.warn(f"  ↳ exited {result.returncode}: {pretty}")
        return result

    def probe(self, cmd, sudo=False, timeout=None, input=None):
        """Run a command silently and return its CompletedProcess.

        Output is captured.  Returns ``None`` instead of raising when the
        command times out or the executable is missing, and always under
        --dry-run.  Callers inspect ``returncode`` themselves.
        """
        argv, limit = self._watchdog(self._argv(cmd, sudo), timeout)
        if self.dry_run:
            return None
        if self.verbose:
            ui.info(f"Probing: {' '.join(argv)}")
        try:
            return subprocess.run(
                argv, input=input, capture_output=True, text=True,
                timeout=limit,
            )
        except subprocess.TimeoutExpired:
            if self.verbose:
                ui.warn(f"  ↳ timed out after {timeout}s")
            return None
        except FileNotFoundError:
            return None

    def ok(self, cmd, sudo=False, timeout=None) -> bool:
        """True when *cmd* exits 0 within *timeout*."""
        r = self.probe(cmd, sudo=sudo, timeout=timeout)
        return r is not None and r.returncode == 0

    def wait_for(self, check, secs: float, interval: float = 1.0):
        """Poll *check* until it returns something truthy or *secs* elapse."""
        end = time.monotonic() + secs
        while True:
            value = check()
            if value:
                return value
            if time.monotonic() >= end:
                return None
            self.sleep(interval)

    # ── files ─────────────────────────────────────────────────────────────

    def read_text(self, path):
        """Return the file's content, or ``None`` when it does not exist."""
        path = Path(path)
        if not path.is_file():
            return None
        with open(path) as fh:
            return fh.read()

    def ensure_dir(self, path, mode: int = 0o755) -> None:
        path = Path(path)
        if path.is_dir():
            return
        if self.dry_run:
            ui.dry(f"install -d -m {mode:04o} {path}")
            return
        if self.is_root:
            path.mkdir(parents=True, exist_ok=True)
            os.chmod(path, mode)
        else:
            self.run_cmd(["install", "-d", "-m", f"{mode:04o}", path], sudo=True)
        ui.info(f"Created dir {path}")

    def backup(self, path):
        """Copy *path* to ``<path>.bak.<timestamp>`` and return the new path."""
        path = Path(path)
        bak = Path(f"{path}.bak.{timestamp()}")
        if self.dry_run:
            ui.dry(f"cp -a {path} {bak}")
            return bak
        if self.is_root:
            shutil.copy2(path, bak)
        else:
            self.run_cmd(["cp", "-a", path, bak], sudo=True)
        ui.info(f"Backup: {bak}")
        return bak

    def write_text(self, path, content: str, mode: int = 0o644) -> bool:
        """Write *content* to *path* unless it already holds exactly that.

        Returns True when the file was (or, under --dry-run, would be)
        written.
        """
        path = Path(path)
        old = self.read_text(path)
        if old == content:
            if not self.quiet:
                ui.info(f"No change needed: {path}")
            return False

        if self.dry_run:
            action = "update" if old is not None else "create"
            ui.dry(f"{action} file {path}")
            return True

        if self.is_root:
            with open(path, "w") as fh:
                fh.write(content)
            os.chmod(path, mode)
        else:
            with tempfile.NamedTemporaryFile("w", delete=False) as fh:
                fh.write(content)
                tmp = fh.name
            try:
                self.run_cmd(["install", "-m", f"{mode:04o}", tmp, path], sudo=True)
            finally:
                os.unlink(tmp)
        if not self.quiet:
            ui.info(f"Wrote {path}")
        return True

    def remove_file(self, path) -> None:
        path = Path(path)
        if self.dry_run:
            ui.dry(f"rm -f {path}")
            return
        if self.is_root:
            path.unlink(missing_ok=True)
        else:
            self.run_cmd(["rm", "-f", path], sudo=True)
        ui.info(f"Removed: {path}")

    def write_sysfs(self, path, value: str) -> bool:
        """Write *value* into a sysfs attribute.  Returns False on failure."""
        path = Path(path)
        if self.dry_run:
            ui.dry(f"echo {value} > {path}")
            return True
        if self.is_root:
            try:
                with open(path, "w") as fh:
                    fh.write(value)
            except OSError as exc:
                ui.warn(f"Could not write {path}: {exc}")
                return False
            return True
        r = self.probe(["tee", path], sudo=True, timeout=SYSFS_TIMEOUT_SECS,
                       input=value)
        if r is None or r.returncode != 0:
            detail = (r.stderr or "").strip() if r is not None else ""
            ui.warn(f"Could not write {path}" + (f": {detail}" if detail else ""))
            return False
        return True

    # ── packages & services ──────────────────────────────────────────────

    def pacman_install(self, pkgs, upgrade: bool = True) -> None:
        """``pacman -Syu --needed`` (or ``-S --needed``) *pkgs*."""
        flag = "-Syu" if upgrade else "-S"
        self.run_cmd(["pacman", flag, "--needed"] + list(pkgs), sudo=True)

    def systemctl(self, *args, check=False):
        return self.run_cmd(["systemctl"] + list(args), check=check, sudo=True)
