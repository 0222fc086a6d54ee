"""set-fingerprint: fingerprint authentication via fprintd/libfprint on Arch Linux.

- Installs fprintd + libfprint and enables fprintd.service
- Adds pam_fprintd to the common PAM entry points (sudo + logins)
- Optionally enrolls a user interactively
"""

import argparse
import os
import re
from pathlib import Path

from heyomarchy import textblocks, ui
from heyomarchy.system import Host, fail, guarded, require

# ── Constants ────────────────────────────────────────────────────────────────

PACKAGES = ["fprintd", "libfprint"]
SERVICE = "fprintd.service"

PAM_DIR = Path("/etc/pam.d")
PAM_ENTRY_POINTS = (
    "sudo", "system-local-login", "login", "greetd",
    "sddm", "gdm-password", "lightdm",
)

PAM_BEGIN, PAM_END = textblocks.markers("fprintd")
PAM_LINE = "auth sufficient pam_fprintd.so"

_AUTH_LINE = r"^\s*auth\s"
_ANY_FPRINTD_RE = re.compile(r"^\s*auth\s+[^#\n]*pam_fprintd\.so", re.MULTILINE)

ACTIONS = ("install", "uninstall")


def pam_files() -> list:
    return [PAM_DIR / name for name in PAM_ENTRY_POINTS]


def has_any_fprintd(text: str) -> bool:
    """True when an active ``auth ... pam_fprintd.so`` line exists."""
    return bool(_ANY_FPRINTD_RE.search(text))


def add_pam_block(text: str) -> str:
    return textblocks.insert_block(text, PAM_BEGIN, PAM_END, PAM_LINE,
                                   before=_AUTH_LINE)


def strip_pam_block(text: str) -> str:
    return textblocks.remove_block(text, PAM_BEGIN, PAM_END)


def default_user(explicit: str = "", environ=None) -> str:
    """--user, else $SUDO_USER (unless root), else $USER."""
    env = os.environ if environ is None else environ
    if explicit:
        return explicit
    sudo_user = env.get("SUDO_USER", "")
    if sudo_user and sudo_user != "root":
        return sudo_user
    return env.get("USER", "")


# ── FingerprintSetup ─────────────────────────────────────────────────────────

class FingerprintSetup:

    def __init__(self, host: Host, pam: bool = True, upgrade: bool = True,
                 enroll: bool = False, user: str = "", service: bool = True):
        self.host = host
        self.pam = pam
        self.upgrade = upgrade
        self.enroll = enroll
        self.user = user
        self.service = service

    def pam_install_block(self, path: Path) -> None:
        text = self.host.read_text(path)
        if text is None:
            return
        if textblocks.has_block(text, PAM_BEGIN):
            ui.info(f"PAM already configured (marker found): {path}")
            return
        if has_any_fprintd(text):
            ui.skip(f"PAM already contains pam_fprintd.so (skipping): {path}")
            return

        self.host.backup(path)
        self.host.write_text(path, add_pam_block(text), mode=0o644)
        ui.info(f"{ui.I.SHIELD}  Updated PAM: {path}")

    def pam_remove_block(self, path: Path) -> None:
        text = self.host.read_text(path)
        if text is None or not textblocks.has_block(text, PAM_BEGIN):
            return

        self.host.backup(path)
        self.host.write_text(path, strip_pam_block(text), mode=0o644)
        ui.info(f"Removed PAM block: {path}")

    def enroll_user(self) -> None:
        user = default_user(self.user)
        if not user:
            fail("Could not determine a user to enroll. Use --user USER.")
        ui.info(f"{ui.I.FINGER}  Enrolling fingerprints for user: {user}")
        if self.host.is_root:
            cmd = ["fprintd-enroll", user]
        else:
            cmd = ["sudo", "-u", user, "fprintd-enroll"]
        self.host.run_cmd(cmd)
        ui.info(f"Verify with: fprintd-verify {user}")

    # ── actions ───────────────────────────────────────────────────────────

    def run_install(self) -> None:
        ui.banner(f"{ui.I.FINGER}  set-fingerprint install")
        require("pacman", "pacman not found; this script is for Arch Linux.")

        ui.section(ui.I.PACKAGE, "Packages", 1, 3)
        self.host.pacman_install(PACKAGES, upgrade=self.upgrade)

        ui.section(ui.I.COGS, "Services", 2, 3)
        self.host.systemctl("enable", "--now", SERVICE, check=True)
        ui.info(f"Enabled: {SERVICE}")

        ui.section(ui.I.SHIELD, "PAM", 3, 3)
        if self.pam:
            for path in pam_files():
                self.pam_install_block(path)
        else:
            ui.skip("Skipping PAM edits (--no-pam)")

        if self.enroll:
            self.enroll_user()
        else:
            user = default_user(self.user)
            if user:
                ui.info(f"Next: enroll with: fprintd-enroll {user}")
                ui.info(f"Then verify with: fprintd-verify {user}")
            else:
                ui.info("Next: enroll with: fprintd-enroll <user>")

        ui.note([
            "Notes:",
            "- If enrollment fails with \"No devices available\", your sensor may not be",
            "  supported by the installed libfprint build. Collect USB ID via: lsusb -nn",
        ])

    def run_uninstall(self) -> None:
        ui.banner(f"{ui.I.TRASH}  set-fingerprint uninstall")
        for path in pam_files():
            self.pam_remove_block(path)

        if self.service:
            self.host.systemctl("disable", "--now", SERVICE)
            ui.info(f"Disabled: {SERVICE}")

        ui.info("Done. Packages were not removed.")

    def run(self, action: str) -> None:
        if action == "uninstall":
            self.run_uninstall()
        else:
            self.run_install()


# ── CLI ──────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="set-fingerprint",
        description="Enable fingerprint authentication via fprintd/libfprint.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="PAM files touched on install (unless --no-pam), when present:\n"
               + "".join(f"  {path}\n" for path in pam_files())
               + "\nuninstall removes only the PAM block added by this tool.\n",
    )
    p.add_argument("action", nargs="?", choices=ACTIONS, default="install")
    p.add_argument("--enroll", action="store_true",
                   help="run fprintd-enroll interactively for the target user")
    p.add_argument("--user", default="",
                   help="user to enroll (defaults to $SUDO_USER or $USER)")
    p.add_argument("--no-pam", action="store_true",
                   help="do not edit /etc/pam.d/*")
    p.add_argument("--no-upgrade", action="store_true",
                   help="do not run full system upgrade; use pacman -S --needed")
    p.add_argument("--no-service", action="store_true",
                   help="uninstall: do not disable fprintd.service")
    p.add_argument("--dry-run", action="store_true",
                   help="print commands without executing them")
    p.add_argument("-q", "--quiet", action="store_true",
                   help="suppress per-command output")
    return p


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    host = Host(dry_run=args.dry_run, quiet=args.quiet)
    setup = FingerprintSetup(
        host,
        pam=not args.no_pam,
        upgrade=not args.no_upgrade,
        enroll=args.enroll,
        user=args.user,
        service=not args.no_service,
    )
    guarded(setup.run, args.action)


if __name__ == "__main__":
    main()
