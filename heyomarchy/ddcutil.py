"""setup-ddcutil: install ddcutil and give the user access to /dev/i2c-*.

External monitors' brightness is driven over DDC/CI, which needs the i2c-dev
module loaded and udev rules that open the device nodes to non-root users.
"""

import argparse
from pathlib import Path

from heyomarchy import ui
from heyomarchy.system import Host, fail, guarded, have, require

DEV_ROOT = Path("/dev")
MODULES_LOAD_CONF = Path("/etc/modules-load.d/i2c-dev.conf")
MODULE = "i2c-dev"


def pick_installer(requested: str) -> str:
    """Resolve "auto" to yay, then pacman.  Exits 1 when the choice is missing."""
    if requested != "auto":
        require(requested, f"{requested} not found")
        return requested
    if have("yay"):
        return "yay"
    if have("pacman"):
        return "pacman"
    fail("Neither yay nor pacman found")


def i2c_nodes_present(dev_root: Path = None) -> bool:
    return any((dev_root or DEV_ROOT).glob("i2c-*"))


class DdcutilSetup:

    def __init__(self, host: Host, installer: str = "auto", modprobe: bool = True,
                 persist_module: bool = False, udev: bool = True,
                 detect: bool = True):
        self.host = host
        self.installer = installer
        self.modprobe = modprobe
        self.persist_module = persist_module
        self.udev = udev
        self.detect = detect

    def _total(self) -> int:
        return 1 + sum((self.modprobe, self.persist_module, self.udev, self.detect))

    def install_package(self) -> None:
        installer = pick_installer(self.installer)
        if installer == "yay":
            ui.info("Installing ddcutil via yay (may prompt for sudo)")
            self.host.run_cmd(["yay", "-S", "--needed", "ddcutil"])
        else:
            ui.info("Installing ddcutil via pacman")
            self.host.run_cmd(["pacman", "-S", "--needed", "ddcutil"], sudo=True)

        if not self.host.dry_run and not have("ddcutil"):
            fail("ddcutil not found after install")

    def load_module(self) -> None:
        if i2c_nodes_present():
            ui.info("/dev/i2c-* present; i2c-dev already loaded")
            return
        ui.info(f"Loading kernel module: {MODULE}")
        self.host.run_cmd(["modprobe", MODULE], check=False, sudo=True)

    def persist(self) -> None:
        ui.info(f"Enabling {MODULE} auto-load at boot")
        self.host.ensure_dir(MODULES_LOAD_CONF.parent)
        self.host.write_text(MODULES_LOAD_CONF, f"{MODULE}\n", mode=0o644)

    def install_udev_rules(self) -> None:
        ui.info("Installing udev rules (enables non-root access to /dev/i2c-*)")
        self.host.run_cmd(["ddcutil", "install-udev-rules"], sudo=True)
        self.host.probe(["udevadm", "control", "--reload-rules"], sudo=True)
        self.host.probe(["udevadm", "trigger", "--subsystem-match=i2c",
                         "--action=add"], sudo=True)
        ui.info("Note: you may need to re-login (or reboot) for permissions to apply.")

    def run_detect(self) -> None:
        r = self.host.run_cmd(["ddcutil", "detect"], check=False)
        if r is not None and r.returncode != 0:
            ui.warn("ddcutil detect failed; trying: sudo ddcutil detect")
            self.host.run_cmd(["ddcutil", "detect"], check=False, sudo=True)

    def run(self) -> None:
        ui.banner(f"{ui.I.DESKTOP}  setup-ddcutil")
        total = self._total()
        step = 1

        ui.section(ui.I.PACKAGE, "Packages", step, total)
        self.install_package()

        if self.modprobe:
            step += 1
            ui.section(ui.I.COGS, "Kernel module", step, total)
            self.load_module()

        if self.persist_module:
            step += 1
            ui.section(ui.I.WRENCH, "Module auto-load", step, total)
            self.persist()

        if self.udev:
            step += 1
            ui.section(ui.I.SHIELD, "udev rules", step, total)
            self.install_udev_rules()

        if self.detect:
            step += 1
            ui.section(ui.I.DESKTOP, "Detect displays", step, total)
            self.run_detect()

        ui.note([
            "Next:",
            "  bash ./apply.sh --skip-packages",
            "  ddc-brightness get --display 1",
            "",
            "(Without apply.sh: bash ./home/.local/bin/ddc-brightness get --display 1)",
        ])


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="setup-ddcutil",
        description="Install ddcutil and enable DDC/CI access to external displays.",
    )
    group = p.add_mutually_exclusive_group()
    group.add_argument("--yay", dest="installer", action="store_const",
                       const="yay", help="install via yay")
    group.add_argument("--pacman", dest="installer", action="store_const",
                       const="pacman", help="install via pacman")
    p.set_defaults(installer="auto")
    p.add_argument("--no-modprobe", action="store_true",
                   help=f"skip: sudo modprobe {MODULE}")
    p.add_argument("--persist-module", action="store_true",
                   help=f"load {MODULE} on boot (writes {MODULES_LOAD_CONF})")
    p.add_argument("--no-udev", action="store_true",
                   help="skip: sudo ddcutil install-udev-rules")
    p.add_argument("--no-detect", action="store_true",
                   help="skip: ddcutil detect check")
    p.add_argument("--dry-run", action="store_true",
                   help="print commands without executing them")
    p.add_argument("-q", "--quiet", action="store_true",
                   help="suppress per-command output")
    return p


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    setup = DdcutilSetup(
        Host(dry_run=args.dry_run, quiet=args.quiet),
        installer=args.installer,
        modprobe=not args.no_modprobe,
        persist_module=args.persist_module,
        udev=not args.no_udev,
        detect=not args.no_detect,
    )
    guarded(setup.run)


if __name__ == "__main__":
    main()
