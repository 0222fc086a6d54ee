"""setup-3d-packages: OpenGL/Vulkan user space for Intel Lunar Lake (xe driver).

Mesa provides OpenGL; vulkan-intel provides the Vulkan ICD.  Steam/Proton
usually wants the 32-bit (lib32-*) builds too, which need [multilib].
"""

import argparse
import re
from pathlib import Path

from heyomarchy import ui
from heyomarchy.system import Host, guarded, require

PACMAN_CONF = Path("/etc/pacman.conf")

PACKAGES = [
    "mesa",
    "vulkan-intel",
    "vulkan-icd-loader",
    "mesa-utils",     # glxinfo
    "vulkan-tools",   # vulkaninfo
]

LIB32_PACKAGES = [
    "lib32-mesa",
    "lib32-vulkan-intel",
    "lib32-vulkan-icd-loader",
]

ACTIONS = ("install",)

_INCLUDE_RE = re.compile(r"^Include\s*=")


def multilib_enabled(pacman_conf: str) -> bool:
    """True when [multilib] is present and has an active Include line."""
    in_section = False
    for raw in pacman_conf.splitlines():
        line = raw.strip()
        if line == "[multilib]":
            in_section = True
            continue
        if line.startswith("["):
            in_section = False
        if in_section and _INCLUDE_RE.match(line):
            return True
    return False


def package_set(pacman_conf) -> list:
    pkgs = list(PACKAGES)
    if pacman_conf is not None and multilib_enabled(pacman_conf):
        pkgs += LIB32_PACKAGES
    return pkgs


class GraphicsSetup:

    def __init__(self, host: Host, upgrade: bool = True):
        self.host = host
        self.upgrade = upgrade

    def run_install(self) -> None:
        ui.banner(f"{ui.I.CUBES}  setup-3d-packages install")
        require("pacman", "pacman not found; this script is for Arch Linux.")

        conf = self.host.read_text(PACMAN_CONF)
        pkgs = package_set(conf)
        if len(pkgs) > len(PACKAGES):
            ui.info("multilib enabled: will install lib32-* packages")
        else:
            ui.warn("multilib is not enabled in /etc/pacman.conf.")
            ui.note([
                "Skipping lib32-* packages (Steam/Proton commonly needs them).",
                "",
                "To enable multilib, uncomment these lines in /etc/pacman.conf:",
                "  [multilib]",
                "  Include = /etc/pacman.d/mirrorlist",
                "",
                "Then run: pacman -Syu",
            ])

        ui.info(f"{ui.I.DOWNLOAD}  Installing: {', '.join(pkgs)}")
        self.host.pacman_install(pkgs, upgrade=self.upgrade)

        ui.note([
            "Installed graphics packages. Quick checks:",
            "  glxinfo -B",
            "  vulkaninfo --summary",
        ])


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="setup-3d-packages",
        description="Install 3D (OpenGL/Vulkan) driver user-space packages.",
    )
    p.add_argument("action", nargs="?", choices=ACTIONS, default="install")
    p.add_argument("--no-upgrade", action="store_true",
                   help="do not run full system upgrade; use pacman -S --needed")
    p.add_argument("--dry-run", action="store_true",
                   help="print commands without executing them")
    p.add_argument("-q", "--quiet", action="store_true",
                   help="suppress per-command output")
    return p


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    setup = GraphicsSetup(Host(dry_run=args.dry_run, quiet=args.quiet),
                          upgrade=not args.no_upgrade)
    guarded(setup.run_install)


if __name__ == "__main__":
    main()
