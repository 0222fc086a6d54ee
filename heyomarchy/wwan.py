"""setup-wwan-docomo: WWAN (docomo SIM) on a ThinkPad X1 13" with a Quectel RM5xx.

This machine runs Wi-Fi/Ethernet with systemd-networkd + iwd, while WWAN is
easiest through ModemManager + NetworkManager.  To let them coexist:

- NetworkManager manages only WWAN devices
- systemd-networkd ignores WWAN devices
"""

import argparse
import re
import sys
from pathlib import Path

from heyomarchy import ui
from heyomarchy.radio import (
    DEFAULT_MBIM_TIMEOUT_SECS, DEFAULT_WAIT_SECS, RadioEnabler,
)
from heyomarchy.system import Host, guarded, have, require

# ── Constants ────────────────────────────────────────────────────────────────

MARKER = "Managed by hey-omarchy (ThinkPad X1-13 WWAN)"

NM_WWAN_ONLY_CONF = Path("/etc/NetworkManager/conf.d/10-wwan-only.conf")
NETWORKD_UNMANAGED_WWAN = Path("/etc/systemd/network/10-wwan-unmanaged.network")

DEFAULT_APN = "spmode.ne.jp"
DEFAULT_CON_NAME = "docomo"
ROUTE_METRIC = 700
CONNECT_WAIT_SECS = 60

PACKAGES = [
    "linux-firmware-qcom", "networkmanager", "modemmanager",
    "libmbim", "libqmi", "mobile-broadband-provider-info",
]

SERVICES = ("ModemManager.service", "NetworkManager.service")

UNMANAGED_IFACES = (
    "lo", "wl*", "en*", "eth*", "docker*", "tailscale*",
    "br*", "veth*", "virbr*", "tun*", "tap*",
)

MM_MODEM_PATH = "/org/freedesktop/ModemManager1/Modem/"
_MM_MODEM_ID_RE = re.compile(r"/Modem/(\d+)")

ACTIONS = ("install", "enable", "uninstall")


def nm_wwan_only_conf() -> str:
    devices = ";".join(f"interface-name:{i}" for i in UNMANAGED_IFACES)
    return (
        f"# {MARKER}\n"
        "# Only manage WWAN devices; leave Wi-Fi/Ethernet to systemd-networkd/iwd.\n"
        "[keyfile]\n"
        f"unmanaged-devices={devices}\n"
    )


def networkd_unmanaged_wwan() -> str:
    return (
        f"# {MARKER}\n"
        "[Match]\n"
        "Name=ww*\n"
        "\n"
        "[Link]\n"
        "Unmanaged=yes\n"
        "RequiredForOnline=no\n"
    )


def parse_modem_id(mmcli_list: str):
    """First modem index from ``mmcli -L`` output, or None."""
    m = _MM_MODEM_ID_RE.search(mmcli_list or "")
    return m.group(1) if m else None


def parse_gsm_device(device_status: str):
    """First ``gsm`` device from ``nmcli -t -f DEVICE,TYPE device status``."""
    for line in (device_status or "").splitlines():
        name, _, kind = line.partition(":")
        if kind == "gsm":
            return name
    return None


TROUBLESHOOTING = [
    "Warning: nmcli could not bring the WWAN connection up.",
    "",
    "Quick checks:",
    "  mmcli -L",
    "  nmcli device status",
    "",
    "If the modem is not listed by mmcli, reboot once after installing linux-firmware-qcom.",
    "If ModemManager says \"software radio switch is OFF\", run:",
    "  setup-wwan-docomo enable",
    "If the SIM needs a PIN, set it then retry:",
    "  nmcli connection modify {con} gsm.pin 1234",
    "  nmcli connection up {con}",
]


# ── WwanSetup ────────────────────────────────────────────────────────────────

class WwanSetup:

    def __init__(self, host: Host, apn: str = DEFAULT_APN,
                 con_name: str = DEFAULT_CON_NAME, username: str = "",
                 password: str = "", autoconnect: bool = True,
                 connect: bool = True, connection: bool = True,
                 upgrade: bool = True, mbim_timeout: int = DEFAULT_MBIM_TIMEOUT_SECS,
                 wait_secs: int = DEFAULT_WAIT_SECS, direct_mbim: bool = False,
                 keep_services: bool = False, keep_connection: bool = False):
        self.host = host
        self.apn = apn
        self.con_name = con_name
        self.username = username
        self.password = password
        self.autoconnect = autoconnect
        self.connect = connect
        self.connection = connection
        self.upgrade = upgrade
        self.wait_secs = wait_secs
        self.keep_services = keep_services
        self.keep_connection = keep_connection
        self.radio = RadioEnabler(host, timeout=mbim_timeout,
                                  wait_secs=wait_secs, direct=direct_mbim)

    # ── helpers ───────────────────────────────────────────────────────────

    def has_marker(self, path: Path) -> bool:
        text = self.host.read_text(path)
        return text is not None and MARKER in text

    def install_config(self, path: Path, content: str) -> None:
        """Back up an unowned file once, then write our version."""
        if self.host.read_text(path) is not None and not self.has_marker(path):
            self.host.backup(path)
        self.host.write_text(path, content, mode=0o644)

    def ensure_services_running(self) -> None:
        for svc in SERVICES:
            r = self.host.systemctl("enable", "--now", svc)
            if r is not None and r.returncode != 0:
                self.host.systemctl("start", svc, check=True)

        # Make sure the new NetworkManager config is picked up.
        r = self.host.systemctl("reload", "NetworkManager.service")
        if r is not None and r.returncode != 0:
            self.host.systemctl("restart", "NetworkManager.service", check=True)

    def _mm_list(self) -> str:
        r = self.host.probe(["mmcli", "-L"], sudo=True)
        return r.stdout if r is not None and r.returncode == 0 else ""

    def wait_for_mm_modem(self) -> bool:
        if not have("mmcli") or self.host.dry_run:
            return True
        if self.host.wait_for(lambda: MM_MODEM_PATH in self._mm_list(),
                              self.wait_secs):
            return True
        ui.error(f"ModemManager sees no modems "
                 f"(mmcli -L empty after {self.wait_secs}s)")
        return False

    def nm_wwan_device(self):
        r = self.host.probe(["nmcli", "-t", "-f", "DEVICE,TYPE", "device", "status"])
        if r is None or r.returncode != 0:
            return None
        return parse_gsm_device(r.stdout)

    def wait_for_nm_wwan_device(self):
        if not have("nmcli") or self.host.dry_run:
            return None
        dev = self.host.wait_for(self.nm_wwan_device, self.wait_secs)
        if dev is None:
            ui.warn(f"NetworkManager has no WWAN device "
                    f"(no gsm device after {self.wait_secs}s)")
        return dev

    def best_effort_modem_enable(self) -> None:
        if not have("mmcli"):
            return
        mid = parse_modem_id(self._mm_list())
        if mid is None:
            return
        self.host.probe(["mmcli", "-m", mid, "--set-power-state-on"], sudo=True)
        self.host.probe(["mmcli", "-m", mid, "-e"], sudo=True)

    def bring_radio_up(self) -> None:
        """Wait for the modem, force its radio on, then wait again."""
        if not self.wait_for_mm_modem():
            sys.exit(1)
        self.wait_for_nm_wwan_device()
        if not self.radio.ensure_on():
            sys.exit(1)
        # The radio sequence may have restarted ModemManager.
        self.wait_for_mm_modem()
        self.wait_for_nm_wwan_device()
        self.best_effort_modem_enable()

    def connection_exists(self) -> bool:
        return self.host.ok(["nmcli", "connection", "show", self.con_name], sudo=True)

    def connection_up(self) -> bool:
        r = self.host.run_cmd(
            ["nmcli", "-w", str(CONNECT_WAIT_SECS), "connection", "up", self.con_name],
            check=False, sudo=True,
        )
        return r is None or r.returncode == 0

    def configure_connection(self) -> None:
        nm = ["nmcli", "connection"]
        if self.connection_exists():
            ui.info(f"Using existing connection: {self.con_name}")
        else:
            self.host.run_cmd(nm + ["add", "type", "gsm", "ifname", "*",
                                    "con-name", self.con_name, "apn", self.apn],
                              sudo=True)
            ui.info(f"Created connection: {self.con_name}")

        modify = nm + ["modify", self.con_name]
        self.host.run_cmd(modify + ["gsm.apn", self.apn], sudo=True)
        self.host.run_cmd(modify + ["ipv4.route-metric", str(ROUTE_METRIC),
                                    "ipv6.route-metric", str(ROUTE_METRIC)],
                          sudo=True)
        if self.autoconnect:
            # Infinite retries helps auto-reconnect after suspend/resume.
            self.host.run_cmd(modify + ["connection.autoconnect", "yes",
                                        "connection.autoconnect-retries", "0"],
                              sudo=True)
        else:
            self.host.run_cmd(modify + ["connection.autoconnect", "no"], sudo=True)
        if self.username:
            self.host.run_cmd(modify + ["gsm.username", self.username], sudo=True,
                              secret=[self.username])
        if self.password:
            self.host.run_cmd(modify + ["gsm.password", self.password], sudo=True,
                              secret=[self.password])

        ui.info(f"Configured connection: {self.con_name} (apn={self.apn})")

    def print_status(self) -> None:
        print()
        ui.info("Status:")
        self.host.run_cmd(["nmcli", "device", "status"], check=False)
        if have("mmcli"):
            self.host.run_cmd(["mmcli", "-L"], check=False, sudo=True)

    # ── actions ───────────────────────────────────────────────────────────

    def run_install(self) -> None:
        ui.banner(f"{ui.I.SIGNAL}  setup-wwan-docomo install")
        require("pacman", "pacman not found; this script is for Arch Linux.")

        ui.section(ui.I.PACKAGE, "Packages", 1, 4)
        self.host.pacman_install(PACKAGES, upgrade=self.upgrade)

        ui.section(ui.I.WRENCH, "Config Files", 2, 4)
        self.host.ensure_dir(NM_WWAN_ONLY_CONF.parent)
        self.host.ensure_dir(NETWORKD_UNMANAGED_WWAN.parent)
        self.install_config(NM_WWAN_ONLY_CONF, nm_wwan_only_conf())
        self.install_config(NETWORKD_UNMANAGED_WWAN, networkd_unmanaged_wwan())

        ui.section(ui.I.COGS, "Services", 3, 4)
        self.ensure_services_running()
        ui.info(f"Enabled: {' '.join(SERVICES)}")

        ui.section(ui.I.GLOBE, "Connection", 4, 4)
        if not self.connection:
            ui.skip("Skipping connection profile creation (--no-connection)")
        else:
            require("nmcli", "nmcli not found (NetworkManager not installed correctly?).")
            self.configure_connection()
            if self.connect:
                self.bring_radio_up()
                ui.info("Bringing up connection (may take a moment)...")
                if not self.connection_up():
                    ui.note(line.format(con=self.con_name) for line in TROUBLESHOOTING)

        self.print_status()
        ui.banner(f"{ui.I.CHECK}  Done")
        ui.note([
            "Useful commands:",
            f'  nmcli connection up "{self.con_name}"',
            f'  nmcli connection down "{self.con_name}"',
        ])

    def run_enable(self) -> None:
        ui.banner(f"{ui.I.SIGNAL}  setup-wwan-docomo enable")
        require("nmcli", "nmcli not found; install NetworkManager first "
                         "(run: setup-wwan-docomo install).")

        self.ensure_services_running()
        self.bring_radio_up()

        if self.connect:
            ui.info(f"Bringing up connection: {self.con_name}")
            if not self.connection_up():
                ui.error(f"could not bring up connection: {self.con_name}")
                ui.error("Check with: nmcli device status; mmcli -m 0; "
                         "journalctl -u ModemManager -b --no-pager | tail -n 80")
                sys.exit(1)
        else:
            ui.skip("Skipping connection up (--no-connect)")

        self.print_status()

    def run_uninstall(self) -> None:
        ui.banner(f"{ui.I.TRASH}  setup-wwan-docomo uninstall")

        if not self.keep_connection and have("nmcli") and self.connection_exists():
            self.host.probe(["nmcli", "connection", "down", self.con_name], sudo=True)
            self.host.run_cmd(["nmcli", "connection", "delete", self.con_name],
                              check=False, sudo=True)
            ui.info(f"Removed connection: {self.con_name}")

        for path in (NM_WWAN_ONLY_CONF, NETWORKD_UNMANAGED_WWAN):
            if self.has_marker(path):
                self.host.remove_file(path)

        if not self.keep_services:
            for svc in ("NetworkManager.service", "ModemManager.service"):
                self.host.systemctl("disable", "--now", svc)
            ui.info("Disabled: NetworkManager.service ModemManager.service")

        ui.info("Done. Packages were not removed.")

    def run(self, action: str) -> None:
        {
            "install": self.run_install,
            "enable": self.run_enable,
            "uninstall": self.run_uninstall,
        }[action]()


# ── CLI ──────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="setup-wwan-docomo",
        description="Set up WWAN (docomo SIM) via ModemManager + NetworkManager.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  setup-wwan-docomo install                   # packages, configs, profile, connect
  setup-wwan-docomo install --no-connect      # configure only
  setup-wwan-docomo enable                    # "software radio switch is OFF"
  setup-wwan-docomo enable --direct-mbim      # skip mbim-proxy, talk to the device
  setup-wwan-docomo uninstall --keep-services # drop configs + profile only

notes:
  If the modem is not detected after install, reboot once (firmware load).
  If the SIM requires a PIN: nmcli connection modify docomo gsm.pin 1234
""",
    )
    p.add_argument("action", nargs="?", choices=ACTIONS, default="install")
    p.add_argument("--apn", default=DEFAULT_APN,
                   help=f"APN to use (default: {DEFAULT_APN})")
    p.add_argument("--con-name", default=DEFAULT_CON_NAME,
                   help=f"connection name (default: {DEFAULT_CON_NAME})")
    p.add_argument("--username", default="", help="optional APN username")
    p.add_argument("--password", default="",
                   help="optional APN password (stored by NetworkManager)")
    p.add_argument("--autoconnect", dest="autoconnect", action="store_true",
                   default=True, help="enable autoconnect (default)")
    p.add_argument("--no-autoconnect", dest="autoconnect", action="store_false",
                   help="disable autoconnect")
    p.add_argument("--no-connect", action="store_true",
                   help="do not run nmcli connection up (may still autoconnect)")
    p.add_argument("--no-connection", action="store_true",
                   help="do not create/modify an NM connection profile")
    p.add_argument("--mbim-timeout", type=int, default=DEFAULT_MBIM_TIMEOUT_SECS,
                   metavar="N",
                   help=f"timeout seconds for mbimcli calls (default: {DEFAULT_MBIM_TIMEOUT_SECS})")
    p.add_argument("--wait", type=int, default=DEFAULT_WAIT_SECS, metavar="N",
                   help=f"seconds to wait for modem/device to appear (default: {DEFAULT_WAIT_SECS})")
    p.add_argument("--direct-mbim", action="store_true",
                   help="force MBIM radio enable via direct device access "
                        "(stops ModemManager temporarily)")
    p.add_argument("--no-upgrade", action="store_true",
                   help="do not run full system upgrade; use pacman -S --needed")
    p.add_argument("--keep-services", action="store_true",
                   help="uninstall: do not disable NetworkManager/ModemManager")
    p.add_argument("--keep-connection", action="store_true",
                   help="uninstall: do not delete the NetworkManager connection profile")
    p.add_argument("--dry-run", action="store_true",
                   help="print commands without executing them")
    p.add_argument("-q", "--quiet", action="store_true",
                   help="suppress per-command output; show only banners, "
                        "warnings, and errors")
    p.add_argument("--verbose", action="store_true",
                   help="also echo read-only probe commands")
    return p


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    host = Host(dry_run=args.dry_run, quiet=args.quiet, verbose=args.verbose)
    setup = WwanSetup(
        host,
        apn=args.apn,
        con_name=args.con_name,
        username=args.username,
        password=args.password,
        autoconnect=args.autoconnect,
        connect=not args.no_connect,
        connection=not args.no_connection,
        upgrade=not args.no_upgrade,
        mbim_timeout=args.mbim_timeout,
        wait_secs=args.wait,
        direct_mbim=args.direct_mbim,
        keep_services=args.keep_services,
        keep_connection=args.keep_connection,
    )
    guarded(setup.run, args.action)


if __name__ == "__main__":
    main()
