"""Turn a WWAN modem's software radio on over MBIM.

ModemManager sometimes brings the Quectel RM5xx up with its software radio
switch OFF and never flips it.  ``RadioEnabler.ensure_on`` walks an ordered
list of increasingly invasive fixes and stops at the first one after which
the modem reports ``Software radio state: 'on'``:

1. ``--set-radio-state=on`` through mbim-proxy (ModemManager still running)
2. stop ModemManager, ``--set-radio-state=on`` directly, per MBIMEx variant
3. toggle off → on directly, per variant
4. ``--quectel-set-radio-state=on``, per variant
5. ``AT+CFUN=1`` over the Quectel service, per variant
6. MHI SoC reset, wait for the device node, then steps 2-5 once more

A failing or timed-out command just falls through to the next step.
"""

import re
from pathlib import Path
from typing import NamedTuple

from heyomarchy import ui
from heyomarchy.system import have

DEV_ROOT = Path("/dev")
MHI_DEVICES = Path("/sys/bus/mhi/devices")

MM_SERVICE = "ModemManager.service"

DEFAULT_MBIM_TIMEOUT_SECS = 12
DEFAULT_WAIT_SECS = 30

# (label, extra mbimcli open flags)
MBIM_VARIANTS = (
    ("default", []),
    ("mbimex-v3", ["--device-open-ms-mbimex-v3"]),
    ("mbimex-v2", ["--device-open-ms-mbimex-v2"]),
)

CFUN_ON = "AT+CFUN=1"

_HW_RE = re.compile(r"Hardware radio state: '([^']*)'")
_SW_RE = re.compile(r"Software radio state: '([^']*)'")


class RadioState(NamedTuple):
    hardware: str
    software: str

    @property
    def software_on(self) -> bool:
        return self.software == "on"

    def __str__(self) -> str:
        return f"hw={self.hardware} sw={self.software}"


def parse_radio_state(output: str):
    """Parse ``mbimcli --query-radio-state`` output.

    Returns ``None`` when neither radio field is present.
    """
    hw = _HW_RE.search(output or "")
    sw = _SW_RE.search(output or "")
    if hw is None and sw is None:
        return None
    return RadioState(hw.group(1) if hw else "?", sw.group(1) if sw else "?")


def detect_mbim_device(dev_root: Path = None):
    """First ``/dev/wwan*mbim*`` node, else first ``/dev/cdc-wdm*``, else None."""
    root = dev_root or DEV_ROOT
    for pattern in ("wwan*mbim*", "cdc-wdm*"):
        for candidate in sorted(root.glob(pattern)):
            if candidate.exists():
                return candidate
    return None


def find_soc_reset(mhi_root: Path = None):
    root = mhi_root or MHI_DEVICES
    for candidate in sorted(root.glob("mhi*/soc_reset")):
        return candidate
    return None


def quectel_command_forms(cmd: str) -> list:
    """mbimcli has accepted all of these spellings across releases."""
    return [
        f"--quectel-set-command={cmd}",
        f"--quectel-set-command=at,{cmd}",
        f'--quectel-set-command=at,"{cmd}"',
    ]


class RadioEnabler:

    def __init__(self, host, timeout: int = DEFAULT_MBIM_TIMEOUT_SECS,
                 wait_secs: int = DEFAULT_WAIT_SECS, direct: bool = False,
                 dev_root: Path = None, mhi_root: Path = None):
        self.host = host
        self.timeout = timeout
        self.wait_secs = wait_secs
        self.direct = direct
        self.dev_root = dev_root
        self.mhi_root = mhi_root

    # ── mbimcli primitives ────────────────────────────────────────────────

    def _mbimcli(self, device, extra, *args) -> bool:
        return self.host.ok(
            ["mbimcli", "-d", device] + list(extra) + list(args),
            sudo=True, timeout=self.timeout,
        )

    def query(self, device, proxy: bool = False, extra=()):
        """Current RadioState, or None if the query failed or was unparsable."""
        cmd = ["mbimcli", "-d", device]
        if proxy:
            cmd.append("-p")
        cmd += list(extra) + ["--query-radio-state"]
        r = self.host.probe(cmd, sudo=True, timeout=self.timeout)
        if r is None or r.returncode != 0:
            return None
        return parse_radio_state((r.stdout or "") + (r.stderr or ""))

    def _is_on(self, device, label: str, extra=()) -> bool:
        state = self.query(device, extra=extra)
        if state is not None:
            ui.info(f"MBIM radio state (direct {label}): {state}")
        return state is not None and state.software_on

    def quectel_send(self, device, cmd: str, extra=()) -> bool:
        for form in quectel_command_forms(cmd):
            if self._mbimcli(device, extra, form):
                return True
        return False

    # ── the sequence ──────────────────────────────────────────────────────

    def enable_via_proxy(self, device) -> bool:
        if not self._mbimcli(device, ["-p"], "--set-radio-state=on"):
            return False
        ui.info("MBIM radio: ON (via proxy)")
        state = self.query(device, proxy=True)
        if state is None:
            return False
        ui.info(f"MBIM radio state (proxy): {state}")
        return state.software_on

    def enable_direct(self, device) -> bool:
        """Steps 2-5.  Expects ModemManager to be stopped."""
        state = self.query(device)
        if state is not None:
            ui.info(f"MBIM radio state (direct): {state}")
            if state.software_on:
                return True

        for label, extra in MBIM_VARIANTS:
            if (self._mbimcli(device, extra, "--set-radio-state=on")
                    and self._is_on(device, label, extra)):
                return True

        for label, extra in MBIM_VARIANTS:
            # Some firmwares only react to an OFF → ON transition.
            self._mbimcli(device, extra, "--set-radio-state=off")
            self.host.sleep(1)
            if (self._mbimcli(device, extra, "--set-radio-state=on")
                    and self._is_on(device, f"{label} toggled", extra)):
                return True

        ui.info("Basic Connect radio enable did not turn software radio on; "
                "trying Quectel MBIM service...")
        for label, extra in MBIM_VARIANTS:
            if (self._mbimcli(device, extra, "--quectel-set-radio-state=on")
                    and self._is_on(device, f"{label} after quectel radio", extra)):
                return True

        ui.info(f"Quectel radio enable did not turn software radio on; "
                f"trying {CFUN_ON} via Quectel service...")
        for label, extra in MBIM_VARIANTS:
            if self.quectel_send(device, CFUN_ON, extra):
                self.host.sleep(2)
                if self._is_on(device, f"{label} after {CFUN_ON}", extra):
                    return True

        return False

    def soc_reset(self) -> bool:
        """Best-effort modem reset via MHI sysfs."""
        reset_path = find_soc_reset(self.mhi_root)
        if reset_path is None:
            return False
        ui.info(f"{ui.I.RECYCLE}  Resetting modem (MHI SoC reset): {reset_path}")
        if not self.host.write_sysfs(reset_path, "1"):
            return False
        self.host.sleep(3)
        return True

    def wait_for_device(self):
        return self.host.wait_for(
            lambda: detect_mbim_device(self.dev_root), self.wait_secs,
        )

    def _direct_with_reset(self, device) -> bool:
        if self.enable_direct(device):
            ui.info("MBIM software radio: ON")
            return True

        ui.warn("MBIM software radio still OFF; attempting modem reset and retry...")
        if not self.soc_reset():
            return False
        # The device node disappears during the reset and comes back.
        device = self.wait_for_device()
        if device is not None and self.enable_direct(device):
            ui.info("MBIM software radio: ON (after reset)")
            return True
        return False

    def ensure_on(self) -> bool:
        """Run the whole sequence.  False only when every step failed."""
        if have("rfkill"):
            self.host.run_cmd(["rfkill", "unblock", "wwan"], check=False, sudo=True)
        if have("nmcli"):
            self.host.run_cmd(["nmcli", "radio", "wwan", "on"], check=False, sudo=True)

        if not have("mbimcli"):
            ui.skip("mbimcli not found; skipping MBIM radio enable")
            return True

        device = detect_mbim_device(self.dev_root)
        if device is None:
            ui.skip("No MBIM device node found (/dev/wwan*mbim* or /dev/cdc-wdm*); "
                    "skipping MBIM radio enable")
            return True

        ui.info(f"{ui.I.SIGNAL}  Ensuring modem radio is ON (MBIM): {device}")

        if self.host.dry_run:
            ui.dry(f"mbimcli -d {device} -p --set-radio-state=on "
                   f"(falls back to direct access, Quectel commands, SoC reset)")
            return True

        if self.direct:
            ui.info("Using direct MBIM access (--direct-mbim)")
        elif self.enable_via_proxy(device):
            return True

        mm_was_active = self.host.ok(
            ["systemctl", "is-active", "--quiet", MM_SERVICE], sudo=True,
        )
        ui.info("Using direct MBIM access (temporary ModemManager stop)")
        self.host.probe(["systemctl", "stop", MM_SERVICE], sudo=True)
        self.host.sleep(1)

        try:
            ok = self._direct_with_reset(device)
        finally:
            if mm_was_active:
                self.host.probe(["systemctl", "start", MM_SERVICE], sudo=True)
                self.host.sleep(1)

        if not ok:
            ui.error("MBIM software radio is still OFF; cannot enable modem")
        return ok
