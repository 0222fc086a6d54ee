"""hey-omarchy <tool> [args...]: one entry point for every setup tool."""

import argparse

from heyomarchy import __version__, ddcutil, fingerprint, graphics, wwan

TOOLS = {
    "wwan": (wwan.main, "WWAN (docomo) via ModemManager + NetworkManager"),
    "fingerprint": (fingerprint.main, "fprintd + PAM fingerprint auth"),
    "graphics": (graphics.main, "Mesa/Vulkan packages (lib32 when multilib)"),
    "ddcutil": (ddcutil.main, "ddcutil + i2c-dev access for external displays"),
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hey-omarchy",
        description="Desktop bring-up helpers for an Arch Linux ThinkPad X1 13\".",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="tools:\n" + "".join(
            f"  {name:<12} {summary}\n" for name, (_, summary) in TOOLS.items()
        ) + "\nRun 'hey-omarchy <tool> --help' for a tool's own options.\n",
    )
    p.add_argument("--version", action="version",
                   version=f"%(prog)s {__version__}")
    p.add_argument("tool", choices=sorted(TOOLS))
    p.add_argument("args", nargs=argparse.REMAINDER,
                   help="arguments passed to the tool")
    return p


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    entry, _ = TOOLS[args.tool]
    entry(args.args)


if __name__ == "__main__":
    main()
