import tempfile
import unittest
import unittest.mock
from pathlib import Path

from heyomarchy import ddcutil
from heyomarchy.ddcutil import DdcutilSetup

from support import QuietTestCase, done, which_none


def which_only(*tools):
    return lambda name: f"/usr/bin/{name}" if name in tools else None


class TestPickInstaller(QuietTestCase):
    def test_explicit_choice_kept(self):
        self.patch_which(which_only("pacman"))
        self.assertEqual(ddcutil.pick_installer("pacman"), "pacman")

    def test_explicit_choice_must_exist(self):
        self.patch_which(which_only("pacman"))
        with self.assertRaises(SystemExit) as cm:
            ddcutil.pick_installer("yay")
        self.assertEqual(cm.exception.code, 1)

    def test_prefers_yay(self):
        self.patch_which(which_only("yay", "pacman"))
        self.assertEqual(ddcutil.pick_installer("auto"), "yay")

    def test_falls_back_to_pacman(self):
        self.patch_which(which_only("pacman"))
        self.assertEqual(ddcutil.pick_installer("auto"), "pacman")

    def test_neither_exits_1(self):
        self.patch_which(which_none)
        with self.assertRaises(SystemExit) as cm:
            ddcutil.pick_installer("auto")
        self.assertEqual(cm.exception.code, 1)


class TestArgParsing(unittest.TestCase):
    def test_installer_flags(self):
        p = ddcutil.build_parser()
        self.assertEqual(p.parse_args([]).installer, "auto")
        self.assertEqual(p.parse_args(["--yay"]).installer, "yay")
        self.assertEqual(p.parse_args(["--pacman"]).installer, "pacman")

    def test_yay_and_pacman_conflict(self):
        with unittest.mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit) as cm:
                ddcutil.build_parser().parse_args(["--yay", "--pacman"])
        self.assertEqual(cm.exception.code, 2)


class DdcutilTestCase(QuietTestCase):

    def setUp(self):
        super().setUp()
        self.patch_which()
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        self.root = Path(td.name)
        self.dev = self.root / "dev"
        self.dev.mkdir()
        self.conf = self.root / "modules-load.d" / "i2c-dev.conf"
        for name, value in (("DEV_ROOT", self.dev), ("MODULES_LOAD_CONF", self.conf)):
            p = unittest.mock.patch.object(ddcutil, name, value)
            p.start()
            self.addCleanup(p.stop)
        self.calls = []
        self.detect_rc = 0
        p = unittest.mock.patch("subprocess.run", side_effect=self.fake_run)
        p.start()
        self.addCleanup(p.stop)

    def fake_run(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        if argv == ["ddcutil", "detect"]:
            return done(argv, self.detect_rc)
        return done(argv)


class TestSetup(DdcutilTestCase):
    def test_yay_runs_without_sudo(self):
        h = self.host(dry_run=True, use_sudo=True)
        out = self.capture(DdcutilSetup(h, installer="yay").install_package)
        self.assertIn("yay -S --needed ddcutil", out)
        self.assertNotIn("sudo yay", out)

    def test_pacman_runs_with_sudo(self):
        h = self.host(dry_run=True, use_sudo=True)
        out = self.capture(DdcutilSetup(h, installer="pacman").install_package)
        self.assertIn("sudo pacman -S --needed ddcutil", out)

    def test_missing_binary_after_install_exits_1(self):
        self.patch_which(which_only("pacman"))
        with self.assertRaises(SystemExit) as cm:
            DdcutilSetup(self.host(), installer="pacman").install_package()
        self.assertEqual(cm.exception.code, 1)

    def test_modprobe_only_without_i2c_nodes(self):
        DdcutilSetup(self.host()).load_module()
        self.assertIn(["modprobe", "i2c-dev"], self.calls)

        self.calls.clear()
        (self.dev / "i2c-3").touch()
        DdcutilSetup(self.host()).load_module()
        self.assertEqual(self.calls, [])

    def test_persist_writes_module_list(self):
        s = DdcutilSetup(self.host(), persist_module=True)
        s.persist()
        self.assertEqual(self.conf.read_text(), "i2c-dev\n")
        out = self.capture(s.persist)
        self.assertIn("No change needed", out)

    def test_detect_retries_with_sudo(self):
        self.detect_rc = 1
        h = self.host(use_sudo=True)
        DdcutilSetup(h).run_detect()
        self.assertEqual(self.calls, [["ddcutil", "detect"],
                                      ["sudo", "ddcutil", "detect"]])

    def test_full_run_default_steps(self):
        out = self.capture(DdcutilSetup(self.host(), installer="pacman").run)
        self.assertIn("[4/4]", out)
        self.assertIn(["ddcutil", "install-udev-rules"], self.calls)
        self.assertIn(["udevadm", "trigger", "--subsystem-match=i2c", "--action=add"],
                      self.calls)
        self.assertFalse(self.conf.exists())

    def test_skips(self):
        s = DdcutilSetup(self.host(), installer="pacman", modprobe=False,
                         udev=False, detect=False)
        out = self.capture(s.run)
        self.assertIn("[1/1]", out)
        self.assertEqual(self.calls, [["pacman", "-S", "--needed", "ddcutil"]])


class TestMain(QuietTestCase):
    def test_yay_requested_but_missing_exits_1(self):
        self.patch_which(which_only("pacman", "sudo"))
        with unittest.mock.patch("subprocess.run",
                                 side_effect=AssertionError("executed")):
            with self.assertRaises(SystemExit) as cm:
                ddcutil.main(["--yay", "--no-detect"])
        self.assertEqual(cm.exception.code, 1)

    def test_vanished_executable_exits_1(self):
        self.patch_which()
        missing = FileNotFoundError(2, "No such file or directory", "yay")
        with unittest.mock.patch("subprocess.run", side_effect=missing):
            with self.assertRaises(SystemExit) as cm:
                ddcutil.main(["--yay", "--no-detect"])
        self.assertEqual(cm.exception.code, 1)


if __name__ == "__main__":
    unittest.main()
