import tempfile
import unittest
import unittest.mock
from pathlib import Path

from heyomarchy import fingerprint
from heyomarchy.fingerprint import FingerprintSetup

from support import QuietTestCase, done, which_none

SUDO_PAM = (
    "#%PAM-1.0\n"
    "auth\t\tinclude\t\tsystem-auth\n"
    "account\t\tinclude\t\tsystem-auth\n"
    "session\t\tinclude\t\tsystem-auth\n"
)


class TestPamText(unittest.TestCase):
    def test_block_goes_above_first_auth_line(self):
        out = fingerprint.add_pam_block(SUDO_PAM)
        lines = out.splitlines()
        self.assertEqual(lines[1:4], [
            "# BEGIN hey-omarchy fprintd",
            "auth sufficient pam_fprintd.so",
            "# END hey-omarchy fprintd",
        ])
        self.assertTrue(lines[4].startswith("auth\t"))

    def test_appended_when_no_auth_line(self):
        out = fingerprint.add_pam_block("#%PAM-1.0\nsession include x\n")
        self.assertTrue(out.endswith(
            "\n\n# BEGIN hey-omarchy fprintd\n"
            "auth sufficient pam_fprintd.so\n"
            "# END hey-omarchy fprintd\n"))

    def test_strip_restores_original(self):
        self.assertEqual(fingerprint.strip_pam_block(fingerprint.add_pam_block(SUDO_PAM)),
                         SUDO_PAM)

    def test_has_any_fprintd(self):
        self.assertTrue(fingerprint.has_any_fprintd(
            "auth   sufficient  pam_fprintd.so\n"))
        self.assertTrue(fingerprint.has_any_fprintd(
            SUDO_PAM + "  auth [success=1 default=ignore] pam_fprintd.so max-tries=2\n"))
        self.assertFalse(fingerprint.has_any_fprintd("#auth sufficient pam_fprintd.so\n"))
        self.assertFalse(fingerprint.has_any_fprintd(
            "auth required pam_unix.so # pam_fprintd.so later\n"))
        self.assertFalse(fingerprint.has_any_fprintd(SUDO_PAM))


class TestDefaultUser(unittest.TestCase):
    def test_explicit_wins(self):
        self.assertEqual(fingerprint.default_user("carol", {"SUDO_USER": "alice"}),
                         "carol")

    def test_sudo_user_before_user(self):
        env = {"SUDO_USER": "alice", "USER": "root"}
        self.assertEqual(fingerprint.default_user("", env), "alice")

    def test_root_sudo_user_ignored(self):
        env = {"SUDO_USER": "root", "USER": "bob"}
        self.assertEqual(fingerprint.default_user("", env), "bob")

    def test_nothing_known(self):
        self.assertEqual(fingerprint.default_user("", {}), "")


class PamTestCase(QuietTestCase):

    def setUp(self):
        super().setUp()
        self.patch_which()
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        self.pam_dir = Path(td.name)
        p = unittest.mock.patch.object(fingerprint, "PAM_DIR", self.pam_dir)
        p.start()
        self.addCleanup(p.stop)
        self.calls = []
        p = unittest.mock.patch("subprocess.run", side_effect=self.fake_run)
        p.start()
        self.addCleanup(p.stop)

    def fake_run(self, argv, **kwargs):
        self.calls.append(list(argv))
        return done(argv)

    def backups(self, name):
        return list(self.pam_dir.glob(f"{name}.bak.*"))


class TestInstall(PamTestCase):
    def test_install_twice_is_byte_identical(self):
        sudo = self.pam_dir / "sudo"
        sudo.write_text(SUDO_PAM)
        FingerprintSetup(self.host()).run("install")
        first = sudo.read_text()
        out = self.capture(FingerprintSetup(self.host()).run, "install")
        self.assertEqual(sudo.read_text(), first)
        self.assertEqual(first.count("pam_fprintd.so"), 1)
        self.assertEqual(len(self.backups("sudo")), 1)
        self.assertIn("marker found", out)

    def test_only_existing_entry_points_are_touched(self):
        (self.pam_dir / "sudo").write_text(SUDO_PAM)
        FingerprintSetup(self.host()).run("install")
        self.assertEqual(sorted(p.name for p in self.pam_dir.iterdir()
                                if ".bak." not in p.name), ["sudo"])

    def test_existing_fprintd_line_left_alone(self):
        login = self.pam_dir / "login"
        text = "auth sufficient pam_fprintd.so\n" + SUDO_PAM
        login.write_text(text)
        FingerprintSetup(self.host()).run("install")
        self.assertEqual(login.read_text(), text)
        self.assertEqual(self.backups("login"), [])

    def test_no_pam(self):
        (self.pam_dir / "sudo").write_text(SUDO_PAM)
        FingerprintSetup(self.host(), pam=False).run("install")
        self.assertEqual((self.pam_dir / "sudo").read_text(), SUDO_PAM)

    def test_packages_and_service(self):
        FingerprintSetup(self.host(), upgrade=False).run("install")
        self.assertIn(["pacman", "-S", "--needed", "fprintd", "libfprint"], self.calls)
        self.assertIn(["systemctl", "enable", "--now", "fprintd.service"], self.calls)

    def test_without_pacman_exits_1(self):
        self.patch_which(which_none)
        with self.assertRaises(SystemExit) as cm:
            FingerprintSetup(self.host()).run("install")
        self.assertEqual(cm.exception.code, 1)


class TestEnroll(PamTestCase):
    def test_enroll_as_root(self):
        FingerprintSetup(self.host(), enroll=True, user="alice").run("install")
        self.assertIn(["fprintd-enroll", "alice"], self.calls)

    def test_enroll_through_sudo(self):
        h = self.host(dry_run=True, use_sudo=True)
        out = self.capture(FingerprintSetup(h, user="alice").enroll_user)
        self.assertIn("sudo -u alice fprintd-enroll", out)

    def test_no_user_exits_1(self):
        with unittest.mock.patch.dict("os.environ", {}, clear=True):
            with self.assertRaises(SystemExit) as cm:
                FingerprintSetup(self.host(), enroll=True).run("install")
        self.assertEqual(cm.exception.code, 1)
        self.assertFalse(any(c[0] == "fprintd-enroll" for c in self.calls))


class TestUninstall(PamTestCase):
    def test_restores_files_exactly(self):
        sudo = self.pam_dir / "sudo"
        login = self.pam_dir / "system-local-login"
        sudo.write_text(SUDO_PAM)
        login.write_text("#%PAM-1.0\nsession include system-login\n")
        FingerprintSetup(self.host()).run("install")
        self.assertNotEqual(sudo.read_text(), SUDO_PAM)

        FingerprintSetup(self.host()).run("uninstall")
        self.assertEqual(sudo.read_text(), SUDO_PAM)
        self.assertEqual(login.read_text(), "#%PAM-1.0\nsession include system-login\n")
        self.assertIn(["systemctl", "disable", "--now", "fprintd.service"], self.calls)

    def test_hand_written_fprintd_lines_survive(self):
        sudo = self.pam_dir / "sudo"
        text = "auth sufficient pam_fprintd.so\n" + SUDO_PAM
        sudo.write_text(text)
        FingerprintSetup(self.host(), service=False).run("uninstall")
        self.assertEqual(sudo.read_text(), text)
        self.assertFalse(any(c[0] == "systemctl" for c in self.calls))


class TestArgParsing(unittest.TestCase):
    def test_defaults(self):
        args = fingerprint.build_parser().parse_args([])
        self.assertEqual(args.action, "install")
        self.assertFalse(args.enroll)
        self.assertFalse(args.no_pam)

    def test_bad_action_exits_2(self):
        with unittest.mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit) as cm:
                fingerprint.build_parser().parse_args(["enable"])
        self.assertEqual(cm.exception.code, 2)


if __name__ == "__main__":
    unittest.main()
