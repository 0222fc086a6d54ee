import io
import os
import subprocess
import unittest
import unittest.mock
from contextlib import redirect_stdout

from heyomarchy.system import Host

_DEVNULL = open(os.devnull, "w")


def done(argv, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(argv, returncode, stdout=stdout, stderr=stderr)


def which_all(name):
    return f"/usr/bin/{name}"


def which_none(name):
    return None


class QuietTestCase(unittest.TestCase):
    """Suppresses tool output; ``capture()`` re-enables it for one block."""

    def setUp(self):
        self._suppress = redirect_stdout(_DEVNULL)
        self._suppress.__enter__()

    def tearDown(self):
        self._suppress.__exit__(None, None, None)

    def capture(self, fn, *args, **kwargs):
        """Call *fn* and return everything it printed to stdout."""
        self._suppress.__exit__(None, None, None)
        buf = io.StringIO()
        try:
            with redirect_stdout(buf):
                fn(*args, **kwargs)
        finally:
            self._suppress.__enter__()
        return buf.getvalue()

    def host(self, dry_run=False, **kwargs):
        """A root Host (no sudo prefix) that never really sleeps."""
        kwargs.setdefault("use_sudo", False)
        kwargs.setdefault("sleep", lambda secs: None)
        return Host(dry_run=dry_run, **kwargs)

    def patch_which(self, fn=which_all):
        p = unittest.mock.patch("shutil.which", side_effect=fn)
        p.start()
        self.addCleanup(p.stop)
