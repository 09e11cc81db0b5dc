"""
Shared fixtures and utilities for msgedit tests.

This module provides mailbox fixtures in the supported formats and fake
editors that stand in for the external editor program.
"""
import sys
import os
import mailbox
from pathlib import Path
from unittest.mock import MagicMock
import pytest

# Add scripts directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'scripts'))


# ============================================================================
# Message Fixtures
# ============================================================================

FIRST_MESSAGE = b"""From alice@example.com Sun Oct 18 10:00:00 2026
From: Alice <alice@example.com>
To: bob@example.com
Subject: First message
Message-ID: <first@example.com>
Status: RO

Hello Bob,
this is the first body.
"""

SECOND_MESSAGE = b"""From carol@example.com Sun Oct 18 11:00:00 2026
From: Carol <carol@example.com>
To: bob@example.com
Subject: Second message
Message-ID: <second@example.com>

Second body.
"""

THIRD_MESSAGE = b"""From dave@example.com Sun Oct 18 12:00:00 2026
From: Dave <dave@example.com>
To: bob@example.com
Subject: Third message
Message-ID: <third@example.com>
Content-Length: 12
X-Status: F

Third body.
"""


@pytest.fixture
def sample_messages():
    """The three messages of the sample mbox, each with its From line."""
    return [FIRST_MESSAGE, SECOND_MESSAGE, THIRD_MESSAGE]


@pytest.fixture
def sample_mbox(tmp_path, sample_messages):
    """Create an mbox file holding the three sample messages."""
    mbox_path = tmp_path / "inbox.mbox"
    mbox_path.write_bytes(b"\n".join(sample_messages) + b"\n")
    return mbox_path


@pytest.fixture
def sample_maildir(tmp_path):
    """Create a Maildir with one read, flagged message in cur/."""
    maildir_path = tmp_path / "Maildir"
    box = mailbox.Maildir(str(maildir_path), create=True)
    msg = mailbox.MaildirMessage(
        b"From: Erin <erin@example.com>\n"
        b"To: bob@example.com\n"
        b"Subject: Maildir message\n"
        b"Message-ID: <maildir@example.com>\n"
        b"Status: RO\n"
        b"\n"
        b"From here on we differ.\n"
        b">From a quoted line.\n"
        b"Maildir body.\n"
    )
    msg.set_subdir("cur")
    msg.set_flags("FS")
    box.add(msg)
    box.close()
    return maildir_path


@pytest.fixture
def sample_mh(tmp_path):
    """Create an MH folder with one unseen message."""
    mh_path = tmp_path / "mh"
    box = mailbox.MH(str(mh_path), create=True)
    msg = mailbox.MHMessage(
        b"From: Frank <frank@example.com>\n"
        b"Subject: MH message\n"
        b"Message-ID: <mh@example.com>\n"
        b"\n"
        b"From here on we differ.\n"
        b"MH body.\n"
    )
    msg.add_sequence("unseen")
    box.add(msg)
    box.close()
    return mh_path


@pytest.fixture
def staging_dir(tmp_path):
    """Directory for staging files, so tests can check what is left behind."""
    path = tmp_path / "staging"
    path.mkdir()
    return path


# ============================================================================
# Fake Editors
# ============================================================================

class FakeEditor:
    """Records the files it was run on and applies `action` to each."""

    def __init__(self, action=None, result=True):
        self.action = action
        self.result = result
        self.paths = []
        self.contents = []
        self.modes = []

    def __call__(self, path):
        path = Path(path)
        self.paths.append(path)
        self.contents.append(path.read_bytes())
        self.modes.append(os.stat(path).st_mode)
        if self.action:
            self.action(path)
        return self.result


def _make_writable(path):
    os.chmod(path, 0o600)


@pytest.fixture
def fake_editor():
    """The FakeEditor class, for editors with custom actions or results."""
    return FakeEditor


@pytest.fixture
def noop_editor():
    """An editor that leaves the file alone."""
    return FakeEditor()


@pytest.fixture
def touch_editor():
    """An editor that saves the file without changing its content."""
    return FakeEditor(lambda path: os.utime(path))


@pytest.fixture
def rewrite_editor():
    """Factory for an editor that replaces `old` with `new` in the file."""
    def _create(old, new):
        def rewrite(path):
            _make_writable(path)
            path.write_bytes(path.read_bytes().replace(old, new))
        return FakeEditor(rewrite)
    return _create


@pytest.fixture
def truncate_editor():
    """An editor that empties the file."""
    def truncate(path):
        _make_writable(path)
        path.write_bytes(b"")
    return FakeEditor(truncate)


# ============================================================================
# Reporter Mock
# ============================================================================

@pytest.fixture
def report_mock():
    """Create a mock reporter."""
    return MagicMock()
