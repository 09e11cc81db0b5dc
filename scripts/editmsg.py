"""
Edit or view a stored message in an external editor.

The message is copied into a temporary single-message mbox, the editor is
run on that file, and if the file was really changed (and editing is allowed)
its content is appended to the original store as a new message while the old
one is marked for deletion. The permanent store is only written when the
append commits; on failure after the editor ran the temporary file is kept so
the edit can be recovered by hand.
"""
import logging
import os
import stat
import tempfile
import time
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Callable, Optional

from common import LogReporter, Report, resolve_editor, run_editor
from mailstore import (
    STORE_ERRORS,
    CopyHeader,
    CreationContext,
    Flag,
    MailboxType,
    MsgOpen,
    OpenMode,
    append_message,
    close_message,
    commit_message,
    copy_header,
    create_store,
    is_from,
    open_new_message,
    open_store,
    set_flag,
    staging_trailer,
    unquote_from_lines,
)


class Outcome(Enum):
    COMMITTED = 0
    UNMODIFIED = 1
    FAILED = -1


class EditError(Exception):
    """An edit attempt failed; `tempfile` is the preserved staging file, if any."""
    outcome = Outcome.FAILED

    def __init__(self, message: str, tempfile: Optional[Path] = None):
        super().__init__(message)
        self.tempfile = tempfile


class StoreCreateError(EditError):
    pass


class ExportError(EditError):
    pass


class StatError(EditError):
    pass


class StagingReadError(EditError):
    pass


class StoreAppendError(EditError):
    pass


class CommitError(EditError):
    pass


class EditSession:
    """State of one edit attempt."""

    def __init__(self, edit: bool, path: Path):
        self.edit = edit
        self.path = path
        self.mtime = 0
        self.size = 0


def decrease_mtime(path) -> int:
    """
    Returns the mtime of path in whole seconds, first moving it one second
    back if it is not already in the past, so that a rewrite within the
    current second still changes it.
    """
    mtime = int(os.stat(path).st_mtime)
    now = int(time.time())
    if mtime >= now:
        mtime = now - 1
        os.utime(path, (mtime, mtime))
    return mtime


def _create_staging(tmpdir, staging_type: MailboxType, edit: bool):
    staging_trailer(staging_type)
    try:
        fd, name = tempfile.mkstemp(prefix="msgedit-", dir=tmpdir)
        os.close(fd)
    except OSError as e:
        raise StoreCreateError(f"could not create temporary folder: {e.strerror}") from e

    session = EditSession(edit, Path(name))
    try:
        staging = create_store(session.path, staging_type)
    except STORE_ERRORS as e:
        _remove_staging(session.path)
        raise StoreCreateError(f"could not create temporary folder: {e}") from e
    logging.debug(f"Created {staging_type.value} staging folder {session.path}")
    return session, staging


def _export(mailbox, email, staging, session: EditSession) -> None:
    # flags of mbox-like stores live in the status headers, keep them
    chflags = CopyHeader.NOLEN
    if not mailbox.magic.stores_flags_in_headers:
        chflags |= CopyHeader.NOSTATUS

    try:
        try:
            with open_store(mailbox.path, mailbox.magic, OpenMode.READ) as src:
                append_message(staging, src, email, chflags)
        finally:
            staging.close()
    except STORE_ERRORS + (KeyError,) as e:
        raise ExportError(f"could not write temporary mail folder: {e}") from e

    # The trailing separator is not part of the message. Left in place the
    # message would grow by one line on every edit.
    trailer = staging_trailer(staging.magic)
    try:
        size = os.stat(session.path).st_size
        if size >= len(trailer):
            os.truncate(session.path, size - len(trailer))
    except OSError as e:
        raise ExportError(f"could not truncate temporary mail folder: {e.strerror}") from e


def _drop_write_permission(path) -> None:
    try:
        mode = stat.S_IMODE(os.stat(path).st_mode)
        os.chmod(path, mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))
    except OSError as e:
        # the mtime check below still catches any change
        logging.debug(f"Could not remove write permissions of {path}: {e}")


def _stat(path):
    try:
        return os.stat(path)
    except OSError as e:
        raise StatError(f"Can't stat {path}: {e.strerror}") from e


def _check_modified(session: EditSession, report) -> bool:
    """Returns True when the staged file holds an edit that should be reimported."""
    st = _stat(session.path)
    session.size = st.st_size
    mtime = int(st.st_mtime)

    if session.size == 0:
        report(Report.STATUS, "Message file is empty")
        return False
    if session.edit and mtime == session.mtime:
        report(Report.STATUS, "Message not modified")
        return False
    if not session.edit and mtime != session.mtime:
        report(Report.STATUS, "Message of read-only mailbox modified! Ignoring changes.")
        return False
    return session.edit


def _reimport_flags(first_line: bytes, magic: MailboxType):
    chflags = CopyHeader.NONE if magic.stores_flags_in_headers else CopyHeader.NOSTATUS
    msgflags = MsgOpen.NONE
    if is_from(first_line):
        if magic.has_from_lines:
            chflags = CopyHeader.FROM | CopyHeader.FORCE_FROM
    else:
        msgflags = MsgOpen.ADD_FROM
    return chflags, msgflags


def _reimport(mailbox, email, session: EditSession) -> None:
    try:
        fp = open(session.path, "rb")
    except OSError as e:
        raise StagingReadError(f"Can't open message file: {e.strerror}") from e

    with fp:
        try:
            store = open_store(mailbox.path, mailbox.magic, OpenMode.APPEND)
        except STORE_ERRORS as e:
            raise StoreAppendError(f"Can't append to folder: {e}") from e

        try:
            chflags, msgflags = _reimport_flags(fp.readline(), store.magic)
            fp.seek(0)
            logging.debug(f"Reimporting {session.path} with header flags {chflags!r}, {msgflags!r}")

            try:
                msg = open_new_message(store, CreationContext.fresh_copy_of(email), msgflags)
            except STORE_ERRORS as e:
                raise StoreAppendError(f"Can't append to folder: {e}") from e

            try:
                copy_header(fp, msg.fp, CopyHeader.NOLEN | chflags)
                msg.fp.write(b"\n")
                body = fp.read()
                # the export quoted separator-like lines for the staging mbox
                if not store.magic.has_from_lines:
                    body = unquote_from_lines(body)
                msg.fp.write(body)
                commit_message(store, msg)
            except STORE_ERRORS as e:
                raise CommitError(f"Could not commit edited message: {e}") from e
            finally:
                close_message(msg)
        finally:
            store.close()


def _mark_replaced(mailbox, email, delete_untag: bool) -> None:
    set_flag(mailbox, email, Flag.DELETE, True)
    set_flag(mailbox, email, Flag.PURGE, True)
    set_flag(mailbox, email, Flag.READ, True)
    if delete_untag:
        set_flag(mailbox, email, Flag.TAG, False)


def _remove_staging(path) -> None:
    Path(path).unlink(missing_ok=True)
    logging.debug(f"Removed staging folder {path}")


def edit_or_view_one_message(edit: bool, mailbox, email, editor: Callable, report: Callable,
                             delete_untag: bool = True, tmpdir=None,
                             staging_type: MailboxType = MailboxType.MBOX) -> Outcome:
    """
    Edits (edit=True) or views one message in an external editor.

    Returns Outcome.COMMITTED when an edited copy replaced the message and
    Outcome.UNMODIFIED when nothing was written back. Failures raise an
    EditError; once the editor has run the staging file is kept and named
    in the error.
    """
    try:
        session, staging = _create_staging(tmpdir, staging_type, edit)
    except StoreCreateError as e:
        report(Report.ERROR, str(e))
        raise

    try:
        _export(mailbox, email, staging, session)
    except ExportError as e:
        _remove_staging(session.path)
        report(Report.ERROR, str(e))
        raise

    if not edit:
        _drop_write_permission(session.path)

    try:
        try:
            session.mtime = decrease_mtime(session.path)
        except OSError as e:
            raise StatError(f"Can't stat {session.path}: {e.strerror}") from e
        logging.debug(f"Baseline mtime of {session.path} is {session.mtime}")

        if not editor(session.path):
            report(Report.ERROR, f"Error running editor on {session.path}")

        committed = False
        if _check_modified(session, report):
            _reimport(mailbox, email, session)
            committed = True
    except EditError as e:
        e.tempfile = session.path
        report(Report.ERROR, str(e))
        report(Report.STATUS, f"Error. Preserving temporary file: {session.path}")
        raise

    _remove_staging(session.path)
    if not committed:
        return Outcome.UNMODIFIED

    _mark_replaced(mailbox, email, delete_untag)
    return Outcome.COMMITTED


def edit_or_view_message(edit: bool, mailbox, email=None, editor: Optional[Callable] = None,
                         report: Optional[Callable] = None, delete_untag: bool = True,
                         tmpdir=None, staging_type: MailboxType = MailboxType.MBOX) -> Outcome:
    """
    Edits or views email, or every tagged message of mailbox when email is None.

    The first failure aborts the batch by propagating its EditError. The
    result is COMMITTED if any message was replaced, UNMODIFIED otherwise.
    """
    if editor is None:
        editor = partial(run_editor, resolve_editor())
    if report is None:
        report = LogReporter()

    if edit and mailbox.readonly:
        report(Report.STATUS, "Mailbox is read-only, opening message for viewing only")
        edit = False

    options = dict(editor=editor, report=report, delete_untag=delete_untag,
                   tmpdir=tmpdir, staging_type=staging_type)
    if email is not None:
        return edit_or_view_one_message(edit, mailbox, email, **options)

    result = Outcome.UNMODIFIED
    for index, tagged in enumerate(list(mailbox.emails)):
        if not mailbox.is_tagged(index):
            continue
        if edit_or_view_one_message(edit, mailbox, tagged, **options) is Outcome.COMMITTED:
            result = Outcome.COMMITTED
    return result


def edit_message(mailbox, email=None, **kwargs) -> Outcome:
    return edit_or_view_message(True, mailbox, email, **kwargs)


def view_message(mailbox, email=None, **kwargs) -> Outcome:
    return edit_or_view_message(False, mailbox, email, **kwargs)
