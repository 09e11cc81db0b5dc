"""
Message store access for msgedit.

Thin layer over the standard library's mailbox module: opening stores in a
given mode, copying messages with header filtering, creating and committing
new messages, and an in-memory view of a mailbox whose flags can be changed
and later written back with sync().
"""
import io
import logging
import mailbox
import os
import re
import time
from email.parser import BytesHeaderParser
from email.utils import parseaddr, parsedate_tz, mktime_tz
from enum import Enum, IntFlag
from pathlib import Path
from typing import List, NamedTuple, Optional

# Errors a store operation may raise; callers surface them as-is.
STORE_ERRORS = (OSError, mailbox.Error)


class MailboxType(Enum):
    MBOX = "mbox"
    MMDF = "mmdf"
    MAILDIR = "maildir"
    MH = "mh"

    @property
    def stores_flags_in_headers(self) -> bool:
        """True when flags live in Status:/X-Status: lines of the message."""
        return self in (MailboxType.MBOX, MailboxType.MMDF)

    @property
    def has_from_lines(self) -> bool:
        """True when every message starts with a "From " separator line."""
        return self in (MailboxType.MBOX, MailboxType.MMDF)


class OpenMode(Enum):
    READ = "read"
    NEW = "new"
    APPEND = "append"


class CopyHeader(IntFlag):
    NONE = 0
    FROM = 1        # keep a leading "From " separator
    FORCE_FROM = 2  # keep it even when it does not parse as a separator
    NOSTATUS = 4    # drop Status: and X-Status:
    NOLEN = 8       # drop Content-Length: and Lines:


class MsgOpen(IntFlag):
    NONE = 0
    ADD_FROM = 1    # the store synthesizes its own separator line


class Flag(Enum):
    DELETE = "deleted"
    PURGE = "purge"
    READ = "read"
    OLD = "old"
    TAG = "tagged"
    FLAG = "flagged"
    REPLIED = "replied"


_MAILBOX_CLASSES = {
    MailboxType.MBOX: mailbox.mbox,
    MailboxType.MMDF: mailbox.MMDF,
    MailboxType.MAILDIR: mailbox.Maildir,
    MailboxType.MH: mailbox.MH,
}

# Record terminator written after each message by formats usable for staging.
STAGING_TRAILERS = {
    MailboxType.MBOX: b"\n",
}

_FROM_LINE = re.compile(
    rb"^From (?:\S+ +)?"
    rb"(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun),? +"
    rb"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec) +"
    rb"\d{1,2} +\d{1,2}:\d{2}(?::\d{2})?"
    rb"(?: +[-+A-Za-z0-9]+)? +\d{2,4}\b"
)

# body lines an mbox reader would take for a separator, possibly already quoted
_QUOTED_FROM = re.compile(rb"^(>*From )", re.MULTILINE)
_UNQUOTE_FROM = re.compile(rb"^>(>*From )", re.MULTILINE)

_STATUS_HEADERS = (b"status:", b"x-status:")
_LENGTH_HEADERS = (b"content-length:", b"lines:")

# headers tag_pattern() can match, and the Email attribute holding each
_HEADER_FIELDS = {"subject": "subject", "from": "sender"}


def is_from(line: bytes) -> bool:
    """Checks whether line is an mbox "From " separator with a valid date."""
    return bool(_FROM_LINE.match(line))


def make_from_line(data: bytes, when: Optional[float] = None) -> bytes:
    """
    Builds a "From " separator for a message that has none.

    The envelope sender is taken from Return-Path, Sender or From, in that
    order. The timestamp is `when`, else the message's Date header, else now.
    """
    headers = BytesHeaderParser().parsebytes(data)
    sender = ""
    for name in ("Return-Path", "Sender", "From"):
        value = headers.get(name)
        if value:
            sender = parseaddr(str(value))[1]
            if sender:
                break
    if not sender or " " in sender:
        sender = "MAILER-DAEMON"

    if when is None:
        parsed = parsedate_tz(str(headers.get("Date", "")))
        when = mktime_tz(parsed) if parsed else time.time()
    stamp = time.asctime(time.gmtime(when))
    return f"From {sender} {stamp}".encode("ascii", "replace")


def quote_from_lines(body: bytes) -> bytes:
    """Quotes body lines matching `>*From ` with one more `>` (mboxrd)."""
    return _QUOTED_FROM.sub(rb">\1", body)


def unquote_from_lines(body: bytes) -> bytes:
    """Reverses quote_from_lines()."""
    return _UNQUOTE_FROM.sub(rb"\1", body)


def copy_header(src, dest, flags: CopyHeader) -> None:
    """
    Copies the header block of src to dest, filtered by flags.

    Reading stops after the blank line ending the header (or at EOF); the
    blank line itself is consumed but not written, so src is left positioned
    at the start of the body.
    """
    first = True
    skipping = False
    while True:
        line = src.readline()
        if not line or line in (b"\n", b"\r\n"):
            break
        if not line.endswith(b"\n"):
            line += b"\n"

        if first:
            first = False
            if line.startswith(b"From "):
                if flags & CopyHeader.FROM and (flags & CopyHeader.FORCE_FROM or is_from(line)):
                    dest.write(line)
                continue

        # continuation lines follow the fate of their header
        if line[:1] in (b" ", b"\t"):
            if not skipping:
                dest.write(line)
            continue

        lower = line.lower()
        skipping = bool(
            (flags & CopyHeader.NOSTATUS and lower.startswith(_STATUS_HEADERS))
            or (flags & CopyHeader.NOLEN and lower.startswith(_LENGTH_HEADERS))
        )
        if not skipping:
            dest.write(line)


class Store:
    """An open message store, valid between open_store() and close()."""

    def __init__(self, path: Path, magic: MailboxType, mode: OpenMode, box: mailbox.Mailbox):
        self.path = path
        self.magic = magic
        self.mode = mode
        self.box = box
        self.closed = False

    def keys(self) -> list:
        return sorted(self.box.keys())

    def get_bytes(self, key) -> bytes:
        """Returns the raw message, including its "From " line where the format has one."""
        if self.magic.has_from_lines:
            return self.box.get_bytes(key, from_=True)
        return self.box.get_bytes(key)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.box.close()
        logging.debug(f"Closed {self.magic.value} store {self.path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def open_store(path, magic: MailboxType, mode: OpenMode) -> Store:
    """
    Opens the store at path.

    READ and APPEND require an existing store, NEW creates one. Stores opened
    for APPEND are locked until closed.
    """
    path = Path(path).expanduser()
    box = _MAILBOX_CLASSES[magic](str(path), create=(mode is OpenMode.NEW))
    if mode is OpenMode.APPEND:
        try:
            box.lock()
        except BaseException:
            box.close()
            raise
    logging.debug(f"Opened {magic.value} store {path} ({mode.value})")
    return Store(path, magic, mode, box)


def create_store(path, magic: MailboxType) -> Store:
    """Creates a new, empty store of the given type at path."""
    return open_store(path, magic, OpenMode.NEW)


def staging_trailer(magic: MailboxType) -> bytes:
    """Returns the record terminator the staging format writes after a message."""
    try:
        return STAGING_TRAILERS[magic]
    except KeyError:
        raise ValueError(f"{magic.value} cannot be used as a staging format") from None


def append_message(dest: Store, src: Store, email, chflags: CopyHeader) -> None:
    """
    Copies one message from src into dest, filtering headers with chflags.

    Stores with separator lines always get one: the source's own if it has
    one, a synthesized one otherwise. A body coming from a store without
    separator lines is quoted mboxrd-style so unquote_from_lines() restores
    it exactly.
    """
    fp = io.BytesIO(src.get_bytes(email.key))
    first = fp.readline()
    if first.startswith(b"From "):
        from_line = first.rstrip(b"\r\n")
    else:
        from_line = make_from_line(fp.getvalue())
        fp.seek(0)

    out = io.BytesIO()
    if dest.magic.has_from_lines:
        out.write(from_line + b"\n")
    copy_header(fp, out, chflags & ~(CopyHeader.FROM | CopyHeader.FORCE_FROM))
    out.write(b"\n")
    body = fp.read()
    if dest.magic.has_from_lines and not src.magic.has_from_lines:
        body = quote_from_lines(body)
    out.write(body)

    key = dest.box.add(out.getvalue())
    dest.box.flush()
    logging.debug(f"Copied message {email.index + 1} of {src.path} to {dest.path} as {key}")


class CreationContext(NamedTuple):
    """Flags that decide where and how a new message is placed in a store."""
    read: bool = False
    old: bool = False
    flagged: bool = False
    replied: bool = False

    @classmethod
    def fresh_copy_of(cls, email) -> "CreationContext":
        """Context for a replacement of email that should look freshly delivered."""
        return cls(read=False, old=False, flagged=email.flagged, replied=email.replied)


class NewMessage:
    """A message being written; its content goes to fp until commit_message()."""

    def __init__(self, store: Store, context: CreationContext, flags: MsgOpen):
        self.store = store
        self.context = context
        self.flags = flags
        self.fp = io.BytesIO()
        self.key = None


def open_new_message(store: Store, context: CreationContext, flags: MsgOpen = MsgOpen.NONE) -> NewMessage:
    if store.closed or store.mode is OpenMode.READ:
        raise mailbox.Error(f"Store {store.path} is not open for writing")
    return NewMessage(store, context, flags)


def commit_message(store: Store, msg: NewMessage):
    """Adds msg to store in one step and returns its key."""
    data = msg.fp.getvalue()
    ctx = msg.context

    if store.magic.has_from_lines:
        if msg.flags & MsgOpen.ADD_FROM:
            data = make_from_line(data, time.time()) + b"\n" + data
        payload = data
    elif store.magic is MailboxType.MAILDIR:
        payload = mailbox.MaildirMessage(data)
        payload.set_subdir("cur" if ctx.read or ctx.old else "new")
        payload.set_flags(_maildir_flags(ctx.read, ctx.flagged, ctx.replied, False))
    else:
        payload = mailbox.MHMessage(data)
        for sequence in _mh_sequences(ctx.read, ctx.flagged, ctx.replied):
            payload.add_sequence(sequence)

    msg.key = store.box.add(payload)
    store.box.flush()
    logging.info(f"Committed new message {msg.key} to {store.path}")
    return msg.key


def close_message(msg: NewMessage) -> None:
    msg.fp.close()


def _maildir_flags(read, flagged, replied, deleted) -> str:
    flags = ""
    if flagged:
        flags += "F"
    if replied:
        flags += "R"
    if read:
        flags += "S"
    if deleted:
        flags += "T"
    return flags


def _mh_sequences(read, flagged, replied) -> List[str]:
    sequences = []
    if not read:
        sequences.append("unseen")
    if flagged:
        sequences.append("flagged")
    if replied:
        sequences.append("replied")
    return sequences


class Email:
    """One message of a Mailbox and its flags as currently known in memory."""

    def __init__(self, index: int, key, message_id: str = "", subject: str = "", sender: str = ""):
        self.index = index
        self.key = key
        self.message_id = message_id
        self.subject = subject
        self.sender = sender
        self.read = False
        self.old = False
        self.flagged = False
        self.replied = False
        self.tagged = False
        self.deleted = False
        self.purge = False
        self.changed = False

    def __repr__(self):
        return f"Email(index={self.index}, key={self.key!r}, subject={self.subject!r})"


def _email_from_message(index, key, msg) -> Email:
    email = Email(
        index, key,
        message_id=str(msg.get("Message-ID", "")).strip(),
        subject=str(msg.get("Subject", "")),
        sender=str(msg.get("From", "")),
    )
    if isinstance(msg, (mailbox.mboxMessage, mailbox.MMDFMessage)):
        flags = msg.get_flags()
        email.read = "R" in flags
        email.old = "O" in flags and not email.read
        email.flagged = "F" in flags
        email.replied = "A" in flags
        email.deleted = "D" in flags
    elif isinstance(msg, mailbox.MaildirMessage):
        flags = msg.get_flags()
        email.read = "S" in flags
        email.old = msg.get_subdir() == "cur" and not email.read
        email.flagged = "F" in flags
        email.replied = "R" in flags
        email.deleted = "T" in flags
    elif isinstance(msg, mailbox.MHMessage):
        sequences = msg.get_sequences()
        email.read = "unseen" not in sequences
        email.flagged = "flagged" in sequences
        email.replied = "replied" in sequences
    return email


def _write_flags(msg, email: Email) -> None:
    if isinstance(msg, (mailbox.mboxMessage, mailbox.MMDFMessage)):
        flags = ""
        if email.read:
            flags += "RO"
        elif email.old:
            flags += "O"
        if email.flagged:
            flags += "F"
        if email.replied:
            flags += "A"
        msg.set_flags(flags)
    elif isinstance(msg, mailbox.MaildirMessage):
        msg.set_subdir("cur" if email.read or email.old else "new")
        msg.set_flags(_maildir_flags(email.read, email.flagged, email.replied, False))
    elif isinstance(msg, mailbox.MHMessage):
        msg.set_sequences(_mh_sequences(email.read, email.flagged, email.replied))


def set_flag(mbox: "Mailbox", email: Email, flag: Flag, value: bool) -> None:
    """
    Sets or clears a flag on email.

    Tags are selection state only and never written to the store. Other flags
    are recorded as pending changes for Mailbox.sync(); they are refused on a
    read-only mailbox.
    """
    value = bool(value)
    if flag is Flag.TAG:
        email.tagged = value
        return
    if mbox.readonly:
        logging.warning(f"Mailbox {mbox.path} is read-only, not changing {flag.value} of message {email.index + 1}")
        return

    attribute = flag.value
    if getattr(email, attribute) == value:
        return
    setattr(email, attribute, value)
    if flag is Flag.READ and value:
        email.old = False
    email.changed = True
    logging.debug(f"Set {attribute}={value} on message {email.index + 1} of {mbox.path}")


class Mailbox:
    """
    In-memory view of a permanent store: its messages, their flags and the
    current tag selection.
    """

    def __init__(self, path, magic: MailboxType, readonly: Optional[bool] = None):
        self.path = Path(path).expanduser()
        self.magic = magic
        if readonly is None:
            readonly = not os.access(self.path, os.W_OK)
        self.readonly = readonly
        self.emails: List[Email] = []
        self.load()

    def load(self):
        """(Re)reads messages and flags from the store. Tags are cleared."""
        with open_store(self.path, self.magic, OpenMode.READ) as store:
            self.emails = [
                _email_from_message(index, key, store.box.get_message(key))
                for index, key in enumerate(store.keys())
            ]
        logging.debug(f"Loaded {len(self.emails)} messages from {self.path}")

    def is_tagged(self, index: int) -> bool:
        return self.emails[index].tagged

    def tag(self, index: int, value: bool = True) -> None:
        set_flag(self, self.emails[index], Flag.TAG, value)

    def tag_pattern(self, pattern: str, header: str = "Subject") -> int:
        """Tags every message whose Subject (or From) header matches the regex; returns the count."""
        try:
            field = _HEADER_FIELDS[header.lower()]
        except KeyError:
            raise ValueError(f"Cannot match on header {header!r}") from None
        regex = re.compile(pattern, re.IGNORECASE)
        count = 0
        for email in self.emails:
            if regex.search(getattr(email, field)):
                set_flag(self, email, Flag.TAG, True)
                count += 1
        return count

    def tagged(self) -> List[Email]:
        return [email for email in self.emails if email.tagged]

    def sync(self) -> None:
        """
        Writes pending flag changes back and expunges deleted messages.

        Every affected message is checked against the store first; if the
        store lost messages or a Message-ID no longer matches, another program
        rewrote it and nothing is changed.
        """
        pending = [email for email in self.emails if email.changed or email.deleted]
        if self.readonly or not pending:
            return

        with open_store(self.path, self.magic, OpenMode.APPEND) as store:
            keys = store.keys()
            if len(keys) < len(self.emails):
                raise mailbox.ExternalClashError(
                    f"{self.path} has {len(keys)} messages, expected at least {len(self.emails)}"
                )
            messages = {}
            for email in pending:
                try:
                    msg = store.box.get_message(email.key)
                except KeyError:
                    raise mailbox.ExternalClashError(f"Message {email.key} vanished from {self.path}") from None
                if str(msg.get("Message-ID", "")).strip() != email.message_id:
                    raise mailbox.ExternalClashError(f"Message {email.key} of {self.path} was changed by another program")
                messages[email.key] = msg

            expunged = 0
            for email in pending:
                if email.deleted:
                    store.box.remove(email.key)
                    expunged += 1
                else:
                    msg = messages[email.key]
                    _write_flags(msg, email)
                    store.box[email.key] = msg

        logging.info(f"Synced {self.path}: {len(pending) - expunged} updated, {expunged} expunged")
        self.load()
