#!/usr/bin/env python3

import sys
import argparse
import logging
from functools import partial

import toml

from config import Config
from common import LogReporter, resolve_editor, run_editor
from mailstore import STORE_ERRORS, Mailbox, MailboxType
from editmsg import EditError, Outcome, edit_or_view_message

# Set up basic logging to console
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


def flag_letters(email) -> str:
    """Status column similar to a mail index: D deleted, N new, O old, r replied, ! flagged, * tagged."""
    letters = ""
    if email.deleted:
        letters += "D"
    elif not email.read:
        letters += "O" if email.old else "N"
    else:
        letters += " "
    letters += "r" if email.replied else " "
    letters += "!" if email.flagged else " "
    letters += "*" if email.tagged else " "
    return letters


def list_messages(mailbox):
    for email in mailbox.emails:
        print(f"{email.index + 1:4d} {flag_letters(email)} {email.sender[:30]:30} {email.subject}")


def build_parser():
    parser = argparse.ArgumentParser(
        description="Edit (or view) messages of a mailbox in an external editor."
    )
    parser.add_argument("mailbox", help="Path to the mailbox (mbox/MMDF file, Maildir or MH directory).")
    parser.add_argument("--type", choices=[t.value for t in MailboxType],
                        help="Mailbox format (default: from the config file).")
    parser.add_argument("--config", default="~/.config/msgedit/config.toml",
                        help="Path to the configuration file.")
    parser.add_argument("--view", action="store_true",
                        help="Open messages read-only; changes made in the editor are discarded.")
    parser.add_argument("--message", type=int, metavar="N",
                        help="Edit message number N (1-based).")
    parser.add_argument("--tag", type=int, nargs="+", default=[], metavar="N",
                        help="Tag message numbers for batch editing.")
    parser.add_argument("--tag-pattern", metavar="REGEX",
                        help="Tag every message whose header matches REGEX.")
    parser.add_argument("--header", choices=["Subject", "From"], default="Subject",
                        type=str.capitalize, metavar="NAME",
                        help="Header matched by --tag-pattern: Subject or From (default: Subject).")
    parser.add_argument("--list", action="store_true", help="List messages and exit.")
    parser.add_argument("--editor", help="Editor command (default: config, $VISUAL, $EDITOR, vi).")
    parser.add_argument("--no-sync", action="store_true",
                        help="Do not write flag changes back or expunge replaced messages.")
    parser.add_argument("--gui", action="store_true", help="Report errors and status in dialogs.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser


def _message_index(mailbox, number):
    if not 1 <= number <= len(mailbox.emails):
        logging.error(f"No message {number} in {mailbox.path} ({len(mailbox.emails)} messages).")
        return None
    return number - 1


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = Config(args.config)
        magic = MailboxType(args.type) if args.type else config.get_mailbox_type()
    except (OSError, ValueError, toml.TomlDecodeError) as e:
        logging.error(f"Error loading configuration file {args.config}: {e}")
        return 1

    try:
        mailbox = Mailbox(args.mailbox, magic)
    except STORE_ERRORS as e:
        logging.error(f"Could not open mailbox {args.mailbox}: {e}")
        return 1

    if args.list:
        list_messages(mailbox)
        return 0

    report = LogReporter()
    if args.gui:
        from PySide6.QtWidgets import QApplication
        from dialogs import QtReporter
        app = QApplication.instance() or QApplication(sys.argv)
        report = QtReporter()

    for number in args.tag:
        index = _message_index(mailbox, number)
        if index is None:
            return 1
        mailbox.tag(index)
    if args.tag_pattern:
        count = mailbox.tag_pattern(args.tag_pattern, args.header)
        logging.info(f"Tagged {count} messages matching '{args.tag_pattern}'")

    email = None
    if args.message is not None:
        index = _message_index(mailbox, args.message)
        if index is None:
            return 1
        email = mailbox.emails[index]
    elif not mailbox.tagged():
        logging.error("No message selected. Use --message, --tag or --tag-pattern.")
        return 1

    editor = partial(run_editor, resolve_editor(args.editor or config.get_editor()))
    try:
        outcome = edit_or_view_message(
            not args.view, mailbox, email,
            editor=editor,
            report=report,
            delete_untag=config.get_delete_untag(),
            tmpdir=config.get_tmpdir(),
        )
    except EditError as e:
        logging.error(f"Editing failed: {e}")
        outcome = e.outcome

    # messages replaced before a failure still need their originals expunged
    if not args.view and not args.no_sync:
        try:
            mailbox.sync()
        except STORE_ERRORS as e:
            logging.error(f"Could not sync mailbox {mailbox.path}: {e}")
            return 1

    return 1 if outcome is Outcome.FAILED else 0


if __name__ == "__main__":
    sys.exit(main())
