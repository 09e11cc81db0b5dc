import logging
import os
import shlex
import subprocess
from enum import Enum
from typing import Optional


class Report(Enum):
    ERROR = "error"
    STATUS = "status"


class LogReporter:
    """Reports errors and status messages to the log."""

    def __call__(self, kind: Report, text: str) -> None:
        if kind is Report.ERROR:
            logging.error(text)
        else:
            logging.info(text)


def resolve_editor(configured: Optional[str] = None) -> str:
    """
    Picks the editor command: the configured one, else $VISUAL, else $EDITOR,
    else vi.
    """
    return configured or os.environ.get("VISUAL") or os.environ.get("EDITOR") or "vi"


def run_editor(command: str, file_path) -> bool:
    """
    Runs the editor on file_path and waits for it to exit.

    The command may carry its own arguments ("vim -c 'set tw=72'"); the file
    is appended last. Returns False if the editor could not be started or
    exited with an error.
    """
    argv = shlex.split(command) + [str(file_path)]
    logging.debug(f"Running editor: {argv}")
    try:
        subprocess.run(argv, check=True)
    except FileNotFoundError:
        logging.error(f"Editor '{command}' not found. Please check your system PATH.")
        return False
    except subprocess.CalledProcessError as e:
        logging.error(f"Editor command failed with error: {e}")
        return False
    return True
