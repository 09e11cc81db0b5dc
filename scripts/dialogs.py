from PySide6.QtWidgets import (
    QDialog, QDialogButtonBox, QLabel, QMessageBox, QTextEdit, QVBoxLayout,
)
import logging

from common import Report


# Custom dialog for displaying copyable error messages
class CopyableErrorDialog(QDialog):
    def __init__(self, title, message, parent=None):
        super().__init__(parent)
        self.setWindowTitle(title)
        self.setMinimumWidth(500)

        layout = QVBoxLayout(self)

        label = QLabel("The following error occurred:")
        layout.addWidget(label)

        # temp file paths in error messages need to be copyable
        self.text_edit = QTextEdit()
        self.text_edit.setReadOnly(True)
        self.text_edit.setPlainText(message)
        layout.addWidget(self.text_edit)

        button_box = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok)
        button_box.accepted.connect(self.accept)
        layout.addWidget(button_box)


def display_error(parent, title, message):
    dialog = CopyableErrorDialog(title, message, parent=parent)
    dialog.exec()


def display_status(parent, title, message):
    QMessageBox.information(parent, title, message)


class QtReporter:
    """Reports errors in a copyable dialog and status messages in a message box."""

    def __init__(self, parent=None, title="Edit Message"):
        self.parent = parent
        self.title = title

    def __call__(self, kind: Report, text: str) -> None:
        if kind is Report.ERROR:
            logging.error(text)
            display_error(self.parent, self.title, text)
        else:
            logging.info(text)
            display_status(self.parent, self.title, text)
