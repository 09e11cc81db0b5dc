import toml
import copy
import logging
from pathlib import Path
from typing import Optional

from mailstore import MailboxType


class Config:
    def __init__(self, config_file: str = "~/.config/msgedit/config.toml"):
        self.config_path = Path(config_file).expanduser()
        self.config_dir = self.config_path.parent
        self.data = self.load_config()

    def load_config(self):
        # Default configuration
        default_config = {
            "editor": {
                # empty: fall back to $VISUAL, then $EDITOR, then vi
                "command": "",
            },
            "mailbox": {
                "type": "mbox",
                "delete_untag": True,
                # empty: the system temporary directory
                "tmpdir": "",
            },
        }

        if not self.config_path.exists():
            # Create a default config file if it doesn't exist
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w") as f:
                toml.dump(default_config, f)
            logging.info(f"Created default config file at {self.config_path}")
            return default_config

        with open(self.config_path, "r") as f:
            user_config = toml.load(f)

        # Merge user config with defaults
        merged_config = copy.deepcopy(default_config)
        for key, value in user_config.items():
            if isinstance(value, dict) and key in merged_config and isinstance(merged_config[key], dict):
                merged_config[key].update(value)
            else:
                merged_config[key] = value
        return merged_config

    def get_setting(self, section: str, key: str, default=None):
        return self.data.get(section, {}).get(key, default)

    def get_editor(self) -> Optional[str]:
        return self.get_setting("editor", "command") or None

    def get_mailbox_type(self) -> MailboxType:
        return MailboxType(str(self.get_setting("mailbox", "type", "mbox")).lower())

    def get_delete_untag(self) -> bool:
        return bool(self.get_setting("mailbox", "delete_untag", True))

    def get_tmpdir(self) -> Optional[Path]:
        tmpdir = self.get_setting("mailbox", "tmpdir")
        return Path(tmpdir).expanduser() if tmpdir else None
