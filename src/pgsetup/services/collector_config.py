"""Collector configuration file (INI) access."""

import configparser
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from pgsetup.constants import COLLECTOR_SECTION, CONFIG_FILE_MODE, DEFAULT_SECTION
from pgsetup.errors import SetupError


class ConfigSection:
    """A named section of the collector config; keys are upserted in place."""

    def __init__(self, parser: configparser.ConfigParser, name: str):
        self._parser = parser
        self.name = name

    def has_key(self, key: str) -> bool:
        if self.name == DEFAULT_SECTION:
            return key in self._parser.defaults()
        return self._parser.has_option(self.name, key)

    def get_key(self, key: str) -> str:
        if not self.has_key(key):
            raise SetupError(f"key '{key}' not defined in section '{self.name}'")
        if self.name == DEFAULT_SECTION:
            return self._parser.defaults()[key]
        return self._parser.get(self.name, key)

    def get_bool(self, key: str) -> bool:
        value = self.get_key(key).strip().lower()
        if value in ("1", "t", "true", "yes", "y", "on"):
            return True
        if value in ("0", "f", "false", "no", "n", "off"):
            return False
        raise SetupError(f"key '{key}' in section '{self.name}' is not a boolean: {value}")

    def get_list(self, key: str, separator: str = ",") -> List[str]:
        return [item.strip() for item in self.get_key(key).split(separator) if item.strip()]

    def new_key(self, key: str, value: str):
        self._parser.set(self.name, key, value)


class CollectorConfig:
    """In-memory collector config with one ``pganalyze`` section and one server section."""

    def __init__(self, parser: configparser.ConfigParser, path: Optional[str] = None):
        self.parser = parser
        self.path = path

    @staticmethod
    def _new_parser() -> configparser.ConfigParser:
        parser = configparser.ConfigParser(interpolation=None, default_section=DEFAULT_SECTION)
        parser.optionxform = str
        return parser

    @classmethod
    def load(cls, path: str) -> "CollectorConfig":
        config_path = Path(path)
        if not config_path.exists():
            raise SetupError(f"Collector config file not found: {path}")

        parser = cls._new_parser()
        try:
            with config_path.open(encoding="utf-8") as file_obj:
                parser.read_file(file_obj)
        except (configparser.Error, OSError) as exc:
            raise SetupError(f"Invalid collector config file '{path}': {exc}") from exc
        return cls(parser, path=str(config_path))

    @property
    def defaults(self) -> ConfigSection:
        return ConfigSection(self.parser, DEFAULT_SECTION)

    @property
    def pganalyze(self) -> ConfigSection:
        if not self.parser.has_section(COLLECTOR_SECTION):
            raise SetupError(f"config file does not define a [{COLLECTOR_SECTION}] section")
        return ConfigSection(self.parser, COLLECTOR_SECTION)

    def server_section_names(self) -> List[str]:
        return [name for name in self.parser.sections() if name != COLLECTOR_SECTION]

    def server(self) -> ConfigSection:
        names = self.server_section_names()
        if not names:
            raise SetupError("not supported for config file with no server section defined")
        if len(names) > 1:
            raise SetupError("not supported for config file defining more than one server")
        section = ConfigSection(self.parser, names[0])
        if section.has_key("db_url"):
            raise SetupError("not supported when db_url is already configured")
        return section

    def save_to(self, path: str):
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                self.parser.write(file_obj)
            if target.exists():
                shutil.copymode(str(target), tmp_path)
            else:
                os.chmod(tmp_path, CONFIG_FILE_MODE)
            os.replace(tmp_path, str(target))
        except OSError as exc:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise SetupError(f"Failed to save collector config file '{path}': {exc}") from exc
