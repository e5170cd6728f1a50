"""Declarative inputs loader for pgsetup."""

from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from pgsetup.errors import SetupError
from pgsetup.models import SetupGUCs, SetupInputs, SetupSettings, field_type, input_key


class InputsLoader:
    """Loads a YAML or JSON inputs document into ``SetupInputs``."""

    NESTED = {"settings": SetupSettings, "gucs": SetupGUCs}

    def load(self, inputs_path: Optional[str]) -> SetupInputs:
        if not inputs_path:
            return SetupInputs()

        path = Path(inputs_path)
        if not path.exists():
            raise SetupError(f"Inputs file not found: {inputs_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise SetupError(f"Invalid inputs file '{inputs_path}': {exc}") from exc

        if parsed is None:
            return SetupInputs()
        if not isinstance(parsed, dict):
            raise SetupError("Inputs file must contain a mapping at the root.")

        return self.from_mapping(parsed)

    def from_mapping(self, data: Dict[str, Any]) -> SetupInputs:
        inputs = SetupInputs()
        top_fields = {
            input_key(dc_field): dc_field
            for dc_field in fields(SetupInputs)
            if dc_field.name not in self.NESTED
        }
        supported = set(top_fields) | set(self.NESTED)
        unknown = sorted(str(key) for key in set(data.keys()) - supported)
        if unknown:
            raise SetupError(f"Unknown input keys: {', '.join(unknown)}")

        for section, cls in self.NESTED.items():
            if section not in data or data[section] is None:
                continue
            section_data = data[section]
            if not isinstance(section_data, dict):
                raise SetupError(f"Input `{section}` must be a mapping.")
            setattr(inputs, section, self._build(cls, section_data, prefix=f"{section}."))

        for key, dc_field in top_fields.items():
            if key in data:
                setattr(inputs, dc_field.name, self._coerce(SetupInputs, dc_field, data[key], key))

        return inputs

    def _build(self, cls, data: Dict[str, Any], prefix: str):
        by_key = {input_key(dc_field): dc_field for dc_field in fields(cls)}
        unknown = sorted(f"{prefix}{key}" for key in set(data.keys()) - set(by_key))
        if unknown:
            raise SetupError(f"Unknown input keys: {', '.join(unknown)}")

        values = {}
        for key, value in data.items():
            dc_field = by_key[key]
            values[dc_field.name] = self._coerce(cls, dc_field, value, f"{prefix}{key}")
        return cls(**values)

    @staticmethod
    def _coerce(cls, dc_field, value: Any, label: str) -> Any:
        if value is None:
            return None

        expected = field_type(cls, dc_field.name)
        if expected is bool:
            if isinstance(value, bool):
                return value
            raise SetupError(f"Input `{label}` must be a boolean.")

        if expected is int:
            if isinstance(value, int) and not isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lstrip("-").isdigit():
                return int(value.strip())
            raise SetupError(f"Input `{label}` must be an integer.")

        # YAML reads bare on/off as booleans; GUC values keep Postgres spelling
        if isinstance(value, bool):
            if cls is SetupGUCs:
                return "on" if value else "off"
            raise SetupError(f"Input `{label}` must be a string.")
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            return value
        raise SetupError(f"Input `{label}` must be a string.")


class SettingsLoader:
    """Loads CLI defaults from a ``.pgsetup.yml`` file."""

    SUPPORTED_KEYS = {
        "config",
        "inputs",
        "recommended",
        "skip_log_insights",
        "skip_automated_explain",
        "verbose",
        "log_file",
        "assume_yes",
    }

    def load(self, settings_path: Optional[str]) -> Dict[str, Any]:
        if not settings_path:
            return {}

        path = Path(settings_path)
        if not path.exists():
            raise SetupError(f"Settings file not found: {settings_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise SetupError(f"Invalid settings file '{settings_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise SetupError("Settings file must contain a YAML mapping at the root.")

        unknown = sorted(str(key) for key in set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            raise SetupError(f"Unknown settings keys: {', '.join(unknown)}")

        return parsed
