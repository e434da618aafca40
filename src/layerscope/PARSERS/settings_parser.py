# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parser for explorer settings YAML files.
"""
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..MODELS.explorer_settings import ExplorerSettings
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..errors import SchemaError


class SettingsParser:
    """
    Loads ExplorerSettings from YAML, expanding environment variables
    in string values.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        :param context: Variables used for ${VAR} expansion; defaults to os.environ.
        """
        self.context = context if context is not None else dict(os.environ)

    def parse(self, settings_path: str) -> ExplorerSettings:
        """
        Parses a settings file from a path.

        :param settings_path: Path to the YAML settings file.
        :return: Parsed settings.
        """
        with open(settings_path, 'r') as f:
            content = f.read()
        try:
            return self.parse_from_string(content)
        except SchemaError as e:
            e.path = settings_path
            raise

    def parse_from_string(self, content: str) -> ExplorerSettings:
        """
        Parses settings from a YAML string. An empty document yields defaults.
        """
        try:
            data = yaml.safe_load(content)
        except (yaml.YAMLError, ValueError) as e:
            raise SchemaError(f"invalid settings YAML: {e}")
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise SchemaError("settings document must be a mapping")
        if not all(isinstance(key, str) for key in data):
            raise SchemaError("settings keys must be strings")

        try:
            expanded = {key: self._expand(value) for key, value in data.items()}
        except KeyError as e:
            raise SchemaError(f"unresolved variable in settings: {e}")

        try:
            return ExplorerSettings.model_validate(expanded)
        except ValidationError as e:
            raise SchemaError(f"invalid settings: {e}")

    def merge(self, settings: ExplorerSettings, overrides: Dict[str, Any]) -> ExplorerSettings:
        """
        Returns a copy of settings with every non-None override applied.
        Used to layer command line flags over a settings file.
        """
        updates = {k: v for k, v in overrides.items() if v is not None}
        return settings.model_copy(update=updates)

    def _expand(self, value: Any) -> Any:
        if isinstance(value, str):
            return EnvironmentInterpolator.interpolate(value, self.context)
        return value
