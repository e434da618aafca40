"""
Environment variable expansion for settings values.
"""
import re
from typing import Dict

# ${VAR} or ${VAR:-default}
_VARIABLE = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Expands ${VAR} and ${VAR:-default} in settings strings, so one
    settings file can be reused across evidence mount points
    (e.g. docker_root: ${EVIDENCE:-/mnt/evidence}/var/lib/docker).
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str]) -> str:
        """
        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises KeyError: If a variable is unset and has no default.
        """
        def replace(match):
            name = match.group(1)
            default = match.group(2)
            value = context.get(name)
            if default is not None:
                return value if value else default
            if value is None:
                raise KeyError(f"Variable {name} not found in context")
            return value

        return _VARIABLE.sub(replace, template)
