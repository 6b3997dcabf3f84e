"""
Variable substitution for '${name}' placeholders in manifest settings.
"""

import re
from collections.abc import Mapping

_VARIABLE_PATTERN = re.compile(r"\$\{([^}]+)\}")


def replace_vars(text: str | None, variables: Mapping[str, object]) -> str | None:
    """
    Replaces every '${name}' in text with the matching value from variables.

    Placeholders without a binding are left verbatim. None is passed through.
    """
    if text is None:
        return None

    def replacer(match: re.Match) -> str:
        name = match.group(1)
        if name in variables and variables[name] is not None:
            return str(variables[name])
        return match.group(0)

    return _VARIABLE_PATTERN.sub(replacer, text)


def find_vars(text: str | None) -> list[str]:
    """Returns the placeholder names used in text, in order of appearance."""
    if not text:
        return []
    return _VARIABLE_PATTERN.findall(text)
