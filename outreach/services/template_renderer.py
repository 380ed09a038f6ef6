import re
from collections.abc import Mapping

_TOKEN_RE = re.compile(r"\{(\w+)\}")


def render(template: str, variables: Mapping[str, object]) -> str:
    """Substitute `{token}` placeholders; tokens without a value are left as written."""

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key in variables and variables[key] is not None:
            return str(variables[key])
        return match.group(0)

    return _TOKEN_RE.sub(_substitute, template or "")
