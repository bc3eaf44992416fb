"""Variable substitution for command-line templates."""

import re
from pathlib import Path
from typing import Mapping, Optional, Union

from ..utils import to_backslashes, to_forward_slashes

# $name or ${name}
_PLACEHOLDER = re.compile(r"\$\{(?P<braced>\w+)\}|\$(?P<bare>\w+)")


class VariableSet:
    """Named values substituted into command-line templates.

    A base set is built once per run and never mutated afterwards; every
    operation works on its own clone so concurrent workers do not share a
    scope.

    Examples:
        >>> variables = VariableSet({"host": "example.org"})
        >>> variables.apply("scp $path ${host}:/www/$path")
        'scp $path example.org:/www/$path'
        >>> variables.for_path("a/b.txt").apply("scp $path ${host}:/www/$path")
        'scp a/b.txt example.org:/www/a/b.txt'
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self.variables: dict[str, str] = dict(values or {})

    @classmethod
    def base(
        cls,
        config_variables: Mapping[str, str],
        source_dir: Union[str, Path],
        workdir: Union[str, Path],
    ) -> "VariableSet":
        """Build the base variable set of a run.

        Args:
            config_variables: Variables from the configuration file
            source_dir: Source directory
            workdir: Working directory for spawned commands

        Returns:
            VariableSet with the configured variables plus ``source``,
            ``workdir`` and their forward-slash variants ``source_`` and
            ``workdir_``
        """
        variables = cls(config_variables)
        variables.add("source", str(source_dir))
        variables.add("workdir", str(workdir))
        variables.add("source_", to_forward_slashes(source_dir))
        variables.add("workdir_", to_forward_slashes(workdir))
        return variables

    def add(self, name: str, value: str) -> None:
        self.variables[name] = value

    def get(self, name: str) -> Optional[str]:
        return self.variables.get(name)

    def clone(self) -> "VariableSet":
        """Return an independent copy of this variable set."""
        return VariableSet(self.variables)

    def for_path(self, path: str) -> "VariableSet":
        """Clone this set and add the per-target ``path`` variables.

        ``path`` keeps forward slashes, ``path_`` uses backslashes for
        commands that expect Windows style paths.
        """
        variables = self.clone()
        variables.add("path", path)
        variables.add("path_", to_backslashes(path))
        return variables

    def apply(self, template: str) -> str:
        """Replace every known placeholder in ``template``.

        Unknown placeholders are left as literal text.
        """

        def replace(match: "re.Match[str]") -> str:
            name = match.group("braced") or match.group("bare")
            value = self.variables.get(name)
            return match.group(0) if value is None else value

        return _PLACEHOLDER.sub(replace, template)

    def __contains__(self, name: object) -> bool:
        return name in self.variables

    def __repr__(self) -> str:
        return f"VariableSet({self.variables!r})"
