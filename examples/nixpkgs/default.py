"""A tiny base package source, in the shape evaluate() expects of `nixpkgs`.

make_package_set(system, config) is called once per evaluation.
"""

from dataclasses import dataclass, field
from functools import cached_property

from pixflake import PackageSet


@dataclass(frozen=True)
class Package:
    name: str
    version: str
    system: str
    deps: tuple = field(default=())

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"


class Pkgs(PackageSet):
    @cached_property
    def bash(self) -> Package:
        return Package("bash", "5.2", self.system)

    @cached_property
    def hello(self) -> Package:
        return self.call(lambda bash: Package("hello", "2.12.1", self.system, (bash,)))

    @cached_property
    def unfree_tool(self) -> Package:
        if not self.config.get("allowUnfree"):
            raise ValueError("unfree_tool has an unfree license; set allowUnfree")
        return Package("unfree-tool", "1.0", self.system)


def make_package_set(system, config):
    return Pkgs(system, config)
