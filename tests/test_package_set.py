"""Tests for the package set builder and PackageCollection."""

from functools import cached_property

import pytest

from pixflake import PackageCollection, PackageSet, build_package_set, lazy
from pixflake.errors import MissingAttributeError, PackageSetError


def fresh_base(system, config):
    return {"hello": f"hello-{system}", "bash": "bash-5.2"}


class TestBuild:
    def test_factory_called_once_with_system_and_config(self):
        calls = []

        def factory(system, config):
            calls.append((system, dict(config)))
            return {"a": 1}

        pkgs = build_package_set(factory, "aarch64-linux", {"allowUnfree": True})
        assert pkgs.a == 1
        assert calls == [("aarch64-linux", {"allowUnfree": True})]
        assert pkgs.system == "aarch64-linux"
        assert pkgs.config["allowUnfree"] is True

    def test_config_defaults_to_empty(self):
        assert dict(build_package_set(fresh_base, "x86_64-linux").config) == {}

    def test_config_is_read_only(self):
        def factory(system, config):
            config["sneaky"] = True
            return {}

        with pytest.raises(TypeError):
            build_package_set(factory, "x86_64-linux", {})

    def test_overlay_wins_over_base(self):
        pkgs = build_package_set(fresh_base, "x86_64-linux",
                                 overlay=lambda final, prev: {"bash": "bash-5.3"})
        assert pkgs.bash == "bash-5.3"
        assert pkgs.hello == "hello-x86_64-linux"

    def test_package_set_base_is_lazy(self):
        built = []

        class Pkgs(PackageSet):
            @cached_property
            def a(self):
                built.append("a")
                return "a"

            @cached_property
            def b(self):
                return self.call(lambda a: a + "b")

        pkgs = build_package_set(Pkgs, "x86_64-linux")
        assert built == []
        assert pkgs.b == "ab"
        assert pkgs.a == "a"
        assert built == ["a"]
        assert set(pkgs.keys()) == {"a", "b"}

    def test_package_set_sees_system_and_config(self):
        class Pkgs(PackageSet):
            @cached_property
            def tag(self):
                return f"{self.system}:{self.config.get('flavour')}"

        pkgs = build_package_set(Pkgs, "riscv64-linux", {"flavour": "musl"})
        assert pkgs.tag == "riscv64-linux:musl"

    def test_base_collection_keeps_its_overlays(self):
        base = PackageCollection.from_mapping({"a": 1}).extend(lambda final, prev: {"b": 2})
        pkgs = build_package_set(lambda system, config: base, "x86_64-linux",
                                 overlay=lambda final, prev: {"c": lazy(lambda: final.b + 1)})
        assert pkgs.c == 3
        assert pkgs.system == "x86_64-linux"

    def test_bad_factory_result(self):
        with pytest.raises(PackageSetError):
            build_package_set(lambda system, config: 42, "x86_64-linux")


class TestPackageCollection:
    def test_attribute_and_item_access(self):
        pkgs = PackageCollection.from_mapping({"hello": "hi"})
        assert pkgs.hello == "hi"
        assert pkgs["hello"] == "hi"
        assert pkgs.get("nope") is None

    def test_missing_package(self):
        pkgs = PackageCollection.from_mapping({})
        with pytest.raises(MissingAttributeError):
            pkgs.hello
        with pytest.raises(KeyError):
            pkgs["hello"]
        assert not hasattr(pkgs, "hello")

    def test_immutable(self):
        pkgs = PackageCollection.from_mapping({"a": 1})
        with pytest.raises(AttributeError):
            pkgs.a = 2

    def test_extend_leaves_original_untouched(self):
        pkgs = PackageCollection.from_mapping({"a": 1})
        ext = pkgs.extend(lambda final, prev: {"a": 2, "b": 3})
        assert pkgs.a == 1
        assert "b" not in pkgs
        assert (ext.a, ext.b) == (2, 3)

    def test_extend_reruns_overlays_against_new_final(self):
        pkgs = PackageCollection.from_mapping({"n": 1}).extend(
            lambda final, prev: {"double": lazy(lambda: final.n * 2)}
        )
        ext = pkgs.extend(lambda final, prev: {"n": 5})
        assert pkgs.double == 2
        assert ext.double == 10

    def test_call_injects_by_name(self):
        pkgs = PackageCollection.from_mapping({"bash": "bash-5", "coreutils": "cu"})
        assert pkgs.call(lambda bash, coreutils: f"{bash}+{coreutils}") == "bash-5+cu"

    def test_call_overrides_and_defaults(self):
        pkgs = PackageCollection.from_mapping({"bash": "bash-5"})
        assert pkgs.call(lambda bash, suffix="!": bash + suffix) == "bash-5!"
        assert pkgs.call(lambda bash: bash, bash="mine") == "mine"

    def test_call_missing_dependency(self):
        pkgs = PackageCollection.from_mapping({})
        with pytest.raises(MissingAttributeError):
            pkgs.call(lambda zlib: zlib)

    def test_select(self):
        pkgs = PackageCollection.from_mapping({"bash": "b", "zsh": "z"})
        assert pkgs.select("bash") == {"bash": "b"}
        with pytest.raises(KeyError):
            pkgs.select("fish")

    def test_systems_are_independent(self):
        x86 = build_package_set(fresh_base, "x86_64-linux")
        arm = build_package_set(fresh_base, "aarch64-linux")
        assert x86 is not arm
        patched = x86.extend(lambda final, prev: {"hello": "patched"})
        assert patched.hello == "patched"
        assert x86.hello == "hello-x86_64-linux"
        assert arm.hello == "hello-aarch64-linux"


class TestPackageSet:
    def test_package_names_include_inherited(self):
        class Stage0(PackageSet):
            @cached_property
            def shell(self):
                return "sh"

        class Stage1(Stage0):
            @cached_property
            def tools(self):
                return self.call(lambda shell: f"tools({shell})")

        assert Stage1.package_names() == ["shell", "tools"]
        assert Stage1("x86_64-linux").tools == "tools(sh)"

    def test_call_missing(self):
        with pytest.raises(MissingAttributeError):
            PackageSet("x86_64-linux").call(lambda gcc: gcc)
