"""Tests for overlay composition (pixflake.overlay)."""

import pytest

from pixflake import build_package_set, compose_overlays, identity_overlay, lazy
from pixflake.errors import CyclicOverlayError, MissingAttributeError, OverlayError


def apply(overlays, **base):
    return build_package_set(
        lambda system, config: dict(base), "x86_64-linux", overlay=compose_overlays(overlays),
    )


def add_x(final, prev):
    return {"x": 1}


def add_y_from_final_x(final, prev):
    return {"y": final.x + 1}


class TestCompose:
    def test_empty_is_identity(self):
        overlay = compose_overlays([])
        assert len(overlay) == 0
        assert overlay(None, {}) == {}
        pkgs = apply([], a=1, b=2)
        assert dict(pkgs.items()) == {"a": 1, "b": 2}

    def test_identity_overlay(self):
        assert dict(apply([identity_overlay], a=1).items()) == {"a": 1}

    def test_later_overlay_reads_earlier_key_through_final(self):
        pkgs = apply([add_x, add_y_from_final_x], base=0)
        assert pkgs.x == 1
        assert pkgs.y == 2
        assert set(pkgs) == {"base", "x", "y"}

    def test_earlier_overlay_reads_later_key_through_final(self):
        a = lambda final, prev: {"x": lazy(lambda: final.y * 10)}
        b = lambda final, prev: {"y": 2}
        assert apply([a, b]).x == 20

    def test_overlay_wins_over_base(self):
        pkgs = apply([lambda final, prev: {"a": "overlay"}], a="base")
        assert pkgs.a == "overlay"

    def test_rightmost_overlay_wins(self):
        first = lambda final, prev: {"a": "first"}
        second = lambda final, prev: {"a": "second"}
        assert apply([first, second], a="base").a == "second"

    def test_prev_is_the_accumulated_result(self):
        a = lambda final, prev: {"v": prev.v + ["a"]}
        b = lambda final, prev: {"v": prev.v + ["b"]}
        assert apply([a, b], v=["base"]).v == ["base", "a", "b"]

    def test_final_sees_override_of_base_key(self):
        uses = lambda final, prev: {"app": lazy(lambda: f"app with {final.shell}")}
        swaps = lambda final, prev: {"shell": "zsh"}
        assert apply([uses, swaps], shell="bash").app == "app with zsh"

    def test_each_overlay_called_once(self):
        calls = []

        def counted(final, prev):
            calls.append(1)
            return {"a": 1, "b": 2}

        pkgs = apply([counted])
        assert (pkgs.a, pkgs.b, pkgs.a) == (1, 2, 1)
        assert calls == [1]

    def test_nested_compositions_flatten(self):
        c = lambda final, prev: {}
        composed = compose_overlays([compose_overlays([add_x, add_y_from_final_x]), c])
        assert composed.layers == (add_x, add_y_from_final_x, c)

    def test_associative(self):
        a = lambda final, prev: {"v": prev.v + "a"}
        b = lambda final, prev: {"v": prev.v + "b"}
        c = lambda final, prev: {"v": prev.v + "c"}
        left = compose_overlays([compose_overlays([a, b]), c])
        right = compose_overlays([a, compose_overlays([b, c])])
        base = lambda system, config: {"v": ""}
        assert build_package_set(base, "x86_64-linux", overlay=left).v == "abc"
        assert build_package_set(base, "x86_64-linux", overlay=right).v == "abc"

    def test_not_callable(self):
        with pytest.raises(OverlayError):
            compose_overlays([add_x, "not an overlay"])

    def test_direct_call_folds_left(self):
        b = lambda final, prev: {"y": prev.x + 1}
        assert compose_overlays([add_x, b])(None, {}) == {"x": 1, "y": 2}

    def test_direct_call_rejects_non_mapping(self):
        with pytest.raises(OverlayError):
            compose_overlays([lambda final, prev: None])(None, {})

    def test_non_mapping_result_in_package_set(self):
        with pytest.raises(OverlayError) as exc:
            apply([lambda final, prev: ["x"]]).x
        assert exc.value.section == "pkgsOverlays"


class TestCycles:
    def test_lazy_self_reference(self):
        pkgs = apply([lambda final, prev: {"x": lazy(lambda: final.x)}])
        with pytest.raises(CyclicOverlayError):
            pkgs.x

    def test_eager_read_of_own_key_through_final(self):
        """Reading final.x while defining x is a cycle, even if the base has x."""
        pkgs = apply([lambda final, prev: {"x": final.x + 1}], x=1)
        with pytest.raises(CyclicOverlayError):
            pkgs.x

    def test_eager_read_of_own_key_missing_from_base(self):
        """Reading final.x while defining x is a cycle when nothing below has x."""
        pkgs = apply([lambda final, prev: {"x": 1, "y": final.x}])
        with pytest.raises(CyclicOverlayError) as exc:
            pkgs.y
        assert exc.value.section == "pkgsOverlays"

    @pytest.mark.parametrize("base", [{}, {"x": 0}])
    def test_strict_cycle_across_overlays(self, base):
        a = lambda final, prev: {"x": 1, "z": final.y}
        b = lambda final, prev: {"y": prev.x}
        with pytest.raises(CyclicOverlayError):
            apply([a, b], **base).z

    def test_mutual_recursion_across_overlays(self):
        a = lambda final, prev: {"x": lazy(lambda: final.y)}
        b = lambda final, prev: {"y": lazy(lambda: final.x)}
        with pytest.raises(CyclicOverlayError):
            apply([a, b]).x

    def test_missing_prev_key_is_missing_not_cycle(self):
        """prev.x absent from the base falls through to a missing-key error."""
        pkgs = apply([lambda final, prev: {"x": prev.x}])
        with pytest.raises(MissingAttributeError) as exc:
            pkgs.x
        assert not isinstance(exc.value, CyclicOverlayError)
        with pytest.raises(MissingAttributeError):
            pkgs.x

    def test_overriding_with_prev_is_not_a_cycle(self):
        pkgs = apply([lambda final, prev: {"x": prev.x + 1}], x=1)
        assert pkgs.x == 2
