"""
Unit tests for dependency resolution.
"""

import pytest

from layer_orchestrator.core.exceptions import (
    ConfigurationError,
    CyclicDependencyError,
    UnknownDependencyError,
)
from layer_orchestrator.core.models import LayerSpec
from layer_orchestrator.core.resolver import dependency_closure, resolve_order, select_layers


def spec(name, *depends_on, enabled=True):
    return LayerSpec(name=name, enabled=enabled, depends_on=tuple(depends_on))


def names(specs):
    return [s.name for s in specs]


class TestResolveOrder:
    """Topological ordering of enabled layers."""

    def test_dependencies_come_first(self):
        specs = [spec("c", "b"), spec("b", "a"), spec("a")]

        assert names(resolve_order(specs)) == ["a", "b", "c"]

    def test_ties_are_broken_by_declaration_order(self):
        specs = [spec("base"), spec("zeta", "base"), spec("alpha", "base"), spec("mid", "base")]

        assert names(resolve_order(specs)) == ["base", "zeta", "alpha", "mid"]

    def test_same_input_gives_same_order(self):
        specs = [spec("a"), spec("b"), spec("c", "a", "b"), spec("d", "a")]

        assert names(resolve_order(specs)) == names(resolve_order(list(specs)))

    def test_full_stack_order(self):
        specs = [
            spec("near_base"),
            spec("near_services", "near_base"),
            spec("chain_signatures", "near_base", "near_services"),
            spec("intents_protocol", "chain_signatures"),
        ]

        assert names(resolve_order(specs)) == [
            "near_base", "near_services", "chain_signatures", "intents_protocol",
        ]

    def test_disabled_layers_are_excluded(self):
        specs = [spec("a"), spec("off", enabled=False), spec("b", "a")]

        assert names(resolve_order(specs)) == ["a", "b"]

    def test_cycle_is_reported_with_its_members(self):
        specs = [spec("ok"), spec("a", "b"), spec("b", "c"), spec("c", "a")]

        with pytest.raises(CyclicDependencyError) as exc_info:
            resolve_order(specs)

        assert set(exc_info.value.cycle) == {"a", "b", "c"}
        assert "ok" not in exc_info.value.cycle
        assert "Cyclic dependency" in str(exc_info.value)

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CyclicDependencyError) as exc_info:
            resolve_order([spec("loop", "loop")])

        assert exc_info.value.cycle == ["loop"]

    def test_unknown_dependency_raises(self):
        with pytest.raises(UnknownDependencyError) as exc_info:
            resolve_order([spec("a", "ghost")])

        assert exc_info.value.layer_name == "a"
        assert exc_info.value.dependency == "ghost"
        assert exc_info.value.disabled is False

    def test_depending_on_disabled_layer_raises(self):
        specs = [spec("base", enabled=False), spec("top", "base")]

        with pytest.raises(UnknownDependencyError) as exc_info:
            resolve_order(specs)

        assert exc_info.value.disabled is True
        assert "disabled" in str(exc_info.value)

    def test_resolver_errors_are_configuration_errors(self):
        with pytest.raises(ConfigurationError):
            resolve_order([spec("a", "ghost")])


class TestSelection:
    """Target selection and dependency closure."""

    def test_closure_includes_transitive_dependencies(self):
        specs = [spec("a"), spec("b", "a"), spec("c", "b"), spec("x")]

        assert dependency_closure(specs, ["c"]) == {"a", "b", "c"}

    def test_unknown_target_raises(self):
        with pytest.raises(ConfigurationError) as exc_info:
            dependency_closure([spec("a")], ["nope"])

        assert "nope" in str(exc_info.value)

    def test_select_keeps_declaration_order(self):
        specs = [spec("x"), spec("a"), spec("b", "a")]

        assert names(select_layers(specs, ["b"])) == ["a", "b"]

    def test_select_without_targets_keeps_everything(self):
        specs = [spec("x"), spec("a")]

        assert names(select_layers(specs)) == ["x", "a"]
