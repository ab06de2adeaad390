"""
Tests for IR construction: lowering, signature binding, type inference and
the shared dataflow machinery.
"""

from unittest.mock import patch

import pytest

from nativeready.config import EngineConfig
from nativeready.dataflow import EscapeReason, ValueFlow, forward_worklist
from nativeready.errors import IRUnavailable, RecursionLimitExceeded
from nativeready.ir import AnalysisTarget, DispatchKind, EdgeKind, StmtKind, exhaustive
from nativeready.typesys import RawPointer
from nativeready.walker import IRWalker, bind_signature, call_signature_types
from tests import samples


def _build(walker, func, *arg_types):
    return walker.build(AnalysisTarget(func, arg_types))


def _allocations(fir):
    return [s for s in fir.statements() if s.kind is StmtKind.ALLOCATION]


def _calls(fir):
    return [s for s in fir.statements() if s.kind is StmtKind.CALL]


# ── AnalysisTarget ───────────────────────────────────────────────

class TestAnalysisTarget:

    def test_label_and_key(self):
        t = AnalysisTarget(samples.add, (int, int))
        assert t.label == "add(int, int)"
        assert t.key == "tests.samples:add(int, int)"
        assert str(t) == t.label

    def test_list_arg_types_are_normalised(self):
        assert AnalysisTarget(samples.add, [int, int]) == AnalysisTarget(samples.add, (int, int))

    def test_distinct_types_are_distinct_targets(self):
        assert AnalysisTarget(samples.add, (int, int)) != AnalysisTarget(samples.add, (float, float))


# ── Signature binding ────────────────────────────────────────────

class TestSignatureBinding:

    def test_defaults_take_type_of_default(self):
        names, types_ = bind_signature(samples.with_default, [int])
        assert names == ["x", "scale"]
        assert types_ == [int, float]

    def test_explicit_type_overrides_default(self):
        _, types_ = bind_signature(samples.with_default, [int, int])
        assert types_ == [int, int]

    def test_variadic_rejected(self):
        with pytest.raises(IRUnavailable, match="variadic"):
            bind_signature(samples.variadic, [])

    def test_arity_mismatch_rejected(self):
        with pytest.raises(IRUnavailable):
            bind_signature(samples.add, [int])

    def test_call_signature_types(self):
        assert call_signature_types(samples.with_default, [int], {}) == (int, float)
        assert call_signature_types(samples.with_default, [int], {"scale": int}) == (int, int)
        assert call_signature_types(samples.with_default, [int], {"bogus": int}) is None
        assert call_signature_types(samples.variadic, [int], {}) is None


# ── Lowering ─────────────────────────────────────────────────────

class TestLowering:

    def test_scalar_function(self, walker):
        fir = _build(walker, samples.add, int, int)
        assert fir.params == ("x", "y")
        assert _allocations(fir) == []
        (call,) = _calls(fir)
        assert call.call.dispatch is DispatchKind.OPERATOR
        assert call.op == "+"

    def test_list_literal_is_allocation(self, walker):
        fir = _build(walker, samples.local_list, int)
        (alloc,) = _allocations(fir)
        assert alloc.target == "xs"
        assert alloc.alloc.allocator == "list"
        assert alloc.alloc.size_bytes == 56 + 3 * 8
        assert not alloc.alloc.manual

    def test_tuple_is_not_allocation(self, walker):
        fir = _build(walker, samples.pair, int, int)
        assert _allocations(fir) == []
        assert any(s.op == "tuple" for s in _calls(fir))

    def test_manual_allocation(self, walker):
        fir = _build(walker, samples.leaky, int)
        (alloc,) = _allocations(fir)
        assert alloc.alloc.manual
        assert alloc.alloc.size_bytes == 64
        assert fir.var_types["p"] == frozenset({RawPointer})

    def test_free_call_deallocates(self, walker):
        fir = _build(walker, samples.paired, int)
        frees = [s for s in _calls(fir) if s.call.deallocates]
        assert len(frees) == 1
        assert frees[0].call.dispatch is DispatchKind.STATIC
        assert frees[0].call.callee_name == "free"

    def test_instance_creation_and_method_call(self, walker):
        fir = _build(walker, samples.use_accumulator, int)
        (alloc,) = _allocations(fir)
        assert alloc.op == "new"
        assert alloc.alloc.size_bytes == 56
        assert fir.var_types["acc"] == frozenset({samples.Accumulator})
        (method,) = _calls(fir)
        assert method.call.dispatch is DispatchKind.METHOD
        assert method.receiver.name == "acc"
        assert fir.var_types[method.target] == frozenset({int})

    def test_unbounded_loop_flag(self, walker):
        grow = _allocations(_build(walker, samples.grow, int))
        bounded = _allocations(_build(walker, samples.bounded, int))
        assert [a.alloc.in_unbounded_loop for a in grow] == [True]
        assert [a.alloc.in_unbounded_loop for a in bounded] == [False]

    def test_comprehension_variables_are_scoped(self, walker):
        fir = _build(walker, samples.squares, int)
        assert fir.var_types["i%c1"] == frozenset({int})
        assert "i" not in fir.var_types

    def test_loop_edges(self, walker):
        fir = _build(walker, samples.grow, int)
        kinds = {e.kind for e in fir.edges}
        assert EdgeKind.BACK_EDGE in kinds
        assert EdgeKind.LOOP_EXIT in kinds

    def test_code_after_return_is_unreachable(self, walker):
        fir = _build(walker, samples.add, int, int)
        returns = [s for s in fir.statements() if s.kind is StmtKind.RETURN]
        assert len(returns) == 1
        assert len(fir.reachable_blocks()) < len(fir.blocks)
        assert fir.reachable_blocks()[0] is fir.entry


# ── Type inference ───────────────────────────────────────────────

class TestTypeInference:

    def test_parameter_and_return_types(self, walker):
        fir = _build(walker, samples.add, int, int)
        assert fir.var_types["x"] == frozenset({int})
        assert fir.return_types == frozenset({int})

    def test_type_unstable_local(self, walker):
        fir = _build(walker, samples.unstable, bool)
        assert fir.var_types["v"] == frozenset({int, float})

    def test_unannotated_callee_is_inferred(self, walker):
        fir = _build(walker, samples.calls_untyped, int)
        assert fir.return_types == frozenset({int})
        assert AnalysisTarget(samples.untyped, (int, int)) in walker.built_targets()

    def test_recursion_converges(self, walker):
        fir = _build(walker, samples.countdown, int)
        assert fir.return_types == frozenset({int})

    def test_builds_are_memoised(self, walker):
        target = AnalysisTarget(samples.add, (int, int))
        assert walker.build(target) is walker.build(target)


# ── Failures ─────────────────────────────────────────────────────

class TestWalkerFailures:

    def test_builtin_has_no_ir(self, walker):
        with pytest.raises(IRUnavailable, match="not a Python function"):
            walker.build(AnalysisTarget(len, (list,)))

    def test_unresolvable_argument_type(self, walker):
        with pytest.raises(IRUnavailable, match="not resolvable"):
            walker.build(AnalysisTarget(samples.add, ("int", int)))

    def test_variadic_target(self, walker):
        with pytest.raises(IRUnavailable) as excinfo:
            walker.build(AnalysisTarget(samples.variadic, ()))
        assert excinfo.value.target_label == "variadic()"

    def test_nesting_limit(self):
        walker = IRWalker(EngineConfig(max_nesting_depth=2))
        with pytest.raises(RecursionLimitExceeded):
            walker.build(AnalysisTarget(samples.add, (int, int)))


# ── Dataflow ─────────────────────────────────────────────────────

class TestValueFlow:

    def test_borrowing_builtin_does_not_capture(self, walker):
        fir = _build(walker, samples.local_list, int)
        (alloc,) = _allocations(fir)
        assert ValueFlow(fir).escape_reasons(alloc) == frozenset()

    def test_returned_allocation(self, walker):
        fir = _build(walker, samples.make_list, int)
        (alloc,) = _allocations(fir)
        assert EscapeReason.RETURNED in ValueFlow(fir).escape_reasons(alloc)

    def test_store_into_parameter(self, walker):
        fir = _build(walker, samples.store_into, list, int)
        flow = ValueFlow(fir)
        (alloc,) = _allocations(fir)
        assert "out" in flow.reaching(alloc.target)
        assert EscapeReason.STORED_OUTWARD in flow.escape_reasons(alloc)

    def test_forward_worklist_reaches_every_block(self, walker):
        fir = _build(walker, samples.grow, int)

        def transfer(block, fact):
            return [(succ, fact + 1) for succ in fir.successors_of(block)]

        facts = forward_worklist(fir, 0, transfer, min)
        assert facts[fir.entry.id] == 0
        assert set(facts) == {b.id for b in fir.reachable_blocks()}


class TestDispatchTables:

    def test_missing_kind_rejected(self):
        with pytest.raises(TypeError, match="does not handle"):
            exhaustive({StmtKind.CALL: None})


class TestDot:

    def test_to_dot(self, walker):
        fir = _build(walker, samples.countdown, int)
        dot = fir.to_dot()
        assert dot.startswith("digraph CFG {")
        assert 'label="countdown(int)"' in dot
        assert 'label="branch-true"' in dot
        assert 'label="return"' in dot

    def test_render(self, walker, tmp_path):
        graphviz = pytest.importorskip("graphviz")
        fir = _build(walker, samples.add, int, int)
        with patch.object(graphviz.Source, "render", return_value=str(tmp_path / "cfg.svg")) as render:
            assert fir.render(str(tmp_path / "cfg")) == str(tmp_path / "cfg.svg")
        render.assert_called_once_with(outfile=str(tmp_path / "cfg.svg"), cleanup=True)
