"""
nativeready.constant_propagation
================================

Finds expressions that can be evaluated ahead of time.

A forward constant-propagation pass runs over the basic blocks with the
classic three-level lattice per variable::

    undefined  (absent from the map)
        |
    Const(v)
        |
       NAC     (not a constant)

Operator calls, calls of pure builtins (``abs``, ``min``, ``math.sqrt``,
...), ``range(...)`` with constant bounds, tuple packing and conditional
expressions are evaluated when all their inputs are constants.  Evaluation
runs the real operation under size guards (exponent, shift, sequence length
and integer bit length, ``pow`` included); an exception means "not
foldable".

A branch whose condition is constant only propagates along the taken edge,
so blocks reachable in the CFG but never reached by the pass are dead code.

Results
-------
``foldable_expressions``
    Statements (expressions and branches) that fold to a constant.
``code_reduction_potential_pct``
    ``min(100, 100 * (foldable + eliminable) / total)`` where *eliminable*
    counts the statements of dead blocks and *total* the reachable
    statements.

The analysis is advisory: its result never blocks readiness.
"""

from __future__ import annotations

import logging
import math
import reprlib
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .dataflow import forward_worklist
from .ir import BasicBlock, DispatchKind, EdgeKind, FunctionIR, Operand, Statement, StmtKind, exhaustive
from .reports import ConstantCandidate, ConstantReport
from .typesys import FOLDABLE_BINOPS, FOLDABLE_UNARY, PURE_BUILTINS

logger = logging.getLogger(__name__)

__all__ = ["ConstantCandidate", "ConstantReport", "analyze_constants"]

# Evaluation guards
MAX_POW_EXPONENT = 256
MAX_SHIFT = 4096
MAX_SEQUENCE_LENGTH = 4096
MAX_INT_BITS = 4096

_SCALAR_CONSTANTS = (int, float, complex, bool, str, bytes, type(None))
_SEQUENCES = (str, bytes, tuple, list, range)
_FALSE_EDGES = frozenset({EdgeKind.BRANCH_FALSE, EdgeKind.LOOP_EXIT})

_short = reprlib.Repr()
_short.maxstring = 40
_short.maxother = 40


class _Const:
    """A known constant value."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _Const):
            return NotImplemented
        if self.value is other.value:
            return True
        return type(self.value) is type(other.value) and self.value == other.value

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Const({_short.repr(self.value)})"


NAC = object()

State = Dict[str, Any]


class _NotFoldable(Exception):
    pass


def _merge(a: State, b: State) -> State:
    merged = dict(a)
    for name, value in b.items():
        old = merged.get(name)
        if old is None:
            merged[name] = value
        elif old is not NAC and old != value:
            merged[name] = NAC
    return merged


def _global_constant(operand: Operand) -> Optional[_Const]:
    """Module-level constants: ``UPPER_CASE`` names and module attributes."""
    value = operand.value
    if type(value) not in _SCALAR_CONSTANTS:
        return None
    short = operand.name.rsplit(".", 1)[-1]
    if "." in operand.name or short.isupper():
        return _Const(value)
    return None


def _lookup(state: State, operand: Operand) -> Optional[_Const]:
    if operand.is_const:
        return _Const(operand.value)
    if operand.is_var:
        value = state.get(operand.name)
        return value if isinstance(value, _Const) else None
    return _global_constant(operand)


# ---------------------------------------------------------------------------
# Guarded evaluation
# ---------------------------------------------------------------------------

def _too_large(value: Any) -> bool:
    if isinstance(value, int) and not isinstance(value, bool):
        return value.bit_length() > MAX_INT_BITS
    return isinstance(value, _SEQUENCES) and len(value) > MAX_SEQUENCE_LENGTH


def _check_binop(op: str, left: Any, right: Any) -> None:
    if op == "**" and isinstance(right, (int, float)) and left not in (0, 1, -1):
        if abs(right) > MAX_POW_EXPONENT:
            raise _NotFoldable(f"exponent {right} too large")
        if isinstance(left, int) and isinstance(right, int) and left.bit_length() * right > MAX_INT_BITS:
            raise _NotFoldable("power result too large")
    if op in ("<<", ">>") and isinstance(right, int) and right > MAX_SHIFT:
        raise _NotFoldable(f"shift by {right} too large")
    if op == "*":
        for seq, count in ((left, right), (right, left)):
            if isinstance(seq, _SEQUENCES) and isinstance(count, int) and len(seq) * count > MAX_SEQUENCE_LENGTH:
                raise _NotFoldable("repeated sequence too large")


def _evaluate_operator(stmt: Statement, values: List[Any]) -> Any:
    op = stmt.op
    if op in FOLDABLE_BINOPS:
        _check_binop(op, values[0], values[1])
        return FOLDABLE_BINOPS[op](values[0], values[1])
    if op in FOLDABLE_UNARY:
        return FOLDABLE_UNARY[op](values[0])
    if op == "is":
        return values[0] is values[1]
    if op == "is not":
        return values[0] is not values[1]
    if op == "in":
        return values[0] in values[1]
    if op == "not in":
        return values[0] not in values[1]
    if op == "tuple":
        if stmt.call.starred:
            raise _NotFoldable("starred tuple")
        return tuple(values)
    if op == "[]":
        return values[0][values[1]]
    if op == "and":
        result = values[0]
        for v in values:
            result = v
            if not v:
                break
        return result
    if op == "or":
        result = values[0]
        for v in values:
            result = v
            if v:
                break
        return result
    raise _NotFoldable(f"operator {op!r} is not folded")


def _pure_callee(stmt: Statement) -> Any:
    callee = stmt.call.callee
    try:
        if callee is range or callee in PURE_BUILTINS:
            return callee
    except TypeError:  # unhashable callee
        return None
    return None


def _fold(stmt: Statement, state: State) -> Tuple[Optional[_Const], str]:
    """Try to evaluate *stmt*; returns the constant (or None) and a description."""
    call = stmt.call
    if call is None:
        return None, "not an expression"
    if call.dispatch is DispatchKind.OPERATOR and stmt.op == "select":
        cond = _lookup(state, stmt.operands[0])
        if cond is None:
            return None, "condition is not constant"
        chosen = _lookup(state, stmt.operands[1] if cond.value else stmt.operands[2])
        if chosen is None:
            return None, "selected value is not constant"
        if _too_large(chosen.value):
            return None, "result too large"
        return chosen, _short.repr(chosen.value)
    if call.dispatch is DispatchKind.STATIC:
        callee = _pure_callee(stmt)
        if callee is None:
            return None, f"{call.callee_name} is not a pure builtin"
        if call.keywords or call.starred:
            return None, "keyword or starred arguments"
    elif call.dispatch is not DispatchKind.OPERATOR:
        return None, "dynamic call"
    values = []
    for operand in stmt.args:
        known = _lookup(state, operand)
        if known is None:
            return None, f"operand {operand} is not constant"
        values.append(known.value)
    try:
        if call.dispatch is DispatchKind.STATIC:
            if any(_too_large(v) for v in values):
                raise _NotFoldable("argument too large")
            if callee is pow and len(values) == 2:
                _check_binop("**", values[0], values[1])
            result = callee(*values)
        else:
            result = _evaluate_operator(stmt, values)
        if _too_large(result):
            raise _NotFoldable("result too large")
        if isinstance(result, float) and not math.isfinite(result):
            raise _NotFoldable("non-finite result")
        description = _short.repr(result)
    except _NotFoldable as exc:
        return None, str(exc)
    except (ArithmeticError, TypeError, ValueError, LookupError) as exc:
        return None, f"evaluation raises {type(exc).__name__}"
    return _Const(result), description


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------

def _define(state: State, stmt: Statement, value: Optional[_Const]) -> None:
    if stmt.target is not None:
        state[stmt.target] = value if value is not None else NAC


def _on_call(state: State, stmt: Statement) -> Optional[_Const]:
    value, _ = _fold(stmt, state)
    _define(state, stmt, value)
    return value


def _on_assignment(state: State, stmt: Statement) -> Optional[_Const]:
    value = _lookup(state, stmt.operands[0]) if stmt.op == "copy" else None
    _define(state, stmt, value)
    return value


def _on_other(state: State, stmt: Statement) -> Optional[_Const]:
    _define(state, stmt, None)
    return None


def _on_branch(state: State, stmt: Statement) -> Optional[_Const]:
    return _lookup(state, stmt.operands[0])


_TRANSFER = exhaustive({
    StmtKind.ALLOCATION: _on_other,
    StmtKind.CALL: _on_call,
    StmtKind.BRANCH: _on_branch,
    StmtKind.ASSIGNMENT: _on_assignment,
    StmtKind.RETURN: _on_other,
    StmtKind.OTHER: _on_other,
})


def _live_edges(block: BasicBlock, condition: Optional[_Const]) -> Iterator[BasicBlock]:
    term = block.terminator
    if condition is None or term is None or term.kind is not StmtKind.BRANCH:
        for edge in block.successors:
            yield edge.dst
        return
    if term.op == "for":
        try:
            taken = len(condition.value) > 0
        except (TypeError, OverflowError):
            taken = None
        if taken is None or taken:
            for edge in block.successors:
                yield edge.dst
            return
    else:
        taken = bool(condition.value)
    for edge in block.successors:
        if edge.kind is EdgeKind.BRANCH_TRUE and not taken:
            continue
        if edge.kind in _FALSE_EDGES and taken:
            continue
        yield edge.dst


def _run_block(block: BasicBlock, state_in: State) -> Tuple[State, Optional[_Const]]:
    state = dict(state_in)
    condition: Optional[_Const] = None
    for stmt in block.statements:
        result = _TRANSFER[stmt.kind](state, stmt)
        if stmt.kind is StmtKind.BRANCH:
            condition = result
    return state, condition


def _transfer(block: BasicBlock, state_in: State):
    state, condition = _run_block(block, state_in)
    return [(succ, state) for succ in _live_edges(block, condition)]


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def _is_candidate(stmt: Statement, state: State) -> bool:
    if stmt.kind is StmtKind.BRANCH:
        return _lookup(state, stmt.operands[0]) is not None
    if stmt.kind is not StmtKind.CALL:
        return False
    if stmt.call.dispatch is DispatchKind.STATIC:
        if _pure_callee(stmt) is None:
            return False
    elif stmt.call.dispatch is not DispatchKind.OPERATOR or stmt.op == "slice":
        return False
    return any(_lookup(state, o) is not None for o in stmt.operands)


def analyze_constants(fir: FunctionIR) -> ConstantReport:
    """Run constant propagation over *fir* and summarise what folds."""
    facts = forward_worklist(fir, {}, _transfer, _merge)
    reachable = fir.reachable_blocks()
    total = sum(len(b.statements) for b in reachable)
    eliminable = sum(len(b.statements) for b in reachable if b.id not in facts)

    candidates: List[ConstantCandidate] = []
    for block in reachable:
        if block.id not in facts:
            continue
        state = dict(facts[block.id])
        for stmt in block.statements:
            if _is_candidate(stmt, state):
                if stmt.kind is StmtKind.BRANCH:
                    known = _lookup(state, stmt.operands[0])
                    desc = _short.repr(known.value) if known else "condition is not constant"
                else:
                    known, desc = _fold(stmt, state)
                candidates.append(ConstantCandidate(
                    location=stmt.location,
                    is_foldable=known is not None,
                    contribution_estimate=1 if known is not None else 0,
                    value_description=desc,
                ))
            _TRANSFER[stmt.kind](state, stmt)

    foldable = sum(1 for c in candidates if c.is_foldable)
    pct = min(100.0, 100.0 * (foldable + eliminable) / total) if total else 0.0
    logger.debug(
        "constants %s: %d foldable, %d dead statement(s) of %d",
        fir.target.label, foldable, eliminable, total,
    )
    return ConstantReport(
        candidates=tuple(candidates),
        foldable_expressions=foldable,
        code_reduction_potential_pct=round(pct, 2),
        eliminable_statements=eliminable,
        total_statements=total,
    )
