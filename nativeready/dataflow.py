"""
nativeready.dataflow
====================

Dataflow machinery shared by the analyses.

``ValueFlow``
    Flow-insensitive value graph of one :class:`FunctionIR`.  It answers
    "which variables may hold (or contain) the object created by this
    allocation?" and, from that, whether and why the object escapes the
    function.

``forward_worklist``
    A forward worklist solver over basic blocks with edge-specific output
    facts, used by constant propagation.

Value graph
-----------
Two kinds of edges connect variables:

*alias*  ``a -> b``
    ``b`` may be ``a`` or an item taken out of ``a`` (copies, conditional
    expressions, subscripts, attribute loads, iteration).
*hold*   ``a -> b``
    ``b`` may contain ``a`` (container literals, closures, item and
    attribute stores, mutating methods such as ``append``).

An allocation reaches every variable on an alias or hold path from its
target.  Parameters are *outward*: anything they alias is visible to the
caller, so storing into it is an escape.
"""

from __future__ import annotations

import builtins
import enum
import logging
from collections import defaultdict, deque
from typing import Any, Callable, DefaultDict, Deque, Dict, FrozenSet, Iterable, Optional, Set, Tuple

from .ir import BasicBlock, DispatchKind, FunctionIR, Operand, Statement, StmtKind, exhaustive
from .typesys import single

logger = logging.getLogger(__name__)

__all__ = [
    "EscapeReason",
    "OWNERSHIP_TRANSFER",
    "BORROWING_BUILTINS",
    "MUTATING_METHODS",
    "ValueFlow",
    "forward_worklist",
]


class EscapeReason(enum.Enum):
    RETURNED = "returned"
    YIELDED = "yielded"
    RAISED = "raised"
    STORED_OUTWARD = "stored outward"
    PASSED_TO_CALL = "passed to call"
    UNBOUNDED_LOOP = "allocated in unbounded loop"


# Escapes that hand the object to the caller rather than losing it.
OWNERSHIP_TRANSFER = frozenset({
    EscapeReason.RETURNED,
    EscapeReason.YIELDED,
    EscapeReason.RAISED,
    EscapeReason.STORED_OUTWARD,
})

# Builtins that read their arguments without retaining them.
BORROWING_BUILTINS = frozenset({
    len, sum, min, max, print, abs, isinstance, issubclass, range, any, all,
    repr, str, hash, id, bool, int, float, complex, format, round, divmod,
    ord, chr, callable, hex, oct, bin, bytes, type,
})

# Builtins whose result holds a reference to (the items of) their arguments.
_WRAPPING_BUILTINS = frozenset({
    enumerate, zip, iter, reversed, map, filter, tuple, sorted, next,
    getattr, vars,
})

MUTATING_METHODS = frozenset({
    "append", "extend", "insert", "add", "update", "setdefault",
    "appendleft", "extendleft", "push", "put",
})

_EXTRACTING_METHODS = frozenset({
    "pop", "popleft", "popitem", "get", "setdefault", "copy", "keys",
    "values", "items", "__getitem__", "__enter__",
})

_ALIAS_OPERATORS = frozenset({"select", "and", "or"})
_RESULT_ONLY_OPERATORS = frozenset({
    "==", "!=", "<", "<=", ">", ">=", "is", "is not", "in", "not in", "not", "slice",
})


def _hashable_in(value: Any, pool: FrozenSet[Any]) -> bool:
    try:
        return value in pool
    except TypeError:  # unhashable callee
        return False


class ValueFlow:
    """Alias/containment graph and escape sinks of one function."""

    def __init__(self, fir: FunctionIR) -> None:
        self.fir = fir
        self.alias: DefaultDict[str, Set[str]] = defaultdict(set)
        self.hold: DefaultDict[str, Set[str]] = defaultdict(set)
        self.sinks: DefaultDict[str, Set[EscapeReason]] = defaultdict(set)
        for stmt in fir.statements():
            _FLOW_RULES[stmt.kind](self, stmt)
        self.outward = self._alias_closure(set(fir.params))

    # ----- graph construction -----------------------------------------------

    def _sink(self, operand: Operand, reason: EscapeReason) -> None:
        if operand.is_var:
            self.sinks[operand.name].add(reason)

    def _alias_edge(self, src: Operand, dst: Optional[str]) -> None:
        if src.is_var and dst is not None:
            self.alias[src.name].add(dst)

    def _hold_edge(self, item: Operand, holder: Operand) -> None:
        if not item.is_var:
            return
        if holder.is_var:
            self.hold[item.name].add(holder.name)
        else:
            # stored into a global, a closure cell or a module attribute
            self.sinks[item.name].add(EscapeReason.STORED_OUTWARD)

    def _on_allocation(self, stmt: Statement) -> None:
        for operand in stmt.operands:
            if stmt.target is not None:
                self._hold_edge(operand, Operand.var(stmt.target))

    def _on_assignment(self, stmt: Statement) -> None:
        op = stmt.op
        ops = stmt.operands
        if op in ("store_attr", "store_item"):
            self._hold_edge(ops[-1], ops[0])
        elif op == "store_global":
            self._sink(ops[-1], EscapeReason.STORED_OUTWARD)
        elif op != "catch":
            self._alias_edge(ops[0], stmt.target)

    def _on_call(self, stmt: Statement) -> None:
        call = stmt.call
        if call.deallocates:
            return
        target = stmt.target
        if call.dispatch is DispatchKind.OPERATOR:
            if stmt.op in _RESULT_ONLY_OPERATORS:
                return
            for operand in stmt.operands:
                if stmt.op in _ALIAS_OPERATORS or stmt.op == "[]":
                    self._alias_edge(operand, target)
                elif target is not None:
                    self._hold_edge(operand, Operand.var(target))
            return
        if call.dispatch is DispatchKind.STATIC:
            if _hashable_in(call.callee, BORROWING_BUILTINS):
                return
            if _hashable_in(call.callee, _WRAPPING_BUILTINS):
                for operand in stmt.args:
                    if target is not None:
                        self._hold_edge(operand, Operand.var(target))
                return
            for operand in stmt.args:
                self._sink(operand, EscapeReason.PASSED_TO_CALL)
            return
        if call.dispatch is DispatchKind.METHOD:
            receiver = stmt.receiver
            name = call.callee_name
            if name in MUTATING_METHODS:
                for operand in stmt.args:
                    self._hold_edge(operand, receiver)
            elif not self._builtin_receiver(receiver):
                for operand in stmt.args:
                    self._sink(operand, EscapeReason.PASSED_TO_CALL)
            if name in _EXTRACTING_METHODS or not self._builtin_receiver(receiver):
                self._alias_edge(receiver, target)
            return
        # indirect call through a local value
        for operand in stmt.args:
            self._sink(operand, EscapeReason.PASSED_TO_CALL)

    def _builtin_receiver(self, receiver: Operand) -> bool:
        t = single(self.fir.type_of(receiver))
        origin = getattr(t, "__origin__", t)
        return isinstance(origin, type) and origin.__module__ == builtins.__name__ and origin is not object

    def _on_return(self, stmt: Statement) -> None:
        self._sink(stmt.operands[0], EscapeReason.RETURNED)

    def _on_other(self, stmt: Statement) -> None:
        if stmt.op in ("yield", "yield_from"):
            for operand in stmt.operands:
                self._sink(operand, EscapeReason.YIELDED)
        elif stmt.op == "raise":
            for operand in stmt.operands:
                self._sink(operand, EscapeReason.RAISED)

    def _on_branch(self, stmt: Statement) -> None:
        pass

    # ----- queries ----------------------------------------------------------

    def _alias_closure(self, roots: Set[str]) -> FrozenSet[str]:
        seen = set(roots)
        queue = deque(roots)
        while queue:
            name = queue.popleft()
            for nxt in self.alias.get(name, ()):
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return frozenset(seen)

    def reaching(self, name: str) -> FrozenSet[str]:
        """Variables that may hold or contain the value of *name*."""
        seen = {name}
        queue = deque([name])
        while queue:
            current = queue.popleft()
            for nxt in self.alias.get(current, set()) | self.hold.get(current, set()):
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return frozenset(seen)

    def escape_reasons(self, stmt: Statement) -> FrozenSet[EscapeReason]:
        """Why the object allocated by *stmt* may outlive the call."""
        reasons: Set[EscapeReason] = set()
        if stmt.alloc is not None and stmt.alloc.in_unbounded_loop:
            reasons.add(EscapeReason.UNBOUNDED_LOOP)
        if stmt.target is None:
            return frozenset(reasons)
        for name in self.reaching(stmt.target):
            reasons |= self.sinks.get(name, set())
            if name in self.outward and name != stmt.target:
                reasons.add(EscapeReason.STORED_OUTWARD)
        return frozenset(reasons)


_FLOW_RULES = exhaustive({
    StmtKind.ALLOCATION: ValueFlow._on_allocation,
    StmtKind.CALL: ValueFlow._on_call,
    StmtKind.BRANCH: ValueFlow._on_branch,
    StmtKind.ASSIGNMENT: ValueFlow._on_assignment,
    StmtKind.RETURN: ValueFlow._on_return,
    StmtKind.OTHER: ValueFlow._on_other,
})


# ---------------------------------------------------------------------------
# Forward worklist solver
# ---------------------------------------------------------------------------

def forward_worklist(
    fir: FunctionIR,
    entry_fact: Any,
    transfer: Callable[[BasicBlock, Any], Iterable[Tuple[BasicBlock, Any]]],
    merge: Callable[[Any, Any], Any],
    max_iterations: int = 100_000,
) -> Dict[int, Any]:
    """Solve a forward problem; returns the input fact of every reached block.

    *transfer* maps a block and its input fact to ``(successor, fact)`` pairs,
    so a transfer function can omit edges it proves infeasible.  Blocks never
    handed a fact are absent from the result.
    """
    facts_in: Dict[int, Any] = {fir.entry.id: entry_fact}
    blocks = {b.id: b for b in fir.blocks}
    order = {b.id: i for i, b in enumerate(fir.reachable_blocks())}
    worklist: Deque[int] = deque([fir.entry.id])
    queued = {fir.entry.id}
    iterations = 0
    while worklist and iterations < max_iterations:
        block = blocks[worklist.popleft()]
        queued.discard(block.id)
        iterations += 1
        for succ, fact in transfer(block, facts_in[block.id]):
            old = facts_in.get(succ.id)
            new = fact if old is None else merge(old, fact)
            if old is not None and new == old:
                continue
            facts_in[succ.id] = new
            if succ.id not in queued:
                queued.add(succ.id)
                worklist.append(succ.id)
        if len(worklist) > 1:
            worklist = deque(sorted(worklist, key=lambda i: order.get(i, len(order))))
    if worklist:
        logger.warning("forward worklist stopped after %d iterations on %s",
                       iterations, fir.target.label)
    return facts_in
