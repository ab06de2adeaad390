"""
nativeready.lifetime_analysis
=============================

Pairs manual allocations (``malloc``, ``MallocArray``, ...) with their frees.

The traversal is path sensitive: it walks ``(block, state)`` pairs forward
from the entry, where a state holds

* the allocation sites still open on this path, oldest first, and
* which pointer variables may alias which site.

A free matches the most recent open site its operand aliases.  A variable
that holds a manual allocation somewhere in the function but none on this
path has nothing to match: freeing it is a potential double free, so a free
never pairs with an allocation made on a mutually exclusive branch.  Only
an operand of unknown provenance (a pointer loaded from a field, say)
matches the most recent open site on the path.  Freeing a parameter
releases memory owned by the caller; it is neither a match nor a double
free, but a second free of the same parameter is.

Paths record the outcome of ``if`` tests on plain variables, so a later
``if`` on the same, unreassigned variable only follows the consistent edge.

``proper_frees`` is the size of the largest one-to-one matching between
allocations and frees paired on some path; ``paired_with`` links follow
that matching in both directions.

An allocation still open at the exit, or re-executed while still open (a
loop that allocates without freeing), is a potential leak unless the pointer
escapes to the caller (returned, yielded, raised or stored outward): that is
an ownership transfer.

Each block keeps at most ``max_paths_per_block`` distinct states.  Past the
cap, new states are joined into one summary state (union of open sites and
aliases), which over-approximates leaks and keeps the traversal finite.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import DefaultDict, Deque, Dict, FrozenSet, List, NamedTuple, Optional, Set, Tuple

from .config import DEFAULT_CONFIG, EngineConfig
from .dataflow import OWNERSHIP_TRANSFER, ValueFlow
from .ir import BasicBlock, CFGEdge, EdgeKind, FunctionIR, Statement, StmtKind
from .reports import LifetimeEvent, LifetimeReport

logger = logging.getLogger(__name__)

__all__ = ["LifetimeEvent", "LifetimeReport", "analyze_lifetimes"]

# Alias target recorded for a parameter that has been freed.
_RELEASED = -1


class _PathState(NamedTuple):
    open: Tuple[int, ...]
    aliases: FrozenSet[Tuple[str, int]]
    # Truth of ``if`` conditions on plain variables taken along this path.
    facts: FrozenSet[Tuple[str, bool]] = frozenset()

    def sites_of(self, name: str) -> Set[int]:
        return {site for var, site in self.aliases if var == name}

    def rebind(self, name: str, sites: Set[int]) -> "_PathState":
        kept = {pair for pair in self.aliases if pair[0] != name}
        kept.update((name, s) for s in sites)
        facts = self.facts
        if any(var == name for var, _ in facts):
            facts = frozenset(f for f in facts if f[0] != name)
        return self._replace(aliases=frozenset(kept), facts=facts)


_EMPTY = _PathState((), frozenset())


def _join(a: _PathState, b: _PathState) -> _PathState:
    return _PathState(
        tuple(dict.fromkeys(a.open + b.open)), a.aliases | b.aliases, a.facts & b.facts,
    )


def _pointer_names(fir: FunctionIR) -> Set[str]:
    """Variables that hold a manual allocation somewhere in *fir*."""
    names = {s.target for s in fir.statements() if _is_manual_alloc(s) and s.target is not None}
    copies = [
        s for s in fir.statements()
        if s.op == "copy" and s.target is not None and s.operands and s.operands[0].is_var
    ]
    changed = True
    while changed:
        changed = False
        for s in copies:
            if s.target not in names and s.operands[0].name in names:
                names.add(s.target)
                changed = True
    return names


def _is_free(stmt: Statement) -> bool:
    return stmt.kind is StmtKind.CALL and stmt.call.deallocates


def _is_manual_alloc(stmt: Statement) -> bool:
    return stmt.kind is StmtKind.ALLOCATION and stmt.alloc.manual


class _Traversal:
    def __init__(self, fir: FunctionIR, transfers: Set[int], cap: int) -> None:
        self.fir = fir
        self.transfers = transfers
        self.cap = cap
        self.pointers = _pointer_names(fir)
        self.pairs: Set[Tuple[int, int]] = set()
        self.leaks: Set[int] = set()
        self.double_frees: Set[int] = set()

    def run(self) -> None:
        seen: DefaultDict[int, Set[_PathState]] = defaultdict(set)
        summary: Dict[int, _PathState] = {}
        work: Deque[Tuple[BasicBlock, _PathState]] = deque([(self.fir.entry, _EMPTY)])
        while work:
            block, state = work.popleft()
            states = seen[block.id]
            if state in states:
                continue
            if len(states) >= self.cap:
                previous = summary.get(block.id)
                state = state if previous is None else _join(previous, state)
                if state == previous:
                    continue
                summary[block.id] = state
            else:
                states.add(state)
            state = self.block(block, state)
            if block is self.fir.exit or not block.successors:
                self.exit(state)
            for edge in block.successors:
                refined = self.refine(block, edge, state)
                if refined is not None:
                    work.append((edge.dst, refined))

    def refine(self, block: BasicBlock, edge: CFGEdge, state: _PathState) -> Optional[_PathState]:
        """State along *edge*, or ``None`` when the edge contradicts an earlier ``if``."""
        term = block.terminator
        if term is None or term.kind is not StmtKind.BRANCH or term.op != "if":
            return state
        cond = term.operands[0]
        if not cond.is_var or edge.kind not in (EdgeKind.BRANCH_TRUE, EdgeKind.BRANCH_FALSE):
            return state
        taken = edge.kind is EdgeKind.BRANCH_TRUE
        if (cond.name, not taken) in state.facts:
            return None
        return state._replace(facts=state.facts | {(cond.name, taken)})

    def block(self, block: BasicBlock, state: _PathState) -> _PathState:
        for stmt in block.statements:
            if _is_manual_alloc(stmt):
                state = self.allocate(stmt, state)
            elif _is_free(stmt):
                state = self.free(stmt, state)
            elif stmt.target is not None:
                sites: Set[int] = set()
                if stmt.op == "copy" and stmt.operands[0].is_var:
                    sites = state.sites_of(stmt.operands[0].name)
                state = state.rebind(stmt.target, sites)
        return state

    def allocate(self, stmt: Statement, state: _PathState) -> _PathState:
        site = stmt.index
        if site in state.open:
            if site not in self.transfers:
                self.leaks.add(site)
            opened = state.open
        else:
            opened = state.open + (site,)
        state = state._replace(open=opened)
        if stmt.target is not None:
            state = state.rebind(stmt.target, {site})
        return state

    def free(self, stmt: Statement, state: _PathState) -> _PathState:
        args = stmt.args
        operand = args[0] if args else None
        aliased: Optional[Set[int]] = None
        if operand is not None and operand.is_var:
            aliased = state.sites_of(operand.name) or None
            if aliased is None and self.fir.is_param(operand.name):
                return state.rebind(operand.name, {_RELEASED})
            if aliased is None and operand.name in self.pointers:
                # allocated elsewhere but not on this path
                aliased = set()
        candidates = [s for s in state.open if aliased is None or s in aliased]
        if not candidates:
            self.double_frees.add(stmt.index)
            return state
        site = candidates[-1]
        self.pairs.add((site, stmt.index))
        return state._replace(open=tuple(s for s in state.open if s != site))

    def exit(self, state: _PathState) -> None:
        for site in state.open:
            if site not in self.transfers:
                self.leaks.add(site)


def _one_to_one(pairs: Set[Tuple[int, int]]) -> Dict[int, int]:
    """Largest one-to-one matching of alloc and free indices in *pairs*.

    Returns a symmetric map: ``m[alloc] == free`` and ``m[free] == alloc``.
    """
    options: DefaultDict[int, List[int]] = defaultdict(list)
    for alloc_idx, free_idx in sorted(pairs):
        options[free_idx].append(alloc_idx)
    owner: Dict[int, int] = {}  # alloc -> free

    def augment(free_idx: int, visited: Set[int]) -> bool:
        for alloc_idx in options[free_idx]:
            if alloc_idx in visited:
                continue
            visited.add(alloc_idx)
            if alloc_idx not in owner or augment(owner[alloc_idx], visited):
                owner[alloc_idx] = free_idx
                return True
        return False

    for free_idx in sorted(options):
        augment(free_idx, set())
    partner: Dict[int, int] = {}
    for alloc_idx, free_idx in owner.items():
        partner[alloc_idx] = free_idx
        partner[free_idx] = alloc_idx
    return partner


def analyze_lifetimes(
    fir: FunctionIR,
    flow: Optional[ValueFlow] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> LifetimeReport:
    """Match manual allocations and frees along every path of *fir*."""
    allocs = [s for s in fir.statements() if _is_manual_alloc(s)]
    frees = [s for s in fir.statements() if _is_free(s)]
    if not allocs and not frees:
        return LifetimeReport(events=(), potential_leaks=0, potential_double_frees=0, proper_frees=0)

    flow = flow or ValueFlow(fir)
    transfers = {
        s.index for s in allocs if flow.escape_reasons(s) & OWNERSHIP_TRANSFER
    }
    traversal = _Traversal(fir, transfers, config.max_paths_per_block)
    traversal.run()

    partner = _one_to_one(traversal.pairs)

    events: List[LifetimeEvent] = []
    for stmt in sorted(allocs + frees, key=lambda s: s.index):
        kind = "alloc" if _is_manual_alloc(stmt) else "free"
        unmatched = stmt.index in (traversal.leaks if kind == "alloc" else traversal.double_frees)
        events.append(LifetimeEvent(
            location=stmt.location,
            kind=kind,
            index=stmt.index,
            paired_with=partner.get(stmt.index),
            unmatched=unmatched,
            name=stmt.op if kind == "alloc" else stmt.call.callee_name,
        ))

    report = LifetimeReport(
        events=tuple(events),
        potential_leaks=len(traversal.leaks),
        potential_double_frees=len(traversal.double_frees),
        proper_frees=len(partner) // 2,
    )
    logger.debug(
        "lifetimes %s: %d leak(s), %d double free(s), %d proper free(s)",
        fir.target.label, report.potential_leaks,
        report.potential_double_frees, report.proper_frees,
    )
    return report
