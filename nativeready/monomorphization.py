"""
nativeready.monomorphization
============================

Detects abstract (non-concrete) types and measures how far a call graph can
be specialised.

Slots
-----
Every parameter and every *load-bearing* local (a named local read by some
reachable statement) is one slot.  A slot is concrete when its inferred type
set holds exactly one concrete type.  ``specialization_factor`` is the share
of concrete slots, ``1.0`` for a function with no slots.

Call-graph exploration
----------------------
``can_fully_monomorphize`` walks the user functions transitively called from
the target, each instantiated with the concrete argument types seen at its
call site.  Instantiations are kept in an explicit visited set keyed by
:class:`~nativeready.ir.AnalysisTarget` (callable plus type tuple), so
recursive and mutually recursive call graphs are explored once.  Exploring
deeper than ``max_call_depth`` raises :class:`RecursionLimitExceeded`.

The verdict is false as soon as one instantiation has an abstract slot, a call
site passes a non-concrete argument to a user function, or a callee cannot be
lowered.
"""

from __future__ import annotations

import inspect
import logging
import types
from collections import deque
from typing import Any, Deque, List, Optional, Set, Tuple

from .config import DEFAULT_CONFIG, EngineConfig
from .errors import IRUnavailable, RecursionLimitExceeded
from .ir import AnalysisTarget, DispatchKind, FunctionIR, Statement, StmtKind
from .reports import AbstractParameter, MonomorphizationReport
from .typesys import UNKNOWN, is_concrete, is_concrete_type, resolve_attribute, single, typeset_name
from .walker import IRWalker, call_signature_types

logger = logging.getLogger(__name__)

__all__ = [
    "AbstractParameter",
    "MonomorphizationReport",
    "analyze_monomorphization",
    "classify_slots",
]


class _Unspecialisable(Exception):
    """A call site whose instantiation cannot be determined."""


# ---------------------------------------------------------------------------
# Slot classification
# ---------------------------------------------------------------------------

def _read_names(fir: FunctionIR) -> Set[str]:
    names: Set[str] = set()
    for stmt in fir.statements():
        for operand in stmt.operands:
            if operand.is_var:
                names.add(operand.name)
    return names


def classify_slots(fir: FunctionIR) -> List[AbstractParameter]:
    """Parameters first (in order), then load-bearing locals sorted by name."""
    slots: List[AbstractParameter] = []
    for position, name in enumerate(fir.params):
        ts = fir.var_types.get(name) or fir.declared.get(name, UNKNOWN)
        slots.append(AbstractParameter(position, name, typeset_name(ts), is_concrete(ts)))
    read = _read_names(fir)
    for name in sorted(fir.local_names | {n for n in read if "%c" in n}):
        if name.startswith("%") or name in fir.params or name not in read:
            continue
        ts = fir.var_types.get(name, UNKNOWN)
        display = name.split("%", 1)[0]
        slots.append(AbstractParameter(None, display, typeset_name(ts), is_concrete(ts)))
    return slots


# ---------------------------------------------------------------------------
# Call-site instantiation
# ---------------------------------------------------------------------------

def _concrete_types(fir: FunctionIR, stmt: Statement) -> Tuple[List[Any], dict]:
    if stmt.call is not None and stmt.call.starred:
        raise _Unspecialisable(f"starred call at {stmt.location}")
    positional = []
    for operand in stmt.positional_args if stmt.call is not None else stmt.operands:
        ts = fir.type_of(operand)
        if not is_concrete(ts):
            raise _Unspecialisable(f"argument {operand} is {typeset_name(ts)} at {stmt.location}")
        positional.append(single(ts))
    keywords = {}
    for name, operand in stmt.keyword_args.items():
        ts = fir.type_of(operand)
        if not is_concrete(ts):
            raise _Unspecialisable(f"argument {name}={operand} is {typeset_name(ts)} at {stmt.location}")
        keywords[name] = single(ts)
    return positional, keywords


def _instantiate(fir: FunctionIR, stmt: Statement, func: Any, prefix: Tuple[Any, ...]) -> AnalysisTarget:
    positional, keywords = _concrete_types(fir, stmt)
    bound = call_signature_types(func, list(prefix) + positional, keywords)
    if bound is None:
        raise _Unspecialisable(f"cannot bind call of {func.__qualname__} at {stmt.location}")
    return AnalysisTarget(func, bound)


def _method_impl(cls: Any, name: str) -> Tuple[Optional[Any], Tuple[Any, ...]]:
    origin = cls.__origin__ if isinstance(cls, types.GenericAlias) else cls
    impl = resolve_attribute(origin, name)
    if isinstance(impl, staticmethod):
        return impl.__func__, ()
    if isinstance(impl, classmethod):
        return impl.__func__, (origin,)
    if inspect.isfunction(impl):
        return impl, (cls,)
    return None, ()


def callee_targets(fir: FunctionIR, stmt: Statement) -> List[AnalysisTarget]:
    """User-function instantiations invoked by *stmt*.

    Raises ``_Unspecialisable`` when *stmt* calls user code whose
    instantiation cannot be determined from concrete types.
    """
    if stmt.kind is StmtKind.ALLOCATION and stmt.op == "new":
        cls = stmt.alloc.result_hint
        init = resolve_attribute(cls, "__init__")
        if inspect.isfunction(init):
            return [_instantiate(fir, stmt, init, (cls,))]
        return []
    if stmt.kind is not StmtKind.CALL or stmt.call.deallocates:
        return []
    call = stmt.call
    if call.dispatch is DispatchKind.STATIC:
        callee = call.callee
        if inspect.isfunction(callee):
            return [_instantiate(fir, stmt, callee, ())]
        if inspect.ismethod(callee) and inspect.isfunction(callee.__func__):
            owner = callee.__self__
            prefix = (owner if isinstance(owner, type) else type(owner),)
            return [_instantiate(fir, stmt, callee.__func__, prefix)]
        return []
    if call.dispatch is DispatchKind.METHOD:
        receiver = fir.type_of(stmt.receiver)
        cls = single(receiver)
        origin = cls.__origin__ if isinstance(cls, types.GenericAlias) else cls
        if isinstance(origin, type) and origin.__module__ == "builtins" and origin is not object:
            return []
        if not is_concrete(receiver):
            raise _Unspecialisable(
                f"receiver of .{call.callee_name}() is {typeset_name(receiver)} at {stmt.location}"
            )
        impl, prefix = _method_impl(cls, call.callee_name)
        if impl is None:
            return []
        return [_instantiate(fir, stmt, impl, prefix)]
    if call.dispatch is DispatchKind.INDIRECT:
        raise _Unspecialisable(f"indirect call at {stmt.location}")
    return []


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def _explore(
    fir: FunctionIR, walker: IRWalker, max_depth: int
) -> Tuple[bool, List[str]]:
    visited: Set[AnalysisTarget] = {fir.target}
    explored: List[str] = []
    worklist: Deque[Tuple[FunctionIR, int]] = deque([(fir, 0)])
    while worklist:
        current, depth = worklist.popleft()
        explored.append(current.target.label)
        if not all(slot.is_concrete for slot in classify_slots(current)):
            logger.debug("monomorphization: %s has abstract slots", current.target.label)
            return False, explored
        for stmt in current.statements():
            try:
                targets = callee_targets(current, stmt)
            except _Unspecialisable as exc:
                logger.debug("monomorphization: %s", exc)
                return False, explored
            for target in targets:
                if target in visited:
                    continue
                if depth + 1 > max_depth:
                    raise RecursionLimitExceeded(
                        analysis="monomorphization", depth=depth + 1, where=str(stmt.location)
                    )
                visited.add(target)
                try:
                    callee_fir = walker.build(target)
                except IRUnavailable as exc:
                    logger.debug("monomorphization: callee %s unavailable: %s", target.label, exc.reason)
                    return False, explored
                except RecursionLimitExceeded as exc:
                    raise RecursionLimitExceeded(
                        analysis="monomorphization", depth=exc.depth, where=target.label
                    ) from exc
                worklist.append((callee_fir, depth + 1))
    return True, explored


def analyze_monomorphization(
    fir: FunctionIR,
    walker: Optional[IRWalker] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> MonomorphizationReport:
    """Classify the slots of *fir* and explore its call graph.

    Raises
    ------
    RecursionLimitExceeded
        The call graph is deeper than ``config.max_call_depth``.
    """
    walker = walker or IRWalker(config)
    slots = classify_slots(fir)
    concrete = sum(1 for s in slots if s.is_concrete)
    factor = concrete / len(slots) if slots else 1.0
    has_abstract = concrete < len(slots)
    if has_abstract:
        can_mono, explored = False, [fir.target.label]
    else:
        can_mono, explored = _explore(fir, walker, config.max_call_depth)
    logger.debug(
        "monomorphization %s: %d/%d concrete, fully monomorphizable=%s",
        fir.target.label, concrete, len(slots), can_mono,
    )
    return MonomorphizationReport(
        parameters=tuple(slots),
        has_abstract_types=has_abstract,
        specialization_factor=factor,
        can_fully_monomorphize=can_mono,
        instantiations=tuple(explored),
    )
