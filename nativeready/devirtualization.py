"""
nativeready.devirtualization
============================

Finds call sites that need runtime method resolution.

Every reachable ``CALL`` statement is one :class:`CallSite`:

``STATIC``
    Global functions, builtins and constructors: never dynamic.
``OPERATOR``
    Intrinsic when the operator has no special method (``and``, ``is``,
    tuple packing, ...) or when every dispatching operand is a builtin
    scalar.  Otherwise the operator dispatches through a special method and
    is dynamic.
``METHOD``
    Dynamic.
``INDIRECT``
    Dynamic and never resolvable: the callee is a runtime value.

A dynamic site is devirtualizable when each dispatching operand has exactly
one concrete type and, for methods, the attribute resolves on that class.
Type-unstable operands (two or more reachable types) keep the site dynamic.
"""

from __future__ import annotations

import logging
import types
from typing import List, Tuple

from .ir import DispatchKind, FunctionIR, Operand, Statement, StmtKind
from .reports import CallSite, DevirtualizationReport
from .typesys import OPERATOR_DUNDERS, SCALAR_TYPES, is_concrete, resolve_attribute, single, typeset_name

logger = logging.getLogger(__name__)

__all__ = ["CallSite", "DevirtualizationReport", "analyze_devirtualization", "classify_call"]

_CONTAINMENT = frozenset({"in", "not in"})


def _dispatch_operands(stmt: Statement) -> Tuple[Operand, ...]:
    if stmt.op in _CONTAINMENT:
        return stmt.operands[1:2]
    return stmt.operands


def _classify_operator(fir: FunctionIR, stmt: Statement) -> CallSite:
    if stmt.op not in OPERATOR_DUNDERS:
        return CallSite(stmt.location, stmt.op, is_dynamic=False, devirtualizable=False)
    operands = _dispatch_operands(stmt)
    typesets = [fir.type_of(o) for o in operands]
    if all(single(ts) in SCALAR_TYPES for ts in typesets):
        return CallSite(stmt.location, stmt.op, is_dynamic=False, devirtualizable=False)
    resolvable = all(is_concrete(ts) for ts in typesets)
    callee = f"{stmt.op} on {', '.join(typeset_name(ts) for ts in typesets)}"
    return CallSite(stmt.location, callee, is_dynamic=True, devirtualizable=resolvable)


def _classify_method(fir: FunctionIR, stmt: Statement) -> CallSite:
    receiver = fir.type_of(stmt.receiver)
    name = stmt.call.callee_name
    callee = f"{typeset_name(receiver)}.{name}"
    resolvable = False
    if is_concrete(receiver):
        cls = single(receiver)
        origin = cls.__origin__ if isinstance(cls, types.GenericAlias) else cls
        resolvable = resolve_attribute(origin, name) is not None
    return CallSite(stmt.location, callee, is_dynamic=True, devirtualizable=resolvable)


def classify_call(fir: FunctionIR, stmt: Statement) -> CallSite:
    """Build the :class:`CallSite` of one ``CALL`` statement."""
    dispatch = stmt.call.dispatch
    if dispatch is DispatchKind.STATIC:
        return CallSite(stmt.location, stmt.call.callee_name, is_dynamic=False, devirtualizable=False)
    if dispatch is DispatchKind.OPERATOR:
        return _classify_operator(fir, stmt)
    if dispatch is DispatchKind.METHOD:
        return _classify_method(fir, stmt)
    return CallSite(stmt.location, f"<indirect {stmt.call.callee_name}>", is_dynamic=True, devirtualizable=False)


def analyze_devirtualization(fir: FunctionIR) -> DevirtualizationReport:
    """Classify every reachable call site of *fir*."""
    sites: List[CallSite] = [
        classify_call(fir, stmt)
        for stmt in fir.statements()
        if stmt.kind is StmtKind.CALL
    ]
    report = DevirtualizationReport.from_sites(sites)
    logger.debug(
        "devirtualization %s: %d call site(s), %d dynamic, %d devirtualizable",
        fir.target.label, len(sites), report.total_dynamic_calls, report.devirtualizable_calls,
    )
    return report
