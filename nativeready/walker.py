"""
nativeready.walker
==================

Builds the typed IR of an :class:`~nativeready.ir.AnalysisTarget`.

The walker binds the target's argument types to the function's signature,
lowers the source with :mod:`nativeready.frontend`, then runs a
flow-insensitive type inference over the reachable statements:

* parameters are seeded with the argument types;
* annotated locals keep their annotation;
* every other variable is the join of the types of all values assigned to it.

Calls to unannotated user functions are typed by recursively building the
callee's IR for the concrete argument types, up to ``max_call_depth``.  An
instantiation that is still being built yields no information (its callers
wait for another inference round), which lets simple recursion converge.

Walkers memoise the IR of every instantiation they build, so one walker per
analysed target is the intended granularity.
"""

from __future__ import annotations

import inspect
import logging
import types
import typing
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .config import DEFAULT_CONFIG, EngineConfig
from .errors import IRUnavailable, RecursionLimitExceeded
from .frontend import UNRESOLVED, lower_function
from .ir import (
    AnalysisTarget,
    DispatchKind,
    FunctionIR,
    Operand,
    Statement,
    StmtKind,
    exhaustive,
)
from .typesys import (
    NONE_TYPE,
    UNKNOWN,
    TypeSet,
    annotated_return,
    binop_result,
    builtin_call_result,
    element_type,
    expand,
    is_builtin_callable,
    is_concrete_type,
    is_resolvable_type,
    join,
    method_result,
    resolve_attribute,
    single,
    subscript_type,
    type_name,
    unary_result,
)

logger = logging.getLogger(__name__)

__all__ = [
    "IRWalker",
    "bind_signature",
    "call_signature_types",
]

_MAX_ROUNDS = 32
_UNARY_OPS = frozenset({"neg", "pos", "~", "not"})


# ---------------------------------------------------------------------------
# Signature binding
# ---------------------------------------------------------------------------

def _signature(func: Callable[..., Any]) -> inspect.Signature:
    try:
        return inspect.signature(func)
    except (TypeError, ValueError) as exc:
        raise IRUnavailable(f"signature not available: {exc}") from exc


def bind_signature(
    func: Callable[..., Any], arg_types: Sequence[Any]
) -> Tuple[List[str], List[Any]]:
    """Match *arg_types* to *func*'s parameters.

    Returns ``(names, types)`` for every parameter.  Parameters not covered by
    *arg_types* take the type of their default value.

    Raises
    ------
    IRUnavailable
        Variadic parameters, or an arity that cannot be bound.
    """
    sig = _signature(func)
    positional = []
    keyword_only = []
    for p in sig.parameters.values():
        if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
            raise IRUnavailable(f"variadic parameter '{p.name}' is not supported")
        if p.kind is p.KEYWORD_ONLY:
            keyword_only.append(p)
        else:
            positional.append(p)
    required = sum(1 for p in positional if p.default is p.empty)
    if not required <= len(arg_types) <= len(positional):
        raise IRUnavailable(
            f"cannot bind {len(arg_types)} argument type(s) to signature {sig}"
        )
    names: List[str] = []
    bound: List[Any] = []
    for i, p in enumerate(positional):
        names.append(p.name)
        bound.append(arg_types[i] if i < len(arg_types) else type(p.default))
    for p in keyword_only:
        if p.default is p.empty:
            raise IRUnavailable(f"keyword-only parameter '{p.name}' has no default")
        names.append(p.name)
        bound.append(type(p.default))
    return names, bound


def call_signature_types(
    func: Callable[..., Any],
    positional: Sequence[Any],
    keywords: Dict[str, Any],
) -> Optional[Tuple[Any, ...]]:
    """Positional type tuple for a call of *func*, or ``None`` if it cannot bind."""
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return None
    params = [
        p for p in sig.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    if any(
        p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD) for p in sig.parameters.values()
    ) or len(positional) > len(params):
        return None
    remaining = dict(keywords)
    result = list(positional)
    for p in params[len(positional):]:
        if p.name in remaining:
            result.append(remaining.pop(p.name))
        elif p.default is not p.empty:
            result.append(type(p.default))
        else:
            return None
    if remaining:
        return None
    return tuple(result)


def _unwrap(target: AnalysisTarget) -> Tuple[Callable[..., Any], Tuple[Any, ...]]:
    func = target.func
    arg_types = tuple(target.arg_types)
    if isinstance(func, staticmethod):
        func = func.__func__
    if inspect.ismethod(func):
        owner = func.__self__
        arg_types = (owner if isinstance(owner, type) else type(owner),) + arg_types
        func = func.__func__
    func = inspect.unwrap(func)
    if not inspect.isfunction(func):
        raise IRUnavailable(f"not a Python function: {func!r}", target.label)
    if inspect.iscoroutinefunction(func) or inspect.isasyncgenfunction(func):
        raise IRUnavailable("coroutine functions are not supported", target.label)
    return func, arg_types


def _container(origin: type, elements: Sequence[TypeSet]) -> Any:
    if not elements:
        return origin
    merged: TypeSet = frozenset()
    for e in elements:
        merged = join(merged, e)
    t = single(merged)
    if t is None or not is_concrete_type(t):
        return types.GenericAlias(origin, (object,))
    return types.GenericAlias(origin, (t,))


# ---------------------------------------------------------------------------
# Type inference
# ---------------------------------------------------------------------------

class _TypeInference:
    """Flow-insensitive fixpoint over one function's reachable statements.

    An empty type set is *bottom*: the value has not been typed yet.  A rule
    that sees a bottom operand returns ``None`` and is retried next round.
    """

    def __init__(
        self,
        walker: "IRWalker",
        fir: FunctionIR,
        seeds: Dict[str, TypeSet],
        fixed: Dict[str, TypeSet],
        depth: int,
    ) -> None:
        self.walker = walker
        self.fir = fir
        self.fixed = fixed
        self.depth = depth
        self.types: Dict[str, TypeSet] = dict(seeds)
        self.types.update(fixed)
        self.returns: TypeSet = frozenset()

    def run(self) -> Tuple[Dict[str, TypeSet], TypeSet]:
        stmts = list(self.fir.statements())
        target = self.fir.target
        changed: Set[str] = set()
        for _ in range(_MAX_ROUNDS):
            changed = set()
            for stmt in stmts:
                if stmt.kind is StmtKind.RETURN:
                    value = self.t(stmt.operands[0])
                    if value:
                        self.returns = join(self.returns, value)
                    continue
                if stmt.target is None or stmt.target in self.fixed:
                    continue
                result = _RULES[stmt.kind](self, stmt)
                if not result:
                    continue
                old = self.types.get(stmt.target, frozenset())
                new = join(old, result)
                if new != old:
                    self.types[stmt.target] = new
                    changed.add(stmt.target)
            self.walker._partial[target] = self.returns
            if not changed:
                break
        else:
            logger.debug(
                "type inference for %s did not converge; widening %s",
                target.label, sorted(changed),
            )
            for name in changed:
                self.types[name] = UNKNOWN
        return {k: v for k, v in self.types.items() if v}, self.returns

    # ----- operand helpers --------------------------------------------------

    def t(self, operand: Operand) -> TypeSet:
        if operand.is_var:
            return self.types.get(operand.name, frozenset())
        if operand.is_global and operand.value is UNRESOLVED:
            return UNKNOWN
        return frozenset({type(operand.value)})

    def all_typed(self, operands: Sequence[Operand]) -> Optional[List[TypeSet]]:
        result = [self.t(o) for o in operands]
        if any(not r for r in result):
            return None
        return result

    # ----- per-kind rules ---------------------------------------------------

    def allocation(self, stmt: Statement) -> Optional[TypeSet]:
        hint = stmt.alloc.result_hint
        if hint not in (list, set, frozenset, dict):
            if isinstance(hint, type):
                return frozenset({hint})
            if callable(hint):
                return annotated_return(hint) or UNKNOWN
            return UNKNOWN
        ops = self.all_typed(stmt.operands)
        if ops is None:
            return None
        op = stmt.op
        if hint in (list, set, frozenset):
            if op == "list_repeat":
                elements = ops[:-1]
            elif op == "from_iterable":
                elements = [element_type(ops[0])] if ops else []
            elif op in ("list", "set", "listcomp", "setcomp"):
                elements = ops
            else:
                elements = []
            return frozenset({_container(hint, elements)})
        if hint is dict:
            if op in ("dict", "dictcomp") and ops:
                k = _container(dict, ops[0::2])
                v = _container(dict, ops[1::2])
                if k is dict:
                    return frozenset({dict})
                return frozenset({types.GenericAlias(dict, (k.__args__[0], v.__args__[0]))})
            if op == "from_iterable" and ops:
                src = single(ops[0])
                if isinstance(src, types.GenericAlias) and src.__origin__ is dict:
                    return frozenset({src})
        return frozenset({dict})

    def call(self, stmt: Statement) -> Optional[TypeSet]:
        call = stmt.call
        if call.dispatch is DispatchKind.OPERATOR:
            return self.operator(stmt)
        if call.deallocates:
            return frozenset({NONE_TYPE})
        if call.dispatch is DispatchKind.STATIC:
            callee = call.callee
            if callee is None or callee is UNRESOLVED:
                return UNKNOWN
            if is_builtin_callable(callee):
                args = self.all_typed(stmt.positional_args)
                if args is None:
                    return None
                result = builtin_call_result(callee, args)
                if result is not None:
                    return result
                return frozenset({callee}) if isinstance(callee, type) else UNKNOWN
            if isinstance(callee, type):
                return frozenset({callee})
            if inspect.ismethod(callee):
                owner = callee.__self__
                prefix = (owner if isinstance(owner, type) else type(owner),)
                return self.function_result(callee.__func__, stmt, prefix)
            if inspect.isfunction(callee):
                return self.function_result(callee, stmt)
            return UNKNOWN
        if call.dispatch is DispatchKind.METHOD:
            receiver = self.t(stmt.receiver)
            if not receiver:
                return None
            result = method_result(receiver, call.callee_name)
            if result != UNKNOWN:
                return result
            cls = single(receiver)
            origin = cls.__origin__ if isinstance(cls, types.GenericAlias) else cls
            if isinstance(origin, type) and origin.__module__ != "builtins":
                impl = resolve_attribute(origin, call.callee_name)
                if isinstance(impl, staticmethod):
                    return self.function_result(impl.__func__, stmt)
                if isinstance(impl, classmethod):
                    return self.function_result(impl.__func__, stmt, (origin,))
                if inspect.isfunction(impl):
                    return self.function_result(impl, stmt, (cls,))
            return UNKNOWN
        return UNKNOWN

    def function_result(
        self, func: Callable[..., Any], stmt: Statement, prefix: Tuple[Any, ...] = ()
    ) -> Optional[TypeSet]:
        declared = annotated_return(func)
        if declared is not None:
            return declared
        if stmt.call.starred:
            return UNKNOWN
        positional = self.all_typed(stmt.positional_args)
        if positional is None:
            return None
        keywords = {}
        for name, operand in stmt.keyword_args.items():
            kt = self.t(operand)
            if not kt:
                return None
            keywords[name] = kt
        singles = [single(a) for a in positional]
        kw_singles = {k: single(v) for k, v in keywords.items()}
        if any(s is None or not is_concrete_type(s) for s in singles + list(kw_singles.values())):
            return UNKNOWN
        bound = call_signature_types(func, list(prefix) + singles, kw_singles)
        if bound is None:
            return UNKNOWN
        return self.walker._callee_return(func, bound, self.depth + 1)

    def operator(self, stmt: Statement) -> Optional[TypeSet]:
        op = stmt.op
        ops = self.all_typed(stmt.operands)
        if ops is None:
            return None
        if op in ("and", "or"):
            merged: TypeSet = frozenset()
            for o in ops:
                merged = join(merged, o)
            return merged
        if op == "select":
            return join(ops[1], ops[2])
        if op == "tuple":
            if stmt.call.starred or not ops:
                return frozenset({tuple})
            members = tuple(single(o) or object for o in ops)
            return frozenset({types.GenericAlias(tuple, members)})
        if op == "slice":
            return frozenset({slice})
        if op == "[]":
            index = stmt.operands[1]
            if index.is_const:
                result = subscript_type(ops[0], index.value, True)
            elif ops[1] == frozenset({slice}):
                result = subscript_type(ops[0], slice(None))
            else:
                result = subscript_type(ops[0])
            if result == UNKNOWN:
                result = binop_result("[]", ops[0], ops[1])
            return result
        if op in _UNARY_OPS:
            return unary_result(op, ops[0])
        return binop_result(op, ops[0], ops[1])

    def assignment(self, stmt: Statement) -> Optional[TypeSet]:
        op = stmt.op
        if op == "catch":
            exc = stmt.operands[0]
            if exc.is_global and isinstance(exc.value, type):
                return frozenset({exc.value})
            if exc.is_global and isinstance(exc.value, tuple):
                return frozenset(c for c in exc.value if isinstance(c, type)) or UNKNOWN
            return UNKNOWN
        source = self.t(stmt.operands[0])
        if not source:
            return None
        if op == "copy":
            return source
        if op == "load_attr":
            return _attribute_type(source, stmt.attr)
        if op == "iter_next":
            return element_type(source)
        if op == "unpack":
            return subscript_type(source, stmt.operands[1].value, True)
        if op == "unpack_rest":
            return frozenset({_container(list, [element_type(source)])})
        if op == "enter":
            return method_result(source, "__enter__")
        return UNKNOWN

    def no_value(self, stmt: Statement) -> Optional[TypeSet]:
        return UNKNOWN if stmt.target is not None else None


_RULES = exhaustive({
    StmtKind.ALLOCATION: _TypeInference.allocation,
    StmtKind.CALL: _TypeInference.call,
    StmtKind.ASSIGNMENT: _TypeInference.assignment,
    StmtKind.BRANCH: _TypeInference.no_value,
    StmtKind.RETURN: _TypeInference.no_value,
    StmtKind.OTHER: _TypeInference.no_value,
})


def _attribute_type(ts: TypeSet, name: Optional[str]) -> TypeSet:
    t = single(ts)
    if t is None or name is None:
        return UNKNOWN
    origin = t.__origin__ if isinstance(t, types.GenericAlias) else t
    if origin in (int, float, bool) and name in ("real", "imag"):
        return frozenset({int if origin is bool else origin})
    if origin is complex and name in ("real", "imag"):
        return frozenset({float})
    if not isinstance(origin, type) or origin.__module__ == "builtins":
        return UNKNOWN
    try:
        hints = typing.get_type_hints(origin)
    except Exception:  # unresolved forward references in the class body
        hints = {}
    if name in hints and is_resolvable_type(hints[name]):
        return expand(hints[name])
    attr = resolve_attribute(origin, name)
    if isinstance(attr, property) and attr.fget is not None:
        return annotated_return(attr.fget) or UNKNOWN
    if inspect.isfunction(attr):
        return frozenset({types.MethodType})
    if attr is not None and not hasattr(attr, "__get__"):
        return frozenset({type(attr)})
    return UNKNOWN


# ---------------------------------------------------------------------------
# Walker
# ---------------------------------------------------------------------------

class IRWalker:
    """Produces :class:`FunctionIR` for analysis targets.

    Parameters
    ----------
    config : EngineConfig, optional
        Supplies ``max_nesting_depth`` and ``max_call_depth``.
    """

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG) -> None:
        self.config = config
        self._built: Dict[AnalysisTarget, FunctionIR] = {}
        self._in_progress: Set[AnalysisTarget] = set()
        self._partial: Dict[AnalysisTarget, TypeSet] = {}

    def build(self, target: AnalysisTarget) -> FunctionIR:
        """Return the typed IR of *target*.

        Raises
        ------
        IRUnavailable
            The callable cannot be specialised for the argument types.
        RecursionLimitExceeded
            The source nests deeper than ``max_nesting_depth``.
        """
        return self._build(target, 0)

    def _build(self, target: AnalysisTarget, depth: int) -> FunctionIR:
        for t in target.arg_types:
            if not is_resolvable_type(t):
                raise IRUnavailable(f"argument type {t!r} is not resolvable", target.label)
        cached = self._built.get(target)
        if cached is not None:
            return cached

        func, arg_types = _unwrap(target)
        try:
            names, bound = bind_signature(func, arg_types)
        except IRUnavailable as exc:
            raise IRUnavailable(exc.reason, target.label) from exc
        fir = FunctionIR(target, tuple(names))
        try:
            lowered = lower_function(func, fir, names, self.config.max_nesting_depth)
        except IRUnavailable as exc:
            if exc.target_label is None:
                raise IRUnavailable(exc.reason, target.label) from exc
            raise

        seeds = {name: expand(t) for name, t in zip(names, bound)}
        fixed: Dict[str, TypeSet] = {}
        for name, annotation in lowered.declared.items():
            if name not in seeds and is_resolvable_type(annotation):
                fixed[name] = expand(annotation)

        self._in_progress.add(target)
        try:
            var_types, returns = _TypeInference(self, fir, seeds, fixed, depth).run()
        finally:
            self._in_progress.discard(target)
            self._partial.pop(target, None)
        if lowered.is_generator:
            returns = frozenset({types.GeneratorType})

        declared = dict(seeds)
        declared.update(fixed)
        fir.seal(var_types, declared, returns, lowered.local_names)
        self._built[target] = fir
        logger.debug(
            "built IR for %s (depth %d): returns %s",
            target.label, depth, ", ".join(type_name(t) for t in returns) or "<none>",
        )
        return fir

    def _callee_return(
        self, func: Callable[..., Any], arg_types: Tuple[Any, ...], depth: int
    ) -> Optional[TypeSet]:
        """Inferred return type of a call, or ``None`` while it is being built."""
        target = AnalysisTarget(func, arg_types)
        if target in self._in_progress:
            return self._partial.get(target) or None
        if depth > self.config.max_call_depth:
            return UNKNOWN
        try:
            fir = self._build(target, depth)
        except (IRUnavailable, RecursionLimitExceeded) as exc:
            logger.debug("callee %s not inferable: %s", target.label, exc)
            return UNKNOWN
        return fir.return_types or UNKNOWN

    def built_targets(self) -> List[AnalysisTarget]:
        """Instantiations built so far, in build order."""
        return list(self._built)
