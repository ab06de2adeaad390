"""
nativeready.typesys
===================

Type rules used by the walker's inference and by the analyses.

Types are ordinary Python classes plus parameterised generics
(``list[int]``, ``tuple[int, str]``).  The inferred type of a value is a
*type set*: a ``frozenset`` of such types.  A value is concrete when its type
set holds exactly one concrete type; two or more members mean the value is
type-unstable.

Concreteness
------------
A class is abstract when it is ``object`` / ``typing.Any``, a ``Protocol``, a
class with unimplemented abstract methods, or one of the numeric-tower and
collection ABCs (``numbers.Number``, ``collections.abc.Sequence``, ...).  A
generic alias is concrete when its origin and every argument are.
"""

from __future__ import annotations

import abc
import builtins
import inspect
import math
import operator
import types
import typing
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Tuple

__all__ = [
    "TypeSet",
    "UNKNOWN",
    "NONE_TYPE",
    "SCALAR_TYPES",
    "RawPointer",
    "expand",
    "is_resolvable_type",
    "is_concrete_type",
    "is_concrete",
    "single",
    "join",
    "type_name",
    "typeset_name",
    "element_type",
    "subscript_type",
    "binop_result",
    "unary_result",
    "builtin_call_result",
    "method_result",
    "resolve_attribute",
    "annotated_return",
    "OPERATOR_DUNDERS",
    "FOLDABLE_BINOPS",
    "FOLDABLE_UNARY",
    "PURE_BUILTINS",
    "is_builtin_callable",
]

TypeSet = FrozenSet[Any]

NONE_TYPE = type(None)
UNKNOWN: TypeSet = frozenset({object})
SCALAR_TYPES: Tuple[type, ...] = (bool, int, float, complex, str, bytes, NONE_TYPE)
_NUMERIC_RANK = {bool: 0, int: 1, float: 2, complex: 3}
_DICT_KEYS = type({}.keys())
_DICT_VALUES = type({}.values())
_DICT_ITEMS = type({}.items())

# ABCs whose classes describe interfaces rather than representations.
_ABSTRACT_MODULES = frozenset({
    "numbers", "collections.abc", "_collections_abc", "abc", "typing",
    "typing_extensions", "io", "os",
})


class RawPointer(int):
    """Address returned by a manual allocator (``malloc`` and friends)."""


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def _is_union(t: Any) -> bool:
    origin = typing.get_origin(t)
    if origin is typing.Union:
        return True
    union_type = getattr(types, "UnionType", None)
    return union_type is not None and isinstance(t, union_type)


def expand(t: Any) -> TypeSet:
    """Turn an annotation or argument type into a type set."""
    if t is None:
        return frozenset({NONE_TYPE})
    if t is typing.Any:
        return UNKNOWN
    if _is_union(t):
        members: set = set()
        for arg in typing.get_args(t):
            members |= expand(arg)
        return frozenset(members)
    origin = typing.get_origin(t)
    if origin is not None and isinstance(origin, type):
        args = tuple(
            a if a is Ellipsis else _normalise_arg(a) for a in typing.get_args(t)
        )
        return frozenset({types.GenericAlias(origin, args) if args else origin})
    return frozenset({t})


def _normalise_arg(a: Any) -> Any:
    members = expand(a)
    if len(members) == 1:
        return next(iter(members))
    return a


def is_resolvable_type(t: Any) -> bool:
    """True when *t* names real types all the way down (no TypeVar or strings)."""
    if t is None or t is typing.Any:
        return True
    if isinstance(t, (typing.TypeVar, str, typing.ForwardRef)):
        return False
    if _is_union(t):
        return all(is_resolvable_type(a) for a in typing.get_args(t))
    origin = typing.get_origin(t)
    if origin is not None:
        if not isinstance(origin, type):
            return False
        return all(a is Ellipsis or is_resolvable_type(a) for a in typing.get_args(t))
    return isinstance(t, type)


# ---------------------------------------------------------------------------
# Concreteness
# ---------------------------------------------------------------------------

def is_concrete_type(t: Any) -> bool:
    if t is object or t is typing.Any:
        return False
    if isinstance(t, types.GenericAlias):
        if not is_concrete_type(t.__origin__):
            return False
        return all(a is Ellipsis or is_concrete_type(a) for a in t.__args__)
    if not isinstance(t, type):
        return False
    if getattr(t, "_is_protocol", False):
        return False
    if inspect.isabstract(t):
        return False
    if isinstance(t, abc.ABCMeta) and t.__module__ in _ABSTRACT_MODULES:
        return False
    return True


def is_concrete(ts: TypeSet) -> bool:
    return len(ts) == 1 and is_concrete_type(next(iter(ts)))


def single(ts: TypeSet) -> Optional[Any]:
    """The only member of *ts*, or ``None`` when it has zero or several."""
    if len(ts) == 1:
        return next(iter(ts))
    return None


def join(a: TypeSet, b: TypeSet) -> TypeSet:
    merged = a | b
    if object in merged:
        return UNKNOWN
    return merged


def _origin(t: Any) -> Any:
    return t.__origin__ if isinstance(t, types.GenericAlias) else t


def type_name(t: Any) -> str:
    if t is NONE_TYPE:
        return "None"
    if isinstance(t, types.GenericAlias):
        args = ", ".join("..." if a is Ellipsis else type_name(a) for a in t.__args__)
        return f"{t.__origin__.__name__}[{args}]"
    if isinstance(t, type):
        return t.__qualname__ if t.__module__ not in ("builtins",) else t.__name__
    return repr(t)


def typeset_name(ts: TypeSet) -> str:
    if not ts:
        return "<none>"
    if ts == UNKNOWN:
        return "Any"
    return " | ".join(sorted(type_name(t) for t in ts))


# ---------------------------------------------------------------------------
# Container element types
# ---------------------------------------------------------------------------

def element_type(ts: TypeSet) -> TypeSet:
    """Type of the items produced by iterating a value of type *ts*."""
    t = single(ts)
    if t is None:
        return UNKNOWN
    if t is range:
        return frozenset({int})
    if t is str:
        return frozenset({str})
    if t in (bytes, bytearray):
        return frozenset({int})
    if isinstance(t, types.GenericAlias):
        origin, args = t.__origin__, t.__args__
        if origin is tuple:
            items = [a for a in args if a is not Ellipsis]
            return frozenset(items) if items else UNKNOWN
        if origin in (list, set, frozenset, dict) and args:
            return frozenset({args[0]})
        if origin is enumerate and args:
            return frozenset({types.GenericAlias(tuple, (int, args[0]))})
        if origin in (zip, _DICT_KEYS, _DICT_VALUES, _DICT_ITEMS) and args:
            return frozenset({args[0]})
    return UNKNOWN


def subscript_type(ts: TypeSet, index: Any = None, index_is_const: bool = False) -> TypeSet:
    t = single(ts)
    if t is None:
        return UNKNOWN
    if isinstance(index, slice):
        return ts
    if t is str:
        return frozenset({str})
    if t in (bytes, bytearray):
        return frozenset({int})
    if isinstance(t, types.GenericAlias):
        origin, args = t.__origin__, t.__args__
        if origin is list and args:
            return frozenset({args[0]})
        if origin is dict and len(args) == 2:
            return frozenset({args[1]})
        if origin is tuple and args:
            if len(args) == 2 and args[1] is Ellipsis:
                return frozenset({args[0]})
            if index_is_const and isinstance(index, int) and -len(args) <= index < len(args):
                return frozenset({args[index]})
            return frozenset(a for a in args if a is not Ellipsis)
    return UNKNOWN


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

OPERATOR_DUNDERS: Dict[str, str] = {
    "+": "__add__", "-": "__sub__", "*": "__mul__", "/": "__truediv__",
    "//": "__floordiv__", "%": "__mod__", "**": "__pow__", "@": "__matmul__",
    "<<": "__lshift__", ">>": "__rshift__", "&": "__and__", "|": "__or__",
    "^": "__xor__", "==": "__eq__", "!=": "__ne__", "<": "__lt__",
    "<=": "__le__", ">": "__gt__", ">=": "__ge__", "in": "__contains__",
    "not in": "__contains__", "neg": "__neg__", "pos": "__pos__",
    "~": "__invert__", "[]": "__getitem__",
}

FOLDABLE_BINOPS: Dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add, "-": operator.sub, "*": operator.mul,
    "/": operator.truediv, "//": operator.floordiv, "%": operator.mod,
    "**": operator.pow, "<<": operator.lshift, ">>": operator.rshift,
    "&": operator.and_, "|": operator.or_, "^": operator.xor,
    "==": operator.eq, "!=": operator.ne, "<": operator.lt,
    "<=": operator.le, ">": operator.gt, ">=": operator.ge,
}

FOLDABLE_UNARY: Dict[str, Callable[[Any], Any]] = {
    "neg": operator.neg, "pos": operator.pos, "~": operator.invert,
    "not": operator.not_,
}

PURE_BUILTINS: Dict[Any, Callable[..., Any]] = {
    abs: abs, min: min, max: max, len: len, round: round, divmod: divmod,
    pow: pow, int: int, float: float, bool: bool, ord: ord, chr: chr,
    math.sqrt: math.sqrt, math.exp: math.exp, math.log: math.log,
    math.sin: math.sin, math.cos: math.cos, math.tan: math.tan,
    math.floor: math.floor, math.ceil: math.ceil, math.fabs: math.fabs,
}

_COMPARISONS = frozenset({"==", "!=", "<", "<=", ">", ">=", "is", "is not", "in", "not in"})


def _numeric_result(op: str, lt: type, rt: type) -> Optional[type]:
    if lt not in _NUMERIC_RANK or rt not in _NUMERIC_RANK:
        return None
    wide = lt if _NUMERIC_RANK[lt] >= _NUMERIC_RANK[rt] else rt
    if wide is bool:
        wide = int
    if op == "/" and wide is int:
        return float
    if op in ("<<", ">>", "&", "|", "^") and wide not in (int,):
        return None
    if op in ("//", "%") and wide is complex:
        return None
    return wide


def _dunder_return(cls: Any, op: str) -> Optional[TypeSet]:
    name = OPERATOR_DUNDERS.get(op)
    if name is None or not isinstance(_origin(cls), type):
        return None
    impl = resolve_attribute(_origin(cls), name)
    if impl is None or not inspect.isfunction(impl):
        return None
    return annotated_return(impl)


def binop_result(op: str, left: TypeSet, right: TypeSet) -> TypeSet:
    if op in _COMPARISONS:
        return frozenset({bool})
    lt, rt = single(left), single(right)
    if lt is None or rt is None:
        return UNKNOWN
    num = _numeric_result(op, lt, rt)
    if num is not None:
        return frozenset({num})
    lo, ro = _origin(lt), _origin(rt)
    if op == "+" and lo is ro and lo in (str, bytes, list, tuple):
        return frozenset({lt}) if lt == rt else frozenset({lo})
    if op == "*" and lo in (str, bytes, list) and rt in (int, bool):
        return frozenset({lt})
    if op == "%" and lo is str:
        return frozenset({str})
    if op in ("|", "&", "-", "^") and lo in (set, frozenset) and lo is ro:
        return frozenset({lt}) if lt == rt else frozenset({lo})
    declared = _dunder_return(lt, op)
    if declared is not None:
        return declared
    return UNKNOWN


def unary_result(op: str, operand: TypeSet) -> TypeSet:
    if op == "not":
        return frozenset({bool})
    t = single(operand)
    if t in _NUMERIC_RANK:
        if op == "~" and t not in (int, bool):
            return UNKNOWN
        return frozenset({int if t is bool else t})
    if t is not None:
        declared = _dunder_return(t, op)
        if declared is not None:
            return declared
    return UNKNOWN


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------

_BUILTIN_RESULTS: Dict[Any, Any] = {
    len: int, int: int, float: float, str: str, bool: bool, repr: str,
    ord: int, chr: str, hash: int, id: int, isinstance: bool,
    issubclass: bool, callable: bool, hex: str, oct: str, bin: str,
    format: str, print: NONE_TYPE, range: range, sorted: list,
    divmod: None, round: int, complex: complex, bytes: bytes,
    math.sqrt: float, math.exp: float, math.log: float, math.sin: float,
    math.cos: float, math.tan: float, math.fabs: float, math.floor: int,
    math.ceil: int, math.hypot: float, math.atan2: float, math.pow: float,
    math.isclose: bool, math.isnan: bool, math.isinf: bool,
}


def builtin_call_result(callee: Any, args: Iterable[TypeSet]) -> Optional[TypeSet]:
    """Result type of calling a builtin, or ``None`` when unknown."""
    arg_list = list(args)
    if callee in (abs,) and arg_list:
        t = single(arg_list[0])
        if t in _NUMERIC_RANK:
            return frozenset({float if t is complex else (int if t is bool else t)})
        return None
    if callee in (min, max) and arg_list:
        if len(arg_list) == 1:
            return element_type(arg_list[0])
        merged: TypeSet = frozenset()
        for a in arg_list:
            merged = join(merged, a)
        return merged
    if callee is enumerate and arg_list:
        elem = single(element_type(arg_list[0]))
        if elem is None or elem is object:
            return frozenset({enumerate})
        return frozenset({types.GenericAlias(enumerate, (elem,))})
    if callee is zip and arg_list:
        elems = [single(element_type(a)) for a in arg_list]
        if any(e is None or e is object for e in elems):
            return frozenset({zip})
        return frozenset({types.GenericAlias(zip, (types.GenericAlias(tuple, tuple(elems)),))})
    if callee is sorted and arg_list:
        elem = single(element_type(arg_list[0]))
        if elem is None or elem is object:
            return frozenset({list})
        return frozenset({types.GenericAlias(list, (elem,))})
    if callee is sum and arg_list:
        elem = element_type(arg_list[0])
        return elem if elem != UNKNOWN else frozenset({int})
    try:
        result = _BUILTIN_RESULTS.get(callee)
    except TypeError:  # unhashable callee
        return None
    if result is None:
        return None
    return frozenset({result})


_STR_METHODS = {
    "upper": str, "lower": str, "strip": str, "lstrip": str, "rstrip": str,
    "replace": str, "join": str, "format": str, "title": str, "capitalize": str,
    "startswith": bool, "endswith": bool, "isdigit": bool, "isalpha": bool,
    "find": int, "rfind": int, "index": int, "count": int, "encode": bytes,
}
_LIST_METHODS = {"append": NONE_TYPE, "extend": NONE_TYPE, "insert": NONE_TYPE,
                 "clear": NONE_TYPE, "sort": NONE_TYPE, "reverse": NONE_TYPE,
                 "index": int, "count": int, "remove": NONE_TYPE}
_DICT_METHODS = {"clear": NONE_TYPE, "update": NONE_TYPE}
_SET_METHODS = {"add": NONE_TYPE, "discard": NONE_TYPE, "clear": NONE_TYPE,
                "update": NONE_TYPE, "remove": NONE_TYPE}


def method_result(receiver: TypeSet, name: str) -> TypeSet:
    t = single(receiver)
    if t is None:
        return UNKNOWN
    origin = _origin(t)
    args = t.__args__ if isinstance(t, types.GenericAlias) else ()
    if origin is str:
        if name in ("split", "rsplit", "splitlines"):
            return frozenset({types.GenericAlias(list, (str,))})
        r = _STR_METHODS.get(name)
        return frozenset({r}) if r else UNKNOWN
    if origin is list:
        if name == "pop" and args:
            return frozenset({args[0]})
        if name == "copy":
            return frozenset({t})
        r = _LIST_METHODS.get(name)
        return frozenset({r}) if r else UNKNOWN
    if origin is dict:
        if name in ("get", "pop") and len(args) == 2:
            return frozenset({args[1], NONE_TYPE}) if name == "get" else frozenset({args[1]})
        if len(args) == 2 and name in ("keys", "values", "items"):
            view = {
                "keys": (_DICT_KEYS, args[0]),
                "values": (_DICT_VALUES, args[1]),
                "items": (_DICT_ITEMS, types.GenericAlias(tuple, args)),
            }[name]
            return frozenset({types.GenericAlias(view[0], (view[1],))})
        if name == "copy":
            return frozenset({t})
        r = _DICT_METHODS.get(name)
        return frozenset({r}) if r else UNKNOWN
    if origin in (set, frozenset):
        if name == "copy":
            return frozenset({t})
        r = _SET_METHODS.get(name)
        return frozenset({r}) if r else UNKNOWN
    if isinstance(origin, type) and origin not in SCALAR_TYPES:
        impl = resolve_attribute(origin, name)
        if isinstance(impl, (staticmethod, classmethod)):
            impl = impl.__func__
        if inspect.isfunction(impl):
            declared = annotated_return(impl)
            if declared is not None:
                return declared
    return UNKNOWN


def resolve_attribute(cls: type, name: str) -> Any:
    """Find *name* along the MRO of *cls* without triggering descriptors."""
    for klass in getattr(cls, "__mro__", (cls,)):
        if name in vars(klass):
            return vars(klass)[name]
    return None


def annotated_return(func: Any) -> Optional[TypeSet]:
    """Declared return type of *func* as a type set, or ``None``."""
    try:
        hints = typing.get_type_hints(func)
    except Exception:  # unresolved forward references and the like
        return None
    if "return" not in hints:
        return None
    ret = hints["return"]
    if not is_resolvable_type(ret):
        return None
    return expand(ret)


def is_builtin_callable(obj: Any) -> bool:
    if inspect.isbuiltin(obj):
        return True
    return any(obj is v for v in vars(builtins).values())
