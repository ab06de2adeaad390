"""
nativeready.frontend
====================

Lowers the source of a Python function into the statements and basic blocks
of a :class:`~nativeready.ir.FunctionIR`.

The lowering is a single recursive pass over the function's ``ast``.  Every
expression is flattened into three-address form: operands are constants,
local variables (``x``, temporaries ``%3``) or globals resolved against the
function's module, closure cells and builtins at lowering time.

Allocation sites
----------------
The following expressions create heap objects and are emitted as
``StmtKind.ALLOCATION``:

* list / set / dict literals and comprehensions, generator expressions
* calls of ``list``, ``set``, ``frozenset``, ``dict`` and ``bytearray``
* instantiation of user-defined classes
* f-strings
* nested ``def`` / ``lambda`` / ``class`` (closure objects)
* ``zeros`` / ``ones`` / ``empty`` / ``full`` array constructors
* manual allocators: ``malloc``, ``calloc``, ``MallocArray``, ... (``manual=True``)

Tuple literals are immutable aggregates and are lowered as the ``"tuple"``
operator, not as allocations.

Size estimates (bytes): list literal ``56 + 8n``, ``[x] * N`` with constant
``N`` ``56 + 8N``, dict literal ``64 + 24n``, set literal ``216 + 16n``,
``bytearray(N)`` ``57 + N``, array constructors ``8n``, class instance ``56``,
closure ``152``.  Anything whose size depends on runtime values is ``None``.
"""

from __future__ import annotations

import ast
import builtins
import inspect
import linecache
import logging
import sys
import textwrap
import types
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .errors import IRUnavailable, RecursionLimitExceeded
from .ir import (
    AllocInfo,
    BasicBlock,
    CallInfo,
    DispatchKind,
    EdgeKind,
    FunctionIR,
    Operand,
    SourceLocation,
    Statement,
    StmtKind,
)
from .typesys import RawPointer

logger = logging.getLogger(__name__)

__all__ = [
    "UNRESOLVED",
    "MANUAL_ALLOCATORS",
    "FREE_FUNCTIONS",
    "ARRAY_ALLOCATORS",
    "LoweredBody",
    "parse_function",
    "lower_function",
]

# Value of a global operand whose name does not resolve at lowering time.
UNRESOLVED = object()

MANUAL_ALLOCATORS = frozenset({
    "malloc", "calloc", "MallocArray", "MallocVector", "MallocMatrix",
    "PyMem_Malloc", "PyMem_Calloc",
})
FREE_FUNCTIONS = frozenset({"free", "c_free", "libc_free", "PyMem_Free"})
ARRAY_ALLOCATORS = frozenset({"zeros", "ones", "empty", "full"})

_CONTAINER_BUILTINS: Dict[type, str] = {
    list: "list", set: "set", frozenset: "frozenset", dict: "dict", bytearray: "bytearray",
}

LIST_HEADER_BYTES = 56
DICT_HEADER_BYTES = 64
SET_HEADER_BYTES = 216
BYTEARRAY_HEADER_BYTES = 57
INSTANCE_BYTES = 56
CLOSURE_BYTES = 152
WORD_BYTES = 8

_BINOPS: Dict[type, str] = {
    ast.Add: "+", ast.Sub: "-", ast.Mult: "*", ast.Div: "/", ast.FloorDiv: "//",
    ast.Mod: "%", ast.Pow: "**", ast.MatMult: "@", ast.LShift: "<<",
    ast.RShift: ">>", ast.BitAnd: "&", ast.BitOr: "|", ast.BitXor: "^",
}
_UNARYOPS: Dict[type, str] = {
    ast.USub: "neg", ast.UAdd: "pos", ast.Invert: "~", ast.Not: "not",
}
_CMPOPS: Dict[type, str] = {
    ast.Eq: "==", ast.NotEq: "!=", ast.Lt: "<", ast.LtE: "<=", ast.Gt: ">",
    ast.GtE: ">=", ast.Is: "is", ast.IsNot: "is not", ast.In: "in",
    ast.NotIn: "not in",
}


# ---------------------------------------------------------------------------
# Source retrieval
# ---------------------------------------------------------------------------

def parse_function(func: Callable[..., Any]) -> Tuple[ast.AST, str, int]:
    """Return ``(node, filename, line_offset)`` for *func*'s definition.

    ``node`` is the ``FunctionDef`` or ``Lambda`` that defines *func*.
    """
    code = func.__code__
    filename = code.co_filename
    linecache.checkcache(filename)
    try:
        lines, start = inspect.getsourcelines(func)
    except (OSError, TypeError) as exc:
        raise IRUnavailable(f"source not available: {exc}") from exc
    source = textwrap.dedent("".join(lines))
    try:
        tree = ast.parse(source)
    except SyntaxError as exc:
        raise IRUnavailable(f"source not parseable: {exc.msg}") from exc
    except RecursionError as exc:
        raise RecursionLimitExceeded(analysis="ir", where=filename) from exc

    offset = max(start - 1, 0)
    if func.__name__ == "<lambda>":
        wanted = code.co_firstlineno - offset
        for node in ast.walk(tree):
            if isinstance(node, ast.Lambda) and node.lineno == wanted:
                return node, filename, offset
        raise IRUnavailable("lambda definition not found in source")
    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == func.__name__:
            if isinstance(node, ast.AsyncFunctionDef):
                raise IRUnavailable("coroutine functions are not supported")
            return node, filename, offset
    raise IRUnavailable(f"definition of {func.__name__!r} not found in source")


# ---------------------------------------------------------------------------
# Scope helpers
# ---------------------------------------------------------------------------

class _LocalNames(ast.NodeVisitor):
    """Collect names bound in a function body, without entering nested scopes."""

    def __init__(self) -> None:
        self.stores: Set[str] = set()
        self.outer: Set[str] = set()

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.stores.add(node.id)

    def _visit_defaults(self, args: ast.arguments) -> None:
        for default in list(args.defaults) + [d for d in args.kw_defaults if d is not None]:
            self.visit(default)

    def visit_FunctionDef(self, node) -> None:
        self.stores.add(node.name)
        for dec in node.decorator_list:
            self.visit(dec)
        self._visit_defaults(node.args)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.stores.add(node.name)
        for expr in list(node.bases) + list(node.decorator_list):
            self.visit(expr)

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._visit_defaults(node.args)

    def _visit_comprehension(self, node) -> None:
        self.visit(node.generators[0].iter)

    visit_ListComp = _visit_comprehension
    visit_SetComp = _visit_comprehension
    visit_DictComp = _visit_comprehension
    visit_GeneratorExp = _visit_comprehension

    def visit_Global(self, node: ast.Global) -> None:
        self.outer.update(node.names)

    visit_Nonlocal = visit_Global

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self.stores.add(alias.asname or alias.name.split(".")[0])

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        for alias in node.names:
            self.stores.add(alias.asname or alias.name)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self.stores.add(node.name)
        self.generic_visit(node)


def _target_names(node: ast.AST) -> List[str]:
    return [n.id for n in ast.walk(node) if isinstance(n, ast.Name)]


def _const_int(node: ast.AST) -> Optional[int]:
    if isinstance(node, ast.Constant) and type(node.value) is int:
        return node.value
    if (
        isinstance(node, ast.UnaryOp)
        and isinstance(node.op, ast.USub)
        and isinstance(node.operand, ast.Constant)
        and type(node.operand.value) is int
    ):
        return -node.operand.value
    return None


def _static_namespace(value: Any) -> bool:
    return isinstance(value, (types.ModuleType, type))


def _static_getattr(value: Any, name: str) -> Any:
    try:
        return getattr(value, name)
    except AttributeError:
        return UNRESOLVED


@dataclass
class _Loop:
    header: BasicBlock
    exit: BasicBlock
    bounded: bool


@dataclass
class LoweredBody:
    """Side results of lowering a function body."""

    declared: Dict[str, Any] = field(default_factory=dict)
    local_names: Set[str] = field(default_factory=set)
    is_generator: bool = False


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class _IRBuilder:
    """Internal builder that lowers one function body into *fir*.

    We maintain a *current block* and cut it at every control-flow
    statement.  Loops push a :class:`_Loop` so ``break`` / ``continue`` know
    their targets, and ``try`` pushes its handler entry blocks so ``raise``
    can reach them.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        fir: FunctionIR,
        filename: str,
        line_offset: int,
        max_depth: int,
    ) -> None:
        self.func = func
        self.fir = fir
        self.filename = filename
        self.line_offset = line_offset
        self.max_depth = max_depth
        self.globals: Dict[str, Any] = getattr(func, "__globals__", {})
        self.closure: Dict[str, Any] = {}
        cells = getattr(func, "__closure__", None) or ()
        for name, cell in zip(func.__code__.co_freevars, cells):
            try:
                self.closure[name] = cell.cell_contents
            except ValueError:  # empty cell
                self.closure[name] = UNRESOLVED
        self.result = LoweredBody()
        self.locals: Set[str] = set()
        self.outer: Set[str] = set()
        self.block: BasicBlock = fir.entry
        self.loops: List[_Loop] = []
        self.handlers: List[List[BasicBlock]] = []
        self.renames: List[Dict[str, str]] = []
        self._temps = 0
        self._index = 0
        self._depth = 0
        self._comps = 0

    # ----- helpers ----------------------------------------------------------

    def _new_block(self, kind: str = "body") -> BasicBlock:
        return self.fir.new_block(kind, loop_depth=len(self.loops))

    def _edge(self, src: BasicBlock, dst: BasicBlock, kind: EdgeKind = EdgeKind.FALL_THROUGH) -> None:
        self.fir.add_edge(src, dst, kind)

    def _loc(self, node: ast.AST) -> SourceLocation:
        return SourceLocation(
            self.filename,
            getattr(node, "lineno", 0) + self.line_offset,
            getattr(node, "col_offset", 0),
        )

    def _temp(self) -> str:
        self._temps += 1
        return f"%{self._temps}"

    def _emit(
        self,
        kind: StmtKind,
        op: str,
        node: ast.AST,
        target: Optional[str] = None,
        operands: Sequence[Operand] = (),
        attr: Optional[str] = None,
        call: Optional[CallInfo] = None,
        alloc: Optional[AllocInfo] = None,
    ) -> Statement:
        stmt = Statement(
            kind=kind,
            op=op,
            location=self._loc(node),
            index=self._index,
            target=target,
            operands=tuple(operands),
            attr=attr,
            call=call,
            alloc=alloc,
        )
        self._index += 1
        self.block.statements.append(stmt)
        return stmt

    def _value(self, kind: StmtKind, op: str, node: ast.AST, **kw: Any) -> Operand:
        target = self._temp()
        self._emit(kind, op, node, target=target, **kw)
        return Operand.var(target)

    def _operator(self, op: str, node: ast.AST, operands: Sequence[Operand], starred: bool = False) -> Operand:
        return self._value(
            StmtKind.CALL, op, node, operands=operands,
            call=CallInfo(DispatchKind.OPERATOR, op, starred=starred),
        )

    def _unbounded(self) -> bool:
        return any(not loop.bounded for loop in self.loops)

    def _alloc(
        self,
        op: str,
        allocator: str,
        node: ast.AST,
        operands: Sequence[Operand] = (),
        size: Optional[int] = None,
        manual: bool = False,
        hint: Any = None,
    ) -> Operand:
        info = AllocInfo(allocator, manual, size, self._unbounded(), hint)
        return self._value(StmtKind.ALLOCATION, op, node, operands=operands, alloc=info)

    def _terminate(self) -> None:
        """Start a fresh block after a jump; code placed there is unreachable."""
        self.block = self._new_block("unreachable")

    # ----- names ------------------------------------------------------------

    def _global(self, name: str) -> Operand:
        if name in self.closure:
            value = self.closure[name]
        elif name in self.globals:
            value = self.globals[name]
        elif hasattr(builtins, name):
            value = getattr(builtins, name)
        else:
            value = UNRESOLVED
        return Operand.glob(name, value)

    def _renamed(self, name: str) -> Optional[str]:
        for scope in reversed(self.renames):
            if name in scope:
                return scope[name]
        return None

    def _load(self, name: str) -> Operand:
        renamed = self._renamed(name)
        if renamed is not None:
            return Operand.var(renamed)
        if name in self.locals:
            return Operand.var(name)
        return self._global(name)

    def _is_local(self, name: str) -> bool:
        return self._renamed(name) is not None or name in self.locals

    def _store(self, name: str, value: Operand, node: ast.AST, retarget: bool = True) -> None:
        renamed = self._renamed(name)
        if renamed is not None:
            name = renamed
        elif name not in self.locals:
            self._emit(
                StmtKind.ASSIGNMENT, "store_global", node,
                operands=(self._global(name), value), attr=name,
            )
            return
        stmts = self.block.statements
        if (
            retarget
            and value.is_var
            and value.name.startswith("%")
            and stmts
            and stmts[-1].target == value.name
        ):
            stmts[-1] = replace(stmts[-1], target=name)
            return
        self._emit(StmtKind.ASSIGNMENT, "copy", node, target=name, operands=(value,))

    def _captured(self, node: ast.AST) -> List[Operand]:
        names = sorted({
            n.id for n in ast.walk(node)
            if isinstance(n, ast.Name) and isinstance(n.ctx, ast.Load) and self._is_local(n.id)
        })
        return [self._load(n) for n in names]

    def _annotation(self, node: ast.AST) -> Any:
        try:
            if isinstance(node, ast.Constant) and isinstance(node.value, str):
                expr = ast.parse(node.value, mode="eval")
            else:
                expr = ast.Expression(body=node)
            namespace = dict(self.globals)
            namespace.update(self.closure)
            return eval(compile(ast.fix_missing_locations(expr), self.filename, "eval"), namespace)
        except Exception as exc:  # unresolvable local annotation: leave the variable inferred
            logger.debug("ignoring local annotation at %s: %s", self._loc(node), exc)
            return None

    # ----- entry point ------------------------------------------------------

    def build(self, fn: ast.AST, params: Sequence[str]) -> LoweredBody:
        collector = _LocalNames()
        if isinstance(fn, ast.Lambda):
            collector.visit(fn.body)
        else:
            for stmt in fn.body:
                collector.visit(stmt)
        self.outer = collector.outer
        self.locals = (set(params) | collector.stores) - collector.outer
        self.result.local_names = set(self.locals)

        self.block = self._new_block("body")
        self._edge(self.fir.entry, self.block)
        if isinstance(fn, ast.Lambda):
            value = self.expr(fn.body)
            self._emit(StmtKind.RETURN, "return", fn.body, operands=(value,))
            self._edge(self.block, self.fir.exit, EdgeKind.RETURN)
        else:
            self.body(fn.body)
            end = fn.body[-1] if fn.body else fn
            self._emit(
                StmtKind.RETURN, "return", ast.Constant(None, lineno=getattr(end, "end_lineno", 0) or 0),
                operands=(Operand.const(None),),
            )
            self._edge(self.block, self.fir.exit, EdgeKind.RETURN)
        return self.result

    # ----- dispatch ---------------------------------------------------------

    def _enter(self, node: ast.AST) -> None:
        self._depth += 1
        if self._depth > self.max_depth:
            raise RecursionLimitExceeded(analysis="ir", depth=self._depth, where=str(self._loc(node)))

    def body(self, stmts: Sequence[ast.stmt]) -> None:
        for stmt in stmts:
            self.stmt(stmt)

    def stmt(self, node: ast.stmt) -> None:
        handler = getattr(self, "stmt_" + type(node).__name__, None)
        if handler is None:
            raise IRUnavailable(f"unsupported statement {type(node).__name__} at {self._loc(node)}")
        self._enter(node)
        try:
            handler(node)
        finally:
            self._depth -= 1

    def expr(self, node: ast.expr) -> Operand:
        handler = getattr(self, "expr_" + type(node).__name__, None)
        if handler is None:
            raise IRUnavailable(f"unsupported expression {type(node).__name__} at {self._loc(node)}")
        self._enter(node)
        try:
            return handler(node)
        finally:
            self._depth -= 1

    # ----- statements -------------------------------------------------------

    def stmt_Expr(self, node: ast.Expr) -> None:
        self.expr(node.value)

    def stmt_Pass(self, node: ast.Pass) -> None:
        pass

    def stmt_Global(self, node: ast.Global) -> None:
        pass

    stmt_Nonlocal = stmt_Global

    def stmt_Assign(self, node: ast.Assign) -> None:
        target = node.targets[0]
        value_node = node.value
        if (
            len(node.targets) == 1
            and isinstance(target, (ast.Tuple, ast.List))
            and isinstance(value_node, (ast.Tuple, ast.List))
            and len(target.elts) == len(value_node.elts)
            and not any(isinstance(e, ast.Starred) for e in target.elts + value_node.elts)
        ):
            values = [self.expr(e) for e in value_node.elts]
            for elt, value in zip(target.elts, values):
                self.assign(elt, value, node, retarget=False)
            return
        value = self.expr(value_node)
        for t in node.targets:
            self.assign(t, value, node, retarget=len(node.targets) == 1)

    def stmt_AnnAssign(self, node: ast.AnnAssign) -> None:
        if isinstance(node.target, ast.Name) and node.target.id in self.locals:
            annotation = self._annotation(node.annotation)
            if annotation is not None:
                self.result.declared[node.target.id] = annotation
        if node.value is not None:
            self.assign(node.target, self.expr(node.value), node)

    def stmt_AugAssign(self, node: ast.AugAssign) -> None:
        op = _BINOPS[type(node.op)]
        target = node.target
        if isinstance(target, ast.Name):
            current = self._load(target.id)
            value = self.expr(node.value)
            self._store(target.id, self._operator(op, node, (current, value)), node)
        elif isinstance(target, ast.Attribute):
            base = self.expr(target.value)
            current = self._value(StmtKind.ASSIGNMENT, "load_attr", node, operands=(base,), attr=target.attr)
            result = self._operator(op, node, (current, self.expr(node.value)))
            self._emit(StmtKind.ASSIGNMENT, "store_attr", node, operands=(base, result), attr=target.attr)
        elif isinstance(target, ast.Subscript):
            base = self.expr(target.value)
            index = self.expr(target.slice)
            current = self._operator("[]", node, (base, index))
            result = self._operator(op, node, (current, self.expr(node.value)))
            self._emit(StmtKind.ASSIGNMENT, "store_item", node, operands=(base, index, result))
        else:
            raise IRUnavailable(f"unsupported augmented target at {self._loc(node)}")

    def assign(self, target: ast.expr, value: Operand, node: ast.AST, retarget: bool = True) -> None:
        if isinstance(target, ast.Name):
            self._store(target.id, value, node, retarget)
        elif isinstance(target, ast.Attribute):
            base = self.expr(target.value)
            self._emit(StmtKind.ASSIGNMENT, "store_attr", node, operands=(base, value), attr=target.attr)
        elif isinstance(target, ast.Subscript):
            base = self.expr(target.value)
            index = self.expr(target.slice)
            self._emit(StmtKind.ASSIGNMENT, "store_item", node, operands=(base, index, value))
        elif isinstance(target, (ast.Tuple, ast.List)):
            for i, elt in enumerate(target.elts):
                if isinstance(elt, ast.Starred):
                    item = self._value(StmtKind.ASSIGNMENT, "unpack_rest", node,
                                       operands=(value, Operand.const(i)))
                    self.assign(elt.value, item, node)
                else:
                    item = self._value(StmtKind.ASSIGNMENT, "unpack", node,
                                       operands=(value, Operand.const(i)))
                    self.assign(elt, item, node)
        else:
            raise IRUnavailable(f"unsupported assignment target at {self._loc(node)}")

    def stmt_Return(self, node: ast.Return) -> None:
        value = self.expr(node.value) if node.value is not None else Operand.const(None)
        self._emit(StmtKind.RETURN, "return", node, operands=(value,))
        self._edge(self.block, self.fir.exit, EdgeKind.RETURN)
        self._terminate()

    def stmt_If(self, node: ast.If) -> None:
        cond = self.expr(node.test)
        self._emit(StmtKind.BRANCH, "if", node, operands=(cond,))
        head = self.block
        join = self._new_block("if-join")

        then_block = self._new_block("if-then")
        self._edge(head, then_block, EdgeKind.BRANCH_TRUE)
        self.block = then_block
        self.body(node.body)
        self._edge(self.block, join)

        if node.orelse:
            else_block = self._new_block("if-else")
            self._edge(head, else_block, EdgeKind.BRANCH_FALSE)
            self.block = else_block
            self.body(node.orelse)
            self._edge(self.block, join)
        else:
            self._edge(head, join, EdgeKind.BRANCH_FALSE)
        self.block = join

    def _loop(self, node, header: BasicBlock, bounded: bool, bind: Optional[Callable[[], None]]) -> None:
        test_end = self.block
        exit_block = self._new_block("loop-exit")
        self.loops.append(_Loop(header, exit_block, bounded))
        body = self._new_block("loop-body")
        self._edge(test_end, body, EdgeKind.BRANCH_TRUE)
        self.block = body
        if bind is not None:
            bind()
        self.body(node.body)
        self._edge(self.block, header, EdgeKind.BACK_EDGE)
        self.loops.pop()

        if node.orelse:
            else_block = self._new_block("loop-else")
            self._edge(test_end, else_block, EdgeKind.BRANCH_FALSE)
            self.block = else_block
            self.body(node.orelse)
            self._edge(self.block, exit_block)
        else:
            self._edge(test_end, exit_block, EdgeKind.LOOP_EXIT)
        self.block = exit_block

    def stmt_While(self, node: ast.While) -> None:
        header = self._new_block("loop-header")
        self._edge(self.block, header)
        self.block = header
        cond = self.expr(node.test)
        self._emit(StmtKind.BRANCH, "while", node, operands=(cond,))
        self._loop(node, header, bounded=False, bind=None)

    def stmt_For(self, node: ast.For) -> None:
        iterable = self.expr(node.iter)
        trips = self._trip_count(node.iter)
        header = self._new_block("loop-header")
        self._edge(self.block, header)
        self.block = header
        self._emit(StmtKind.BRANCH, "for", node, operands=(iterable,))

        def bind() -> None:
            item = self._value(StmtKind.ASSIGNMENT, "iter_next", node, operands=(iterable,))
            self.assign(node.target, item, node)

        self._loop(node, header, bounded=trips is not None, bind=bind)

    def stmt_Break(self, node: ast.Break) -> None:
        if not self.loops:
            raise IRUnavailable(f"'break' outside loop at {self._loc(node)}")
        self._edge(self.block, self.loops[-1].exit, EdgeKind.BREAK)
        self._terminate()

    def stmt_Continue(self, node: ast.Continue) -> None:
        if not self.loops:
            raise IRUnavailable(f"'continue' outside loop at {self._loc(node)}")
        self._edge(self.block, self.loops[-1].header, EdgeKind.CONTINUE)
        self._terminate()

    def stmt_Assert(self, node: ast.Assert) -> None:
        operands = [self.expr(node.test)]
        if node.msg is not None:
            operands.append(self.expr(node.msg))
        self._emit(StmtKind.OTHER, "assert", node, operands=operands)

    def stmt_Raise(self, node: ast.Raise) -> None:
        operands = [self.expr(e) for e in (node.exc, node.cause) if e is not None]
        self._emit(StmtKind.OTHER, "raise", node, operands=operands)
        if self.handlers:
            for handler in self.handlers[-1]:
                self._edge(self.block, handler, EdgeKind.EXCEPTION)
        else:
            self._edge(self.block, self.fir.exit, EdgeKind.EXCEPTION)
        self._terminate()

    def stmt_Delete(self, node: ast.Delete) -> None:
        for target in node.targets:
            if isinstance(target, ast.Name):
                self._emit(StmtKind.OTHER, "del", node, operands=(self._load(target.id),))
            elif isinstance(target, ast.Subscript):
                base = self.expr(target.value)
                self._emit(StmtKind.OTHER, "del_item", node, operands=(base, self.expr(target.slice)))
            elif isinstance(target, ast.Attribute):
                base = self.expr(target.value)
                self._emit(StmtKind.OTHER, "del_attr", node, operands=(base,), attr=target.attr)
            else:
                raise IRUnavailable(f"unsupported del target at {self._loc(node)}")

    def stmt_With(self, node: ast.With) -> None:
        managers = []
        for item in node.items:
            ctx = self.expr(item.context_expr)
            managers.append(ctx)
            if item.optional_vars is not None:
                entered = self._value(StmtKind.ASSIGNMENT, "enter", node, operands=(ctx,))
                self.assign(item.optional_vars, entered, node)
            else:
                self._emit(StmtKind.OTHER, "enter", node, operands=(ctx,))
        self.body(node.body)
        for ctx in reversed(managers):
            self._emit(StmtKind.OTHER, "exit", node, operands=(ctx,))

    def stmt_Try(self, node: ast.Try) -> None:
        entries = [self._new_block("except") for _ in node.handlers]
        for entry in entries:
            self._edge(self.block, entry, EdgeKind.EXCEPTION)
        body = self._new_block("try-body")
        self._edge(self.block, body)
        self.block = body
        if entries:
            self.handlers.append(entries)
        try:
            self.body(node.body)
        finally:
            if entries:
                self.handlers.pop()
        body_end = self.block
        for entry in entries:
            self._edge(body_end, entry, EdgeKind.EXCEPTION)

        join = self._new_block("try-join")
        self.body(node.orelse)
        self._edge(self.block, join)

        for handler, entry in zip(node.handlers, entries):
            self.block = entry
            if handler.type is not None:
                exc_type = self.expr(handler.type)
                if handler.name:
                    caught = self._value(StmtKind.ASSIGNMENT, "catch", handler, operands=(exc_type,))
                    self._store(handler.name, caught, handler)
            self.body(handler.body)
            self._edge(self.block, join)
        self.block = join
        self.body(node.finalbody)

    stmt_TryStar = stmt_Try

    def _closure(self, node, allocator: str, op: str, hint: Any, size: Optional[int]) -> Operand:
        operands: List[Operand] = []
        args = getattr(node, "args", None)
        if args is not None:
            for default in list(args.defaults) + [d for d in args.kw_defaults if d is not None]:
                operands.append(self.expr(default))
        operands.extend(self._captured(node))
        return self._alloc(op, allocator, node, operands=operands, size=size, hint=hint)

    def stmt_FunctionDef(self, node: ast.FunctionDef) -> None:
        value = self._closure(node, "def", "closure", types.FunctionType, CLOSURE_BYTES)
        self._store(node.name, value, node)

    stmt_AsyncFunctionDef = stmt_FunctionDef

    def stmt_ClassDef(self, node: ast.ClassDef) -> None:
        value = self._closure(node, "class", "class", type, None)
        self._store(node.name, value, node)

    def stmt_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            if alias.asname:
                module = sys.modules.get(alias.name, UNRESOLVED)
                name = alias.asname
            else:
                name = alias.name.split(".")[0]
                module = sys.modules.get(name, UNRESOLVED)
            self._store(name, Operand.glob(alias.name, module), node)

    def stmt_ImportFrom(self, node: ast.ImportFrom) -> None:
        module = sys.modules.get(node.module or "", None)
        for alias in node.names:
            value = UNRESOLVED if module is None else _static_getattr(module, alias.name)
            self._store(alias.asname or alias.name, Operand.glob(f"{node.module or ''}.{alias.name}", value), node)

    # ----- expressions ------------------------------------------------------

    def expr_Constant(self, node: ast.Constant) -> Operand:
        return Operand.const(node.value)

    def expr_Name(self, node: ast.Name) -> Operand:
        return self._load(node.id)

    def expr_BinOp(self, node: ast.BinOp) -> Operand:
        op = _BINOPS[type(node.op)]
        if (
            op == "*"
            and isinstance(node.left, ast.List)
            and not any(isinstance(e, ast.Starred) for e in node.left.elts)
        ):
            # [x] * N builds one list directly
            items = [self.expr(e) for e in node.left.elts]
            count = self.expr(node.right)
            n = _const_int(node.right)
            size = LIST_HEADER_BYTES + WORD_BYTES * len(items) * max(n, 0) if n is not None else None
            return self._alloc("list_repeat", "list", node, operands=items + [count], size=size, hint=list)
        left = self.expr(node.left)
        right = self.expr(node.right)
        return self._operator(op, node, (left, right))

    def expr_UnaryOp(self, node: ast.UnaryOp) -> Operand:
        return self._operator(_UNARYOPS[type(node.op)], node, (self.expr(node.operand),))

    def expr_BoolOp(self, node: ast.BoolOp) -> Operand:
        op = "and" if isinstance(node.op, ast.And) else "or"
        return self._operator(op, node, [self.expr(v) for v in node.values])

    def expr_Compare(self, node: ast.Compare) -> Operand:
        left = self.expr(node.left)
        results = []
        for op, comparator in zip(node.ops, node.comparators):
            right = self.expr(comparator)
            results.append(self._operator(_CMPOPS[type(op)], node, (left, right)))
            left = right
        if len(results) == 1:
            return results[0]
        return self._operator("and", node, results)

    def expr_IfExp(self, node: ast.IfExp) -> Operand:
        test = self.expr(node.test)
        return self._operator("select", node, (test, self.expr(node.body), self.expr(node.orelse)))

    def expr_NamedExpr(self, node: ast.NamedExpr) -> Operand:
        value = self.expr(node.value)
        name = node.target.id
        self._store(name, value, node)
        return self._load(name)

    def expr_Attribute(self, node: ast.Attribute) -> Operand:
        base = self.expr(node.value)
        if base.is_global and _static_namespace(base.value):
            return Operand.glob(f"{base.name}.{node.attr}", _static_getattr(base.value, node.attr))
        return self._value(StmtKind.ASSIGNMENT, "load_attr", node, operands=(base,), attr=node.attr)

    def expr_Subscript(self, node: ast.Subscript) -> Operand:
        base = self.expr(node.value)
        index = self.expr(node.slice)
        return self._operator("[]", node, (base, index))

    def expr_Slice(self, node: ast.Slice) -> Operand:
        parts = [
            self.expr(p) if p is not None else Operand.const(None)
            for p in (node.lower, node.upper, node.step)
        ]
        return self._operator("slice", node, parts)

    def _items(self, elts: Sequence[ast.expr], node: ast.AST) -> Tuple[List[Operand], bool]:
        items: List[Operand] = []
        starred = False
        for e in elts:
            if isinstance(e, ast.Starred):
                starred = True
                inner = self.expr(e.value)
                items.append(self._value(StmtKind.ASSIGNMENT, "iter_next", node, operands=(inner,)))
            else:
                items.append(self.expr(e))
        return items, starred

    def expr_Tuple(self, node: ast.Tuple) -> Operand:
        items, starred = self._items(node.elts, node)
        return self._operator("tuple", node, items, starred=starred)

    def expr_List(self, node: ast.List) -> Operand:
        items, starred = self._items(node.elts, node)
        size = None if starred else LIST_HEADER_BYTES + WORD_BYTES * len(items)
        return self._alloc("list", "list", node, operands=items, size=size, hint=list)

    def expr_Set(self, node: ast.Set) -> Operand:
        items, starred = self._items(node.elts, node)
        size = None if starred else SET_HEADER_BYTES + 16 * len(items)
        return self._alloc("set", "set", node, operands=items, size=size, hint=set)

    def expr_Dict(self, node: ast.Dict) -> Operand:
        operands: List[Operand] = []
        merged = False
        for key, value in zip(node.keys, node.values):
            if key is None:
                merged = True
                operands.append(self.expr(value))
            else:
                operands.append(self.expr(key))
                operands.append(self.expr(value))
        if merged:
            return self._alloc("dict_merge", "dict", node, operands=operands, hint=dict)
        size = DICT_HEADER_BYTES + 24 * len(node.keys)
        return self._alloc("dict", "dict", node, operands=operands, size=size, hint=dict)

    def expr_JoinedStr(self, node: ast.JoinedStr) -> Operand:
        parts = [self.expr(v.value) for v in node.values if isinstance(v, ast.FormattedValue)]
        return self._alloc("str", "f-string", node, operands=parts, hint=str)

    def expr_FormattedValue(self, node: ast.FormattedValue) -> Operand:
        return self.expr(node.value)

    def expr_Starred(self, node: ast.Starred) -> Operand:
        return self.expr(node.value)

    def expr_Lambda(self, node: ast.Lambda) -> Operand:
        return self._closure(node, "lambda", "closure", types.FunctionType, CLOSURE_BYTES)

    def expr_Yield(self, node: ast.Yield) -> Operand:
        self.result.is_generator = True
        value = self.expr(node.value) if node.value is not None else Operand.const(None)
        return self._value(StmtKind.OTHER, "yield", node, operands=(value,))

    def expr_YieldFrom(self, node: ast.YieldFrom) -> Operand:
        self.result.is_generator = True
        return self._value(StmtKind.OTHER, "yield_from", node, operands=(self.expr(node.value),))

    # ----- comprehensions ---------------------------------------------------

    def _comprehension(self, node, op: str, hint: Any, elements: Callable[[], List[Operand]]) -> Operand:
        self._comps += 1
        suffix = f"%c{self._comps}"
        first = self.expr(node.generators[0].iter)
        scope: Dict[str, str] = {}
        self.renames.append(scope)
        collected: List[Operand] = []
        trips: Optional[int] = 1
        opened = 0
        try:
            for i, gen in enumerate(node.generators):
                iterable = first if i == 0 else self.expr(gen.iter)
                count = self._trip_count(gen.iter)
                trips = None if trips is None or count is None or gen.ifs else trips * count
                header = self._new_block("loop-header")
                self._edge(self.block, header)
                self.block = header
                self._emit(StmtKind.BRANCH, "for", gen, operands=(iterable,))
                exit_block = self._new_block("loop-exit")
                self._edge(header, exit_block, EdgeKind.LOOP_EXIT)
                self.loops.append(_Loop(header, exit_block, count is not None))
                opened += 1
                body = self._new_block("loop-body")
                self._edge(header, body, EdgeKind.BRANCH_TRUE)
                self.block = body
                for name in _target_names(gen.target):
                    scope[name] = name + suffix
                item = self._value(StmtKind.ASSIGNMENT, "iter_next", gen, operands=(iterable,))
                self.assign(gen.target, item, gen)
                for cond in gen.ifs:
                    test = self.expr(cond)
                    self._emit(StmtKind.BRANCH, "if", cond, operands=(test,))
                    passed = self._new_block("if-then")
                    self._edge(self.block, passed, EdgeKind.BRANCH_TRUE)
                    self._edge(self.block, header, EdgeKind.BRANCH_FALSE)
                    self.block = passed
            collected = elements()
        finally:
            self.renames.pop()
        # unwind the nest: each body returns to its header, and every exit
        # falls through to the enclosing loop's back edge
        for _ in range(opened):
            loop = self.loops.pop()
            self._edge(self.block, loop.header, EdgeKind.BACK_EDGE)
            self.block = loop.exit
        size = None
        if trips is not None and op in ("listcomp",):
            size = LIST_HEADER_BYTES + WORD_BYTES * trips
        return self._alloc(op, op, node, operands=collected, size=size, hint=hint)

    def expr_ListComp(self, node: ast.ListComp) -> Operand:
        return self._comprehension(node, "listcomp", list, lambda: [self.expr(node.elt)])

    def expr_SetComp(self, node: ast.SetComp) -> Operand:
        return self._comprehension(node, "setcomp", set, lambda: [self.expr(node.elt)])

    def expr_GeneratorExp(self, node: ast.GeneratorExp) -> Operand:
        return self._comprehension(node, "genexpr", types.GeneratorType, lambda: [self.expr(node.elt)])

    def expr_DictComp(self, node: ast.DictComp) -> Operand:
        return self._comprehension(
            node, "dictcomp", dict, lambda: [self.expr(node.key), self.expr(node.value)],
        )

    def _trip_count(self, node: ast.expr) -> Optional[int]:
        """Statically known number of items produced by iterating *node*."""
        if isinstance(node, (ast.Tuple, ast.List, ast.Set)):
            if any(isinstance(e, ast.Starred) for e in node.elts):
                return None
            return len(node.elts)
        if isinstance(node, ast.Constant) and isinstance(node.value, (str, bytes)):
            return len(node.value)
        if (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Name)
            and not node.keywords
            and 1 <= len(node.args) <= 3
            and not self._is_local(node.func.id)
            and self._global(node.func.id).value is range
        ):
            bounds = [_const_int(a) for a in node.args]
            if any(b is None for b in bounds) or (len(bounds) == 3 and bounds[2] == 0):
                return None
            return len(range(*bounds))
        return None

    # ----- calls ------------------------------------------------------------

    def _call_args(self, node: ast.Call) -> Tuple[List[Operand], Tuple[str, ...], bool]:
        args, starred = self._items(node.args, node)
        names: List[str] = []
        for kw in node.keywords:
            args.append(self.expr(kw.value))
            if kw.arg is None:
                starred = True
                names.append("**")
            else:
                names.append(kw.arg)
        return args, tuple(names), starred

    def expr_Call(self, node: ast.Call) -> Operand:
        func = node.func
        receiver: Optional[Operand] = None
        if isinstance(func, ast.Attribute):
            base = self.expr(func.value)
            if base.is_global and _static_namespace(base.value):
                callee = Operand.glob(f"{base.name}.{func.attr}", _static_getattr(base.value, func.attr))
            else:
                receiver, callee = base, None
        else:
            callee = self.expr(func)
        args, keywords, starred = self._call_args(node)

        if receiver is not None:
            name = func.attr
            if name in MANUAL_ALLOCATORS:
                return self._manual_alloc(name, node, args)
            info = CallInfo(
                DispatchKind.METHOD, name, deallocates=name in FREE_FUNCTIONS,
                has_receiver=True, keywords=keywords, starred=starred,
            )
            return self._value(StmtKind.CALL, name, node, operands=[receiver] + args, call=info)

        if callee.is_global:
            value = callee.value
            short = callee.name.rsplit(".", 1)[-1]
            if short in MANUAL_ALLOCATORS:
                return self._manual_alloc(short, node, args)
            if short in ARRAY_ALLOCATORS and not isinstance(value, type):
                return self._array_alloc(short, node, args, value)
            if isinstance(value, type):
                if value in _CONTAINER_BUILTINS:
                    return self._container_call(value, node, args)
                if value.__module__ != "builtins":
                    return self._alloc("new", value.__qualname__, node, operands=args,
                                       size=INSTANCE_BYTES, hint=value)
            info = CallInfo(
                DispatchKind.STATIC, callee.name, value,
                deallocates=short in FREE_FUNCTIONS, keywords=keywords, starred=starred,
            )
            return self._value(StmtKind.CALL, short, node, operands=args, call=info)

        info = CallInfo(
            DispatchKind.INDIRECT, callee.name, has_receiver=True,
            keywords=keywords, starred=starred,
        )
        return self._value(StmtKind.CALL, "call", node, operands=[callee] + args, call=info)

    def _manual_alloc(self, name: str, node: ast.Call, operands: List[Operand]) -> Operand:
        consts = [_const_int(a) for a in node.args]
        size: Optional[int] = None
        if consts and all(c is not None for c in consts):
            if name in ("malloc", "PyMem_Malloc"):
                size = consts[0]
            elif name in ("calloc", "PyMem_Calloc") and len(consts) >= 2:
                size = consts[0] * consts[1]
            elif name.startswith("Malloc"):
                size = WORD_BYTES
                for c in consts:
                    size *= c
        return self._alloc(name, name, node, operands=operands, size=size, manual=True, hint=RawPointer)

    def _array_alloc(self, name: str, node: ast.Call, operands: List[Operand], callee: Any) -> Operand:
        size: Optional[int] = None
        if node.args:
            shape = node.args[0]
            n = _const_int(shape)
            if n is not None:
                size = WORD_BYTES * max(n, 0)
            elif isinstance(shape, ast.Tuple):
                dims = [_const_int(e) for e in shape.elts]
                if dims and all(d is not None for d in dims):
                    size = WORD_BYTES
                    for d in dims:
                        size *= max(d, 0)
        return self._alloc(name, name, node, operands=operands, size=size, hint=callee)

    def _container_call(self, cls: type, node: ast.Call, operands: List[Operand]) -> Operand:
        name = _CONTAINER_BUILTINS[cls]
        size: Optional[int] = None
        if not node.args and not node.keywords:
            size = {
                "list": LIST_HEADER_BYTES, "dict": DICT_HEADER_BYTES,
                "set": SET_HEADER_BYTES, "frozenset": SET_HEADER_BYTES,
                "bytearray": BYTEARRAY_HEADER_BYTES,
            }[name]
        elif cls is bytearray and len(node.args) == 1 and not node.keywords:
            n = _const_int(node.args[0])
            if n is not None:
                size = BYTEARRAY_HEADER_BYTES + max(n, 0)
        op = "from_iterable" if node.args and cls is not bytearray else name
        return self._alloc(op, name, node, operands=operands, size=size, hint=cls)


def lower_function(
    func: Callable[..., Any],
    fir: FunctionIR,
    params: Sequence[str],
    max_nesting_depth: int,
) -> LoweredBody:
    """Lower *func*'s body into *fir* (which must be freshly created).

    Raises
    ------
    IRUnavailable
        Source missing, unparseable, or using unsupported syntax.
    RecursionLimitExceeded
        Statement/expression nesting deeper than *max_nesting_depth*.
    """
    node, filename, offset = parse_function(func)
    fir.filename = filename
    builder = _IRBuilder(func, fir, filename, offset, max_nesting_depth)
    try:
        lowered = builder.build(node, params)
    except RecursionError as exc:
        raise RecursionLimitExceeded(analysis="ir", where=filename) from exc
    logger.debug(
        "lowered %s: %d blocks, %d statements",
        fir.target.label, len(fir.blocks), builder._index,
    )
    return lowered
