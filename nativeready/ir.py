"""
nativeready.ir
==============

Typed intermediate representation consumed by every analysis.

A function body is lowered into a control flow graph whose nodes are *basic
blocks* (straight-line sequences of :class:`Statement`) and whose edges carry
control-flow semantics (fall-through, branch-true, branch-false, back-edge,
break, exception, ...).

Public API
----------
    StmtKind        - the tag of a statement variant
    Statement       - one IR node (immutable)
    Operand         - constant, local variable or global reference
    BasicBlock      - a straight-line sequence of statements
    CFGEdge         - a directed edge between two blocks
    FunctionIR      - the typed CFG of one function instantiation
    AnalysisTarget  - (callable, argument types) identity
    exhaustive      - validate a ``StmtKind`` dispatch table

Statements are a closed set of variants.  Analyses dispatch on
``Statement.kind`` through tables built with :func:`exhaustive`, which
refuses tables that do not cover every ``StmtKind`` at import time.

Typical usage::

    from nativeready.walker import IRWalker
    from nativeready.ir import AnalysisTarget

    fir = IRWalker().build(AnalysisTarget(my_func, (int, int)))
    for stmt in fir.statements():
        print(stmt)
    print(fir.to_dot())
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from .typesys import UNKNOWN, TypeSet, expand, type_name

__all__ = [
    "EdgeKind",
    "StmtKind",
    "DispatchKind",
    "OperandKind",
    "SourceLocation",
    "Operand",
    "CallInfo",
    "AllocInfo",
    "Statement",
    "BasicBlock",
    "CFGEdge",
    "FunctionIR",
    "AnalysisTarget",
    "exhaustive",
]


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    FALL_THROUGH = "fall-through"
    BRANCH_TRUE = "branch-true"
    BRANCH_FALSE = "branch-false"
    BACK_EDGE = "back-edge"
    LOOP_EXIT = "loop-exit"
    BREAK = "break"
    CONTINUE = "continue"
    RETURN = "return"
    EXCEPTION = "exception"


class StmtKind(enum.Enum):
    """The variant tag of a :class:`Statement`."""

    ALLOCATION = "allocation"
    CALL = "call"
    BRANCH = "branch"
    ASSIGNMENT = "assignment"
    RETURN = "return"
    OTHER = "other"


class DispatchKind(enum.Enum):
    """How a call statement selects its callee."""

    STATIC = "static"        # global function, builtin or constructor
    OPERATOR = "operator"    # binary/unary/compare/subscript operator
    METHOD = "method"        # attribute lookup on a receiver
    INDIRECT = "indirect"    # call through a local value


class OperandKind(enum.Enum):
    CONST = "const"
    VAR = "var"
    GLOBAL = "global"


def exhaustive(table: Mapping[StmtKind, Any]) -> Mapping[StmtKind, Any]:
    """Freeze a per-kind dispatch table, rejecting tables with missing kinds."""
    missing = [k.value for k in StmtKind if k not in table]
    if missing:
        raise TypeError(f"dispatch table does not handle statement kind(s): {missing}")
    return MappingProxyType(dict(table))


# ---------------------------------------------------------------------------
# Statement payloads
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceLocation:
    file: str = "<unknown>"
    line: int = 0
    col: int = 0

    def __str__(self) -> str:
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class Operand:
    """A statement input.

    ``name`` is the variable or global name; for constants it is the
    ``repr`` of the value, which keeps ``1``, ``1.0`` and ``True`` apart.
    """

    kind: OperandKind
    name: str
    value: Any = field(default=None, compare=False, hash=False)

    @classmethod
    def const(cls, value: Any) -> "Operand":
        return cls(OperandKind.CONST, repr(value), value)

    @classmethod
    def var(cls, name: str) -> "Operand":
        return cls(OperandKind.VAR, name)

    @classmethod
    def glob(cls, name: str, value: Any) -> "Operand":
        return cls(OperandKind.GLOBAL, name, value)

    @property
    def is_const(self) -> bool:
        return self.kind is OperandKind.CONST

    @property
    def is_var(self) -> bool:
        return self.kind is OperandKind.VAR

    @property
    def is_global(self) -> bool:
        return self.kind is OperandKind.GLOBAL

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class CallInfo:
    dispatch: DispatchKind
    callee_name: str
    callee: Any = field(default=None, compare=False, hash=False)
    deallocates: bool = False
    has_receiver: bool = False
    keywords: Tuple[str, ...] = ()
    starred: bool = False


@dataclass(frozen=True)
class AllocInfo:
    """Allocation payload.

    ``size_bytes`` is ``None`` when the size is not statically bounded.
    """

    allocator: str
    manual: bool = False
    size_bytes: Optional[int] = None
    in_unbounded_loop: bool = False
    result_hint: Any = field(default=None, compare=False, hash=False)


@dataclass(frozen=True)
class Statement:
    """One IR node.

    ``index`` is the statement's position in lowering order and is unique
    within a :class:`FunctionIR`.
    """

    kind: StmtKind
    op: str
    location: SourceLocation
    index: int
    target: Optional[str] = None
    operands: Tuple[Operand, ...] = ()
    attr: Optional[str] = None
    call: Optional[CallInfo] = None
    alloc: Optional[AllocInfo] = None

    @property
    def args(self) -> Tuple[Operand, ...]:
        """Call arguments, excluding a method receiver."""
        if self.call is not None and self.call.has_receiver:
            return self.operands[1:]
        return self.operands

    @property
    def positional_args(self) -> Tuple[Operand, ...]:
        args = self.args
        if self.call is None or not self.call.keywords:
            return args
        return args[: len(args) - len(self.call.keywords)]

    @property
    def keyword_args(self) -> Dict[str, Operand]:
        if self.call is None or not self.call.keywords:
            return {}
        args = self.args
        return dict(zip(self.call.keywords, args[len(args) - len(self.call.keywords):]))

    @property
    def receiver(self) -> Optional[Operand]:
        if self.call is not None and self.call.has_receiver and self.operands:
            return self.operands[0]
        return None

    def __str__(self) -> str:
        ops = ", ".join(str(o) for o in self.operands)
        lhs = f"{self.target} = " if self.target else ""
        return f"#{self.index} {lhs}{self.kind.value}:{self.op}({ops}) @ {self.location}"


# ---------------------------------------------------------------------------
# BasicBlock / CFGEdge
# ---------------------------------------------------------------------------

class BasicBlock:
    """A basic block in the CFG.

    Attributes
    ----------
    id : int
        Identifier, unique within its :class:`FunctionIR`.
    kind : str
        Human-readable tag: ``"entry"``, ``"exit"``, ``"if-then"``,
        ``"loop-header"``, ``"body"``, ...
    statements : tuple[Statement]
        Ordered statements; a list while the graph is being built.
    successors / predecessors : list[CFGEdge]
    loop_depth : int
        Number of enclosing loops.
    """

    __slots__ = ("id", "kind", "statements", "successors", "predecessors", "loop_depth")

    def __init__(self, block_id: int, kind: str = "body", loop_depth: int = 0) -> None:
        self.id = block_id
        self.kind = kind
        self.statements: Any = []
        self.successors: List[CFGEdge] = []
        self.predecessors: List[CFGEdge] = []
        self.loop_depth = loop_depth

    @property
    def terminator(self) -> Optional[Statement]:
        return self.statements[-1] if self.statements else None

    def label(self) -> str:
        if not self.statements:
            return f"[{self.kind}]"
        parts = [f"{s.target + ' = ' if s.target else ''}{s.op}" for s in self.statements[:6]]
        text = "; ".join(parts)
        if len(self.statements) > 6:
            text += " …"
        return f"{self.statements[0].location} {text}"

    def __repr__(self) -> str:
        return f"BasicBlock(id={self.id}, kind={self.kind!r}, nstmts={len(self.statements)})"

    def __hash__(self) -> int:
        return self.id

    def __eq__(self, other) -> bool:
        if isinstance(other, BasicBlock):
            return self.id == other.id
        return NotImplemented


class CFGEdge:
    """A directed edge in the CFG."""

    __slots__ = ("src", "dst", "kind")

    def __init__(self, src: BasicBlock, dst: BasicBlock, kind: EdgeKind = EdgeKind.FALL_THROUGH) -> None:
        self.src = src
        self.dst = dst
        self.kind = kind

    def __repr__(self) -> str:
        return f"CFGEdge(BB{self.src.id} -> BB{self.dst.id}, kind={self.kind.value!r})"

    def __hash__(self) -> int:
        return hash((self.src.id, self.dst.id, self.kind))

    def __eq__(self, other) -> bool:
        if isinstance(other, CFGEdge):
            return (
                self.src.id == other.src.id
                and self.dst.id == other.dst.id
                and self.kind == other.kind
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# AnalysisTarget
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisTarget:
    """Identity of one function instantiation: callable plus argument types."""

    func: Callable[..., Any]
    arg_types: Tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.arg_types, tuple):
            object.__setattr__(self, "arg_types", tuple(self.arg_types))

    @property
    def name(self) -> str:
        return getattr(self.func, "__name__", repr(self.func))

    @property
    def qualname(self) -> str:
        return getattr(self.func, "__qualname__", self.name)

    @property
    def type_names(self) -> Tuple[str, ...]:
        names = []
        for t in self.arg_types:
            members = expand(t) if t is not None else expand(None)
            names.append(" | ".join(type_name(m) for m in members) if len(members) > 1 else type_name(t))
        return tuple(names)

    @property
    def label(self) -> str:
        return f"{self.qualname}({', '.join(self.type_names)})"

    @property
    def key(self) -> str:
        """Stable identity used for history logs."""
        module = getattr(self.func, "__module__", None) or "<unknown>"
        return f"{module}:{self.label}"

    def __str__(self) -> str:
        return self.label


# ---------------------------------------------------------------------------
# FunctionIR
# ---------------------------------------------------------------------------

class FunctionIR:
    """Typed control flow graph for one function instantiation.

    Attributes
    ----------
    target : AnalysisTarget
    params : tuple[str]
        Parameter names in declaration order.
    entry, exit : BasicBlock
        Synthetic entry and exit blocks (no statements).
    blocks : list[BasicBlock]
        All blocks, reachable or not.
    edges : list[CFGEdge]
    var_types : Mapping[str, TypeSet]
        Inferred type of every local and temporary, filled in by the walker.
    declared : Mapping[str, TypeSet]
        Types fixed by annotations (parameters and annotated locals).
    return_types : TypeSet
        Union of the types of all returned values.
    """

    def __init__(self, target: AnalysisTarget, params: Tuple[str, ...], filename: str = "<unknown>") -> None:
        self.target = target
        self.params = params
        self.filename = filename
        self.blocks: List[BasicBlock] = []
        self.edges: List[CFGEdge] = []
        self.entry = self.new_block("entry")
        self.exit = self.new_block("exit")
        self.var_types: Mapping[str, TypeSet] = MappingProxyType({})
        self.declared: Mapping[str, TypeSet] = MappingProxyType({})
        self.return_types: TypeSet = frozenset()
        self.local_names: FrozenSet[str] = frozenset()
        self._reachable: Optional[Tuple[BasicBlock, ...]] = None
        self._sealed = False

    # ----- graph mutation ---------------------------------------------------

    def new_block(self, kind: str = "body", loop_depth: int = 0) -> BasicBlock:
        if getattr(self, "_sealed", False):
            raise RuntimeError("FunctionIR is sealed")
        block = BasicBlock(len(self.blocks), kind=kind, loop_depth=loop_depth)
        self.blocks.append(block)
        return block

    def add_edge(self, src: BasicBlock, dst: BasicBlock, kind: EdgeKind = EdgeKind.FALL_THROUGH) -> CFGEdge:
        """Create an edge, register it, and wire up predecessor/successor lists."""
        if self._sealed:
            raise RuntimeError("FunctionIR is sealed")
        e = CFGEdge(src, dst, kind=kind)
        self.edges.append(e)
        src.successors.append(e)
        dst.predecessors.append(e)
        return e

    def seal(
        self,
        var_types: Dict[str, TypeSet],
        declared: Dict[str, TypeSet],
        return_types: TypeSet,
        local_names: Set[str],
    ) -> None:
        """Freeze the graph and attach the inferred types."""
        for block in self.blocks:
            block.statements = tuple(block.statements)
        self.var_types = MappingProxyType(dict(var_types))
        self.declared = MappingProxyType(dict(declared))
        self.return_types = return_types
        self.local_names = frozenset(local_names)
        self._reachable = None
        self._sealed = True

    # ----- queries ----------------------------------------------------------

    @property
    def name(self) -> str:
        return self.target.name

    def successors_of(self, block: BasicBlock) -> List[BasicBlock]:
        return [e.dst for e in block.successors]

    def predecessors_of(self, block: BasicBlock) -> List[BasicBlock]:
        return [e.src for e in block.predecessors]

    def reachable_blocks(self) -> Tuple[BasicBlock, ...]:
        """Blocks reachable from the entry, in reverse post-order."""
        if self._reachable is not None:
            return self._reachable
        order: List[BasicBlock] = []
        visited: Set[int] = set()
        # iterative DFS producing post-order
        stack: List[Tuple[BasicBlock, Iterator[CFGEdge]]] = [(self.entry, iter(self.entry.successors))]
        visited.add(self.entry.id)
        while stack:
            block, it = stack[-1]
            advanced = False
            for e in it:
                if e.dst.id not in visited:
                    visited.add(e.dst.id)
                    stack.append((e.dst, iter(e.dst.successors)))
                    advanced = True
                    break
            if not advanced:
                order.append(block)
                stack.pop()
        result = tuple(reversed(order))
        if self._sealed:
            self._reachable = result
        return result

    def is_reachable(self, block: BasicBlock) -> bool:
        return any(b is block for b in self.reachable_blocks())

    def statements(self) -> Iterator[Statement]:
        """Yield every reachable statement exactly once."""
        for block in self.reachable_blocks():
            yield from block.statements

    def type_of(self, operand: Operand) -> TypeSet:
        if operand.is_const:
            return frozenset({type(operand.value)})
        if operand.is_var:
            return self.var_types.get(operand.name, UNKNOWN)
        # unresolved globals carry a bare object() sentinel, typed as UNKNOWN
        return frozenset({type(operand.value)})

    def is_param(self, name: str) -> bool:
        return name in self.params

    # ----- serialisation helpers --------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation of this CFG."""
        lines = ["digraph CFG {"]
        lines.append(f'  label="{title or self.target.label}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        reachable = {b.id for b in self.reachable_blocks()}
        for b in self.blocks:
            lbl = b.label().replace('"', '\\"').replace("\n", "\\n")
            color = ""
            if b.kind == "entry":
                color = ', style=filled, fillcolor="#ccffcc"'
            elif b.kind == "exit":
                color = ', style=filled, fillcolor="#ffcccc"'
            elif b.id not in reachable:
                color = ', style=dashed, color=gray'
            lines.append(f'  BB{b.id} [label="BB{b.id}\\n{lbl}"{color}];')
        for e in self.edges:
            style = ""
            if e.kind == EdgeKind.BRANCH_TRUE:
                style = ', color=green, fontcolor=green'
            elif e.kind == EdgeKind.BRANCH_FALSE:
                style = ', color=red, fontcolor=red'
            elif e.kind == EdgeKind.BACK_EDGE:
                style = ', style=dashed, color=blue, fontcolor=blue'
            elif e.kind in (EdgeKind.BREAK, EdgeKind.CONTINUE, EdgeKind.EXCEPTION):
                style = ', style=dotted'
            lines.append(
                f'  BB{e.src.id} -> BB{e.dst.id} [label="{e.kind.value}"{style}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def render(self, path: str, fmt: str = "svg") -> str:
        """Render the CFG with Graphviz (``pip install nativeready[viz]``).

        Returns the path of the written file.
        """
        import graphviz

        src = graphviz.Source(self.to_dot(), format=fmt)
        return src.render(outfile=f"{path}.{fmt}", cleanup=True)

    def __repr__(self) -> str:
        return (
            f"FunctionIR(target={self.target.label!r}, blocks={len(self.blocks)}, "
            f"edges={len(self.edges)})"
        )
