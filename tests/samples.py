"""
Sample functions analysed by the test suite.

The functions are never executed; they only need importable source so the
walker can lower them.
"""

import math
import numbers

DEBUG = False


def malloc(size):
    return size


def free(ptr):
    return None


# ── Scalar code ──────────────────────────────────────────────────

def add(x: int, y: int) -> int:
    return x + y


def double(x: numbers.Number):
    return x * 2


def pair(a: int, b: int) -> tuple:
    return (a, b)


def with_default(x: int, scale=2.5) -> float:
    return x * scale


def variadic(*args):
    return len(args)


def untyped(a, b):
    return a + b


def unstable(flag: bool) -> float:
    v = 1 if flag else 2.5
    return v + 1


def apply(fn, n: int):
    return fn(n)


def countdown(n: int) -> int:
    if n <= 0:
        return 0
    return countdown(n - 1)


def chain_c(n: int) -> int:
    return n + 1


def chain_b(n: int) -> int:
    return chain_c(n) + 1


def chain_a(n: int) -> int:
    return chain_b(n) + 1


# ── Heap allocations ─────────────────────────────────────────────

def local_list(n: int) -> int:
    xs = [1, 2, n]
    return len(xs)


def make_list(n: int) -> list:
    return [n, n]


def squares(n: int) -> int:
    return sum([i * i for i in range(n)])


def grow(n: int) -> int:
    total = 0
    while total < n:
        buf = [total]
        total = total + len(buf)
    return total


def bounded(n: int) -> int:
    total = 0
    for i in range(4):
        items = [i, n]
        total = total + len(items)
    return total


def consume(xs: list) -> int:
    return len(xs)


def hand_off(n: int) -> int:
    xs = [n]
    return consume(xs)


def store_into(out: list, n: int) -> None:
    item = [n]
    out.append(item)


# ── Manual memory ────────────────────────────────────────────────

def leaky(n: int) -> int:
    p = malloc(64)
    return n


def paired(n: int) -> int:
    p = malloc(n)
    free(p)
    return n


def double_free(n: int) -> int:
    p = malloc(16)
    free(p)
    free(p)
    return n


def make_buffer(n: int) -> int:
    p = malloc(n)
    return p


def maybe_free(flag: bool) -> int:
    p = malloc(8)
    if flag:
        free(p)
    return 0


def loop_alloc(n: int) -> None:
    for i in range(n):
        p = malloc(8)


def release(p: int) -> None:
    free(p)


def release_twice(p: int) -> None:
    free(p)
    free(p)


def two_pairs(n: int) -> int:
    p = malloc(n)
    q = malloc(n)
    free(q)
    free(p)
    return n


def exclusive_allocs(flag: bool) -> int:
    if flag:
        p = malloc(8)
    else:
        q = malloc(8)
    free(p)
    return 0


def branch_alloc_free(flag: bool) -> int:
    if flag:
        p = malloc(8)
    else:
        q = malloc(8)
    if flag:
        free(p)
    else:
        free(q)
    return 0


# ── Constants ────────────────────────────────────────────────────

def constant_branch(n: int) -> int:
    scale = 2 * 3
    if DEBUG:
        n = n + 1
    return n * scale


def huge_power() -> int:
    return 2 ** 100000


def root() -> float:
    return math.sqrt(16.0)


def divide_zero() -> float:
    return 1 / 0


def pow_builtin() -> int:
    return pow(10, 100000000)


def chained_power() -> int:
    a = 2 ** 200
    b = a ** 200
    c = b ** 200
    return c


# ── Classes ──────────────────────────────────────────────────────

class Accumulator:
    value: int

    def __init__(self, start: int) -> None:
        self.value = start

    def bump(self, step: int) -> int:
        self.value = self.value + step
        return self.value


def use_accumulator(n: int) -> int:
    acc = Accumulator(n)
    return acc.bump(1)


class Geometry:
    def area(self, w: int, h: int) -> int:
        return w * h

    @staticmethod
    def perimeter(w: int, h: int) -> int:
        return 2 * (w + h)

    def _private(self) -> int:
        return 0

    def describe(self, w):
        return w


def calls_untyped(n: int):
    return untyped(n, n)
