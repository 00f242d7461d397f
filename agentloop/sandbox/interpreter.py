"""Restricted AST interpreter backing the in-process sandboxes.

Fragments are parsed with :mod:`ast` and evaluated node by node instead of
being handed to ``exec``.  This gives the interpreter a hook on every
operation, which it uses to

* count operations and stop at a ceiling (unbounded loops),
* observe a stop event set by the host (timeouts and interrupts),
* refuse dunder attribute access, dangerous builtins and unauthorized imports.

Authorized modules are imported for real, so a module reached any other way
(an alias such as ``random._os``, a call result) is checked against the same
allow-list, and private names of modules are refused. ``time`` is replaced by
a copy whose ``sleep`` wakes up when the stop event is set.
"""

import ast
import builtins
import importlib
import logging
import operator
import threading
import time
import types
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Mapping

from agentloop.exceptions import (
    CapabilityNotFound,
    ExecutionError,
    PermissionDenied,
    ResourceLimitExceeded,
    SandboxExecutionError,
)

logger = logging.getLogger(__name__)

DEFAULT_AUTHORIZED_IMPORTS = (
    "collections",
    "datetime",
    "itertools",
    "json",
    "math",
    "random",
    "re",
    "stat",
    "statistics",
    "time",
    "unicodedata",
)

DENIED_BUILTINS = frozenset({
    "__import__",
    "breakpoint",
    "compile",
    "delattr",
    "eval",
    "exec",
    "exit",
    "getattr",
    "globals",
    "help",
    "input",
    "locals",
    "memoryview",
    "open",
    "quit",
    "setattr",
    "vars",
})

_SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "ascii", "bin", "bool", "bytes", "callable", "chr", "complex", "dict", "divmod",
    "enumerate", "filter", "float", "format", "frozenset", "hasattr", "hash", "hex", "int", "isinstance",
    "issubclass", "iter", "len", "list", "map", "max", "min", "next", "oct", "ord", "pow", "range", "repr",
    "reversed", "round", "set", "slice", "sorted", "str", "sum", "tuple", "type", "zip",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception", "IndexError", "KeyError",
    "LookupError", "NameError", "NotImplementedError", "OverflowError", "RuntimeError", "StopIteration",
    "TypeError", "ValueError", "ZeroDivisionError",
)

SAFE_BUILTINS: dict[str, Any] = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}

_DENIED_CALLABLES = tuple(getattr(builtins, name) for name in DENIED_BUILTINS if hasattr(builtins, name))

# Frame and code introspection reaches the globals of host functions.
DENIED_ATTRIBUTES = frozenset({
    "ag_frame",
    "cr_frame",
    "f_back",
    "f_builtins",
    "f_globals",
    "f_locals",
    "gi_frame",
    "tb_frame",
    "tb_next",
})

MAX_POWER_EXPONENT = 100_000
MAX_SEQUENCE_REPEAT = 10_000_000

_BIN_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.LShift: operator.lshift,
    ast.RShift: operator.rshift,
    ast.BitOr: operator.or_,
    ast.BitXor: operator.xor,
    ast.BitAnd: operator.and_,
    ast.MatMult: operator.matmul,
}

_UNARY_OPS: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
    ast.Invert: operator.invert,
}

_COMPARE_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


class _ControlSignal(Exception):
    pass


class _Break(_ControlSignal):
    pass


class _Continue(_ControlSignal):
    pass


class _Return(_ControlSignal):
    def __init__(self, value: Any):
        self.value = value


class FinalAnswerSignal(_ControlSignal):
    """Raised by the sandbox's ``final_answer`` to end the fragment."""
    def __init__(self, value: Any):
        self.value = value


class _Stopped(_ControlSignal):
    pass


# Never intercepted by ``try``/``except`` inside a fragment.
_UNCATCHABLE = (_ControlSignal, PermissionDenied, ResourceLimitExceeded)

_MISSING = object()


@dataclass
class InterpreterResult:
    value: Any = None
    output: str = ""
    is_final_answer: bool = False
    error: ExecutionError | None = None
    stopped: bool = False


class _Scope:
    __slots__ = ("vars", "parent")

    def __init__(self, variables: dict[str, Any] | None = None, parent: '_Scope | None' = None):
        self.vars = variables if variables is not None else {}
        self.parent = parent

    def lookup(self, name: str) -> Any:
        scope: _Scope | None = self
        while scope is not None:
            if name in scope.vars:
                return scope.vars[name]
            scope = scope.parent
        return _MISSING

    def delete(self, name: str):
        if name not in self.vars:
            raise NameError(f"The variable `{name}` is not defined.")
        del self.vars[name]


def is_import_authorized(module: str, authorized_imports: Iterable[str]) -> bool:
    """``pkg`` authorizes ``pkg`` and its submodules; ``*`` authorizes everything."""
    for entry in authorized_imports:
        entry = entry.removesuffix(".*")
        if entry == "*" or module == entry or module.startswith(entry + "."):
            return True
    return False


class RestrictedInterpreter:
    """Evaluates fragments against a persistent top-level state."""

    def __init__(self, authorized_imports: Iterable[str] = DEFAULT_AUTHORIZED_IMPORTS):
        self.authorized_imports = tuple(authorized_imports)
        self.state: dict[str, Any] = {}
        self._tools: dict[str, Callable[..., Any]] = {}
        self._output: list[str] = []
        self._handling: list[BaseException] = []
        self._ops = 0
        self._max_ops = 0
        self._stop: threading.Event = threading.Event()
        self._modules: dict[str, types.ModuleType] = {"time": self._time_module()}
        # An abandoned fragment holds this until it observes its own stop event.
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(
            self,
            code: str,
            tools: Mapping[str, Callable[..., Any]] | None = None,
            max_operations: int = 1_000_000,
            stop: threading.Event | None = None,
    ) -> InterpreterResult:
        with self._lock:
            return self._run(code, tools, max_operations, stop)

    def _run(
            self,
            code: str,
            tools: Mapping[str, Callable[..., Any]] | None,
            max_operations: int,
            stop: threading.Event | None,
    ) -> InterpreterResult:
        self._tools = dict(tools or {})
        self._output = []
        self._handling = []
        self._ops = 0
        self._max_ops = max_operations
        self._stop = stop or threading.Event()

        try:
            tree = ast.parse(code)
        except SyntaxError as e:
            return InterpreterResult(error=SandboxExecutionError(
                f"Code parsing failed on line {e.lineno} due to: {type(e).__name__}: {e.msg}"
            ))

        top = _Scope(self.state)
        value = None
        node: ast.stmt | None = None
        try:
            for node in tree.body:
                result = self._exec(node, top)
                value = result if isinstance(node, ast.Expr) else None
        except FinalAnswerSignal as f:
            return InterpreterResult(value=f.value, output=self._text(), is_final_answer=True)
        except _Stopped:
            return InterpreterResult(output=self._text(), stopped=True)
        except (_Break, _Continue, _Return) as e:
            return InterpreterResult(output=self._text(), error=SandboxExecutionError(
                f"'{type(e).__name__.lstrip('_').lower()}' outside of its enclosing block"
            ))
        except ExecutionError as e:
            return InterpreterResult(output=self._text(), error=e)
        except Exception as e:
            segment = ast.get_source_segment(code, node) if node is not None else None
            location = f" at line '{segment}'" if segment and "\n" not in segment else ""
            return InterpreterResult(output=self._text(), error=SandboxExecutionError(
                f"Code execution failed{location} due to: {type(e).__name__}: {e}"
            ))
        return InterpreterResult(value=value, output=self._text())

    def _text(self) -> str:
        return "".join(self._output)

    def _print(self, *args, sep: str | None = " ", end: str | None = "\n", **_):
        sep = " " if sep is None else sep
        end = "\n" if end is None else end
        self._output.append(sep.join(str(a) for a in args) + end)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _tick(self):
        self._ops += 1
        if self._ops > self._max_ops:
            raise ResourceLimitExceeded(
                f"Reached the maximum number of operations ({self._max_ops}); "
                f"this may be caused by an infinite loop",
                limit="operations",
            )
        if self._stop.is_set():
            raise _Stopped()

    def _resolve(self, name: str, scope: _Scope) -> Any:
        value = scope.lookup(name)
        if value is not _MISSING:
            return value
        if name in self._tools:
            return self._tools[name]
        if name == "print":
            return self._print
        if name in SAFE_BUILTINS:
            return SAFE_BUILTINS[name]
        if name in DENIED_BUILTINS:
            raise PermissionDenied(f"Forbidden access to '{name}'")
        return _MISSING

    def _assign_name(self, name: str, value: Any, scope: _Scope):
        if name in self._tools:
            raise SandboxExecutionError(f"Can not assign to name '{name}': it is a registered capability")
        scope.vars[name] = value

    def _time_module(self) -> types.ModuleType:
        module = types.ModuleType("time", time.__doc__)
        module.__dict__.update((k, v) for k, v in vars(time).items() if not k.startswith("_"))

        def sleep(seconds: float):
            if seconds < 0:
                raise ValueError("sleep length must be non-negative")
            if self._stop.wait(seconds):
                raise _Stopped()

        module.sleep = sleep
        return module

    def _import(self, name: str) -> types.ModuleType:
        self._check_import(name)
        if name in self._modules:
            return self._modules[name]
        return importlib.import_module(name)

    @staticmethod
    def _check_attribute(attr: str, owner: Any = None):
        if attr.startswith("__") and attr.endswith("__"):
            raise PermissionDenied(f"Forbidden access to dunder attribute '{attr}'")
        if attr in DENIED_ATTRIBUTES:
            raise PermissionDenied(f"Forbidden access to attribute '{attr}'")
        if isinstance(owner, types.ModuleType) and attr.startswith("_"):
            raise PermissionDenied(f"Forbidden access to private name '{attr}' of module '{owner.__name__}'")

    def _guard(self, value: Any) -> Any:
        if isinstance(value, types.ModuleType):
            self._check_import(value.__name__)
            return self._modules.get(value.__name__, value)
        return value

    def _check_import(self, module: str):
        if not is_import_authorized(module, self.authorized_imports):
            raise PermissionDenied(
                f"Import of '{module}' is not allowed. Authorized imports are: {list(self.authorized_imports)}"
            )

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _exec(self, node: ast.stmt, scope: _Scope) -> Any:
        self._tick()
        handler = getattr(self, f"_exec_{type(node).__name__}", None)
        if handler is None:
            raise SandboxExecutionError(f"{type(node).__name__} statements are not supported")
        return handler(node, scope)

    def _exec_block(self, body: list[ast.stmt], scope: _Scope):
        for stmt in body:
            self._exec(stmt, scope)

    def _exec_Expr(self, node: ast.Expr, scope: _Scope) -> Any:
        return self._eval(node.value, scope)

    def _exec_Pass(self, node: ast.Pass, scope: _Scope):
        return None

    def _exec_Assign(self, node: ast.Assign, scope: _Scope):
        value = self._eval(node.value, scope)
        for target in node.targets:
            self._assign(target, value, scope)

    def _exec_AnnAssign(self, node: ast.AnnAssign, scope: _Scope):
        if node.value is not None:
            self._assign(node.target, self._eval(node.value, scope), scope)

    def _exec_AugAssign(self, node: ast.AugAssign, scope: _Scope):
        current = self._eval(_as_load(node.target), scope)
        value = self._binop(type(node.op), current, self._eval(node.value, scope))
        self._assign(node.target, value, scope)

    def _exec_If(self, node: ast.If, scope: _Scope):
        if self._eval(node.test, scope):
            self._exec_block(node.body, scope)
        else:
            self._exec_block(node.orelse, scope)

    def _exec_For(self, node: ast.For, scope: _Scope):
        for item in self._eval(node.iter, scope):
            self._tick()
            self._assign(node.target, item, scope)
            try:
                self._exec_block(node.body, scope)
            except _Break:
                break
            except _Continue:
                continue
        else:
            self._exec_block(node.orelse, scope)

    def _exec_While(self, node: ast.While, scope: _Scope):
        while self._eval(node.test, scope):
            try:
                self._exec_block(node.body, scope)
            except _Break:
                break
            except _Continue:
                continue
        else:
            self._exec_block(node.orelse, scope)

    def _exec_Break(self, node: ast.Break, scope: _Scope):
        raise _Break()

    def _exec_Continue(self, node: ast.Continue, scope: _Scope):
        raise _Continue()

    def _exec_Return(self, node: ast.Return, scope: _Scope):
        raise _Return(self._eval(node.value, scope) if node.value is not None else None)

    def _exec_FunctionDef(self, node: ast.FunctionDef, scope: _Scope):
        fn = self._make_function(node, scope)
        for decorator in reversed(node.decorator_list):
            fn = self._eval(decorator, scope)(fn)
        self._assign_name(node.name, fn, scope)

    def _exec_Import(self, node: ast.Import, scope: _Scope):
        for alias in node.names:
            module = self._import(alias.name)
            if alias.asname:
                self._assign_name(alias.asname, module, scope)
            else:
                root = alias.name.split(".")[0]
                self._assign_name(root, self._modules.get(root) or importlib.import_module(root), scope)

    def _exec_ImportFrom(self, node: ast.ImportFrom, scope: _Scope):
        if node.level or not node.module:
            raise PermissionDenied("Relative imports are not allowed")
        module = self._import(node.module)
        for alias in node.names:
            if alias.name == "*":
                raise PermissionDenied(f"Star import from '{node.module}' is not allowed")
            self._check_attribute(alias.name, module)
            if hasattr(module, alias.name):
                value = self._guard(getattr(module, alias.name))
            else:
                value = self._import(f"{node.module}.{alias.name}")
            self._assign_name(alias.asname or alias.name, value, scope)

    def _exec_Try(self, node: ast.Try, scope: _Scope):
        try:
            try:
                self._exec_block(node.body, scope)
            except _UNCATCHABLE:
                raise
            except Exception as e:
                handler = self._match_handler(node.handlers, e, scope)
                if handler is None:
                    raise
                if handler.name:
                    self._assign_name(handler.name, e, scope)
                self._handling.append(e)
                try:
                    self._exec_block(handler.body, scope)
                finally:
                    self._handling.pop()
            else:
                self._exec_block(node.orelse, scope)
        finally:
            self._exec_block(node.finalbody, scope)

    def _match_handler(self, handlers: list[ast.ExceptHandler], error: Exception, scope: _Scope):
        for handler in handlers:
            if handler.type is None:
                return handler
            expected = self._eval(handler.type, scope)
            if isinstance(error, expected):
                return handler
        return None

    def _exec_Raise(self, node: ast.Raise, scope: _Scope):
        if node.exc is None:
            if not self._handling:
                raise RuntimeError("No active exception to reraise")
            raise self._handling[-1]
        exc = self._eval(node.exc, scope)
        if isinstance(exc, type) and issubclass(exc, BaseException):
            exc = exc()
        if not isinstance(exc, Exception):
            raise TypeError("exceptions must derive from Exception")
        if node.cause is not None:
            raise exc from self._eval(node.cause, scope)
        raise exc

    def _exec_Assert(self, node: ast.Assert, scope: _Scope):
        if not self._eval(node.test, scope):
            if node.msg is not None:
                raise AssertionError(self._eval(node.msg, scope))
            raise AssertionError(ast.unparse(node.test))

    def _exec_Delete(self, node: ast.Delete, scope: _Scope):
        for target in node.targets:
            if isinstance(target, ast.Name):
                scope.delete(target.id)
            elif isinstance(target, ast.Subscript):
                del self._eval(target.value, scope)[self._eval(target.slice, scope)]
            else:
                raise SandboxExecutionError(f"Deleting {type(target).__name__} is not supported")

    def _exec_With(self, node: ast.With, scope: _Scope):
        with ExitStack() as stack:
            for item in node.items:
                value = stack.enter_context(self._eval(item.context_expr, scope))
                if item.optional_vars is not None:
                    self._assign(item.optional_vars, value, scope)
            self._exec_block(node.body, scope)

    # ------------------------------------------------------------------
    # Assignment targets
    # ------------------------------------------------------------------

    def _assign(self, target: ast.expr, value: Any, scope: _Scope):
        if isinstance(target, ast.Name):
            self._assign_name(target.id, value, scope)
        elif isinstance(target, (ast.Tuple, ast.List)):
            self._unpack(target.elts, value, scope)
        elif isinstance(target, ast.Subscript):
            self._eval(target.value, scope)[self._eval(target.slice, scope)] = value
        elif isinstance(target, ast.Attribute):
            owner = self._eval(target.value, scope)
            self._check_attribute(target.attr, owner)
            if isinstance(owner, types.ModuleType):
                raise PermissionDenied(f"Can not assign to attribute '{target.attr}' of module '{owner.__name__}'")
            setattr(owner, target.attr, value)
        else:
            raise SandboxExecutionError(f"Assignment to {type(target).__name__} is not supported")

    def _unpack(self, targets: list[ast.expr], value: Any, scope: _Scope):
        values = list(value)
        starred = [i for i, t in enumerate(targets) if isinstance(t, ast.Starred)]
        if not starred:
            if len(values) != len(targets):
                raise ValueError(f"expected {len(targets)} values to unpack, got {len(values)}")
            for t, v in zip(targets, values):
                self._assign(t, v, scope)
            return
        star = starred[0]
        after = len(targets) - star - 1
        if len(values) < star + after:
            raise ValueError(f"not enough values to unpack (expected at least {star + after}, got {len(values)})")
        for t, v in zip(targets[:star], values[:star]):
            self._assign(t, v, scope)
        self._assign(targets[star].value, values[star:len(values) - after], scope)
        for t, v in zip(targets[star + 1:], values[len(values) - after:]):
            self._assign(t, v, scope)

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def _make_function(self, node: ast.FunctionDef | ast.Lambda, scope: _Scope) -> Callable[..., Any]:
        args = node.args
        positional = [a.arg for a in args.posonlyargs + args.args]
        posonly = {a.arg for a in args.posonlyargs}
        kwonly = [a.arg for a in args.kwonlyargs]
        defaults = [self._eval(d, scope) for d in args.defaults]
        kw_defaults = [self._eval(d, scope) if d is not None else _MISSING for d in args.kw_defaults]
        name = getattr(node, "name", "<lambda>")
        default_map = dict(zip(positional[len(positional) - len(defaults):], defaults))
        default_map.update({k: d for k, d in zip(kwonly, kw_defaults) if d is not _MISSING})
        interpreter = self

        def function(*call_args, **call_kwargs):
            local = _Scope(parent=scope)
            bound: dict[str, Any] = {}
            for param, value in zip(positional, call_args):
                bound[param] = value
            extra = call_args[len(positional):]
            if extra:
                if args.vararg is None:
                    raise TypeError(f"{name}() takes {len(positional)} positional arguments but {len(call_args)} were given")
                bound[args.vararg.arg] = tuple(extra)
            elif args.vararg is not None:
                bound[args.vararg.arg] = ()
            leftover: dict[str, Any] = {}
            for key, value in call_kwargs.items():
                if (key in positional and key not in posonly) or key in kwonly:
                    if key in bound:
                        raise TypeError(f"{name}() got multiple values for argument '{key}'")
                    bound[key] = value
                elif args.kwarg is not None:
                    leftover[key] = value
                else:
                    raise TypeError(f"{name}() got an unexpected keyword argument '{key}'")
            if args.kwarg is not None:
                bound[args.kwarg.arg] = leftover
            for param in positional + kwonly:
                if param not in bound:
                    if param not in default_map:
                        raise TypeError(f"{name}() missing required argument '{param}'")
                    bound[param] = default_map[param]
            local.vars.update(bound)
            if isinstance(node, ast.Lambda):
                return interpreter._eval(node.body, local)
            try:
                interpreter._exec_block(node.body, local)
            except _Return as r:
                return r.value
            return None

        function.__name__ = name
        function.__qualname__ = name
        return function

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _eval(self, node: ast.expr, scope: _Scope) -> Any:
        self._tick()
        handler = getattr(self, f"_eval_{type(node).__name__}", None)
        if handler is None:
            raise SandboxExecutionError(f"{type(node).__name__} expressions are not supported")
        return handler(node, scope)

    def _eval_Constant(self, node: ast.Constant, scope: _Scope) -> Any:
        return node.value

    def _eval_Name(self, node: ast.Name, scope: _Scope) -> Any:
        value = self._resolve(node.id, scope)
        if value is _MISSING:
            raise NameError(f"The variable `{node.id}` is not defined.")
        return value

    def _eval_NamedExpr(self, node: ast.NamedExpr, scope: _Scope) -> Any:
        value = self._eval(node.value, scope)
        self._assign(node.target, value, scope)
        return value

    def _binop(self, op: type, left: Any, right: Any) -> Any:
        if op is ast.Pow and isinstance(right, int) and isinstance(left, int) \
                and abs(left) > 1 and right > MAX_POWER_EXPONENT:
            raise ResourceLimitExceeded(f"Exponent {right} exceeds the allowed maximum", limit="memory")
        if op is ast.Mult:
            for seq, count in ((left, right), (right, left)):
                if isinstance(seq, (str, bytes, list, tuple)) and isinstance(count, int) \
                        and len(seq) * count > MAX_SEQUENCE_REPEAT:
                    raise ResourceLimitExceeded("Sequence repetition exceeds the allowed size", limit="memory")
        return _BIN_OPS[op](left, right)

    def _eval_BinOp(self, node: ast.BinOp, scope: _Scope) -> Any:
        return self._binop(type(node.op), self._eval(node.left, scope), self._eval(node.right, scope))

    def _eval_UnaryOp(self, node: ast.UnaryOp, scope: _Scope) -> Any:
        return _UNARY_OPS[type(node.op)](self._eval(node.operand, scope))

    def _eval_BoolOp(self, node: ast.BoolOp, scope: _Scope) -> Any:
        value = None
        for operand in node.values:
            value = self._eval(operand, scope)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def _eval_Compare(self, node: ast.Compare, scope: _Scope) -> bool:
        left = self._eval(node.left, scope)
        for op, comparator in zip(node.ops, node.comparators):
            right = self._eval(comparator, scope)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp, scope: _Scope) -> Any:
        return self._eval(node.body if self._eval(node.test, scope) else node.orelse, scope)

    def _eval_Attribute(self, node: ast.Attribute, scope: _Scope) -> Any:
        owner = self._eval(node.value, scope)
        self._check_attribute(node.attr, owner)
        return self._guard(getattr(owner, node.attr))

    def _eval_Subscript(self, node: ast.Subscript, scope: _Scope) -> Any:
        return self._guard(self._eval(node.value, scope)[self._eval(node.slice, scope)])

    def _eval_Slice(self, node: ast.Slice, scope: _Scope) -> slice:
        return slice(
            self._eval(node.lower, scope) if node.lower is not None else None,
            self._eval(node.upper, scope) if node.upper is not None else None,
            self._eval(node.step, scope) if node.step is not None else None,
        )

    def _elements(self, elts: list[ast.expr], scope: _Scope) -> list[Any]:
        values: list[Any] = []
        for elt in elts:
            if isinstance(elt, ast.Starred):
                values.extend(self._eval(elt.value, scope))
            else:
                values.append(self._eval(elt, scope))
        return values

    def _eval_List(self, node: ast.List, scope: _Scope) -> list:
        return self._elements(node.elts, scope)

    def _eval_Tuple(self, node: ast.Tuple, scope: _Scope) -> tuple:
        return tuple(self._elements(node.elts, scope))

    def _eval_Set(self, node: ast.Set, scope: _Scope) -> set:
        return set(self._elements(node.elts, scope))

    def _eval_Dict(self, node: ast.Dict, scope: _Scope) -> dict:
        result: dict[Any, Any] = {}
        for key, value in zip(node.keys, node.values):
            if key is None:
                result.update(self._eval(value, scope))
            else:
                result[self._eval(key, scope)] = self._eval(value, scope)
        return result

    def _eval_JoinedStr(self, node: ast.JoinedStr, scope: _Scope) -> str:
        return "".join(str(self._eval(value, scope)) for value in node.values)

    def _eval_FormattedValue(self, node: ast.FormattedValue, scope: _Scope) -> str:
        value = self._eval(node.value, scope)
        if node.conversion == ord("r"):
            value = repr(value)
        elif node.conversion == ord("s"):
            value = str(value)
        elif node.conversion == ord("a"):
            value = ascii(value)
        spec = self._eval(node.format_spec, scope) if node.format_spec is not None else ""
        return format(value, spec)

    def _eval_Lambda(self, node: ast.Lambda, scope: _Scope) -> Callable[..., Any]:
        return self._make_function(node, scope)

    def _eval_Call(self, node: ast.Call, scope: _Scope) -> Any:
        if isinstance(node.func, ast.Name):
            func = self._resolve(node.func.id, scope)
            if func is _MISSING:
                raise CapabilityNotFound(node.func.id, list(self._tools))
        else:
            func = self._eval(node.func, scope)
        if any(func is denied for denied in _DENIED_CALLABLES):
            raise PermissionDenied(f"Forbidden call to '{getattr(func, '__name__', func)}'")
        args = self._elements(node.args, scope)
        kwargs: dict[str, Any] = {}
        for keyword in node.keywords:
            if keyword.arg is None:
                kwargs.update(self._eval(keyword.value, scope))
            else:
                kwargs[keyword.arg] = self._eval(keyword.value, scope)
        return self._guard(func(*args, **kwargs))

    # -- Comprehensions -----------------------------------------------------

    def _iterate(self, generators: list[ast.comprehension], scope: _Scope) -> Iterator[_Scope]:
        if not generators:
            yield scope
            return
        first, rest = generators[0], generators[1:]
        for item in self._eval(first.iter, scope):
            self._tick()
            inner = _Scope(parent=scope)
            self._assign(first.target, item, inner)
            if all(self._eval(cond, inner) for cond in first.ifs):
                yield from self._iterate(rest, inner)

    def _eval_ListComp(self, node: ast.ListComp, scope: _Scope) -> list:
        return [self._eval(node.elt, inner) for inner in self._iterate(node.generators, scope)]

    def _eval_SetComp(self, node: ast.SetComp, scope: _Scope) -> set:
        return {self._eval(node.elt, inner) for inner in self._iterate(node.generators, scope)}

    def _eval_GeneratorExp(self, node: ast.GeneratorExp, scope: _Scope) -> Iterator[Any]:
        return iter([self._eval(node.elt, inner) for inner in self._iterate(node.generators, scope)])

    def _eval_DictComp(self, node: ast.DictComp, scope: _Scope) -> dict:
        return {
            self._eval(node.key, inner): self._eval(node.value, inner)
            for inner in self._iterate(node.generators, scope)
        }


def _as_load(target: ast.expr) -> ast.expr:
    """Return a load-context copy of an assignment target."""
    if isinstance(target, ast.Name):
        return ast.Name(id=target.id, ctx=ast.Load())
    if isinstance(target, ast.Subscript):
        return ast.Subscript(value=target.value, slice=target.slice, ctx=ast.Load())
    if isinstance(target, ast.Attribute):
        return ast.Attribute(value=target.value, attr=target.attr, ctx=ast.Load())
    raise SandboxExecutionError(f"Augmented assignment to {type(target).__name__} is not supported")
