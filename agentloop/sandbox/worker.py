"""Child side of the process and container sandboxes.

This file is executed as a standalone script (``python -I -u -c <source>``)
and must only depend on the standard library. It speaks line-delimited JSON
over stdin/stdout:

    host  -> child  {"op": "execute", "code": ..., "capabilities": [...], "variables": {...}}
    child -> host   {"op": "call", "id": ..., "name": ..., "args": [...], "kwargs": {...}}
    host  -> child  {"op": "result", "id": ..., "value": ...}
                    {"op": "error", "id": ..., "kind": ..., "message": ..., "detail": {...}}
    child -> host   {"op": "done", "output": ..., "value": ..., "value_repr": ...,
                     "is_final_answer": ..., "error": {"kind": ..., "message": ..., "detail": ...} | null}
"""

import ast
import builtins
import contextlib
import io
import itertools
import json
import os
import sys
import types

DENIED_BUILTINS = (
    "breakpoint", "compile", "delattr", "eval", "exec", "exit", "getattr", "globals", "help", "input", "locals",
    "memoryview", "open", "quit", "setattr", "vars",
)
DENIED_ATTRIBUTES = (
    "ag_frame", "cr_frame", "f_back", "f_builtins", "f_globals", "f_locals", "gi_frame", "tb_frame", "tb_next",
)
GUARD_NAME = "__sandbox_attr__"


class FinalAnswer(BaseException):
    def __init__(self, value):
        self.value = value


class Fault(Exception):
    def __init__(self, kind, message, detail=None):
        self.kind = kind
        self.message = message
        self.detail = detail or {}
        super().__init__(message)


class AttributeGuard(ast.NodeTransformer):
    """Refuses dunder names and routes attribute reads through the worker's check."""

    def visit_Name(self, node):
        if node.id.startswith("__"):
            raise Fault("permission_denied", f"Forbidden access to name '{node.id}'")
        return node

    def visit_ImportFrom(self, node):
        for alias in node.names:
            if alias.name == "*" or alias.name.startswith("_"):
                raise Fault("permission_denied", f"Forbidden import of '{alias.name}' from '{node.module}'")
        return node

    def visit_Attribute(self, node):
        self.generic_visit(node)
        if not isinstance(node.ctx, ast.Load):
            check_attribute(None, node.attr)
            return node
        call = ast.Call(
            func=ast.Name(id=GUARD_NAME, ctx=ast.Load()),
            args=[node.value, ast.Constant(value=node.attr)],
            keywords=[],
        )
        return ast.copy_location(call, node)


def check_attribute(owner, name):
    if (name.startswith("__") and name.endswith("__")) or name in DENIED_ATTRIBUTES:
        raise Fault("permission_denied", f"Forbidden access to attribute '{name}'")
    if isinstance(owner, types.ModuleType) and name.startswith("_"):
        raise Fault("permission_denied", f"Forbidden access to private name '{name}' of module '{owner.__name__}'")


class Worker:
    def __init__(self, authorized_imports):
        self.authorized_imports = authorized_imports
        self.channel = os.fdopen(os.dup(sys.stdout.fileno()), "w", encoding="utf-8")
        self.namespace = {"__name__": "__sandbox__", "__builtins__": self._builtins(), GUARD_NAME: self.attribute}
        self.ids = itertools.count(1)

    def _builtins(self):
        allowed = {k: v for k, v in vars(builtins).items() if k not in DENIED_BUILTINS}
        real_import = builtins.__import__

        def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
            if globals is self.namespace:
                if level:
                    raise Fault("permission_denied", "Relative imports are not allowed")
                if not self._authorized(name):
                    raise Fault(
                        "permission_denied",
                        f"Import of '{name}' is not allowed. Authorized imports are: {self.authorized_imports}",
                    )
            module = real_import(name, globals, locals, fromlist, level)
            if globals is self.namespace:
                for item in fromlist or ():
                    self.check_module(getattr(module, item, None))
            return module

        allowed["__import__"] = guarded_import
        return allowed

    def check_module(self, value):
        if isinstance(value, types.ModuleType) and not self._authorized(value.__name__):
            raise Fault(
                "permission_denied",
                f"Import of '{value.__name__}' is not allowed. Authorized imports are: {self.authorized_imports}",
            )

    def attribute(self, owner, name):
        check_attribute(owner, name)
        value = getattr(owner, name)
        self.check_module(value)
        return value

    def _authorized(self, module):
        for entry in self.authorized_imports:
            entry = entry[:-2] if entry.endswith(".*") else entry
            if entry == "*" or module == entry or module.startswith(entry + "."):
                return True
        return False

    def send(self, message):
        self.channel.write(json.dumps(message) + "\n")
        self.channel.flush()

    def receive(self):
        line = sys.stdin.readline()
        if not line:
            raise SystemExit(0)
        return json.loads(line)

    def capability(self, name):
        def call(*args, **kwargs):
            call_id = next(self.ids)
            self.send({"op": "call", "id": call_id, "name": name, "args": list(args), "kwargs": kwargs})
            reply = self.receive()
            if reply.get("op") == "error":
                raise Fault(reply.get("kind", "capability_error"), reply.get("message", ""), reply.get("detail"))
            return reply.get("value")

        call.__name__ = name
        return call

    def execute(self, request):
        for name in request.get("capabilities", []):
            self.namespace[name] = self.capability(name)

        def final_answer(*args, **kwargs):
            raise FinalAnswer(args[0] if args else kwargs.get("answer"))

        self.namespace["final_answer"] = final_answer
        self.namespace.update(request.get("variables") or {})

        stdout = io.StringIO()
        result = {"op": "done", "output": "", "value": None, "value_repr": None,
                  "is_final_answer": False, "error": None}
        value = None
        line = None
        try:
            tree = ast.fix_missing_locations(AttributeGuard().visit(ast.parse(request["code"])))
            last = tree.body.pop() if tree.body and isinstance(tree.body[-1], ast.Expr) else None
            with contextlib.redirect_stdout(stdout):
                for node in tree.body:
                    line = ast.get_source_segment(request["code"], node)
                    module = ast.Module(body=[node], type_ignores=[])
                    exec(builtins.compile(module, "<fragment>", "exec"), self.namespace)
                if last is not None:
                    line = ast.get_source_segment(request["code"], last)
                    expression = ast.Expression(body=last.value)
                    value = eval(builtins.compile(expression, "<fragment>", "eval"), self.namespace)
        except FinalAnswer as f:
            value = f.value
            result["is_final_answer"] = True
        except SyntaxError as e:
            result["error"] = {"kind": "sandbox_error",
                               "message": f"Code parsing failed on line {e.lineno} due to: SyntaxError: {e.msg}"}
        except Fault as e:
            result["error"] = {"kind": e.kind, "message": e.message, "detail": e.detail}
        except MemoryError:
            result["error"] = {"kind": "resource_limit_exceeded", "message": "Fragment exhausted its memory limit",
                               "detail": {"limit": "memory"}}
        except Exception as e:
            location = f" at line '{line}'" if line and "\n" not in line else ""
            result["error"] = {"kind": "sandbox_error",
                               "message": f"Code execution failed{location} due to: {type(e).__name__}: {e}"}

        result["output"] = stdout.getvalue()
        if value is not None:
            try:
                json.dumps(value)
                result["value"] = value
            except (TypeError, ValueError):
                result["value_repr"] = repr(value)
        self.send(result)

    def serve(self):
        while True:
            request = self.receive()
            if request.get("op") == "execute":
                self.execute(request)


def main():
    authorized = json.loads(sys.argv[1]) if len(sys.argv) > 1 else []
    Worker(authorized).serve()


if __name__ == "__main__":
    main()
