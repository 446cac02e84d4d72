"""Template compiler — markup with embedded Python to an async render unit.

Grammar::

    <% statement %>     run for effect
    <%= expression %>   escaped and appended
    <%- expression %>   appended as-is
    ${expression}       shorthand for <%= expression %> inside literal text

Statements are Python. A statement ending in ``:`` opens a block that
runs until ``<% end %>`` (any ``end…`` word works: ``endfor``,
``endif``). ``else:``, ``elif …:``, ``except …:`` and ``finally:``
continue the current block::

    <ul>
    <% for user in users: %>
      <li class="${'admin' if user['admin'] else ''}">${user['name']}</li>
    <% end %>
    </ul>

The generated program is an ``async def``, so ``await`` works anywhere
inside a directive. Before every append or statement the generator
records the template line in ``__line``, and ``elif``/``while``
conditions record theirs inside the header; a runtime failure is
annotated with it and re-raised. A trailing ``# comment`` after a
block header or ``end`` is ignored.

Name lookup inside a template (innermost wins)::

    builtins < configured globals < render data < helpers

Helpers: ``escape`` / ``h``, ``print(*values)``, ``ready(callback)``,
``query(selector)`` and ``query_all(selector)``. The query helpers and
``ready`` go through the ``RenderHooks`` passed at call time, so a unit
shared through the cache always talks to the surface of the current
render.
"""

from __future__ import annotations

import builtins
import io
import linecache
import logging
import re
import textwrap
import tokenize
import types
from collections.abc import Callable, Mapping
from typing import Any

from templar.errors import CompileError, annotate_exception
from templar.templating.diagnostics import format_generated_source

logger = logging.getLogger("templar.core")

_DIRECTIVE_RE = re.compile(r"<%([=\-]?)([\s\S]+?)%>")
_INLINE_RE = re.compile(r"\$\{([\s\S]+?)\}")
_END_RE = re.compile(r"^end\w*$")
_CONTINUE_RE = re.compile(r"^(?:else|elif|except|finally)\b.*:$")
_LINE_MARKER_RE = re.compile(r"^\s*__line = (\d+)$|^\s*(?:elif|while) \(__line := (\d+)\)")
# Headers whose condition re-records the line it is written on
_MARKED_HEADER_RE = re.compile(r"^(elif|while)\s+(.+):$")

_FUNC_NAME = "__templar_render"
_INDENT = "    "
# Statements inside the try block of the generated function
_BODY_DEPTH = 2

_ESCAPE_TABLE = str.maketrans({
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
})


def escape_html(value: Any) -> str:
    """Replace ``& < > " '`` with their entities. Values go through ``str()``."""
    return str(value).translate(_ESCAPE_TABLE)


def fingerprint(text: str) -> str:
    """32-bit FNV-1a of *text* in base 36.

    Characters outside the BMP hash by their leading UTF-16 unit.
    """
    h = 0x811C9DC5
    for char in text:
        code = ord(char)
        if code > 0xFFFF:
            code = 0xD800 + ((code - 0x10000) >> 10)
        h ^= code
        h = (h * 16777619) & 0xFFFFFFFF
    return _base36(h)


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out: list[str] = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


class RenderHooks:
    """Per-render hook bundle: deferred callbacks and target-bound queries.

    Built by the delivery engine for one render; the queries resolve
    against ``target`` when called, not when the unit was compiled.
    """

    __slots__ = ("ready_callbacks", "target")

    def __init__(self, target: Any = None) -> None:
        self.target = target
        self.ready_callbacks: list[Callable[[], Any]] = []

    def ready(self, callback: Callable[[], Any]) -> None:
        if callable(callback):
            self.ready_callbacks.append(callback)

    def query(self, selector: str) -> Any:
        if self.target is None:
            return None
        return self.target.query_selector(selector)

    def query_all(self, selector: str) -> list[Any]:
        if self.target is None:
            return []
        return list(self.target.query_selector_all(selector))


class CompiledUnit:
    """An executable template.

    Immutable once built. ``await unit(data, hooks)`` returns the
    rendered text. ``globals_`` is read at call time, so later
    ``add_global`` calls on the owning engine are visible.
    """

    __slots__ = ("_code", "_globals", "fingerprint", "identifier", "source")

    def __init__(
        self,
        identifier: str,
        fingerprint: str,
        source: str,
        code: types.CodeType,
        globals_: Mapping[str, Any] | None,
    ) -> None:
        self.identifier = identifier
        self.fingerprint = fingerprint
        self.source = source
        self._code = code
        self._globals = globals_

    def __repr__(self) -> str:
        return f"CompiledUnit({self.identifier!r}, {self.fingerprint!r})"

    async def __call__(
        self,
        data: Mapping[str, Any] | None = None,
        hooks: RenderHooks | None = None,
    ) -> str:
        hooks = hooks if hooks is not None else RenderHooks()
        scope: dict[str, Any] = {"__builtins__": builtins}
        if self._globals:
            scope.update(self._globals)
        if data:
            scope.update(data)
        # String keys: dunder identifiers would be name-mangled in a class body.
        scope.update({
            "escape": escape_html,
            "h": escape_html,
            "ready": hooks.ready,
            "query": hooks.query,
            "query_all": hooks.query_all,
            "__annotate": annotate_exception,
            "__identifier": self.identifier,
        })
        render = types.FunctionType(self._code, scope, _FUNC_NAME)
        return await render()


class _CodeGen:
    """Accumulates the generated function body while tracking template lines."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        self.lines: list[str] = []
        self.depth = 0
        # statements emitted into each open block; [0] is the function body
        self.block_sizes: list[int] = [0]
        self.template_line = 1

    def emit(self, code: str) -> None:
        prefix = _INDENT * (_BODY_DEPTH + self.depth)
        for piece in code.split("\n"):
            self.lines.append(prefix + piece if piece.strip() else "")
        self.block_sizes[-1] += 1

    def mark(self, line: int) -> None:
        self.emit(f"__line = {line}")

    def open_block(self) -> None:
        self.depth += 1
        self.block_sizes.append(0)

    def close_block(self, directive: str) -> None:
        if self.depth == 0:
            raise CompileError(
                f"Unexpected <% {directive} %> with no open block",
                identifier=self.identifier,
                line=self.template_line,
                source="\n".join(self.lines),
            )
        if self.block_sizes[-1] == 0:
            self.emit("pass")
        self.block_sizes.pop()
        self.depth -= 1

    # -- literal text -------------------------------------------------------

    def literal(self, chunk: str) -> None:
        base = self.template_line
        last = 0
        for match in _INLINE_RE.finditer(chunk):
            before = chunk[last : match.start()]
            if before:
                self.mark(base + chunk.count("\n", 0, last))
                self.emit(f"__append({before!r})")
            self.mark(base + chunk.count("\n", 0, match.start()))
            self.emit(f"__append(escape(({match.group(1)}\n)))")
            last = match.end()
        rest = chunk[last:]
        if rest:
            self.mark(base + chunk.count("\n", 0, last))
            self.emit(f"__append({rest!r})")
        self.template_line += chunk.count("\n")

    # -- directives ---------------------------------------------------------

    def directive(self, flag: str, code: str) -> None:
        start = self.template_line
        if flag == "=":
            self.mark(start)
            self.emit(f"__append(escape(({code}\n)))")
        elif flag == "-":
            self.mark(start)
            self.emit(f"__append(str(({code}\n)))")
        else:
            self.statement(code)
        self.template_line += code.count("\n")

    def statement(self, code: str) -> None:
        stripped = code.strip()
        if "\n" not in stripped:
            stripped = _code_part(stripped)
            if _END_RE.match(stripped):
                self.close_block(stripped)
                return
            if _CONTINUE_RE.match(stripped):
                self.close_block(stripped)
                self.emit(_mark_header(stripped, self.template_line))
                self.open_block()
                return
        lines = _statement_lines(code)
        if not lines:
            return
        self.mark(self.template_line)
        lines[0] = _mark_header(lines[0], self.template_line)
        self.emit("\n".join(lines))
        last = lines[-1]
        if not last[:1].isspace() and _code_part(last.rstrip()).endswith(":"):
            self.open_block()


def _code_part(line: str) -> str:
    """*line* without a trailing ``# comment``."""
    if "#" not in line:
        return line
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(line).readline))
    except (tokenize.TokenError, SyntaxError):
        return line
    for token in tokens:
        if token.type == tokenize.COMMENT:
            return line[: token.start[1]].rstrip()
    return line


def _mark_header(head: str, line: int) -> str:
    """``while cond:`` -> ``while (__line := N) and (cond):``; same for ``elif``.

    Both conditions are evaluated after other statements have moved
    ``__line`` on, so they record their own line.
    """
    match = _MARKED_HEADER_RE.match(_code_part(head))
    if match is None:
        return head
    keyword, condition = match.groups()
    return f"{keyword} (__line := {line}) and ({condition}):"


def _statement_lines(code: str) -> list[str]:
    """Normalize a statement directive's indentation.

    The first line is taken as written after ``<%``; the remaining lines
    are dedented as a group, and indented one level when the first line
    opens a block.
    """
    raw = code.split("\n")
    head = raw[0].strip()
    tail = [line.rstrip() for line in textwrap.dedent("\n".join(raw[1:])).split("\n")] if len(raw) > 1 else []
    while tail and not tail[-1].strip():
        tail.pop()
    if not head:
        while tail and not tail[0].strip():
            tail.pop(0)
        return tail
    if tail and _code_part(head).endswith(":"):
        tail = [_INDENT + line if line.strip() else line for line in tail]
    return [head, *tail]


def generate_source(text: str, identifier: str) -> str:
    """Translate template *text* into the source of the render function."""
    gen = _CodeGen(identifier)
    position = 0
    for match in _DIRECTIVE_RE.finditer(text):
        gen.literal(text[position : match.start()])
        gen.directive(match.group(1), match.group(2))
        position = match.end()
    gen.literal(text[position:])

    if gen.depth:
        raise CompileError(
            f"{gen.depth} block(s) left open at end of template",
            identifier=identifier,
            line=gen.template_line,
            source="\n".join(gen.lines),
        )

    body = gen.lines or [_INDENT * _BODY_DEPTH + "pass"]
    header = [
        f"async def {_FUNC_NAME}():",
        f"{_INDENT}__out = []",
        f"{_INDENT}__append = __out.append",
        f"{_INDENT}def print(*values):",
        f"{_INDENT * 2}__append(''.join(str(value) for value in values))",
        f"{_INDENT}__line = 1",
        f"{_INDENT}try:",
    ]
    footer = [
        f"{_INDENT}except BaseException as __exc:",
        f"{_INDENT * 2}__annotate(__exc, __line, __identifier)",
        f"{_INDENT * 2}raise",
        f"{_INDENT}return ''.join(__out)",
        "",
    ]
    return "\n".join([*header, *body, *footer])


def _template_line_for(source: str, generated_line: int | None) -> int | None:
    """Map a line of generated source back to the template line marker before it."""
    if generated_line is None:
        return None
    lines = source.split("\n")
    for index in range(min(generated_line, len(lines)) - 1, -1, -1):
        match = _LINE_MARKER_RE.match(lines[index])
        if match:
            return int(match.group(1) or match.group(2))
    return None


def compile_template(
    text: str,
    identifier: str,
    *,
    globals_: Mapping[str, Any] | None = None,
) -> CompiledUnit:
    """Compile template *text* into a ``CompiledUnit``.

    Raises ``CompileError`` for malformed directive code. The generated
    program is logged on ``templar.core`` before the error propagates.
    """
    try:
        source = generate_source(text, identifier)
    except CompileError as exc:
        logger.error("Error compiling template %s: %s", identifier, exc)
        if exc.source:
            logger.error("%s", format_generated_source(identifier, exc.source))
        raise

    filename = f"<templar:{identifier}>"
    try:
        module = compile(source, filename, "exec")
    except SyntaxError as exc:
        logger.error("Error compiling template %s: %s", identifier, exc)
        logger.error("%s", format_generated_source(identifier, source))
        raise CompileError(
            f"Invalid template code: {exc.msg}",
            identifier=identifier,
            source=source,
            line=_template_line_for(source, exc.lineno),
        ) from exc

    # Register the generated source so tracebacks can show it.
    linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)

    code = next(
        const
        for const in module.co_consts
        if isinstance(const, types.CodeType) and const.co_name == _FUNC_NAME
    )
    return CompiledUnit(identifier, fingerprint(text), source, code, globals_)
