"""Diagnostic formatting for template failures.

Produces the multi-line blocks the compiler and the delivery engine
log when something goes wrong::

    -- Template Error -----------------------------------------------
    NameError: name 'usernme' is not defined
    views/profile.html:3

         1 | <section>
         2 |   <h1>${title}</h1>
    >    3 |   <p>${usernme}</p>
         4 | </section>

    Data: {'title': 'Profile'}
    -----------------------------------------------------------------
"""

from __future__ import annotations

from typing import Any

# Width of the banner
_BANNER_WIDTH = 65


def _banner(title: str) -> str:
    return f"-- {title} {'-' * (_BANNER_WIDTH - len(title) - 4)}"


def context_window(text: str, line: int, span: int = 2) -> list[str]:
    """Return the lines around *line* with the failing one marked ``>``.

    *line* is clamped into the template; *span* lines are shown either side.
    """
    lines = text.split("\n")
    focus = min(max(1, line), len(lines))
    first = max(1, focus - span)
    last = min(len(lines), focus + span)
    width = len(str(last))
    out: list[str] = []
    for number in range(first, last + 1):
        mark = ">" if number == focus else " "
        out.append(f"{mark} {number:>{width}} | {lines[number - 1]}")
    return out


def format_runtime_error(
    exc: BaseException,
    identifier: str,
    text: str,
    line: int,
    data: Any,
    span: int = 2,
) -> str:
    """Format a runtime failure with its template context and data payload."""
    parts = [
        _banner("Template Error"),
        f"{type(exc).__name__}: {exc}",
        f"{identifier}:{line}",
        "",
        *context_window(text, line, span),
        "",
        f"Data: {_payload(data)!r}",
        "-" * _BANNER_WIDTH,
    ]
    return "\n".join(parts)


def format_generated_source(identifier: str, source: str) -> str:
    """Number the generated program for the compile-failure log."""
    lines = source.split("\n")
    width = len(str(len(lines)))
    numbered = [f"  {n:>{width}} | {code}" for n, code in enumerate(lines, start=1)]
    return "\n".join([
        _banner("Generated Source"),
        identifier,
        "",
        *numbered,
        "-" * _BANNER_WIDTH,
    ])


def _payload(data: Any) -> Any:
    # Component renders nest their state under "data"; show that when present.
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        return data["data"]
    return data
