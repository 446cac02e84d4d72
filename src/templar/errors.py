"""Templar exception hierarchy.

Shared across the compiler, delivery engine, component host, registry
and router so every module raises and catches the same types.
"""

import contextlib
from typing import Any


class TemplarError(Exception):
    """Base for all templar-specific errors."""


class ConfigurationError(TemplarError):
    """Raised when a required identifier, root or option is missing or invalid.

    Fatal to the operation that needed it; nothing is mutated.
    """


class CompileError(TemplarError):
    """Malformed directive code in a template.

    Carries the full generated program so the caller can inspect what
    the compiler produced.
    """

    def __init__(
        self,
        message: str,
        *,
        identifier: str = "",
        source: str = "",
        line: int | None = None,
    ) -> None:
        super().__init__(message)
        self.identifier = identifier
        self.source = source
        self.line = line

    def __str__(self) -> str:
        base = super().__str__()
        if self.identifier and self.line is not None:
            return f"{base} ({self.identifier}, line {self.line})"
        if self.identifier:
            return f"{base} ({self.identifier})"
        return base


class RetrievalError(TemplarError):
    """Template text could not be fetched. Aborts the delivery chain."""

    def __init__(self, identifier: str, detail: str = "") -> None:
        message = f"Can't load template: {identifier}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.identifier = identifier
        self.detail = detail


class CallbackError(TemplarError):
    """A deferred ``ready()`` callback failed.

    Logged by the delivery engine and never propagated.
    """


class PayloadParseError(TemplarError):
    """The structured ``data`` attribute of a component is not valid JSON."""

    def __init__(self, tag_name: str, value: str) -> None:
        super().__init__(f"JSON parse error in data attribute of <{tag_name}>: {value!r}")
        self.tag_name = tag_name
        self.value = value


# Stages a navigation can fail in; every one except "history" routes to
# the wildcard view.
NAVIGATION_STAGES = frozenset({
    "resolve-root",
    "resolve",
    "render",
    "render-custom",
    "history",
    "wildcard-root",
    "wildcard-render",
})


class NavigationStageError(TemplarError):
    """A navigation stage failed.

    Absorbed by the router: reported through ``on_error`` and the
    ``templar.route`` logger, then handled by the fallback path.
    """

    def __init__(
        self,
        stage: str,
        detail: str = "",
        *,
        info: dict[str, Any] | None = None,
    ) -> None:
        if stage not in NAVIGATION_STAGES:
            msg = f"Unknown navigation stage: {stage!r}"
            raise ValueError(msg)
        super().__init__(f"[{stage}] {detail}" if detail else f"[{stage}]")
        self.stage = stage
        self.detail = detail
        self.info = info or {}

    @property
    def triggers_fallback(self) -> bool:
        return self.stage != "history"


def annotate_exception(exc: BaseException, line: int, identifier: str) -> None:
    """Attach the last captured template line to a runtime failure.

    The exception itself is left as-is so callers see the original type.
    Some built-in exceptions refuse new attributes; the note still lands.
    """
    with contextlib.suppress(AttributeError):
        exc.template_line = line  # type: ignore[attr-defined]
        exc.template_identifier = identifier  # type: ignore[attr-defined]
    exc.add_note(f"in template {identifier}, line {line}")


def template_line_of(exc: BaseException) -> int | None:
    """Return the template line a runtime failure was annotated with."""
    return getattr(exc, "template_line", None)
