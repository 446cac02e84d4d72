"""Transition pairs bracketing a content replacement.

A transition has an ``out`` phase run against the current content and
an ``in`` phase run one paint frame after the new content lands. Both
are optional and may be sync or async::

    async def fade_out(t: TransitionContext) -> None:
        t.root.set_attribute("class", "fade-out")
        await t.wait(t.root)

    router = Router(window, templar, config=RouterConfig(
        transition="fade",
        transitions={"fade": Transition(out=fade_out, in_=fade_in)},
    ))

Failures inside a phase are logged and never abort the navigation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import anyio

from templar._internal.invoke import invoke
from templar.dom import Event, Node

logger = logging.getLogger("templar.route")

TRANSITION_TIMEOUT = 1.0
_END_EVENTS = ("transitionend", "animationend")


async def wait_for_transition_end(element: Node, timeout: float = TRANSITION_TIMEOUT) -> bool:
    """Wait for ``transitionend``/``animationend`` on *element*.

    Returns ``True`` if an end event arrived, ``False`` on timeout.
    """
    ended = anyio.Event()

    def on_end(event: Event) -> None:
        ended.set()

    for name in _END_EVENTS:
        element.add_event_listener(name, on_end)
    try:
        with anyio.move_on_after(timeout):
            await ended.wait()
    finally:
        for name in _END_EVENTS:
            element.remove_event_listener(name, on_end)
    return ended.is_set()


@dataclass(frozen=True, slots=True)
class TransitionContext:
    root: Any
    ctx: Any
    wait: Callable[..., Any] = wait_for_transition_end


@dataclass(frozen=True, slots=True)
class Transition:
    """An ``out``/``in_`` phase pair. Either may be ``None``."""

    out: Callable[[TransitionContext], Any] | None = None
    in_: Callable[[TransitionContext], Any] | None = None

    @classmethod
    def coerce(cls, value: Any) -> Transition | None:
        """Accept a ``Transition`` or a mapping with ``out``/``in`` keys."""
        if isinstance(value, Transition):
            return value if (value.out or value.in_) else None
        if isinstance(value, Mapping):
            out, in_ = value.get("out"), value.get("in", value.get("in_"))
            return cls(out, in_) if (out or in_) else None
        return None


def pick_transition(
    choice: Any,
    default: Any,
    registry: Mapping[str, Any],
) -> Transition | None:
    """Route-specific choice, else the default; names look up *registry*."""
    pick = choice if choice is not None else default
    if not pick:
        return None
    if isinstance(pick, str):
        return Transition.coerce(registry.get(pick))
    return Transition.coerce(pick)


async def run_phase(
    phase: Callable[[TransitionContext], Any] | None,
    root: Any,
    ctx: Any,
) -> None:
    if phase is None:
        return
    try:
        await invoke(phase, TransitionContext(root=root, ctx=ctx))
    except Exception:
        logger.warning("Transition phase %r failed", phase, exc_info=True)
