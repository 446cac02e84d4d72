"""Engine configuration.

Each engine takes a frozen dataclass — immutable after creation,
IDE-autocompletable, no string-key dict lookups. ``start(**overrides)``
style calls go through ``with_overrides`` so unknown keys fail loudly.
"""

import dataclasses
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from templar.errors import ConfigurationError

_C = TypeVar("_C")

HISTORY_MODES = frozenset({"push", "replace", "none"})


@dataclass(frozen=True, slots=True)
class TemplarConfig:
    """Template compiler and render delivery configuration.

    ``context_lines`` is how many lines either side of a failing line
    are logged when a template raises at runtime.
    """

    context_lines: int = 2
    debug: bool = False


@dataclass(frozen=True, slots=True)
class ForgeConfig:
    """Component registry configuration.

    ``<templar-user-card>`` resolves to ``{app_base}/{base_path}/user-card{extension}``,
    or ``user/card{extension}`` when ``nested_dirs`` is set. A ``resolver``
    replaces the whole derivation.
    """

    base_path: str = "./components/"
    extension: str = ".html"
    tag_prefix: str = "templar-"
    shadow_mode: str = "open"
    nested_dirs: bool = False
    resolver: Callable[..., str | None] | None = None
    app_base: str | None = None
    debug: bool = False


@dataclass(frozen=True, slots=True)
class RouterConfig:
    """Navigation engine configuration.

    All fields have sensible defaults. Override what you need::

        config = RouterConfig(root="#app", history_default="replace")
    """

    # Surface: selector | Element | zero-arg callable
    root: Any = None
    base_path: str = "./views/"
    extension: str = ".html"
    index: str = "index"
    # str | (ctx) -> str; None means {base_path}404{extension}
    wildcard: str | Callable[..., str] | None = None
    app_base: str | None = None
    link_selector: str | None = "a[href]:not([download])"
    history_default: str = "push"
    debug: bool = False
    on_error: Callable[..., Any] | None = None

    # Transitions: a name in ``transitions`` or an inline pair
    transition: Any = None
    transitions: Mapping[str, Any] = field(default_factory=dict)

    # Try a full native page load instead of rendering the wildcard view
    fallback_to_native_on_miss: bool = False

    def __post_init__(self) -> None:
        if self.history_default not in HISTORY_MODES:
            msg = (
                f"history_default must be one of {sorted(HISTORY_MODES)}, "
                f"got {self.history_default!r}"
            )
            raise ConfigurationError(msg)


def with_overrides(config: _C, overrides: Mapping[str, Any]) -> _C:
    """Return a copy of *config* with *overrides* applied.

    Raises ``ConfigurationError`` naming any key the config does not have.
    """
    if not overrides:
        return config
    known = {f.name for f in dataclasses.fields(config)}  # type: ignore[arg-type]
    unknown = sorted(set(overrides) - known)
    if unknown:
        msg = f"Unknown {type(config).__name__} option(s): {', '.join(unknown)}"
        raise ConfigurationError(msg)
    return dataclasses.replace(config, **overrides)  # type: ignore[type-var]
