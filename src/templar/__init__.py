"""Templar — templates, reactive components and client-side routing.

Three engines share one template compiler:

- ``Templar`` compiles markup-with-expressions into cached render units
  and delivers them into a target surface.
- ``Forge`` defines prefixed custom elements lazily; each is a
  ``BaseElement`` that re-renders its shadow root when its data changes.
- ``Router`` maps paths to views and renders them with cancellation,
  transitions and history.

Basic usage::

    from templar import DictLoader, Router, RouterConfig, Templar, Window

    window = Window("http://localhost/", body='<main id="app"></main>')
    templar = Templar(DictLoader({
        "http://localhost/views/index.html": "<h1>Hello, ${params.get('name', 'world')}!</h1>",
    }))
    router = Router(window, templar, config=RouterConfig(root="#app")).start()
    await router.go("/?name=Ada")
"""

import importlib

__version__ = "1.0.0"
__all__ = [
    "BaseElement",
    "ChoiceLoader",
    "CompileError",
    "ConfigurationError",
    "DictLoader",
    "FileSystemLoader",
    "Forge",
    "ForgeConfig",
    "HttpLoader",
    "NavigationStageError",
    "ResolveResult",
    "RetrievalError",
    "RouteDefinition",
    "Router",
    "RouterConfig",
    "Templar",
    "TemplarConfig",
    "TemplarError",
    "Transition",
    "Window",
    "compile_template",
    "define_element",
    "escape_html",
]

# Public name -> defining module. Kept in sync with __all__ by tests.
_LAZY_IMPORTS: dict[str, str] = {
    "BaseElement": "templar.components.host",
    "define_element": "templar.components.host",
    "Forge": "templar.components.registry",
    "TemplarConfig": "templar.config",
    "ForgeConfig": "templar.config",
    "RouterConfig": "templar.config",
    "TemplarError": "templar.errors",
    "ConfigurationError": "templar.errors",
    "CompileError": "templar.errors",
    "RetrievalError": "templar.errors",
    "NavigationStageError": "templar.errors",
    "Window": "templar.browser",
    "Templar": "templar.templating.delivery",
    "compile_template": "templar.templating.compiler",
    "escape_html": "templar.templating.compiler",
    "ChoiceLoader": "templar.templating.loaders",
    "DictLoader": "templar.templating.loaders",
    "FileSystemLoader": "templar.templating.loaders",
    "HttpLoader": "templar.templating.loaders",
    "Router": "templar.routing.navigator",
    "RouteDefinition": "templar.routing.route",
    "ResolveResult": "templar.routing.context",
    "Transition": "templar.routing.transitions",
}


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import templar`` fast while providing a clean top-level API.
    """
    module_name = _LAZY_IMPORTS.get(name)
    if module_name is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)
    return getattr(importlib.import_module(module_name), name)
