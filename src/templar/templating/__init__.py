"""Templating — template compiler, loaders and render delivery."""

from templar.templating.compiler import (
    CompiledUnit,
    RenderHooks,
    compile_template,
    escape_html,
    fingerprint,
)
from templar.templating.delivery import Templar
from templar.templating.loaders import ChoiceLoader, DictLoader, FileSystemLoader, HttpLoader, Loader

__all__ = [
    "ChoiceLoader",
    "CompiledUnit",
    "DictLoader",
    "FileSystemLoader",
    "HttpLoader",
    "Loader",
    "RenderHooks",
    "Templar",
    "compile_template",
    "escape_html",
    "fingerprint",
]
