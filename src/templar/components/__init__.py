"""Components — reactive custom elements and their lazy registry."""

from templar.components.host import UPDATED_EVENT, BaseElement, Binding, Lifecycle, define_element
from templar.components.registry import Forge, ResolverRequest

__all__ = [
    "UPDATED_EVENT",
    "BaseElement",
    "Binding",
    "Forge",
    "Lifecycle",
    "ResolverRequest",
    "define_element",
]
