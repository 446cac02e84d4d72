"""Hook invocation for user callables that may or may not be coroutines.

Route ``resolve``/``render`` steps, transition phases, custom resolvers,
``on_error`` and ``ready()`` callbacks are all accepted as plain
functions or ``async def``. Engines never branch on that themselves::

    data = await invoke(route.resolve, params, ctx)
"""

import inspect
from typing import Any


async def invoke(hook: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *hook*; if it hands back an awaitable, await it.

    ``def resolve(params, ctx)`` and ``async def resolve(params, ctx)``
    both yield their plain return value here.
    """
    outcome = hook(*args, **kwargs)
    if inspect.isawaitable(outcome):
        return await outcome
    return outcome
