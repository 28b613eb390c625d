"""Extending `dmma` with plugins.

The `dmma.plugins` module provides the framework for replacing the algorithm
that computes the next design in each iteration. The
[`Optimizer`][dmma.optimization.Optimizer] owns the outer loop: it evaluates
the problem, computes the move-limit box, writes the iteration log and reports
results. The step itself is delegated to a
[`SubproblemSolver`][dmma.plugins.subproblem.base.SubproblemSolver], created by
a [`SubproblemSolverPlugin`][dmma.plugins.subproblem.base.SubproblemSolverPlugin].

**Plugin Management and Discovery**

The [`PluginManager`][dmma.plugins.PluginManager] class holds the available
plugins. Besides the built-in plugins, it discovers plugins using Python's
standard entry points mechanism.

Plugins can implement multiple named methods. To request a specific method
(`method-name`) from a particular plugin (`plugin-name`), use the format
`"plugin-name/method-name"`. If only a method name is provided, the plugin
manager searches through all registered plugins (that allow discovery) for one
that supports the method. Using `"plugin-name/default"` selects the default
method offered by that plugin, specifying `"default"` without a plugin name is
not permitted.

**Pre-installed Plugins Included with `dmma`**

- **Subproblem solver:** The [`mma`][dmma.plugins.subproblem.mma.MMASolverPlugin]
  plugin, a distributed implementation of the method of moving asymptotes.
"""

from ._manager import PluginManager, PluginType
from .base import Plugin

__all__ = [
    "Plugin",
    "PluginManager",
    "PluginType",
]
