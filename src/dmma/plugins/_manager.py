"""The plugin manager."""

from __future__ import annotations

from functools import cache
from importlib.metadata import entry_points
from typing import TYPE_CHECKING, Any, Final, Literal

from .subproblem.base import SubproblemSolverPlugin
from .subproblem.mma import MMASolverPlugin

if TYPE_CHECKING:
    from dmma.plugins.base import Plugin


_PLUGIN_TYPES: Final = {
    "subproblem_solver": SubproblemSolverPlugin,
}

_BUILTIN_PLUGINS: Final = {
    "subproblem_solver": {"mma": MMASolverPlugin},
}

PluginType = Literal["subproblem_solver"]
"""Represents the valid types of plugins supported by `dmma`.

* `"subproblem_solver"`: Plugins computing the next design from the current
  design, the gradients and the move-limit box
  ([`SubproblemSolverPlugin`][dmma.plugins.subproblem.base.SubproblemSolverPlugin]).
"""


class PluginManager:
    """Manages the discovery and retrieval of `dmma` plugins.

    The `PluginManager` holds the built-in plugins of `dmma`, and plugins
    found via Python's entry points mechanism. Upon initialization, the
    manager scans for entry points defined under the `dmma.plugins.*` groups
    (e.g., `dmma.plugins.subproblem_solver`).

    Plugins are retrieved with the
    [`get_plugin`][dmma.plugins.PluginManager.get_plugin] method, based on
    their type and a method name that they support. Plugins can also be added
    at runtime with [`add_plugin`][dmma.plugins.PluginManager.add_plugin].

    **Example: Registering a Custom Subproblem Solver**

    To make a custom solver plugin available to `dmma`, define an entry point
    in your package's `pyproject.toml`:

    ```toml
    [project.entry-points."dmma.plugins.subproblem_solver"]
    my_solver = "my_package.my_module:MySolverPlugin"
    ```

    The solver is then available as `"my_solver/some_method"`, or as
    `"some_method"` if discovery is allowed and no other plugin provides it.
    """

    def __init__(self) -> None:
        """Initialize the plugin manager."""
        self._plugins: dict[PluginType, dict[str, type[Plugin]]] = {
            "subproblem_solver": {},
        }

        for plugin_type in self._plugins:
            for name, plugin in _BUILTIN_PLUGINS[plugin_type].items():
                self.add_plugin(plugin_type, name, plugin)
            for name, plugin in _from_entry_points(plugin_type).items():
                if name.lower() not in _BUILTIN_PLUGINS[plugin_type]:
                    self.add_plugin(plugin_type, name, plugin)

    def add_plugin(
        self,
        plugin_type: PluginType,
        name: str,
        plugin: type[Plugin],
        *,
        prioritize: bool = False,
    ) -> None:
        """Add a plugin to the manager.

        Plugins added with `prioritize=True` are searched first when a method
        is requested without a plugin name.

        Args:
            plugin_type: The category of the plugin.
            name:        The name of the plugin.
            plugin:      The plugin class.
            prioritize:  Search this plugin before the others.

        Raises:
            ValueError: If a plugin with the same name was already added.
            TypeError:  If the plugin does not derive from the right base class.
        """
        if not issubclass(plugin, _PLUGIN_TYPES[plugin_type]):
            msg = f"Incorrect type for {plugin_type} plugin `{name}`: {plugin}"
            raise TypeError(msg)
        name_lower = name.lower()
        if name_lower in self._plugins[plugin_type]:
            msg = f"Duplicate plugin name: {name_lower}"
            raise ValueError(msg)
        if prioritize:
            plugins = self._plugins[plugin_type]
            self._plugins[plugin_type] = {name_lower: plugin}
            self._plugins[plugin_type].update(dict(plugins))
        else:
            self._plugins[plugin_type][name_lower] = plugin

    def _get_plugin(
        self, plugin_type: PluginType, method: str
    ) -> tuple[str, Any] | None:
        split_method = method.split("/", maxsplit=1)
        if len(split_method) > 1:
            plugin_name, method = split_method
            plugin = self._plugins[plugin_type].get(plugin_name.lower())
            if plugin and plugin.is_supported(method):
                return plugin_name.lower(), plugin
        else:
            method = split_method[0]
            if method == "default":
                msg = "Cannot specify 'default' method without a plugin name"
                raise ValueError(msg)
            for plugin_name, plugin in self._plugins[plugin_type].items():
                if plugin.allows_discovery() and plugin.is_supported(method):
                    return plugin_name, plugin
        return None

    def get_plugin(self, plugin_type: PluginType, method: str) -> Any:  # noqa: ANN401
        """Retrieve a plugin class by its type and a supported method name.

        The `method` argument can be specified in two ways:

        1.  **Explicit Plugin:** Use the format `"plugin-name/method-name"`.
        2.  **Implicit Plugin:** Provide only the `method-name`. The manager
            returns the first plugin that allows discovery (see
            [`Plugin.allows_discovery`][dmma.plugins.base.Plugin.allows_discovery])
            and supports the method.

        Args:
            plugin_type: The category of the plugin.
            method:      The name of the method the plugin must support, potentially
                         prefixed with the plugin name and a slash (`/`).

        Returns:
            The plugin class that matches the criteria.

        Raises:
            ValueError: If no matching plugin is found for the given type and
                        method, or if "default" is used as a method name without
                        specifying a plugin name.
        """
        plugin = self._get_plugin(plugin_type, method)
        if plugin is not None:
            return plugin[1]
        msg = f"Method not found: {method}"
        raise ValueError(msg)

    def get_plugin_name(self, plugin_type: PluginType, method: str) -> str | None:
        """Return the name of the plugin that supports a given method.

        Args:
            plugin_type: The category of the plugin.
            method:      The name of the method to check, potentially prefixed
                         with the plugin name and a slash (`/`).

        Returns:
            The name of a matching plugin supporting the specified method, or `None`.
        """
        plugin = self._get_plugin(plugin_type, method)
        if plugin is None:
            return None
        return plugin[0]


@cache
def _from_entry_points(plugin_type: str) -> dict[str, type[Plugin]]:
    plugins: dict[str, type[Plugin]] = {}
    for entry_point in entry_points().select(group=f"dmma.plugins.{plugin_type}"):
        plugins[entry_point.name] = entry_point.load()
    return plugins
