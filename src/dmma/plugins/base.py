"""This module defines the abstract base class for plugins."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Plugin(ABC):
    """Abstract base class for all `dmma` plugins.

    Any class intended to function as a plugin must inherit from this base
    class. It defines the interface used by the
    [`PluginManager`][dmma.plugins.PluginManager] to find plugins that provide
    a requested method.

    Subclasses must implement the `is_supported` class method to indicate which
    named methods they provide. They can optionally override the
    `allows_discovery` class method if they should not be selected by the
    plugin manager when a method name is given without a plugin name.
    """

    @classmethod
    @abstractmethod
    def is_supported(cls, method: str) -> bool:
        """Verify if this plugin supports a specific named method.

        Args:
            method: The string identifier of the method to check for support.

        Returns:
            `True` if the plugin supports the specified method, `False` otherwise.
        """

    @classmethod
    def allows_discovery(cls) -> bool:
        """Determine if the plugin allows implicit discovery by method name.

        By default (`True`), plugins can be found by the
        [`PluginManager`][dmma.plugins.PluginManager] when a user provides only
        a method name (without specifying the plugin, e.g., `"method-name"`).
        Plugins that should only be used when explicitly named (e.g.,
        `"plugin-name/method-name"`) must override this method to return
        `False`.

        Returns:
            `True` if the plugin can be discovered implicitly by method name.
        """
        return True
