"""
Plugin Registry for PostureScope data sources.

Two layers:

* a class-level **catalogue** that plugin classes join at import time via
  the :meth:`PluginRegistry.register` decorator, keyed by their enumerated
  :class:`~posturescope.plugins.base.PluginName`;
* **registry instances** holding one configured plugin object per name.  An
  instance is built explicitly (usually with :meth:`PluginRegistry.from_catalogue`)
  and handed to the orchestration context, so tests can swap any plugin for
  a fake without touching process-wide state.
"""

from __future__ import annotations

from typing import Iterator, Mapping, Optional, Type

from posturescope.config import Settings
from posturescope.plugins.base import (
    FANOUT_PLUGINS,
    MANDATORY_PLUGIN,
    BasePlugin,
    PluginName,
)


class PluginRegistry:
    """Maps every enumerated plugin name to a plugin instance.

    Example::

        @PluginRegistry.register
        class TlsPlugin(BasePlugin):
            name = PluginName.TLS
            ...

        registry = PluginRegistry.from_catalogue(settings)
        dns = registry.get(PluginName.DNS)
    """

    _catalogue: dict[PluginName, Type[BasePlugin]] = {}

    @classmethod
    def register(cls, plugin_class: Type[BasePlugin]) -> Type[BasePlugin]:
        """Class decorator adding *plugin_class* to the catalogue.

        Raises:
            TypeError: If the class does not declare a :class:`PluginName`.
        """
        name = getattr(plugin_class, "name", None)
        if not isinstance(name, PluginName):
            raise TypeError(
                f"{plugin_class.__name__} must declare a PluginName as 'name'."
            )
        cls._catalogue[name] = plugin_class
        return plugin_class

    @classmethod
    def catalogue(cls) -> dict[PluginName, Type[BasePlugin]]:
        """Return a copy of the registered plugin classes."""
        return dict(cls._catalogue)

    @classmethod
    def from_catalogue(
        cls,
        settings: Optional[Settings] = None,
        overrides: Optional[Mapping[PluginName, BasePlugin]] = None,
    ) -> "PluginRegistry":
        """Instantiate every catalogued plugin with *settings*.

        Args:
            settings:  Settings passed to each plugin constructor.
            overrides: Ready-made instances that replace catalogue entries.
        """
        import posturescope.plugins  # noqa: F401 -- populates the catalogue

        plugins: dict[PluginName, BasePlugin] = {
            name: plugin_cls(settings) for name, plugin_cls in cls._catalogue.items()
        }
        plugins.update(overrides or {})
        return cls(plugins)

    # -- Instance API ----------------------------------------------------------

    def __init__(self, plugins: Mapping[PluginName, BasePlugin]) -> None:
        missing = [name.value for name in PluginName if name not in plugins]
        if missing:
            raise ValueError(f"No plugin configured for: {', '.join(missing)}")
        for name, plugin in plugins.items():
            if plugin.name is not name:
                raise ValueError(
                    f"Plugin registered as {name.value} reports name {plugin.name.value}."
                )
        if not plugins[MANDATORY_PLUGIN].mints_scan_id:
            raise ValueError("The DNS plugin must mint the scan correlation key.")
        self._plugins: dict[PluginName, BasePlugin] = dict(plugins)

    def get(self, name: PluginName) -> BasePlugin:
        """Return the plugin for *name*.

        Raises:
            KeyError: If *name* is not an enumerated plugin.
        """
        return self._plugins[PluginName(name)]

    @property
    def dns(self) -> BasePlugin:
        return self._plugins[MANDATORY_PLUGIN]

    def fanout(self) -> list[BasePlugin]:
        """Return the non-DNS plugins in enumeration order."""
        return [self._plugins[name] for name in FANOUT_PLUGINS]

    def __iter__(self) -> Iterator[BasePlugin]:
        return (self._plugins[name] for name in PluginName)

    def __len__(self) -> int:
        return len(self._plugins)
