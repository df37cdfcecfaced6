"""
Data-source plugins -- import all plugins for catalogue registration.

Importing this package loads every concrete plugin class and, through the
:func:`@PluginRegistry.register <PluginRegistry.register>` decorator, adds
it to the plugin catalogue.  :meth:`PluginRegistry.from_catalogue` imports
the package itself, so callers never have to.
"""

from posturescope.plugins.base import (
    FANOUT_PLUGINS,
    MANDATORY_PLUGIN,
    BasePlugin,
    PluginName,
    PluginResult,
    PluginStatus,
)
from posturescope.plugins.registry import PluginRegistry
from posturescope.plugins.dns_security import DnsSecurityPlugin
from posturescope.plugins.tls import TlsPlugin
from posturescope.plugins.crtsh import CrtshPlugin
from posturescope.plugins.chaos import ChaosPlugin
from posturescope.plugins.shodan import ShodanPlugin
from posturescope.plugins.otx import OtxPlugin
from posturescope.plugins.whois_lookup import WhoisPlugin
from posturescope.plugins.abusech import AbuseChPlugin

__all__: list[str] = [
    "FANOUT_PLUGINS",
    "MANDATORY_PLUGIN",
    "BasePlugin",
    "PluginName",
    "PluginResult",
    "PluginStatus",
    "PluginRegistry",
    "DnsSecurityPlugin",
    "TlsPlugin",
    "CrtshPlugin",
    "ChaosPlugin",
    "ShodanPlugin",
    "OtxPlugin",
    "WhoisPlugin",
    "AbuseChPlugin",
]
