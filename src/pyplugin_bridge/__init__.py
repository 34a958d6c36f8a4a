"""Python plugin bridge for block-wise time series processing.

Lets the host pipeline hand each spatial block to user-supplied python code
(``forcepy_init`` / ``forcepy_`` / ``forcepy``) and copy the validated result
back into its output buffers.
"""

from .bridge import deregister_python, output_bands, register_python
from .config import BridgeConfig, PluginSiteConfig, build_config, load_config
from .contract import PluginDescriptor
from .dates import DateRecord, date_to_ce
from .driver import Completion, ard_python_plugin, tsa_python_plugin

__all__ = [
    "BridgeConfig",
    "Completion",
    "DateRecord",
    "PluginDescriptor",
    "PluginSiteConfig",
    "ard_python_plugin",
    "build_config",
    "date_to_ce",
    "deregister_python",
    "load_config",
    "output_bands",
    "register_python",
    "tsa_python_plugin",
]
