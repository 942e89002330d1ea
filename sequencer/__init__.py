"""Smart Sequencer: record and replay desktop UI interactions through a native helper."""

# Import key modules for easy access
from . import config_loader as config_loader
from . import scenario as scenario

# Version information
__version__ = "0.1.0"
__author__ = "Smart Sequencer Team"

# Expose commonly used classes
from .config_loader import load_config as load_config
from .ipc import HelperProcess as HelperProcess
from .ipc import MessageChannel as MessageChannel
from .ipc import NativeActionClient as NativeActionClient
from .scenario import ExecutionEngine as ExecutionEngine
from .scenario import ScenarioManager as ScenarioManager
from .scenario import ScenarioStore as ScenarioStore

__all__ = [
    "config_loader",
    "scenario",
    "load_config",
    "HelperProcess",
    "MessageChannel",
    "NativeActionClient",
    "ExecutionEngine",
    "ScenarioManager",
    "ScenarioStore",
]
