from dpengine.core.config.manager import ConfigManager
from dpengine.core.config.models import EngineConfigFile
from dpengine.core.config.paths import ConfigFsPaths

__all__ = ["ConfigFsPaths", "ConfigManager", "EngineConfigFile"]
