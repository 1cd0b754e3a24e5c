from .config_manager import Config
from .logger_utils import Log, configure_logging
from .metrics_tracker import Metrics

__all__ = ["Config", "Log", "configure_logging", "Metrics"]
