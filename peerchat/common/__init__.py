# Common utilities
from peerchat.common.dispatch import SerialDispatcher as SerialDispatcher
from peerchat.common.logging_utils import setup_logger as setup_logger
from peerchat.common.mixins import Configurable as Configurable

__all__ = ["Configurable", "SerialDispatcher", "setup_logger"]
