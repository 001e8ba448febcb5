from .command import CancelToken, CommandOutput, TaskContext, run_command, subprocess_executor
from .publish import command_publisher
from .runner import TaskRunner
from .toolchain import setup
from .upload import upload

__all__ = [
    "CancelToken",
    "CommandOutput",
    "TaskContext",
    "TaskRunner",
    "command_publisher",
    "run_command",
    "setup",
    "subprocess_executor",
    "upload",
]
