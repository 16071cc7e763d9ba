from hoststack.adapters.shell.command import CommandResult, CommandRunner, run_command

__all__ = ["CommandResult", "CommandRunner", "run_command"]
