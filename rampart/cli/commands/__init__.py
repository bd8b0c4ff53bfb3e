"""Implementations behind the ``rampart`` subcommands."""
