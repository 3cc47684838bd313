"""
BTC Staking - Script Exceptions

This module defines custom exceptions for script construction and parsing.
"""


class ScriptError(Exception):
    """Base exception for script-related errors."""
    pass


class ScriptBuildError(ScriptError):
    """Exception raised when staking scripts cannot be built from the given inputs."""
    pass


class InvalidScriptError(ScriptError):
    """Exception raised for malformed scripts or script tree leaves."""
    pass
