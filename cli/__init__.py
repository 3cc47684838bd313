"""
BTC Staking - Command Line Interface
"""

__version__ = "0.1.0"
