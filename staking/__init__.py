"""
BTC Staking - Staking Orchestration

outputs: Taproot output and address derivation for staking script sets.
core: the Staking orchestrator and StakerInfo.
"""
