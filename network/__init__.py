"""
BTC Staking - Chain Data Providers

Bitcoin Core JSON-RPC access for UTXOs and fee estimates.
"""
