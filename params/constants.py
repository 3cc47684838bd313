"""
BTC Staking - Protocol Constants
"""

# Smallest value the unbonding output may carry, in satoshis. The minimum
# staking amount must exceed the unbonding fee by more than this.
MIN_UNBONDING_OUTPUT_VALUE = 1000

# Bitcoin's dust threshold for standard outputs, in satoshis
BTC_DUST_SAT = 546
