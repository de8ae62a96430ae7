"""
Strategy Implementations

- funding_arbitrage: Cross-venue funding rate arbitrage
"""
