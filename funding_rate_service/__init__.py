"""
Market data access for the arbitrage engine (current and historical
funding rates, order books) and the periodic task runner.
"""
