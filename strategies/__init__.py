"""
Trading Strategies Module

- implementations.funding_arbitrage: cross-venue funding rate arbitrage
  (analyzer, risk limits, execution coordinator, position supervisor)
- control: FastAPI operational surface over a running engine
"""
