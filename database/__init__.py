"""PostgreSQL persistence: schema, connection, repositories and the ArbitrageStore facade."""
