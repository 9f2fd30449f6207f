"""Monte Carlo projection of portfolio value with injectable random sources."""
