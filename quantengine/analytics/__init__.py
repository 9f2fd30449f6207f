"""Statistical primitives shared by the risk, simulation and backtest packages."""
