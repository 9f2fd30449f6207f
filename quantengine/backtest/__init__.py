"""Backtesting engine and strategy evaluation tools.
Provides the bar-by-bar simulator, equity/trade metrics, a small signal library and concurrent sweeps.
"""
