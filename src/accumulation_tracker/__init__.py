"""Accumulation Tracker - smart-money accumulation signals from on-chain transfers."""

__version__ = "0.1.0"
