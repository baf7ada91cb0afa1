"""
Robust statistics primitives (weighted median/quantile/mean, MAD, z-score).

All functions are pure and tolerate empty or single-element input.
"""
