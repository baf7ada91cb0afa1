"""
Trait valuation core.

Modules
-------
weights      Time-decay, outlier, flag and delusion weighting of observations.
fitter       Baselines, winsorized shrunk trait deltas and residual sigma.
prior        Frequency-based rarity prior for traits the market never priced.
gate         Fatal model integrity checks.
diagnostics  Non-fatal health report: top deltas, validation error, warnings.
estimate     Value one NFT against an emitted model artifact.
"""
