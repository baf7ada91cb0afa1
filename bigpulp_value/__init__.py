"""
bigpulp_value — empirical-Bayes trait pricing for the Wojak Farmers Plot NFT collection.

Builds ``value_model_v2.json`` (per-trait log-price deltas for an ask model
and a sales model, plus a rarity prior) and its diagnostics document from
the collection metadata, the offers index and the sales index.
"""

__version__ = "2.0.0"
