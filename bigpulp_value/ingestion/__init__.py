"""
Ingestion layer — input documents in, validated observations out.

Submodules:
  loader         — Metadata, offers index and sales index → trait lookup,
                   capped ask observations and sale observations
  exchange_rate  — Optional XCH/USD lookup (CoinGecko)

Environment overrides (.env, gitignored):
  BIGPULP_FETCH_EXCHANGE_RATE  — 0 disables the XCH/USD lookup
"""
