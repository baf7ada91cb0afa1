"""
bigpulp_value.reporting — Artifact assembly and deterministic export.

Modules:
  artifact — Value model document layout (params, models, priors, market,
             input hashes, build metadata).
  export   — Natural key ordering, SHA-256 input hashing, atomic JSON writes.
"""
