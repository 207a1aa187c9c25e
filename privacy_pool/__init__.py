"""
Privacy pool ledger: fixed-denomination deposit/withdraw pools over an
incremental Merkle accumulator, behind a compliance access gate.

⚠️ The default ``mock`` proof verifier accepts forgeable proofs. Select the
``snark`` verifier (``PRIVACY_POOL_VERIFIER=snark``) outside of tests and
simulations.
"""

__version__ = "0.1.0"
