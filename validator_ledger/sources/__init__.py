"""
Upstream data sources: Solana RPC (primary), Jito (MEV), Dune (secondary bulk).
"""
