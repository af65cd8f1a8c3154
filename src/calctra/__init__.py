"""Calctra — a decentralized compute market core.

Matches provider-offered compute resources with computation requests
under capacity, price, location and reputation constraints, and tracks
each engagement through its lifecycle.
"""

__version__ = "0.1.0"
