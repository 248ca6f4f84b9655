"""
Pricing Core Package

Resolves B2B unit prices from competing, time-boxed price sources
(overrides, contract, customer-specific, volume, promotional and standard
price lists), converts them between currencies and reconciles externally
supplied price lists into the live pricing state.
"""

__version__ = "3.0.0"
