"""
RemixRite - Derivative Registration & Royalty Settlement

Combines ledger-registered clips into remixes, registers each remix as a
derivative asset on the provenance ledger and splits the creation fee
among the original clips' owners.
"""

__version__ = "1.0.0"
__author__ = "RemixRite Team"
__description__ = "Derivative Registration & Royalty Settlement"
