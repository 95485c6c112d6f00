"""Threshold distributed key generation and a randomness beacon on top of it.

Round material is posted to a :class:`~pydkgbeacon.ledger.Ledger`; each
committee member runs a :class:`~pydkgbeacon.dkg.DKGNode` whose result builds
the :class:`~pydkgbeacon.beacon.KeyBox` used to sign and combine beacon shares.
"""
__version__ = '0.1.0.dev1'
