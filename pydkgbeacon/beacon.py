"""Threshold randomness beacon.

Every committee member signs a nonce with its DKG key share (BLS, signatures
in G2); any ``threshold`` valid shares from distinct members are combined by
Lagrange interpolation into the group signature on that nonce, which anyone
can check against the group verification key alone.
"""
import collections
import functools
import logging

from py_ecc import optimized_bls12_381 as bls12_381
from py_ecc.bls import G2ProofOfPossession as bls
from py_ecc.bls.g2_primitives import G2_to_signature, signature_to_G2

from . import sharing, util

Share = collections.namedtuple('Share', ('creator', 'nonce', 'data'))


class Randomness(collections.namedtuple('Randomness', ('nonce', 'data'))):
    @property
    def value(self) -> bytes:
        return util.keccak256(self.data)


def verify_randomness(group_key: bytes, randomness: Randomness) -> bool:
    return bls.Verify(group_key, randomness.nonce, randomness.data)


class RandomnessVerifier:
    def __init__(self, group_key: bytes):
        self.group_key = group_key

    def verify(self, randomness: Randomness) -> bool:
        return verify_randomness(self.group_key, randomness)


class KeyBox:
    def __init__(self, index: int, secret_share: int, verify_keys: tuple, group_key: bytes, threshold: int):
        util.validate_index(index, len(verify_keys))
        util.validate_scalar(secret_share)
        if not 0 < threshold <= len(verify_keys):
            raise ValueError('threshold {} not in [1, {}]'.format(threshold, len(verify_keys)))

        self.index = index
        self.secret_share = secret_share
        self.verify_keys = tuple(verify_keys)
        self.verifier = RandomnessVerifier(group_key)
        self._threshold = threshold

    def __repr__(self):
        return '<KeyBox {} of {} (t={})>'.format(self.index, self.n_members, self._threshold)

    @property
    def n_members(self) -> int:
        return len(self.verify_keys)

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def group_key(self) -> bytes:
        return self.verifier.group_key

    def generate_share(self, nonce: bytes) -> Share:
        if not isinstance(nonce, bytes):
            raise TypeError('nonce must be bytes, not {}'.format(type(nonce).__name__))
        return Share(creator=self.index, nonce=nonce, data=bls.Sign(self.secret_share, nonce))

    def verify_share(self, share: Share) -> bool:
        creator = share.creator
        if not isinstance(creator, int) or isinstance(creator, bool) or not 1 <= creator <= self.n_members:
            return False
        return bls.Verify(self.verify_keys[creator - 1], share.nonce, share.data)

    def combine_shares(self, shares) -> Randomness:
        shares = list(shares)

        if not shares:
            return None

        if not all(self.verify_share(s) for s in shares):
            logging.debug('refusing to combine shares: invalid share among {}'.format(
                [s.creator for s in shares]))
            return None

        by_creator = {}
        for share in shares:
            by_creator.setdefault(share.creator, share)

        if len(by_creator) < self._threshold:
            logging.debug('refusing to combine shares: {} distinct creators but threshold is {}'.format(
                len(by_creator), self._threshold))
            return None

        nonce = shares[0].nonce
        if any(s.nonce != nonce for s in shares):
            logging.debug('refusing to combine shares: nonces differ')
            return None

        creators = sorted(by_creator)[:self._threshold]
        signature = functools.reduce(bls12_381.add, (
            bls12_381.multiply(signature_to_G2(by_creator[c].data), sharing.lagrange_coefficient(c, creators))
            for c in creators
        ))

        return Randomness(nonce=nonce, data=G2_to_signature(signature))

    def verify_randomness(self, randomness: Randomness) -> bool:
        return self.verifier.verify(randomness)
