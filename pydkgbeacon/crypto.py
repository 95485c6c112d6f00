import collections
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from py_ecc.secp256k1 import secp256k1

from . import util

NONCE_SIZE = 12

EncryptionKeyPair = collections.namedtuple('EncryptionKeyPair', ('secret', 'public_key'))


def public_key_from_secret(secret: int) -> (int, int):
    util.validate_private_value(secret)
    return secp256k1.multiply(secp256k1.G, secret)


def generate_keypair() -> EncryptionKeyPair:
    secret = util.random_private_value()
    return EncryptionKeyPair(secret=secret, public_key=public_key_from_secret(secret))


def derive_shared_key(secret: int, public_key: (int, int)) -> bytes:
    # ECDH; both sides arrive at secret_a * secret_b * G
    util.validate_private_value(secret)
    util.validate_curve_point(public_key)
    S = secp256k1.multiply(public_key, secret)
    return util.keccak256(S[0].to_bytes(32, byteorder='big'))


def encrypt(key: bytes, message: bytes, associated_data: bytes = b'') -> bytes:
    nonce = os.urandom(NONCE_SIZE)
    return (nonce +  # 12 byte GCM nonce
            AESGCM(key).encrypt(nonce, message, associated_data))  # ciphertext with 16 byte tag


def decrypt(key: bytes, ciphertext: bytes, associated_data: bytes = b'') -> bytes:
    if len(ciphertext) < NONCE_SIZE + 16:
        return None
    nonce, body = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, body, associated_data)
    except InvalidTag:
        return None
