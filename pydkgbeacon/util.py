import functools
import logging
import os
import re

from secrets import SystemRandom

from Crypto.Hash import keccak
from py_ecc import optimized_bls12_381 as bls12_381
from py_ecc.bls.g2_primitives import G1_to_pubkey, pubkey_to_G1
from py_ecc.secp256k1 import secp256k1

random = SystemRandom()

SCALAR_ORDER = bls12_381.curve_order
G1_POINT_SIZE = 48
INDEX_SIZE = 4


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


########################
# Validation utilities #
########################


def validate_private_value(value: int):
    if value < 0 or value >= secp256k1.N:
        raise ValueError('invalid EC private value {:064x}'.format(value))


def validate_scalar(value: int):
    if not isinstance(value, int) or value < 0 or value >= SCALAR_ORDER:
        raise ValueError('invalid field scalar {!r}'.format(value))


def validate_polynomial(polynomial: tuple):
    for i, coeff in enumerate(polynomial):
        try:
            validate_scalar(coeff)
        except ValueError:
            raise ValueError('invalid x^{} coefficient {!r}'.format(i, coeff))


def validate_curve_point(point: (int, int)):
    if (
        any(coord < 0 or coord >= secp256k1.P for coord in point) or
        pow(point[1], 2, secp256k1.P) != (pow(point[0], 3, secp256k1.P) + 7) % secp256k1.P
    ) and point != (0, 0):  # (0, 0) is used to represent group identity element
        raise ValueError('invalid EC point {}'.format(point))


def validate_eth_address(addr: int):
    if addr < 0 or addr >= 2**160:
        raise ValueError('invalid Ethereum address {:040x}'.format(addr))


def validate_signature(signature: 'rsv triplet'):
    r, s, v = signature
    if (any(coord < 0 or coord >= secp256k1.P for coord in (r, s)) or
       v not in (27, 28)):
        raise ValueError('invalid signature {}'.format(signature))


def validate_index(index: int, n_members: int):
    if not isinstance(index, int) or isinstance(index, bool) or not 1 <= index <= n_members:
        raise ValueError('participant index {!r} not in [1, {}]'.format(index, n_members))


########################
# Conversion utilities #
########################


def private_value_to_bytes(value: int) -> bytes:
    validate_private_value(value)
    return value.to_bytes(32, byteorder='big')


def bytes_to_private_value(bts: bytes) -> int:
    priv = int.from_bytes(bts, byteorder='big')
    validate_private_value(priv)
    return priv


def scalar_to_bytes(value: int) -> bytes:
    validate_scalar(value)
    return value.to_bytes(32, byteorder='big')


def bytes_to_scalar(bts: bytes) -> int:
    if len(bts) != 32:
        raise ValueError('unexpected length {} bytes'.format(len(bts)))
    value = int.from_bytes(bts, byteorder='big')
    validate_scalar(value)
    return value


def curve_point_to_bytes(point: (int, int)) -> bytes:
    validate_curve_point(point)
    return sequence_256_bit_values_to_bytes(point)


def bytes_to_curve_point(bts: bytes) -> (int, int):
    if len(bts) != 64:
        raise ValueError('unexpected length {} bytes'.format(len(bts)))
    point = tuple(int.from_bytes(bts[i:i+32], byteorder='big') for i in (0, 32))
    validate_curve_point(point)
    return point


def g1_point_to_bytes(point) -> bytes:
    return G1_to_pubkey(point)


def bytes_to_g1_point(bts: bytes):
    if len(bts) != G1_POINT_SIZE:
        raise ValueError('unexpected length {} bytes'.format(len(bts)))
    point = pubkey_to_G1(bts)
    if not bls12_381.is_on_curve(point, bls12_381.b):
        raise ValueError('invalid G1 point {}'.format(bts.hex()))
    return point


def signature_to_bytes(signature: 'rsv triplet') -> bytes:
    validate_signature(signature)
    return b''.join(int.to_bytes(part, partsize, byteorder='big') for part, partsize in zip(signature, (32, 32, 1)))


def bytes_to_signature(bts: bytes) -> 'rsv triplet':
    if len(bts) != 65:
        raise ValueError('unexpected length {} bytes'.format(len(bts)))
    signature = tuple(int.from_bytes(bs, byteorder='big') for bs in (bts[0:32], bts[32:64], bts[64:]))
    validate_signature(signature)
    return signature


def address_to_bytes(addr: int) -> bytes:
    validate_eth_address(addr)
    return addr.to_bytes(20, byteorder='big')


def bytes_to_address(bts: bytes) -> int:
    if len(bts) != 20:
        raise ValueError('unexpected length {} bytes'.format(len(bts)))
    addr = int.from_bytes(bts, byteorder='big')
    validate_eth_address(addr)
    return addr


def index_to_bytes(index: int) -> bytes:
    return index.to_bytes(INDEX_SIZE, byteorder='big')


def polynomial_to_bytes(polynomial: tuple) -> bytes:
    validate_polynomial(polynomial)
    return sequence_256_bit_values_to_bytes(polynomial)


def bytes_to_polynomial(bts: bytes) -> tuple:
    if len(bts) % 32 != 0:
        raise ValueError('length {} not divisible by 32 bytes'.format(len(bts)))
    polynomial = tuple(int.from_bytes(bts[i:i+32], byteorder='big') for i in range(0, len(bts), 32))
    validate_polynomial(polynomial)
    return polynomial


def g1_point_tuple_to_bytes(points: tuple) -> bytes:
    return b''.join(g1_point_to_bytes(point) for point in points)


def bytes_to_g1_point_tuple(bts: bytes) -> tuple:
    if len(bts) % G1_POINT_SIZE != 0:
        raise ValueError('length {} not divisible by {} bytes'.format(len(bts), G1_POINT_SIZE))
    return tuple(bytes_to_g1_point(bts[i:i+G1_POINT_SIZE]) for i in range(0, len(bts), G1_POINT_SIZE))


def indexed_bytes_to_bytes(mapping: dict) -> bytes:
    # canonical: ordered by index, each entry is index || length || payload
    return b''.join(
        index_to_bytes(index) + len(mapping[index]).to_bytes(4, byteorder='big') + mapping[index]
        for index in sorted(mapping))


def bytes_to_indexed_bytes(bts: bytes) -> dict:
    mapping = {}
    pos = 0
    while pos < len(bts):
        if pos + 8 > len(bts):
            raise ValueError('truncated entry header at offset {}'.format(pos))
        index = int.from_bytes(bts[pos:pos+4], byteorder='big')
        length = int.from_bytes(bts[pos+4:pos+8], byteorder='big')
        pos += 8
        if pos + length > len(bts):
            raise ValueError('truncated entry payload at offset {}'.format(pos))
        if index in mapping:
            raise ValueError('duplicate entry for index {}'.format(index))
        mapping[index] = bts[pos:pos+length]
        pos += length
    return mapping


def sequence_256_bit_values_to_bytes(sequence: tuple) -> bytes:
    return b''.join(map(functools.partial(int.to_bytes, length=32, byteorder='big'), sequence))


def private_value_to_eth_address(private_value: int) -> int:
    return curve_point_to_eth_address(secp256k1.multiply(secp256k1.G, private_value))


def curve_point_to_eth_address(curve_point: (int, int)) -> int:
    return int.from_bytes(keccak256(curve_point_to_bytes(curve_point))[-20:], byteorder='big')


###########################
# Configuration utilities #
###########################

PRIVATE_VALUE_RE = re.compile(r'(?P<optprefix>0x)?(?P<value>[0-9A-Fa-f]{64})')


def get_or_generate_private_value(filepath: str) -> int:
    if os.path.isfile(filepath):
        with open(filepath) as private_key_fp:
            private_key_str = private_key_fp.read().strip()
            private_key_match = PRIVATE_VALUE_RE.fullmatch(private_key_str)
            if private_key_match:
                private_key = int(private_key_match.group('value'), 16)
                validate_private_value(private_key)
                return private_key

    logging.warning('could not read key from private key file {}; generating new value...'.format(filepath))
    with open(filepath, 'w') as private_key_fp:
        private_key = random_private_value()
        private_key_fp.write('{:064x}\n'.format(private_key))
        return private_key


###################
# Other utilities #
###################


def random_private_value() -> int:
    return random.randrange(1, secp256k1.N)


def random_scalar() -> int:
    return random.randrange(SCALAR_ORDER)


def address_from_message_and_signature(message: bytes,
                                       signature: 'rsv triplet',
                                       hash: 'hash function' = keccak256) -> int:
    if hash is None:
        value = message
    else:
        value = hash(message)

    if len(value) != 32:
        raise ValueError('value must have length 32 but got length {} ({})'.format(len(value), value))

    (r, s, v) = signature

    pubkey = secp256k1.ecdsa_raw_recover(value, (v, r, s))

    if not pubkey:
        raise ValueError('ECDSA public key recovery failed with bytes {} and signature {}'.format(value, signature))

    return curve_point_to_eth_address(pubkey)


def sign_with_key(message: bytes, key: int, hash: 'hash function' = keccak256) -> 'rsv triplet':
    if hash is None:
        value = message
    else:
        value = hash(message)

    if len(value) != 32:
        raise ValueError('value must have length 32 but got length {} ({})'.format(len(value), value))

    v, r, s = secp256k1.ecdsa_raw_sign(value, private_value_to_bytes(key))
    return (r, s, v)
