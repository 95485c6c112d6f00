"""Shamir sharing over the BLS12-381 scalar field with Feldman commitments in G1."""
import functools

from py_ecc import optimized_bls12_381 as bls12_381

from . import util

N = util.SCALAR_ORDER


def random_polynomial(order: int) -> tuple:
    if order < 1:
        raise ValueError('polynomial order must be positive (got {})'.format(order))
    return tuple(util.random_scalar() for _ in range(order))


def eval_polynomial(poly: tuple, x: int) -> int:
    result = 0
    for coeff in reversed(poly):
        result = (result * x + coeff) % N
    return result


def lagrange_coefficient(i: int, indices) -> int:
    """Coefficient of the point at ``i`` when interpolating at zero over ``indices``."""
    num, den = 1, 1
    for j in indices:
        if j == i:
            continue
        num = num * j % N
        den = den * (j - i) % N
    if den == 0:
        raise ValueError('interpolation indices must be distinct and nonzero mod the field order')
    return num * pow(den, N - 2, N) % N


def interpolate(points: dict) -> int:
    """Recover f(0) from a mapping ``x -> f(x)``."""
    if not points:
        raise ValueError('cannot interpolate without points')
    return sum(y * lagrange_coefficient(x, points) for x, y in points.items()) % N


def commit(poly: tuple) -> tuple:
    return tuple(bls12_381.multiply(bls12_381.G1, coeff) for coeff in poly)


def eval_commitment(commitment: tuple, x: int):
    result = bls12_381.Z1
    for point in reversed(commitment):
        result = bls12_381.add(bls12_381.multiply(result, x % N), point)
    return result


def verify_share(commitment: tuple, x: int, share: int) -> bool:
    try:
        util.validate_scalar(share)
        if not commitment:
            return False
        return bls12_381.eq(bls12_381.multiply(bls12_381.G1, share), eval_commitment(commitment, x))
    except (ValueError, TypeError, IndexError):
        return False


def aggregate_commitments(commitments) -> tuple:
    commitments = tuple(commitments)
    if not commitments:
        raise ValueError('no commitments to aggregate')
    if any(len(c) != len(commitments[0]) for c in commitments):
        raise ValueError('commitment lengths must match')
    return tuple(functools.reduce(bls12_381.add, column) for column in zip(*commitments))


def verification_keys(commitments, n_members: int) -> tuple:
    aggregate = aggregate_commitments(commitments)
    return tuple(util.g1_point_to_bytes(eval_commitment(aggregate, x)) for x in range(1, n_members + 1))


def group_key(commitments) -> bytes:
    return util.g1_point_to_bytes(functools.reduce(bls12_381.add, (c[0] for c in commitments)))
