import itertools

import pytest
from py_ecc.bls import G2ProofOfPossession as bls

from pydkgbeacon import sharing, util


def naive_eval(poly, x):
    return sum(c * pow(x, k, sharing.N) for k, c in enumerate(poly)) % sharing.N


def poly_mul(a, b):
    product = [0] * (len(a) + len(b) - 1)
    for i, ai in enumerate(a):
        for j, bj in enumerate(b):
            product[i + j] = (product[i + j] + ai * bj) % sharing.N
    return product


def test_random_polynomial_has_requested_order():
    poly = sharing.random_polynomial(4)
    assert len(poly) == 4
    util.validate_polynomial(poly)
    assert sharing.random_polynomial(4) != poly


def test_random_polynomial_rejects_empty_order():
    with pytest.raises(ValueError):
        sharing.random_polynomial(0)


def test_horner_evaluation_matches_power_sum():
    poly = sharing.random_polynomial(5)
    for x in (0, 1, 2, 17, sharing.N - 1):
        assert sharing.eval_polynomial(poly, x) == naive_eval(poly, x)


@pytest.mark.parametrize('threshold, num_points', [(1, 3), (2, 4), (3, 5), (4, 7)])
def test_any_threshold_points_recover_secret(threshold, num_points):
    poly = sharing.random_polynomial(threshold)
    points = {x: sharing.eval_polynomial(poly, x) for x in range(1, num_points + 1)}

    for subset in itertools.combinations(sorted(points), threshold):
        assert sharing.interpolate({x: points[x] for x in subset}) == poly[0]


@pytest.mark.parametrize('threshold', [2, 3, 5])
def test_fewer_than_threshold_points_leave_secret_undetermined(threshold):
    poly = sharing.random_polynomial(threshold)
    xs = util.random.sample(range(1, 50), threshold - 1)

    # vanishing polynomial prod(x - x_i) has degree t-1 and is zero on every known point
    vanishing = [1]
    for x in xs:
        vanishing = poly_mul(vanishing, [(-x) % sharing.N, 1])

    for _ in range(3):
        k = util.random_scalar()
        other = [(a + k * v) % sharing.N for a, v in zip(poly, vanishing)]
        assert len(other) == threshold
        assert all(sharing.eval_polynomial(other, x) == sharing.eval_polynomial(poly, x) for x in xs)
        assert (other[0] == poly[0]) == (k == 0)


def test_lagrange_rejects_repeated_indices():
    with pytest.raises(ValueError):
        sharing.lagrange_coefficient(1, [1, 2, 1 + sharing.N])


def test_interpolate_needs_points():
    with pytest.raises(ValueError):
        sharing.interpolate({})


def test_commitment_accepts_honest_shares():
    poly = sharing.random_polynomial(3)
    commitment = sharing.commit(poly)

    for x in range(1, 6):
        assert sharing.verify_share(commitment, x, sharing.eval_polynomial(poly, x))


def test_commitment_rejects_tampered_shares():
    poly = sharing.random_polynomial(3)
    commitment = sharing.commit(poly)
    share = sharing.eval_polynomial(poly, 2)

    assert not sharing.verify_share(commitment, 2, (share + 1) % sharing.N)
    assert not sharing.verify_share(commitment, 2, util.random_scalar())
    assert not sharing.verify_share(commitment, 3, share)
    assert not sharing.verify_share(sharing.commit(sharing.random_polynomial(3)), 2, share)


def test_commitment_rejects_malformed_input():
    poly = sharing.random_polynomial(2)
    commitment = sharing.commit(poly)

    assert not sharing.verify_share(commitment, 1, -1)
    assert not sharing.verify_share(commitment, 1, sharing.N)
    assert not sharing.verify_share((), 1, 0)


def test_commitment_is_deterministic():
    poly = sharing.random_polynomial(3)
    assert util.g1_point_tuple_to_bytes(sharing.commit(poly)) == util.g1_point_tuple_to_bytes(sharing.commit(poly))


def test_aggregated_keys_match_summed_shares():
    n_members, threshold = 4, 2
    polys = [sharing.random_polynomial(threshold) for _ in range(3)]
    commitments = [sharing.commit(p) for p in polys]

    verify_keys = sharing.verification_keys(commitments, n_members)
    assert len(verify_keys) == n_members

    for x in range(1, n_members + 1):
        share = sum(sharing.eval_polynomial(p, x) for p in polys) % sharing.N
        assert verify_keys[x - 1] == bls.SkToPk(share)

    assert sharing.group_key(commitments) == bls.SkToPk(sum(p[0] for p in polys) % sharing.N)


def test_aggregate_rejects_mismatched_commitments():
    with pytest.raises(ValueError):
        sharing.aggregate_commitments([sharing.commit(sharing.random_polynomial(2)),
                                       sharing.commit(sharing.random_polynomial(3))])

    with pytest.raises(ValueError):
        sharing.aggregate_commitments([])
