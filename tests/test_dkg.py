import asyncio
import itertools
import logging

import pytest
from py_ecc.bls import G2ProofOfPossession as bls

from pydkgbeacon import crypto, dkg, rpc_interface, sharing, util
from pydkgbeacon.ledger import DealerVerdict, EpochState, Ledger
from pydkgbeacon.rpc_interface import DisputeReason, SubmissionError
from pydkgbeacon.storage import LocalStore


class CheatingNode(dkg.DKGNode):
    """Deals a share to ``victim`` that does not match its commitments."""

    victim = None

    def handle_round1(self, epoch):
        if self.secret_polynomial(epoch) is None:
            self.set_secret_polynomial(epoch)

        if self.index in self.ledger.secret_shares(epoch):
            return

        secret = self.encryption_secret(epoch)
        poly = self.secret_polynomial(epoch)

        encrypted_shares = {}
        for recipient, public_key in self.ledger.encryption_keys(epoch).items():
            share = sharing.eval_polynomial(poly, recipient)
            if recipient == self.victim:
                share = (share + 1) % sharing.N
            encrypted_shares[recipient] = crypto.encrypt(
                crypto.derive_shared_key(secret, public_key), util.scalar_to_bytes(share),
                rpc_interface.share_associated_data(epoch, self.index, recipient))

        self.ledger.submit(rpc_interface.secret_shares_payload(
            epoch, self.index, encrypted_shares, sharing.commit(poly),
            self.ledger.round0_checkpoint(epoch), self.private_key))


def uphold_invalid_shares(dispute, ledger):
    if dispute.reason == DisputeReason.invalid_share:
        return DealerVerdict.cheated
    return DealerVerdict.correct


@pytest.fixture
def ledger(database, committee):
    return Ledger(committee)


@pytest.fixture
def nodes(ledger, private_keys):
    return sorted((dkg.DKGNode(k, ledger) for k in private_keys), key=lambda n: n.index)


def run(ledger, nodes):
    return asyncio.run(dkg.run_until_concluded(ledger, nodes))


def expected_group_key(nodes, dealers):
    return bls.SkToPk(sum(n.secret_polynomial(0)[0] for n in nodes if n.index in dealers) % sharing.N)


def check_results(results, group_key):
    verify_keys = {r.verify_keys for r in results}
    assert len(verify_keys) == 1

    for result in results:
        assert result.group_key == group_key
        assert bls.SkToPk(result.secret_share) == result.verify_keys[result.index - 1]


def test_honest_committee_agrees_on_group_key(ledger, nodes, num_nodes, threshold):
    results = run(ledger, nodes)

    assert ledger.current_epoch().state == EpochState.concluded
    assert ledger.correct_dealers(0) == (True,) * num_nodes
    assert sorted(results) == [n.index for n in nodes]
    assert all(r is not None for r in results.values())

    group_key = expected_group_key(nodes, range(1, num_nodes + 1))
    check_results(results.values(), group_key)

    key_boxes = {i: r.key_box() for i, r in results.items()}
    nonce = b'epoch-0'
    shares = [key_boxes[i].generate_share(nonce) for i in range(1, threshold + 1)]

    randomness = key_boxes[num_nodes].combine_shares(shares)
    assert randomness is not None
    assert all(kb.verify_randomness(randomness) for kb in key_boxes.values())

    assert key_boxes[1].combine_shares(shares[:threshold - 1]) is None


def test_silent_member_is_excluded(ledger, nodes, num_nodes):
    active = nodes[:-1]
    results = run(ledger, active)

    assert ledger.correct_dealers(0) == (True,) * (num_nodes - 1) + (False,)
    assert len(results) == num_nodes - 1

    group_key = expected_group_key(active, range(1, num_nodes))
    check_results(results.values(), group_key)
    assert nodes[-1].index not in ledger.encryption_keys(0)


def test_any_threshold_subset_produces_same_randomness(ledger, nodes, threshold):
    results = run(ledger, nodes)
    key_boxes = [r.key_box() for _, r in sorted(results.items())]
    nonce = b'same nonce'

    randomness = set()
    for subset in itertools.islice(itertools.combinations(key_boxes, threshold), 2):
        combined = key_boxes[0].combine_shares([kb.generate_share(nonce) for kb in subset])
        randomness.add(combined.data)

    assert len(randomness) == 1


def test_round0_is_idempotent(ledger, nodes, caplog):
    node = nodes[0]

    with caplog.at_level(logging.ERROR):
        node.offchain_worker(ledger.block_number)
        secret = node.encryption_secret(0)
        node.offchain_worker(ledger.block_number)

    assert node.encryption_secret(0) == secret
    assert ledger.encryption_keys(0) == {node.index: crypto.public_key_from_secret(secret)}
    assert not caplog.records


def test_stored_secret_is_not_replaced(ledger, private_keys):
    private_key = private_keys[0]
    address = util.private_value_to_eth_address(private_key)
    store = LocalStore(address)
    secret = crypto.generate_keypair().secret
    assert store.compare_and_set(dkg.ENCRYPTION_KEY.format(0), None, util.private_value_to_bytes(secret))

    node = dkg.DKGNode(private_key, ledger, store)
    node.offchain_worker(ledger.block_number)

    assert node.encryption_secret(0) == secret
    assert ledger.encryption_keys(0)[node.index] == crypto.public_key_from_secret(secret)


def test_failed_submission_is_logged_and_retried(ledger, nodes, caplog, monkeypatch):
    node = nodes[0]
    submit = ledger.submit
    calls = []

    def flaky_submit(payload):
        calls.append(payload['method'])
        if len(calls) == 1:
            raise SubmissionError('ledger unavailable')
        return submit(payload)

    monkeypatch.setattr(ledger, 'submit', flaky_submit)

    with caplog.at_level(logging.ERROR):
        node.offchain_worker(ledger.block_number)

    assert node.index not in ledger.encryption_keys(0)
    assert 'failed to submit encryption key for epoch 0' in caplog.text

    ledger.advance()
    node.offchain_worker(ledger.block_number)

    assert node.index in ledger.encryption_keys(0)
    assert calls == ['post_encryption_key', 'post_encryption_key']


def test_node_that_missed_round0_sits_out(ledger, nodes):
    late = nodes[0]
    ledger.advance(ledger.schedule.end_round_0)

    late.offchain_worker(ledger.block_number)

    assert late.encryption_secret(0) is None
    assert late.index not in ledger.secret_shares(0)


def test_cheated_recipient_gets_no_key_share_by_default(ledger, private_keys):
    nodes = sorted((dkg.DKGNode(k, ledger) for k in private_keys), key=lambda n: n.index)
    cheater = CheatingNode(nodes[0].private_key, ledger)
    cheater.victim = 2
    nodes[0] = cheater

    results = run(ledger, nodes)

    disputes = ledger.disputes(0)
    assert [(d.dealer, d.complainer, d.reason) for d in disputes] == [(1, 2, DisputeReason.invalid_share)]

    assert ledger.correct_dealers(0)[0]
    assert results[2] is None

    honest = [r for i, r in results.items() if i != 2]
    check_results(honest, expected_group_key(nodes, ledger.committee.indices))


def test_upheld_dispute_excludes_cheating_dealer(database, committee, private_keys):
    ledger = Ledger(committee, evaluate_dispute=uphold_invalid_shares)
    nodes = sorted((dkg.DKGNode(k, ledger) for k in private_keys), key=lambda n: n.index)
    cheater = CheatingNode(nodes[0].private_key, ledger)
    cheater.victim = 2
    nodes[0] = cheater

    results = run(ledger, nodes)

    assert ledger.correct_dealers(0) == (False,) + (True,) * (committee.n_members - 1)
    assert all(r is not None for r in results.values())

    dealers = range(2, committee.n_members + 1)
    check_results(results.values(), expected_group_key(nodes, dealers))


def test_stalled_epoch_is_abandoned(ledger, nodes, threshold):
    results = run(ledger, nodes[:threshold - 1])

    assert ledger.current_epoch().state == EpochState.abandoned
    assert all(r is None for r in results.values())

    record = ledger.begin_epoch()
    assert record.number == 1

    results = run(ledger, nodes)
    assert ledger.current_epoch().state == EpochState.concluded
    assert all(r.epoch == 1 for r in results.values())
