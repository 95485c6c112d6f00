import asyncio
import collections
import functools
import logging

from . import crypto, rpc_interface, sharing, util
from .beacon import KeyBox
from .committee import DKGPhase, dkg_phase
from .ledger import EpochState
from .rpc_interface import Dispute, DisputeReason, SubmissionError
from .storage import LocalStore

ENCRYPTION_KEY = 'dkw::enc_key::{}'
SECRET_POLY = 'dkw::secret_poly::{}'


class DKGResult(collections.namedtuple('DKGResult', (
    'epoch',
    'index',
    'secret_share',
    'verify_keys',
    'group_key',
    'threshold',
    'correct_dealers',
))):
    def key_box(self) -> KeyBox:
        return KeyBox(self.index, self.secret_share, self.verify_keys, self.group_key, self.threshold)


def log_submission_failures(operation: str):
    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, epoch, *args, **kwargs):
            try:
                return method(self, epoch, *args, **kwargs)
            except SubmissionError as e:
                logging.error('participant {} failed to submit {} for epoch {}: {}'.format(
                    self.index, operation, epoch, e))
        return wrapper
    return decorator


class DKGNode:
    """One committee member running the DKG against a ledger.

    The node holds no round state of its own beyond what is persisted in its
    local store; on every tick it looks at the ledger and does whatever the
    current round still requires of it.
    """

    def __init__(self, private_key: int, ledger, store: LocalStore = None):
        self.private_key = private_key
        self.address = util.private_value_to_eth_address(private_key)
        self.ledger = ledger
        self.committee = ledger.committee
        self.index = self.committee.index_of(self.address)
        self.store = store if store is not None else LocalStore(self.address)
        self.results = {}
        self._verified_shares = {}

    def __repr__(self):
        return '<DKGNode {} ({:040x})>'.format(self.index, self.address)

    def offchain_worker(self, block_number: int):
        record = self.ledger.current_epoch()

        if record.state == EpochState.abandoned:
            if record.number not in self.results:
                logging.error('participant {}: epoch {} was abandoned; no key share'.format(self.index, record.number))
                self.results[record.number] = None
            return

        phase = dkg_phase(block_number, record.start_block, self.ledger.schedule)
        logging.debug('participant {} handling {} of epoch {} at block {}'.format(
            self.index, phase.name, record.number, block_number))
        getattr(self, 'handle_{}'.format(phase.name))(record.number)

    #################
    # Local secrets #
    #################

    def encryption_secret(self, epoch: int) -> int:
        raw = self.store.get(ENCRYPTION_KEY.format(epoch))
        if raw is not None:
            return util.bytes_to_private_value(raw)

    def secret_polynomial(self, epoch: int) -> tuple:
        raw = self.store.get(SECRET_POLY.format(epoch))
        if raw is not None:
            return util.bytes_to_polynomial(raw)

    def set_encryption_secret(self, epoch: int) -> bool:
        keypair = crypto.generate_keypair()
        return self.store.compare_and_set(
            ENCRYPTION_KEY.format(epoch), None, util.private_value_to_bytes(keypair.secret))

    def set_secret_polynomial(self, epoch: int) -> bool:
        poly = sharing.random_polynomial(self.committee.threshold)
        return self.store.compare_and_set(
            SECRET_POLY.format(epoch), None, util.polynomial_to_bytes(poly))

    ##################
    # Round handlers #
    ##################

    @log_submission_failures('encryption key')
    def handle_round0(self, epoch: int):
        if self.encryption_secret(epoch) is None:
            if self.set_encryption_secret(epoch):
                logging.info('participant {} set a new encryption key for epoch {}'.format(self.index, epoch))
            else:
                logging.warning('participant {} encryption key for epoch {} already set'.format(self.index, epoch))

        if self.index in self.ledger.encryption_keys(epoch):
            return

        public_key = crypto.public_key_from_secret(self.encryption_secret(epoch))
        self.ledger.submit(rpc_interface.encryption_key_payload(epoch, self.index, public_key, self.private_key))
        logging.info('participant {} sent encryption key {}'.format(
            self.index, util.curve_point_to_bytes(public_key).hex()))

    @log_submission_failures('secret shares')
    def handle_round1(self, epoch: int):
        secret = self.encryption_secret(epoch)
        keys = self.ledger.encryption_keys(epoch)

        if secret is None or self.index not in keys:
            logging.warning('participant {} missed round 0 of epoch {}; sitting out'.format(self.index, epoch))
            return

        if self.secret_polynomial(epoch) is None:
            if self.set_secret_polynomial(epoch):
                logging.info('participant {} generated its secret polynomial for epoch {}'.format(self.index, epoch))
            else:
                logging.warning('participant {} secret polynomial for epoch {} already set'.format(self.index, epoch))

        if self.index in self.ledger.secret_shares(epoch):
            return

        poly = self.secret_polynomial(epoch)

        encrypted_shares = {}
        for recipient in self.committee.indices:
            if recipient not in keys:
                logging.debug('participant {} skipping {} without encryption key'.format(self.index, recipient))
                continue

            key = crypto.derive_shared_key(secret, keys[recipient])
            share = sharing.eval_polynomial(poly, recipient)
            encrypted_shares[recipient] = crypto.encrypt(
                key, util.scalar_to_bytes(share),
                rpc_interface.share_associated_data(epoch, self.index, recipient))

        commitments = sharing.commit(poly)
        round0_checkpoint = self.ledger.round0_checkpoint(epoch)

        self.ledger.submit(rpc_interface.secret_shares_payload(
            epoch, self.index, encrypted_shares, commitments, round0_checkpoint, self.private_key))
        logging.info('participant {} sent secret shares for {}'.format(self.index, sorted(encrypted_shares)))

    @log_submission_failures('disputes')
    def handle_round2(self, epoch: int):
        _, disputes = self.collect_shares(epoch)

        if not disputes:
            return

        if any(d.complainer == self.index for d in self.ledger.disputes(epoch)):
            return

        self.ledger.submit(rpc_interface.disputes_payload(epoch, self.index, tuple(disputes), self.private_key))
        logging.info('participant {} disputed dealers {}'.format(self.index, [d.dealer for d in disputes]))

    def handle_concluded(self, epoch: int):
        if epoch not in self.results:
            self.conclude(epoch)

    ######################
    # Share verification #
    ######################

    def collect_shares(self, epoch: int) -> (dict, list):
        """Decrypt and verify every posted share addressed to this node.

        Returns the verified shares by dealer and a dispute for every dealer
        whose share is missing, cannot be decrypted or fails its commitment.
        """
        if epoch in self._verified_shares:
            return self._verified_shares[epoch]

        secret = self.encryption_secret(epoch)
        keys = self.ledger.encryption_keys(epoch)
        shares = {}
        disputes = []

        if secret is None or self.index not in keys:
            return shares, disputes

        for dealer, post in sorted(self.ledger.secret_shares(epoch).items()):
            ciphertext = post.encrypted_shares.get(self.index)

            if ciphertext is None:
                logging.warning('participant {} got no share from {}'.format(self.index, dealer))
                disputes.append(Dispute(dealer, self.index, DisputeReason.missing_share, b''))
                continue

            plaintext = crypto.decrypt(
                crypto.derive_shared_key(secret, keys[dealer]), ciphertext,
                rpc_interface.share_associated_data(epoch, dealer, self.index))

            try:
                share = util.bytes_to_scalar(plaintext) if plaintext is not None else None
            except ValueError:
                share = None

            if share is None:
                logging.warning('participant {} could not decrypt share from {}'.format(self.index, dealer))
                disputes.append(Dispute(dealer, self.index, DisputeReason.undecryptable_share, ciphertext))
            elif not sharing.verify_share(post.commitments, self.index, share):
                logging.warning('participant {} got invalid share from {}'.format(self.index, dealer))
                disputes.append(Dispute(dealer, self.index, DisputeReason.invalid_share, ciphertext))
            else:
                shares[dealer] = share

        logging.info('participant {} verified shares from {}'.format(self.index, sorted(shares)))

        if self.ledger.phase(epoch) != DKGPhase.round1:
            self._verified_shares[epoch] = (shares, disputes)

        return shares, disputes

    ##############
    # Conclusion #
    ##############

    def conclude(self, epoch: int) -> DKGResult:
        correct_dealers = self.ledger.correct_dealers(epoch)

        if correct_dealers is None:
            logging.debug('participant {} waiting for dealers of epoch {} to be decided'.format(self.index, epoch))
            return None

        if self.ledger.get_epoch(epoch).state != EpochState.concluded:
            logging.error('participant {}: epoch {} was abandoned; no key share'.format(self.index, epoch))
            self.results[epoch] = None
            return None

        dealers = [i for i, correct in zip(self.committee.indices, correct_dealers) if correct]
        posts = self.ledger.secret_shares(epoch)
        commitments = [posts[d].commitments for d in dealers]

        shares, _ = self.collect_shares(epoch)
        missing = [d for d in dealers if d not in shares]

        if missing:
            logging.error('participant {} lacks valid shares from correct dealers {}; no usable key share'.format(
                self.index, missing))
            self.results[epoch] = None
            return None

        result = DKGResult(
            epoch=epoch,
            index=self.index,
            secret_share=sum(shares[d] for d in dealers) % sharing.N,
            verify_keys=sharing.verification_keys(commitments, self.committee.n_members),
            group_key=sharing.group_key(commitments),
            threshold=self.committee.threshold,
            correct_dealers=correct_dealers,
        )
        self.results[epoch] = result

        logging.info('participant {} concluded epoch {} with group key {}'.format(
            self.index, epoch, result.group_key.hex()))
        return result


async def run_until_concluded(ledger, nodes, block_interval: float = 0):
    """Tick the ledger and let every node act on each block until the epoch is decided."""
    epoch = ledger.epoch
    while True:
        for node in nodes:
            node.offchain_worker(ledger.block_number)

        if ledger.current_epoch().state != EpochState.running:
            break

        ledger.advance()
        await asyncio.sleep(block_interval)

    return {node.index: node.results.get(epoch) for node in nodes}
