"""In-process stand-in for the chain the DKG runs against.

The ledger provides the round clock (block numbers), the append-only board of
published round material and the end-of-round bookkeeping: freezing the
round-0 checkpoint and deciding which dealers count as correct.
"""
import enum
import json
import logging

from jsonrpc import JSONRPCResponseManager
from sqlalchemy import types
from sqlalchemy.exc import IntegrityError
from sqlalchemy.schema import Column, UniqueConstraint

from . import db, util, rpc_interface
from .committee import ConfigurationError, DKGPhase, RoundSchedule, dkg_phase
from .rpc_interface import Dispute, DisputeReason, ProtocolError, SubmissionError


@enum.unique
class EpochState(enum.IntEnum):
    running = 0
    concluded = 1
    abandoned = 2


@enum.unique
class DealerVerdict(enum.IntEnum):
    correct = 0
    cheated = 1


def accept_all_dealers(dispute: Dispute, ledger: 'Ledger') -> DealerVerdict:
    # Dispute resolution is not implemented: every dealer who posted in
    # round 1 stays correct regardless of complaints.
    logging.warning(
        'dispute by {} against {} ({}) left unresolved; keeping dealer'
        .format(dispute.complainer, dispute.dealer, dispute.reason.name))
    return DealerVerdict.correct


class EpochRecord(db.Base):
    __tablename__ = 'epoch'

    number = Column(types.Integer, index=True, unique=True, nullable=False)
    start_block = Column(types.Integer, nullable=False)
    state = Column(types.Enum(EpochState), nullable=False, default=EpochState.running)
    round0_checkpoint = Column(types.LargeBinary)
    correct_dealers = Column(db.Flags)


class EncryptionKeyPost(db.Base):
    __tablename__ = 'encryption_key_post'

    epoch = Column(types.Integer, index=True, nullable=False)
    author = Column(types.Integer, nullable=False)
    public_key = Column(db.CurvePoint, nullable=False)
    signature = Column(db.Signature, nullable=False)

    __table_args__ = (UniqueConstraint('epoch', 'author'),)


class SharesPost(db.Base):
    __tablename__ = 'shares_post'

    epoch = Column(types.Integer, index=True, nullable=False)
    author = Column(types.Integer, nullable=False)
    encrypted_shares = Column(db.IndexedBytes, nullable=False)
    commitments = Column(db.G1PointTuple, nullable=False)
    round0_checkpoint = Column(types.LargeBinary, nullable=False)
    signature = Column(db.Signature, nullable=False)

    __table_args__ = (UniqueConstraint('epoch', 'author'),)


class DisputePost(db.Base):
    __tablename__ = 'dispute_post'

    epoch = Column(types.Integer, index=True, nullable=False)
    dealer = Column(types.Integer, nullable=False)
    complainer = Column(types.Integer, nullable=False)
    reason = Column(types.Enum(DisputeReason), nullable=False)
    evidence = Column(types.LargeBinary, nullable=False)
    verdict = Column(types.Enum(DealerVerdict))

    __table_args__ = (UniqueConstraint('epoch', 'dealer', 'complainer'),)

    def to_dispute(self) -> Dispute:
        return Dispute(dealer=self.dealer, complainer=self.complainer,
                       reason=self.reason, evidence=self.evidence)


class Ledger:
    def __init__(self, committee, schedule: RoundSchedule = None, evaluate_dispute=accept_all_dealers):
        self.committee = None
        self.initialize_committee(committee)
        self.schedule = schedule or RoundSchedule()
        self.evaluate_dispute = evaluate_dispute
        self.block_number = 0
        self.epoch = None
        self.dispatcher = rpc_interface.create_dispatcher(self)
        self.begin_epoch()

    def initialize_committee(self, committee):
        if self.committee is not None:
            raise ConfigurationError('committee is already initialized')
        logging.info('genesis committee: {!r}'.format(committee))
        self.committee = committee

    ##############
    # Round clock #
    ##############

    def advance(self, blocks: int = 1):
        for _ in range(blocks):
            self.block_number += 1
            self.on_initialize(self.block_number)

    def on_initialize(self, block_number: int):
        record = self.current_epoch()
        if record.state != EpochState.running:
            return

        elapsed = block_number - record.start_block

        if elapsed >= self.schedule.end_round_0 and record.round0_checkpoint is None:
            self.finalize_round0(record)

        if elapsed >= self.schedule.end_round_2 and record.correct_dealers is None:
            self.finalize_dealers(record)

    def phase(self, epoch: int = None) -> DKGPhase:
        record = self.get_epoch(epoch)
        return dkg_phase(self.block_number, record.start_block, self.schedule)

    ##########
    # Epochs #
    ##########

    def get_epoch(self, epoch: int = None) -> EpochRecord:
        if epoch is None:
            epoch = self.epoch

        record = (
            db.Session
            .query(EpochRecord)
            .filter(EpochRecord.number == epoch)
            .scalar()
        )

        if record is None:
            raise ProtocolError('unknown epoch {}'.format(epoch))

        return record

    def current_epoch(self) -> EpochRecord:
        return self.get_epoch(self.epoch)

    def begin_epoch(self) -> EpochRecord:
        if self.epoch is not None:
            current = self.current_epoch()
            if current.state == EpochState.running:
                raise ProtocolError('epoch {} is still running'.format(current.number))
            number = current.number + 1
        else:
            number = 0

        record = EpochRecord(number=number, start_block=self.block_number, state=EpochState.running)
        db.Session.add(record)
        db.Session.commit()
        self.epoch = number

        logging.info('epoch {} begins at block {}'.format(number, self.block_number))
        return record

    def abandon_epoch(self):
        record = self.current_epoch()
        if record.state == EpochState.running:
            record.state = EpochState.abandoned
            db.Session.commit()
            logging.warning('epoch {} abandoned at block {}'.format(record.number, self.block_number))

    def finalize_round0(self, record: EpochRecord):
        keys = self.encryption_keys(record.number)
        record.round0_checkpoint = util.keccak256(
            b'ROUND0' +
            util.index_to_bytes(record.number) +
            util.indexed_bytes_to_bytes({i: util.curve_point_to_bytes(pk) for i, pk in keys.items()})
        )
        db.Session.commit()

        logging.info('round 0 of epoch {} closed with keys from {}; checkpoint {}'.format(
            record.number, sorted(keys), record.round0_checkpoint.hex()))

    def finalize_dealers(self, record: EpochRecord):
        keys = self.encryption_keys(record.number)
        shares = self.secret_shares(record.number)
        correct = {i: i in keys and i in shares for i in self.committee.indices}

        for post in self.dispute_posts(record.number):
            verdict = self.evaluate_dispute(post.to_dispute(), self)
            post.verdict = verdict
            if verdict == DealerVerdict.cheated:
                correct[post.dealer] = False

        record.correct_dealers = tuple(correct[i] for i in self.committee.indices)

        for i in self.committee.indices:
            if correct[i]:
                logging.info('epoch {}: dealer {} correct'.format(record.number, i))
            else:
                logging.warning('epoch {}: dealer {} incorrect (key posted: {}, shares posted: {})'.format(
                    record.number, i, i in keys, i in shares))

        num_correct = sum(record.correct_dealers)
        if num_correct >= self.committee.threshold:
            record.state = EpochState.concluded
            logging.info('epoch {} concluded with {} correct dealers'.format(record.number, num_correct))
        else:
            record.state = EpochState.abandoned
            logging.error('epoch {} stalled: {} correct dealers but threshold is {}; abandoning'.format(
                record.number, num_correct, self.committee.threshold))

        db.Session.commit()

    #############
    # Broadcast #
    #############

    def submit(self, payload: dict):
        response = JSONRPCResponseManager.handle(json.dumps(payload), self.dispatcher)

        if response is None:
            return None

        res_data = response.data
        if 'error' in res_data:
            raise SubmissionError('{} rejected: {}'.format(
                payload.get('method'), res_data['error'].get('message')))

        return res_data.get('result')

    def _check_window(self, epoch: int, phase: DKGPhase):
        if epoch != self.epoch:
            raise ProtocolError('epoch {} is not the current epoch {}'.format(epoch, self.epoch))

        record = self.current_epoch()
        if record.state != EpochState.running:
            raise ProtocolError('epoch {} is {}'.format(epoch, record.state.name))

        current_phase = self.phase(epoch)
        if current_phase != phase:
            raise ProtocolError('{} material posted during {} at block {}'.format(
                phase.name, current_phase.name, self.block_number))

        return record

    def _commit_post(self, post, description: str):
        db.Session.add(post)
        try:
            db.Session.commit()
        except IntegrityError:
            db.Session.rollback()
            raise ProtocolError('{} already posted'.format(description))

    def post_encryption_key(self, epoch: int, index: int, public_key: (int, int), signature: 'rsv triplet'):
        self._check_window(epoch, DKGPhase.round0)

        if index in self.encryption_keys(epoch):
            raise ProtocolError('encryption key of {} already posted'.format(index))

        self._commit_post(
            EncryptionKeyPost(epoch=epoch, author=index, public_key=public_key, signature=signature),
            'encryption key of {}'.format(index))

        logging.info('block {}: encryption key posted by {}'.format(self.block_number, index))

    def post_secret_shares(self, epoch: int, index: int, encrypted_shares: dict, commitments: tuple,
                           round0_checkpoint: bytes, signature: 'rsv triplet'):
        record = self._check_window(epoch, DKGPhase.round1)

        if round0_checkpoint != record.round0_checkpoint:
            raise ProtocolError('secret shares from {} reference checkpoint {} instead of {}'.format(
                index, round0_checkpoint.hex(), record.round0_checkpoint.hex()))

        keys = self.encryption_keys(epoch)

        if index not in keys:
            raise ProtocolError('{} did not post an encryption key in round 0'.format(index))

        if len(commitments) != self.committee.threshold:
            raise ProtocolError('expected {} commitments from {} but got {}'.format(
                self.committee.threshold, index, len(commitments)))

        unknown_recipients = set(encrypted_shares) - set(keys)
        if unknown_recipients:
            raise ProtocolError('shares from {} addressed to participants without keys: {}'.format(
                index, sorted(unknown_recipients)))

        if index in self.secret_shares(epoch):
            raise ProtocolError('secret shares of {} already posted'.format(index))

        self._commit_post(
            SharesPost(epoch=epoch, author=index, encrypted_shares=encrypted_shares,
                       commitments=commitments, round0_checkpoint=round0_checkpoint,
                       signature=signature),
            'secret shares of {}'.format(index))

        logging.info('block {}: secret shares posted by {} for {}'.format(
            self.block_number, index, sorted(encrypted_shares)))

    def post_disputes(self, epoch: int, index: int, disputes: tuple, signature: 'rsv triplet'):
        self._check_window(epoch, DKGPhase.round2)

        if any(post.complainer == index for post in self.dispute_posts(epoch)):
            raise ProtocolError('disputes of {} already posted'.format(index))

        dealers = [d.dealer for d in disputes]
        if len(set(dealers)) != len(dealers):
            raise ProtocolError('duplicate disputes from {}'.format(index))

        for dealer in dealers:
            util.validate_index(dealer, self.committee.n_members)

        for d in disputes:
            db.Session.add(DisputePost(epoch=epoch, dealer=d.dealer, complainer=index,
                                       reason=d.reason, evidence=d.evidence))
        try:
            db.Session.commit()
        except IntegrityError:
            db.Session.rollback()
            raise ProtocolError('disputes of {} already posted'.format(index))

        logging.info('block {}: {} disputes {}'.format(self.block_number, index, dealers))

    ###########
    # Queries #
    ###########

    def encryption_keys(self, epoch: int) -> dict:
        return {
            post.author: post.public_key
            for post in db.Session.query(EncryptionKeyPost).filter(EncryptionKeyPost.epoch == epoch)
        }

    def secret_shares(self, epoch: int) -> dict:
        return {
            post.author: post
            for post in db.Session.query(SharesPost).filter(SharesPost.epoch == epoch)
        }

    def dispute_posts(self, epoch: int) -> list:
        return (
            db.Session
            .query(DisputePost)
            .filter(DisputePost.epoch == epoch)
            .order_by(DisputePost.dealer, DisputePost.complainer)
            .all()
        )

    def disputes(self, epoch: int) -> tuple:
        return tuple(post.to_dispute() for post in self.dispute_posts(epoch))

    def round0_checkpoint(self, epoch: int) -> bytes:
        return self.get_epoch(epoch).round0_checkpoint

    def correct_dealers(self, epoch: int) -> tuple:
        return self.get_epoch(epoch).correct_dealers

    def to_state_message(self, epoch: int = None) -> dict:
        record = self.get_epoch(epoch)

        msg = {
            'epoch': record.number,
            'state': record.state.name,
            'start_block': record.start_block,
            'block_number': self.block_number,
            'phase': self.phase(record.number).name,
            'threshold': self.committee.threshold,
        }

        if record.round0_checkpoint is not None:
            msg['round0_checkpoint'] = record.round0_checkpoint.hex()

        if record.correct_dealers is not None:
            msg['correct_dealers'] = list(record.correct_dealers)

        keys = self.encryption_keys(record.number)
        shares = self.secret_shares(record.number)
        disputes = self.dispute_posts(record.number)

        participants = {}
        for i in self.committee.indices:
            participant = {'address': '{:040x}'.format(self.committee.address_of(i))}

            if i in keys:
                participant['encryption_key'] = '{0[0]:064x}{0[1]:064x}'.format(keys[i])

            if i in shares:
                participant['commitments'] = [util.g1_point_to_bytes(c).hex() for c in shares[i].commitments]
                participant['share_recipients'] = sorted(shares[i].encrypted_shares)

            participant['disputed_by'] = [d.complainer for d in disputes if d.dealer == i]
            participants[str(i)] = participant

        msg['participants'] = participants
        return msg
