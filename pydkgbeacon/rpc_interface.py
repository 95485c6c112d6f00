import collections
import enum
import functools
import logging

from jsonrpc.dispatcher import Dispatcher
from jsonrpc.exceptions import JSONRPCDispatchException

from . import util

PROTOCOL_ERROR_CODE = -32000
INVALID_PARAMS_CODE = -32602


class ProtocolError(Exception):
    pass


class SubmissionError(Exception):
    pass


@enum.unique
class DisputeReason(enum.IntEnum):
    missing_share = 1
    undecryptable_share = 2
    invalid_share = 3


Dispute = collections.namedtuple('Dispute', ('dealer', 'complainer', 'reason', 'evidence'))


def share_associated_data(epoch: int, dealer: int, recipient: int) -> bytes:
    return b'SHARE' + util.index_to_bytes(epoch) + util.index_to_bytes(dealer) + util.index_to_bytes(recipient)


################################
# Messages covered by signatures #
################################


def encryption_key_message(epoch: int, index: int, public_key: (int, int)) -> bytes:
    return (
        b'ENCRYPTIONKEY' +
        util.index_to_bytes(epoch) +
        util.index_to_bytes(index) +
        util.curve_point_to_bytes(public_key)
    )


def secret_shares_message(epoch: int, index: int, encrypted_shares: dict,
                          commitments: tuple, round0_checkpoint: bytes) -> bytes:
    return (
        b'SECRETSHARES' +
        util.index_to_bytes(epoch) +
        util.index_to_bytes(index) +
        round0_checkpoint +
        util.g1_point_tuple_to_bytes(commitments) +
        util.indexed_bytes_to_bytes(encrypted_shares)
    )


def disputes_message(epoch: int, index: int, disputes: tuple) -> bytes:
    return (
        b'DISPUTES' +
        util.index_to_bytes(epoch) +
        util.index_to_bytes(index) +
        util.indexed_bytes_to_bytes({
            d.dealer: bytes((d.reason,)) + d.evidence for d in disputes
        })
    )


############
# Payloads #
############


def _request(method: str, params: dict) -> dict:
    return {
        'jsonrpc': '2.0',
        'method': method,
        'params': params,
        'id': method,
    }


def encryption_key_payload(epoch: int, index: int, public_key: (int, int), private_key: int) -> dict:
    signature = util.sign_with_key(encryption_key_message(epoch, index, public_key), private_key)
    return _request('post_encryption_key', {
        'epoch': epoch,
        'index': index,
        'public_key': util.curve_point_to_bytes(public_key).hex(),
        'signature': util.signature_to_bytes(signature).hex(),
    })


def secret_shares_payload(epoch: int, index: int, encrypted_shares: dict, commitments: tuple,
                          round0_checkpoint: bytes, private_key: int) -> dict:
    signature = util.sign_with_key(
        secret_shares_message(epoch, index, encrypted_shares, commitments, round0_checkpoint),
        private_key)
    return _request('post_secret_shares', {
        'epoch': epoch,
        'index': index,
        'encrypted_shares': {str(i): ct.hex() for i, ct in sorted(encrypted_shares.items())},
        'commitments': [util.g1_point_to_bytes(c).hex() for c in commitments],
        'round0_checkpoint': round0_checkpoint.hex(),
        'signature': util.signature_to_bytes(signature).hex(),
    })


def disputes_payload(epoch: int, index: int, disputes: tuple, private_key: int) -> dict:
    signature = util.sign_with_key(disputes_message(epoch, index, disputes), private_key)
    return _request('post_disputes', {
        'epoch': epoch,
        'index': index,
        'disputes': [
            {'dealer': d.dealer, 'reason': d.reason.name, 'evidence': d.evidence.hex()}
            for d in disputes
        ],
        'signature': util.signature_to_bytes(signature).hex(),
    })


def state_request(epoch: int) -> dict:
    return _request('get_dkg_state', {'epoch': epoch})


##############
# Dispatcher #
##############


def _check_signer(ledger, index: int, message: bytes, signature: 'rsv triplet'):
    expected_address = ledger.committee.address_of(index)
    recovered_address = util.address_from_message_and_signature(message, signature)

    if recovered_address != expected_address:
        raise ProtocolError(
            'signer address {:040x} does not match participant {} ({:040x})'
            .format(recovered_address, index, expected_address))


def create_dispatcher(ledger):
    dispatcher = Dispatcher()

    def dispatcher_add_ledger_method(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ProtocolError as e:
                logging.info('rejected {}: {}'.format(func.__name__, e))
                raise JSONRPCDispatchException(code=PROTOCOL_ERROR_CODE, message=str(e))
            except (ValueError, TypeError, KeyError) as e:
                logging.info('malformed {}: {}'.format(func.__name__, e))
                raise JSONRPCDispatchException(code=INVALID_PARAMS_CODE, message=str(e))
        return dispatcher.add_method(wrapper)

    @dispatcher_add_ledger_method
    def post_encryption_key(epoch: int, index: int, public_key: str, signature: str):
        public_key = util.bytes_to_curve_point(bytes.fromhex(public_key))
        signature = util.bytes_to_signature(bytes.fromhex(signature))
        _check_signer(ledger, index, encryption_key_message(epoch, index, public_key), signature)
        ledger.post_encryption_key(epoch, index, public_key, signature)

    @dispatcher_add_ledger_method
    def post_secret_shares(epoch: int, index: int, encrypted_shares: dict, commitments: list,
                           round0_checkpoint: str, signature: str):
        encrypted_shares = {int(i): bytes.fromhex(ct) for i, ct in encrypted_shares.items()}
        commitments = tuple(util.bytes_to_g1_point(bytes.fromhex(c)) for c in commitments)
        round0_checkpoint = bytes.fromhex(round0_checkpoint)
        signature = util.bytes_to_signature(bytes.fromhex(signature))
        _check_signer(
            ledger, index,
            secret_shares_message(epoch, index, encrypted_shares, commitments, round0_checkpoint),
            signature)
        ledger.post_secret_shares(epoch, index, encrypted_shares, commitments, round0_checkpoint, signature)

    @dispatcher_add_ledger_method
    def post_disputes(epoch: int, index: int, disputes: list, signature: str):
        disputes = tuple(
            Dispute(dealer=int(d['dealer']),
                    complainer=index,
                    reason=DisputeReason[d['reason']],
                    evidence=bytes.fromhex(d['evidence']))
            for d in disputes)
        signature = util.bytes_to_signature(bytes.fromhex(signature))
        _check_signer(ledger, index, disputes_message(epoch, index, disputes), signature)
        ledger.post_disputes(epoch, index, disputes, signature)

    @dispatcher_add_ledger_method
    def get_dkg_state(epoch: int = None):
        return ledger.to_state_message(epoch)

    return dispatcher
