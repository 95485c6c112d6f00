import collections
import enum
import logging

from . import util


class ConfigurationError(ValueError):
    pass


@enum.unique
class DKGPhase(enum.IntEnum):
    round0 = 0
    round1 = 1
    round2 = 2
    concluded = 3


class RoundSchedule(collections.namedtuple('RoundSchedule', ('end_round_0', 'end_round_1', 'end_round_2'))):
    """Round boundaries, in blocks relative to the start of an epoch."""

    def __new__(cls, end_round_0: int = 5, end_round_1: int = 10, end_round_2: int = 15):
        if not 0 < end_round_0 < end_round_1 < end_round_2:
            raise ConfigurationError(
                'round boundaries must be strictly increasing and positive (got {}, {}, {})'
                .format(end_round_0, end_round_1, end_round_2))
        return super().__new__(cls, end_round_0, end_round_1, end_round_2)

    @classmethod
    def from_round_lengths(cls, lengths) -> 'RoundSchedule':
        if len(lengths) != 3 or any(length < 1 for length in lengths):
            raise ConfigurationError('need three positive round lengths (got {})'.format(lengths))
        return cls(lengths[0], lengths[0] + lengths[1], lengths[0] + lengths[1] + lengths[2])


def dkg_phase(block_number: int, start_block: int, schedule: RoundSchedule) -> DKGPhase:
    elapsed = block_number - start_block
    if elapsed < 0:
        raise ValueError('block {} precedes epoch start {}'.format(block_number, start_block))

    if elapsed < schedule.end_round_0:
        return DKGPhase.round0
    elif elapsed < schedule.end_round_1:
        return DKGPhase.round1
    elif elapsed < schedule.end_round_2:
        return DKGPhase.round2
    return DKGPhase.concluded


class Committee:
    """Roster of participant addresses and the group threshold.

    Participants are indexed 1..n by the sorted order of their addresses.
    """

    def __init__(self, addresses, threshold: int):
        addresses = sorted(addresses)

        if not addresses:
            raise ConfigurationError('committee must not be empty')

        if len(set(addresses)) != len(addresses):
            raise ConfigurationError('committee addresses must be unique')

        for address in addresses:
            util.validate_eth_address(address)

        if not 0 < threshold <= len(addresses):
            raise ConfigurationError(
                'threshold {} not in [1, {}]'.format(threshold, len(addresses)))

        self.addresses = tuple(addresses)
        self.threshold = threshold
        self._indices = {address: i for i, address in enumerate(self.addresses, start=1)}

        logging.debug('committee of {} members with threshold {}'.format(self.n_members, threshold))

    @classmethod
    def from_private_keys(cls, private_keys, threshold: int) -> 'Committee':
        return cls((util.private_value_to_eth_address(k) for k in private_keys), threshold)

    @property
    def n_members(self) -> int:
        return len(self.addresses)

    @property
    def indices(self) -> range:
        return range(1, self.n_members + 1)

    def index_of(self, address: int) -> int:
        try:
            return self._indices[address]
        except KeyError:
            raise ValueError('{:040x} is not a committee member'.format(address))

    def address_of(self, index: int) -> int:
        util.validate_index(index, self.n_members)
        return self.addresses[index - 1]

    def __contains__(self, address: int) -> bool:
        return address in self._indices

    def __repr__(self):
        return '<Committee n={} t={}>'.format(self.n_members, self.threshold)
