import argparse
import asyncio
import logging
import os
import signal

from . import db, dkg, util
from .committee import Committee, RoundSchedule
from .ledger import Ledger


def get_private_keys(num_participants: int, keys_dir: str = None) -> list:
    if keys_dir is None:
        return [util.random_private_value() for _ in range(num_participants)]

    os.makedirs(keys_dir, exist_ok=True)
    return [util.get_or_generate_private_value(os.path.join(keys_dir, 'private.key.{}'.format(i)))
            for i in range(num_participants)]


def main():
    parser = argparse.ArgumentParser(prog='pydkg-beacon',
                                     description='Run a threshold DKG committee and a randomness beacon round')
    parser.add_argument('-n', '--num-participants', type=int, default=5,
                        help='Committee size (default: %(default)s)')
    parser.add_argument('-t', '--threshold', type=int, default=3,
                        help='Shares needed to produce randomness (default: %(default)s)')
    parser.add_argument('--silent', type=int, nargs='*', default=[],
                        help='Indices of participants that never act')
    parser.add_argument('--round-lengths', type=int, nargs=3, default=[5, 5, 5],
                        help='Blocks in rounds 0, 1 and 2 (default: %(default)s)')
    parser.add_argument('--block-interval', type=float, default=0.,
                        help='Seconds between blocks (default: %(default)s)')
    parser.add_argument('--nonce', default='epoch-42',
                        help='Beacon nonce to produce randomness for (default: %(default)s)')
    parser.add_argument('--keys-dir', nargs='?', default=None,
                        help='Directory to load identity keys from or generate them into')
    parser.add_argument('--db-url', nargs='?', default=db.DEFAULT_URL,
                        help='SQLAlchemy database URL (default: %(default)s)')
    parser.add_argument('--log-level', type=int, nargs='?', default=logging.INFO,
                        help='Logging level (default: %(default)s)')
    parser.add_argument('--log-format', nargs='?', default='%(message)s',
                        help='Logging message format (default: %(default)s)')
    args = parser.parse_args()

    # args parsed; begin getting config stuff
    logging.basicConfig(level=args.log_level, format=args.log_format)

    private_keys = get_private_keys(args.num_participants, args.keys_dir)
    committee = Committee.from_private_keys(private_keys, args.threshold)
    schedule = RoundSchedule.from_round_lengths(args.round_lengths)

    # initialize some stuff
    db.init(args.db_url)

    ledger = Ledger(committee, schedule)
    nodes = [dkg.DKGNode(private_key, ledger) for private_key in private_keys]
    active_nodes = sorted((n for n in nodes if n.index not in args.silent), key=lambda n: n.index)

    for node in nodes:
        logging.info('participant {}: {:040x}{}'.format(
            node.index, node.address, ' (silent)' if node.index in args.silent else ''))

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # setup shutdown handlers
    main_task = loop.create_task(dkg.run_until_concluded(ledger, active_nodes, args.block_interval))

    def shutdown():
        logging.info('\nShutting down...')
        main_task.cancel()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, shutdown)

    try:
        results = loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        return 1
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()

    logging.info('ledger state: {}'.format(ledger.to_state_message()))

    key_boxes = [r.key_box() for _, r in sorted(results.items()) if r is not None]
    if len(key_boxes) < args.threshold:
        logging.error('only {} participants hold usable key shares; no randomness'.format(len(key_boxes)))
        return 1

    nonce = args.nonce.encode()
    shares = [kb.generate_share(nonce) for kb in key_boxes[:args.threshold]]
    randomness = key_boxes[0].combine_shares(shares)

    if randomness is None:
        logging.error('could not combine shares from {}'.format([s.creator for s in shares]))
        return 1

    verified = [kb.index for kb in key_boxes if kb.verify_randomness(randomness)]
    logging.info('randomness for {!r}: {}'.format(args.nonce, randomness.value.hex()))
    logging.info('verified by participants {}'.format(verified))
    logging.info('Goodbye')
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
