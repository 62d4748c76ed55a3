"""
Replay exported constraint logs through solver executables.
"""
import argparse
import logging
import sys

from .smtlib import cmd_prefixes, run_smt
from .solver import timeout_to_milliseconds

logger = logging.getLogger(__name__)


def replay(path, cmds, timeout):
    with open(path) as f:
        smt2 = f.read()
    result = run_smt(smt2, cmds, timeout_to_milliseconds(timeout))
    status = result['status']
    if status == 'unknown' and result['reason']:
        status = f"unknown ({result['reason']})"
    return status


def main(argv=None):
    parser = argparse.ArgumentParser(prog='symerror',
                                     description='Numerical error bound tooling')
    subparsers = parser.add_subparsers(dest='command', required=True)
    replay_parser = subparsers.add_parser('replay',
                                          help='run an exported constraint log')
    replay_parser.add_argument('file', help='SMT-LIB2 file written from get_constraint_log')
    replay_parser.add_argument('--smtlib-backends',
                               nargs='+',
                               choices=sorted(cmd_prefixes),
                               default=['z3'],
                               help='solver executables to run in parallel')
    replay_parser.add_argument('--timeout', type=float, default=0.0,
                               help='solver timeout in seconds (0 for none)')
    replay_parser.add_argument('--verbose', action='store_true',
                               help='log the script and raw solver output')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        status = replay(args.file, args.smtlib_backends, args.timeout)
    except FileNotFoundError as e:
        logger.error(f"Replay failed: {e}")
        return 1
    print(status)
    return 0


if __name__ == '__main__':
    sys.exit(main())
