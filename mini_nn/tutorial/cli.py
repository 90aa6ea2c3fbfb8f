"""
Command line runner for the tutorial examples.

    python -m mini_nn.tutorial convnet
    mini-nn-tutorial rnn --timesteps 8 --log-level debug
"""
import argparse
import logging

from mini_nn.logging_utils import LOG_LEVELS, configure_logging
from .config import TutorialConfig
from . import EXAMPLES

logger = logging.getLogger(__name__)


def _build_parser():
    parser = argparse.ArgumentParser(
        prog='mini-nn-tutorial',
        description='Run the nn package tutorial examples.',
    )
    parser.add_argument('example', choices=sorted(EXAMPLES) + ['all'],
                        help='Which example to run.')
    parser.add_argument('--seed', type=int, help='Random seed (default: 0).')
    parser.add_argument('--batch-size', type=int, help='Mini-batch size (default: 10).')
    parser.add_argument('--timesteps', type=int, help='RNN unroll length (default: 5).')
    parser.add_argument('--epochs', type=int, help='Training epochs (default: 20).')
    parser.add_argument('--lr', type=float, help='Learning rate (default: 0.1).')
    parser.add_argument('--log-level', choices=LOG_LEVELS,
                        help='Verbosity; falls back to $MINI_NN_LOG_LEVEL, then info.')
    return parser


def main(argv=None):
    """Parse arguments, configure logging and run the chosen example(s)."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        config = TutorialConfig.from_args(args)
    except ValueError as exc:
        parser.error(str(exc))
    configure_logging(config.log_level)

    names = sorted(EXAMPLES) if args.example == 'all' else [args.example]
    for name in names:
        logger.info('=== %s ===', name)
        EXAMPLES[name](config)
    return 0
