"""
The nn tutorial as runnable code.

Example 1 builds a small ConvNet and inspects it with hooks, example 2
builds a recurrent net by reusing Linear layers, and the training module
runs a complete optimisation loop.
"""
from .config import TutorialConfig
from .convnet import MNISTConvNet, printnorm, printgradnorm, run_convnet
from .rnn import RNN, run_rnn, unrolled_loss
from .training import run_training

EXAMPLES = {
    'convnet': run_convnet,
    'rnn': run_rnn,
    'train': run_training,
}

__all__ = [
    'TutorialConfig', 'MNISTConvNet', 'printnorm', 'printgradnorm', 'run_convnet',
    'RNN', 'run_rnn', 'unrolled_loss', 'run_training', 'EXAMPLES',
]
