"""
mini_nn: the nn package, built on a small NumPy autograd engine.

Networks are ordinary Python classes derived from ``nn.Module``: layers are
declared in the constructor and the computation is written in ``forward``.
Calling ``.backward()`` on a loss propagates gradients through the recorded
graph to every parameter, and an optimizer from ``optim`` applies the update.
"""
import logging

from .tensor import Tensor, tensor, zeros, ones, randn, manual_seed
from . import functional as F
from . import nn
from . import optim
from .functional import cat

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = '0.1.0'
__all__ = ['Tensor', 'tensor', 'zeros', 'ones', 'randn', 'manual_seed', 'cat', 'F', 'nn', 'optim']
