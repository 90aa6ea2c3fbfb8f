"""
Example 2: Recurrent Net

The state of the network is held in the graph and not in the layers, so a
recurrence is just the same ``Linear`` layers called again at every
timestep. Their weights are shared and collect gradient from each step.
"""
import logging

import mini_nn
from mini_nn import nn

logger = logging.getLogger(__name__)


class RNN(nn.Module):

    # you can also accept arguments in your model constructor
    def __init__(self, data_size, hidden_size, output_size):
        super().__init__()

        self.hidden_size = hidden_size
        input_size = data_size + hidden_size

        self.i2h = nn.Linear(input_size, hidden_size)
        self.h2o = nn.Linear(hidden_size, output_size)

    def forward(self, data, last_hidden):
        input = mini_nn.cat((data, last_hidden), 1)
        hidden = self.i2h(input)
        output = self.h2o(hidden)
        return hidden, output


def unrolled_loss(rnn, loss_fn, batch, hidden, target, timesteps):
    """Run `timesteps` recurrence steps and sum the per-step losses."""
    loss = 0
    for _ in range(timesteps):
        # the same rnn.i2h / rnn.h2o are reused every step
        hidden, output = rnn(batch, hidden)
        loss += loss_fn(output, target)
    return loss, hidden


def run_rnn(config):
    """Walk through Example 2 and return the numbers it reports."""
    mini_nn.manual_seed(config.seed)

    rnn = RNN(config.data_size, config.hidden_size, config.output_size)
    logger.info('%s', rnn)
    loss_fn = nn.MSELoss()

    batch = mini_nn.randn(config.batch_size, config.data_size)
    hidden = mini_nn.zeros(config.batch_size, config.hidden_size)
    target = mini_nn.zeros(config.batch_size, config.output_size)

    loss, hidden = unrolled_loss(rnn, loss_fn, batch, hidden, target, config.timesteps)
    loss.backward()
    logger.info('loss over %d timesteps: %.6f', config.timesteps, loss.item())

    grad_norm = float((rnn.i2h.weight.grad ** 2).sum() ** 0.5)
    logger.info('i2h weight grad norm: %.6f', grad_norm)
    return {
        'loss': loss.item(),
        'hidden_size': hidden.size(),
        'i2h_grad_norm': grad_norm,
    }
