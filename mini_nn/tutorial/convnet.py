"""
Example 1: ConvNet

All networks derive from ``nn.Module``. The constructor declares the layers
and ``forward`` defines how the model runs, from input to output. The
module is then used for one forward/backward pass, its weights and
gradients are inspected, and hooks are attached to look at what flows
through a single layer.
"""
import logging

import mini_nn
from mini_nn import nn
from mini_nn import functional as F

logger = logging.getLogger(__name__)


class MNISTConvNet(nn.Module):

    def __init__(self):
        super().__init__()
        self.conv1 = nn.Conv2d(1, 10, 5)
        self.pool1 = nn.MaxPool2d(2, 2)
        self.conv2 = nn.Conv2d(10, 20, 5)
        self.pool2 = nn.MaxPool2d(2, 2)
        self.fc1 = nn.Linear(320, 50)
        self.fc2 = nn.Linear(50, 10)

    def forward(self, input):
        x = self.pool1(F.relu(self.conv1(input)))
        x = self.pool2(F.relu(self.conv2(x)))

        # flatten everything but the batch dimension
        x = x.view(x.size(0), -1)
        x = F.relu(self.fc1(x))
        x = self.fc2(x)
        return x


def printnorm(self, input, output):
    """Forward hook: input is a tuple of packed inputs, output a Tensor."""
    logger.info('Inside %s forward', type(self).__name__)
    logger.info('input: %s', type(input).__name__)
    logger.info('input[0]: %s', type(input[0]).__name__)
    logger.info('output: %s', type(output).__name__)
    logger.info('input size: %s', input[0].size())
    logger.info('output size: %s', output.size())
    logger.info('output norm: %.6f', output.norm().item())


def printgradnorm(self, grad_input, grad_output):
    """Backward hook: grad_input and grad_output are tuples of arrays."""
    logger.info('Inside %s backward', type(self).__name__)
    logger.info('grad_input: %s', type(grad_input).__name__)
    logger.info('grad_input[0]: %s', type(grad_input[0]).__name__)
    logger.info('grad_output: %s', type(grad_output).__name__)
    logger.info('grad_output[0]: %s', type(grad_output[0]).__name__)
    logger.info('grad_input size: %s', grad_input[0].shape)
    logger.info('grad_output size: %s', grad_output[0].shape)
    logger.info('grad_input norm: %.6f', float((grad_input[0] ** 2).sum() ** 0.5))


def run_convnet(config):
    """Walk through Example 1 and return the numbers it reports."""
    mini_nn.manual_seed(config.seed)

    net = MNISTConvNet()
    logger.info('%s', net)

    # nn only supports mini-batches, so a single sample gets a fake batch dim
    sample = mini_nn.randn(1, 28, 28)
    input = sample.unsqueeze(0)
    out = net(input)
    logger.info('output size: %s', out.size())

    # dummy target label
    target = mini_nn.tensor([3])
    loss_fn = nn.CrossEntropyLoss()
    err = loss_fn(out, target)
    err.backward()
    logger.info('error: %.6f', err.item())

    logger.info('conv1 weight grad size: %s', net.conv1.weight.grad.shape)
    weight_norm = net.conv1.weight.norm().item()
    grad_norm = float((net.conv1.weight.grad ** 2).sum() ** 0.5)
    logger.info('conv1 weight norm: %.6f', weight_norm)
    logger.info('conv1 weight grad norm: %.6f', grad_norm)

    # hooks on conv2: forward first, then backward
    with net.conv2.register_forward_hook(printnorm):
        out = net(input)

    net.zero_grad()
    with net.conv2.register_backward_hook(printgradnorm):
        out = net(input)
        err = loss_fn(out, target)
        err.backward()

    return {
        'output_size': out.size(),
        'error': err.item(),
        'conv1_weight_norm': weight_norm,
        'conv1_grad_norm': grad_norm,
    }
