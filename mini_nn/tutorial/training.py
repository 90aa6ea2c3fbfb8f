"""
Putting it together: a full training loop.

Every iteration is the same five steps: forward, loss, zero_grad,
backward, optimizer step. The data is a synthetic classification problem
whose labels come from a fixed random linear map, so a small MLP can fit
it in a few epochs.
"""
import logging

import numpy as np

import mini_nn
from mini_nn import nn, optim

logger = logging.getLogger(__name__)


def make_classification(num_samples, num_features, num_classes):
    """Inputs and integer labels from argmax(x @ W) for a hidden random W."""
    x = np.random.randn(num_samples, num_features).astype(np.float32)
    w = np.random.randn(num_features, num_classes).astype(np.float32)
    y = (x @ w).argmax(axis=1)
    return mini_nn.tensor(x), mini_nn.tensor(y)


def iterate_minibatches(x, y, batch_size, shuffle=True):
    order = np.random.permutation(len(x)) if shuffle else np.arange(len(x))
    for start in range(0, len(x), batch_size):
        idx = order[start:start + batch_size]
        yield mini_nn.tensor(x.data[idx]), mini_nn.tensor(y.data[idx])


def train_epoch(model, loss_fn, optimizer, batches):
    """One pass over `batches`; returns the mean loss."""
    model.train()
    total, count = 0.0, 0
    for inputs, targets in batches:
        output = model(inputs)
        loss = loss_fn(output, targets)

        optimizer.zero_grad()
        loss.backward()
        optimizer.step()

        total += loss.item() * len(inputs)
        count += len(inputs)
    return total / count


def accuracy(model, x, y):
    model.eval()
    predictions = model(x).data.argmax(axis=1)
    return float((predictions == y.data.astype(np.int64)).mean())


def run_training(config):
    """Fit an MLP on synthetic data and return the per-epoch loss history."""
    mini_nn.manual_seed(config.seed)

    x, y = make_classification(20 * config.batch_size, config.data_size, config.output_size)
    model = nn.Sequential(
        nn.Linear(config.data_size, config.hidden_size),
        nn.ReLU(),
        nn.Linear(config.hidden_size, config.output_size),
    )
    logger.info('%s', model)
    loss_fn = nn.CrossEntropyLoss()
    optimizer = optim.SGD(model.parameters(), lr=config.lr, momentum=0.5)

    history = []
    for epoch in range(config.epochs):
        epoch_loss = train_epoch(model, loss_fn, optimizer, iterate_minibatches(x, y, config.batch_size))
        history.append(epoch_loss)
        logger.info('epoch %d: loss %.4f', epoch + 1, epoch_loss)

    acc = accuracy(model, x, y)
    logger.info('training accuracy: %.3f', acc)
    return {'losses': history, 'accuracy': acc}
