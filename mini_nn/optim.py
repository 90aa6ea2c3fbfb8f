"""
Optimizers for mini_nn.
Includes SGD (with momentum), Adagrad, RMSprop, Adam and AdamW.
"""
import logging

import numpy as np

logger = logging.getLogger(__name__)


class Optimizer:
    """Base class for all optimizers"""

    def __init__(self, params, lr):
        self.params = list(params)
        if not self.params:
            raise ValueError("optimizer got an empty parameter list")
        if lr <= 0:
            raise ValueError(f"Invalid learning rate: {lr}")
        self.lr = lr
        logger.debug("%s over %d parameter tensors, lr=%g", type(self).__name__, len(self.params), lr)

    def _state(self):
        return [np.zeros_like(p.data) for p in self.params]

    def _active(self, *states):
        """Yield (param, grad, *state) for parameters that receive gradients."""
        for param, *rest in zip(self.params, *states):
            if param.requires_grad and param.grad is not None:
                yield (param, param.grad, *rest)

    def step(self):
        """Update parameters - to be implemented by subclasses"""
        raise NotImplementedError

    def zero_grad(self):
        """Zero out all parameter gradients"""
        for param in self.params:
            param.zero_grad()


class SGD(Optimizer):
    """
    Stochastic Gradient Descent optimizer.

    Args:
        params: Parameters to optimize
        lr: Learning rate (step size)
        momentum: Momentum factor (default: 0)
        weight_decay: L2 penalty added to the gradient (default: 0)
    """

    def __init__(self, params, lr=0.01, momentum=0.0, weight_decay=0.0):
        super().__init__(params, lr)
        if momentum < 0:
            raise ValueError(f"Invalid momentum value: {momentum}")
        self.momentum = momentum
        self.weight_decay = weight_decay
        self.velocity = self._state()

    def step(self):
        """Update parameters using SGD"""
        for param, grad, velocity in self._active(self.velocity):
            if self.weight_decay:
                grad = grad + self.weight_decay * param.data
            if self.momentum:
                # PyTorch-style velocity: accumulation of raw gradients
                velocity[:] = self.momentum * velocity + grad
                grad = velocity
            param.data -= self.lr * grad


class Adagrad(Optimizer):
    """
    Adagrad (Adaptive Gradient) optimizer.
    Adapts learning rate based on cumulative sum of squared gradients.

    Args:
        params: Parameters to optimize
        lr: Learning rate
        eps: Small constant for numerical stability
    """

    def __init__(self, params, lr=0.01, eps=1e-10):
        super().__init__(params, lr)
        self.eps = eps
        self.cache = self._state()

    def step(self):
        for param, grad, cache in self._active(self.cache):
            cache += grad ** 2
            param.data -= self.lr * grad / (np.sqrt(cache) + self.eps)


class RMSprop(Optimizer):
    """
    RMSprop (Root Mean Square Propagation) optimizer.
    Uses exponential moving average of squared gradients.

    Args:
        params: Parameters to optimize
        lr: Learning rate
        alpha: Smoothing constant for the moving average (default: 0.99)
        eps: Small constant for numerical stability
    """

    def __init__(self, params, lr=0.01, alpha=0.99, eps=1e-8):
        super().__init__(params, lr)
        self.alpha = alpha
        self.eps = eps
        self.cache = self._state()

    def step(self):
        for param, grad, cache in self._active(self.cache):
            cache[:] = self.alpha * cache + (1 - self.alpha) * grad ** 2
            param.data -= self.lr * grad / (np.sqrt(cache) + self.eps)


class Adam(Optimizer):
    """
    Adam (Adaptive Moment Estimation) optimizer.
    Combines momentum and RMSprop with bias correction.

    Args:
        params: Parameters to optimize
        lr: Learning rate
        betas: Decay rates for the first and second moments
        eps: Small constant for numerical stability
        weight_decay: L2 penalty added to the gradient (default: 0)
    """

    def __init__(self, params, lr=0.001, betas=(0.9, 0.999), eps=1e-8, weight_decay=0.0):
        super().__init__(params, lr)
        self.beta1, self.beta2 = betas
        if not (0 <= self.beta1 < 1 and 0 <= self.beta2 < 1):
            raise ValueError(f"Invalid beta parameters: {betas}")
        self.eps = eps
        self.weight_decay = weight_decay
        self.m = self._state()  # First moment
        self.v = self._state()  # Second moment
        self.t = 0  # Timestep

    def _grad(self, param, grad):
        if self.weight_decay:
            return grad + self.weight_decay * param.data
        return grad

    def step(self):
        self.t += 1
        bias1 = 1 - self.beta1 ** self.t
        bias2 = 1 - self.beta2 ** self.t

        for param, grad, m, v in self._active(self.m, self.v):
            grad = self._grad(param, grad)
            m[:] = self.beta1 * m + (1 - self.beta1) * grad
            v[:] = self.beta2 * v + (1 - self.beta2) * grad ** 2
            param.data -= self.lr * (m / bias1) / (np.sqrt(v / bias2) + self.eps)


class AdamW(Adam):
    """
    Adam with decoupled weight decay regularization.

    The decay shrinks the weights directly instead of being folded into the
    gradient, so it is not rescaled by the adaptive denominator.
    """

    def __init__(self, params, lr=0.001, betas=(0.9, 0.999), eps=1e-8, weight_decay=0.01):
        super().__init__(params, lr, betas, eps, weight_decay)

    def _grad(self, param, grad):
        param.data -= self.lr * self.weight_decay * param.data
        return grad
