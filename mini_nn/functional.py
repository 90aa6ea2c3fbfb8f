"""
Functional operations for mini_nn: activations, losses, convolution, pooling
and other operations.
"""
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .tensor import Tensor


def _as_tensor(x):
    return x if isinstance(x, Tensor) else Tensor(x)


def _pair(value):
    if isinstance(value, int):
        return (value, value)
    return tuple(value)


def _check_minibatch(x, name):
    if x.ndim != 4:
        raise ValueError(
            f"{name} expects a 4D mini-batch of nSamples x nChannels x Height x Width, "
            f"got shape {x.shape}; use input.unsqueeze(0) to add a fake batch dimension"
        )


# ============================================================================
# Activation Functions
# ============================================================================

def relu(x):
    """ReLU activation: max(0, x)"""
    return _as_tensor(x).relu()


def sigmoid(x):
    """Sigmoid activation: 1 / (1 + exp(-x))"""
    x = _as_tensor(x)

    # For numerical stability
    z = np.exp(-np.abs(x.data))
    out_data = np.where(x.data >= 0, 1 / (1 + z), z / (1 + z))
    out = Tensor(out_data, (x,), 'sigmoid')

    def _backward():
        if x.requires_grad:
            x.grad += out.data * (1 - out.data) * out.grad

    out._backward = _backward
    return out


def tanh(x):
    """Hyperbolic tangent activation"""
    x = _as_tensor(x)
    out = Tensor(np.tanh(x.data), (x,), 'tanh')

    def _backward():
        if x.requires_grad:
            x.grad += (1 - out.data ** 2) * out.grad

    out._backward = _backward
    return out


def softmax(x, dim=-1):
    """
    Softmax activation along specified dimension.
    Numerically stable implementation.
    """
    x = _as_tensor(x)

    # Numerical stability: subtract max
    exp_values = np.exp(x.data - x.data.max(axis=dim, keepdims=True))
    out = Tensor(exp_values / exp_values.sum(axis=dim, keepdims=True), (x,), 'softmax')

    def _backward():
        if x.requires_grad:
            # Jacobian-vector product of softmax: s * (g - sum(g * s))
            sum_grad = (out.grad * out.data).sum(axis=dim, keepdims=True)
            x.grad += out.data * (out.grad - sum_grad)

    out._backward = _backward
    return out


def log_softmax(x, dim=-1):
    """Log-softmax for numerical stability in cross-entropy loss."""
    x = _as_tensor(x)

    x_max = x.data.max(axis=dim, keepdims=True)
    log_sum_exp = np.log(np.exp(x.data - x_max).sum(axis=dim, keepdims=True))
    out = Tensor(x.data - x_max - log_sum_exp, (x,), 'log_softmax')

    def _backward():
        if x.requires_grad:
            sum_grad = out.grad.sum(axis=dim, keepdims=True)
            x.grad += out.grad - np.exp(out.data) * sum_grad

    out._backward = _backward
    return out


# ============================================================================
# Mathematical Functions
# ============================================================================

def exp(x):
    """Exponential function"""
    x = _as_tensor(x)
    out = Tensor(np.exp(x.data), (x,), 'exp')

    def _backward():
        if x.requires_grad:
            x.grad += out.data * out.grad

    out._backward = _backward
    return out


def log(x):
    """Natural logarithm"""
    x = _as_tensor(x)
    out = Tensor(np.log(x.data), (x,), 'log')

    def _backward():
        if x.requires_grad:
            x.grad += out.grad / x.data

    out._backward = _backward
    return out


# ============================================================================
# Loss Functions
# ============================================================================

def _reduce(loss, reduction):
    if reduction == 'mean':
        return loss.mean()
    if reduction == 'sum':
        return loss.sum()
    if reduction == 'none':
        return loss
    raise ValueError(f"reduction must be 'mean', 'sum' or 'none', got {reduction!r}")


def mse_loss(input, target, reduction='mean'):
    """Mean Squared Error loss"""
    input = _as_tensor(input)
    target = _as_tensor(target)
    if input.shape != target.shape:
        raise ValueError(f"input shape {input.shape} and target shape {target.shape} differ")

    diff = input - target
    return _reduce(diff * diff, reduction)


def cross_entropy(logits, targets, reduction='mean'):
    """
    Cross-entropy loss for multi-class classification.

    Args:
        logits: Tensor of shape (batch_size, num_classes) - raw scores
        targets: Tensor of shape (batch_size,) - class indices
    """
    logits = _as_tensor(logits)
    targets = targets.data if isinstance(targets, Tensor) else np.asarray(targets)

    if logits.ndim != 2:
        raise ValueError(f"logits must be (batch_size, num_classes), got shape {logits.shape}")
    batch_size, num_classes = logits.shape
    if targets.shape != (batch_size,):
        raise ValueError(f"targets must have shape ({batch_size},), got {targets.shape}")
    targets_int = targets.astype(np.int64)
    if targets_int.min() < 0 or targets_int.max() >= num_classes:
        raise ValueError(f"target class out of range [0, {num_classes})")

    # Negative log likelihood of the target classes
    log_probs = log_softmax(logits, dim=1)
    return _reduce(-log_probs[np.arange(batch_size), targets_int], reduction)


# ============================================================================
# Layers
# ============================================================================

def linear(x, weight, bias=None):
    """y = x W^T + b with weight of shape (out_features, in_features)."""
    x = _as_tensor(x)
    if x.shape[-1] != weight.shape[1]:
        raise ValueError(
            f"input has {x.shape[-1]} features in its last dimension, expected {weight.shape[1]}"
        )
    out = x @ weight.T
    if bias is not None:
        out = out + bias
    return out


def conv2d(x, weight, bias=None, stride=1, padding=0):
    """
    2D convolution over a mini-batch using im2col.

    Args:
        x: Input tensor of shape (batch_size, in_channels, height, width)
        weight: Filters of shape (out_channels, in_channels, kH, kW)
        bias: Optional tensor of shape (out_channels,)
    """
    x = _as_tensor(x)
    _check_minibatch(x, 'conv2d')

    batch_size, in_channels, in_h, in_w = x.shape
    out_channels, w_in_channels, k_h, k_w = weight.shape
    if in_channels != w_in_channels:
        raise ValueError(f"input has {in_channels} channels, weight expects {w_in_channels}")
    s_h, s_w = _pair(stride)
    p_h, p_w = _pair(padding)

    # Calculate output dimensions
    out_h = (in_h + 2 * p_h - k_h) // s_h + 1
    out_w = (in_w + 2 * p_w - k_w) // s_w + 1
    if out_h <= 0 or out_w <= 0:
        raise ValueError(f"kernel size ({k_h}, {k_w}) is larger than padded input ({in_h}, {in_w})")

    x_padded = np.pad(x.data, ((0, 0), (0, 0), (p_h, p_h), (p_w, p_w)))

    # im2col: (batch*out_h*out_w, in_channels*kH*kW)
    windows = sliding_window_view(x_padded, (k_h, k_w), axis=(2, 3))[:, :, ::s_h, ::s_w]
    col = windows.transpose(0, 2, 3, 1, 4, 5).reshape(batch_size * out_h * out_w, -1)
    weight_col = weight.data.reshape(out_channels, -1)

    out_data = (col @ weight_col.T).reshape(batch_size, out_h, out_w, out_channels)
    out = Tensor(out_data.transpose(0, 3, 1, 2), (x, weight), 'conv2d')  # NHWC -> NCHW

    def _backward():
        # NCHW -> NHWC -> (batch*out_h*out_w, out_channels)
        dout = out.grad.transpose(0, 2, 3, 1).reshape(-1, out_channels)

        if weight.requires_grad:
            weight.grad += (dout.T @ col).reshape(weight.shape)

        if x.requires_grad:
            dx_col = (dout @ weight_col).reshape(batch_size, out_h, out_w, in_channels, k_h, k_w)
            # col2im: scatter each output position's patch back
            dx_padded = np.zeros(x_padded.shape, dtype=np.float32)
            for i in range(out_h):
                for j in range(out_w):
                    h_start = i * s_h
                    w_start = j * s_w
                    dx_padded[:, :, h_start:h_start + k_h, w_start:w_start + k_w] += dx_col[:, i, j]
            x.grad += dx_padded[:, :, p_h:p_h + in_h, p_w:p_w + in_w]

    out._backward = _backward

    if bias is not None:
        # Reshape bias for broadcasting: (1, out_channels, 1, 1)
        out = out + bias.reshape(1, out_channels, 1, 1)
    return out


def max_pool2d(x, kernel_size, stride=None, padding=0):
    """
    2D max pooling over a mini-batch.

    Args:
        x: Input tensor of shape (batch_size, channels, height, width)
        kernel_size: Size of pooling window
        stride: Stride of pooling (default: same as kernel_size)
        padding: Implicit -inf padding on both sides
    """
    x = _as_tensor(x)
    _check_minibatch(x, 'max_pool2d')

    k_h, k_w = _pair(kernel_size)
    s_h, s_w = _pair(stride) if stride is not None else (k_h, k_w)
    p_h, p_w = _pair(padding)

    batch_size, channels, in_h, in_w = x.shape
    out_h = (in_h + 2 * p_h - k_h) // s_h + 1
    out_w = (in_w + 2 * p_w - k_w) // s_w + 1

    x_padded = np.pad(x.data, ((0, 0), (0, 0), (p_h, p_h), (p_w, p_w)), constant_values=-np.inf)
    windows = sliding_window_view(x_padded, (k_h, k_w), axis=(2, 3))[:, :, ::s_h, ::s_w]
    windows = windows[:, :, :out_h, :out_w].reshape(batch_size, channels, out_h, out_w, k_h * k_w)

    # Position of the max inside each window, mapped to padded coordinates
    arg = windows.argmax(axis=-1)
    rows = np.arange(out_h)[None, None, :, None] * s_h + arg // k_w
    cols = np.arange(out_w)[None, None, None, :] * s_w + arg % k_w

    out = Tensor(windows.max(axis=-1), (x,), 'max_pool2d')

    def _backward():
        if x.requires_grad:
            dx_padded = np.zeros(x_padded.shape, dtype=np.float32)
            b_idx = np.arange(batch_size)[:, None, None, None]
            c_idx = np.arange(channels)[None, :, None, None]
            np.add.at(dx_padded, (b_idx, c_idx, rows, cols), out.grad)
            x.grad += dx_padded[:, :, p_h:p_h + in_h, p_w:p_w + in_w]

    out._backward = _backward
    return out


# ============================================================================
# Utility Functions
# ============================================================================

def cat(tensors, dim=0):
    """Concatenate tensors along an existing dimension"""
    tensors = [_as_tensor(t) for t in tensors]

    out = Tensor(np.concatenate([t.data for t in tensors], axis=dim), tuple(tensors), 'cat')
    # Split points along dim, tensors may differ in size there
    offsets = np.cumsum([t.shape[dim] for t in tensors])[:-1]

    def _backward():
        for t, g in zip(tensors, np.split(out.grad, offsets, axis=dim)):
            if t.requires_grad:
                t.grad += g

    out._backward = _backward
    return out


def pad(x, pad_width, value=0.0):
    """Constant-pad a tensor; pad_width follows numpy.pad"""
    x = _as_tensor(x)

    out = Tensor(np.pad(x.data, pad_width, constant_values=value), (x,), 'pad')

    def _backward():
        if x.requires_grad:
            # Remove padding from gradient
            slices = tuple(slice(left, left + size) for (left, _), size in zip(pad_width, x.shape))
            x.grad += out.grad[slices]

    out._backward = _backward
    return out


def dropout(x, p=0.5, training=True):
    """
    Dropout regularization.

    Args:
        x: Input tensor
        p: Probability of dropping a unit (0 to 1)
        training: Whether in training mode
    """
    if not 0 <= p < 1:
        raise ValueError(f"dropout probability has to be in [0, 1), got {p}")
    x = _as_tensor(x)

    if not training or p == 0:
        return x

    # Scale by 1/(1-p) to maintain expected value
    mask = (np.random.rand(*x.shape) > p).astype(np.float32) / (1.0 - p)
    out = Tensor(x.data * mask, (x,), 'dropout')

    def _backward():
        if x.requires_grad:
            x.grad += out.grad * mask

    out._backward = _backward
    return out
