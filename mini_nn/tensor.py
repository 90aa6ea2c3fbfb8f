"""
Tensor class with automatic differentiation support for batched operations.
Supports scalar and multidimensional arrays with broadcasting.
"""
import logging

import numpy as np

from .hooks import RemovableHandle

logger = logging.getLogger(__name__)


def _unbroadcast(grad, shape):
    """Sum a broadcast gradient back down to `shape`."""
    # Sum out added leading dims
    while grad.ndim > len(shape):
        grad = grad.sum(axis=0)
    # Sum over broadcasted dims
    for i, size in enumerate(shape):
        if size == 1 and grad.shape[i] != 1:
            grad = grad.sum(axis=i, keepdims=True)
    return grad


def _normalize_axes(axis, ndim):
    if axis is None:
        return tuple(range(ndim))
    if isinstance(axis, int):
        axis = (axis,)
    return tuple(sorted(ax % ndim for ax in axis))


def _expand_reduced(grad, axis, keepdims, ndim):
    """Add back the dimensions removed by a reduction so `grad` broadcasts."""
    if keepdims or axis is None:
        return grad
    for ax in _normalize_axes(axis, ndim):
        grad = np.expand_dims(grad, axis=ax)
    return grad


class Tensor:
    """
    Stores a tensor (scalar or multidimensional array) and its gradient.
    Supports automatic differentiation with reverse-mode autodiff.

    Leaf tensors created by the user do not track gradients unless
    ``requires_grad=True`` is passed. Tensors produced by an operation
    require grad whenever one of their inputs does.
    """

    # numpy defers to the reflected operators, so ndarray * Tensor is a Tensor
    __array_ufunc__ = None

    def __init__(self, data, _children=(), _op='', requires_grad=None):
        if isinstance(data, Tensor):
            data = data.data
        self.data = np.array(data, dtype=np.float32)

        if requires_grad is None:
            requires_grad = any(child.requires_grad for child in _children)
        self.requires_grad = requires_grad
        self.grad = np.zeros_like(self.data) if requires_grad else None

        # internal variables used for autograd graph construction
        self._backward = lambda: None
        self._prev = tuple(_children)
        self._op = _op  # the op that produced this node
        self._hooks = []

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def shape(self):
        return self.data.shape

    @property
    def ndim(self):
        """Number of dimensions."""
        return self.data.ndim

    @property
    def grad_fn(self):
        """Name of the op that produced this tensor, None for leaves."""
        return self._op or None

    @property
    def is_leaf(self):
        return not self._prev

    def size(self, dim=None):
        """Shape as a tuple, or the length of one dimension."""
        if dim is None:
            return self.data.shape
        return self.data.shape[dim]

    def dim(self):
        return self.data.ndim

    def numel(self):
        """Total number of elements."""
        return self.data.size

    def item(self):
        """Get scalar value (for single-element tensors)."""
        return self.data.item()

    def numpy(self):
        """Return data as numpy array."""
        return self.data

    def detach(self):
        """New leaf tensor sharing no graph history with this one."""
        return Tensor(self.data.copy(), requires_grad=False)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __add__(self, other):
        other = other if isinstance(other, Tensor) else Tensor(other)
        out = Tensor(self.data + other.data, (self, other), '+')

        def _backward():
            if self.requires_grad:
                self.grad += _unbroadcast(out.grad, self.shape)
            if other.requires_grad:
                other.grad += _unbroadcast(out.grad, other.shape)

        out._backward = _backward
        return out

    def __mul__(self, other):
        other = other if isinstance(other, Tensor) else Tensor(other)
        out = Tensor(self.data * other.data, (self, other), '*')

        def _backward():
            if self.requires_grad:
                self.grad += _unbroadcast(other.data * out.grad, self.shape)
            if other.requires_grad:
                other.grad += _unbroadcast(self.data * out.grad, other.shape)

        out._backward = _backward
        return out

    def __pow__(self, other):
        if not isinstance(other, (int, float)):
            raise TypeError(f"only int/float powers are supported, got {type(other).__name__}")
        out = Tensor(self.data ** other, (self,), f'**{other}')

        def _backward():
            if self.requires_grad:
                self.grad += (other * self.data ** (other - 1)) * out.grad

        out._backward = _backward
        return out

    def __matmul__(self, other):
        """Matrix multiplication with autograd support."""
        other = other if isinstance(other, Tensor) else Tensor(other)
        out = Tensor(self.data @ other.data, (self, other), '@')

        def _backward():
            # Promote vectors to matrices so both cases share one rule
            a = self.data[None, :] if self.ndim == 1 else self.data
            b = other.data[:, None] if other.ndim == 1 else other.data
            grad = out.grad
            if self.ndim == 1:
                grad = np.expand_dims(grad, -2)
            if other.ndim == 1:
                grad = np.expand_dims(grad, -1)

            if self.requires_grad:
                # gradient w.r.t. self: grad @ other.T
                grad_self = grad @ b.swapaxes(-2, -1)
                self.grad += _unbroadcast(grad_self, a.shape).reshape(self.shape)
            if other.requires_grad:
                # gradient w.r.t. other: self.T @ grad
                grad_other = a.swapaxes(-2, -1) @ grad
                other.grad += _unbroadcast(grad_other, b.shape).reshape(other.shape)

        out._backward = _backward
        return out

    def __neg__(self):
        return self * -1

    def __radd__(self, other):
        return self + other

    def __sub__(self, other):
        return self + (-other)

    def __rsub__(self, other):
        return other + (-self)

    def __rmul__(self, other):
        return self * other

    def __truediv__(self, other):
        return self * (other ** -1 if isinstance(other, Tensor) else 1.0 / other)

    def __rtruediv__(self, other):
        return other * self ** -1

    def __rmatmul__(self, other):
        return Tensor(other) @ self

    # ------------------------------------------------------------------
    # Reductions
    # ------------------------------------------------------------------

    def sum(self, axis=None, keepdims=False):
        """Sum elements along given axis."""
        out = Tensor(self.data.sum(axis=axis, keepdims=keepdims), (self,), 'sum')

        def _backward():
            if self.requires_grad:
                grad = _expand_reduced(out.grad, axis, keepdims, self.ndim)
                self.grad += np.broadcast_to(grad, self.shape)

        out._backward = _backward
        return out

    def mean(self, axis=None, keepdims=False):
        """Mean of elements along given axis."""
        out = Tensor(self.data.mean(axis=axis, keepdims=keepdims), (self,), 'mean')
        n = int(np.prod([self.shape[ax] for ax in _normalize_axes(axis, self.ndim)]))

        def _backward():
            if self.requires_grad:
                grad = _expand_reduced(out.grad / n, axis, keepdims, self.ndim)
                self.grad += np.broadcast_to(grad, self.shape)

        out._backward = _backward
        return out

    def max(self, axis=None, keepdims=False):
        """Max of elements along given axis."""
        out = Tensor(self.data.max(axis=axis, keepdims=keepdims), (self,), 'max')

        def _backward():
            if self.requires_grad:
                # Gradient is split evenly between tied maxima
                grad = _expand_reduced(out.grad, axis, keepdims, self.ndim)
                max_vals = _expand_reduced(out.data, axis, keepdims, self.ndim)
                mask = (self.data == max_vals).astype(np.float32)
                mask /= _expand_reduced(mask.sum(axis=axis, keepdims=keepdims), axis, keepdims, self.ndim)
                self.grad += mask * np.broadcast_to(grad, self.shape)

        out._backward = _backward
        return out

    def norm(self):
        """L2 norm over all elements."""
        value = np.sqrt((self.data ** 2).sum())
        out = Tensor(value, (self,), 'norm')

        def _backward():
            if self.requires_grad and value > 0:
                self.grad += (self.data / value) * out.grad

        out._backward = _backward
        return out

    # ------------------------------------------------------------------
    # Shape manipulation
    # ------------------------------------------------------------------

    def reshape(self, *shape):
        """Reshape tensor to new shape."""
        if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
            shape = shape[0]
        out = Tensor(self.data.reshape(shape), (self,), 'reshape')

        def _backward():
            if self.requires_grad:
                self.grad += out.grad.reshape(self.shape)

        out._backward = _backward
        return out

    def view(self, *shape):
        """Alias of reshape; -1 infers one dimension."""
        return self.reshape(*shape)

    def transpose(self, *axes):
        """Transpose tensor dimensions."""
        if len(axes) == 0:
            # Default transpose: reverse all axes
            axes = None
        elif len(axes) == 1 and isinstance(axes[0], (tuple, list)):
            axes = axes[0]

        out = Tensor(self.data.transpose(axes), (self,), 'transpose')

        def _backward():
            if self.requires_grad:
                if axes is None:
                    self.grad += out.grad.transpose()
                else:
                    self.grad += out.grad.transpose(np.argsort([ax % self.ndim for ax in axes]))

        out._backward = _backward
        return out

    @property
    def T(self):
        """Transpose property for 2D tensors."""
        return self.transpose()

    def squeeze(self, axis=None):
        """Remove single-dimensional entries."""
        out = Tensor(self.data.squeeze(axis), (self,), 'squeeze')

        def _backward():
            if self.requires_grad:
                self.grad += out.grad.reshape(self.shape)

        out._backward = _backward
        return out

    def unsqueeze(self, axis):
        """Add a dimension of size 1."""
        out = Tensor(np.expand_dims(self.data, axis), (self,), 'unsqueeze')

        def _backward():
            if self.requires_grad:
                self.grad += out.grad.reshape(self.shape)

        out._backward = _backward
        return out

    def __getitem__(self, idx):
        """Advanced indexing support."""
        if isinstance(idx, Tensor):
            idx = idx.data.astype(np.int64)
        out = Tensor(self.data[idx], (self,), 'getitem')

        def _backward():
            if self.requires_grad:
                # add.at keeps repeated indices accumulating
                np.add.at(self.grad, idx, out.grad)

        out._backward = _backward
        return out

    def relu(self):
        """ReLU activation function."""
        out = Tensor(np.maximum(0, self.data), (self,), 'ReLU')

        def _backward():
            if self.requires_grad:
                self.grad += (self.data > 0).astype(np.float32) * out.grad

        out._backward = _backward
        return out

    # ------------------------------------------------------------------
    # Autograd
    # ------------------------------------------------------------------

    def register_hook(self, hook):
        """
        Register a function called with this tensor's gradient during backward.

        The hook runs before the gradient is propagated to the tensor's
        inputs. Returning an array replaces the gradient.
        """
        if not callable(hook):
            raise TypeError(f"hook must be callable, got {type(hook).__name__}")
        if not self.requires_grad:
            raise RuntimeError("cannot register a hook on a tensor that doesn't require grad")
        self._hooks.append(hook)
        return RemovableHandle(self._hooks, hook)

    def build_topo(self):
        """Topological ordering of the nodes that require grad."""
        topo = []
        visited = set()
        # Iterative DFS so long unrolled graphs don't hit the recursion limit
        stack = [(self, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                topo.append(node)
                continue
            if id(node) in visited:
                continue
            visited.add(id(node))
            stack.append((node, True))
            for child in node._prev:
                if child.requires_grad and id(child) not in visited:
                    stack.append((child, False))
        return topo

    def backward(self, gradient=None):
        """
        Compute gradients using reverse-mode autodiff.

        Gradients accumulate into ``.grad`` of every tensor in the graph
        that requires grad. A non-scalar output needs an explicit seed
        ``gradient`` of its own shape.
        """
        if not self.requires_grad:
            raise RuntimeError("tensor does not require grad and has no graph to backpropagate through")
        if gradient is None:
            if self.data.size != 1:
                raise RuntimeError(
                    f"grad can be implicitly created only for scalar outputs, got shape {self.shape}"
                )
            gradient = np.ones_like(self.data)
        else:
            gradient = np.array(gradient.data if isinstance(gradient, Tensor) else gradient,
                                dtype=np.float32)
            if gradient.shape != self.shape:
                raise ValueError(f"gradient shape {gradient.shape} does not match tensor shape {self.shape}")

        topo = self.build_topo()
        logger.debug("backward through %d nodes from %s", len(topo), self._op or 'leaf')

        # Intermediate gradients are per-pass, only leaves accumulate
        for v in topo:
            if v._prev:
                v.grad = np.zeros_like(v.data)
        self.grad = self.grad + gradient

        # Apply chain rule in reverse order
        for v in reversed(topo):
            for hook in v._hooks:
                replaced = hook(v.grad)
                if replaced is not None:
                    v.grad = np.array(replaced, dtype=np.float32).reshape(v.shape)
            v._backward()

    def zero_grad(self):
        """Reset gradients to zero."""
        if self.requires_grad:
            self.grad = np.zeros_like(self.data)

    def __repr__(self):
        if self._op:
            return f"Tensor({self.data}, grad_fn={self._op})"
        if self.requires_grad:
            return f"Tensor({self.data}, requires_grad=True)"
        return f"Tensor({self.data})"

    def __len__(self):
        return len(self.data)


# ----------------------------------------------------------------------
# Constructors
# ----------------------------------------------------------------------

def tensor(data, requires_grad=False):
    """Create a leaf tensor from a Python scalar, list or array."""
    return Tensor(data, requires_grad=requires_grad)


def zeros(*shape, requires_grad=False):
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        shape = shape[0]
    return Tensor(np.zeros(shape, dtype=np.float32), requires_grad=requires_grad)


def ones(*shape, requires_grad=False):
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        shape = shape[0]
    return Tensor(np.ones(shape, dtype=np.float32), requires_grad=requires_grad)


def randn(*shape, requires_grad=False):
    """Samples from the standard normal distribution."""
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        shape = shape[0]
    return Tensor(np.random.randn(*shape).astype(np.float32), requires_grad=requires_grad)


def manual_seed(seed):
    """Seed the global generator used for initialisation and dropout."""
    np.random.seed(seed)
