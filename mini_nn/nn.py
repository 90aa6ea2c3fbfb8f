"""
Neural network layers and modules for mini_nn.
Includes the Module base class, Parameter, Linear, Conv2d, MaxPool2d,
containers and loss modules.
"""
import numpy as np

from .tensor import Tensor
from .hooks import RemovableHandle
from . import functional as F


class Parameter(Tensor):
    """
    A Tensor that is a learnable parameter of a Module.

    Assigning a Parameter as a module attribute registers it, so it shows up
    in ``parameters()`` and receives gradients during ``backward()``.
    """

    def __init__(self, data, requires_grad=True):
        super().__init__(data, requires_grad=requires_grad)

    def __repr__(self):
        return f"Parameter containing:\n{super().__repr__()}"


class Module:
    """
    Base class for all neural network modules.

    Subclasses declare their layers in ``__init__`` (after calling
    ``super().__init__()``) and define the computation in ``forward``.
    """

    def __init__(self):
        object.__setattr__(self, '_parameters', {})
        object.__setattr__(self, '_modules', {})
        object.__setattr__(self, '_forward_hooks', [])
        object.__setattr__(self, '_backward_hooks', [])
        self.training = True

    def __setattr__(self, name, value):
        params = self.__dict__.get('_parameters')
        modules = self.__dict__.get('_modules')
        if isinstance(value, (Parameter, Module)) and params is None:
            raise AttributeError("cannot assign parameters or modules before Module.__init__() call")

        if isinstance(value, Parameter):
            modules.pop(name, None)
            params[name] = value
        elif isinstance(value, Module):
            params.pop(name, None)
            modules[name] = value
        elif params is not None and name in params:
            if value is not None:
                raise TypeError(
                    f"cannot assign '{type(value).__name__}' as parameter '{name}' "
                    "(mini_nn.nn.Parameter or None expected)"
                )
            params[name] = None
        elif modules is not None and name in modules:
            if value is not None:
                raise TypeError(
                    f"cannot assign '{type(value).__name__}' as child module '{name}' "
                    "(mini_nn.nn.Module or None expected)"
                )
            modules[name] = None
        object.__setattr__(self, name, value)

    def __delattr__(self, name):
        self._parameters.pop(name, None)
        self._modules.pop(name, None)
        object.__delattr__(self, name)

    def forward(self, *args, **kwargs):
        """Forward pass - to be implemented by subclasses"""
        raise NotImplementedError(f"Module [{type(self).__name__}] is missing the required \"forward\" function")

    def __call__(self, *args, **kwargs):
        """Run forward, wiring in any registered hooks."""
        gate = None
        forward_args = args
        if self._backward_hooks:
            forward_args, gate = self._attach_input_gate(args)

        output = self.forward(*forward_args, **kwargs)

        for hook in list(self._forward_hooks):
            result = hook(self, args, output)
            if result is not None:
                output = result

        if gate is not None:
            output = self._attach_output_gate(output, gate)
        return output

    # ------------------------------------------------------------------
    # Backward hooks
    #
    # Each call gets one gate node. Tracked tensor inputs are the gate's
    # parents and are rerouted through wrappers that are its children.
    # Every output wrapper is a child of the gate as well, so in reverse
    # topological order the gate runs once, after all output and input
    # gradients of the call are known and before the original inputs
    # propagate further.
    # ------------------------------------------------------------------

    def _attach_input_gate(self, args):
        tracked = tuple(a for a in args if isinstance(a, Tensor) and a.requires_grad)
        gate = Tensor(0.0, tracked, 'BackwardHookGate', requires_grad=True)
        gate.grad_output = []
        inputs = []
        new_args = []
        for a in args:
            if isinstance(a, Tensor) and a.requires_grad:
                w = Tensor(a.data, (gate,), 'BackwardHookInput')
                inputs.append((a, w))
                new_args.append(w)
            else:
                if isinstance(a, Tensor):
                    inputs.append((a, None))
                new_args.append(a)

        def _backward():
            grad_input = tuple(None if w is None else w.grad for _, w in inputs) or (None,)
            grad_input = self._run_backward_hooks(grad_input, tuple(gate.grad_output))
            for (original, w), grad in zip(inputs, grad_input):
                if w is not None and grad is not None:
                    original.grad += grad

        gate._backward = _backward
        return tuple(new_args), gate

    def _attach_output_gate(self, output, gate):
        """Route every tracked Tensor of ``output`` (a Tensor or a tuple/list of them) through `gate`."""
        single = isinstance(output, Tensor)
        items = [output] if single else output
        if not isinstance(items, (tuple, list)):
            raise TypeError(
                f"backward hooks need forward to return a Tensor or a tuple of Tensors, "
                f"got {type(output).__name__}"
            )

        grad_output = [None] * len(items)
        gate.grad_output = grad_output
        gated = []
        for idx, item in enumerate(items):
            if isinstance(item, Tensor) and item.requires_grad:
                item = self._gate_output(item, idx, gate, grad_output)
            gated.append(item)

        if single:
            return gated[0]
        return type(output)(gated)

    @staticmethod
    def _gate_output(output, idx, gate, grad_output):
        out = Tensor(output.data, (output, gate), 'BackwardHookOutput')

        def _backward():
            output.grad += out.grad
            grad_output[idx] = out.grad.copy()

        out._backward = _backward
        return out

    def _run_backward_hooks(self, grad_input, grad_output):
        for hook in list(self._backward_hooks):
            result = hook(self, grad_input, grad_output)
            if result is not None:
                if len(result) != len(grad_input):
                    raise ValueError(
                        f"backward hook returned {len(result)} gradients, expected {len(grad_input)}"
                    )
                grad_input = tuple(None if g is None else np.asarray(g, dtype=np.float32) for g in result)
        return grad_input

    def register_forward_hook(self, hook):
        """
        Register ``hook(module, input, output)`` called after every forward.

        ``input`` is the tuple of positional arguments. A non-None return
        value replaces the output.
        """
        if not callable(hook):
            raise TypeError(f"hook must be callable, got {type(hook).__name__}")
        self._forward_hooks.append(hook)
        return RemovableHandle(self._forward_hooks, hook)

    def register_backward_hook(self, hook):
        """
        Register ``hook(module, grad_input, grad_output)`` called during backward.

        ``grad_output`` holds the gradient w.r.t. the module output and
        ``grad_input`` the gradients w.r.t. its tensor inputs (None for
        inputs that don't require grad). Returning a tuple replaces
        ``grad_input``.
        """
        if not callable(hook):
            raise TypeError(f"hook must be callable, got {type(hook).__name__}")
        self._backward_hooks.append(hook)
        return RemovableHandle(self._backward_hooks, hook)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def named_parameters(self, prefix=''):
        """Yield (name, parameter) pairs, recursing into submodules."""
        seen = set()
        for module_prefix, module in self.named_modules(prefix):
            for name, param in module._parameters.items():
                if param is None or id(param) in seen:
                    continue
                seen.add(id(param))
                yield (f"{module_prefix}.{name}" if module_prefix else name), param

    def parameters(self):
        """Return an iterator over all parameters in this module"""
        for _, param in self.named_parameters():
            yield param

    def named_children(self):
        for name, module in self._modules.items():
            if module is not None:
                yield name, module

    def children(self):
        for _, module in self.named_children():
            yield module

    def named_modules(self, prefix=''):
        """Yield (name, module) for this module and every descendant."""
        seen = set()
        stack = [(prefix, self)]
        while stack:
            name, module = stack.pop()
            if id(module) in seen:
                continue
            seen.add(id(module))
            yield name, module
            children = list(module.named_children())
            for child_name, child in reversed(children):
                stack.append((f"{name}.{child_name}" if name else child_name, child))

    def modules(self):
        for _, module in self.named_modules():
            yield module

    def train(self, mode=True):
        """Set module and its descendants to training mode"""
        for module in self.modules():
            module.training = mode
        return self

    def eval(self):
        """Set module and its descendants to evaluation mode"""
        return self.train(False)

    def zero_grad(self):
        """Zero out all parameter gradients"""
        for p in self.parameters():
            p.zero_grad()

    # ------------------------------------------------------------------
    # Printing
    # ------------------------------------------------------------------

    def extra_repr(self):
        return ''

    def __repr__(self):
        lines = []
        extra = self.extra_repr()
        if extra:
            lines.extend(extra.split('\n'))
        for name, module in self.named_children():
            child = repr(module).replace('\n', '\n  ')
            lines.append(f"({name}): {child}")

        main = type(self).__name__ + '('
        if lines:
            if len(lines) == 1 and not self._modules:
                return main + lines[0] + ')'
            main += '\n  ' + '\n  '.join(lines) + '\n'
        return main + ')'


class Linear(Module):
    """
    Fully connected (dense) layer: y = xW^T + b

    Args:
        in_features: Number of input features
        out_features: Number of output features
        bias: Whether to include bias term
    """

    def __init__(self, in_features, out_features, bias=True):
        super().__init__()
        self.in_features = in_features
        self.out_features = out_features

        # Uniform init in +-1/sqrt(fan_in)
        bound = 1.0 / np.sqrt(in_features)
        self.weight = Parameter(np.random.uniform(-bound, bound, (out_features, in_features)))
        if bias:
            self.bias = Parameter(np.random.uniform(-bound, bound, out_features))
        else:
            self.bias = None

    def forward(self, x):
        return F.linear(x, self.weight, self.bias)

    def extra_repr(self):
        return f"in_features={self.in_features}, out_features={self.out_features}, bias={self.bias is not None}"


class Conv2d(Module):
    """
    2D Convolution layer.

    Args:
        in_channels: Number of input channels
        out_channels: Number of output filters
        kernel_size: Size of convolution kernel (int or tuple)
        stride: Stride of convolution (default: 1)
        padding: Padding added to input (default: 0)
        bias: Whether to include bias term
    """

    def __init__(self, in_channels, out_channels, kernel_size, stride=1, padding=0, bias=True):
        super().__init__()
        self.in_channels = in_channels
        self.out_channels = out_channels
        self.kernel_size = F._pair(kernel_size)
        self.stride = F._pair(stride)
        self.padding = F._pair(padding)

        # Weights: (out_channels, in_channels, kH, kW)
        k_h, k_w = self.kernel_size
        bound = 1.0 / np.sqrt(in_channels * k_h * k_w)
        self.weight = Parameter(np.random.uniform(-bound, bound, (out_channels, in_channels, k_h, k_w)))
        if bias:
            self.bias = Parameter(np.random.uniform(-bound, bound, out_channels))
        else:
            self.bias = None

    def forward(self, x):
        return F.conv2d(x, self.weight, self.bias, self.stride, self.padding)

    def extra_repr(self):
        s = f"{self.in_channels}, {self.out_channels}, kernel_size={self.kernel_size}, stride={self.stride}"
        if self.padding != (0, 0):
            s += f", padding={self.padding}"
        if self.bias is None:
            s += ", bias=False"
        return s


class MaxPool2d(Module):
    """
    2D Max Pooling layer.

    Args:
        kernel_size: Size of pooling window
        stride: Stride of pooling (default: same as kernel_size)
        padding: Padding added to input (default: 0)
    """

    def __init__(self, kernel_size, stride=None, padding=0):
        super().__init__()
        self.kernel_size = kernel_size
        self.stride = stride if stride is not None else kernel_size
        self.padding = padding

    def forward(self, x):
        return F.max_pool2d(x, self.kernel_size, self.stride, self.padding)

    def extra_repr(self):
        return f"kernel_size={self.kernel_size}, stride={self.stride}, padding={self.padding}"


class ReLU(Module):
    """Applies max(0, x) element-wise"""

    def forward(self, x):
        return F.relu(x)


class Dropout(Module):
    """
    Dropout layer for regularization. Inactive in eval mode.

    Args:
        p: Probability of dropping a unit (between 0 and 1)
    """

    def __init__(self, p=0.5):
        super().__init__()
        if not 0 <= p < 1:
            raise ValueError(f"dropout probability has to be in [0, 1), got {p}")
        self.p = p

    def forward(self, x):
        return F.dropout(x, p=self.p, training=self.training)

    def extra_repr(self):
        return f"p={self.p}"


class Flatten(Module):
    """Flatten all dimensions except batch dimension"""

    def forward(self, x):
        return x.view(x.size(0), -1)


class Sequential(Module):
    """
    Sequential container for modules.
    Passes input through each module in order.
    """

    def __init__(self, *modules):
        super().__init__()
        for idx, module in enumerate(modules):
            setattr(self, str(idx), module)

    def forward(self, x):
        for module in self.children():
            x = module(x)
        return x

    def __getitem__(self, idx):
        return list(self.children())[idx]

    def __len__(self):
        return len(self._modules)


class MSELoss(Module):
    """Mean squared error between input and target"""

    def __init__(self, reduction='mean'):
        super().__init__()
        self.reduction = reduction

    def forward(self, input, target):
        return F.mse_loss(input, target, reduction=self.reduction)


class CrossEntropyLoss(Module):
    """Cross entropy between raw class scores and integer class targets"""

    def __init__(self, reduction='mean'):
        super().__init__()
        self.reduction = reduction

    def forward(self, input, target):
        return F.cross_entropy(input, target, reduction=self.reduction)
