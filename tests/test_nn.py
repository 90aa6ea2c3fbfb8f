import numpy as np
import pytest

import mini_nn
from mini_nn import nn
from mini_nn import functional as F


class TwoLayer(nn.Module):
    def __init__(self):
        super().__init__()
        self.fc1 = nn.Linear(4, 3)
        self.act = nn.ReLU()
        self.fc2 = nn.Linear(3, 2, bias=False)
        self.scale = nn.Parameter(np.ones(1))

    def forward(self, x):
        return self.fc2(self.act(self.fc1(x))) * self.scale


def test_parameters_are_registered_in_declaration_order():
    net = TwoLayer()
    names = [name for name, _ in net.named_parameters()]
    assert names == ['scale', 'fc1.weight', 'fc1.bias', 'fc2.weight']
    assert len(list(net.parameters())) == 4
    assert [name for name, _ in net.named_children()] == ['fc1', 'act', 'fc2']


def test_linear_weight_layout():
    layer = nn.Linear(5, 3)
    assert layer.weight.shape == (3, 5)
    assert layer.bias.shape == (3,)
    assert layer(mini_nn.randn(7, 5)).shape == (7, 3)
    assert layer(mini_nn.randn(5)).shape == (3,)
    with pytest.raises(ValueError):
        layer(mini_nn.randn(7, 4))


def test_shared_parameters_are_listed_once():
    shared = nn.Linear(2, 2)
    model = nn.Sequential(shared, nn.ReLU(), shared)
    assert len(list(model.parameters())) == 2


def test_assigning_non_parameter_over_parameter_fails():
    layer = nn.Linear(2, 2)
    with pytest.raises(TypeError):
        layer.weight = np.zeros((2, 2))
    layer.bias = None
    assert [name for name, _ in layer.named_parameters()] == ['weight']


def test_assigning_before_init_fails():
    class Broken(nn.Module):
        def __init__(self):
            self.fc = nn.Linear(1, 1)

    with pytest.raises(AttributeError, match="__init__"):
        Broken()


def test_forward_must_be_implemented():
    with pytest.raises(NotImplementedError):
        nn.Module()(mini_nn.randn(1))


def test_repr_is_nested():
    text = repr(TwoLayer())
    assert text.startswith('TwoLayer(\n')
    assert '  (fc1): Linear(in_features=4, out_features=3, bias=True)' in text
    assert '  (act): ReLU()' in text
    assert '(fc2): Linear(in_features=3, out_features=2, bias=False)' in text

    conv = repr(nn.Conv2d(1, 10, 5))
    assert conv == 'Conv2d(1, 10, kernel_size=(5, 5), stride=(1, 1))'


def test_train_eval_recurse():
    model = nn.Sequential(nn.Linear(2, 2), nn.Dropout(0.5))
    model.eval()
    assert all(not m.training for m in model.modules())
    x = mini_nn.ones(3, 2)
    np.testing.assert_allclose(model(x).data, model[0](x).data)
    model.train()
    assert all(m.training for m in model.modules())


def test_zero_grad_resets_all_parameters():
    net = TwoLayer()
    net(mini_nn.randn(2, 4)).sum().backward()
    assert any(np.any(p.grad != 0) for p in net.parameters())
    net.zero_grad()
    assert all(np.all(p.grad == 0) for p in net.parameters())


def test_reused_layer_accumulates_gradient_from_each_use():
    layer = nn.Linear(2, 2, bias=False)
    x = mini_nn.tensor([[1.0, 2.0]])

    layer(x).sum().backward()
    single = layer.weight.grad.copy()

    layer.zero_grad()
    (layer(x) + layer(x)).sum().backward()
    np.testing.assert_allclose(layer.weight.grad, 2 * single)


def test_tensor_arithmetic_replaces_containers():
    a = mini_nn.randn(2, 3, requires_grad=True)
    b = mini_nn.randn(2, 3, requires_grad=True)
    out = (a + b) * 0.5
    out.sum().backward()
    np.testing.assert_allclose(a.grad, np.full((2, 3), 0.5))
    np.testing.assert_allclose(b.grad, np.full((2, 3), 0.5))


def test_forward_hook_sees_inputs_and_output():
    layer = nn.Linear(3, 2)
    calls = []

    def hook(module, input, output):
        calls.append((module, input, output))

    handle = layer.register_forward_hook(hook)
    x = mini_nn.randn(4, 3)
    out = layer(x)

    module, input, output = calls[0]
    assert module is layer
    assert isinstance(input, tuple) and input[0] is x
    assert output is out

    handle.remove()
    layer(x)
    assert len(calls) == 1


def test_forward_hook_can_replace_output():
    layer = nn.Linear(3, 2)
    x = mini_nn.randn(1, 3)
    expected = layer(x).data * 2
    with layer.register_forward_hook(lambda m, i, o: o * 2):
        np.testing.assert_allclose(layer(x).data, expected)
    np.testing.assert_allclose(layer(x).data, expected / 2)


def test_backward_hook_receives_gradients():
    layer = nn.Linear(3, 2)
    x = mini_nn.randn(4, 3, requires_grad=True)
    seen = {}

    def hook(module, grad_input, grad_output):
        seen['module'] = module
        seen['grad_input'] = grad_input
        seen['grad_output'] = grad_output

    layer.register_backward_hook(hook)
    layer(x).sum().backward()

    assert seen['module'] is layer
    np.testing.assert_allclose(seen['grad_output'][0], np.ones((4, 2)))
    expected = np.ones((4, 2)) @ layer.weight.data
    np.testing.assert_allclose(seen['grad_input'][0], expected, rtol=1e-6)
    np.testing.assert_allclose(x.grad, expected, rtol=1e-6)
    np.testing.assert_allclose(layer.weight.grad, np.ones((2, 4)) @ x.data, rtol=1e-6)


def test_backward_hook_can_replace_grad_input():
    layer = nn.Linear(3, 2)
    x = mini_nn.randn(4, 3, requires_grad=True)
    layer.register_backward_hook(lambda m, gi, go: (np.zeros_like(gi[0]),))
    layer(x).sum().backward()
    np.testing.assert_array_equal(x.grad, np.zeros((4, 3)))
    assert np.any(layer.weight.grad != 0)


def test_backward_hook_fires_per_call_with_multiple_inputs():
    class Mix(nn.Module):
        def forward(self, a, b):
            return a * b

    mix = Mix()
    calls = []
    mix.register_backward_hook(lambda m, gi, go: calls.append(gi))

    a = mini_nn.randn(2, requires_grad=True)
    b = mini_nn.randn(2, requires_grad=True)
    h = mix(a, b)
    out = mix(h, b)
    out.sum().backward()

    assert len(calls) == 2
    np.testing.assert_allclose(b.grad, 2 * a.data * b.data, rtol=1e-5)
    np.testing.assert_allclose(a.grad, b.data ** 2, rtol=1e-5)


def test_backward_hook_with_untracked_input():
    layer = nn.Linear(3, 2)
    calls = []
    layer.register_backward_hook(lambda m, gi, go: calls.append((gi, go)))
    layer(mini_nn.randn(1, 3)).sum().backward()
    grad_input, grad_output = calls[0]
    assert grad_input == (None,)
    assert grad_output[0].shape == (1, 2)


def test_hooks_must_be_callable():
    layer = nn.Linear(1, 1)
    with pytest.raises(TypeError):
        layer.register_forward_hook(None)
    with pytest.raises(TypeError):
        layer.register_backward_hook(42)


def test_conv_and_pool_modules():
    conv = nn.Conv2d(1, 4, 3, padding=1)
    pool = nn.MaxPool2d(2)
    out = pool(F.relu(conv(mini_nn.randn(2, 1, 8, 8))))
    assert out.size() == (2, 4, 4, 4)
    assert nn.Flatten()(out).size() == (2, 64)


def test_sequential_runs_in_order():
    model = nn.Sequential(nn.Linear(4, 8), nn.ReLU(), nn.Linear(8, 2))
    assert len(model) == 3
    assert isinstance(model[1], nn.ReLU)
    assert model(mini_nn.randn(5, 4)).size() == (5, 2)
    assert [name for name, _ in model.named_parameters()] == ['0.weight', '0.bias', '2.weight', '2.bias']


def test_loss_modules():
    out = mini_nn.randn(3, 4, requires_grad=True)
    ce = nn.CrossEntropyLoss()(out, mini_nn.tensor([0, 1, 3]))
    assert ce.size() == ()
    mse = nn.MSELoss(reduction='sum')(out, mini_nn.zeros(3, 4))
    assert mse.item() == pytest.approx(float((out.data ** 2).sum()), rel=1e-5)


def test_backward_hook_fires_for_every_unrolled_step_of_tuple_output():
    from mini_nn.tutorial import RNN, unrolled_loss

    rnn = RNN(4, 3, 2)
    calls = []
    rnn.register_backward_hook(lambda m, gi, go: calls.append((gi, go)))

    batch = mini_nn.randn(5, 4)
    loss, _ = unrolled_loss(rnn, nn.MSELoss(), batch, mini_nn.zeros(5, 3), mini_nn.zeros(5, 2), timesteps=3)
    loss.backward()

    assert len(calls) == 3
    for grad_input, grad_output in calls:
        assert isinstance(grad_output, tuple) and len(grad_output) == 2
        assert grad_output[1].shape == (5, 2)
        assert len(grad_input) == 2

    # last step runs first; its hidden state feeds nothing
    last_input, last_output = calls[0]
    assert last_output[0] is None
    assert last_input[1].shape == (5, 3)
    # first step only saw untracked tensors
    first_input, first_output = calls[-1]
    assert first_input == (None, None)
    assert first_output[0].shape == (5, 3)


def test_backward_hook_leaves_tuple_output_gradients_intact():
    from mini_nn.tutorial import RNN, unrolled_loss

    rnn = RNN(4, 3, 2)
    batch = mini_nn.randn(5, 4)
    target = mini_nn.zeros(5, 2)

    loss, _ = unrolled_loss(rnn, nn.MSELoss(), batch, mini_nn.zeros(5, 3), target, timesteps=3)
    loss.backward()
    expected = rnn.i2h.weight.grad.copy()

    rnn.zero_grad()
    with rnn.register_backward_hook(lambda m, gi, go: None):
        loss, hidden = unrolled_loss(rnn, nn.MSELoss(), batch, mini_nn.zeros(5, 3), target, timesteps=3)
        loss.backward()
    assert isinstance(hidden, mini_nn.Tensor)
    np.testing.assert_allclose(rnn.i2h.weight.grad, expected, rtol=1e-5)


def test_forward_hook_sees_caller_inputs_when_backward_hook_is_set():
    layer = nn.Linear(3, 2)
    seen = []
    layer.register_backward_hook(lambda m, gi, go: None)
    layer.register_forward_hook(lambda m, i, o: seen.append(i))

    x = mini_nn.randn(4, 3, requires_grad=True)
    layer(x).sum().backward()
    assert seen[0][0] is x
    assert x.grad.shape == (4, 3)


def test_backward_hook_rejects_non_tensor_output():
    class Named(nn.Module):
        def forward(self, x):
            return {'out': x * 2}

    module = Named()
    module.register_backward_hook(lambda m, gi, go: None)
    with pytest.raises(TypeError, match="tuple of Tensors"):
        module(mini_nn.randn(2, requires_grad=True))
