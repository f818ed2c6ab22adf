"""
Unit Tests: Layers, Losses and Optimizers
=========================================

End-to-end training on small convex and non-convex problems.

Run with: pytest tests/test_nn.py -v
"""

import numpy as np
import pytest

from nanograd import (
    MLP,
    SGD,
    Adam,
    Linear,
    Module,
    ShapeMismatchError,
    Tensor,
    categorical_cross_entropy,
    log_softmax,
    mse_loss,
    use_graph,
)


def regression_data(seed: int = 0):
    rng = np.random.default_rng(seed)
    x = rng.normal(size=(8, 2))
    y = x @ np.array([[2.0], [-3.0]]) + 0.5
    return Tensor(x), Tensor(y)


class TestLayers:
    """Shapes and parameters."""

    def test_linear_shapes(self) -> None:
        with use_graph():
            layer = Linear(3, 2, rng=np.random.default_rng(0))
            out = layer(Tensor.ones((5, 3)))
        assert out.shape == (5, 2)
        assert layer.weight.shape == (3, 2)
        assert layer.bias.shape == (1, 2)
        assert len(layer.parameters()) == 2

    def test_linear_without_bias(self) -> None:
        with use_graph():
            layer = Linear(3, 2, bias=False)
            out = layer(Tensor.ones((1, 3)))
        assert layer.parameters() == [layer.weight]
        np.testing.assert_allclose(out.data, layer.weight.data.sum(axis=0, keepdims=True))

    def test_linear_rejects_wrong_width(self) -> None:
        with use_graph():
            layer = Linear(3, 2)
            with pytest.raises(ShapeMismatchError):
                layer(Tensor.ones((5, 4)))

    def test_mlp_structure(self) -> None:
        with use_graph():
            model = MLP(3, [4, 4, 1], activation='tanh')
            out = model(Tensor.ones((2, 3)))
        assert out.shape == (2, 1)
        assert len(model.layers) == 3
        assert len(model.parameters()) == 6
        assert 'tanh' in repr(model)

    def test_mlp_rejects_unknown_activation(self) -> None:
        with pytest.raises(ValueError):
            MLP(2, [1], activation='softplus')

    def test_zero_grad(self) -> None:
        with use_graph():
            layer = Linear(2, 1)
            layer(Tensor.ones((1, 2))).sum().backward()
            assert layer.weight.grad is not None
            layer.zero_grad()
        assert all(p.grad is None for p in layer.parameters())

    def test_base_module(self) -> None:
        assert Module().parameters() == []
        with pytest.raises(NotImplementedError):
            Module()(Tensor.ones((1, 1)))


class TestLoss:
    """Mean squared error."""

    def test_mse_value(self) -> None:
        pred = Tensor([[1.0], [2.0], [4.0]])
        loss = mse_loss(pred, [[1.0], [1.0], [1.0]])
        assert loss.shape == (1, 1)
        np.testing.assert_allclose(loss.item(), (0 + 1 + 9) / 3)

    def test_mse_accepts_flat_targets(self) -> None:
        pred = Tensor([[1.0], [3.0]])
        np.testing.assert_allclose(mse_loss(pred, [0.0, 0.0]).item(), 5.0)

    def test_mse_gradient(self) -> None:
        pred = Tensor([[1.0], [3.0]], requires_grad=True)
        mse_loss(pred, Tensor([[0.0], [1.0]])).backward()
        # d/dp mean((p - t)^2) = 2 (p - t) / n
        np.testing.assert_allclose(pred.grad, [[1.0], [2.0]])

    @pytest.mark.parametrize("shape", [(0, 3), (2, 0)])
    def test_mse_rejects_empty_predictions(self, shape) -> None:
        with pytest.raises(ShapeMismatchError):
            mse_loss(Tensor.zeros(shape), Tensor.zeros(shape))

    def test_mse_rejects_mismatched_targets(self) -> None:
        with pytest.raises(ShapeMismatchError):
            mse_loss(Tensor.zeros((2, 1)), Tensor.zeros((1, 2)))


class TestCrossEntropy:
    """Log-softmax and categorical cross-entropy."""

    def test_log_softmax_rows(self) -> None:
        x = np.array([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0]])
        expected = x - np.log(np.exp(x).sum(axis=1, keepdims=True))
        np.testing.assert_allclose(log_softmax(Tensor(x)).data, expected, rtol=1e-12)

    def test_known_value(self) -> None:
        pred = Tensor([1.0, 2.0, 3.0, 9.0], (2, 2))
        loss = categorical_cross_entropy(pred, Tensor([0.0, 1.0, 1.0, 0.0], (2, 2)))
        assert loss.shape == (1, 1)
        np.testing.assert_allclose(loss.item(), 3.1578685995332485, rtol=1e-9)

    def test_accepts_flat_targets(self) -> None:
        pred = Tensor([1.0, 2.0, 3.0, 9.0], (2, 2))
        np.testing.assert_allclose(
            categorical_cross_entropy(pred, [0.0, 1.0, 1.0, 0.0]).item(),
            3.1578685995332485, rtol=1e-9
        )

    def test_gradient_matches_finite_differences(self) -> None:
        rng = np.random.default_rng(4)
        logits = rng.normal(size=(3, 4))
        labels = np.eye(4)[[2, 0, 3]]

        def loss_at(values: np.ndarray) -> float:
            return categorical_cross_entropy(Tensor(values), labels).item()

        x = Tensor(logits, requires_grad=True)
        categorical_cross_entropy(x, labels).backward()

        eps = 1e-6
        expected = np.zeros_like(logits)
        for idx in np.ndindex(logits.shape):
            plus, minus = logits.copy(), logits.copy()
            plus[idx] += eps
            minus[idx] -= eps
            expected[idx] = (loss_at(plus) - loss_at(minus)) / (2 * eps)
        np.testing.assert_allclose(x.grad, expected, rtol=1e-5, atol=1e-7)

        # closed form: -(1/k) (t - softmax(x) * rowsum(t))
        s = np.exp(logits) / np.exp(logits).sum(axis=1, keepdims=True)
        np.testing.assert_allclose(x.grad, -(labels - s) / 4, rtol=1e-9, atol=1e-12)

    def test_rejects_mismatched_shapes(self) -> None:
        with pytest.raises(ShapeMismatchError):
            categorical_cross_entropy(Tensor.zeros((2, 3)), Tensor.zeros((3, 2)))

    def test_rejects_empty_predictions(self) -> None:
        with pytest.raises(ShapeMismatchError):
            categorical_cross_entropy(Tensor.zeros((0, 3)), [])

    def test_training_lowers_loss(self) -> None:
        with use_graph():
            x = Tensor(np.random.default_rng(5).normal(size=(6, 2)))
            labels = np.eye(3)[[0, 1, 2, 0, 1, 2]]
            model = Linear(2, 3, rng=np.random.default_rng(6))
            opt = SGD(model.parameters(), lr=0.5)
            losses = []
            for _ in range(30):
                loss = categorical_cross_entropy(model(x), labels)
                losses.append(loss.item())
                opt.zero_grad()
                loss.backward()
                opt.step()
        assert losses[-1] < losses[0]


class TestTraining:
    """Gradient descent actually descends."""

    def test_single_step_lowers_loss(self) -> None:
        with use_graph():
            x, y = regression_data()
            model = Linear(2, 1, rng=np.random.default_rng(1))
            loss = mse_loss(model(x), y)
            loss.backward()

            for p in model.parameters():
                assert p.grad is not None
                assert np.all(np.isfinite(p.grad))
                assert np.any(p.grad != 0)

            SGD(model.parameters(), lr=0.01).step()
            new_loss = mse_loss(model(x), y)
        assert new_loss.item() < loss.item()

    def test_linear_regression_converges(self) -> None:
        with use_graph() as g:
            x, y = regression_data()
            model = Linear(2, 1, rng=np.random.default_rng(2))
            opt = SGD(model.parameters(), lr=0.1)

            first = None
            for _ in range(300):
                loss = mse_loss(model(x), y)
                first = loss.item() if first is None else first
                opt.zero_grad()
                loss.backward()
                opt.step()
                g.prune(model.parameters() + [x, y])

            assert len(g) == 4
        assert loss.item() < first * 0.01
        np.testing.assert_allclose(model.weight.data, [[2.0], [-3.0]], atol=0.05)
        np.testing.assert_allclose(model.bias.data, [[0.5]], atol=0.05)

    def test_mlp_with_adam(self) -> None:
        with use_graph() as g:
            x = Tensor([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])
            y = Tensor([[0.0], [1.0], [1.0], [0.0]])
            model = MLP(2, [8, 1], activation='tanh', rng=np.random.default_rng(3))
            opt = Adam(model.parameters(), lr=0.05)

            losses = []
            for _ in range(200):
                loss = mse_loss(model(x), y)
                losses.append(loss.item())
                opt.zero_grad()
                loss.backward()
                opt.step()
                g.prune(model.parameters() + [x, y])
        assert losses[-1] < losses[0]

    def test_adam_skips_parameters_without_gradient(self) -> None:
        w = Tensor([[1.0, 2.0]], requires_grad=True)
        opt = Adam([w], lr=0.1)
        opt.step()
        np.testing.assert_allclose(w.data, [[1.0, 2.0]])
