#!/usr/bin/env python3
"""
NanoGrad Demo: Matrix Autograd from Scratch
===========================================

This demo shows the complete workflow:
1. Differentiate a small matrix expression
2. Print the computation graph
3. Fit a linear regression with SGD
4. Train an MLP on the moons problem with Adam

No PyTorch. No TensorFlow. Just the graph engine and NumPy.

Run: python examples/demo.py
"""

from typing import List, Tuple

import numpy as np

from nanograd import MLP, SGD, Adam, Linear, Tensor, draw_graph, mse_loss, use_graph


def make_moons(
    n_samples: int = 100,
    noise: float = 0.1,
    seed: int = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate the classic 'moons' dataset for binary classification.

    Args:
        n_samples: Total number of samples.
        noise: Standard deviation of Gaussian noise.
        seed: Random seed for reproducibility.

    Returns:
        X: Features of shape (n_samples, 2)
        y: Labels of shape (n_samples, 1) with values -1 or 1
    """
    rng = np.random.default_rng(seed)
    n_each = n_samples // 2
    theta = np.linspace(0, np.pi, n_each)

    upper = np.column_stack([np.cos(theta), np.sin(theta)])
    lower = np.column_stack([1 - np.cos(theta), 0.5 - np.sin(theta)])
    X = np.vstack([upper, lower]) + rng.normal(scale=noise, size=(2 * n_each, 2))
    y = np.array([1.0] * n_each + [-1.0] * n_each).reshape(-1, 1)
    return X, y


def accuracy(model: MLP, X: Tensor, y: np.ndarray) -> float:
    """Fraction of samples whose output has the sign of the label."""
    pred = model(X).data
    return float(np.mean(np.sign(pred) == y))


def demo_gradient_computation() -> None:
    print("=" * 60)
    print("DEMO 1: Automatic Gradient Computation")
    print("=" * 60)
    print()

    with use_graph():
        W = Tensor([[1.0, 2.0], [3.0, 4.0]], requires_grad=True, label='W')
        x = Tensor([[1.0], [-1.0]], label='x')
        loss = (W @ x).sigmoid().sum()
        loss.backward()

    print("loss = sum(sigmoid(W @ x))")
    print(f"loss = {loss.item():.6f}")
    print("dloss/dW =")
    print(W.grad)
    print()


def demo_graph_visualization() -> None:
    print("=" * 60)
    print("DEMO 2: Computation Graph")
    print("=" * 60)
    print()

    with use_graph():
        a = Tensor([[2.0]], requires_grad=True, label='a')
        b = Tensor([[3.0]], requires_grad=True, label='b')
        z = a @ b
        z.label = 'z'
        w = z + a
        w.label = 'w'
        out = w.tanh()
        out.label = 'out'
        out.backward()

    print("Expression: out = tanh(a*b + a) at a=2, b=3")
    print(draw_graph(out, format='text'))
    print()


def demo_linear_regression(steps: int = 200) -> None:
    print("=" * 60)
    print("DEMO 3: Linear Regression")
    print("=" * 60)
    print()

    rng = np.random.default_rng(0)
    with use_graph() as g:
        X = Tensor(rng.normal(size=(32, 2)))
        Y = Tensor(X.data @ np.array([[2.0], [-3.0]]) + 0.5)
        model = Linear(2, 1, rng=rng)
        opt = SGD(model.parameters(), lr=0.1)

        for step in range(steps):
            loss = mse_loss(model(X), Y)
            opt.zero_grad()
            loss.backward()
            opt.step()
            g.prune(model.parameters() + [X, Y])
            if (step + 1) % 50 == 0:
                print(f"Step {step + 1:3d} | Loss: {loss.item():.6f}")

    print(f"Learned W = {model.weight.data.ravel()}, b = {model.bias.data.ravel()}")
    print("(True W = [2, -3], b = 0.5)")
    print()


def demo_neural_network(epochs: int = 200) -> List[float]:
    print("=" * 60)
    print("DEMO 4: Training a Neural Network")
    print("=" * 60)
    print()

    X_np, y_np = make_moons(n_samples=100, noise=0.15)
    losses = []
    with use_graph() as g:
        X = Tensor(X_np)
        Y = Tensor(y_np)
        model = MLP(2, [16, 16, 1], activation='tanh', rng=np.random.default_rng(1))
        opt = Adam(model.parameters(), lr=0.02)
        print(f"Model: {model}")
        print("-" * 40)

        for epoch in range(epochs):
            loss = mse_loss(model(X), Y)
            losses.append(loss.item())
            opt.zero_grad()
            loss.backward()
            opt.step()
            g.prune(model.parameters() + [X, Y])
            if (epoch + 1) % 20 == 0:
                acc = accuracy(model, X, y_np)
                print(f"Epoch {epoch + 1:3d} | Loss: {loss.item():.4f} | Accuracy: {acc:.2%}")
                g.prune(model.parameters() + [X, Y])

        print("-" * 40)
        print(f"Final training accuracy: {accuracy(model, X, y_np):.2%}")
    print()
    return losses


def main() -> None:
    demo_gradient_computation()
    demo_graph_visualization()
    demo_linear_regression()
    demo_neural_network()

    print("=" * 60)
    print("ALL DEMOS COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
