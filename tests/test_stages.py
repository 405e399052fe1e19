import unittest

import jax
import jax.numpy as jnp
import numpy as np
import optax

from parser_model import LabelerNetwork
from stages import (
  ProcessorPool,
  RootEmbedding,
  RootOptimizer,
  Stage,
  StageOptimizer,
  StageProcessor,
)


def small_stage(name="labeler"):
  return Stage.create(
    name,
    LabelerNetwork(n_deprels=3, hidden_size=4),
    jax.random.PRNGKey(0),
    jnp.zeros((1, 6)),
  )


class TestStageProcessor(unittest.TestCase):
  def setUp(self):
    self.stage = small_stage()
    self.inputs = jnp.linspace(-1.0, 1.0, 12).reshape((2, 6))

  def test_backward_without_forward(self):
    processor = StageProcessor(self.stage)
    with self.assertRaises(RuntimeError):
      processor.backward((jnp.ones((2, 3)),))

  def test_inference_forward_has_no_backward(self):
    processor = StageProcessor(self.stage)
    (scores,) = processor.forward(self.inputs)

    self.assertEqual(scores.shape, (2, 3))
    with self.assertRaises(RuntimeError):
      processor.backward((jnp.ones((2, 3)),))

  def test_backward_matches_gradients(self):
    processor = StageProcessor(self.stage)
    processor.forward(self.inputs, train=True)
    processor.backward((np.ones((2, 3)),))

    def total(params, x):
      return jnp.sum(self.stage.module.apply({"params": params}, x, train=False)[0])

    params_grads, input_grads = jax.grad(total, argnums=(0, 1))(self.stage.params, self.inputs)

    np.testing.assert_allclose(processor.get_input_errors()[0], input_grads, atol=1e-6)
    for got, expected in zip(
      jax.tree_util.tree_leaves(processor.get_params_errors()),
      jax.tree_util.tree_leaves(params_grads),
    ):
      np.testing.assert_allclose(got, expected, atol=1e-6)

  def test_params_only(self):
    processor = StageProcessor(self.stage, propagate_to_input=False)
    processor.forward(self.inputs, train=True)
    processor.backward((jnp.ones((2, 3)),))

    self.assertIsNotNone(processor.get_params_errors())
    with self.assertRaises(RuntimeError):
      processor.get_input_errors()


class TestProcessorPool(unittest.TestCase):
  def test_acquire_and_release(self):
    pool = ProcessorPool(small_stage())

    first, second = pool.acquire(), pool.acquire()
    self.assertIsNot(first, second)
    self.assertEqual(pool.in_use, 2)

    pool.release_all()
    self.assertEqual(pool.in_use, 0)
    self.assertIs(pool.acquire(), first)


class TestOptimizers(unittest.TestCase):
  def test_stage_optimizer(self):
    stage = small_stage()
    initial = stage.params
    optimizer = StageOptimizer(stage, optax.adam(0.01))

    optimizer.update()
    self.assertIs(stage.params, initial)

    grads = jax.tree_util.tree_map(jnp.ones_like, stage.params)
    optimizer.accumulate(grads)
    optimizer.accumulate(grads)
    self.assertEqual(optimizer.accumulated, 2)

    optimizer.update()
    self.assertEqual(optimizer.accumulated, 0)

    for before, after in zip(
      jax.tree_util.tree_leaves(initial), jax.tree_util.tree_leaves(stage.params)
    ):
      np.testing.assert_allclose(after, before - 0.01, atol=1e-5)

  def test_root_optimizer(self):
    root = RootEmbedding.create(jax.random.PRNGKey(1), 4)
    initial = np.asarray(root.vector)
    self.assertEqual(root.size, 4)

    RootOptimizer(root, optax.adam(0.001)).update(jnp.array([1.0, -1.0, 2.0, -0.5]))

    np.testing.assert_allclose(
      root.vector, initial - 0.001 * np.array([1.0, -1.0, 1.0, -1.0]), atol=1e-5
    )


if __name__ == "__main__":
  unittest.main()
