import logging
from typing import Any, Callable, List, Optional

import jax
import jax.numpy as jnp
import optax
import flax.linen as nn
from flax.training import train_state

logger = logging.getLogger(__name__)


class Stage:
  """a neural component of the parser: a flax module bound to its trainable parameters."""

  def __init__(self, name: str, module: nn.Module, params: Any):
    self.name = name
    self.module = module
    self.params = params

  @classmethod
  def create(cls, name: str, module: nn.Module, rng, *sample_inputs) -> "Stage":
    """initializes the parameters of `module` from sample inputs."""
    variables = module.init({"params": rng}, *sample_inputs, train=False)
    return cls(name, module, variables["params"])

  def __repr__(self) -> str:
    n_params = sum(x.size for x in jax.tree_util.tree_leaves(self.params))
    return f"Stage({self.name}, {type(self.module).__name__}, params={n_params})"


class StageProcessor:
  """
  runs one forward and one backward of a stage over a sentence.

  a training forward keeps the pullback of the computation; `backward(output_errors)`
  then makes the input errors and the parameters errors available.
  """

  def __init__(self, stage: Stage, propagate_to_input: bool = True):
    self.stage = stage
    self.propagate_to_input = propagate_to_input
    self.reset()

  def reset(self) -> None:
    self._output = None
    self._vjp_fn: Optional[Callable] = None
    self._input_errors: Optional[List[jnp.ndarray]] = None
    self._params_errors = None

  def forward(
    self,
    *inputs,
    train: bool = False,
    rng=None,
    features: Optional[Callable] = None,
  ):
    """
    applies the stage module to the inputs.
    `features` optionally maps the (differentiable) inputs to the module input.
    `rng` is the dropout key, required in training mode by stages with dropout.
    """
    self.reset()

    module = self.stage.module
    rngs = {"dropout": rng} if rng is not None else None

    def apply(params, *xs):
      if features is not None:
        xs = (features(*xs),)
      return module.apply({"params": params}, *xs, train=train, rngs=rngs)

    if not train:
      return apply(self.stage.params, *inputs)

    if self.propagate_to_input:
      output, self._vjp_fn = jax.vjp(apply, self.stage.params, *inputs)
    else:
      output, self._vjp_fn = jax.vjp(lambda params: apply(params, *inputs), self.stage.params)

    self._output = output
    return output

  def backward(self, output_errors) -> None:
    """propagates the errors of the last training forward (same structure as its output)."""
    if self._vjp_fn is None:
      raise RuntimeError(f"{self.stage.name}: backward without a preceding training forward")

    output_errors = jax.tree_util.tree_map(
      lambda e, o: jnp.asarray(e, dtype=o.dtype), output_errors, self._output
    )
    grads = self._vjp_fn(output_errors)

    self._params_errors = grads[0]
    self._input_errors = list(grads[1:])

  def get_input_errors(self) -> List[jnp.ndarray]:
    """the errors of each input of the last forward."""
    if self._input_errors is None:
      raise RuntimeError(f"{self.stage.name}: input errors requested before backward")
    if not self.propagate_to_input:
      raise RuntimeError(f"{self.stage.name}: errors are not propagated to the input")
    return self._input_errors

  def get_params_errors(self):
    if self._params_errors is None:
      raise RuntimeError(f"{self.stage.name}: params errors requested before backward")
    return self._params_errors


class ProcessorPool:
  """
  arena of reusable processors of a stage, acquired slot by slot during a sentence and
  released all together at the sentence boundary.
  """

  def __init__(self, stage: Stage, propagate_to_input: bool = True):
    self.stage = stage
    self.propagate_to_input = propagate_to_input
    self._items: List[StageProcessor] = []
    self._used = 0

  def acquire(self) -> StageProcessor:
    if self._used == len(self._items):
      self._items.append(StageProcessor(self.stage, self.propagate_to_input))

    item = self._items[self._used]
    self._used += 1
    return item

  def release_all(self) -> None:
    for item in self._items[: self._used]:
      item.reset()
    self._used = 0

  @property
  def in_use(self) -> int:
    return self._used


class StageOptimizer:
  """
  accumulates the parameters errors of a stage and applies their average at
  the batch boundary.
  """

  def __init__(self, stage: Stage, tx: optax.GradientTransformation):
    self.stage = stage
    self.state = train_state.TrainState.create(
      apply_fn=stage.module.apply, params=stage.params, tx=tx
    )
    self._accumulator = None
    self._count = 0

  @property
  def accumulated(self) -> int:
    return self._count

  def accumulate(self, params_errors) -> None:
    if self._accumulator is None:
      self._accumulator = params_errors
    else:
      self._accumulator = jax.tree_util.tree_map(jnp.add, self._accumulator, params_errors)
    self._count += 1

  def update(self) -> None:
    """applies the accumulated errors, if any, and resets the accumulator."""
    if self._count == 0:
      return

    count = self._count
    grads = jax.tree_util.tree_map(lambda g: g / count, self._accumulator)
    self.state = self.state.apply_gradients(grads=grads)
    self.stage.params = self.state.params

    self._accumulator = None
    self._count = 0


class RootEmbedding:
  """the shared vector that represents the root of every sentence."""

  def __init__(self, vector: jnp.ndarray):
    self.vector = vector

  @classmethod
  def create(cls, rng, size: int, scale: float = 0.1) -> "RootEmbedding":
    return cls(jax.random.uniform(rng, (size,), minval=-scale, maxval=scale))

  @property
  def size(self) -> int:
    return self.vector.shape[0]


class RootOptimizer:
  """updates the root embedding immediately with its own optimizer state."""

  def __init__(self, root: RootEmbedding, tx: optax.GradientTransformation):
    self.root = root
    self.tx = tx
    self.opt_state = tx.init(root.vector)

  def update(self, errors: jnp.ndarray) -> None:
    updates, self.opt_state = self.tx.update(errors, self.opt_state, self.root.vector)
    self.root.vector = optax.apply_updates(self.root.vector, updates)
