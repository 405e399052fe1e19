import logging
from typing import Any, Callable, List, NamedTuple, Optional, Sequence, TYPE_CHECKING

import jax
import jax.numpy as jnp
import numpy as np

from deptree import DependencyTree
from schema import LatentSyntacticStructure, ParserVocab
from stages import ProcessorPool, Stage, StageProcessor

if TYPE_CHECKING:
  from model import LHRModel

logger = logging.getLogger(__name__)


class LabelerOutput(NamedTuple):
  """
  the outcome of a labeler forward over a sentence.
  deprels and pos_tags are (n, n_labels): probabilities in softmax mode, raw scores in
  hinge mode. the processor is kept only by a training forward, for the backward.
  """

  deprels: np.ndarray
  pos_tags: Optional[np.ndarray]
  processor: Optional[StageProcessor] = None


class LabelerErrors(NamedTuple):
  """the errors of a labeler backward."""

  context_vectors: jnp.ndarray  # (n, context_size), summed over every feature slot
  root: jnp.ndarray  # (context_size,)
  params: Any
  loss: float


def softmax_errors(prediction: np.ndarray, gold_index: int) -> np.ndarray:
  """errors of softmax cross-entropy w.r.t. the unactivated scores."""
  errors = np.array(prediction, dtype=np.float32)
  errors[gold_index] -= 1.0
  return errors


def hinge_loss_errors(prediction: np.ndarray, gold_index: int) -> np.ndarray:
  """
  -1 at the gold index and +1 at the highest scoring incorrect index when the
  margin between the two is below 1.0, zeros otherwise.
  """
  errors = np.zeros_like(prediction, dtype=np.float32)

  if prediction.shape[0] < 2:
    return errors

  incorrect = np.array(prediction, dtype=np.float64)
  incorrect[gold_index] = -np.inf
  best_incorrect = int(np.argmax(incorrect))

  if prediction[gold_index] - prediction[best_incorrect] < 1.0:
    errors[gold_index] = -1.0
    errors[best_incorrect] = 1.0

  return errors


def extract_features(tree: DependencyTree, children_features: bool = False) -> np.ndarray:
  """
  for each dependent, the slots of its feature vectors in the table
  [context_vectors..., virtual_root, padding]:
  dependent, governor (root slot if attached to the root) and optionally the leftmost and
  rightmost children of both (padding slot when missing).
  """
  root_slot, padding_slot = tree.size, tree.size + 1
  rows = []

  def child(element: Optional[int], fn: Callable[[int], Optional[int]]) -> int:
    if element is None:
      return padding_slot
    found = fn(element)
    return padding_slot if found is None else found

  for dependent in tree.elements:
    governor = tree.heads[dependent]
    row = [dependent, root_slot if governor is None else governor]

    if children_features:
      row += [
        child(dependent, tree.leftmost_child),
        child(dependent, tree.rightmost_child),
        child(governor, tree.leftmost_child),
        child(governor, tree.rightmost_child),
      ]

    rows.append(row)

  return np.array(rows, dtype=np.int32)


def gather_features(indices: np.ndarray) -> Callable:
  """the function that concatenates the feature vectors of each dependent."""

  def features(context_vectors, virtual_root):
    padding = jnp.zeros_like(virtual_root)
    table = jnp.concatenate([context_vectors, virtual_root[None, :], padding[None, :]], axis=0)
    return table[indices].reshape((indices.shape[0], -1))

  return features


class DeprelAndPOSLabeler:
  """
  classifies the deprel (and optionally the POS tag) of each arc of a tree from the
  context vectors of its dependent and its governor.

  the input errors of the features are summed back into the context vectors they come
  from, or into the root errors for the arcs attached to the root.
  """

  def __init__(
    self,
    stage: Stage,
    vocab: ParserVocab,
    training_mode: str = "softmax",
    children_features: bool = False,
  ):
    self.vocab = vocab
    self.training_mode = training_mode
    self.children_features = children_features
    self._pool = ProcessorPool(stage)

  @classmethod
  def from_model(cls, model: "LHRModel") -> Optional["DeprelAndPOSLabeler"]:
    """the labeler of the model, None if the model has none."""
    if model.labeler is None:
      return None

    return cls(
      model.labeler,
      model.vocab,
      training_mode=model.config.labeler_training_mode,
      children_features=model.config.labeler_children_features,
    )

  def predict(
    self,
    lss: LatentSyntacticStructure,
    tree: DependencyTree,
    train: bool = False,
    rng=None,
  ) -> LabelerOutput:
    """the label distributions of every token, given its arc in `tree`."""
    if tree.size != lss.size:
      raise ValueError(f"tree of size {tree.size} for a sentence of {lss.size} tokens")

    self._pool.release_all()
    processor = self._pool.acquire()

    indices = extract_features(tree, self.children_features)
    outputs = processor.forward(
      lss.context_vectors,
      lss.virtual_root,
      train=train,
      rng=rng,
      features=gather_features(indices),
    )

    deprels = self._activate(outputs[0])
    pos_tags = self._activate(outputs[1]) if len(outputs) > 1 else None

    return LabelerOutput(
      deprels=deprels, pos_tags=pos_tags, processor=processor if train else None
    )

  def assign_labels(self, lss: LatentSyntacticStructure, tree: DependencyTree) -> None:
    """writes the best deprel (and POS tag) of each token into the tree."""
    output = self.predict(lss, tree)

    for token_id, deprel_id in enumerate(np.argmax(output.deprels, axis=-1)):
      tree.set_deprel(token_id, self.vocab.id2deprel[int(deprel_id)])

    if output.pos_tags is not None:
      for token_id, pos_id in enumerate(np.argmax(output.pos_tags, axis=-1)):
        tree.set_pos_tag(token_id, self.vocab.id2postag[int(pos_id)])

  def backward(
    self,
    output: LabelerOutput,
    gold_deprels: Sequence[Optional[str]],
    gold_pos_tags: Optional[Sequence[Optional[str]]] = None,
  ) -> LabelerErrors:
    """
    propagates the errors of a training forward against the gold labels.
    tokens without a gold POS tag give no POS errors.
    """
    if output.processor is None:
      raise ValueError("the labeler backward requires the output of a training forward")

    deprel_ids = [
      self._gold_id(self.vocab.deprel2id, deprel, "deprel", i)
      for i, deprel in enumerate(gold_deprels)
    ]
    deprel_errors = np.stack(
      [self._errors(p, g) for p, g in zip(output.deprels, deprel_ids)]
    )
    loss = self._loss(output.deprels, deprel_ids)
    errors = (deprel_errors,)

    if output.pos_tags is not None:
      gold_pos_tags = gold_pos_tags if gold_pos_tags is not None else [None] * len(deprel_ids)
      pos_errors: List[np.ndarray] = []
      pos_ids: List[Optional[int]] = []

      for i, (prediction, pos) in enumerate(zip(output.pos_tags, gold_pos_tags)):
        if pos is None:
          pos_errors.append(np.zeros_like(prediction, dtype=np.float32))
          pos_ids.append(None)
        else:
          pos_id = self._gold_id(self.vocab.postag2id, pos, "POS tag", i)
          pos_errors.append(self._errors(prediction, pos_id))
          pos_ids.append(pos_id)

      errors = errors + (np.stack(pos_errors),)
      loss += self._loss(output.pos_tags, pos_ids)

    output.processor.backward(errors)
    context_errors, root_errors = output.processor.get_input_errors()

    return LabelerErrors(
      context_vectors=context_errors,
      root=root_errors,
      params=output.processor.get_params_errors(),
      loss=loss,
    )

  def _activate(self, scores: jnp.ndarray) -> np.ndarray:
    if self.training_mode == "softmax":
      scores = jax.nn.softmax(scores, axis=-1)
    return np.asarray(scores)

  def _errors(self, prediction: np.ndarray, gold_index: int) -> np.ndarray:
    if self.training_mode == "softmax":
      return softmax_errors(prediction, gold_index)
    return hinge_loss_errors(prediction, gold_index)

  def _loss(self, predictions: np.ndarray, gold_ids: Sequence[Optional[int]]) -> float:
    loss = 0.0

    for prediction, gold in zip(predictions, gold_ids):
      if gold is None:
        continue
      if self.training_mode == "softmax":
        loss -= float(np.log(max(float(prediction[gold]), 1.0e-12)))
      else:
        incorrect = np.delete(prediction, gold)
        if incorrect.size:
          loss += max(0.0, 1.0 - float(prediction[gold] - incorrect.max()))

    return loss

  @staticmethod
  def _gold_id(dictionary, label: Optional[str], kind: str, token_id: int) -> int:
    if label is None:
      raise ValueError(f"missing gold {kind} of token {token_id}")
    if label not in dictionary:
      raise ValueError(f"unknown gold {kind} '{label}' of token {token_id}")
    return dictionary[label]
