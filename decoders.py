import logging
from abc import ABC, abstractmethod
from typing import Any, List, NamedTuple, Optional, Sequence, TYPE_CHECKING

import jax
import jax.numpy as jnp
import numpy as np
import optax

from arc_scores import ArcScores, ROOT_ID
from schema import LatentSyntacticStructure
from stages import ProcessorPool, Stage

if TYPE_CHECKING:
  from model import LHRModel

logger = logging.getLogger(__name__)

_EPS = 1.0e-12


class LSSDecoder(ABC):
  """decodes a latent syntactic structure into the scores of the candidate arcs."""

  @abstractmethod
  def decode(self, lss: LatentSyntacticStructure) -> ArcScores:
    raise NotImplementedError


def normalize(vectors: jnp.ndarray) -> jnp.ndarray:
  """unit-length copy of the vectors along the last axis (zero vectors stay zero)."""
  norms = jnp.linalg.norm(vectors, axis=-1, keepdims=True)
  return vectors / jnp.maximum(norms, _EPS)


@jax.jit
def cosine_similarities(context_vectors, latent_heads, virtual_root):
  """
  returns:
  - (n, n) matrix: [dependent, governor] = cos(latent_heads[dependent], context_vectors[governor])
  - (n,) vector: [dependent] = cos(latent_heads[dependent], virtual_root)
  """
  heads = normalize(latent_heads)
  return heads @ normalize(context_vectors).T, heads @ normalize(virtual_root)


class SimilarityDecoder(LSSDecoder):
  """
  scores every arc with the cosine similarity between the latent head of the dependent
  and the context vector of the governor (the virtual root for the root attachment).

  - punctuation cannot govern, self arcs are excluded
  - the root score of a punctuation dependent is 0.0
  the vectors are normalized at each call, since they change during the training.
  """

  def decode(self, lss: LatentSyntacticStructure) -> ArcScores:
    heads_scores, root_scores = cosine_similarities(
      lss.context_vectors, lss.latent_heads, lss.virtual_root
    )
    heads_scores = np.asarray(heads_scores)
    root_scores = np.asarray(root_scores)

    governors = [t.id for t in lss.tokens if not t.is_punctuation]
    scores = ArcScores()

    for dependent in lss.tokens:
      row = {g: float(heads_scores[dependent.id, g]) for g in governors if g != dependent.id}
      row[ROOT_ID] = 0.0 if dependent.is_punctuation else float(root_scores[dependent.id])
      scores[dependent.id] = row

    return scores


class PointerErrors(NamedTuple):
  """the errors of a learning step of the pointer network."""

  latent_heads: jnp.ndarray
  context_vectors: jnp.ndarray
  params: Any
  loss: float


class PointerNetworkDecoder(LSSDecoder):
  """
  scores the arcs with a pointer network: each latent head points to the position of its
  governor among the context vectors. pointing to itself means attaching to the root.
  the scores of each dependent are a probability distribution over the positions.
  """

  def __init__(self, stage: Stage):
    self._pool = ProcessorPool(stage)

  def decode(self, lss: LatentSyntacticStructure) -> ArcScores:
    self._pool.release_all()
    processor = self._pool.acquire()

    logits = processor.forward(lss.context_vectors, lss.latent_heads)
    probs = np.asarray(jax.nn.softmax(logits, axis=-1))

    scores = ArcScores()

    for dependent in lss.tokens:
      d = dependent.id
      row = {g: float(probs[d, g]) for g in range(lss.size) if g != d}
      row[ROOT_ID] = 0.0 if dependent.is_punctuation else float(probs[d, d])
      scores[d] = row

    return scores

  def learn(
    self, lss: LatentSyntacticStructure, gold_heads: Sequence[Optional[int]]
  ) -> PointerErrors:
    """
    one softmax cross-entropy step against the gold governors (the dependent itself for
    the root). returns the errors of its inputs and of its parameters.
    """
    if len(gold_heads) != lss.size:
      raise ValueError(f"got {len(gold_heads)} gold heads for {lss.size} tokens")

    self._pool.release_all()
    processor = self._pool.acquire()

    logits = processor.forward(lss.context_vectors, lss.latent_heads, train=True)
    gold = jnp.array(_gold_positions(gold_heads), dtype=jnp.int32)

    loss = jnp.sum(optax.softmax_cross_entropy_with_integer_labels(logits, gold))
    errors = jax.nn.softmax(logits, axis=-1) - jax.nn.one_hot(gold, lss.size)

    processor.backward(errors)
    context_errors, latent_heads_errors = processor.get_input_errors()

    return PointerErrors(
      latent_heads=latent_heads_errors,
      context_vectors=context_errors,
      params=processor.get_params_errors(),
      loss=float(loss),
    )


def _gold_positions(gold_heads: Sequence[Optional[int]]) -> List[int]:
  return [i if head is None else head for i, head in enumerate(gold_heads)]


def build_decoder(model: "LHRModel") -> LSSDecoder:
  """the decoder selected by the model configuration."""
  if model.config.decoder == "pointer":
    if model.pointer_network is None:
      raise ValueError("the pointer decoder requires a model with a pointer network")
    return PointerNetworkDecoder(model.pointer_network)

  return SimilarityDecoder()
