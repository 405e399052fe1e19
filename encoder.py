import jax
import jax.numpy as jnp
from typing import List, TYPE_CHECKING

from schema import LatentSyntacticStructure, Token
from stages import ProcessorPool, StageProcessor, RootEmbedding
from vocab import encode_tokens

if TYPE_CHECKING:
  from model import LHRModel


class LSSEncoder:
  """
  builds the latent syntactic structure of a sentence threading its tokens through
  the tokens encoder, the context encoder and the heads encoder.
  each processor keeps what its backward needs.
  """

  def __init__(
    self,
    model: "LHRModel",
    tokens_encoder: StageProcessor,
    context_encoder: StageProcessor,
    heads_encoder: StageProcessor,
    virtual_root: RootEmbedding,
    train: bool = False,
  ):
    self.model = model
    self.tokens_encoder = tokens_encoder
    self.context_encoder = context_encoder
    self.heads_encoder = heads_encoder
    self.virtual_root = virtual_root
    self.train = train

  def encode(self, tokens: List[Token], rng=None) -> LatentSyntacticStructure:
    """`rng` seeds the dropout of the stages in training mode."""
    if not tokens:
      raise ValueError("cannot encode an empty sentence")

    if self.train and rng is not None:
      tokens_rng, context_rng, heads_rng = jax.random.split(rng, 3)
    else:
      tokens_rng = context_rng = heads_rng = None

    ids = jnp.asarray(encode_tokens(tokens, self.model.vocab, self.model.config))

    tokens_encodings = self.tokens_encoder.forward(ids, train=self.train, rng=tokens_rng)
    context_vectors = self.context_encoder.forward(
      tokens_encodings, train=self.train, rng=context_rng
    )
    latent_heads = self.heads_encoder.forward(context_vectors, train=self.train, rng=heads_rng)

    return LatentSyntacticStructure(
      tokens=list(tokens),
      tokens_encodings=tokens_encodings,
      context_vectors=context_vectors,
      latent_heads=latent_heads,
      virtual_root=self.virtual_root.vector,
    )


class LSSEncoderBuilder:
  """
  gives an LSSEncoder per sentence, drawing its processors from pools.
  call `release()` at the end of the sentence.
  """

  def __init__(self, model: "LHRModel", train: bool = False):
    self.model = model
    self.train = train
    # the inputs of the tokens encoder are ids: no errors to propagate
    self._tokens_pool = ProcessorPool(model.tokens_encoder, propagate_to_input=False)
    self._context_pool = ProcessorPool(model.context_encoder)
    self._heads_pool = ProcessorPool(model.heads_encoder)

  def __call__(self) -> LSSEncoder:
    return LSSEncoder(
      model=self.model,
      tokens_encoder=self._tokens_pool.acquire(),
      context_encoder=self._context_pool.acquire(),
      heads_encoder=self._heads_pool.acquire(),
      virtual_root=self.model.root,
      train=self.train,
    )

  def release(self) -> None:
    self._tokens_pool.release_all()
    self._context_pool.release_all()
    self._heads_pool.release_all()
