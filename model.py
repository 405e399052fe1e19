import logging
from typing import Dict, Optional

import jax
import jax.numpy as jnp

from config import ParserConfig
from schema import ParserVocab
from parser_model import (
  TokensEncoder,
  ContextEncoder,
  HeadsEncoder,
  LabelerNetwork,
  PointerNetwork,
)
from stages import Stage, RootEmbedding

logger = logging.getLogger(__name__)


class LHRModel:
  """
  the model of the LHR parser: the parameters of every stage, the virtual root
  embedding, the vocabulary and the configuration.

  - tokens encoder: feature ids -> tokens encodings
  - context encoder: tokens encodings -> context vectors
  - heads encoder: context vectors -> latent heads
  - labeler (optional): arc features -> deprels (and POS tags)
  - pointer network (only with the "pointer" decoder): latent heads x context vectors -> arc logits
  """

  def __init__(self, config: ParserConfig, vocab: ParserVocab, rng=None):
    self.config = config
    self.vocab = vocab

    if rng is None:
      rng = jax.random.PRNGKey(config.seed)
    keys = jax.random.split(rng, 6)

    n_features = 2 if config.tokens_encoding == "word_pos" else 1
    encoding_size = n_features * config.embed_size
    context_size = config.context_size

    self.tokens_encoder = Stage.create(
      "tokens_encoder",
      TokensEncoder(
        vocab_size=config.vocab_size,
        embed_size=config.embed_size,
        dropout_rate=config.word_dropout,
      ),
      keys[0],
      jnp.zeros((1, n_features), dtype=jnp.int32),
    )

    self.context_encoder = Stage.create(
      "context_encoder",
      ContextEncoder(
        hidden_size=config.context_hidden_size,
        num_layers=config.context_layers,
        dropout_rate=config.context_dropout,
      ),
      keys[1],
      jnp.zeros((1, encoding_size)),
    )

    self.heads_encoder = Stage.create(
      "heads_encoder",
      HeadsEncoder(hidden_size=config.heads_hidden_size, output_size=context_size),
      keys[2],
      jnp.zeros((1, context_size)),
    )

    self.labeler: Optional[Stage] = None
    if config.use_labeler:
      n_arc_features = 6 if config.labeler_children_features else 2
      self.labeler = Stage.create(
        "labeler",
        LabelerNetwork(
          n_deprels=len(vocab.deprel2id),
          n_pos_tags=len(vocab.postag2id) if config.predict_pos_tags else 0,
          hidden_size=config.labeler_hidden_size,
        ),
        keys[3],
        jnp.zeros((1, n_arc_features * context_size)),
      )

    self.pointer_network: Optional[Stage] = None
    if config.decoder == "pointer":
      self.pointer_network = Stage.create(
        "pointer_network",
        PointerNetwork(attention_size=config.pointer_attention_size),
        keys[4],
        jnp.zeros((1, context_size)),
        jnp.zeros((1, context_size)),
      )

    self.root = RootEmbedding.create(keys[5], context_size)

    logger.debug("initialized model: %s", list(self.stages.values()))

  @property
  def stages(self) -> Dict[str, Stage]:
    """the trainable stages of this model, by name."""
    stages = [
      self.tokens_encoder,
      self.context_encoder,
      self.heads_encoder,
      self.labeler,
      self.pointer_network,
    ]
    return {s.name: s for s in stages if s is not None}

  def __repr__(self) -> str:
    c = self.config
    return (
      f"LHRModel(lang={c.lang_code}, encoding={c.tokens_encoding}, "
      f"context={c.context_layers}x{c.context_hidden_size}, decoder={c.decoder}, "
      f"labeler={c.labeler_training_mode if c.use_labeler else None}, "
      f"predict_pos={c.use_labeler and c.predict_pos_tags})"
    )
