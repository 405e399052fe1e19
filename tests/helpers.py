from typing import List, Tuple

import jax.numpy as jnp

from config import create_config
from model import LHRModel
from schema import LatentSyntacticStructure, ParserVocab, Sentence, Token, annotated_sentence
from vocab import build_vocab


def toy_corpus() -> List[Sentence]:
  return [
    annotated_sentence(
      ["The", "cat", "sleeps", "."],
      [1, 2, None, 2],
      ["det", "nsubj", "root", "punct"],
      ["DET", "NOUN", "VERB", "PUNCT"],
    ),
    annotated_sentence(
      ["A", "dog", "barks"],
      [1, 2, None],
      ["det", "nsubj", "root"],
      ["DET", "NOUN", "VERB"],
    ),
    annotated_sentence(
      ["Dogs", "chase", "cats"],
      [1, None, 1],
      ["nsubj", "root", "obj"],
      ["NOUN", "VERB", "NOUN"],
    ),
    annotated_sentence(
      ["The", "dog", "sees", "a", "cat"],
      [1, 2, None, 4, 2],
      ["det", "nsubj", "root", "det", "obj"],
      ["DET", "NOUN", "VERB", "DET", "NOUN"],
    ),
  ]


def without_punctuation(sentences: List[Sentence]) -> List[Sentence]:
  return [s for s in sentences if not any(t.is_punctuation for t in s.tokens)]


def tiny_config(vocab: ParserVocab, **overrides):
  params = dict(
    embed_size=4,
    word_dropout=0.0,
    context_hidden_size=3,
    context_layers=1,
    heads_hidden_size=3,
    labeler_hidden_size=5,
    pointer_attention_size=4,
    epochs=2,
  )
  params.update(overrides)
  return create_config(vocab, **params)


def tiny_model(**overrides) -> Tuple[LHRModel, ParserVocab]:
  vocab = build_vocab(toy_corpus())
  return LHRModel(tiny_config(vocab, **overrides), vocab), vocab


def handcrafted_lss(context_vectors, latent_heads, virtual_root, punctuation=None):
  """a latent syntactic structure built from given vectors, bypassing the encoders."""
  context_vectors = jnp.asarray(context_vectors, dtype=jnp.float32)
  n = context_vectors.shape[0]
  punctuation = punctuation or [False] * n

  tokens = [
    Token(id=i, form="." if punctuation[i] else f"w{i}", is_punctuation=punctuation[i])
    for i in range(n)
  ]
  return LatentSyntacticStructure(
    tokens=tokens,
    tokens_encodings=jnp.zeros((n, 1)),
    context_vectors=context_vectors,
    latent_heads=jnp.asarray(latent_heads, dtype=jnp.float32),
    virtual_root=jnp.asarray(virtual_root, dtype=jnp.float32),
  )
