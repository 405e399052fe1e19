import unicodedata
from typing import NamedTuple, Dict, List, Optional, Sequence
import jax.numpy as jnp

from deptree import DependencyTree


class Token(NamedTuple):
  """a token of a sentence. ids are 0-based and contiguous."""

  id: int
  form: str
  pos: Optional[str] = None  # input POS feature (may be predicted upstream)
  is_punctuation: bool = False


class Sentence(NamedTuple):
  """a sentence, optionally with its gold dependency tree (heads, deprels, POS tags)."""

  tokens: List[Token]
  gold_tree: Optional[DependencyTree] = None


class ParserVocab(NamedTuple):
  """mappings for string-to-ID conversions."""

  word2id: Dict[str, int]  # feature ids of the word forms
  pos2id: Dict[str, int]  # feature ids of the input POS ("<p>:" prefixed)
  deprel2id: Dict[str, int]  # output space of the labeler
  id2deprel: Dict[int, str]
  postag2id: Dict[str, int]  # output space of the labeler POS head
  id2postag: Dict[int, str]


class LatentSyntacticStructure(NamedTuple):
  """
  the latent syntactic structure of a sentence, produced once per encoding.

  context_vectors[i] and latent_heads[i] belong to tokens[i]; the virtual root is the
  shared vector that represents the root of the sentence.
  """

  tokens: List[Token]
  tokens_encodings: jnp.ndarray  # (n, encoding_size)
  context_vectors: jnp.ndarray  # (n, context_size)
  latent_heads: jnp.ndarray  # (n, context_size)
  virtual_root: jnp.ndarray  # (context_size,)

  @property
  def size(self) -> int:
    return len(self.tokens)


def is_punctuation_form(form: str) -> bool:
  """a form made only of unicode punctuation characters."""
  return bool(form) and all(unicodedata.category(c).startswith("P") for c in form)


def annotated_sentence(
  forms: Sequence[str],
  heads: Sequence[Optional[int]],
  deprels: Optional[Sequence[Optional[str]]] = None,
  pos: Optional[Sequence[Optional[str]]] = None,
  gold_pos: Optional[Sequence[Optional[str]]] = None,
  punctuation: Optional[Sequence[bool]] = None,
) -> Sentence:
  """
  builds a sentence with its gold tree.
  heads are 0-based token ids, None for the token attached to the root.
  the gold POS tags default to the input POS.
  """
  if len(heads) != len(forms):
    raise ValueError(f"got {len(heads)} heads for {len(forms)} tokens")

  pos = list(pos) if pos is not None else [None] * len(forms)
  punctuation = (
    list(punctuation)
    if punctuation is not None
    else [is_punctuation_form(f) for f in forms]
  )

  tokens = [
    Token(id=i, form=form, pos=pos[i], is_punctuation=punctuation[i])
    for i, form in enumerate(forms)
  ]
  gold_tree = DependencyTree.from_heads(
    heads, deprels=deprels, pos_tags=gold_pos if gold_pos is not None else pos
  )

  return Sentence(tokens=tokens, gold_tree=gold_tree)
