import logging
import numpy as np
from typing import List, TYPE_CHECKING

from schema import Sentence, ParserVocab, Token

if TYPE_CHECKING:
  from config import ParserConfig

logger = logging.getLogger(__name__)


def build_vocab(sentences: List[Sentence], lowercase: bool = True) -> ParserVocab:
  """
  builds the vocabularies of a training corpus.
  - features: POS ("<p>:" prefixed) then words, in disjoint contiguous ID ranges that
    index one shared embedding table
  - labeler outputs: contiguous deprel and POS tag ids, taken from the gold trees
  """
  # 1) labeler output spaces
  gold_trees = [s.gold_tree for s in sentences if s.gold_tree is not None]

  unique_deprels = sorted(set(d for t in gold_trees for d in t.deprels if d is not None))
  deprel2id = {d: i for i, d in enumerate(unique_deprels)}
  id2deprel = {i: d for d, i in deprel2id.items()}

  unique_postags = sorted(set(p for t in gold_trees for p in t.pos_tags if p is not None))
  postag2id = {p: i for i, p in enumerate(unique_postags)}
  id2postag = {i: p for p, i in postag2id.items()}

  # 2) POS features
  unique_pos = sorted(
    set(f"<p>:{t.pos}" for s in sentences for t in s.tokens if t.pos is not None)
  )
  pos2id = {p: i for i, p in enumerate(unique_pos)}
  next_pos_id = len(pos2id)
  pos2id["<p>:<UNK>"] = next_pos_id
  pos2id["<p>:<NULL>"] = next_pos_id + 1

  # 3) words
  word_offset = max(pos2id.values()) + 1
  unique_words = sorted(set(_normalize(t.form, lowercase) for s in sentences for t in s.tokens))
  word2id = {w: word_offset + i for i, w in enumerate(unique_words)}
  next_word_id = max(word2id.values(), default=word_offset - 1) + 1
  word2id["<UNK>"] = next_word_id
  word2id["<NULL>"] = next_word_id + 1

  logger.info(
    "vocabulary: %d words, %d POS features, %d deprels, %d POS tags",
    len(unique_words),
    len(unique_pos),
    len(deprel2id),
    len(postag2id),
  )
  return ParserVocab(word2id, pos2id, deprel2id, id2deprel, postag2id, id2postag)


def encode_tokens(tokens: List[Token], vocab: ParserVocab, config: "ParserConfig") -> np.ndarray:
  """
  maps the tokens to feature ids: (n, 2) [word, POS] for the "word_pos" encoding,
  (n, 1) [word] for the "word" encoding. unknown entries map to the UNK ids.
  """
  rows = []

  for token in tokens:
    row = [vocab.word2id.get(_normalize(token.form, config.lowercase), config.UNK_ID)]

    if config.tokens_encoding == "word_pos":
      if token.pos is None:
        row.append(config.P_NULL_ID)
      else:
        row.append(vocab.pos2id.get(f"<p>:{token.pos}", config.P_UNK_ID))

    rows.append(row)

  return np.array(rows, dtype=np.int32)


def _normalize(form: str, lowercase: bool) -> str:
  return form.lower() if lowercase else form
