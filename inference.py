import logging
from typing import List, NamedTuple, TYPE_CHECKING

from schema import Sentence

if TYPE_CHECKING:
  from lhr_parser import LHRParser

logger = logging.getLogger(__name__)


class AttachmentScores(NamedTuple):
  uas: float  # correct heads / evaluated tokens
  las: float  # correct heads and deprels / evaluated tokens


def calculate_attachment_scores(
  parser: "LHRParser", sentences: List[Sentence], skip_punctuation: bool = True
) -> AttachmentScores:
  """
  calculates the unlabeled and labeled attachment scores of the parser on a gold corpus.
  punctuation tokens are not evaluated with `skip_punctuation`.
  """
  total_correct_heads = 0
  total_correct_labels = 0
  total_tokens = 0

  for sentence in sentences:
    gold_tree = sentence.gold_tree
    if gold_tree is None:
      raise ValueError("cannot evaluate a sentence without its gold dependency tree")

    predicted_tree = parser.parse(sentence)

    for token in sentence.tokens:
      if skip_punctuation and token.is_punctuation:
        continue

      total_tokens += 1

      if predicted_tree.heads[token.id] == gold_tree.heads[token.id]:
        total_correct_heads += 1
        if predicted_tree.deprels[token.id] == gold_tree.deprels[token.id]:
          total_correct_labels += 1

  if total_tokens == 0:
    logger.warning("no tokens to evaluate in %d sentences", len(sentences))
    return AttachmentScores(uas=0.0, las=0.0)

  return AttachmentScores(
    uas=total_correct_heads / total_tokens,
    las=total_correct_labels / total_tokens,
  )
