import logging
from typing import List

from arc_scores import ArcScores
from deptree import DependencyTree
from decoders import LSSDecoder, SimilarityDecoder, build_decoder
from encoder import LSSEncoderBuilder
from engine import assign_heads, build_dependency_tree
from labeler import DeprelAndPOSLabeler
from model import LHRModel
from schema import LatentSyntacticStructure, Sentence, Token

logger = logging.getLogger(__name__)


class LHRParser:
  """
  the Latent Heads Representation (LHR) parser.

  a sentence is encoded into its latent syntactic structure, whose similarities are
  decoded into arc scores; the arcs are assembled greedily into a graph whose cycles
  are then repaired. the labeler, if any, annotates the resulting tree.
  """

  def __init__(self, model: LHRModel):
    self.model = model
    self.decoder: LSSDecoder = build_decoder(model)
    self._similarity = SimilarityDecoder()
    self.labeler = DeprelAndPOSLabeler.from_model(model)
    self._encoder_builder = LSSEncoderBuilder(model, train=False)

  def encode(self, tokens: List[Token]) -> LatentSyntacticStructure:
    """the latent syntactic structure of the tokens, without dropout."""
    encoder = self._encoder_builder()
    try:
      return encoder.encode(tokens)
    finally:
      self._encoder_builder.release()

  def decode(self, lss: LatentSyntacticStructure) -> ArcScores:
    return self.decoder.decode(lss)

  def parse(self, sentence: Sentence) -> DependencyTree:
    """the dependency tree of the sentence, labeled if the model has a labeler."""
    lss = self.encode(sentence.tokens)
    scores = self.decode(lss)

    return build_dependency_tree(
      lss,
      scores,
      labeler=self.labeler,
      until_fixpoint=self.model.config.fix_cycles_until_fixpoint,
    )

  def predict_heads(self, lss: LatentSyntacticStructure) -> DependencyTree:
    """
    the greedy attachments of the structure, cycles included, scored by the similarity
    of the latent heads whatever the configured decoder.
    """
    tree = DependencyTree(lss.size)
    assign_heads(tree, self._similarity.decode(lss))
    return tree
