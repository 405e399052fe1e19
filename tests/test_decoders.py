import unittest

import numpy as np

from arc_scores import ROOT_ID
from decoders import (
  PointerNetworkDecoder,
  SimilarityDecoder,
  _gold_positions,
  build_decoder,
  cosine_similarities,
)
from lhr_parser import LHRParser
from tests.helpers import handcrafted_lss, tiny_model, toy_corpus


class TestSimilarityDecoder(unittest.TestCase):
  def setUp(self):
    rng = np.random.default_rng(0)
    self.lss = handcrafted_lss(
      context_vectors=rng.normal(size=(4, 6)),
      latent_heads=rng.normal(size=(4, 6)),
      virtual_root=rng.normal(size=6),
      punctuation=[False, False, True, False],
    )
    self.scores = SimilarityDecoder().decode(self.lss)

  def test_candidates(self):
    self.assertEqual(sorted(self.scores), [0, 1, 2, 3])
    self.assertEqual(sorted(self.scores[0]), [ROOT_ID, 1, 3])
    self.assertEqual(sorted(self.scores[2]), [ROOT_ID, 0, 1, 3])

  def test_punctuation_root_score(self):
    self.assertEqual(self.scores[2][ROOT_ID], 0.0)

  def test_cosine_scores(self):
    lh = np.asarray(self.lss.latent_heads)
    ctx = np.asarray(self.lss.context_vectors)
    root = np.asarray(self.lss.virtual_root)

    def cos(a, b):
      return float(a @ b / (np.linalg.norm(a) * np.linalg.norm(b)))

    self.assertAlmostEqual(self.scores[0][3], cos(lh[0], ctx[3]), places=5)
    self.assertAlmostEqual(self.scores[3][ROOT_ID], cos(lh[3], root), places=5)

  def test_zero_vectors(self):
    heads, root = cosine_similarities(np.zeros((2, 3)), np.zeros((2, 3)), np.zeros(3))
    self.assertTrue(np.all(np.asarray(heads) == 0.0))
    self.assertTrue(np.all(np.asarray(root) == 0.0))


class TestPointerNetworkDecoder(unittest.TestCase):
  def setUp(self):
    self.model, _ = tiny_model(decoder="pointer")
    self.sentence = toy_corpus()[0]
    self.lss = LHRParser(self.model).encode(self.sentence.tokens)
    self.decoder = PointerNetworkDecoder(self.model.pointer_network)

  def test_build_decoder(self):
    self.assertIsInstance(build_decoder(self.model), PointerNetworkDecoder)
    self.assertIsInstance(build_decoder(tiny_model()[0]), SimilarityDecoder)

  def test_decode(self):
    scores = self.decoder.decode(self.lss)

    for dependent, row in scores.items():
      self.assertNotIn(dependent, row)
      self.assertEqual(len(row), self.lss.size)

    # probabilities over the positions, the own position being the root
    self.assertAlmostEqual(sum(scores[0].values()), 1.0, places=5)
    self.assertEqual(scores[3][ROOT_ID], 0.0)

  def test_gold_positions(self):
    self.assertEqual(_gold_positions([1, None, 1]), [1, 1, 1])

  def test_learn(self):
    errors = self.decoder.learn(self.lss, self.sentence.gold_tree.heads)

    self.assertEqual(errors.latent_heads.shape, self.lss.latent_heads.shape)
    self.assertEqual(errors.context_vectors.shape, self.lss.context_vectors.shape)
    self.assertGreater(errors.loss, 0.0)
    self.assertEqual(
      set(errors.params), set(self.model.pointer_network.params)
    )

  def test_learn_size_mismatch(self):
    with self.assertRaises(ValueError):
      self.decoder.learn(self.lss, [None])


if __name__ == "__main__":
  unittest.main()
