import unittest

import jax
import jax.numpy as jnp
import numpy as np

from parser_model import TokensEncoder


class TestTokensEncoder(unittest.TestCase):
  def setUp(self):
    self.encoder = TokensEncoder(vocab_size=10, embed_size=4, dropout_rate=0.5)
    self.ids = (jnp.arange(80, dtype=jnp.int32) % 10).reshape((40, 2))
    self.params = self.encoder.init({"params": jax.random.PRNGKey(0)}, self.ids, train=False)[
      "params"
    ]

  def test_encodings(self):
    encodings = self.encoder.apply({"params": self.params}, self.ids, train=False)

    self.assertEqual(encodings.shape, (40, 8))
    np.testing.assert_allclose(encodings[0], self.params["embeddings"][jnp.array([0, 1])].reshape(-1))

  def test_word_dropout_drops_whole_tokens(self):
    clean = np.asarray(self.encoder.apply({"params": self.params}, self.ids, train=False))
    dropped = np.asarray(
      self.encoder.apply(
        {"params": self.params},
        self.ids,
        train=True,
        rngs={"dropout": jax.random.PRNGKey(1)},
      )
    )

    kept = 0
    for clean_row, row in zip(clean, dropped):
      if np.all(row == 0.0):
        continue
      np.testing.assert_allclose(row, 2.0 * clean_row, rtol=1e-6)
      kept += 1

    self.assertGreater(kept, 0)
    self.assertLess(kept, 40)


if __name__ == "__main__":
  unittest.main()
