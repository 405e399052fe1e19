import os
import unittest
from unittest import mock

from config import config_from_env, create_config
from schema import ParserVocab
from vocab import build_vocab
from tests.helpers import toy_corpus


class TestConfig(unittest.TestCase):
  def setUp(self):
    self.vocab = build_vocab(toy_corpus())

  def test_vocab_fields(self):
    config = create_config(self.vocab)

    self.assertEqual(config.UNK_ID, self.vocab.word2id["<UNK>"])
    self.assertEqual(config.NULL_ID, self.vocab.word2id["<NULL>"])
    self.assertEqual(config.P_UNK_ID, self.vocab.pos2id["<p>:<UNK>"])
    self.assertEqual(config.P_NULL_ID, self.vocab.pos2id["<p>:<NULL>"])
    self.assertEqual(config.vocab_size, self.vocab.word2id["<NULL>"] + 1)
    self.assertEqual(config.context_size, 2 * config.context_hidden_size)

  def test_missing_special_tokens(self):
    vocab = self.vocab._replace(word2id={"cat": 0})
    with self.assertRaises(ValueError):
      create_config(vocab)

  def test_invalid_overrides(self):
    for overrides in (
      {"decoder": "mst"},
      {"tokens_encoding": "chars"},
      {"labeler_training_mode": "perceptron"},
      {"batch_size": 0},
      {"hidden_size": 10},
      {"UNK_ID": 3},
    ):
      with self.subTest(overrides=overrides):
        with self.assertRaises(ValueError):
          create_config(self.vocab, **overrides)

  def test_labeler_requires_labels(self):
    vocab = ParserVocab(self.vocab.word2id, self.vocab.pos2id, {}, {}, {}, {})

    with self.assertRaises(ValueError):
      create_config(vocab)
    self.assertFalse(create_config(vocab, use_labeler=False).use_labeler)

  @mock.patch("config.load_dotenv")
  def test_config_from_env(self, _):
    env = {
      "LHR_EPOCHS": "7",
      "LHR_USE_LABELER": "false",
      "LHR_DECODER": "pointer",
      "LHR_LEARNING_RATE": "0.01",
      "LHR_BATCH_SIZE": "4",
    }
    with mock.patch.dict(os.environ, env):
      config = config_from_env(self.vocab, batch_size=8)

    self.assertEqual(config.epochs, 7)
    self.assertFalse(config.use_labeler)
    self.assertEqual(config.decoder, "pointer")
    self.assertEqual(config.learning_rate, 0.01)
    self.assertEqual(config.batch_size, 8)


if __name__ == "__main__":
  unittest.main()
