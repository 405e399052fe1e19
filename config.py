import os
import logging
from typing import NamedTuple, Dict, Any

from dotenv import load_dotenv
from schema import ParserVocab

logger = logging.getLogger(__name__)

# extracted constants from magic numbers
RELAX_SCORE_THRESHOLD = 0.9  # attachment confidence above which a correct arc is not re-learned
RELEVANT_ERROR_THRESHOLD = 1.0e-3  # min latent head error magnitude worth a backward step
MODEL_FORMAT = "LHRPARSER-MODEL/1"

TOKENS_ENCODINGS = ("word_pos", "word")
DECODERS = ("similarity", "pointer")
LABELER_TRAINING_MODES = ("softmax", "hinge")

ENV_PREFIX = "LHR_"


class ParserConfig(NamedTuple):
  """hyperparameters and policies of the LHR parser."""

  lang_code: str = "en"

  # tokens encoder
  tokens_encoding: str = "word_pos"
  embed_size: int = 100
  word_dropout: float = 0.25
  lowercase: bool = True

  # context encoder (stacked BiLSTM)
  context_hidden_size: int = 100
  context_layers: int = 2
  context_dropout: float = 0.0

  # heads encoder
  heads_hidden_size: int = 100

  # decoder
  decoder: str = "similarity"
  pointer_attention_size: int = 50
  fix_cycles_until_fixpoint: bool = True

  # labeler
  use_labeler: bool = True
  predict_pos_tags: bool = True
  labeler_training_mode: str = "softmax"
  labeler_hidden_size: int = 100
  labeler_children_features: bool = False

  # training
  epochs: int = 30
  batch_size: int = 1
  learning_rate: float = 0.001
  beta1: float = 0.9
  beta2: float = 0.999
  early_stopping_patience: int = 5
  seed: int = 0
  skip_punctuation_errors: bool = True
  calculate_relevant_errors_only: bool = True
  relax_reconstruction_errors: bool = False

  # special IDs mapped from ParserVocab
  vocab_size: int = 0
  UNK_ID: int = 0
  NULL_ID: int = 0
  P_UNK_ID: int = 0
  P_NULL_ID: int = 0

  @property
  def context_size(self) -> int:
    """size of the context vectors (and of the latent heads and the virtual root)."""
    return 2 * self.context_hidden_size


# fields derived from the vocabulary, never overridden
_VOCAB_FIELDS = ("vocab_size", "UNK_ID", "NULL_ID", "P_UNK_ID", "P_NULL_ID")


def create_config(vocab: ParserVocab, **overrides: Any) -> ParserConfig:
  """factory function to populate IDs based on the actual vocab with validation."""
  # validate required tokens exist
  required_word_tokens = ["<NULL>", "<UNK>"]
  required_pos_tokens = ["<p>:<NULL>", "<p>:<UNK>"]

  for tok in required_word_tokens:
    if tok not in vocab.word2id:
      raise ValueError(f"missing required word token in vocabulary: {tok}")

  for tok in required_pos_tokens:
    if tok not in vocab.pos2id:
      raise ValueError(f"missing required POS token in vocabulary: {tok}")

  for name in overrides:
    if name not in ParserConfig._fields or name in _VOCAB_FIELDS:
      raise ValueError(f"unknown config field: {name}")

  config = ParserConfig(**overrides)._replace(
    vocab_size=max(max(vocab.word2id.values()), max(vocab.pos2id.values())) + 1,
    UNK_ID=vocab.word2id["<UNK>"],
    NULL_ID=vocab.word2id["<NULL>"],
    P_UNK_ID=vocab.pos2id["<p>:<UNK>"],
    P_NULL_ID=vocab.pos2id["<p>:<NULL>"],
  )

  if config.tokens_encoding not in TOKENS_ENCODINGS:
    raise ValueError(f"unknown tokens encoding: {config.tokens_encoding}")
  if config.decoder not in DECODERS:
    raise ValueError(f"unknown decoder: {config.decoder}")
  if config.labeler_training_mode not in LABELER_TRAINING_MODES:
    raise ValueError(f"unknown labeler training mode: {config.labeler_training_mode}")
  if config.use_labeler and not vocab.deprel2id:
    raise ValueError("the labeler requires at least one deprel in the vocabulary")
  if config.use_labeler and config.predict_pos_tags and not vocab.postag2id:
    raise ValueError("POS tags prediction requires at least one POS tag in the vocabulary")
  if config.batch_size < 1:
    raise ValueError(f"batch size must be positive, got {config.batch_size}")

  return config


def _parse_env_value(raw: str, default: Any) -> Any:
  if isinstance(default, bool):
    return raw.strip().lower() in ("1", "true", "yes", "on")
  return type(default)(raw)


def load_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
  """
  reads config overrides from the environment (and a .env file, if any).
  e.g. LHR_EPOCHS=10, LHR_USE_LABELER=false, LHR_DECODER=pointer
  """
  load_dotenv()

  overrides: Dict[str, Any] = {}
  for name, default in ParserConfig._field_defaults.items():
    if name in _VOCAB_FIELDS:
      continue
    raw = os.getenv(prefix + name.upper())
    if raw is not None:
      overrides[name] = _parse_env_value(raw, default)

  if overrides:
    logger.info("config overrides from environment: %s", overrides)
  return overrides


def config_from_env(vocab: ParserVocab, **overrides: Any) -> ParserConfig:
  """environment overrides first, explicit keyword overrides on top."""
  return create_config(vocab, **{**load_env_overrides(), **overrides})
