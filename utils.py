import os
import pickle
import logging

import jax
import jax.numpy as jnp

from config import MODEL_FORMAT, ParserConfig
from model import LHRModel
from schema import ParserVocab

logger = logging.getLogger(__name__)


def save_model(model: LHRModel, path: str) -> None:
  """saves the configuration, the vocabulary and the parameters of a model to a file."""
  directory = os.path.dirname(path)
  if directory:
    os.makedirs(directory, exist_ok=True)

  blob = {
    "format": MODEL_FORMAT,
    "config": model.config._asdict(),
    "vocab": model.vocab._asdict(),
    "params": {name: jax.device_get(s.params) for name, s in model.stages.items()},
    "root": jax.device_get(model.root.vector),
  }

  with open(path, "wb") as f:
    pickle.dump(blob, f)
  logger.info("model saved to %s", path)


def load_model(path: str) -> LHRModel:
  """loads a model saved by `save_model`, rebuilding its stages from the configuration."""
  with open(path, "rb") as f:
    blob = pickle.load(f)

  if not isinstance(blob, dict) or blob.get("format") != MODEL_FORMAT:
    raise ValueError(f"{path} is not a model file (expected format {MODEL_FORMAT})")

  config = ParserConfig(**blob["config"])
  vocab = ParserVocab(**blob["vocab"])
  model = LHRModel(config, vocab)

  stages = model.stages
  if set(stages) != set(blob["params"]):
    raise ValueError(
      f"{path}: saved stages {sorted(blob['params'])} do not match the configuration {sorted(stages)}"
    )

  for name, params in blob["params"].items():
    stages[name].params = jax.tree_util.tree_map(jnp.asarray, params)
  model.root.vector = jnp.asarray(blob["root"])

  logger.info("model loaded from %s", path)
  return model
