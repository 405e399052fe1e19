import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np
import optax

from config import RELAX_SCORE_THRESHOLD, RELEVANT_ERROR_THRESHOLD
from decoders import PointerErrors, PointerNetworkDecoder
from deptree import DependencyTree
from encoder import LSSEncoder, LSSEncoderBuilder
from inference import calculate_attachment_scores
from labeler import DeprelAndPOSLabeler, LabelerOutput
from lhr_parser import LHRParser
from schema import LatentSyntacticStructure, Sentence
from stages import RootOptimizer, StageOptimizer, StageProcessor
from utils import save_model

logger = logging.getLogger(__name__)


def create_update_method(learning_rate: float, beta1: float, beta2: float):
  """the update method shared by all the parameters of the parser."""
  return optax.adam(learning_rate, b1=beta1, b2=beta2)


def has_relevant_errors(errors: jnp.ndarray, threshold: float = RELEVANT_ERROR_THRESHOLD) -> bool:
  return bool(jnp.any(jnp.abs(errors) > threshold))


class LHRTrainer:
  """
  trains an LHR parser sentence by sentence.

  the latent head of each token is pulled towards the context vector of its gold
  governor (the virtual root for the top); the errors flow backward through the heads
  encoder, the context encoder and the tokens encoder, joined by the errors of the labeler
  (and of the pointer network, if used). the parameters errors are accumulated and
  applied at the end of each batch, the root errors are applied immediately.
  """

  def __init__(self, parser: LHRParser, model_path: Optional[str] = None):
    self.parser = parser
    self.model = parser.model
    self.config = parser.model.config
    self.model_path = model_path

    self.update_method = create_update_method(
      self.config.learning_rate, self.config.beta1, self.config.beta2
    )

    self._encoder_builder = LSSEncoderBuilder(self.model, train=True)
    self._labeler = DeprelAndPOSLabeler.from_model(self.model)
    self._pointer: Optional[PointerNetworkDecoder] = None
    if self.model.pointer_network is not None:
      self._pointer = PointerNetworkDecoder(self.model.pointer_network)

    self.optimizers: Dict[str, StageOptimizer] = {
      name: StageOptimizer(stage, self.update_method) for name, stage in self.model.stages.items()
    }
    self.root_optimizer = RootOptimizer(self.model.root, self.update_method)

    self._rng = jax.random.PRNGKey(self.config.seed)

  def __repr__(self) -> str:
    c = self.config
    return (
      f"LHRTrainer(epochs={c.epochs}, batch_size={c.batch_size}, "
      f"skip_punctuation_errors={c.skip_punctuation_errors}, "
      f"relevant_errors_only={c.calculate_relevant_errors_only}, "
      f"relax_reconstruction_errors={c.relax_reconstruction_errors})"
    )

  def train(
    self, train_sentences: List[Sentence], dev_sentences: Optional[List[Sentence]] = None
  ) -> Dict[str, List[float]]:
    """
    trains for the configured epochs, validating after each one when dev sentences are
    given. the best model is saved to `model_path` (if set); training stops early after
    `early_stopping_patience` epochs without improvement.

    the validation parses the dev sentences: a NoLegalGovernorError raised when a
    punctuation token becomes the top of a sentence with a cycle is not caught and
    stops the training.
    """
    metrics = defaultdict(list)
    best_uas = -1.0
    patience_counter = 0
    shuffler = np.random.default_rng(self.config.seed)

    logger.info("training %r on %d sentences", self.model, len(train_sentences))

    for epoch in range(1, self.config.epochs + 1):
      avg_loss = self.train_epoch(train_sentences, shuffler)
      metrics["train_loss"].append(avg_loss)

      if not dev_sentences:
        logger.info("epoch %d | loss: %.4f", epoch, avg_loss)
        if self.model_path:
          save_model(self.model, self.model_path)
        continue

      scores = calculate_attachment_scores(self.parser, dev_sentences)
      metrics["dev_uas"].append(scores.uas)
      metrics["dev_las"].append(scores.las)

      logger.info(
        "epoch %d | loss: %.4f | dev UAS: %.2f%% | dev LAS: %.2f%%",
        epoch,
        avg_loss,
        scores.uas * 100.0,
        scores.las * 100.0,
      )

      if scores.uas > best_uas:
        best_uas = scores.uas
        if self.model_path:
          save_model(self.model, self.model_path)
        logger.info("  -> new best UAS: %.2f%%", best_uas * 100.0)
        patience_counter = 0
      else:
        patience_counter += 1
        if patience_counter >= self.config.early_stopping_patience:
          logger.info(
            "early stopping triggered after %d epochs without improvement",
            self.config.early_stopping_patience,
          )
          break

    return metrics

  def train_epoch(self, sentences: List[Sentence], shuffler: Optional[np.random.Generator] = None) -> float:
    """one pass over the sentences, updating at each batch boundary. returns the mean loss."""
    indices = np.arange(len(sentences))
    if shuffler is not None:
      shuffler.shuffle(indices)

    losses = []

    for step, index in enumerate(indices, start=1):
      losses.append(self.train_on_sentence(sentences[index]))

      if step % self.config.batch_size == 0 or step == len(indices):
        self.update()

    return float(np.mean(losses)) if losses else float("nan")

  def update(self) -> None:
    """applies the accumulated parameters errors of every stage."""
    for optimizer in self.optimizers.values():
      optimizer.update()

  def train_on_sentence(self, sentence: Sentence) -> float:
    """
    learns the latent syntactic structure of a sentence, accumulating the parameters
    errors of every stage. returns the loss of the sentence.
    """
    gold_tree = sentence.gold_tree
    if gold_tree is None:
      raise ValueError("the gold dependency tree of a sentence cannot be None during the training")
    if gold_tree.size != len(sentence.tokens):
      raise ValueError(
        f"gold tree of size {gold_tree.size} for a sentence of {len(sentence.tokens)} tokens"
      )

    self._rng, encode_rng, labeler_rng = jax.random.split(self._rng, 3)

    encoder = self._encoder_builder()
    try:
      return self._learn(encoder, sentence, gold_tree, encode_rng, labeler_rng)
    finally:
      self._encoder_builder.release()

  def _learn(
    self,
    encoder: LSSEncoder,
    sentence: Sentence,
    gold_tree: DependencyTree,
    encode_rng,
    labeler_rng,
  ) -> float:
    lss = encoder.encode(sentence.tokens, rng=encode_rng)

    expected, root_targets = self.get_expected_latent_heads(lss, gold_tree)
    errors = lss.latent_heads - expected
    loss = 0.5 * float(jnp.sum(errors**2))

    if self.config.calculate_relevant_errors_only and not has_relevant_errors(errors):
      logger.debug("no relevant errors, skipping the backward of %d tokens", lss.size)
      return loss

    labeler_output: Optional[LabelerOutput] = None
    if self._labeler is not None:
      labeler_output = self._labeler.predict(lss, gold_tree, train=True, rng=labeler_rng)

    pointer_errors: Optional[PointerErrors] = None
    if self._pointer is not None:
      pointer_errors = self._pointer.learn(lss, gold_tree.heads)
      self.optimizers["pointer_network"].accumulate(pointer_errors.params)
      loss += pointer_errors.loss

    loss += self.propagate_errors(
      encoder=encoder,
      errors=errors,
      root_targets=root_targets,
      gold_tree=gold_tree,
      labeler_output=labeler_output,
      pointer_errors=pointer_errors,
    )

    return loss

  def get_expected_latent_heads(
    self, lss: LatentSyntacticStructure, gold_tree: DependencyTree
  ) -> Tuple[jnp.ndarray, List[int]]:
    """
    the expected latent head of each token:
    - its own latent head (no errors) if relaxed and already attached correctly with
      high confidence, or if it is punctuation and punctuation errors are skipped
    - the virtual root if its gold head is the root
    - the context vector of its gold governor otherwise
    returns the expected latent heads and the ids of the tokens whose target is the root.
    """
    predicted_tree: Optional[DependencyTree] = None
    if self.config.relax_reconstruction_errors:
      predicted_tree = self.parser.predict_heads(lss)

    expected = []
    root_targets = []

    for token in lss.tokens:
      gold_head = gold_tree.heads[token.id]

      if predicted_tree is not None and (
        predicted_tree.heads[token.id] == gold_head
        and predicted_tree.attachment_scores[token.id] >= RELAX_SCORE_THRESHOLD
      ):
        expected.append(lss.latent_heads[token.id])  # no errors

      elif gold_head is None:
        expected.append(lss.virtual_root)
        root_targets.append(token.id)

      elif self.config.skip_punctuation_errors and token.is_punctuation:
        expected.append(lss.latent_heads[token.id])  # no errors

      else:
        expected.append(lss.context_vectors[gold_head])

    return jnp.stack(expected), root_targets

  def propagate_errors(
    self,
    encoder: LSSEncoder,
    errors: jnp.ndarray,
    root_targets: List[int],
    gold_tree: DependencyTree,
    labeler_output: Optional[LabelerOutput] = None,
    pointer_errors: Optional[PointerErrors] = None,
  ) -> float:
    """
    backward through the stages in order: heads encoder, (labeler), context encoder,
    tokens encoder. returns the labeler loss.
    """
    labeler_loss = 0.0

    # 1. the root is the target of the tokens attached to it: d(0.5 |lh - root|^2)/d(root)
    root_errors = jnp.zeros_like(encoder.virtual_root.vector)
    if root_targets:
      root_errors = root_errors - jnp.sum(errors[jnp.array(root_targets)], axis=0)

    # 2. latent heads errors -> context vectors errors
    if pointer_errors is not None:
      errors = errors + pointer_errors.latent_heads

    context_errors = self._propagate(encoder.heads_encoder, errors)

    if pointer_errors is not None:
      context_errors = context_errors + pointer_errors.context_vectors

    # 3. labeler errors join the context vectors errors
    if labeler_output is not None:
      labeler_errors = self._labeler.backward(
        labeler_output, gold_deprels=gold_tree.deprels, gold_pos_tags=gold_tree.pos_tags
      )
      self.optimizers["labeler"].accumulate(labeler_errors.params)
      context_errors = context_errors + labeler_errors.context_vectors
      root_errors = root_errors + labeler_errors.root
      labeler_loss = labeler_errors.loss

    # 4. context vectors errors -> tokens encodings errors -> tokens encoder params
    tokens_errors = self._propagate(encoder.context_encoder, context_errors)
    self._propagate(encoder.tokens_encoder, tokens_errors, to_input=False)

    # 5. the root is not a stage: its errors are applied now
    if root_targets or labeler_output is not None:
      self.root_optimizer.update(root_errors)

    return labeler_loss

  def _propagate(self, processor: StageProcessor, output_errors, to_input: bool = True):
    """backward of a stage, accumulating its params errors. returns its input errors."""
    processor.backward(output_errors)
    self.optimizers[processor.stage.name].accumulate(processor.get_params_errors())

    if to_input:
      return processor.get_input_errors()[0]
    return None
