import flax.linen as nn
import jax.numpy as jnp


class TokensEncoder(nn.Module):
  """
  encodes the tokens of a sentence from their feature ids.
  in training mode the encoding of a whole token is dropped with probability `dropout_rate`.
  """

  vocab_size: int
  embed_size: int = 100
  dropout_rate: float = 0.25

  @nn.compact
  def __call__(self, x, train: bool = True):
    """
    x: (seq_len, n_features) - feature ids of each token
    """
    # 1. embedding lookup over the shared feature id space
    embeddings = self.param(
      "embeddings",
      nn.initializers.uniform(scale=0.1),
      (self.vocab_size, self.embed_size),
    )

    # select embeddings and flatten: (seq_len, n_features * embed_size)
    x = embeddings[x].reshape((x.shape[0], -1))

    # word dropout: the mask is shared along the features, whole tokens are dropped
    return nn.Dropout(rate=self.dropout_rate, broadcast_dims=(1,), deterministic=not train)(x)


class BiLSTM(nn.Module):
  """a bidirectional LSTM over a single sequence: (seq_len, in) -> (seq_len, 2 * hidden)."""

  hidden_size: int

  @nn.compact
  def __call__(self, x):
    birnn = nn.Bidirectional(
      nn.RNN(nn.LSTMCell(features=self.hidden_size)),
      nn.RNN(nn.LSTMCell(features=self.hidden_size)),
    )
    # flax RNNs are batch major: add and remove a batch of one
    return birnn(x[None, ...])[0]


class ContextEncoder(nn.Module):
  """
  puts the tokens encodings in their sentential context with a stack of BiLSTMs.
  """

  hidden_size: int = 100
  num_layers: int = 2
  dropout_rate: float = 0.0

  @nn.compact
  def __call__(self, x, train: bool = True):
    for _ in range(self.num_layers):
      x = BiLSTM(self.hidden_size)(x)
      x = nn.Dropout(rate=self.dropout_rate, deterministic=not train)(x)
    return x


class HeadsEncoder(nn.Module):
  """
  generates the latent heads representation from the context vectors.
  the output has the size of the context vectors, so that the two can be compared.
  """

  hidden_size: int
  output_size: int

  @nn.compact
  def __call__(self, x, train: bool = True):
    x = BiLSTM(self.hidden_size)(x)
    x = nn.Dense(
      features=self.output_size,
      kernel_init=nn.initializers.xavier_uniform(),
    )(x)
    return nn.tanh(x)


class LabelerNetwork(nn.Module):
  """
  multitask feed-forward classifier of the arcs: deprels and, optionally, POS tags.
  returns a tuple of unactivated scores, one array per task.
  """

  n_deprels: int
  n_pos_tags: int = 0  # 0 = do not predict POS tags
  hidden_size: int = 100

  @nn.compact
  def __call__(self, x, train: bool = True):
    """
    x: (n_arcs, n_features * context_size)
    """
    h = nn.Dense(
      features=self.hidden_size,
      kernel_init=nn.initializers.xavier_uniform(),
    )(x)
    h = nn.tanh(h)

    outputs = (nn.Dense(features=self.n_deprels, name="deprels")(h),)

    if self.n_pos_tags > 0:
      outputs = outputs + (nn.Dense(features=self.n_pos_tags, name="pos_tags")(h),)

    return outputs


class PointerNetwork(nn.Module):
  """
  additive attention of each query over a sequence of keys.
  returns (n_queries, n_keys) logits: the score of pointing to each position.
  """

  attention_size: int = 50

  @nn.compact
  def __call__(self, keys, queries, train: bool = True):
    k = nn.Dense(features=self.attention_size, use_bias=False, name="keys")(keys)
    q = nn.Dense(features=self.attention_size, name="queries")(queries)

    energy = nn.tanh(q[:, None, :] + k[None, :, :])  # (n_queries, n_keys, attention_size)
    logits = nn.Dense(features=1, use_bias=False, name="energy")(energy)

    return jnp.squeeze(logits, axis=-1)
