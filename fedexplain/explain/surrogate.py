"""
Local surrogate (LIME) explanations for a single instance.

Perturb the instance with Gaussian noise, ask the trained model for its
predictions on the perturbed neighbours, weight every neighbour by an
exponential kernel over its cosine distance to the instance, and fit a
single linear unit to those predictions. The fitted input weights are the
per-feature contributions around that instance.
"""

import logging
from typing import Any, Dict, Generator, Optional

import numpy as np
import torch
from torch import nn
from torch.utils.data import DataLoader, TensorDataset

from ..data.preprocess import encode_record
from ..models.model_zoo import TrainedModel
from ..models.trainer import predict_proba
from ..types import FeatureContribution, LocalExplanation
from ..utils.iteration import arun_to_completion, run_to_completion

LOGGER = logging.getLogger(__name__)


def cosine_distance(x: torch.Tensor, neighbours: torch.Tensor) -> torch.Tensor:
    """
    1 - cosine similarity between ``x`` [F] and every row of ``neighbours``
    [S, F]. Rows where either vector has zero norm get distance 0.
    """
    dots = neighbours @ x
    norms = neighbours.norm(dim=1) * x.norm()
    safe = norms > 0
    sim = torch.where(safe, dots / torch.where(safe, norms, torch.ones_like(norms)), torch.ones_like(dots))
    return 1.0 - sim


def kernel_weights(distances: torch.Tensor, kernel_width: float) -> torch.Tensor:
    return torch.exp(-(distances ** 2) / (kernel_width ** 2))


class LocalSurrogate:
    def __init__(
        self,
        num_samples: int = 100,
        noise_std: float = 0.1,
        kernel_width: float = 0.25,
        epochs: int = 20,
        learning_rate: float = 0.01,
        batch_size: int = 32,
        random_state: Optional[int] = None,
    ):
        self.num_samples = num_samples
        self.noise_std = noise_std
        self.kernel_width = kernel_width
        self.epochs = epochs
        self.learning_rate = learning_rate
        self.batch_size = batch_size
        self.random_state = random_state

    def _generator(self) -> torch.Generator:
        gen = torch.Generator()
        if self.random_state is not None:
            gen.manual_seed(int(self.random_state))
        else:
            gen.seed()
        return gen

    def iter_explain_vector(
        self,
        model: TrainedModel,
        instance: np.ndarray,
    ) -> Generator[Any, None, LocalExplanation]:
        gen = self._generator()
        net = model.build()
        x = torch.as_tensor(np.asarray(instance, dtype=np.float32))
        n_features = x.shape[0]

        # perturbation batches: generate, then query the model
        neighbour_batches = []
        prediction_batches = []
        for start in range(0, self.num_samples, self.batch_size):
            size = min(self.batch_size, self.num_samples - start)
            noise = torch.randn((size, n_features), generator=gen) * self.noise_std
            batch = x.unsqueeze(0) + noise
            neighbour_batches.append(batch)
            prediction_batches.append(
                torch.as_tensor(predict_proba(net, batch.numpy()), dtype=torch.float32).reshape(-1)
            )
            yield start

        neighbours = torch.cat(neighbour_batches, dim=0)
        targets = torch.cat(prediction_batches, dim=0)
        instance_prediction = float(predict_proba(net, x.unsqueeze(0).numpy()).reshape(-1)[0])

        sample_weights = kernel_weights(cosine_distance(x, neighbours), self.kernel_width)

        surrogate = nn.Linear(n_features, 1)
        nn.init.zeros_(surrogate.weight)
        nn.init.zeros_(surrogate.bias)
        optimizer = torch.optim.Adam(surrogate.parameters(), lr=self.learning_rate)
        loader = DataLoader(
            TensorDataset(neighbours, targets, sample_weights),
            batch_size=self.batch_size,
            shuffle=True,
            generator=gen,
        )
        for epoch in range(self.epochs):
            epoch_loss = 0.0
            for xb, yb, wb in loader:
                optimizer.zero_grad()
                pred = surrogate(xb).squeeze(-1)
                loss = torch.mean(wb * (pred - yb) ** 2)
                loss.backward()
                optimizer.step()
                epoch_loss += loss.item() * xb.size(0)
            LOGGER.debug(
                f"[LocalSurrogate] fit epoch {epoch + 1}/{self.epochs} "
                f"loss={epoch_loss / max(len(targets), 1):.6f}"
            )
            yield epoch

        coefs = surrogate.weight.detach().reshape(-1).cpu().numpy()
        contributions = sorted(
            (
                FeatureContribution(feature_name=name, coefficient=float(c))
                for name, c in zip(model.config.feature_columns, coefs)
            ),
            key=lambda fc: abs(fc.coefficient),
            reverse=True,
        )
        return LocalExplanation(instance_prediction=instance_prediction, contributions=contributions)

    def iter_explain(
        self,
        model: TrainedModel,
        record: Dict[str, Any],
    ) -> Generator[Any, None, LocalExplanation]:
        """Raises PreprocessingError if the record has non-numeric features."""
        instance = encode_record(record, model.config.feature_columns)
        LOGGER.info("[LocalSurrogate] Starting LIME analysis on a sample instance...")
        explanation = yield from self.iter_explain_vector(model, instance)
        LOGGER.info(
            f"[LocalSurrogate] LIME analysis complete. Prediction: {explanation.instance_prediction:.3f}"
        )
        for c in explanation.top(5):
            LOGGER.info(f"[LocalSurrogate]   - {c.feature_name}: {c.coefficient:.4f}")
        return explanation

    def explain(self, model: TrainedModel, record: Dict[str, Any]) -> LocalExplanation:
        return run_to_completion(self.iter_explain(model, record))

    async def explain_async(self, model: TrainedModel, record: Dict[str, Any]) -> LocalExplanation:
        return await arun_to_completion(self.iter_explain(model, record))
