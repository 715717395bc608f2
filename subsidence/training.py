"""
subsidence.training
===================
Epoch loop for the parallel LSTM.

Per epoch:

1. shuffle the training windows with a seeded RNG and cut batches of
   ``batch_size``;
2. forward every batch through the regional predictors (concurrently on a
   worker pool bounded by ``parallel_regions``) and the attention fuser;
3. loss = MSE(prediction, target) + ``l2_penalty`` · Σθ²;
4. backward, clip the gradient norm, Adam step; the learning rate decays by
   ``lr_decay`` every ``lr_decay_every`` epochs;
5. evaluate on the temporal hold-out;
6. append one :class:`EpochMetric`.

Early stopping restores the best validation weights.  A non-finite loss
ends the run with a ``diverged`` :class:`TrainingResult` that still carries
every completed EpochMetric.  A set cancellation event is honoured at the
next batch boundary: the running epoch is dropped and the best weights so
far are returned with status ``cancelled``.

The Trainer owns the model parameters for the duration of :meth:`fit`; the
returned model is not touched by the Trainer again.
"""

from __future__ import annotations

import copy
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import torch
import torch.nn.functional as F

from .config import ModelConfig, TrainerConfig
from .errors import TrainingDivergence
from .models.plstm import ParallelLSTM


# ======================================================================== #
#  Result containers                                                        #
# ======================================================================== #

@dataclass(frozen=True)
class EpochMetric:
    """Metrics of one completed epoch (losses in scaled target units)."""
    epoch: int
    training_loss: float
    validation_loss: float
    accuracy: float
    learning_rate: float
    duration: float          # seconds

    def to_dict(self) -> dict:
        return asdict(self)


class TrainingStatus(str, Enum):
    COMPLETED = "completed"
    EARLY_STOPPED = "early_stopped"
    CANCELLED = "cancelled"
    DIVERGED = "diverged"


@dataclass
class TrainingResult:
    status: TrainingStatus
    model: ParallelLSTM
    epoch_details: List[EpochMetric] = field(default_factory=list)
    best_epoch: Optional[int] = None
    error: Optional[TrainingDivergence] = None

    @property
    def ok(self) -> bool:
        return self.status != TrainingStatus.DIVERGED

    @property
    def training_loss(self) -> List[float]:
        return [e.training_loss for e in self.epoch_details]

    @property
    def validation_loss(self) -> List[float]:
        return [e.validation_loss for e in self.epoch_details]

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error


ProgressCallback = Callable[[float, str, Optional[List[EpochMetric]]], None]


# ======================================================================== #
#  Trainer                                                                  #
# ======================================================================== #

class Trainer:
    """
    Parameters
    ----------
    model_config : ModelConfig
    trainer_config : TrainerConfig, optional
    progress_callback : callable, optional
        ``callback(fraction, label, epoch_details)`` at batch boundaries
        (``epoch_details`` None) and epoch boundaries (full list so far).
    cancel_event : threading.Event, optional
    device : str, optional
    """

    def __init__(
        self,
        model_config: ModelConfig,
        trainer_config: Optional[TrainerConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        device: Optional[str] = None,
    ):
        model_config.validate()
        self.model_config = model_config
        self.trainer_config = trainer_config or TrainerConfig()
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event or threading.Event()
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")

    # ------------------------------------------------------------------ #

    @property
    def n_epochs(self) -> int:
        cap = self.trainer_config.max_epochs
        return min(self.model_config.epochs, cap) if cap else self.model_config.epochs

    def _report(self, fraction: float, label: str,
                details: Optional[List[EpochMetric]] = None) -> None:
        if self.progress_callback is not None:
            self.progress_callback(min(max(fraction, 0.0), 1.0), label, details)

    def _l2(self, model: ParallelLSTM) -> torch.Tensor:
        return sum(p.pow(2).sum() for p in model.parameters())

    def build_model(self, input_size: int, active_regions: Sequence[bool]) -> ParallelLSTM:
        torch.manual_seed(self.trainer_config.seed)
        model = ParallelLSTM.from_config(self.model_config, input_size).to(self.device)
        model.set_active_regions(active_regions)
        model.seed_dropout(self.trainer_config.seed)
        return model

    # ------------------------------------------------------------------ #

    def fit(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        region_train: np.ndarray,
        X_val: Optional[np.ndarray] = None,
        y_val: Optional[np.ndarray] = None,
        region_val: Optional[np.ndarray] = None,
        active_regions: Optional[Sequence[bool]] = None,
        target_divisor: float = 1.0,
    ) -> TrainingResult:
        """
        Train on scaled windows.

        Parameters
        ----------
        X_train : (n, L, F) float array
        y_train : (n,) scaled targets
        region_train : (n,) region id of each window
        X_val, y_val, region_val : hold-out arrays (optional)
        active_regions : flags, one per region; defaults to regions that
            own at least one training window
        target_divisor : float
            Target scale, used to express the accuracy tolerance in
            original units.
        """
        cfg = self.model_config
        tcfg = self.trainer_config
        n = len(X_train)
        if n == 0:
            raise ValueError("No training sequences.")

        if active_regions is None:
            counts = np.bincount(region_train, minlength=cfg.parallel_regions)
            active_regions = counts > 0
        model = self.build_model(X_train.shape[-1], active_regions)

        opt = torch.optim.Adam(model.parameters(), lr=cfg.learning_rate)
        sched = torch.optim.lr_scheduler.StepLR(
            opt, step_size=tcfg.lr_decay_every, gamma=tcfg.lr_decay
        )
        rng = np.random.default_rng(tcfg.seed)

        Xt = torch.as_tensor(X_train, dtype=torch.float32, device=self.device)
        yt = torch.as_tensor(y_train, dtype=torch.float32, device=self.device)
        rt = torch.as_tensor(region_train, dtype=torch.long, device=self.device)

        has_val = X_val is not None and y_val is not None and len(X_val) > 0
        if not has_val:
            X_val, y_val, region_val = X_train, y_train, region_train

        n_epochs = self.n_epochs
        n_batches = math.ceil(n / cfg.batch_size)
        total_steps = n_epochs * n_batches
        tolerance = tcfg.accuracy_tolerance / target_divisor

        details: List[EpochMetric] = []
        best_loss = float("inf")
        best_state: Optional[Dict[str, torch.Tensor]] = None
        best_epoch: Optional[int] = None
        patience_ctr = 0
        status = TrainingStatus.COMPLETED
        error: Optional[TrainingDivergence] = None

        workers = min(tcfg.n_jobs or cfg.parallel_regions, cfg.parallel_regions)
        pool_ctx = ThreadPoolExecutor(max_workers=workers) if workers > 1 else nullcontext()

        with pool_ctx as pool:
            for epoch in range(1, n_epochs + 1):
                t0 = time.perf_counter()
                lr = opt.param_groups[0]["lr"]
                model.train()
                perm = rng.permutation(n)
                running = 0.0
                cancelled = False
                diverged = False

                for b in range(n_batches):
                    if self.cancel_event.is_set():
                        cancelled = True
                        break
                    idx = torch.as_tensor(perm[b * cfg.batch_size:(b + 1) * cfg.batch_size],
                                          device=self.device)
                    opt.zero_grad()
                    pred, _ = model(Xt[idx], rt[idx], executor=pool)
                    mse = F.mse_loss(pred, yt[idx])
                    loss = mse + tcfg.l2_penalty * self._l2(model)
                    if not torch.isfinite(loss):
                        diverged = True
                        break
                    loss.backward()
                    torch.nn.utils.clip_grad_norm_(model.parameters(), tcfg.clip_norm)
                    opt.step()
                    running += mse.item() * len(idx)

                    step = (epoch - 1) * n_batches + b + 1
                    self._report(step / total_steps, f"Epoch {epoch}/{n_epochs} "
                                                     f"batch {b + 1}/{n_batches}")

                if cancelled:
                    status = TrainingStatus.CANCELLED
                    break

                train_loss = running / n if not diverged else float("nan")
                val_loss, accuracy = float("nan"), float("nan")
                if not diverged:
                    val_pred, _ = model.predict(X_val, region_val, batch_size=max(cfg.batch_size, 256))
                    err = val_pred.astype(np.float64) - np.asarray(y_val, dtype=np.float64)
                    val_loss = float(np.mean(err ** 2))
                    accuracy = float(np.mean(np.abs(err) <= tolerance))

                if diverged or not (math.isfinite(train_loss) and math.isfinite(val_loss)):
                    status = TrainingStatus.DIVERGED
                    error = TrainingDivergence(
                        f"Loss became non-finite in epoch {epoch}.",
                        epoch=epoch,
                        epoch_details=details,
                    )
                    break

                sched.step()
                details.append(EpochMetric(
                    epoch=epoch,
                    training_loss=train_loss,
                    validation_loss=val_loss,
                    accuracy=accuracy,
                    learning_rate=lr,
                    duration=time.perf_counter() - t0,
                ))
                self._report(epoch / n_epochs, f"Epoch {epoch}/{n_epochs} complete",
                             list(details))

                if val_loss < best_loss:
                    best_loss = val_loss
                    best_epoch = epoch
                    patience_ctr = 0
                    best_state = copy.deepcopy(model.state_dict())
                else:
                    patience_ctr += 1
                    if tcfg.patience is not None and patience_ctr >= tcfg.patience:
                        status = TrainingStatus.EARLY_STOPPED
                        break

        # Restore best
        if best_state is not None:
            model.load_state_dict(best_state)
        model.eval()
        return TrainingResult(
            status=status,
            model=model,
            epoch_details=details,
            best_epoch=best_epoch,
            error=error,
        )
