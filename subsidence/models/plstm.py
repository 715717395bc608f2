"""
subsidence.models.plstm
=======================
Parallel LSTM: ``N`` regional predictors + attention fuser.

Every sample runs through each *active* regional predictor; the fuser then
weights their forecasts by the learned attention.  When an executor is
passed, the regional forwards are submitted to it and collected before
fusion, which makes each batch a barrier: no region's output is fused (or
back-propagated) until all regions have finished the step.
"""

from __future__ import annotations

from concurrent.futures import Executor
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn

from ..config import ModelConfig
from .fusion import AttentionFuser
from .lstm import RegionalLSTM


class ParallelLSTM(nn.Module):

    def __init__(
        self,
        input_size: int,
        n_regions: int,
        hidden_size: int,
        num_layers: int,
        dropout: float,
    ):
        super().__init__()
        self.input_size = input_size
        self.n_regions = n_regions
        self.hidden_size = hidden_size
        self.regions = nn.ModuleList(
            RegionalLSTM(input_size, hidden_size, num_layers, dropout)
            for _ in range(n_regions)
        )
        self.fuser = AttentionFuser(n_regions, hidden_size)

    @classmethod
    def from_config(cls, config: ModelConfig, input_size: int) -> "ParallelLSTM":
        return cls(
            input_size=input_size,
            n_regions=config.parallel_regions,
            hidden_size=config.neurons,
            num_layers=config.layers,
            dropout=config.dropout_rate,
        )

    # ------------------------------------------------------------------ #

    def set_active_regions(self, active: Sequence[bool]) -> None:
        self.fuser.set_active(active)

    def active_regions(self) -> List[int]:
        return [int(i) for i in torch.nonzero(self.fuser.active).flatten().tolist()]

    def seed_dropout(self, seed: int) -> None:
        """Give every region its own dropout generator derived from ``seed``."""
        for i, region in enumerate(self.regions):
            region.reseed(seed * 1009 + i)

    # ------------------------------------------------------------------ #

    def forward(
        self,
        x: torch.Tensor,
        home: torch.Tensor,
        executor: Optional[Executor] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Parameters
        ----------
        x : (B, L, F) tensor
        home : (B,) long tensor of region ids
        executor : optional pool running the regional forwards concurrently

        Returns
        -------
        prediction : (B,) tensor
        weights : (B, N) tensor of fusion weights
        """
        active = self.active_regions()
        if executor is not None and len(active) > 1:
            futures = [executor.submit(self.regions[i], x) for i in active]
            outputs = [f.result() for f in futures]
        else:
            outputs = [self.regions[i](x) for i in active]
        by_region = dict(zip(active, outputs))

        B = x.shape[0]
        zero_f = x.new_zeros(B)
        zero_h = x.new_zeros(B, self.hidden_size)
        forecasts = torch.stack(
            [by_region[i][0] if i in by_region else zero_f for i in range(self.n_regions)],
            dim=1,
        )
        hidden = torch.stack(
            [by_region[i][1] if i in by_region else zero_h for i in range(self.n_regions)],
            dim=1,
        )
        return self.fuser(forecasts, hidden, home)

    @torch.no_grad()
    def predict(
        self,
        X: np.ndarray,
        home: np.ndarray,
        batch_size: int = 256,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Single inference pass (dropout off) on scaled windows."""
        was_training = self.training
        self.eval()
        device = next(self.parameters()).device
        preds, weights = [], []
        for start in range(0, len(X), batch_size):
            xb = torch.as_tensor(X[start:start + batch_size], dtype=torch.float32, device=device)
            hb = torch.as_tensor(home[start:start + batch_size], dtype=torch.long, device=device)
            p, w = self(xb, hb)
            preds.append(p.cpu().numpy())
            weights.append(w.cpu().numpy())
        self.train(was_training)
        if not preds:
            return np.empty(0, dtype=np.float32), np.empty((0, self.n_regions), dtype=np.float32)
        return np.concatenate(preds), np.concatenate(weights)
