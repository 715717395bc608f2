"""
subsidence.models.fusion
========================
Attention fusion of the regional forecasts::

    Y = Σ_i w_i · LSTM_i(X),      w = softmax(s)
    s_i = vᵀ tanh(W h_i + b) + A[home, i]

``h_i`` is region *i*'s last hidden state for the sample, ``home`` the
region of the sample's station and ``A`` a learned region-affinity matrix
(initialised to favour the home region).  Regions without training
sequences are masked: their score is −∞ before the softmax, so their weight
is exactly 0 and the weights of the remaining regions still sum to 1.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import torch
import torch.nn as nn


class AttentionFuser(nn.Module):

    def __init__(
        self,
        n_regions: int,
        hidden_size: int,
        attention_size: int = 32,
        home_bias: float = 2.0,
    ):
        super().__init__()
        self.n_regions = n_regions
        self.proj = nn.Linear(hidden_size, attention_size)
        self.score = nn.Linear(attention_size, 1, bias=False)
        self.affinity = nn.Parameter(torch.eye(n_regions) * home_bias)
        self.register_buffer("active", torch.ones(n_regions, dtype=torch.bool))

    def set_active(self, active: Sequence[bool]) -> None:
        """Mark which regions may receive weight."""
        mask = torch.as_tensor(list(active), dtype=torch.bool, device=self.active.device)
        if mask.shape != (self.n_regions,):
            raise ValueError(f"expected {self.n_regions} flags, got {tuple(mask.shape)}")
        if not mask.any():
            raise ValueError("at least one region must be active")
        self.active.copy_(mask)

    def weights(self, hidden: torch.Tensor, home: torch.Tensor) -> torch.Tensor:
        # hidden: (B, N, H), home: (B,)
        s = self.score(torch.tanh(self.proj(hidden))).squeeze(-1)
        s = s + self.affinity[home]
        s = s.masked_fill(~self.active, float("-inf"))
        return torch.softmax(s, dim=-1)

    def forward(
        self,
        forecasts: torch.Tensor,
        hidden: torch.Tensor,
        home: torch.Tensor,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        w = self.weights(hidden, home)
        # masked regions carry forecast 0 and weight 0
        y = (w * forecasts.masked_fill(~self.active, 0.0)).sum(dim=-1)
        return y, w
