"""
subsidence.models.lstm
======================
Regional recurrent predictor: stacked LSTM layers → linear head.

Each layer applies the standard gated update for every context step::

    f_t = σ(W_f·[h_{t-1}, x_t] + b_f)        forget gate
    i_t = σ(W_i·[h_{t-1}, x_t] + b_i)        input gate
    c̃_t = tanh(W_c·[h_{t-1}, x_t] + b_c)     candidate
    c_t = f_t ⊙ c_{t-1} + i_t ⊙ c̃_t          cell state
    o_t = σ(W_o·[h_{t-1}, x_t] + b_o)        output gate
    h_t = o_t ⊙ tanh(c_t)                    hidden state

Input:  ``(batch, L, n_features)``
Output: forecast ``(batch,)`` and the last hidden state of the top layer
``(batch, hidden_size)`` (consumed by the attention fuser).

The layers are separate single-layer ``nn.LSTM`` modules so dropout between
them can draw from a region-owned ``torch.Generator``: regions run on
worker threads, and the global RNG would make their masks depend on thread
scheduling.
"""

from __future__ import annotations

from typing import Optional, Tuple

import torch
import torch.nn as nn


class SeededDropout(nn.Module):
    """Inverted dropout whose mask comes from an explicit generator."""

    def __init__(self, p: float):
        super().__init__()
        if not 0.0 <= p < 1.0:
            raise ValueError(f"dropout probability must be in [0, 1), got {p}")
        self.p = p

    def forward(self, x: torch.Tensor, generator: Optional[torch.Generator] = None):
        if not self.training or self.p == 0.0:
            return x
        keep = 1.0 - self.p
        mask = torch.empty_like(x).bernoulli_(keep, generator=generator)
        return x * mask / keep


class RegionalLSTM(nn.Module):
    """Stacked LSTM → linear head, one instance per region."""

    def __init__(self, input_size: int, hidden_size: int, num_layers: int, dropout: float):
        super().__init__()
        self.hidden_size = hidden_size
        self.layers = nn.ModuleList(
            nn.LSTM(
                input_size=input_size if k == 0 else hidden_size,
                hidden_size=hidden_size,
                batch_first=True,
            )
            for k in range(num_layers)
        )
        self.dropout = SeededDropout(dropout)
        self.head = nn.Linear(hidden_size, 1)
        self.generator: Optional[torch.Generator] = None

    def reseed(self, seed: int) -> None:
        device = next(self.parameters()).device
        self.generator = torch.Generator(device=device)
        self.generator.manual_seed(int(seed))

    def forward(self, x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        # x: (B, L, F)
        out = x
        for k, lstm in enumerate(self.layers):
            if k > 0:
                out = self.dropout(out, self.generator)
            out, _ = lstm(out)
        last = out[:, -1, :]  # last time-step of the top layer
        return self.head(last).squeeze(-1), last
