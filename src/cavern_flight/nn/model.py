from __future__ import annotations

import numpy as np
import torch
import torch.nn as nn

INPUT_SIZE = 61  # 3 columns x 20 rows + 1 player position
HIDDEN_SIZE = 80
OUTPUT_SIZE = 2  # UP, DOWN
TOPOLOGY = (INPUT_SIZE, HIDDEN_SIZE, OUTPUT_SIZE)


class CavernNet(nn.Module):
    """61-80-2 feed-forward classifier with sigmoid units.

    Output 0 scores UP, output 1 scores DOWN. Weights are float64 so that the
    persisted artifact reproduces predictions exactly.
    """

    def __init__(self, n_in: int = INPUT_SIZE, n_hidden: int = HIDDEN_SIZE, n_out: int = OUTPUT_SIZE):
        super().__init__()
        self.n_in = int(n_in)
        self.n_hidden = int(n_hidden)
        self.n_out = int(n_out)
        self.hidden = nn.Linear(self.n_in, self.n_hidden)
        self.out = nn.Linear(self.n_hidden, self.n_out)
        self.to(torch.float64)

    @property
    def topology(self) -> tuple[int, int, int]:
        return self.n_in, self.n_hidden, self.n_out

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        h = torch.sigmoid(self.hidden(x))
        return torch.sigmoid(self.out(h))

    @torch.no_grad()
    def compute(self, vector: np.ndarray) -> np.ndarray:
        """Forward pass for a single input vector, returns (n_out,) float64."""
        self.eval()
        x = torch.as_tensor(np.asarray(vector, dtype=np.float64)).reshape(1, -1)
        return self(x)[0].cpu().numpy()


def create_network(seed: int | None = None) -> CavernNet:
    """Fresh network with small random weights."""
    if seed is not None:
        torch.manual_seed(seed)
    return CavernNet()
