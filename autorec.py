import torch
import torch.nn as nn


class AutoRec(nn.Module):
    """Encoder Linear -> Sigmoid -> Dropout -> decoder Linear, one zero-filled rating vector per row."""

    def __init__(self, num_hidden, input_dim, dropout=0.2):
        super(AutoRec, self).__init__()
        self.input_dim = input_dim
        self.num_hidden = num_hidden
        self.encoder = nn.Linear(input_dim, num_hidden)
        self.decoder = nn.Linear(num_hidden, input_dim)
        self.dropout = nn.Dropout(dropout)
        self.sigmoid = nn.Sigmoid()

    @classmethod
    def from_config(cls, config, input_dim):
        """Build a network whose initial weights are fixed by config.seed."""
        torch.manual_seed(config.seed)
        return cls(config.hidden_dim, input_dim, dropout=config.dropout)

    def forward(self, input):
        hidden = self.dropout(self.sigmoid(self.encoder(input)))
        return self.decoder(hidden)
