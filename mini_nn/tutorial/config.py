"""
Settings shared by the tutorial examples.
"""
from dataclasses import dataclass, fields
from typing import Optional


@dataclass
class TutorialConfig:
    seed: int = 0
    batch_size: int = 10
    data_size: int = 50
    hidden_size: int = 20
    output_size: int = 10
    timesteps: int = 5
    epochs: int = 20
    lr: float = 0.1
    log_level: Optional[str] = None

    def __post_init__(self):
        for name in ('batch_size', 'data_size', 'hidden_size', 'output_size', 'timesteps', 'epochs'):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.lr <= 0:
            raise ValueError(f"lr must be positive, got {self.lr}")
        if not 0 <= self.seed < 2 ** 32:
            raise ValueError(f"seed must be in [0, 2**32), got {self.seed}")

    @classmethod
    def from_args(cls, namespace):
        """Build from an argparse namespace, ignoring options left unset."""
        values = {}
        for field in fields(cls):
            value = getattr(namespace, field.name, None)
            if value is not None:
                values[field.name] = value
        return cls(**values)
