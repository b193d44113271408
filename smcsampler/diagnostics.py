from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class DiagnosticsRecorder:
    """Per-round record of adaptive population growth, for offline inspection."""
    ess: List[float] = field(default_factory=list)
    population_sizes: List[int] = field(default_factory=list)

    def record(self, ess: float, population_size: int):
        self.ess.append(ess)
        self.population_sizes.append(population_size)

    def clear(self):
        self.ess.clear()
        self.population_sizes.clear()

    def __len__(self) -> int:
        return len(self.ess)

    def get_statistics(self) -> Dict:
        return {
            'ess_history': list(self.ess),
            'population_size_history': list(self.population_sizes),
        }
