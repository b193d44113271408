"""
Particle ancestry as a directed graph.

Vertices are (generation, particle index) pairs; every particle of
generation g + 1 has one edge from its parent in generation g.
"""

from abc import ABC, abstractmethod
from typing import IO, Dict, List, Optional, Sequence, Tuple

Vertex = Tuple[int, int]


class LineageRecorder(ABC):
    @abstractmethod
    def record_initial(self, n_particles: int) -> None:
        pass

    @abstractmethod
    def record_generation(self, generation: int, parents: Optional[Sequence[int]], n_particles: int) -> None:
        """
        Link generation `generation` to its predecessor.

        Args:
            generation: Index of the new generation (>= 1)
            parents: Parent index of each new particle, or None when no
                resampling happened (particle i descends from particle i)
            n_particles: Size of the new generation
        """
        pass

    @abstractmethod
    def truncate(self, generation: int) -> None:
        """Forget every generation after `generation`."""
        pass


class GraphLineage(LineageRecorder):
    def __init__(self):
        self.vertices: List[Vertex] = []
        self.edges: List[Tuple[Vertex, Vertex]] = []

    def record_initial(self, n_particles: int) -> None:
        self.vertices = [(0, i) for i in range(n_particles)]
        self.edges = []

    def record_generation(self, generation: int, parents: Optional[Sequence[int]], n_particles: int) -> None:
        for i in range(n_particles):
            parent = i if parents is None else int(parents[i])
            child = (generation, i)
            self.vertices.append(child)
            self.edges.append(((generation - 1, parent), child))

    def truncate(self, generation: int) -> None:
        self.vertices = [v for v in self.vertices if v[0] <= generation]
        self.edges = [e for e in self.edges if e[1][0] <= generation]

    def children(self, vertex: Vertex) -> List[Vertex]:
        return [v for u, v in self.edges if u == vertex]

    def ancestry(self, vertex: Vertex) -> List[Vertex]:
        """Path from generation 0 to `vertex`."""
        parent_of: Dict[Vertex, Vertex] = {v: u for u, v in self.edges}
        path = [vertex]
        while path[-1] in parent_of:
            path.append(parent_of[path[-1]])
        return path[::-1]

    def to_dot(self) -> str:
        ids = {v: k for k, v in enumerate(self.vertices)}
        lines = ["digraph G {"]
        for v, k in ids.items():
            lines.append(f'{k} [label="{v[0]},{v[1]}"];')
        for u, v in self.edges:
            lines.append(f"{ids[u]}->{ids[v]} ;")
        lines.append("}")
        return "\n".join(lines) + "\n"

    def write_dot(self, out: IO[str]) -> IO[str]:
        out.write(self.to_dot())
        return out
